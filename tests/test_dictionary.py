import json
import sqlite3

import httpx
import pytest

import dictionary
from db import LexicalData
from dictionary import (
    UNAVAILABLE_DEFINITION,
    ChineseDictionary,
    InvalidWord,
    LookupFailed,
    PerplexityProvider,
    normalize_headword,
    parse_vocab_payload
)

VALID = {
    "is_valid": True,
    "ipa": "/ˈɛɡzæmpəl/",
    "definitions": ["例子，樣本", "an example"],
    "pos": ["noun"],
    "pinyin": ["lì zi"],
    "examples": [{"en": "This is an example.", "zh": "這是一個例子。"}],
    "word_family": {"verb": "exemplify", "noun": "example"},
}

CEDICT = """# CC-CEDICT sample
你好 你好 [ni3 hao3] /hello/hi/
世界 世界 [shi4 jie4] /world/
綠 绿 [lu:4] /green/
"""


def completion(content):
    return {"choices": [{"message": {"content": content}}]}


def provider_for(handler, api_key='key'):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return PerplexityProvider(api_key, client=client)


def test_normalize_headword():
    assert normalize_headword("  Example ") == "example"
    assert normalize_headword(None) == ""


def test_parse_strips_code_fences_and_filters_latin_definitions():
    result = parse_vocab_payload("```json\n" + json.dumps(VALID) + "\n```")
    assert isinstance(result, LexicalData)
    assert result.definitions == ["例子，樣本", UNAVAILABLE_DEFINITION]
    assert result.examples == [{"en": "This is an example.", "zh": "這是一個例子。"}]
    assert result.word_family["verb"] == "exemplify"


def test_parse_invalid_word():
    result = parse_vocab_payload(json.dumps({"is_valid": False, "suggestions": ["example", "sample"]}))
    assert result == InvalidWord(["example", "sample"])


def test_parse_garbage():
    with pytest.raises(LookupFailed):
        parse_vocab_payload("Sorry, I can't help with that.")


@pytest.mark.asyncio
async def test_perplexity_lookup_sends_normalized_word():
    seen = {}

    def handler(request):
        seen['auth'] = request.headers['Authorization']
        seen['body'] = json.loads(request.content)
        return httpx.Response(200, json=completion(json.dumps(VALID)))

    result = await provider_for(handler).lookup("  Example ")
    assert isinstance(result, LexicalData)
    assert seen['auth'] == 'Bearer key'
    assert seen['body']['model'] == 'sonar-pro'
    assert seen['body']['messages'][-1] == {'role': 'user', 'content': 'example'}


@pytest.mark.asyncio
async def test_perplexity_http_error():
    provider = provider_for(lambda request: httpx.Response(500, text="boom"))
    with pytest.raises(LookupFailed):
        await provider.lookup("example")


@pytest.mark.asyncio
async def test_perplexity_empty_content():
    provider = provider_for(lambda request: httpx.Response(200, json={"choices": []}))
    with pytest.raises(LookupFailed):
        await provider.lookup("example")


@pytest.mark.asyncio
async def test_perplexity_requires_key():
    provider = provider_for(lambda request: httpx.Response(200), api_key=None)
    with pytest.raises(LookupFailed):
        await provider.lookup("example")
    with pytest.raises(ValueError):
        await provider.lookup("   ")


@pytest.mark.asyncio
async def test_perplexity_reuses_its_client(monkeypatch):
    real_client = httpx.AsyncClient
    created = []

    def make_client(**kwargs):
        client = real_client(transport=httpx.MockTransport(
            lambda request: httpx.Response(200, json=completion(json.dumps(VALID)))), **kwargs)
        created.append(client)
        return client

    monkeypatch.setattr(httpx, 'AsyncClient', make_client)
    provider = PerplexityProvider('key')
    await provider.lookup("example")
    await provider.lookup("sample")
    assert len(created) == 1

    await provider.close()
    assert created[0].is_closed
    await provider.close()


def test_convert_pinyin():
    assert ChineseDictionary.convert_pinyin("ni3 hao3") == "nǐ hǎo"
    assert ChineseDictionary.convert_pinyin("lu:4") == "lǜ"
    assert ChineseDictionary.convert_pinyin("ma5") == "ma"
    assert ChineseDictionary.convert_pinyin("xiong2") == "xióng"
    assert ChineseDictionary.convert_pinyin("liu2") == "liú"
    assert ChineseDictionary.convert_pinyin("dou1") == "dōu"


@pytest.fixture
def cedict(tmp_path):
    (tmp_path / "cedict.txt").write_text(CEDICT, encoding="utf-8")
    return ChineseDictionary(tmp_path / "dictionary.db")


@pytest.mark.asyncio
async def test_cedict_exact_match(cedict):
    result = await cedict.lookup("你好")
    assert result.definitions == ["hello", "hi"]
    assert result.pinyin == ["nǐ hǎo"]


@pytest.mark.asyncio
async def test_cedict_traditional_match(cedict):
    result = await cedict.lookup("綠")
    assert result.definitions == ["green"]


@pytest.mark.asyncio
async def test_cedict_compound_breakdown(cedict):
    result = await cedict.lookup("你好世界")
    assert result.definitions == ["Word breakdown: 你好 (hello) + 世界 (world)"]
    assert result.pinyin == ["nǐ hǎo shì jiè"]


@pytest.mark.asyncio
async def test_cedict_unknown_word(cedict):
    assert await cedict.lookup("猫") == InvalidWord()


def test_cedict_requires_source(tmp_path):
    with pytest.raises(FileNotFoundError):
        ChineseDictionary(tmp_path / "dictionary.db")


@pytest.mark.asyncio
async def test_cedict_closes_connections(cedict, monkeypatch):
    real_connect = sqlite3.connect
    opened = []

    def connect(*args, **kwargs):
        conn = real_connect(*args, **kwargs)
        opened.append(conn)
        return conn

    monkeypatch.setattr(dictionary.sqlite3, 'connect', connect)
    await cedict.lookup("你好")
    await cedict.lookup("你好世界")
    assert len(opened) == 2
    for conn in opened:
        with pytest.raises(sqlite3.ProgrammingError):
            conn.execute('SELECT 1')
