import json
import logging
import re
import sqlite3
from contextlib import closing
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Union

import httpx
import jieba

from db import LexicalData

logger = logging.getLogger(__name__)

PERPLEXITY_URL = 'https://api.perplexity.ai/chat/completions'
UNAVAILABLE_DEFINITION = '（說明暫時無法取得）'

SYSTEM_PROMPT = """You are a dictionary API that returns ONLY raw JSON. Do not use markdown.

First, check if the input is a valid, correctly-spelled English word. If the input word is misspelled, nonsense, or not found in standard English dictionaries:
- Set "is_valid" to false
- Provide up to 3 likely correct English suggestions in "suggestions"
- Do NOT make up a meaning for an unknown or nonsense word

If the word IS valid:
- Set "is_valid" to true
- Provide the IPA pronunciation, Traditional Chinese definitions, parts of speech, pinyin, and word family
- Identify the word family for the input word with keys for available forms: 'verb', 'noun', 'adjective', 'adverb'. If a form doesn't exist, omit it.

All definitions and the "zh" field of examples MUST be Traditional Chinese (繁體中文).
Only "ipa", "pos", "word_family" values and the "en" field of examples are English.

The JSON schema must be:
{
  "is_valid": true,
  "ipa": "/ˈɛɡzæmpəl/",
  "definitions": ["例子，樣本", "示範，說明"],
  "pos": ["noun", "verb"],
  "pinyin": ["lì zi", "shì fàn"],
  "examples": [
    { "en": "This is an example.", "zh": "這是一個例子。" }
  ],
  "word_family": { "verb": "exemplify", "noun": "example", "adjective": "exemplary" }
}

OR for invalid/misspelled words:
{
  "is_valid": false,
  "suggestions": ["opportunity", "opportune", "opportunities"]
}"""

_LATIN = re.compile(r'[a-zA-Z]')
_CODE_FENCE = re.compile(r'```(?:json)?\n?')


class LookupFailed(Exception):
    """The provider could not be reached or returned something unusable."""


@dataclass
class InvalidWord:
    suggestions: list = field(default_factory=list)


LookupResult = Union[LexicalData, InvalidWord]


def normalize_headword(text: str) -> str:
    return (text or '').strip().lower()


def parse_vocab_payload(content: str) -> LookupResult:
    """Parse the JSON a language model returned for a word."""
    cleaned = _CODE_FENCE.sub('', content).strip()
    try:
        data = json.loads(cleaned)
    except ValueError as e:
        raise LookupFailed("Failed to parse vocabulary data") from e
    if not isinstance(data, dict):
        raise LookupFailed("Vocabulary data is not an object")
    if data.get('is_valid') is False:
        return InvalidWord(list(data.get('suggestions') or [])[:3])
    lexical = LexicalData.from_dict(data)
    # Definitions must be Chinese; Latin letters mean the model answered in the wrong language
    lexical.definitions = [UNAVAILABLE_DEFINITION if _LATIN.search(d) else d for d in lexical.definitions]
    return lexical


class PerplexityProvider:
    """Looks English words up through the Perplexity chat completions API."""

    def __init__(self, api_key: Optional[str], model: str = 'sonar-pro',
                 client: Optional[httpx.AsyncClient] = None, timeout: float = 30.0):
        self.api_key = api_key
        self.model = model
        self._client = client
        self.timeout = timeout

    async def _post(self, body: dict) -> httpx.Response:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        headers = {'Authorization': f'Bearer {self.api_key}'}
        return await self._client.post(PERPLEXITY_URL, json=body, headers=headers)

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    async def lookup(self, word: str, force_refresh: bool = False) -> LookupResult:
        word = normalize_headword(word)
        if not word:
            raise ValueError("Word is required")
        if not self.api_key:
            raise LookupFailed("PERPLEXITY_API_KEY not configured")
        logger.info("Looking up word: %s%s", word, " (refresh)" if force_refresh else "")

        body = {
            'model': self.model,
            'messages': [
                {'role': 'system', 'content': SYSTEM_PROMPT},
                {'role': 'user', 'content': word},
            ],
        }
        try:
            response = await self._post(body)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as e:
            logger.error("Perplexity API error %s: %s", e.response.status_code, e.response.text)
            raise LookupFailed("Failed to fetch vocabulary data") from e
        except (httpx.HTTPError, ValueError) as e:
            raise LookupFailed(f"Failed to fetch vocabulary data: {e}") from e

        try:
            content = data['choices'][0]['message']['content']
        except (KeyError, IndexError, TypeError):
            content = None
        if not content:
            raise LookupFailed("No content in response")
        return parse_vocab_payload(content)


class ChineseDictionary:
    """Offline provider backed by CC-CEDICT, for Chinese headwords."""

    # Pinyin tone marks mapping
    _TONE_MARKS = {
        'a': 'āáǎà',
        'e': 'ēéěè',
        'i': 'īíǐì',
        'o': 'ōóǒò',
        'u': 'ūúǔù',
        'ü': 'ǖǘǚǜ',
    }

    _VOWELS = 'aeiouü'

    # CC-CEDICT line format: traditional simplified [pinyin] /definition 1/definition 2/
    _LINE = re.compile(r'^(\S+)\s+(\S+)\s+\[(.*?)\]\s+/(.+)/$')

    def __init__(self, db_path='data/dictionary.db', cedict_path=None):
        self.db_path = Path(db_path)
        self.cedict_path = Path(cedict_path) if cedict_path else self.db_path.parent / 'cedict.txt'
        self._ensure_db()

    def _ensure_db(self):
        if self.db_path.exists():
            logger.info("Using existing dictionary database at %s", self.db_path)
            return
        if not self.cedict_path.exists():
            raise FileNotFoundError(f"CC-CEDICT file not found at {self.cedict_path}")
        logger.info("Creating dictionary database at %s", self.db_path)
        self._create_db()
        self._load_cedict()

    def _connect(self):
        return sqlite3.connect(self.db_path)

    def _create_db(self):
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        with closing(self._connect()) as conn, conn:
            conn.execute('''
            CREATE TABLE IF NOT EXISTS entries (
                traditional TEXT,
                simplified TEXT,
                pinyin TEXT,
                definitions TEXT,
                PRIMARY KEY (simplified, traditional)
            )
            ''')
            conn.execute('CREATE INDEX IF NOT EXISTS idx_simplified ON entries(simplified)')
            conn.execute('CREATE INDEX IF NOT EXISTS idx_traditional ON entries(traditional)')

    def _load_cedict(self):
        total = 0
        batch = []
        with closing(self._connect()) as conn, conn, open(self.cedict_path, encoding='utf-8') as f:
            for line in f:
                if line.startswith('#'):
                    continue
                match = self._LINE.match(line.strip())
                if not match:
                    continue
                batch.append(match.groups())
                total += 1
                if len(batch) >= 1000:
                    conn.executemany('INSERT OR REPLACE INTO entries VALUES (?,?,?,?)', batch)
                    batch = []
            if batch:
                conn.executemany('INSERT OR REPLACE INTO entries VALUES (?,?,?,?)', batch)
        logger.info("Loaded %d dictionary entries", total)

    @classmethod
    def _tone_position(cls, syllable: str) -> int:
        """Index of the vowel carrying the tone mark: a or e, the o of ou, else the last vowel."""
        lower = syllable.lower()
        for vowel in ('a', 'e'):
            if vowel in lower:
                return lower.index(vowel)
        if 'ou' in lower:
            return lower.index('o')
        positions = [i for i, c in enumerate(lower) if c in cls._VOWELS]
        return positions[-1] if positions else -1

    @classmethod
    def convert_pinyin(cls, pinyin: str) -> str:
        """Convert numbered pinyin (ni3 hao3) to tone marks (nǐ hǎo)."""
        result = []
        for syllable in pinyin.split():
            digits = re.findall(r'\d', syllable)
            if not digits:
                result.append(syllable)
                continue
            tone = int(digits[0])
            base = re.sub(r'\d', '', syllable).replace('u:', 'ü').replace('v', 'ü')
            # Tone 5 is neutral and carries no mark
            idx = cls._tone_position(base)
            if 1 <= tone <= 4 and idx >= 0:
                vowel = base[idx].lower()
                base = base[:idx] + cls._TONE_MARKS[vowel][tone - 1] + base[idx + 1:]
            result.append(base)
        return ' '.join(result)

    def _entry(self, conn, text):
        return conn.execute('SELECT * FROM entries WHERE simplified=? OR traditional=?', (text, text)).fetchone()

    def _lookup(self, word: str) -> LookupResult:
        with closing(self._connect()) as conn:
            row = self._entry(conn, word)
            if row:
                _, _, pinyin, defs = row
                return LexicalData(definitions=[d for d in defs.split('/') if d.strip()],
                                   pinyin=[self.convert_pinyin(pinyin)])

            components = []
            for token in jieba.lcut(word):
                token_row = self._entry(conn, token)
                if token_row:
                    components.append(token_row)
                    continue
                if len(token) > 1:
                    # Segment unknown to the dictionary: fall back to its characters
                    for char in token:
                        char_row = self._entry(conn, char)
                        if char_row:
                            components.append(char_row)

        if not components:
            return InvalidWord()
        parts = [f"{simp} ({defs.split('/')[0]})" for _, simp, _, defs in components]
        return LexicalData(
            definitions=[f"Word breakdown: {' + '.join(parts)}"],
            pinyin=[' '.join(self.convert_pinyin(p) for _, _, p, _ in components)],
        )

    async def lookup(self, word: str, force_refresh: bool = False) -> LookupResult:
        word = word.strip()
        if not word:
            raise ValueError("Word is required")
        try:
            return self._lookup(word)
        except sqlite3.Error as e:
            raise LookupFailed(f"Dictionary lookup failed: {e}") from e


def get_provider(config):
    if config.provider == 'cedict':
        return ChineseDictionary(config.cedict_db_path)
    return PerplexityProvider(config.perplexity_api_key, model=config.perplexity_model)
