from unittest.mock import MagicMock

import pytest
from fasthtml.common import database

from db import LexicalData, ScheduleState, StoreError, StoreUnavailable, VocabularyStore, WordNotFound

NOW = 1_700_000_000.0


def lexical(definition='例子'):
    return LexicalData(
        definitions=[definition],
        pos=['noun'],
        pinyin=['lì zi'],
        examples=[{'en': 'This is an example.', 'zh': '這是一個例子。'}],
        ipa='/ɪɡˈzæmpəl/',
        word_family={'verb': 'exemplify'},
    )


@pytest.mark.asyncio
async def test_create_uses_default_schedule(store):
    word = await store.create('example', lexical(), now=NOW)
    assert word.schedule == ScheduleState(interval_days=1.0, ease_factor=2.5, next_review_at=NOW, is_learned=False)

    loaded = await store.get(word.id)
    assert loaded.headword == 'example'
    assert loaded.created_at == NOW
    assert loaded.schedule == word.schedule
    assert loaded.lexical_data == word.lexical_data


@pytest.mark.asyncio
async def test_get_missing_returns_none(store):
    assert await store.get('nope') is None


@pytest.mark.asyncio
async def test_find_by_headword(store):
    word = await store.create('apple', lexical('蘋果'), now=NOW)
    found = await store.find_by_headword('apple')
    assert found.id == word.id
    assert await store.find_by_headword('pear') is None


@pytest.mark.asyncio
async def test_find_due_orders_and_filters(store):
    late = await store.create('late', lexical(), now=NOW)
    early = await store.create('early', lexical(), now=NOW)
    future = await store.create('future', lexical(), now=NOW)
    learned = await store.create('learned', lexical(), now=NOW)
    await store.update_schedule(late.id, ScheduleState(next_review_at=NOW - 10))
    await store.update_schedule(early.id, ScheduleState(next_review_at=NOW - 100))
    await store.update_schedule(future.id, ScheduleState(next_review_at=NOW + 100))
    await store.set_learned(learned.id)

    due = await store.find_due(NOW, limit=10)
    assert [w.headword for w in due] == ['early', 'late']
    assert await store.count_due(NOW) == 2

    due = await store.find_due(NOW, excluding={early.id}, limit=10)
    assert [w.headword for w in due] == ['late']
    assert await store.count_due(NOW, excluding={early.id}) == 1


@pytest.mark.asyncio
async def test_find_due_ties_break_by_creation(store):
    for i, name in enumerate(['first', 'second', 'third']):
        await store.create(name, lexical(), state=ScheduleState(next_review_at=NOW), now=NOW - 100 + i)
    due = await store.find_due(NOW, limit=10)
    assert [w.headword for w in due] == ['first', 'second', 'third']


@pytest.mark.asyncio
async def test_find_due_respects_limit(store):
    for i in range(4):
        await store.create(f'w{i}', lexical(), now=NOW + i)
    assert len(await store.find_due(NOW + 10, limit=2)) == 2


@pytest.mark.asyncio
async def test_move_to_end_keeps_schedule(store):
    first = await store.create('first', lexical(), now=NOW)
    await store.create('second', lexical(), now=NOW + 1)

    await store.move_to_end(first.id, now=NOW + 50)

    moved = await store.get(first.id)
    assert moved.created_at == NOW + 50
    assert moved.schedule == first.schedule
    assert [w.headword for w in await store.list_words()] == ['first', 'second']
    assert [w.headword for w in await store.list_words(newest_first=False)] == ['second', 'first']


@pytest.mark.asyncio
async def test_update_missing_word(store):
    with pytest.raises(WordNotFound):
        await store.update_schedule('missing', ScheduleState())
    with pytest.raises(WordNotFound):
        await store.move_to_end('missing')


@pytest.mark.asyncio
async def test_delete(store):
    word = await store.create('gone', lexical(), now=NOW)
    await store.delete(word.id)
    assert await store.get(word.id) is None
    assert await store.count_due(NOW) == 0
    # Deleting twice is harmless
    await store.delete(word.id)


@pytest.mark.asyncio
async def test_legacy_table_without_learned_column():
    db = database(':memory:')
    db.t.vocabulary.create(
        id=str, word=str, definitions=str, pos=str, pinyin=str, examples=str,
        word_family=str, ipa=str, interval_days=float, ease_factor=float,
        next_review_at=float, created_at=float, pk='id'
    )
    store = VocabularyStore(db)
    assert store.supports_learned is False

    word = await store.create('old', lexical(), now=NOW)
    await store.update_schedule(word.id, ScheduleState(next_review_at=NOW - 1))
    assert [w.id for w in await store.find_due(NOW)] == [word.id]
    assert (await store.get(word.id)).schedule.is_learned is False
    with pytest.raises(StoreError):
        await store.set_learned(word.id)


@pytest.mark.asyncio
async def test_backend_failure_is_unavailable(store):
    store.db = MagicMock()
    store.db.q.side_effect = RuntimeError("disk I/O error")
    with pytest.raises(StoreUnavailable):
        await store.count_due(NOW)
