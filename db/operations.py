import logging
import time
import uuid
from contextlib import contextmanager
from typing import Iterable, List, Optional

from .errors import StoreError, StoreUnavailable, WordNotFound
from .models import (
    TABLE_NAME,
    LexicalData,
    ScheduleState,
    Word,
    lexical_columns,
    schedule_columns
)

logger = logging.getLogger(__name__)


@contextmanager
def _backend(action: str):
    """Translate backend failures into StoreUnavailable."""
    try:
        yield
    except StoreError:
        raise
    except Exception as e:
        logger.exception("Store failed to %s", action)
        raise StoreUnavailable(f"Could not {action}") from e


class VocabularyStore:
    """Saved words and their scheduling state, backed by a fastlite database.

    Methods are coroutines so callers treat every store access as a
    suspension point, whatever the backend does underneath.
    """

    def __init__(self, db):
        self.db = db
        self.table = db.t[TABLE_NAME]
        # Databases created before `is_learned` existed fall back to
        # unfiltered due queries. Checked once here, not per query.
        self.supports_learned = 'is_learned' in self.table.columns_dict
        if not self.supports_learned:
            logger.warning("Table %s has no is_learned column; learned words stay in the queue", TABLE_NAME)

    def _due_clause(self, before: float, excluding: Iterable[str]):
        clauses = ['next_review_at <= ?']
        args = [before]
        if self.supports_learned:
            clauses.append('(is_learned IS NULL OR is_learned = 0)')
        excluded = list(excluding)
        if excluded:
            clauses.append(f"id NOT IN ({', '.join('?' for _ in excluded)})")
            args.extend(excluded)
        return ' AND '.join(clauses), args

    async def find_due(self, before: float, excluding: Iterable[str] = (), limit: int = 5) -> List[Word]:
        """Due words not in `excluding`, oldest-due first."""
        where, args = self._due_clause(before, excluding)
        with _backend('fetch due words'):
            rows = self.table(where=where, where_args=args,
                              order_by='next_review_at, created_at', limit=limit)
        return [Word.from_row(row) for row in rows]

    async def count_due(self, before: float, excluding: Iterable[str] = ()) -> int:
        where, args = self._due_clause(before, excluding)
        with _backend('count due words'):
            rows = self.db.q(f"SELECT COUNT(*) AS n FROM {TABLE_NAME} WHERE {where}", args)
        return rows[0]['n'] if rows else 0

    async def get(self, word_id: str) -> Optional[Word]:
        with _backend('read word'):
            if word_id not in self.table:
                return None
            return Word.from_row(self.table[word_id])

    async def find_by_headword(self, headword: str) -> Optional[Word]:
        with _backend('read word'):
            rows = self.table(where='word = ?', where_args=[headword], limit=1)
        return Word.from_row(rows[0]) if rows else None

    async def list_words(self, newest_first: bool = True) -> List[Word]:
        """All saved words ordered by creation time, for deck views."""
        order = 'created_at DESC' if newest_first else 'created_at'
        with _backend('list words'):
            rows = self.table(order_by=order)
        return [Word.from_row(row) for row in rows]

    async def create(self, headword: str, lexical_data: LexicalData,
                     state: Optional[ScheduleState] = None, now: Optional[float] = None) -> Word:
        now = time.time() if now is None else now
        state = state or ScheduleState.initial(now)
        word = Word(id=str(uuid.uuid4()), headword=headword, lexical_data=lexical_data,
                    schedule=state, created_at=now)
        row = {'id': word.id, 'word': headword, 'created_at': now,
               **lexical_columns(lexical_data), **schedule_columns(state)}
        if not self.supports_learned:
            row.pop('is_learned')
        with _backend('save word'):
            self.table.insert(row)
        logger.info("Saved word %r (%s)", headword, word.id)
        return word

    async def update_schedule(self, word_id: str, state: ScheduleState) -> None:
        """Write the scheduling fields of one word, leaving everything else alone."""
        fields = schedule_columns(state)
        if not self.supports_learned:
            fields.pop('is_learned')
        with _backend('update schedule'):
            if word_id not in self.table:
                raise WordNotFound(word_id)
            self.table.update(fields, word_id)

    async def move_to_end(self, word_id: str, now: Optional[float] = None) -> None:
        """Push a word to the end of creation-ordered lists. Scheduling is untouched."""
        with _backend('move word'):
            if word_id not in self.table:
                raise WordNotFound(word_id)
            self.table.update({'created_at': time.time() if now is None else now}, word_id)

    async def set_learned(self, word_id: str, learned: bool = True) -> None:
        if not self.supports_learned:
            raise StoreError("This database does not track learned words")
        with _backend('mark word learned'):
            if word_id not in self.table:
                raise WordNotFound(word_id)
            self.table.update({'is_learned': learned}, word_id)

    async def delete(self, word_id: str) -> None:
        with _backend('delete word'):
            if word_id in self.table:
                self.table.delete(word_id)
                logger.info("Deleted word %s", word_id)
