import logging
import time
from typing import Callable, Optional, Set

from db import VocabularyStore, Word

logger = logging.getLogger(__name__)


class SessionQueue:
    """Serves due words one at a time, never the same word twice per session.

    The `seen` set lives as long as this object; call `reset()` or build a new
    queue to start a fresh session.
    """

    def __init__(self, store: VocabularyStore, batch_size: int = 5,
                 clock: Callable[[], float] = time.time):
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self.store = store
        self.batch_size = batch_size
        self.clock = clock
        self.seen: Set[str] = set()
        self.remaining: Optional[int] = None

    async def next(self) -> Optional[Word]:
        """Return the most overdue unseen word, or None when nothing is due.

        A small batch is fetched rather than a single row so a candidate that
        was marked seen between query and filter does not end the session.
        Store errors propagate and leave `seen` untouched.
        """
        now = self.clock()
        candidates = await self.store.find_due(now, frozenset(self.seen), limit=self.batch_size)
        for word in candidates:
            if word.id not in self.seen:
                self.seen.add(word.id)
                logger.debug("Serving %r (due %.0f)", word.headword, word.schedule.next_review_at)
                return word
        return None

    async def count_remaining(self) -> int:
        """Estimate of due words not yet served this session."""
        self.remaining = await self.store.count_due(self.clock(), frozenset(self.seen))
        return self.remaining

    def mark_seen(self, word_id: str) -> None:
        self.seen.add(word_id)

    def unmark_seen(self, word_id: str) -> None:
        self.seen.discard(word_id)

    def reset(self) -> None:
        self.seen.clear()
        self.remaining = None
