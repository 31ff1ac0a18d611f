import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional, Protocol

from db import LexicalData, StoreUnavailable, VocabularyStore, Word
from .queue import SessionQueue
from .scheduler import Rating, SchedulingPolicy

logger = logging.getLogger(__name__)


class SessionStateError(Exception):
    """An action arrived that the session cannot take in its current state."""


class SessionState(str, Enum):
    IDLE = 'idle'
    LOADING = 'loading'
    PRESENTING = 'presenting'
    RATING_RECEIVED = 'rating_received'
    EMPTY = 'empty'
    CLOSED = 'closed'


@dataclass
class Card:
    word_id: str
    headword: str
    lexical_data: LexicalData

    @classmethod
    def from_word(cls, word: Word) -> 'Card':
        return cls(word_id=word.id, headword=word.headword, lexical_data=word.lexical_data)


class Presenter(Protocol):
    async def present(self, card: Card, remaining: int) -> Optional[Rating]:
        """Show a card and return the user's rating, or None if they left."""

    async def complete(self) -> None:
        """Tell the user there is nothing left to review."""


class ReviewSession:
    """Drives one review session: fetch, present, rate, persist, repeat."""

    def __init__(self, store: VocabularyStore, policy: SchedulingPolicy,
                 queue: Optional[SessionQueue] = None, clock: Callable[[], float] = time.time):
        self.store = store
        self.policy = policy
        self.clock = clock
        self.queue = queue or SessionQueue(store, clock=clock)
        self.state = SessionState.IDLE
        self.current: Optional[Word] = None
        self.reviewed = 0

    @property
    def card(self) -> Optional[Card]:
        return Card.from_word(self.current) if self.current else None

    @property
    def busy(self) -> bool:
        return self.state in (SessionState.LOADING, SessionState.RATING_RECEIVED)

    @property
    def remaining(self) -> int:
        """Cards left in this session, including the one on screen."""
        queued = self.queue.remaining or 0
        return queued + (1 if self.state == SessionState.PRESENTING else 0)

    async def start(self) -> Optional[Card]:
        if self.state != SessionState.IDLE:
            raise SessionStateError(f"Session already started ({self.state.value})")
        logger.info("Review session started with %s policy", self.policy.name)
        return await self.advance()

    async def advance(self) -> Optional[Card]:
        """Load the next due card. Returns None once the queue is empty."""
        if self.state in (SessionState.CLOSED, SessionState.PRESENTING, SessionState.LOADING):
            raise SessionStateError(f"Cannot load a card while {self.state.value}")
        previous = self.state
        self.state = SessionState.LOADING
        word = None
        try:
            word = await self.queue.next()
            await self.queue.count_remaining()
        except StoreUnavailable:
            # The card was never shown; it stays eligible for the retry
            if word is not None:
                self.queue.unmark_seen(word.id)
            self.state = previous
            raise
        self.current = word
        if word is None:
            self.state = SessionState.EMPTY
            logger.info("Review session complete after %d cards", self.reviewed)
            return None
        self.state = SessionState.PRESENTING
        return Card.from_word(word)

    async def rate(self, rating) -> Optional[Card]:
        """Apply a rating to the card on screen and load the next one."""
        if self.state != SessionState.PRESENTING or self.current is None:
            raise SessionStateError(f"No card awaiting a rating ({self.state.value})")
        rating = self.policy.parse_rating(rating)
        word = self.current
        self.state = SessionState.RATING_RECEIVED
        self.queue.mark_seen(word.id)

        if self.policy.persists(rating):
            new_state = self.policy.review(word.schedule, rating, self.clock())
            try:
                await self.store.update_schedule(word.id, new_state)
            except StoreUnavailable:
                self.state = SessionState.PRESENTING
                raise
            word.schedule = new_state
        logger.debug("Rated %r %s", word.headword, rating.value)
        self.reviewed += 1
        self.current = None
        return await self.advance()

    async def recheck(self) -> Optional[Card]:
        if self.state != SessionState.EMPTY:
            raise SessionStateError(f"Nothing to re-check while {self.state.value}")
        return await self.advance()

    def close(self) -> None:
        """Abandon the session. No further cards will be loaded."""
        self.state = SessionState.CLOSED
        self.current = None

    def reset(self) -> None:
        self.queue.reset()
        self.state = SessionState.IDLE
        self.current = None
        self.reviewed = 0

    async def run(self, presenter: Presenter) -> int:
        """Review until the queue is empty or the presenter walks away.

        Returns the number of cards rated.
        """
        card = await self.start() if self.state == SessionState.IDLE else self.card
        while card is not None:
            rating = await presenter.present(card, self.remaining)
            if rating is None:
                self.close()
                return self.reviewed
            card = await self.rate(rating)
        if self.state == SessionState.EMPTY:
            await presenter.complete()
        return self.reviewed
