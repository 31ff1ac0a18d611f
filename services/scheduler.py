"""Review scheduling policies.

A policy maps the current schedule of a word plus the user's rating to the
next schedule. Policies are pure: the caller persists the result when
`persists(rating)` says so.
"""
import logging
import math
from dataclasses import replace
from enum import Enum
from typing import Optional, Tuple

from db.models import (
    DEFAULT_INTERVAL_DAYS,
    MAX_EASE_FACTOR,
    MIN_EASE_FACTOR,
    SECONDS_PER_DAY,
    ScheduleState
)

logger = logging.getLogger(__name__)


class Rating(str, Enum):
    AGAIN = 'again'
    DONE = 'done'
    GOOD = 'good'
    EASY = 'easy'


class SchedulingPolicy:
    name = ''
    ratings: Tuple[Rating, ...] = ()

    def parse_rating(self, value) -> Rating:
        """Coerce a raw rating value, rejecting ones this policy does not offer."""
        try:
            rating = Rating(value)
        except ValueError:
            raise ValueError(f"Unknown rating {value!r}") from None
        if rating not in self.ratings:
            raise ValueError(f"Rating {rating.value!r} is not used by the {self.name} policy")
        return rating

    def persists(self, rating: Rating) -> bool:
        raise NotImplementedError

    def review(self, state: ScheduleState, rating: Rating, now: float) -> ScheduleState:
        raise NotImplementedError


class SkipPolicy(SchedulingPolicy):
    """Two-outcome flow: neither rating reschedules.

    `again` and `done` only take the card out of the current session. A word
    rated `again` keeps its due time and comes back at the same priority next
    session, which is not standard spaced repetition.
    """
    name = 'skip'
    ratings = (Rating.AGAIN, Rating.DONE)

    def persists(self, rating: Rating) -> bool:
        return False

    def review(self, state: ScheduleState, rating: Rating, now: float) -> ScheduleState:
        self.parse_rating(rating)
        return state


class SM2Policy(SchedulingPolicy):
    """Three-outcome SuperMemo 2 variant.

    again: interval resets to one day, ease drops by 0.2
    good:  interval grows by the ease factor
    easy:  interval grows by ease * 1.5, ease rises by 0.1

    The next review lands `ceil(interval)` whole days after `now`.
    """
    name = 'sm2'
    ratings = (Rating.AGAIN, Rating.GOOD, Rating.EASY)

    def __init__(self, min_ease: float = MIN_EASE_FACTOR, max_ease: float = MAX_EASE_FACTOR,
                 ease_penalty: float = 0.2, ease_bonus: float = 0.1, easy_multiplier: float = 1.5):
        self.min_ease = min_ease
        self.max_ease = max_ease
        self.ease_penalty = ease_penalty
        self.ease_bonus = ease_bonus
        self.easy_multiplier = easy_multiplier

    def persists(self, rating: Rating) -> bool:
        return True

    def _clamp(self, ease: float) -> float:
        return min(self.max_ease, max(self.min_ease, ease))

    def review(self, state: ScheduleState, rating: Rating, now: float) -> ScheduleState:
        rating = self.parse_rating(rating)
        state = state.repaired()
        interval = state.interval_days
        ease = self._clamp(state.ease_factor)

        if rating is Rating.AGAIN:
            interval = DEFAULT_INTERVAL_DAYS
            ease = self._clamp(ease - self.ease_penalty)
        elif rating is Rating.GOOD:
            interval = interval * ease
        else:
            interval = interval * ease * self.easy_multiplier
            ease = self._clamp(ease + self.ease_bonus)

        next_review_at = now + math.ceil(interval) * SECONDS_PER_DAY
        logger.debug("sm2 %s: interval %.2f -> %.2f, ease %.2f -> %.2f",
                     rating.value, state.interval_days, interval, state.ease_factor, ease)
        return replace(state, interval_days=interval, ease_factor=ease, next_review_at=next_review_at)


POLICIES = {
    SkipPolicy.name: SkipPolicy,
    SM2Policy.name: SM2Policy,
}


def get_policy(name: Optional[str]) -> SchedulingPolicy:
    try:
        return POLICIES[name or SM2Policy.name]()
    except KeyError:
        raise ValueError(f"Unknown scheduling policy {name!r}; expected one of {sorted(POLICIES)}") from None
