import json
import logging
import math
import time
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Optional

from fasthtml.common import database

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 86400

DEFAULT_INTERVAL_DAYS = 1.0
DEFAULT_EASE_FACTOR = 2.5
MIN_EASE_FACTOR = 1.3
MAX_EASE_FACTOR = 2.8

TABLE_NAME = 'vocabulary'


@dataclass
class LexicalData:
    """Lexical payload returned by a vocabulary provider. Opaque to scheduling."""
    definitions: list = field(default_factory=list)
    pos: list = field(default_factory=list)
    pinyin: list = field(default_factory=list)
    examples: list = field(default_factory=list)  # [{'en': ..., 'zh': ...}]
    ipa: str = ''
    word_family: dict = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict) -> 'LexicalData':
        examples = []
        for ex in data.get('examples') or []:
            if isinstance(ex, dict):
                examples.append({'en': ex.get('en') or '', 'zh': ex.get('zh') or ''})
        return cls(
            definitions=list(data.get('definitions') or []),
            pos=list(data.get('pos') or []),
            pinyin=list(data.get('pinyin') or []),
            examples=examples,
            ipa=data.get('ipa') or '',
            word_family=dict(data.get('word_family') or {}),
        )


@dataclass(frozen=True)
class ScheduleState:
    interval_days: float = DEFAULT_INTERVAL_DAYS
    ease_factor: float = DEFAULT_EASE_FACTOR
    next_review_at: float = 0.0
    is_learned: bool = False

    @classmethod
    def initial(cls, now: Optional[float] = None) -> 'ScheduleState':
        """State of a freshly saved word: due immediately."""
        return cls(next_review_at=time.time() if now is None else now)

    def is_due(self, now: float) -> bool:
        return not self.is_learned and now >= self.next_review_at

    def repaired(self) -> 'ScheduleState':
        """Return a copy with ease clamped and a usable interval.

        Stored rows can carry values outside the expected domain (hand edits,
        old schema defaults). These are recoverable, so they are fixed up here
        instead of being rejected.
        """
        interval = self.interval_days
        ease = self.ease_factor
        if interval is None or math.isnan(interval) or interval <= 0:
            interval = DEFAULT_INTERVAL_DAYS
        if ease is None or math.isnan(ease):
            ease = DEFAULT_EASE_FACTOR
        ease = min(MAX_EASE_FACTOR, max(MIN_EASE_FACTOR, ease))
        if interval != self.interval_days or ease != self.ease_factor:
            logger.warning("Repaired schedule state interval=%r ease=%r -> interval=%r ease=%r",
                           self.interval_days, self.ease_factor, interval, ease)
            return replace(self, interval_days=interval, ease_factor=ease)
        return self


@dataclass
class Word:
    id: str
    headword: str
    lexical_data: LexicalData
    schedule: ScheduleState
    created_at: float

    @classmethod
    def from_row(cls, row: dict) -> 'Word':
        lexical = LexicalData.from_dict({
            'definitions': _loads(row.get('definitions'), []),
            'pos': _loads(row.get('pos'), []),
            'pinyin': _loads(row.get('pinyin'), []),
            'examples': _loads(row.get('examples'), []),
            'word_family': _loads(row.get('word_family'), {}),
            'ipa': row.get('ipa'),
        })
        schedule = ScheduleState(
            interval_days=row.get('interval_days') if row.get('interval_days') is not None else DEFAULT_INTERVAL_DAYS,
            ease_factor=row.get('ease_factor') if row.get('ease_factor') is not None else DEFAULT_EASE_FACTOR,
            next_review_at=row.get('next_review_at') or 0.0,
            # Rows written before the column existed have NULL here
            is_learned=bool(row.get('is_learned')),
        )
        return cls(
            id=row['id'],
            headword=row['word'],
            lexical_data=lexical,
            schedule=schedule,
            created_at=row.get('created_at') or 0.0,
        )


def lexical_columns(lexical: LexicalData) -> dict:
    return {
        'definitions': json.dumps(lexical.definitions, ensure_ascii=False),
        'pos': json.dumps(lexical.pos, ensure_ascii=False),
        'pinyin': json.dumps(lexical.pinyin, ensure_ascii=False),
        'examples': json.dumps(lexical.examples, ensure_ascii=False),
        'word_family': json.dumps(lexical.word_family, ensure_ascii=False),
        'ipa': lexical.ipa,
    }


def schedule_columns(state: ScheduleState) -> dict:
    return {
        'interval_days': state.interval_days,
        'ease_factor': state.ease_factor,
        'next_review_at': state.next_review_at,
        'is_learned': state.is_learned,
    }


def _loads(value, default):
    if not value:
        return default
    try:
        return json.loads(value)
    except (TypeError, ValueError):
        logger.warning("Ignoring malformed JSON column value: %r", value)
        return default


def init_db(path='data/vocabulary.db'):
    """Open the database at `path` and create the vocabulary table if needed."""
    if str(path) != ':memory:':
        Path(path).parent.mkdir(parents=True, exist_ok=True)
    db = database(str(path))
    vocabulary = db.t[TABLE_NAME]
    if vocabulary not in db.t:
        vocabulary.create(
            id=str,
            word=str,            # Normalized headword
            definitions=str,     # JSON list
            pos=str,             # JSON list
            pinyin=str,          # JSON list
            examples=str,        # JSON list of {en, zh}
            word_family=str,     # JSON object
            ipa=str,
            interval_days=float,
            ease_factor=float,
            next_review_at=float,
            is_learned=bool,
            created_at=float,
            pk='id'
        )
    return db
