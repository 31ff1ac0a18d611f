from .errors import StoreError, StoreUnavailable, WordNotFound
from .models import (
    SECONDS_PER_DAY,
    LexicalData,
    ScheduleState,
    Word,
    init_db
)
from .operations import VocabularyStore
