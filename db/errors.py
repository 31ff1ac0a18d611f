class StoreError(Exception):
    """Base class for persistent store failures."""


class StoreUnavailable(StoreError):
    """A read or write against the store failed. Safe to retry."""


class WordNotFound(StoreError):
    def __init__(self, word_id: str):
        super().__init__(f"No saved word with id {word_id!r}")
        self.word_id = word_id
