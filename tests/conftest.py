import os

# Keep tests off the real data directory and the generated .sesskey file
os.environ.setdefault("VOCAB_DB_PATH", ":memory:")
os.environ.setdefault("VOCAB_SESSION_SECRET", "test-secret")

import pytest

from db import VocabularyStore, init_db

NOW = 1_700_000_000.0


class FakeClock:
    def __init__(self, now=NOW):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture
def store():
    return VocabularyStore(init_db(":memory:"))


@pytest.fixture
def clock():
    return FakeClock()
