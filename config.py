import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

SCHEDULERS = ('sm2', 'skip')
PROVIDERS = ('perplexity', 'cedict')


@dataclass
class AppConfig:
    db_path: str = 'data/vocabulary.db'
    scheduler: str = 'sm2'
    provider: str = 'perplexity'
    perplexity_api_key: Optional[str] = None
    perplexity_model: str = 'sonar-pro'
    cedict_db_path: str = 'data/dictionary.db'
    queue_batch_size: int = 5
    log_level: str = 'INFO'
    session_secret: Optional[str] = None

    def __post_init__(self):
        if self.scheduler not in SCHEDULERS:
            raise ValueError(f"VOCAB_SCHEDULER must be one of {SCHEDULERS}, got {self.scheduler!r}")
        if self.provider not in PROVIDERS:
            raise ValueError(f"VOCAB_PROVIDER must be one of {PROVIDERS}, got {self.provider!r}")
        if self.queue_batch_size < 1:
            raise ValueError("VOCAB_QUEUE_BATCH must be at least 1")


def load_config(env_file: Optional[str] = None) -> AppConfig:
    """Build the app configuration from the environment (and a .env file if present)."""
    load_dotenv(env_file)
    return AppConfig(
        db_path=os.getenv('VOCAB_DB_PATH', 'data/vocabulary.db'),
        scheduler=os.getenv('VOCAB_SCHEDULER', 'sm2').lower(),
        provider=os.getenv('VOCAB_PROVIDER', 'perplexity').lower(),
        perplexity_api_key=os.getenv('PERPLEXITY_API_KEY') or None,
        perplexity_model=os.getenv('PERPLEXITY_MODEL', 'sonar-pro'),
        cedict_db_path=os.getenv('VOCAB_CEDICT_DB', 'data/dictionary.db'),
        queue_batch_size=int(os.getenv('VOCAB_QUEUE_BATCH', '5')),
        log_level=os.getenv('VOCAB_LOG_LEVEL', 'INFO').upper(),
        session_secret=os.getenv('VOCAB_SESSION_SECRET') or None,
    )
