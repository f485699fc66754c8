import os
from functools import lru_cache

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

DEFAULT_DATABASE_URL = "sqlite:///questlog.db"


@lru_cache(maxsize=1)
def get_session_factory() -> sessionmaker:
    """Session factory for ``QUESTLOG_DATABASE_URL``, built on first use."""
    database_url = os.getenv("QUESTLOG_DATABASE_URL", DEFAULT_DATABASE_URL)
    engine = create_engine(database_url, echo=False, future=True)
    return sessionmaker(bind=engine, autoflush=False)
