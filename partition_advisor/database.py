# partition_advisor/database.py
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from partition_advisor.config import Settings

settings = Settings.from_env()


def make_engine(url: str) -> Engine:
    """Engine for the task store or a warehouse; SQLite gets thread-safe settings for background tasks."""
    if url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
        return create_engine(url, **kwargs)
    return create_engine(url, pool_pre_ping=True)


engine = make_engine(settings.database_url)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def create_db_and_tables(bind: Engine = None):
    # Models must be imported so their tables are registered on Base.metadata
    from partition_advisor import models  # noqa: F401
    Base.metadata.create_all(bind=bind or engine)
