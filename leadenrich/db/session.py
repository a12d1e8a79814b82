"""Engine and session factory for the lead and audit tables."""

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from leadenrich.config import settings


def build_engine(url: str):
    # SQLite (local runs, tests) is shared across the stores' worker threads.
    if url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
        return create_engine(url, **kwargs)
    return create_engine(url, pool_pre_ping=True)


def build_session_factory(url: str) -> sessionmaker:
    return sessionmaker(bind=build_engine(url))


engine = build_engine(settings.DATABASE_URL)
SessionLocal = sessionmaker(bind=engine)
