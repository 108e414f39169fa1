"""
SQLAlchemy engine and session factory for DevHub services.
The hub service and the registry import from here.

DATABASE_URL defaults to a local SQLite file next to the working directory.
Point it at PostgreSQL (postgresql://...) for shared deployments.
"""

import os
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base

DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite:///./devhub.db")

_engine_kwargs: dict = {"pool_pre_ping": True}
if DATABASE_URL.startswith("sqlite"):
    # the reconciliation loop and request handlers share the file from different threads
    _engine_kwargs["connect_args"] = {"check_same_thread": False}
else:
    _engine_kwargs.update(pool_size=5, max_overflow=10)

engine = create_engine(DATABASE_URL, **_engine_kwargs)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db():
    """FastAPI dependency: yields a DB session and closes it when done."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def create_all_tables() -> None:
    """Create all ORM tables. Called at service startup."""
    from devhub.services.shared import models  # noqa: F401 - ensures models are registered
    Base.metadata.create_all(bind=engine)
