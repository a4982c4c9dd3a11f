"""
db.py
=====
Centralized database setup for the SQL-backed repositories.

Responsibilities
---------------
- Build a SQLAlchemy Engine from `Settings.database_url`.
  * In Docker/production this is typically Postgres: postgresql+psycopg://app:app@db:5432/app
  * Locally/tests the default is SQLite: sqlite:///./customer_intel.db
- Provide a declarative `Base` for ORM models to inherit from.
- Provide `make_session_factory()` so repositories own their session lifecycle
  (one short-lived session per read or write).

The in-memory repositories never touch this module; it is only imported when
`STORAGE_BACKEND=sql` or when a test builds SQL repositories explicitly.
"""

from __future__ import annotations

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker

from .config import get_settings


# -----------------------------------------------------------------------------
# Engine
# -----------------------------------------------------------------------------
def make_engine(url: str | None = None, echo: bool | None = None) -> Engine:
    """
    Build a SQLAlchemy Engine with sensible defaults for Postgres/SQLite.

    - pool_pre_ping=True to avoid stale connections (esp. with Postgres).
    - SQLite needs `check_same_thread=False` when used with FastAPI/uvicorn.
    """
    settings = get_settings()
    url = url or settings.database_url
    echo_sql = settings.echo_sql if echo is None else echo
    connect_args = {}

    if url.startswith("sqlite:"):
        # When using SQLite in a multi-threaded ASGI app, this flag is required.
        connect_args["check_same_thread"] = False

    return create_engine(url, echo=echo_sql, pool_pre_ping=True, connect_args=connect_args)


# -----------------------------------------------------------------------------
# Declarative Base (imported by models.py)
# -----------------------------------------------------------------------------
Base = declarative_base()


# -----------------------------------------------------------------------------
# Session factory
# -----------------------------------------------------------------------------
def make_session_factory(engine: Engine) -> sessionmaker:
    """
    Create tables (idempotent) and return a session factory bound to `engine`.

    Usage:
        factory = make_session_factory(make_engine())
        with factory() as db:
            db.query(UsageEventRecord).count()
    """
    # models must be imported so their tables are registered on Base.metadata
    from . import models  # noqa: F401

    Base.metadata.create_all(bind=engine)
    return sessionmaker(autocommit=False, autoflush=False, bind=engine, expire_on_commit=False)
