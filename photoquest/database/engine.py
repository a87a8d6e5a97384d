"""
photoquest.database.engine — Database Connection & Async Helper
================================================================

The API and the attempt state machine are ``asyncio`` code, while
SQLAlchemy + psycopg2 is synchronous.  Every DB function in
:mod:`photoquest.services` is a plain sync function taking ``engine`` first;
async callers hand it to a worker thread with :func:`run_db`::

    engine = create_db_engine()          # reads DATABASE_URL from .env
    init_db(engine)                      # CREATE TABLE IF NOT EXISTS + seed

    result = await run_db(check_eligibility, engine, cache, user_id, quest_id)

:func:`run_db_retrying` adds the timeout and retry-once policy for calls
whose target function is idempotent.
"""

from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import Callable
from typing import ParamSpec, TypeVar

from sqlalchemy import Engine, create_engine
from sqlalchemy.exc import OperationalError

from photoquest.database.models import Base
from photoquest.services.retry import with_retry

logger = logging.getLogger(__name__)

P = ParamSpec("P")
T = TypeVar("T")

DEFAULT_DB_TIMEOUT = 10.0


# ---------------------------------------------------------------------------
# Engine creation
# ---------------------------------------------------------------------------
def create_db_engine() -> Engine:
    """Build a SQLAlchemy :class:`Engine` from the ``DATABASE_URL`` env var.

    Raises
    ------
    RuntimeError
        If ``DATABASE_URL`` is not set.
    """
    url = os.getenv("DATABASE_URL")
    if not url:
        raise RuntimeError(
            "DATABASE_URL is not set.  "
            "Copy .env.example → .env and set a valid PostgreSQL URL."
        )

    engine = create_engine(
        url,
        echo=False,
        pool_size=5,
        max_overflow=10,
        pool_pre_ping=True,   # Reconnect stale connections automatically
        pool_timeout=10,      # Fail after 10s instead of hanging forever
        pool_recycle=3600,
    )
    logger.info("Database engine created → %s", engine.url.host)
    return engine


# ---------------------------------------------------------------------------
# Schema initialization
# ---------------------------------------------------------------------------
def init_db(engine: Engine) -> None:
    """Create all tables and seed default settings, achievements and tags.

    Safe to call on every startup.  In production the schema is managed by
    Alembic (``alembic upgrade head``); ``create_all`` covers dev and test.
    """
    Base.metadata.create_all(engine)
    logger.info("Database tables verified / created.")

    from photoquest.database.seed import seed_default_catalog, seed_default_settings

    seed_default_settings(engine)
    seed_default_catalog(engine)


# ---------------------------------------------------------------------------
# Async bridge
# ---------------------------------------------------------------------------
async def run_db(func: Callable[P, T], *args: P.args, **kwargs: P.kwargs) -> T:
    """Run a **synchronous** database function on a background thread.

    Under the hood it calls :func:`asyncio.to_thread`, so the event loop is
    never blocked by a query.
    """
    return await asyncio.to_thread(func, *args, **kwargs)


async def run_db_retrying(
    func: Callable[..., T],
    *args,
    timeout: float = DEFAULT_DB_TIMEOUT,
    **kwargs,
) -> T:
    """:func:`run_db` with a *timeout* and one retry on a dropped connection.

    Only pass functions that are safe to run twice: conditional updates,
    unique-keyed inserts, or reads.
    """
    return await with_retry(
        lambda: run_db(func, *args, **kwargs),
        timeout=timeout,
        transient=(OperationalError, TimeoutError),
        label=getattr(func, "__name__", "db"),
    )
