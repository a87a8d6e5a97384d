"""
photoquest.services.retry — Timeout + Retry-Once Helper
========================================================

Every suspension point in the quest core (DB call, object-store I/O,
classifier request) runs under a timeout and is retried once when the
failure looks transient.  Non-transient errors propagate immediately.

Usage::

    result = await with_retry(
        lambda: client.post(url, json=payload),
        timeout=10.0,
        transient=(httpx.TimeoutException, httpx.NetworkError),
        label="classifier",
    )
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_TRANSIENT: tuple[type[BaseException], ...] = (TimeoutError, ConnectionError)


async def with_retry(
    factory: Callable[[], Awaitable[T]],
    *,
    timeout: float | None = 10.0,
    retries: int = 1,
    transient: tuple[type[BaseException], ...] = DEFAULT_TRANSIENT,
    backoff: float = 0.2,
    label: str = "operation",
) -> T:
    """Await ``factory()`` with *timeout*; retry up to *retries* times on
    *transient* errors.

    *factory* must build a fresh awaitable per call (a coroutine can only be
    awaited once).  A timeout surfaces as :class:`TimeoutError`, which is
    transient unless the caller narrows *transient*.
    """
    attempt = 0
    while True:
        try:
            if timeout is None:
                return await factory()
            return await asyncio.wait_for(factory(), timeout)
        except transient as exc:
            if attempt >= retries:
                logger.warning(
                    "%s failed after %d attempt(s): %s", label, attempt + 1, exc,
                )
                raise
            attempt += 1
            logger.info("%s hit transient error (%s); retrying", label, exc)
            await asyncio.sleep(backoff * attempt)
