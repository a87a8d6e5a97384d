"""
photoquest.engine.cache — In-Memory Settings Cache
===================================================

Gameplay settings are read on every eligibility check and settlement, so
they are cached in memory and reloaded explicitly (:meth:`ConfigCache.refresh`)
after an operator edit through :mod:`photoquest.services.settings_service`.

Only configuration lives here.  Achievement and tag definitions, attempt
counters and user progression are always queried fresh.
"""

from __future__ import annotations

import json
import logging
import threading
from typing import TYPE_CHECKING, Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from photoquest.database.models import Setting

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = logging.getLogger(__name__)


class ConfigCache:
    """Thread-safe cache of the ``settings`` table.

    Usage:
        cache = ConfigCache(engine)
        cache.load_all()

        quota = cache.get_int("quests.max_daily_quests", default=3)
    """

    def __init__(self, engine: Engine) -> None:
        self._engine = engine
        self._lock = threading.Lock()
        # key → parsed JSON value
        self._settings: dict[str, Any] = {}

    # -------------------------------------------------------------------
    # Loading (synchronous — called via run_db or directly)
    # -------------------------------------------------------------------
    def load_all(self) -> None:
        """Load all settings from the DB.  Call on startup."""
        self._load_settings()
        logger.info("ConfigCache loaded: %d settings", len(self._settings))

    def refresh(self) -> None:
        self._load_settings()

    def _load_settings(self) -> None:
        with Session(self._engine) as session:
            rows = session.scalars(select(Setting)).all()
            parsed: dict[str, Any] = {}
            for row in rows:
                try:
                    parsed[row.key] = json.loads(row.value_json)
                except (json.JSONDecodeError, TypeError):
                    parsed[row.key] = row.value_json

        with self._lock:
            self._settings = parsed

    # -------------------------------------------------------------------
    # Typed setting accessors (thread-safe)
    # -------------------------------------------------------------------
    def get_setting(self, key: str, default: Any = None) -> Any:
        """Return the parsed JSON value for *key*, or *default*."""
        with self._lock:
            return self._settings.get(key, default)

    def get_int(self, key: str, default: int = 0) -> int:
        val = self.get_setting(key)
        if val is None:
            return default
        try:
            return int(val)
        except (TypeError, ValueError):
            return default

    def get_float(self, key: str, default: float = 0.0) -> float:
        val = self.get_setting(key)
        if val is None:
            return default
        try:
            return float(val)
        except (TypeError, ValueError):
            return default

    def get_bool(self, key: str, default: bool = False) -> bool:
        val = self.get_setting(key)
        if val is None:
            return default
        return bool(val)

    def get_str(self, key: str, default: str = "") -> str:
        val = self.get_setting(key)
        if val is None or val == "":
            return default
        return str(val)
