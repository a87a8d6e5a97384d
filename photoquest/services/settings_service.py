"""
photoquest.services.settings_service — Settings CRUD
=====================================================

Provides typed read/write access to the ``settings`` table.  Writers pass
the live :class:`~photoquest.engine.cache.ConfigCache` so it reloads once
the change is committed.
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from photoquest.database.models import AdminActionType, AdminLog, Setting

if TYPE_CHECKING:
    from sqlalchemy import Engine

    from photoquest.engine.cache import ConfigCache

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------

def _parse(value_json: str | None) -> Any:
    if value_json is None:
        return None
    try:
        return json.loads(value_json)
    except (json.JSONDecodeError, TypeError):
        return value_json


def get_setting(engine: Engine, key: str) -> dict | None:
    """Fetch a single setting by key, returned as a plain dict."""
    with Session(engine) as session:
        row = session.get(Setting, key)
        if row is None:
            return None
        return {
            "key": row.key,
            "value": _parse(row.value_json),
            "category": row.category,
            "description": row.description,
        }


def get_all_settings(engine: Engine) -> list[dict]:
    """Every setting, ordered by category then key."""
    with Session(engine) as session:
        rows = session.scalars(
            select(Setting).order_by(Setting.category, Setting.key)
        ).all()
        return [
            {
                "key": r.key,
                "value": _parse(r.value_json),
                "category": r.category,
                "description": r.description,
                "updated_at": r.updated_at.isoformat() if r.updated_at else None,
            }
            for r in rows
        ]


# ---------------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------------

def update_settings(
    engine: Engine,
    items: list[dict],
    *,
    actor_id: str,
    cache: ConfigCache | None = None,
) -> int:
    """Upsert many settings at once.

    Each dict needs ``key`` and ``value``; ``category`` and ``description``
    are optional.  Each real change is recorded in ``admin_log`` with
    before/after snapshots.  Returns the number of rows touched.
    """
    count = 0
    with Session(engine) as session:
        for item in items:
            key = item["key"]
            existing = session.get(Setting, key)
            before = (
                {"value": _parse(existing.value_json), "category": existing.category}
                if existing else None
            )

            if existing:
                existing.value_json = json.dumps(item["value"])
                if item.get("category"):
                    existing.category = item["category"]
                if item.get("description") is not None:
                    existing.description = item["description"]
            else:
                existing = Setting(
                    key=key,
                    value_json=json.dumps(item["value"]),
                    category=item.get("category") or "general",
                    description=item.get("description"),
                )
                session.add(existing)

            after = {"value": item["value"], "category": existing.category}
            if before != after:
                session.add(AdminLog(
                    actor_id=actor_id,
                    action_type=(
                        AdminActionType.UPDATE.value if before else AdminActionType.CREATE.value
                    ),
                    target_table="settings",
                    target_id=key,
                    after_snapshot={"before": before, "after": after},
                ))
            count += 1
        session.commit()

    if cache is not None:
        cache.refresh()
    logger.info("%d setting(s) updated by %s", count, actor_id)
    return count
