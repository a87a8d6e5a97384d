"""
tests/test_settings.py — Settings Service Tests
================================================
"""

from __future__ import annotations

from sqlalchemy.orm import Session

from photoquest.database.models import AdminLog
from photoquest.database.seed import DEFAULT_SETTINGS, seed_default_settings
from photoquest.services.settings_service import get_all_settings, get_setting, update_settings


class TestReads:
    def test_get_setting(self, engine):
        setting = get_setting(engine, "quests.max_daily_quests")
        assert setting["value"] == 3
        assert setting["category"] == "quests"

    def test_get_missing(self, engine):
        assert get_setting(engine, "nope") is None

    def test_all_settings_ordered(self, engine):
        rows = get_all_settings(engine)
        assert len(rows) == len(DEFAULT_SETTINGS)
        keys = [(r["category"], r["key"]) for r in rows]
        assert keys == sorted(keys)


class TestUpdate:
    def test_update_refreshes_cache_and_audits(self, engine, cache):
        count = update_settings(
            engine,
            [{"key": "quests.max_daily_quests", "value": 5}],
            actor_id="admin-1",
            cache=cache,
        )

        assert count == 1
        assert cache.get_int("quests.max_daily_quests") == 5
        with Session(engine) as session:
            log = session.query(AdminLog).one()
            assert log.action_type == "UPDATE"
            assert log.after_snapshot["before"]["value"] == 3
            assert log.after_snapshot["after"]["value"] == 5

    def test_create_new_key(self, engine):
        update_settings(engine, [{"key": "ops.banner", "value": "hi", "category": "ops"}], actor_id="a")
        assert get_setting(engine, "ops.banner")["value"] == "hi"
        with Session(engine) as session:
            assert session.query(AdminLog).one().action_type == "CREATE"

    def test_unchanged_value_not_audited(self, engine):
        update_settings(engine, [{"key": "quests.max_daily_quests", "value": 3}], actor_id="a")
        with Session(engine) as session:
            assert session.query(AdminLog).count() == 0


def test_seed_never_overwrites(engine):
    update_settings(engine, [{"key": "quests.max_daily_quests", "value": 9}], actor_id="a")
    seed_default_settings(engine)
    assert get_setting(engine, "quests.max_daily_quests")["value"] == 9
