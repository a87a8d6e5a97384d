"""
tests/test_location_tracker.py — Live Proximity Tracking Tests
===============================================================
"""

from __future__ import annotations

import asyncio
import logging
import math

import pytest

from conftest import QUEST_LAT, QUEST_LON, run
from photoquest.engine.geo import Coordinate
from photoquest.services.location_service import ProximityTracker

TARGET = Coordinate(QUEST_LAT, QUEST_LON)


def _north(meters: float) -> dict:
    return {"latitude": QUEST_LAT + math.degrees(meters / 6_371_000), "longitude": QUEST_LON}


async def _samples(items, closed: list):
    """Yield *items*, then wait like a live GPS feed until cancelled."""
    try:
        for item in items:
            yield item
        await asyncio.Event().wait()
    finally:
        closed.append(True)


async def _settle():
    for _ in range(10):
        await asyncio.sleep(0)


class TestUpdate:
    def test_tracks_latest_sample(self):
        tracker = ProximityTracker(TARGET, radius_m=50)
        tracker.update(_north(200))
        assert not tracker.inside
        tracker.update(_north(10))
        assert tracker.inside
        assert tracker.last_result.distance_m == pytest.approx(10, abs=0.5)

    def test_invalid_sample_is_skipped(self, caplog):
        tracker = ProximityTracker(TARGET, radius_m=50)
        tracker.update(_north(10))
        with caplog.at_level(logging.WARNING):
            assert tracker.update({"latitude": 999, "longitude": 0}) is None
            assert tracker.update({"latitude": 1.0}) is None
        assert tracker.inside
        assert "invalid location sample" in caplog.text

    def test_callback_gets_coordinate_and_result(self):
        received = []
        tracker = ProximityTracker(
            TARGET, radius_m=50, on_update=lambda coord, result: received.append((coord, result)),
        )

        result = tracker.update(_north(20))

        assert len(received) == 1
        coord, seen = received[0]
        assert coord == tracker.last_coordinate
        assert coord.latitude == pytest.approx(_north(20)["latitude"])
        assert seen is result
        assert seen.inside

    def test_callback_failure_does_not_stop_tracking(self):
        def boom(coord, result):
            raise RuntimeError("ui went away")

        tracker = ProximityTracker(TARGET, radius_m=50, on_update=boom)
        assert tracker.update(_north(5)).inside
        assert tracker.last_coordinate is not None

    def test_radius_must_be_positive(self):
        with pytest.raises(ValueError):
            ProximityTracker(TARGET, radius_m=0)


class TestSubscription:
    def test_consumes_stream_and_closes_source(self):
        closed: list = []
        seen: list = []
        tracker = ProximityTracker(TARGET, radius_m=50, on_update=lambda c, r: seen.append(r.inside))

        async def scenario():
            async with tracker.subscribe(_samples([_north(300), _north(20)], closed)):
                await _settle()
                assert tracker.running
                assert tracker.inside
            assert not tracker.running

        run(scenario())
        assert seen == [False, True]
        assert closed == [True]

    def test_stop_is_idempotent(self):
        closed: list = []
        tracker = ProximityTracker(TARGET, radius_m=50)

        async def scenario():
            tracker.start(_samples([_north(1)], closed))
            await _settle()
            await tracker.stop()
            await tracker.stop()

        run(scenario())
        assert closed == [True]
        assert not tracker.running

    def test_cannot_start_twice(self):
        tracker = ProximityTracker(TARGET, radius_m=50)

        async def scenario():
            tracker.start(_samples([], []))
            try:
                with pytest.raises(RuntimeError):
                    tracker.start(_samples([], []))
            finally:
                await tracker.stop()

        run(scenario())

    def test_stop_before_start(self):
        run(ProximityTracker(TARGET, radius_m=50).stop())
