"""
photoquest.services.location_service — Live Proximity Tracking
===============================================================

Consumes an async stream of location samples for one quest target and
keeps the latest coordinate and geofence result.  The submit path reads
:attr:`ProximityTracker.last_coordinate` as the caller's last known
position.

The tracker can be stopped at any moment (attempt cancelled, client gone).
:meth:`ProximityTracker.stop` cancels the consuming task and closes the
sample source, so no subscription outlives it.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import AsyncIterator, Callable, Mapping
from typing import Any

from photoquest.engine.geo import Coordinate, ProximityResult, proximity

logger = logging.getLogger(__name__)

UpdateCallback = Callable[[Coordinate, ProximityResult], None]


class ProximityTracker:
    """Proximity of a moving user to a fixed target.

    Usage::

        tracker = ProximityTracker(quest_coord, radius_m=50)
        async with tracker.subscribe(gps_samples()):
            ...
            if tracker.inside:
                await machine.submit(attempt_id, user_id, tracker.last_coordinate, ...)
    """

    def __init__(
        self,
        target: Coordinate,
        radius_m: float,
        on_update: UpdateCallback | None = None,
    ) -> None:
        if radius_m <= 0:
            raise ValueError("radius_m must be positive")
        self.target = target
        self.radius_m = radius_m
        self.on_update = on_update
        self.last_coordinate: Coordinate | None = None
        self.last_result: ProximityResult | None = None
        self._source: AsyncIterator[Any] | None = None
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def inside(self) -> bool:
        return self.last_result is not None and self.last_result.inside

    def update(self, sample: Coordinate | Mapping[str, Any]) -> ProximityResult | None:
        """Apply one sample.  Invalid samples are logged and skipped (None)."""
        try:
            coord = sample if isinstance(sample, Coordinate) else Coordinate.from_mapping(sample)
        except (ValueError, TypeError) as exc:
            logger.warning("Skipping invalid location sample %r: %s", sample, exc)
            return None

        result = proximity(coord, self.target, self.radius_m)
        self.last_coordinate = coord
        self.last_result = result
        if self.on_update is not None:
            try:
                self.on_update(coord, result)
            except Exception:
                logger.exception("Proximity update callback failed")
        return result

    def start(self, samples: AsyncIterator[Coordinate | Mapping[str, Any]]) -> None:
        """Begin consuming *samples* in a background task."""
        if self.running:
            raise RuntimeError("ProximityTracker is already running")
        self._source = samples

        async def _consume() -> None:
            async for sample in samples:
                self.update(sample)

        self._task = asyncio.get_running_loop().create_task(
            _consume(), name="proximity-tracker",
        )

    async def stop(self) -> None:
        """Cancel the consumer and close the source.  Safe to call twice."""
        task, self._task = self._task, None
        source, self._source = self._source, None
        if task is not None:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        aclose = getattr(source, "aclose", None)
        if aclose is not None:
            await aclose()

    @contextlib.asynccontextmanager
    async def subscribe(self, samples: AsyncIterator[Coordinate | Mapping[str, Any]]):
        self.start(samples)
        try:
            yield self
        finally:
            await self.stop()
