"""Pause markers after a quiet interval.

Idle -> Armed (utterance end) -> timer fires -> marker inserted -> Idle.
Any new transcript result, or a restart, cancels the pending timer.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from datetime import datetime

from beacon.services.segment_store import SegmentStore

logger = logging.getLogger(__name__)


def wall_clock() -> str:
    return datetime.now().strftime("%H:%M:%S")


class SilenceSegmenter:
    def __init__(
        self,
        store: SegmentStore,
        delay_seconds: float,
        clock: Callable[[], str] = wall_clock,
        on_marker: Callable[[], Awaitable[None]] | None = None,
    ) -> None:
        self._store = store
        self._delay = delay_seconds
        self._clock = clock
        self._on_marker = on_marker
        self._timer: asyncio.Task | None = None

    @property
    def armed(self) -> bool:
        return self._timer is not None and not self._timer.done()

    def arm(self) -> None:
        """Start (or restart) the single-shot silence timer."""
        self.cancel()
        self._timer = asyncio.create_task(self._fire_after_delay())

    def cancel(self) -> None:
        if self._timer is not None and not self._timer.done():
            self._timer.cancel()
        self._timer = None

    async def stop(self) -> None:
        timer = self._timer
        self._timer = None
        if timer is not None and not timer.done():
            timer.cancel()
            try:
                await timer
            except asyncio.CancelledError:
                pass

    async def _fire_after_delay(self) -> None:
        await asyncio.sleep(self._delay)
        clock_time = self._clock()
        if self._store.insert_pause_marker(clock_time):
            logger.info("Silence for %.1fs; pause marker at %s", self._delay, clock_time)
            if self._on_marker is not None:
                try:
                    await self._on_marker()
                except Exception as e:
                    logger.error("Pause marker callback failed: %s", e)
