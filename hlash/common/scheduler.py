"""
Fixed-Period Scheduling

- wait_or_stop: sleep that returns early when the shared stop event fires
- ScheduledLoop: runs a coroutine every `interval` seconds on a fixed grid

The grid is anchored at the loop start, so slow callbacks do not push
later runs back. Slots that pass while a callback is still running are
dropped, never queued, and two runs never overlap.

Usage:
    loop = ScheduledLoop(6 * 3600, refresh, name="subscription", run_immediately=False)
    await loop.run(stop_event)   # returns once stop_event is set
"""

import asyncio
import math
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable

from hlash.common.logging_setup import get_service_logger

logger = get_service_logger("scheduler")


async def wait_or_stop(stop_event: asyncio.Event | None, delay: float) -> bool:
    """
    Wait for `delay` seconds or until `stop_event` is set.

    Returns:
        True if the stop event fired, False if the full delay elapsed
    """
    if stop_event is None:
        await asyncio.sleep(delay)
        return False

    if stop_event.is_set():
        return True

    try:
        await asyncio.wait_for(stop_event.wait(), timeout=max(0.0, delay))
        return True
    except asyncio.TimeoutError:
        return False


@dataclass
class LoopStats:
    runs: int = 0
    errors: int = 0
    skipped: int = 0
    last_duration: float = 0.0


class ScheduledLoop:
    """
    Drift-free periodic runner.

    Callback exceptions are logged and counted; they never end the loop.
    """

    def __init__(
        self,
        interval_seconds: float,
        callback: Callable[[], Awaitable[None]],
        name: str = "unnamed",
        run_immediately: bool = True,
    ):
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")

        self.interval = interval_seconds
        self.callback = callback
        self.name = name
        self.run_immediately = run_immediately

        self.stats = LoopStats()
        self._due: float = 0.0
        self._due_at: datetime | None = None

    async def run(self, stop_event: asyncio.Event) -> None:
        """Run until `stop_event` is set."""
        self._due = time.monotonic() + (0.0 if self.run_immediately else self.interval)
        self._publish_due()
        if not self.run_immediately:
            logger.info(f"Scheduler '{self.name}' first run at {self._due_at.isoformat()}")

        while not stop_event.is_set():
            if await wait_or_stop(stop_event, self._due - time.monotonic()):
                break

            await self._fire()
            self._advance()

            logger.info(
                f"Scheduler '{self.name}' next run at {self._due_at.isoformat()}",
                extra={"next_run_at": self._due_at.isoformat()},
            )

    async def _fire(self) -> None:
        started = time.monotonic()
        try:
            await self.callback()
            self.stats.runs += 1
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.stats.errors += 1
            logger.error(f"Scheduled callback '{self.name}' error: {e}", exc_info=True)
        finally:
            self.stats.last_duration = time.monotonic() - started

    def _advance(self) -> None:
        """Move to the first grid slot still in the future."""
        behind = time.monotonic() - self._due
        slots = max(1, math.floor(behind / self.interval) + 1)
        self._due += slots * self.interval

        if slots > 1:
            self.stats.skipped += slots - 1
            logger.warning(
                f"Scheduler '{self.name}' dropped {slots - 1} runs "
                f"(callback took {self.stats.last_duration:.3f}s)"
            )
        self._publish_due()

    def _publish_due(self) -> None:
        remaining = max(0.0, self._due - time.monotonic())
        self._due_at = datetime.now(timezone.utc) + timedelta(seconds=remaining)

    @property
    def next_run_at(self) -> datetime | None:
        """Wall-clock time of the next run"""
        return self._due_at

    @property
    def skipped_count(self) -> int:
        return self.stats.skipped

    @property
    def execution_count(self) -> int:
        return self.stats.runs

    def get_stats(self) -> dict:
        return {
            "name": self.name,
            "interval_s": self.interval,
            "execution_count": self.stats.runs,
            "error_count": self.stats.errors,
            "skipped_count": self.stats.skipped,
            "last_execution_s": round(self.stats.last_duration, 3),
            "next_run_at": self._due_at.isoformat() if self._due_at else None,
        }
