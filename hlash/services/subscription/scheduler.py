"""
Update Scheduler

Drives SubscriptionUpdater: once at startup, then on a fixed period.
Requests an engine reload after every committed update. A failed cycle
is logged and never stops the loop.
"""

import asyncio
from datetime import datetime

from hlash.common.exceptions import ReloadError
from hlash.common.logging_setup import LogContext, get_service_logger, log_update_result
from hlash.common.scheduler import ScheduledLoop
from hlash.services.engine.reload import ReloadSignaler

from .updater import SubscriptionUpdater, UpdateOutcome, UpdateResult

logger = get_service_logger("subscription.scheduler")


class UpdateScheduler:
    """
    Serializes update cycles and owns the refresh timer.

    `update_now` is the single entry point for scheduled and manual
    updates; a lock keeps two cycles from ever overlapping.
    """

    def __init__(
        self,
        updater: SubscriptionUpdater,
        interval_seconds: float,
        reload_signaler: ReloadSignaler | None = None,
    ):
        self.updater = updater
        self.interval = interval_seconds
        self.reload_signaler = reload_signaler

        self._lock = asyncio.Lock()
        self._stop_event: asyncio.Event | None = None
        self._loop: ScheduledLoop | None = None
        self._cycle = 0
        self._last_result: UpdateResult | None = None

    @property
    def last_result(self) -> UpdateResult | None:
        return self._last_result

    @property
    def next_update_at(self) -> datetime | None:
        return self._loop.next_run_at if self._loop else None

    async def update_now(
        self,
        reload: bool = True,
        stop_event: asyncio.Event | None = None,
    ) -> UpdateResult:
        """
        Run one update cycle, waiting for any cycle already in flight.

        Args:
            reload: Request an engine reload if the update commits
            stop_event: Shared stop event (remembered for later cycles)
        """
        if stop_event is not None:
            self._stop_event = stop_event

        async with self._lock:
            self._cycle += 1
            with LogContext(cycle=self._cycle):
                try:
                    result = await self.updater.update_once(self._stop_event)
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    # Mirrors ScheduledLoop._fire
                    logger.error(f"update cycle {self._cycle} crashed: {e!r}", exc_info=True)
                    result = UpdateResult(UpdateOutcome.FAILED, error=e, finished_at=datetime.now())
                self._last_result = result

                log_update_result(logger, self._cycle, result)

                if result.committed and reload and self.reload_signaler is not None:
                    try:
                        self.reload_signaler.request_reload()
                    except ReloadError as e:
                        logger.error(f"config reload: {e}")

            return result

    async def run(self, stop_event: asyncio.Event, immediate: bool = True) -> None:
        """
        Block until `stop_event` is set.

        Args:
            stop_event: Shared process stop event
            immediate: Update once right away (without reload) before the timer
        """
        self._stop_event = stop_event

        if immediate:
            await self.update_now(reload=False)

        if self.interval <= 0:
            logger.info("subscription interval not set, periodic updates disabled")
            await stop_event.wait()
            return

        self._loop = ScheduledLoop(
            self.interval,
            self._scheduled_cycle,
            name="subscription",
            run_immediately=False,
        )
        await self._loop.run(stop_event)

    async def _scheduled_cycle(self) -> None:
        await self.update_now(reload=True)
