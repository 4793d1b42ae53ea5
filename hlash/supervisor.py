"""
hlash Supervisor

The long-lived task a started service runs. Two modes:
- with --run: initialize the home directory, update the subscription
  once, start the engine, then keep the scheduler and the engine
  control loop running side by side
- without --run: only keep the live config updated; reloading is left
  to whatever supervises the engine
"""

import asyncio

from hlash.common.config import Settings
from hlash.common.logging_setup import get_service_logger
from hlash.services.engine.engine import ClashEngine, Engine
from hlash.services.engine.reload import ReloadChannel, ReloadSignaler
from hlash.services.engine.service import EngineService
from hlash.services.subscription.scheduler import UpdateScheduler
from hlash.services.subscription.updater import SubscriptionUpdater
from hlash.services.system.health_server import HealthServer

logger = get_service_logger("supervisor")


class Supervisor:
    """
    Wires the subscription pipeline to the engine.

    Features:
    - Fresh config before the engine starts
    - Scheduler and engine run concurrently under one stop event
    - Either task failing stops the other and ends the run
    """

    def __init__(
        self,
        settings: Settings,
        engine: Engine | None = None,
        updater: SubscriptionUpdater | None = None,
    ):
        self.settings = settings
        self.channel = ReloadChannel()

        if settings.run_engine:
            self.engine: Engine | None = engine or ClashEngine(settings)
            self.engine_service: EngineService | None = EngineService(
                settings, self.engine, self.channel
            )
            signaler: ReloadSignaler | None = ReloadSignaler(self.channel)
        else:
            self.engine = None
            self.engine_service = None
            signaler = None

        self.scheduler = UpdateScheduler(
            updater or SubscriptionUpdater(settings),
            settings.subscribe_interval,
            reload_signaler=signaler,
        )

        self.health_server: HealthServer | None = None
        if settings.health_port:
            self.health_server = HealthServer(
                self.scheduler,
                settings.health_port,
                engine_pid=lambda: getattr(self.engine, "pid", None),
            )

    def preflight(self) -> None:
        """Init hook: fail before the run task starts if the engine can't be found."""
        if isinstance(self.engine, ClashEngine):
            self.engine.command()

    async def run(self, stop_event: asyncio.Event) -> None:
        """Run until `stop_event` is set or a task fails."""
        logger.info(
            "Starting hlash",
            extra={
                "home": str(self.settings.home_dir),
                "run_engine": self.settings.run_engine,
                "interval_s": self.settings.subscribe_interval,
            },
        )

        if self.health_server:
            await self.health_server.start()

        try:
            if self.engine_service is None:
                await self.scheduler.run(stop_event, immediate=True)
            else:
                await self._run_with_engine(stop_event)
        finally:
            if self.health_server:
                await self.health_server.stop()
            logger.info("hlash stopped")

    async def _run_with_engine(self, stop_event: asyncio.Event) -> None:
        self.engine.init_config_dir()
        await self.scheduler.update_now(reload=False, stop_event=stop_event)
        if stop_event.is_set():
            return

        tasks = [
            asyncio.create_task(self.scheduler.run(stop_event, immediate=False), name="scheduler"),
            asyncio.create_task(self.engine_service.run(stop_event), name="engine"),
        ]

        done, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)

        if not stop_event.is_set():
            finished = ", ".join(task.get_name() for task in done)
            for task in pending:
                logger.warning(f"Task {finished} ended, cancelling {task.get_name()}")
                task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)

        for task in tasks:
            if not task.cancelled() and task.exception() is not None:
                raise task.exception()
