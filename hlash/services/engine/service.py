"""
Engine Service - Control Loop

Starts the engine on the live config, then waits for either a reload
request or shutdown. On reload it re-parses the live config and applies
it in place; a bad config is logged and the engine keeps the old one.

An engine process that dies is restarted (3x max, then the service
gives up and the run task ends).
"""

import asyncio

from hlash.common.config import Settings
from hlash.common.exceptions import ConfigError, EngineError, HlashError, ValidationError
from hlash.common.logging_setup import get_service_logger

from .engine import Engine
from .reload import ReloadChannel, install_hangup_handler, remove_hangup_handler

logger = get_service_logger("engine.service")

MAX_RESTART_ATTEMPTS = 3
PROCESS_CHECK_INTERVAL_S = 5


class EngineService:
    """
    Owns the engine and the consuming end of the reload channel.

    Features:
    - Reload on channel request or SIGHUP
    - Keeps the previous config when the new one fails to parse
    - Restarts a crashed engine (3x max)
    """

    def __init__(self, settings: Settings, engine: Engine, channel: ReloadChannel):
        self.settings = settings
        self.engine = engine
        self.channel = channel

        self._restart_count = 0
        self._reload_count = 0

    @property
    def restart_count(self) -> int:
        return self._restart_count

    @property
    def reload_count(self) -> int:
        return self._reload_count

    async def run(self, stop_event: asyncio.Event) -> None:
        """
        Run the engine until `stop_event` is set.

        Raises:
            ConfigError: the engine could not start on the live config
            EngineError: the engine kept crashing
        """
        await self.engine.parse_and_apply()
        hangup_installed = install_hangup_handler(self.channel)

        try:
            await self._control_loop(stop_event)
        finally:
            if hangup_installed:
                remove_hangup_handler()
            self.channel.close()
            await self.engine.stop()

    async def _control_loop(self, stop_event: asyncio.Event) -> None:
        while not stop_event.is_set():
            reload_task = asyncio.create_task(self.channel.wait())
            stop_task = asyncio.create_task(stop_event.wait())
            try:
                done, _ = await asyncio.wait(
                    {reload_task, stop_task},
                    timeout=PROCESS_CHECK_INTERVAL_S,
                    return_when=asyncio.FIRST_COMPLETED,
                )
            finally:
                for task in (reload_task, stop_task):
                    if not task.done():
                        task.cancel()

            if stop_event.is_set():
                return

            if reload_task in done:
                await self.reload()
            elif not self.engine.is_running():
                await self._restart()

    async def reload(self) -> bool:
        """
        Re-parse the live config and apply it without restarting.

        Returns:
            True if the engine took the new config
        """
        live = self.settings.live_config
        try:
            self.engine.reparse_from_path(live)
        except ValidationError as e:
            logger.error(f"Parse config error: {e}")
            return False

        try:
            await self.engine.apply_config(live, force=True)
        except HlashError as e:
            logger.error(f"Apply config error: {e}")
            return False

        self._reload_count += 1
        logger.info(f"Engine reloaded config ({self._reload_count})")
        return True

    async def _restart(self) -> None:
        """Handle a crashed engine with the restart policy"""
        if self._restart_count >= MAX_RESTART_ATTEMPTS:
            raise EngineError(
                f"engine failed after {MAX_RESTART_ATTEMPTS} restarts", recoverable=False
            )

        self._restart_count += 1
        logger.warning(
            f"Engine not running, restarting (attempt {self._restart_count}/{MAX_RESTART_ATTEMPTS})"
        )
        await self.engine.stop()
        try:
            await self.engine.parse_and_apply()
        except ConfigError as e:
            logger.error(f"Engine restart failed: {e}")
