"""
Reload Channel

Single-slot notification channel between the subscription updater
(producer) and the engine control loop (consumer). Any number of
requests made before the loop wakes up collapse into one reload.

A real SIGHUP delivered to the process is bridged onto the same
channel, so `systemctl reload` and `kill -HUP` keep working.
"""

import asyncio
import signal

from hlash.common.exceptions import ReloadError
from hlash.common.logging_setup import get_service_logger

logger = get_service_logger("engine.reload")


class ReloadChannel:
    """Single-slot reload notification, owned by the engine control loop"""

    def __init__(self):
        self._pending = asyncio.Event()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def pending(self) -> bool:
        return self._pending.is_set()

    def request(self) -> None:
        """Mark a reload as pending."""
        if self._closed:
            raise ReloadError("engine control loop is not running")
        self._pending.set()

    async def wait(self) -> None:
        """Block until a reload is pending, then consume it."""
        await self._pending.wait()
        self._pending.clear()

    def close(self) -> None:
        """Refuse further requests (engine stopped)."""
        self._closed = True
        self._pending.clear()


class ReloadSignaler:
    """Handle the updater holds to ask for a reload"""

    def __init__(self, channel: ReloadChannel):
        self._channel = channel

    def request_reload(self) -> None:
        """
        Ask the engine to re-read the live config.

        Raises:
            ReloadError: if the engine control loop has shut down
        """
        self._channel.request()
        logger.info("config reload requested")


def install_hangup_handler(channel: ReloadChannel) -> bool:
    """
    Route SIGHUP to `channel` on the running event loop.

    Returns:
        True if the handler was installed (False on platforms without SIGHUP)
    """
    sighup = getattr(signal, "SIGHUP", None)
    if sighup is None:
        return False

    loop = asyncio.get_running_loop()

    def _on_hangup() -> None:
        logger.info("Received SIGHUP")
        try:
            channel.request()
        except ReloadError as e:
            logger.warning(f"SIGHUP ignored: {e}")

    try:
        loop.add_signal_handler(sighup, _on_hangup)
    except (NotImplementedError, RuntimeError):
        # Not the main thread, or the loop does not support signals
        return False
    return True


def remove_hangup_handler() -> None:
    """Undo install_hangup_handler."""
    sighup = getattr(signal, "SIGHUP", None)
    if sighup is None:
        return
    try:
        asyncio.get_running_loop().remove_signal_handler(sighup)
    except (NotImplementedError, RuntimeError):
        pass
