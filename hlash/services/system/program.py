"""
Program Lifecycle

What a service driver runs: an optional synchronous `init` hook, then
the long-lived `run(stop_event)` task. SIGINT/SIGTERM (or the driver's
stop hook) set the shared stop event; the run task is expected to
return promptly once it is set.

When the run task ends by itself, the runner notifies its observer
(the driver's self-stop) and returns.
"""

import asyncio
import signal
from dataclasses import dataclass
from typing import Awaitable, Callable

from hlash.common.logging_setup import get_service_logger

logger = get_service_logger("system.program")

# Grace period for the run task after the stop event fires
SHUTDOWN_TIMEOUT_S = 15


@dataclass
class ServiceProgram:
    """Lifecycle hooks of the program a service runs"""
    run: Callable[[asyncio.Event], Awaitable[None]]
    init: Callable[[], None] | None = None


class ProgramRunner:
    """
    Supervises one ServiceProgram inside its own event loop.

    Owns the stop event (the process-wide cancellation scope) and the
    shutdown signal handlers.
    """

    def __init__(
        self,
        program: ServiceProgram,
        on_finished: Callable[[], None] | None = None,
        shutdown_timeout: float = SHUTDOWN_TIMEOUT_S,
    ):
        self.program = program
        self.on_finished = on_finished
        self.shutdown_timeout = shutdown_timeout

        self._stop_event: asyncio.Event | None = None
        self._signals_installed: list[int] = []

    def run(self) -> None:
        """Blocking entry point."""
        asyncio.run(self.serve())

    def stop(self) -> None:
        """Stop hook: cancel the run task's scope."""
        if self._stop_event is not None and not self._stop_event.is_set():
            logger.info("Stop requested")
            self._stop_event.set()

    async def serve(self) -> None:
        """
        Run init, then the run task, until it finishes or stop is requested.

        Raises:
            Whatever `init` or the run task raised
        """
        if self.program.init is not None:
            self.program.init()

        self._stop_event = asyncio.Event()
        self._setup_signal_handlers()

        task = asyncio.create_task(self.program.run(self._stop_event))
        stop_wait = asyncio.create_task(self._stop_event.wait())

        try:
            await asyncio.wait({task, stop_wait}, return_when=asyncio.FIRST_COMPLETED)
            stopped = self._stop_event.is_set()

            if not task.done():
                done, _ = await asyncio.wait({task}, timeout=self.shutdown_timeout)
                if not done:
                    logger.warning(f"Run task still busy after {self.shutdown_timeout}s, cancelling")
                    task.cancel()
                    try:
                        await task
                    except asyncio.CancelledError:
                        pass
        finally:
            stop_wait.cancel()
            self._remove_signal_handlers()

        error = None if task.cancelled() else task.exception()
        if error is not None:
            logger.error(f"Run task failed: {error}")

        if not stopped and self.on_finished is not None:
            self.on_finished()

        if error is not None:
            raise error

    def _setup_signal_handlers(self) -> None:
        """Setup graceful shutdown signal handlers"""
        loop = asyncio.get_running_loop()

        for sig in (signal.SIGTERM, signal.SIGINT):
            try:
                loop.add_signal_handler(sig, self._handle_shutdown)
                self._signals_installed.append(sig)
            except NotImplementedError:
                # Windows doesn't support add_signal_handler
                signal.signal(sig, lambda s, f: loop.call_soon_threadsafe(self._handle_shutdown))
            except RuntimeError:
                # Not running in the main thread
                pass

    def _remove_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in self._signals_installed:
            loop.remove_signal_handler(sig)
        self._signals_installed.clear()

    def _handle_shutdown(self) -> None:
        """Handle shutdown signal"""
        logger.info("Received shutdown signal")
        self.stop()
