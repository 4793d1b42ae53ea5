"""
Service Controller

Maps control verbs onto driver calls. Every mutating verb checks the
current state first (no redundant driver calls), then re-queries the
driver so the reported message reflects what actually happened.

"Not installed" and "unsupported system" are informational outcomes,
never failures.
"""

from typing import Callable

from hlash.common.exceptions import (
    DriverError,
    HlashError,
    NoServiceSystemError,
    ServiceNotInstalledError,
    UnknownActionError,
)
from hlash.common.logging_setup import get_service_logger

from .driver import ServiceDriver, ServiceStatus
from .program import ServiceProgram

logger = get_service_logger("system.controller")

MSG_STARTED = "started"
MSG_STOPPED = "stopped"
MSG_NOT_INSTALLED = "service not installed"
MSG_UNSUPPORTED = "unsupported system"
MSG_UNINSTALLED = "uninstalled"
MSG_UNKNOWN = "unknown status"

CONTROL_ACTIONS = {
    "run": "run in the foreground (used by the service manager)",
    "start": "start the service",
    "stop": "stop the service",
    "restart": "restart the service",
    "install": "install and start the service",
    "uninstall": "stop and remove the service",
    "status": "show service status",
}


class ServiceController:
    """
    Idempotent control verbs over a ServiceDriver.

    | verb      | action taken                                   |
    |-----------|------------------------------------------------|
    | start     | start() if stopped                             |
    | stop      | stop() if running                              |
    | restart   | stop() if running, then start()                |
    | install   | install() if not installed, start() if stopped |
    | uninstall | stop() if running, then uninstall()            |
    | status    | nothing                                        |
    """

    def __init__(self, driver: ServiceDriver, program: ServiceProgram):
        self.driver = driver
        self.program = program
        self._handlers: dict[str, Callable[[], str]] = {
            "start": self._start,
            "stop": self._stop,
            "restart": self._restart,
            "install": self._install,
            "uninstall": self._uninstall,
            "status": self._status,
        }

    def control(self, action: str) -> str:
        """
        Perform `action` and return the human-facing message.

        Raises:
            UnknownActionError: unrecognized verb
            DriverError: any driver failure other than not-installed /
                unsupported-platform
        """
        if action == "run":
            self.driver.run(self.program)
            return ""

        handler = self._handlers.get(action)
        if handler is None:
            raise UnknownActionError(action)

        logger.debug(f"control: {action}")
        try:
            return handler()
        except ServiceNotInstalledError:
            return MSG_NOT_INSTALLED
        except NoServiceSystemError:
            return MSG_UNSUPPORTED

    def run_action(self, action: str) -> int:
        """
        CLI wrapper: print the outcome and return the exit code.
        """
        try:
            message = self.control(action)
        except HlashError as e:
            print(e.message)
            return 1

        if message:
            print(message)
        return 0

    def _start(self) -> str:
        if self.driver.status() == ServiceStatus.STOPPED:
            self.driver.start()
        return self._describe()

    def _stop(self) -> str:
        if self.driver.status() == ServiceStatus.RUNNING:
            self.driver.stop()
        return self._describe()

    def _restart(self) -> str:
        if self.driver.status() == ServiceStatus.RUNNING:
            self.driver.stop()
        self.driver.start()
        return self._describe()

    def _install(self) -> str:
        status = self.driver.status()
        if status == ServiceStatus.NOT_INSTALLED:
            self.driver.install()
            status = self.driver.status()
        if status == ServiceStatus.STOPPED:
            self.driver.start()
        return self._describe()

    def _uninstall(self) -> str:
        status = self.driver.status()
        if status == ServiceStatus.NOT_INSTALLED:
            return MSG_NOT_INSTALLED

        if status == ServiceStatus.RUNNING:
            self.driver.stop()
        if status in (ServiceStatus.RUNNING, ServiceStatus.STOPPED):
            self.driver.uninstall()

        status = self.driver.status()
        if status != ServiceStatus.NOT_INSTALLED:
            raise DriverError(f"service still installed after uninstall ({status.value})", action="uninstall")
        return MSG_UNINSTALLED

    def _status(self) -> str:
        return self._describe()

    def _describe(self) -> str:
        """Message for the state the driver reports right now"""
        status = self.driver.status()
        return {
            ServiceStatus.RUNNING: MSG_STARTED,
            ServiceStatus.STOPPED: MSG_STOPPED,
            ServiceStatus.NOT_INSTALLED: MSG_NOT_INSTALLED,
        }.get(status, MSG_UNKNOWN)
