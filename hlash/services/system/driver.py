"""
OS Service Drivers

Capability set the ServiceController drives:
status / start / stop / install / uninstall, plus the blocking `run`
entry point used when the service manager launches the program.

SystemdDriver registers a unit file and shells out to systemctl.
UnsupportedDriver answers every call with NoServiceSystemError.
"""

import os
import shlex
import shutil
import subprocess
import sys
from abc import ABC, abstractmethod
from enum import Enum
from pathlib import Path
from typing import Callable

from hlash.common.config import ServiceDescriptor
from hlash.common.exceptions import DriverError, NoServiceSystemError, ServiceNotInstalledError
from hlash.common.logging_setup import get_service_logger

from .program import ProgramRunner, ServiceProgram

logger = get_service_logger("system.driver")

SYSTEMCTL_TIMEOUT_S = 30


class ServiceStatus(str, Enum):
    """Service states reported by a driver"""
    UNKNOWN = "unknown"
    RUNNING = "running"
    STOPPED = "stopped"
    NOT_INSTALLED = "not_installed"


class ServiceDriver(ABC):
    """ABC that each OS-specific driver implements."""

    platform = "unknown"

    def __init__(self, descriptor: ServiceDescriptor):
        self.descriptor = descriptor

    @abstractmethod
    def status(self) -> ServiceStatus:
        """Return the current state; raises DriverError subclasses on failure."""

    @abstractmethod
    def start(self) -> None:
        """Start the service via the OS service manager."""

    @abstractmethod
    def stop(self) -> None:
        """Stop the service via the OS service manager."""

    @abstractmethod
    def install(self) -> None:
        """Write the service definition and register it."""

    @abstractmethod
    def uninstall(self) -> None:
        """Remove the service definition."""

    def interactive(self) -> bool:
        """True when running from a terminal rather than under the manager."""
        return True

    def run(self, program: ServiceProgram) -> None:
        """
        Blocking entry point: run `program` until a shutdown signal.

        When the program's task ends on its own while running under the
        service manager, the service asks the manager to stop it.
        """
        on_finished: Callable[[], None] | None = None
        if not self.interactive():
            on_finished = self._self_stop
        ProgramRunner(program, on_finished=on_finished).run()

    def _self_stop(self) -> None:
        logger.info("Run task finished, stopping service")
        try:
            self.stop()
        except DriverError as e:
            logger.error(f"Self-stop failed: {e}")


class UnsupportedDriver(ServiceDriver):
    """Platform without a recognized service manager"""

    def __init__(self, descriptor: ServiceDescriptor, platform: str = sys.platform):
        super().__init__(descriptor)
        self.platform = platform

    def status(self) -> ServiceStatus:
        raise NoServiceSystemError(self.platform)

    def start(self) -> None:
        raise NoServiceSystemError(self.platform)

    def stop(self) -> None:
        raise NoServiceSystemError(self.platform)

    def install(self) -> None:
        raise NoServiceSystemError(self.platform)

    def uninstall(self) -> None:
        raise NoServiceSystemError(self.platform)


class SystemdDriver(ServiceDriver):
    """
    systemd backend.

    Unit file: /etc/systemd/system/<name>.service
    ExecReload sends SIGHUP, which the engine control loop turns into a
    config reload.
    """

    platform = "linux-systemd"
    UNIT_DIR = Path("/etc/systemd/system")

    def __init__(
        self,
        descriptor: ServiceDescriptor,
        unit_dir: Path | None = None,
        systemctl: str = "systemctl",
        runner: Callable[..., subprocess.CompletedProcess] = subprocess.run,
    ):
        super().__init__(descriptor)
        self.unit_dir = unit_dir or self.UNIT_DIR
        self.systemctl = systemctl
        self._run = runner

    @property
    def unit_name(self) -> str:
        return f"{self.descriptor.name}.service"

    @property
    def unit_path(self) -> Path:
        return self.unit_dir / self.unit_name

    @classmethod
    def detect(cls) -> bool:
        """True if systemd is the running init system"""
        return Path("/run/systemd/system").is_dir() and shutil.which("systemctl") is not None

    def interactive(self) -> bool:
        # systemd sets INVOCATION_ID for every unit it starts
        return not os.environ.get("INVOCATION_ID")

    def _systemctl(self, *args: str, check: bool = True) -> subprocess.CompletedProcess:
        cmd = [self.systemctl, *args]
        try:
            result = self._run(cmd, capture_output=True, text=True, timeout=SYSTEMCTL_TIMEOUT_S)
        except (OSError, subprocess.SubprocessError) as e:
            raise DriverError(f"{' '.join(cmd)}: {e}", action=args[0]) from e

        if check and result.returncode != 0:
            detail = (result.stderr or result.stdout or "").strip()
            raise DriverError(
                f"{' '.join(cmd)} failed (exit {result.returncode}): {detail}",
                action=args[0],
            )
        return result

    def status(self) -> ServiceStatus:
        if not self.unit_path.exists():
            return ServiceStatus.NOT_INSTALLED

        result = self._systemctl("is-active", self.unit_name, check=False)
        state = (result.stdout or "").strip()

        if state in ("active", "reloading", "activating", "deactivating"):
            return ServiceStatus.RUNNING
        if state in ("inactive", "failed"):
            return ServiceStatus.STOPPED
        if "could not be found" in (result.stderr or ""):
            return ServiceStatus.NOT_INSTALLED
        raise DriverError(f"unrecognized unit state {state!r} for {self.unit_name}", action="status")

    def start(self) -> None:
        self._require_installed()
        logger.info(f"Starting {self.unit_name}")
        self._systemctl("start", self.unit_name)

    def stop(self) -> None:
        self._require_installed()
        logger.info(f"Stopping {self.unit_name}")
        self._systemctl("stop", self.unit_name)

    def _self_stop(self) -> None:
        # Called from inside the unit's main process; a blocking stop job
        # would wait on this very process
        logger.info("Run task finished, stopping service")
        try:
            self._systemctl("stop", "--no-block", self.unit_name)
        except DriverError as e:
            logger.error(f"Self-stop failed: {e}")

    def install(self) -> None:
        if self.unit_path.exists():
            raise DriverError(f"init already exists: {self.unit_path}", action="install")

        try:
            self.unit_dir.mkdir(parents=True, exist_ok=True)
            self.unit_path.write_text(self.render_unit(), encoding="utf-8")
        except OSError as e:
            raise DriverError(f"writing {self.unit_path}: {e}", action="install") from e

        logger.info(f"Installed {self.unit_path}")
        self._systemctl("daemon-reload")
        self._systemctl("enable", self.unit_name)

    def uninstall(self) -> None:
        self._require_installed()
        self._systemctl("disable", self.unit_name, check=False)
        try:
            self.unit_path.unlink()
        except OSError as e:
            raise DriverError(f"removing {self.unit_path}: {e}", action="uninstall") from e

        logger.info(f"Removed {self.unit_path}")
        self._systemctl("daemon-reload")

    def _require_installed(self) -> None:
        if not self.unit_path.exists():
            raise ServiceNotInstalledError(self.descriptor.name)

    def exec_start(self) -> str:
        """ExecStart line: this interpreter running the package"""
        executable = self.descriptor.executable
        cmd = [executable] if executable else [sys.executable, "-m", "hlash"]
        cmd += list(self.descriptor.arguments)
        return shlex.join(cmd)

    def render_unit(self) -> str:
        """Render the unit file for the descriptor"""
        d = self.descriptor
        unit = [
            "[Unit]",
            f"Description={d.description or d.display_name}",
            "ConditionFileIsExecutable=" + (d.executable or sys.executable),
            *d.dependencies,
            "",
            "[Service]",
            "StartLimitInterval=5",
            "StartLimitBurst=10",
            f"ExecStart={self.exec_start()}",
            "ExecReload=/bin/kill -HUP $MAINPID",
        ]
        if d.working_directory:
            unit.append(f"WorkingDirectory={d.working_directory}")
        if d.user_name:
            unit.append(f"User={d.user_name}")
        for key, value in sorted(d.env_vars.items()):
            unit.append(f'Environment="{key}={value}"')
        unit += [
            "Restart=always",
            "RestartSec=120",
            "",
            "[Install]",
            "WantedBy=multi-user.target",
            "",
        ]
        return "\n".join(unit)


def new_driver(descriptor: ServiceDescriptor) -> ServiceDriver:
    """Pick the driver for this platform"""
    if sys.platform.startswith("linux") and SystemdDriver.detect():
        return SystemdDriver(descriptor)
    return UnsupportedDriver(descriptor)
