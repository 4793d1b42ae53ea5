"""
Configuration Dataclasses

Type-safe configuration structures built once at startup from the
command line and passed explicitly to every component.
"""

import math
import re
from dataclasses import dataclass, field
from pathlib import Path

# Live config file name inside the home directory
CONFIG_FILE_NAME = "config.yaml"

# Suffix of the in-flight download next to the live config
UPDATE_SUFFIX = ".update"

# Backup timestamp format: YYYYMMDD-HHMMSS
BACKUP_TIME_FORMAT = "%Y%m%d-%H%M%S"

DEFAULT_CONTROLLER = "127.0.0.1:9090"

SERVICE_NAME = "hlash"
SERVICE_DESCRIPTION = "Clash service with automatic subscription updates"

_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)(ms|h|m|s)")
_DURATION_UNITS = {"ms": 0.001, "s": 1.0, "m": 60.0, "h": 3600.0}


def parse_duration(value: str) -> float:
    """
    Parse a duration string into seconds.

    Accepts plain seconds ("90", "1.5") or Go-style unit sequences
    ("30s", "15m", "6h", "1h30m", "500ms").

    Raises:
        ValueError: if the string is not a non-negative duration
    """
    text = value.strip().lower()
    if not text:
        raise ValueError("empty duration")

    try:
        seconds = float(text)
    except ValueError:
        pos = 0
        seconds = 0.0
        for match in _DURATION_PART.finditer(text):
            if match.start() != pos:
                break
            seconds += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
            pos = match.end()
        if pos != len(text):
            raise ValueError(f"invalid duration: {value!r}")

    if not math.isfinite(seconds) or seconds < 0:
        raise ValueError(f"invalid duration: {value!r}")
    return seconds


@dataclass(frozen=True)
class Settings:
    """Process-wide runtime settings (immutable after startup)"""
    home_dir: Path = field(default_factory=Path.cwd)
    secret: str = ""
    controller: str = ""
    ui: str = "ui"
    subscribe_url: str = ""
    subscribe_interval: float = 0.0
    run_engine: bool = False
    mixed_port: int = 0
    engine_bin: str = "clash"
    health_port: int = 0

    # Downloader tuning
    request_timeout: float = 10.0
    connect_timeout: float = 5.0
    max_attempts: int = 10
    max_backoff: float = 15.0

    @property
    def live_config(self) -> Path:
        """Path of the config file the engine runs from"""
        return self.home_dir / CONFIG_FILE_NAME

    @property
    def update_path(self) -> Path:
        """Temporary download location, never read by the engine"""
        return self.live_config.with_name(self.live_config.name + UPDATE_SUFFIX)

    @property
    def controller_address(self) -> str:
        """External controller address the engine is started with"""
        return self.controller or DEFAULT_CONTROLLER


@dataclass(frozen=True)
class ServiceDescriptor:
    """Registration data handed to the OS service manager"""
    name: str
    display_name: str
    description: str
    working_directory: str = ""
    arguments: tuple[str, ...] = ()
    env_vars: dict[str, str] = field(default_factory=dict)
    dependencies: tuple[str, ...] = ("After=network-online.target", "Wants=network-online.target")
    user_name: str = ""
    executable: str = ""


def service_arguments(
    argv: list[str],
    drop: tuple[str, ...] = ("--svc", "-s"),
) -> list[str]:
    """
    Arguments the installed service should run with.

    Removes the flags in `drop` (with their values) so the service starts
    in the default `run` mode with every other flag of the install call.
    Handles `--flag value`, `--flag=value` and `-fvalue` spellings.
    """
    args: list[str] = []
    skip_next = False
    for arg in argv:
        if skip_next:
            skip_next = False
            continue
        if arg in drop:
            skip_next = True
            continue
        if any(_joined_flag(arg, flag) for flag in drop):
            continue
        args.append(arg)
    return args


def _joined_flag(arg: str, flag: str) -> bool:
    if flag.startswith("--"):
        return arg.startswith(flag + "=")
    return arg.startswith(flag) and len(arg) > len(flag) and not arg.startswith("--")
