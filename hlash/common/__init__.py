"""
Common Utilities

Shared modules used across all services:
- config.py - Settings and service descriptor dataclasses
- exceptions.py - Custom exception classes
- logging_setup.py - Structured logging setup
- scheduler.py - Fixed-period loop and cancellable waits
"""

from .config import (
    ServiceDescriptor,
    Settings,
    parse_duration,
    service_arguments,
)
from .exceptions import (
    ConfigError,
    DriverError,
    EngineError,
    FilesystemError,
    HlashError,
    HTTPStatusError,
    NetworkError,
    NoServiceSystemError,
    OperationCancelled,
    ReloadError,
    ServiceNotInstalledError,
    UnknownActionError,
    ValidationError,
)
from .logging_setup import (
    LogContext,
    get_service_logger,
    setup_logging,
)
from .scheduler import ScheduledLoop, wait_or_stop

__all__ = [
    # Config
    "ServiceDescriptor",
    "Settings",
    "parse_duration",
    "service_arguments",
    # Exceptions
    "ConfigError",
    "DriverError",
    "EngineError",
    "FilesystemError",
    "HlashError",
    "HTTPStatusError",
    "NetworkError",
    "NoServiceSystemError",
    "OperationCancelled",
    "ReloadError",
    "ServiceNotInstalledError",
    "UnknownActionError",
    "ValidationError",
    # Logging
    "LogContext",
    "get_service_logger",
    "setup_logging",
    # Scheduling
    "ScheduledLoop",
    "wait_or_stop",
]
