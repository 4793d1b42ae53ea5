"""
Structured Logging Setup

Every component logs under `hlash.<component>`:
- JSON lines by default (one object per record, `extra` fields inlined)
- Plain text with HLASH_LOG_FORMAT=text or --verbose
- Level from HLASH_LOG_LEVEL (default INFO)
"""

import json
import logging
import os
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

from .exceptions import OperationCancelled

if TYPE_CHECKING:
    from hlash.services.subscription.updater import UpdateResult

ROOT_LOGGER = "hlash"
TEXT_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
TEXT_DATEFMT = "%Y-%m-%d %H:%M:%S"

# Keys of a bare LogRecord; everything else on a record came from `extra`
_STANDARD_KEYS = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", None, None))
) | {"message", "asctime", "service"}

_overrides: dict[str, Any] = {}


class JsonFormatter(logging.Formatter):
    """One JSON object per record"""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "service": getattr(record, "service", "unknown"),
            "logger": record.name,
            "message": record.getMessage(),
        }
        entry.update(
            (key, value) for key, value in vars(record).items() if key not in _STANDARD_KEYS
        )
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=str)


class ServiceLoggerAdapter(logging.LoggerAdapter):
    """Stamps the component name on every record"""

    def process(self, msg: str, kwargs: dict) -> tuple[str, dict]:
        extra = dict(kwargs.get("extra") or {})
        extra["service"] = self.extra["service"]
        kwargs["extra"] = extra
        return msg, kwargs


def _resolve() -> tuple[str, bool]:
    """Effective (level, json) from CLI overrides, then the environment."""
    level = _overrides.get("log_level") or os.environ.get("HLASH_LOG_LEVEL", "INFO")
    use_json = _overrides.get("json_format")
    if use_json is None:
        use_json = os.environ.get("HLASH_LOG_FORMAT", "json").lower() == "json"
    return level, use_json


def configure(log_level: str | None = None, json_format: bool | None = None) -> None:
    """
    Override the environment for the rest of the process.

    Loggers handed out before the call are reconfigured in place.
    """
    if log_level is not None:
        _overrides["log_level"] = log_level
    if json_format is not None:
        _overrides["json_format"] = json_format

    level, use_json = _resolve()
    prefix = ROOT_LOGGER + "."
    for name in list(logging.Logger.manager.loggerDict):
        if name.startswith(prefix) and logging.getLogger(name).handlers:
            setup_logging(name[len(prefix):], level, use_json)


def setup_logging(
    service_name: str,
    log_level: str = "INFO",
    json_format: bool = True,
) -> logging.Logger:
    """
    Attach a fresh stream handler to `hlash.<service_name>`.

    Args:
        service_name: Dotted component name (e.g., "subscription.updater")
        log_level: DEBUG, INFO, WARNING, ERROR or CRITICAL
        json_format: JSON lines when True, plain text otherwise

    Returns:
        The configured logger
    """
    level = logging.getLevelName(log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO

    # stderr is looked up per record, so pytest capture still sees output
    handler = logging.StreamHandler()
    handler.setLevel(level)
    handler.setFormatter(JsonFormatter() if json_format else logging.Formatter(TEXT_FORMAT, TEXT_DATEFMT))

    logger = logging.getLogger(f"{ROOT_LOGGER}.{service_name}")
    logger.setLevel(level)
    logger.handlers[:] = [handler]
    # Records still reach root handlers (caplog); root has none in production
    logger.propagate = True
    return logger


def get_service_logger(service_name: str) -> ServiceLoggerAdapter:
    """Logger adapter for one component, configured from the environment."""
    level, use_json = _resolve()
    return ServiceLoggerAdapter(
        setup_logging(service_name, level, use_json),
        {"service": service_name},
    )


class LogContext:
    """
    Adds attributes to every record created inside the block.

    Usage:
        with LogContext(cycle=3):
            logger.info("config update...")
    """

    def __init__(self, **context: Any):
        self.context = context
        self._previous = None

    def __enter__(self):
        previous = self._previous = logging.getLogRecordFactory()
        context = self.context

        def factory(*args, **kwargs):
            record = previous(*args, **kwargs)
            record.__dict__.update(context)
            return record

        logging.setLogRecordFactory(factory)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        logging.setLogRecordFactory(self._previous)
        return False


def log_update_result(logger: logging.LoggerAdapter, cycle: int, result: "UpdateResult") -> None:
    """Log the outcome of one subscription update cycle"""
    outcome = result.outcome.value
    fields = {"outcome": outcome}
    if result.backup_path:
        fields["backup_path"] = str(result.backup_path)

    if result.error is None:
        logger.debug(f"update cycle {cycle}: {outcome}", extra=fields)
    elif isinstance(result.error, OperationCancelled):
        logger.info(f"update cycle {cycle} cancelled", extra=fields)
    else:
        logger.error(f"config update: {outcome}: {result.error}", extra=fields)
