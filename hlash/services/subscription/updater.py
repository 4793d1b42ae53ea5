"""
Subscription Updater

Safely replaces the live config with a freshly downloaded one:
1. Download into <live>.update
2. Validate the download
3. Move the current live config to <live>-<YYYYMMDD-HHMMSS>.backup
4. Rename the download onto the live path
5. Put the backup back if step 4 fails

The live config is never partially written and never replaced by
content that failed validation.
"""

import asyncio
import os
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Callable

from hlash.common.config import BACKUP_TIME_FORMAT, Settings
from hlash.common.exceptions import FilesystemError, HlashError, ValidationError
from hlash.common.logging_setup import get_service_logger

from .downloader import Downloader
from .validator import ConfigValidator

logger = get_service_logger("subscription.updater")


class UpdateOutcome(str, Enum):
    """Result of one update attempt"""
    SKIPPED = "skipped"
    DOWNLOAD_FAILED = "download_failed"
    VALIDATION_FAILED = "validation_failed"
    SWAP_FAILED = "swap_failed"
    FAILED = "failed"
    COMMITTED = "committed"


@dataclass
class UpdateResult:
    """Transient outcome of one `update_once` call"""
    outcome: UpdateOutcome
    error: Exception | None = None
    backup_path: Path | None = None
    finished_at: datetime | None = None

    @property
    def committed(self) -> bool:
        return self.outcome == UpdateOutcome.COMMITTED

    def to_dict(self) -> dict:
        """Convert to dictionary for status reporting"""
        return {
            "outcome": self.outcome.value,
            "error": str(self.error) if self.error else None,
            "backup_path": str(self.backup_path) if self.backup_path else None,
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
        }


class SubscriptionUpdater:
    """
    Orchestrates download, validation and the atomic swap.

    Not safe for concurrent calls; UpdateScheduler serializes them.
    Safe to call again right after any failure.
    """

    def __init__(
        self,
        settings: Settings,
        downloader: Downloader | None = None,
        validator: ConfigValidator | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.source = settings.subscribe_url
        self.live_path = settings.live_config
        self.update_path = settings.update_path
        self.downloader = downloader or Downloader(settings)
        self.validator = validator or ConfigValidator()
        self._clock = clock

    async def update_once(self, stop_event: asyncio.Event | None = None) -> UpdateResult:
        """Run one download -> validate -> backup -> swap cycle."""
        if not self.source:
            logger.debug("No subscription URL configured, skipping update")
            return self._result(UpdateOutcome.SKIPPED)

        logger.info("config update...")

        try:
            await self.downloader.fetch(self.source, self.update_path, stop_event)
        except HlashError as e:
            logger.error(f"config download: {e}")
            return self._result(UpdateOutcome.DOWNLOAD_FAILED, e)

        try:
            self.validator.validate_file(self.update_path)
        except ValidationError as e:
            logger.error(f"config test: {e}")
            self._check_live_config()
            return self._result(UpdateOutcome.VALIDATION_FAILED, e)

        backup_path: Path | None = None
        if self.live_path.exists():
            backup_path = self._backup_path()
            try:
                os.replace(self.live_path, backup_path)
            except OSError as e:
                error = FilesystemError(f"backup failed: {e}", str(backup_path))
                logger.error(f"config backup: {error}")
                return self._result(UpdateOutcome.SWAP_FAILED, error)
            logger.info(f"config backup: {backup_path}", extra={"backup_path": str(backup_path)})

        try:
            os.replace(self.update_path, self.live_path)
        except OSError as e:
            error = FilesystemError(f"save failed: {e}", str(self.live_path))
            logger.error(f"config save: {error}")
            if backup_path is not None:
                self._restore_backup(backup_path)
            return self._result(UpdateOutcome.SWAP_FAILED, error)

        logger.info(f"config committed: {self.live_path}")
        return self._result(UpdateOutcome.COMMITTED, backup_path=backup_path)

    def _backup_path(self) -> Path:
        """Timestamped backup path that does not collide with an existing one"""
        stamp = self._clock().strftime(BACKUP_TIME_FORMAT)
        base = f"{self.live_path.name}-{stamp}"
        candidate = self.live_path.with_name(f"{base}.backup")
        counter = 1
        while candidate.exists():
            candidate = self.live_path.with_name(f"{base}-{counter}.backup")
            counter += 1
        return candidate

    def _restore_backup(self, backup_path: Path) -> None:
        """Put the just-moved backup back onto the live path."""
        try:
            os.replace(backup_path, self.live_path)
            logger.warning(f"config restored from backup: {backup_path}")
        except OSError as e:
            logger.critical(
                f"config restore failed, live config missing: {e}",
                extra={"backup_path": str(backup_path)},
            )

    def _check_live_config(self) -> None:
        """Re-validate the current live config as a health signal only."""
        if not self.live_path.exists():
            return
        try:
            self.validator.validate_file(self.live_path)
        except ValidationError as e:
            logger.error(f"live config is also invalid: {e}")

    def _result(
        self,
        outcome: UpdateOutcome,
        error: Exception | None = None,
        backup_path: Path | None = None,
    ) -> UpdateResult:
        return UpdateResult(
            outcome=outcome,
            error=error,
            backup_path=backup_path,
            finished_at=self._clock(),
        )
