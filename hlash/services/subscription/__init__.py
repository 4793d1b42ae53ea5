"""
Subscription Service - keeps the live config up to date

Responsibilities:
- Download the subscription with retry and backoff
- Validate before committing
- Atomic swap with a timestamped backup
- Periodic refresh with reload requests
"""

from .downloader import Downloader
from .scheduler import UpdateScheduler
from .updater import SubscriptionUpdater, UpdateOutcome, UpdateResult
from .validator import ConfigValidator

__all__ = [
    "ConfigValidator",
    "Downloader",
    "SubscriptionUpdater",
    "UpdateOutcome",
    "UpdateResult",
    "UpdateScheduler",
]
