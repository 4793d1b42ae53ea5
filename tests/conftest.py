"""
tests/conftest.py - shared fixtures.
"""

import pytest

from hlash.common.config import Settings

from .fakes import VALID_CONFIG


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        home_dir=tmp_path,
        subscribe_url="https://sub.example.com/config.yaml",
    )


@pytest.fixture
def live_config(settings) -> str:
    """A valid live config already in place; returns its text."""
    settings.live_config.write_text(VALID_CONFIG, encoding="utf-8")
    return VALID_CONFIG


@pytest.fixture
def sleeps() -> list[float]:
    return []


@pytest.fixture
def fake_sleep(sleeps):
    """Downloader sleeper that records delays instead of waiting."""

    async def _sleep(stop_event, delay: float) -> bool:
        sleeps.append(delay)
        return bool(stop_event and stop_event.is_set())

    return _sleep
