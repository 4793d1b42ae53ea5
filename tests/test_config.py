"""Settings, durations and service argument handling."""

from pathlib import Path

import pytest

from hlash.common.config import DEFAULT_CONTROLLER, Settings, parse_duration, service_arguments


@pytest.mark.parametrize(
    "text, seconds",
    [
        ("90", 90.0),
        ("1.5", 1.5),
        ("30s", 30.0),
        ("15m", 900.0),
        ("6h", 21600.0),
        ("1h30m", 5400.0),
        ("500ms", 0.5),
        ("0", 0.0),
        (" 2H ", 7200.0),
    ],
)
def test_parse_duration(text, seconds):
    assert parse_duration(text) == seconds


@pytest.mark.parametrize("text", ["", "abc", "5d", "1h 30m", "-5", "-1h", "nan", "inf", "h1"])
def test_parse_duration_rejects(text):
    with pytest.raises(ValueError):
        parse_duration(text)


def test_settings_paths():
    settings = Settings(home_dir=Path("/srv/hlash"))

    assert settings.live_config == Path("/srv/hlash/config.yaml")
    assert settings.update_path == Path("/srv/hlash/config.yaml.update")
    assert settings.controller_address == DEFAULT_CONTROLLER


@pytest.mark.parametrize(
    "argv, expected",
    [
        (["-s", "install", "--run", "-t", "6h"], ["--run", "-t", "6h"]),
        (["--run", "--svc", "install"], ["--run"]),
        (["--svc=install", "-u", "https://x"], ["-u", "https://x"]),
        (["-sinstall", "-p", "7890"], ["-p", "7890"]),
        (["-u", "https://x", "--subscribe-interval", "1h"], ["-u", "https://x", "--subscribe-interval", "1h"]),
    ],
)
def test_service_arguments(argv, expected):
    assert service_arguments(argv) == expected


def test_service_arguments_custom_drop():
    argv = ["-d", "./data", "-s", "install", "--home=/x", "--run"]

    assert service_arguments(argv, drop=("--svc", "-s", "--home", "-d")) == ["--run"]
