"""Test doubles shared across the suite."""

import asyncio
from datetime import datetime
from pathlib import Path
from typing import Any

from hlash.common.config import ServiceDescriptor
from hlash.common.exceptions import (
    ConfigError,
    EngineError,
    ReloadError,
    ServiceNotInstalledError,
    ValidationError,
)
from hlash.services.subscription.updater import UpdateOutcome, UpdateResult
from hlash.services.system.driver import ServiceDriver, ServiceStatus

VALID_CONFIG = """\
mixed-port: 7890
proxies:
  - name: hk-01
    type: ss
    server: 203.0.113.10
    port: 8388
    cipher: aes-128-gcm
    password: secret
  - name: jp-01
    type: trojan
    server: 203.0.113.20
    port: 443
    password: secret
proxy-groups:
  - name: auto
    type: url-test
    proxies: [hk-01, jp-01]
    url: http://www.gstatic.com/generate_204
    interval: 300
  - name: select
    type: select
    proxies: [auto, DIRECT]
rules:
  - DOMAIN-SUFFIX,example.com,select
  - MATCH,auto
"""

INVALID_CONFIG = "<html><body>Please log in</body></html>\n"

FIXED_NOW = datetime(2024, 3, 1, 12, 30, 45)


def make_descriptor(**overrides: Any) -> ServiceDescriptor:
    values = {
        "name": "hlash",
        "display_name": "hlash",
        "description": "Clash service with automatic subscription updates",
    }
    values.update(overrides)
    return ServiceDescriptor(**values)


class FakeDriver(ServiceDriver):
    """In-memory driver; every mutating call is recorded"""

    def __init__(self, state: ServiceStatus = ServiceStatus.NOT_INSTALLED):
        super().__init__(make_descriptor())
        self.state = state
        self.calls: list[str] = []
        self.ran: list[Any] = []

    def status(self) -> ServiceStatus:
        return self.state

    def start(self) -> None:
        if self.state == ServiceStatus.NOT_INSTALLED:
            raise ServiceNotInstalledError("hlash")
        self.calls.append("start")
        self.state = ServiceStatus.RUNNING

    def stop(self) -> None:
        if self.state == ServiceStatus.NOT_INSTALLED:
            raise ServiceNotInstalledError("hlash")
        self.calls.append("stop")
        self.state = ServiceStatus.STOPPED

    def install(self) -> None:
        self.calls.append("install")
        self.state = ServiceStatus.STOPPED

    def uninstall(self) -> None:
        self.calls.append("uninstall")
        self.state = ServiceStatus.NOT_INSTALLED

    def run(self, program) -> None:
        self.ran.append(program)


class FakeUpdater:
    """Stands in for SubscriptionUpdater; replays queued outcomes (or raises queued exceptions)"""

    def __init__(self, outcomes: list[UpdateOutcome | Exception] | None = None):
        self.outcomes = list(outcomes or [])
        self.calls = 0
        self.stop_events: list[asyncio.Event | None] = []
        self.gate: asyncio.Event | None = None
        self.active = 0
        self.max_active = 0

    async def update_once(self, stop_event: asyncio.Event | None = None) -> UpdateResult:
        self.calls += 1
        self.stop_events.append(stop_event)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.gate is not None:
                await self.gate.wait()
            else:
                await asyncio.sleep(0)
        finally:
            self.active -= 1

        outcome = self.outcomes.pop(0) if self.outcomes else UpdateOutcome.COMMITTED
        if isinstance(outcome, Exception):
            raise outcome
        error = None
        if outcome not in (UpdateOutcome.COMMITTED, UpdateOutcome.SKIPPED):
            error = RuntimeError(outcome.value)
        return UpdateResult(outcome=outcome, error=error)


class FakeSignaler:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.requests = 0

    def request_reload(self) -> None:
        if self.fail:
            raise ReloadError("engine control loop is not running")
        self.requests += 1


class FakeEngine:
    """Engine double that records the order of calls"""

    def __init__(self):
        self.events: list[str] = []
        self.running = False
        self.invalid = False
        self.apply_fails = False
        self.start_fails = False
        self.applied: list[Path] = []

    def init_config_dir(self) -> None:
        self.events.append("init")

    async def parse_and_apply(self) -> None:
        self.events.append("parse_and_apply")
        if self.start_fails:
            raise ConfigError("Parse config error")
        self.running = True

    def reparse_from_path(self, path: Path) -> dict[str, Any]:
        self.events.append("reparse")
        if self.invalid:
            raise ValidationError(str(path), ["config must be a mapping"])
        return {}

    async def apply_config(self, path: Path, force: bool = True) -> None:
        self.events.append("apply")
        if self.apply_fails:
            raise EngineError("config rejected: 400")
        self.applied.append(path)

    def is_running(self) -> bool:
        return self.running

    async def stop(self) -> None:
        self.events.append("stop")
        self.running = False


async def wait_until(predicate, timeout: float = 2.0) -> None:
    """Poll `predicate` until it holds; fail the test on timeout."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.01)
