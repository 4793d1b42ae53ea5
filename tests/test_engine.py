"""ClashEngine: home directory setup, process start and controller calls."""

import json
import stat
import subprocess
from dataclasses import replace

import httpx
import pytest

from hlash.common.config import Settings
from hlash.common.exceptions import ConfigError, EngineError
from hlash.services.engine.engine import DEFAULT_CONFIG, ClashEngine

from .fakes import INVALID_CONFIG


class FakeProcess:
    def __init__(self, pid: int = 4242):
        self.pid = pid
        self.returncode = None
        self.terminated = False

    def poll(self):
        return self.returncode

    def terminate(self):
        self.terminated = True
        self.returncode = -15

    def kill(self):
        self.returncode = -9

    def wait(self, timeout=None):
        return self.returncode


class Controller:
    """MockTransport handler emulating the engine's REST controller"""

    def __init__(self, put_status: int = 204):
        self.requests: list[httpx.Request] = []
        self.put_status = put_status

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.path == "/version":
            return httpx.Response(200, json={"version": "v1.18.0"})
        if request.method == "PUT":
            return httpx.Response(self.put_status, text="" if self.put_status < 400 else "bad config")
        if request.method == "PATCH":
            return httpx.Response(204)
        return httpx.Response(404)

    def calls(self) -> list[tuple[str, str]]:
        return [(r.method, r.url.path) for r in self.requests]


@pytest.fixture
def engine_bin(tmp_path):
    path = tmp_path / "bin" / "clash"
    path.parent.mkdir()
    path.write_text("#!/bin/sh\n")
    path.chmod(path.stat().st_mode | stat.S_IXUSR)
    return path


def test_init_config_dir_writes_default(settings):
    engine = ClashEngine(settings)

    engine.init_config_dir()

    assert settings.live_config.read_text() == DEFAULT_CONFIG


def test_init_config_dir_keeps_existing(settings, live_config):
    ClashEngine(settings).init_config_dir()

    assert settings.live_config.read_text() == live_config


def test_init_config_dir_failure(tmp_path):
    blocker = tmp_path / "file"
    blocker.write_text("")
    engine = ClashEngine(Settings(home_dir=blocker / "home"))

    with pytest.raises(ConfigError):
        engine.init_config_dir()


def test_command(settings, engine_bin):
    settings = replace(settings, engine_bin=str(engine_bin), secret="s3cret", controller=":9999")
    engine = ClashEngine(settings)

    cmd = engine.command()

    assert cmd == [
        str(engine_bin),
        "-d", str(settings.home_dir),
        "-f", str(settings.live_config),
        "-ext-ctl", ":9999",
        "-secret", "s3cret",
        "-ext-ui", "ui",
    ]
    assert engine.base_url == "http://127.0.0.1:9999"
    assert "s3cret" not in engine._redacted(cmd)


def test_command_missing_binary(settings):
    engine = ClashEngine(replace(settings, engine_bin="no-such-engine-binary"))

    with pytest.raises(ConfigError):
        engine.command()


@pytest.mark.asyncio
async def test_parse_and_apply_rejects_invalid_live_config(settings):
    settings.live_config.write_text(INVALID_CONFIG)
    engine = ClashEngine(settings, popen=lambda *a, **kw: pytest.fail("engine started"))

    with pytest.raises(ConfigError, match="Parse config error"):
        await engine.parse_and_apply()


@pytest.mark.asyncio
async def test_parse_and_apply_starts_engine(settings, live_config, engine_bin):
    settings = replace(settings, engine_bin=str(engine_bin), mixed_port=7777)
    controller = Controller()
    process = FakeProcess()
    spawned = []

    def popen(cmd, cwd=None):
        spawned.append((cmd, cwd))
        return process

    engine = ClashEngine(settings, transport=httpx.MockTransport(controller), popen=popen)

    await engine.parse_and_apply()

    assert engine.is_running()
    assert engine.pid == 4242
    assert spawned[0][1] == str(settings.home_dir)
    assert controller.calls() == [("GET", "/version"), ("PATCH", "/configs")]
    assert json.loads(controller.requests[1].content) == {"mixed-port": 7777, "port": 0, "socks-port": 0}

    await engine.stop()
    assert process.terminated
    assert not engine.is_running()


@pytest.mark.asyncio
async def test_engine_exiting_during_startup(settings, live_config, engine_bin):
    settings = replace(settings, engine_bin=str(engine_bin))
    process = FakeProcess()
    process.returncode = 1
    engine = ClashEngine(settings, transport=httpx.MockTransport(Controller()), popen=lambda *a, **kw: process)

    with pytest.raises(ConfigError, match="exited during startup"):
        await engine.parse_and_apply()

    assert engine.pid is None


@pytest.mark.asyncio
async def test_apply_config_puts_path(settings, live_config):
    settings = replace(settings, secret="s3cret")
    controller = Controller()
    engine = ClashEngine(settings, transport=httpx.MockTransport(controller))

    await engine.apply_config(settings.live_config)

    request = controller.requests[0]
    assert (request.method, request.url.path) == ("PUT", "/configs")
    assert request.url.params["force"] == "true"
    assert request.headers["authorization"] == "Bearer s3cret"
    assert json.loads(request.content) == {"path": str(settings.live_config.resolve())}
    # No port override without --mixed-port
    assert len(controller.requests) == 1


@pytest.mark.asyncio
async def test_apply_config_rejected(settings, live_config):
    engine = ClashEngine(settings, transport=httpx.MockTransport(Controller(put_status=400)))

    with pytest.raises(EngineError, match="config rejected: 400"):
        await engine.apply_config(settings.live_config)


@pytest.mark.asyncio
async def test_apply_config_unreachable(settings, live_config):
    def refuse(request):
        raise httpx.ConnectError("connection refused", request=request)

    engine = ClashEngine(settings, transport=httpx.MockTransport(refuse))

    with pytest.raises(EngineError, match="controller unreachable"):
        await engine.apply_config(settings.live_config)


@pytest.mark.asyncio
async def test_stop_kills_stubborn_process(settings):
    class Stubborn(FakeProcess):
        def terminate(self):
            self.terminated = True

        def wait(self, timeout=None):
            if timeout is not None and self.returncode is None:
                raise subprocess.TimeoutExpired("clash", timeout)
            return self.returncode

    process = Stubborn()
    engine = ClashEngine(settings)
    engine.process = process

    await engine.stop()

    assert process.terminated
    assert process.returncode == -9
