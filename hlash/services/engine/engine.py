"""
Clash Engine Adapter

Runs a Clash-compatible proxy binary as a child process and talks to
it through its REST controller:
- init_config_dir: create the home directory and a default config
- parse_and_apply: validate the live config and start the engine
- reparse_from_path: parse/validate a config file without applying it
- apply_config: hot-reload a config file (PUT /configs?force=true)

Protocol handling and routing stay inside the engine.
"""

import asyncio
import shutil
import subprocess
from pathlib import Path
from typing import Any, Callable, Protocol

import httpx

from hlash.common.config import Settings
from hlash.common.exceptions import ConfigError, EngineError, ValidationError
from hlash.common.logging_setup import get_service_logger
from hlash.services.subscription.validator import ConfigValidator

logger = get_service_logger("engine")

DEFAULT_CONFIG = "mixed-port: 7890\n"

STARTUP_TIMEOUT_S = 30
READY_POLL_INTERVAL_S = 0.5
STOP_TIMEOUT_S = 10


class Engine(Protocol):
    """Operations the wrapper needs from a proxy engine"""

    def init_config_dir(self) -> None: ...

    async def parse_and_apply(self) -> None: ...

    def reparse_from_path(self, path: Path) -> dict[str, Any]: ...

    async def apply_config(self, path: Path, force: bool = True) -> None: ...

    def is_running(self) -> bool: ...

    async def stop(self) -> None: ...


class ClashEngine:
    """Clash/mihomo child process managed through its external controller"""

    def __init__(
        self,
        settings: Settings,
        validator: ConfigValidator | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        popen: Callable[..., subprocess.Popen] = subprocess.Popen,
    ):
        self.settings = settings
        self.validator = validator or ConfigValidator()
        self._transport = transport
        self._popen = popen

        self.process: subprocess.Popen | None = None

    @property
    def base_url(self) -> str:
        address = self.settings.controller_address
        if address.startswith(":"):
            address = "127.0.0.1" + address
        return f"http://{address}"

    @property
    def pid(self) -> int | None:
        return self.process.pid if self.process else None

    def _headers(self) -> dict[str, str]:
        if self.settings.secret:
            return {"Authorization": f"Bearer {self.settings.secret}"}
        return {}

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            headers=self._headers(),
            timeout=5.0,
            transport=self._transport,
        )

    def init_config_dir(self) -> None:
        """
        Ensure the home directory and a live config exist.

        Raises:
            ConfigError: the directory or default config cannot be created
        """
        home = self.settings.home_dir
        live = self.settings.live_config
        try:
            home.mkdir(parents=True, exist_ok=True)
            if not live.exists():
                live.write_text(DEFAULT_CONFIG, encoding="utf-8")
                logger.info(f"Wrote default config: {live}")
        except OSError as e:
            raise ConfigError(f"Initial configuration directory error: {e}") from e

    def reparse_from_path(self, path: Path) -> dict[str, Any]:
        """Parse and validate `path`; raises ValidationError."""
        return self.validator.validate_file(path)

    def command(self) -> list[str]:
        """Command line the engine is started with"""
        binary = shutil.which(self.settings.engine_bin)
        if not binary:
            raise ConfigError(f"engine binary not found: {self.settings.engine_bin}")

        cmd = [
            binary,
            "-d", str(self.settings.home_dir),
            "-f", str(self.settings.live_config),
            "-ext-ctl", self.settings.controller_address,
        ]
        if self.settings.secret:
            cmd += ["-secret", self.settings.secret]
        if self.settings.ui:
            cmd += ["-ext-ui", self.settings.ui]
        return cmd

    async def parse_and_apply(self) -> None:
        """
        Validate the live config and start the engine on it.

        Raises:
            ConfigError: the live config is invalid or the engine never came up
        """
        try:
            self.reparse_from_path(self.settings.live_config)
        except ValidationError as e:
            raise ConfigError(f"Parse config error: {e}") from e

        if self.is_running():
            await self.apply_config(self.settings.live_config)
            return

        cmd = self.command()
        logger.info(f"Starting engine: {' '.join(self._redacted(cmd))}")
        try:
            self.process = self._popen(cmd, cwd=str(self.settings.home_dir))
        except OSError as e:
            raise ConfigError(f"engine failed to start: {e}") from e

        logger.info(f"Engine started (PID: {self.process.pid})")

        try:
            await self._wait_ready()
            await self._apply_overrides()
        except EngineError as e:
            await self.stop()
            raise ConfigError(str(e)) from e

    async def apply_config(self, path: Path, force: bool = True) -> None:
        """
        Ask the running engine to load `path`.

        Raises:
            EngineError: controller unreachable or config rejected
        """
        try:
            async with self._client() as client:
                response = await client.put(
                    "/configs",
                    params={"force": "true" if force else "false"},
                    json={"path": str(Path(path).resolve())},
                )
                response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise EngineError(f"config rejected: {e.response.status_code} {e.response.text}") from e
        except httpx.HTTPError as e:
            raise EngineError(f"controller unreachable: {e!r}") from e

        logger.info(f"Engine applied config: {path}")
        await self._apply_overrides()

    async def _apply_overrides(self) -> None:
        """Pin the proxy port when --mixed-port is given."""
        if self.settings.mixed_port <= 0:
            return

        patch = {"mixed-port": self.settings.mixed_port, "port": 0, "socks-port": 0}
        try:
            async with self._client() as client:
                response = await client.patch("/configs", json=patch)
                response.raise_for_status()
        except httpx.HTTPError as e:
            raise EngineError(f"port override failed: {e!r}") from e

        logger.info(f"Engine listening on mixed port {self.settings.mixed_port}")

    async def _wait_ready(self) -> None:
        """Poll the controller until it answers or the process dies."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + STARTUP_TIMEOUT_S

        async with self._client() as client:
            while loop.time() < deadline:
                if not self.is_running():
                    code = self.process.returncode if self.process else None
                    raise EngineError(f"engine exited during startup (code {code})")
                try:
                    response = await client.get("/version")
                    if response.status_code == 200:
                        logger.info(f"Engine ready: {response.json().get('version', 'unknown')}")
                        return
                except (httpx.HTTPError, ValueError):
                    pass
                await asyncio.sleep(READY_POLL_INTERVAL_S)

        raise EngineError(f"engine controller not ready after {STARTUP_TIMEOUT_S}s")

    def is_running(self) -> bool:
        """Check if the engine process is alive"""
        if not self.process:
            return False
        return self.process.poll() is None

    async def stop(self) -> None:
        """Terminate the engine, killing it if it ignores SIGTERM."""
        if not self.process:
            return

        process = self.process
        self.process = None
        if process.poll() is not None:
            return

        process.terminate()
        try:
            await asyncio.to_thread(process.wait, STOP_TIMEOUT_S)
        except subprocess.TimeoutExpired:
            logger.warning("Engine ignored SIGTERM, killing")
            process.kill()
            await asyncio.to_thread(process.wait)

        logger.info("Engine stopped")

    def _redacted(self, cmd: list[str]) -> list[str]:
        secret = self.settings.secret
        return ["***" if secret and arg == secret else arg for arg in cmd]
