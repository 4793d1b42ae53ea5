"""
Health Server

Local HTTP endpoint for the running service:
- GET  /health  status, uptime, last update outcome, next update time
- POST /update  run an update cycle now (serialized with the timer)
"""

from datetime import datetime, timezone
from typing import Callable

from aiohttp import web

from hlash.common.logging_setup import get_service_logger
from hlash.services.subscription.scheduler import UpdateScheduler

logger = get_service_logger("system.health")


class HealthServer:
    """aiohttp server bound to localhost"""

    def __init__(
        self,
        scheduler: UpdateScheduler,
        port: int,
        host: str = "127.0.0.1",
        engine_pid: Callable[[], int | None] | None = None,
    ):
        self.scheduler = scheduler
        self.port = port
        self.host = host
        self.engine_pid = engine_pid

        self._start_time = datetime.now(timezone.utc)
        self._runner: web.AppRunner | None = None

    def build_app(self) -> web.Application:
        app = web.Application()
        app.router.add_get("/health", self._health_handler)
        app.router.add_post("/update", self._update_handler)
        return app

    async def start(self) -> None:
        """Start the health check HTTP server"""
        self._runner = web.AppRunner(self.build_app())
        await self._runner.setup()

        site = web.TCPSite(self._runner, self.host, self.port)
        await site.start()

        logger.info(f"Health server started on port {self.port}")

    async def stop(self) -> None:
        """Stop the health check HTTP server"""
        if self._runner:
            await self._runner.cleanup()
            self._runner = None

    async def _health_handler(self, request: web.Request) -> web.Response:
        """Handle health check requests"""
        uptime = (datetime.now(timezone.utc) - self._start_time).total_seconds()
        last = self.scheduler.last_result
        next_at = self.scheduler.next_update_at

        return web.json_response({
            "status": "healthy",
            "service": "hlash",
            "uptime": int(uptime),
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "last_update": last.to_dict() if last else None,
            "next_update_at": next_at.isoformat() if next_at else None,
            "engine_pid": self.engine_pid() if self.engine_pid else None,
        })

    async def _update_handler(self, request: web.Request) -> web.Response:
        """Handle manual update requests"""
        logger.info("Manual update requested")
        result = await self.scheduler.update_now(reload=True)

        return web.json_response(
            {"success": result.committed, **result.to_dict()},
            status=502 if result.error else 200,
        )
