"""
HTTP liveness/readiness endpoint for the container platform.

  GET /        → service name and version
  GET /health  → 200 while the process is alive; lists providers whose
                 circuit breaker is open so degraded sync is visible
  GET /ready   → 503 until storage, clients and schedules are up, then 200
"""

import asyncio
import logging
import time

from aiohttp import web

from .config import settings
from .utils.circuit_breaker import open_circuits

logger = logging.getLogger(__name__)

SERVICE = "concierge"
VERSION = "1.0.0"

_START_TIME = time.monotonic()
_READY = False


def set_ready() -> None:
    global _READY
    _READY = True
    logger.info("Service ready")


async def _handle_root(request: web.Request) -> web.Response:
    return web.json_response({"service": SERVICE, "version": VERSION})


async def _handle_health(request: web.Request) -> web.Response:
    return web.json_response({
        "status": "ok",
        "uptime_s": int(time.monotonic() - _START_TIME),
        "open_circuits": open_circuits(),
    })


async def _handle_ready(request: web.Request) -> web.Response:
    if not _READY:
        return web.json_response({"status": "starting"}, status=503)
    return web.json_response({"status": "ready"})


def build_app() -> web.Application:
    app = web.Application()
    app.router.add_get("/", _handle_root)
    app.router.add_get("/health", _handle_health)
    app.router.add_get("/ready", _handle_ready)
    return app


async def run_health_server(port: int | None = None) -> None:
    """Serve the endpoints until the task is cancelled."""
    port = port or settings.health_port
    runner = web.AppRunner(build_app(), access_log=None)
    await runner.setup()
    try:
        await web.TCPSite(runner, "0.0.0.0", port).start()
        logger.info("Health endpoint on port %d", port)
        await asyncio.Event().wait()
    finally:
        await runner.cleanup()
