"""Health-check HTTP endpoint served with aiohttp."""

from __future__ import annotations

import logging

from aiohttp import web

from apcsplitter.config import HealthCheckConfig

_logger = logging.getLogger(__name__)


class HealthCheckServer:
    """Answers ``GET /healthz`` with 200 while healthy and 503 otherwise.

    Starts unhealthy; the service flips it once every broker resource exists.
    """

    def __init__(self, config: HealthCheckConfig, *, host: str = "0.0.0.0") -> None:  # noqa: S104
        self._config = config
        self._host = host
        self._is_ok = False
        self._runner: web.AppRunner | None = None
        self.app = web.Application()
        self.app.router.add_get("/", self._handle)
        self.app.router.add_get("/healthz", self._handle)

    @property
    def is_ok(self) -> bool:
        return self._is_ok

    def set_ok(self, is_ok: bool) -> None:
        self._is_ok = is_ok

    async def _handle(self, _request: web.Request) -> web.Response:
        if self._is_ok:
            return web.Response(text="OK")
        return web.Response(status=503, text="Service Unavailable")

    async def start(self) -> None:
        runner = web.AppRunner(self.app)
        await runner.setup()
        site = web.TCPSite(runner, self._host, self._config.port)
        await site.start()
        self._runner = runner
        _logger.debug("Health check server listening port=%d", self._config.port)

    async def close(self) -> None:
        runner = self._runner
        self._runner = None
        if runner is not None:
            await runner.cleanup()
