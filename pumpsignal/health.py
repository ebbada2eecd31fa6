"""HTTP health, status and Prometheus metrics endpoints."""

from __future__ import annotations

import errno
import logging
from typing import Callable, Optional

from aiohttp import web
from prometheus_client import CONTENT_TYPE_LATEST, CollectorRegistry, Gauge, generate_latest

from .engine import EngineStatus

logger = logging.getLogger(__name__)

__all__ = ["HealthServer", "build_app"]

SERVICE_NAME = "pumpsignal"
_PORT_RETRIES = 5

StatusProvider = Callable[[], EngineStatus]


class _EngineCollector:
    """Gauges refreshed from an engine status snapshot on every scrape."""

    def __init__(self, registry: CollectorRegistry) -> None:
        self.uptime = Gauge("pumpsignal_uptime_seconds", "Engine uptime", registry=registry)
        self.transactions = Gauge(
            "pumpsignal_transactions_total", "Transactions received", registry=registry
        )
        self.active_tokens = Gauge("pumpsignal_active_tokens", "Tokens being tracked", registry=registry)
        self.open_positions = Gauge("pumpsignal_open_positions", "Open paper positions", registry=registry)
        self.closed_positions = Gauge(
            "pumpsignal_closed_positions", "Closed paper positions", registry=registry
        )
        self.total_pnl = Gauge("pumpsignal_total_pnl", "Realized PnL, including partial exits", registry=registry)

    def update(self, status: EngineStatus) -> None:
        self.uptime.set(status.uptime)
        self.transactions.set(status.processed_events)
        self.active_tokens.set(status.active_tokens)
        self.open_positions.set(status.open_positions)
        self.closed_positions.set(status.closed_positions)
        self.total_pnl.set(status.total_pnl)


def build_app(status: StatusProvider) -> web.Application:
    registry = CollectorRegistry()
    gauges = _EngineCollector(registry)

    async def _index(request: web.Request) -> web.Response:
        return web.json_response(
            {"service": SERVICE_NAME, "endpoints": ["/health", "/status", "/metrics"]}
        )

    async def _health(request: web.Request) -> web.Response:
        snapshot = status()
        return web.json_response(
            {"status": "ok" if snapshot.running else "stopped", "uptime": snapshot.uptime}
        )

    async def _status(request: web.Request) -> web.Response:
        return web.json_response(status().to_dict())

    async def _metrics(request: web.Request) -> web.Response:
        gauges.update(status())
        body = generate_latest(registry)
        return web.Response(body=body, headers={"Content-Type": CONTENT_TYPE_LATEST})

    app = web.Application()
    app.router.add_get("/", _index)
    app.router.add_get("/health", _health)
    app.router.add_get("/status", _status)
    app.router.add_get("/metrics", _metrics)
    return app


class HealthServer:
    """Run :func:`build_app` on ``host:port``, moving up when the port is taken."""

    def __init__(self, status: StatusProvider, host: str = "0.0.0.0", port: int = 3000) -> None:
        self._status = status
        self.host = host
        self.port = int(port)
        self._runner: Optional[web.AppRunner] = None

    async def start(self) -> int:
        current_port = self.port
        for attempt in range(_PORT_RETRIES + 1):
            runner = web.AppRunner(build_app(self._status))
            await runner.setup()
            site = web.TCPSite(runner, self.host, current_port)
            try:
                await site.start()
            except OSError as exc:
                await runner.cleanup()
                if getattr(exc, "errno", None) not in {errno.EADDRINUSE, errno.EACCES}:
                    raise
                if attempt == _PORT_RETRIES:
                    break
                logger.info("health server port %s busy, retrying on %s", current_port, current_port + 1)
                current_port += 1
                continue
            self._runner = runner
            self.port = current_port
            logger.info("health server listening on %s:%s", self.host, current_port)
            return current_port
        raise RuntimeError(f"unable to bind health server near port {self.port}")

    async def stop(self) -> None:
        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None
