import asyncio
import socket

from aiohttp.test_utils import TestClient, TestServer

from pumpsignal.engine import EngineStatus
from pumpsignal.health import HealthServer, build_app

STATUS = EngineStatus(
    running=True,
    feed_connected=True,
    processed_events=42,
    rejected_events=1,
    active_tokens=3,
    tracked_tokens=5,
    open_positions=1,
    closed_positions=2,
    total_pnl=0.75,
    missed_runners=4,
    uptime=12.5,
)


def test_endpoints():
    async def run():
        client = TestClient(TestServer(build_app(lambda: STATUS)))
        await client.start_server()
        try:
            resp = await client.get("/health")
            assert resp.status == 200
            assert await resp.json() == {"status": "ok", "uptime": 12.5}

            resp = await client.get("/status")
            body = await resp.json()
            assert body["processed_events"] == 42
            assert body["open_positions"] == 1

            resp = await client.get("/metrics")
            text = await resp.text()
            assert "pumpsignal_transactions_total 42.0" in text
            assert "pumpsignal_total_pnl 0.75" in text

            resp = await client.get("/")
            assert "/metrics" in (await resp.json())["endpoints"]
        finally:
            await client.close()

    asyncio.run(run())


def test_server_moves_to_next_port_when_busy():
    async def run():
        blocker = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        blocker.bind(("127.0.0.1", 0))
        blocker.listen(1)
        busy = blocker.getsockname()[1]
        server = HealthServer(lambda: STATUS, "127.0.0.1", busy)
        try:
            port = await server.start()
            assert port != busy
            assert busy < port <= busy + 5
        finally:
            await server.stop()
            blocker.close()

    asyncio.run(run())
