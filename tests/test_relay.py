"""Tests for the WebSocket broadcast relay: registry, fan-out, heartbeat, server."""

import asyncio
import json
import random
from contextlib import asynccontextmanager

import httpx
import pytest
from websockets.asyncio.client import connect

from src.relay.__main__ import parse_args
from src.relay.broadcaster import BroadcastRelay
from src.relay.config import RelayConfig
from src.relay.registry import Connection, ConnectionRegistry
from src.relay.server import RelayServer
from src.settings import Settings


class FakeTransport:
    """In-memory stand-in for a relay-side socket.

    ``answers_pings`` controls whether ping futures resolve at once (a
    healthy peer) or stay pending (a half-open socket).
    """

    def __init__(self, fail: bool = False, open_: bool = True, answers_pings: bool = True):
        self.fail = fail
        self.open = open_
        self.answers_pings = answers_pings
        self.sent: list[str] = []
        self.pong_waiters: list[asyncio.Future] = []
        self.closed_with = None

    @property
    def is_open(self) -> bool:
        return self.open

    async def send_text(self, payload: str) -> None:
        if self.fail:
            raise RuntimeError("socket write failed")
        self.sent.append(payload)

    async def ping(self) -> asyncio.Future:
        if self.fail:
            raise RuntimeError("socket write failed")
        waiter = asyncio.get_running_loop().create_future()
        if self.answers_pings:
            waiter.set_result(0.001)
        self.pong_waiters.append(waiter)
        return waiter

    async def close(self, code: int = 1000) -> None:
        self.open = False
        self.closed_with = code


PACKET = json.dumps({
    "timestamp": 1000,
    "accel": {"x": 0.1, "y": -9.8, "z": 0.2},
    "gyro": {"x": 0.0, "y": 0.01, "z": 0.0},
    "velocity": 0.0,
    "impact": 0.0,
})


async def wait_until(predicate, timeout: float = 2.0) -> bool:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            return False
        await asyncio.sleep(0.005)
    return True


# ── Config Tests ─────────────────────────────────────────────────────


class TestRelayConfig:
    """Tests for relay configuration defaults."""

    def test_default_config(self):
        cfg = RelayConfig()
        assert cfg.host == "0.0.0.0"
        assert cfg.port == 8080
        assert cfg.heartbeat_interval_seconds == 30.0

    def test_from_settings(self):
        cfg = RelayConfig.from_settings(Settings(port=9001, heartbeat_interval_seconds=5))
        assert cfg.port == 9001
        assert cfg.heartbeat_interval_seconds == 5

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("SPB_PORT", "9100")
        assert RelayConfig.from_settings().port == 9100


# ── ConnectionRegistry Tests ─────────────────────────────────────────


class TestConnectionRegistry:
    """Tests for the connection registry."""

    def setup_method(self):
        self.registry = ConnectionRegistry()

    def test_register_returns_unique_ids(self):
        ids = {self.registry.register(FakeTransport()) for _ in range(50)}
        assert len(ids) == 50
        assert self.registry.count == 50

    def test_new_connection_is_alive(self):
        conn_id = self.registry.register(FakeTransport())
        conn = self.registry.get(conn_id)
        assert isinstance(conn, Connection)
        assert conn.is_alive is True

    def test_unregister(self):
        conn_id = self.registry.register(FakeTransport())
        assert self.registry.unregister(conn_id) is True
        assert self.registry.get(conn_id) is None
        assert len(self.registry) == 0

    def test_unregister_unknown_is_noop(self):
        self.registry.register(FakeTransport())
        assert self.registry.unregister("does-not-exist") is False
        assert self.registry.count == 1

    def test_unregister_twice(self):
        conn_id = self.registry.register(FakeTransport())
        self.registry.unregister(conn_id)
        assert self.registry.unregister(conn_id) is False

    @pytest.mark.parametrize("seed", [0, 1, 2, 3, 4])
    def test_interleaved_register_unregister_ends_empty(self, seed):
        rng = random.Random(seed)
        pending: list[str] = []
        registered = 0
        while registered < 40 or pending:
            if registered < 40 and (not pending or rng.random() < 0.6):
                pending.append(self.registry.register(FakeTransport()))
                registered += 1
            else:
                self.registry.unregister(pending.pop(rng.randrange(len(pending))))
        assert self.registry.count == 0

    def test_mark_pending_and_alive(self):
        conn_id = self.registry.register(FakeTransport())
        conn = self.registry.get(conn_id)
        before = conn.last_pong_at
        self.registry.mark_pending(conn_id)
        assert conn.is_alive is False
        self.registry.mark_alive(conn_id)
        assert conn.is_alive is True
        assert conn.last_pong_at >= before

    def test_mark_unknown_is_noop(self):
        self.registry.mark_alive("nope")
        self.registry.mark_pending("nope")
        assert self.registry.count == 0

    @pytest.mark.asyncio
    async def test_for_each_live_visits_everything_once(self):
        ids = [self.registry.register(FakeTransport()) for _ in range(5)]
        seen = []
        visited = await self.registry.for_each_live(lambda c: seen.append(c.connection_id))
        assert visited == 5
        assert sorted(seen) == sorted(ids)

    @pytest.mark.asyncio
    async def test_for_each_live_tolerates_mutation(self):
        ids = [self.registry.register(FakeTransport()) for _ in range(4)]
        seen = []
        added = []

        def callback(conn):
            seen.append(conn.connection_id)
            if conn.connection_id == ids[0]:
                # Remove a later entry and add a new one mid-iteration
                self.registry.unregister(ids[2])
                added.append(self.registry.register(FakeTransport()))

        await self.registry.for_each_live(callback)
        assert seen == [ids[0], ids[1], ids[3]]
        assert added[0] not in seen
        assert self.registry.count == 4

    @pytest.mark.asyncio
    async def test_for_each_live_self_removal(self):
        ids = [self.registry.register(FakeTransport()) for _ in range(3)]
        seen = []

        def callback(conn):
            seen.append(conn.connection_id)
            self.registry.unregister(conn.connection_id)

        await self.registry.for_each_live(callback)
        assert seen == ids
        assert self.registry.count == 0

    @pytest.mark.asyncio
    async def test_for_each_live_awaits_coroutines(self):
        self.registry.register(FakeTransport())
        calls = []

        async def callback(conn):
            calls.append(conn.connection_id)

        await self.registry.for_each_live(callback)
        assert len(calls) == 1

    def test_stats(self):
        a = self.registry.register(FakeTransport())
        self.registry.register(FakeTransport())
        self.registry.mark_pending(a)
        stats = self.registry.get_stats()
        assert stats == {"total_connections": 2, "alive": 1, "pending": 1}

    def test_reset(self):
        self.registry.register(FakeTransport())
        self.registry.reset()
        assert self.registry.count == 0


# ── Broadcast Tests ──────────────────────────────────────────────────


class TestBroadcast:
    """Tests for message fan-out."""

    def setup_method(self):
        self.relay = BroadcastRelay(RelayConfig(heartbeat_interval_seconds=0.05))

    def _attach(self, n, **kwargs):
        transports = [FakeTransport(**kwargs) for _ in range(n)]
        ids = [self.relay.connect(t) for t in transports]
        return ids, transports

    @pytest.mark.asyncio
    async def test_delivers_to_all_others_not_sender(self):
        ids, transports = self._attach(4)
        delivered = await self.relay.on_message(ids[0], PACKET)
        assert delivered == 3
        assert transports[0].sent == []
        for t in transports[1:]:
            assert t.sent == [PACKET]

    @pytest.mark.asyncio
    async def test_payload_is_unmodified(self):
        ids, transports = self._attach(2)
        raw = '{"timestamp": 1,   "impact": 3.5}'
        await self.relay.on_message(ids[0], raw)
        assert transports[1].sent == [raw]

    @pytest.mark.asyncio
    async def test_payload_is_opaque(self):
        ids, transports = self._attach(2)
        await self.relay.on_message(ids[0], "hello")
        await self.relay.on_message(ids[0], '{"type": "ping"}')
        assert transports[1].sent == ["hello", '{"type": "ping"}']
        assert transports[0].sent == []

    @pytest.mark.asyncio
    async def test_lone_connection_delivers_nothing(self):
        ids, _ = self._attach(1)
        assert await self.relay.on_message(ids[0], PACKET) == 0

    @pytest.mark.asyncio
    async def test_failures_are_isolated(self):
        sender = self.relay.connect(FakeTransport())
        good = [FakeTransport() for _ in range(3)]
        bad = [FakeTransport(fail=True) for _ in range(2)]
        for t in (good[0], bad[0], good[1], bad[1], good[2]):
            self.relay.connect(t)

        delivered = await self.relay.on_message(sender, PACKET)

        assert delivered == 3
        for t in good:
            assert t.sent == [PACKET]
        for t in bad:
            assert t.closed_with is not None
        assert self.relay.registry.count == 4
        assert self.relay.get_stats()["delivery_failures"] == 2

    @pytest.mark.asyncio
    async def test_closed_transport_is_skipped_not_dropped(self):
        sender = self.relay.connect(FakeTransport())
        closed = FakeTransport(open_=False)
        closed_id = self.relay.connect(closed)
        delivered = await self.relay.on_message(sender, PACKET)
        assert delivered == 0
        assert closed.sent == []
        assert closed_id in self.relay.registry

    @pytest.mark.asyncio
    async def test_order_preserved_per_connection(self):
        ids, transports = self._attach(2)
        frames = [json.dumps({"timestamp": i}) for i in range(20)]
        for frame in frames:
            await self.relay.on_message(ids[0], frame)
        assert transports[1].sent == frames

    @pytest.mark.asyncio
    async def test_stats_count_traffic(self):
        ids, _ = self._attach(3)
        await self.relay.on_message(ids[0], PACKET)
        await self.relay.on_message(ids[1], PACKET)
        stats = self.relay.get_stats()
        assert stats["messages_relayed"] == 2
        assert stats["deliveries"] == 4
        assert stats["total_connections"] == 3


# ── Heartbeat Tests ──────────────────────────────────────────────────


class TestHeartbeat:
    """Tests for the heartbeat / reap cycle."""

    def setup_method(self):
        self.relay = BroadcastRelay(RelayConfig(heartbeat_interval_seconds=0.02))

    @pytest.mark.asyncio
    async def test_cycle_pings_and_marks_pending(self):
        t = FakeTransport(answers_pings=False)
        conn_id = self.relay.connect(t)
        reaped = await self.relay.heartbeat_cycle()
        assert reaped == 0
        assert len(t.pong_waiters) == 1
        assert t.sent == []
        assert self.relay.registry.get(conn_id).is_alive is False

    @pytest.mark.asyncio
    async def test_silent_connection_reaped_within_two_cycles(self):
        silent = FakeTransport(answers_pings=False)
        conn_id = self.relay.connect(silent)
        await self.relay.heartbeat_cycle()
        assert conn_id in self.relay.registry
        reaped = await self.relay.heartbeat_cycle()
        assert reaped == 1
        assert conn_id not in self.relay.registry
        assert silent.closed_with is not None

    @pytest.mark.asyncio
    async def test_pong_marks_alive(self):
        t = FakeTransport()
        conn_id = self.relay.connect(t)
        for _ in range(5):
            await self.relay.heartbeat_cycle()
            await asyncio.sleep(0)
            assert self.relay.registry.get(conn_id).is_alive is True
        assert len(t.pong_waiters) == 5
        assert t.sent == []

    @pytest.mark.asyncio
    async def test_listen_only_subscriber_survives(self):
        producer = self.relay.connect(FakeTransport())
        listener = FakeTransport()
        listener_id = self.relay.connect(listener)
        for _ in range(3):
            await self.relay.on_message(producer, PACKET)
            await self.relay.heartbeat_cycle()
            await asyncio.sleep(0)
        assert listener_id in self.relay.registry
        assert listener.sent == [PACKET, PACKET, PACKET]
        assert listener.closed_with is None

    @pytest.mark.asyncio
    async def test_failed_pong_does_not_mark_alive(self):
        t = FakeTransport(answers_pings=False)
        conn_id = self.relay.connect(t)
        await self.relay.heartbeat_cycle()
        t.pong_waiters[0].set_exception(ConnectionError("closed"))
        await asyncio.sleep(0)
        assert self.relay.registry.get(conn_id).is_alive is False
        assert await self.relay.heartbeat_cycle() == 1

    @pytest.mark.asyncio
    async def test_late_pong_after_reap_is_ignored(self):
        t = FakeTransport(answers_pings=False)
        conn_id = self.relay.connect(t)
        await self.relay.heartbeat_cycle()
        await self.relay.heartbeat_cycle()
        t.pong_waiters[0].set_result(0.5)
        await asyncio.sleep(0)
        assert conn_id not in self.relay.registry

    @pytest.mark.asyncio
    async def test_ping_failure_drops_connection(self):
        conn_id = self.relay.connect(FakeTransport(fail=True))
        await self.relay.heartbeat_cycle()
        assert conn_id not in self.relay.registry

    @pytest.mark.asyncio
    async def test_background_loop_reaps(self):
        conn_id = self.relay.connect(FakeTransport(answers_pings=False))
        self.relay.start()
        try:
            assert await wait_until(lambda: conn_id not in self.relay.registry)
        finally:
            await self.relay.stop()
        assert self.relay.get_stats()["reaped"] == 1

    @pytest.mark.asyncio
    async def test_start_stop_idempotent(self):
        self.relay.start()
        task = self.relay._heartbeat_task
        self.relay.start()
        assert self.relay._heartbeat_task is task
        await self.relay.stop()
        await self.relay.stop()
        assert self.relay.is_running is False

    @pytest.mark.asyncio
    async def test_close_all(self):
        transports = [FakeTransport() for _ in range(3)]
        for t in transports:
            self.relay.connect(t)
        assert await self.relay.close_all() == 3
        assert self.relay.registry.count == 0
        assert all(t.closed_with == 1001 for t in transports)


# ── Relay Server Tests ───────────────────────────────────────────────


@asynccontextmanager
async def running_server(heartbeat_interval: float = 30.0):
    server = RelayServer(RelayConfig(
        host="127.0.0.1", port=0, heartbeat_interval_seconds=heartbeat_interval,
    ))
    await server.start()
    try:
        yield server
    finally:
        await server.stop()


class TestRelayServer:
    """Tests for the HTTP endpoints and WebSocket fan-out over real sockets."""

    @pytest.mark.asyncio
    async def test_health_endpoint(self):
        async with running_server() as server:
            async with httpx.AsyncClient() as client:
                resp = await client.get(f"http://127.0.0.1:{server.port}/health")
        assert resp.status_code == 200
        assert resp.json() == {"status": "ok"}
        assert resp.headers["content-type"] == "application/json"

    @pytest.mark.asyncio
    async def test_banner(self):
        async with running_server() as server:
            async with httpx.AsyncClient() as client:
                resp = await client.get(f"http://127.0.0.1:{server.port}/")
        assert resp.status_code == 200
        assert resp.text == "Smart Physics Ball WebSocket Relay\n"
        assert resp.headers["content-type"].startswith("text/plain")

    @pytest.mark.asyncio
    async def test_stats_and_unknown_path(self):
        async with running_server() as server:
            async with httpx.AsyncClient() as client:
                stats = await client.get(f"http://127.0.0.1:{server.port}/stats")
                missing = await client.get(f"http://127.0.0.1:{server.port}/nope")
        assert stats.json()["total_connections"] == 0
        assert stats.json()["heartbeat_running"] is True
        assert missing.status_code == 404

    @pytest.mark.asyncio
    async def test_relay_between_sockets(self):
        async with running_server() as server:
            url = f"ws://127.0.0.1:{server.port}/ws"
            async with connect(url) as producer, connect(url) as subscriber:
                assert await wait_until(lambda: server.relay.registry.count == 2)
                await producer.send(PACKET)
                assert await asyncio.wait_for(subscriber.recv(), 2) == PACKET
            assert await wait_until(lambda: server.relay.registry.count == 0)

    @pytest.mark.asyncio
    async def test_any_path_accepts_websockets(self):
        async with running_server() as server:
            async with connect(f"ws://127.0.0.1:{server.port}/"), \
                    connect(f"ws://127.0.0.1:{server.port}/sensor/1"):
                assert await wait_until(lambda: server.relay.registry.count == 2)

    @pytest.mark.asyncio
    async def test_listen_only_client_answers_heartbeats(self):
        async with running_server() as server:
            url = f"ws://127.0.0.1:{server.port}/ws"
            async with connect(url) as producer, connect(url) as subscriber:
                registry = server.relay.registry
                assert await wait_until(lambda: registry.count == 2)
                for _ in range(3):
                    await producer.send(PACKET)
                    assert await asyncio.wait_for(subscriber.recv(), 2) == PACKET
                    await server.relay.heartbeat_cycle()
                    assert await wait_until(
                        lambda: all(c.is_alive for c in registry.connections())
                    )
                assert registry.count == 2
                assert server.relay.get_stats()["reaped"] == 0
                # Pings never show up as data frames
                with pytest.raises(asyncio.TimeoutError):
                    await asyncio.wait_for(subscriber.recv(), 0.1)


# ── CLI Tests ────────────────────────────────────────────────────────


class TestRelayCli:
    """Tests for relay command-line parsing."""

    def test_defaults(self):
        args = parse_args([])
        assert args.port == 8080
        assert args.heartbeat_interval == 30.0
        assert args.log_format == "json"

    def test_defaults_follow_env(self, monkeypatch):
        monkeypatch.setenv("SPB_PORT", "9300")
        assert parse_args([]).port == 9300

    def test_overrides(self):
        args = parse_args(["--port", "9000", "--heartbeat-interval", "15", "--log-level", "DEBUG"])
        assert args.port == 9000
        assert args.heartbeat_interval == 15.0
        assert args.log_level == "DEBUG"
