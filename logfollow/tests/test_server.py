from __future__ import annotations

import asyncio

from aiohttp import test_utils

from logfollow.parsers import LogEntry
from logfollow.server import FollowServer


async def _receive_until(ws, predicate, timeout: float = 5.0):
    seen = []
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate(seen):
        remaining = deadline - loop.time()
        assert remaining > 0, f"timed out, got {[m.get('type') for m in seen]}"
        seen.append(await ws.receive_json(timeout=remaining))
    return seen


def _opened(msgs) -> bool:
    cycle_done = any(m["type"] == "cycle_end" and m["offset"] == 80 for m in msgs)
    acked = any(m["type"] == "command_output" and "Following app.jsonl" in m["line"] for m in msgs)
    return cycle_done and acked


def test_websocket_streams_entries_after_open(make_config, jsonl_line):
    cfg = make_config()
    (cfg.log_dir / "app.jsonl").write_bytes(jsonl_line(1, 40) + jsonl_line(2, 40))

    async def scenario():
        server = FollowServer(cfg)
        async with test_utils.TestClient(test_utils.TestServer(server.make_app())) as client:
            health = await client.get("/api/health")
            assert (await health.json())["ok"] is True

            ws = await client.ws_connect(cfg.websocket_path)
            first = await ws.receive_json(timeout=5)
            assert first["type"] == "system_status"
            assert first["follower"]["running"] is False

            await ws.send_json({"type": "command", "command": "/open app.jsonl"})
            seen = await _receive_until(ws, _opened)
            entries = [m for m in seen if m["type"] == "log_entry"]
            assert [m["record"]["n"] for m in entries] == [1, 2]
            assert [m["offset"] for m in entries] == [0, 40]

            status = await (await client.get("/api/status")).json()
            assert status["follower"]["file_size"] == 80
            await ws.close()
        return server

    server = asyncio.run(scenario())
    assert server.state.follower.running is False
    assert server.state.stats_snapshot()["entries_total"] == 2


def test_missing_initial_path_is_reported(make_config, tmp_path):
    missing = tmp_path / "gone.jsonl"
    cfg = make_config(initial_path=missing)

    async def scenario():
        server = FollowServer(cfg)
        async with test_utils.TestClient(test_utils.TestServer(server.make_app())) as client:
            # The error may fire before any client connects, so poll status.
            for _ in range(100):
                status = await (await client.get("/api/status")).json()
                if status["stats"]["last_error"] and status["follower"]["state"] == "stopped":
                    break
                await asyncio.sleep(0.05)
        return server, status

    server, status = asyncio.run(scenario())
    assert status["stats"]["last_error"] == f"Can't open file: {missing}"
    assert status["follower"]["state"] == "stopped"
    assert server.state.follower.running is False

    audit = server.state.audit.path.read_text(encoding="utf-8")
    assert "follower_error" in audit


def test_entries_past_pending_limit_are_dropped(make_config):
    cfg = make_config(max_pending_entries=3)
    server = FollowServer(cfg)

    async def scenario():
        # Wired like on_startup, without the pump draining the queue.
        server._loop = asyncio.get_running_loop()
        server._events = asyncio.Queue()
        for n in range(5):
            server._on_entry(LogEntry(offset=n * 10, record={"n": n}))
        server._on_paused(True)
        await asyncio.sleep(0)
        return server._events.qsize()

    queued = asyncio.run(scenario())

    # Three entries plus the pause change, which is never dropped.
    assert queued == 4
    assert server.pending_entries == 3
    stats = server.state.stats_snapshot()
    assert stats["entries_dropped"] == 2

    server.state.clear()
    assert server.state.stats_snapshot()["entries_dropped"] == 0


def test_broadcast_frees_pending_entry_slots(make_config):
    cfg = make_config(max_pending_entries=2)
    server = FollowServer(cfg)

    async def scenario():
        server._loop = asyncio.get_running_loop()
        server._events = asyncio.Queue()
        pump = asyncio.create_task(server._pump_events())
        for n in range(2):
            server._on_entry(LogEntry(offset=n, record={"n": n}))
        for _ in range(50):
            await asyncio.sleep(0.01)
            if server.state.stats_snapshot()["entries_total"] == 2:
                break
        server._on_entry(LogEntry(offset=2, record={"n": 2}))
        await asyncio.sleep(0.05)
        pump.cancel()
        await asyncio.gather(pump, return_exceptions=True)

    asyncio.run(scenario())

    assert server.pending_entries == 0
    stats = server.state.stats_snapshot()
    assert stats["entries_total"] == 3
    assert stats["entries_dropped"] == 0
