from __future__ import annotations

import asyncio
import json
import threading
from dataclasses import asdict
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Set

from aiohttp import web

from .audit import AuditLogger
from .command_router import CommandRouter
from .config import FollowConfig
from .follower import LogFollower
from .parsers import LogEntry
from .security import ValidationError
from .state import ViewerState


class FollowServer:
    def __init__(self, cfg: FollowConfig, *, follower: LogFollower | None = None):
        cfg.audit_dir.mkdir(parents=True, exist_ok=True)
        self._cfg = cfg
        self._audit = AuditLogger(cfg.audit_dir)
        self._follower = follower or LogFollower(
            fmt=cfg.log_format,
            paused=cfg.start_paused,
            idle_delay=cfg.idle_delay_s,
            wait_timeout=cfg.wait_timeout_s,
        )
        self._state = ViewerState(cfg=cfg, audit=self._audit, follower=self._follower)
        self._router = CommandRouter(self._state)
        self._clients: Set[web.WebSocketResponse] = set()
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._events: Optional["asyncio.Queue[Dict[str, Any]]"] = None
        self._pump_task: Optional[asyncio.Task] = None
        self._stats_task: Optional[asyncio.Task] = None
        # log_entry payloads handed to the event loop but not yet broadcast.
        # The tail thread adds, the pump removes.
        self._pending_lock = threading.Lock()
        self._pending_entries = 0

    @property
    def state(self) -> ViewerState:
        return self._state

    def _system_status_payload(self) -> Dict[str, Any]:
        return {
            "type": "system_status",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "started_at": self._state.started_at,
            "follower": self._state.follower_snapshot(),
        }

    # Follower signals fire on the tail thread (entries, sizes, cycles,
    # errors) or on whatever thread changed path/pause. Everything is handed
    # to the event loop and broadcast from there.
    def _post(self, payload: Dict[str, Any]) -> None:
        if self._loop is None or self._events is None:
            return
        is_entry = payload.get("type") == "log_entry"
        if is_entry and not self._reserve_entry_slot():
            return
        payload.setdefault("timestamp", datetime.now(timezone.utc).isoformat())
        try:
            self._loop.call_soon_threadsafe(self._events.put_nowait, payload)
        except RuntimeError:
            # Event loop already closed during shutdown.
            if is_entry:
                self._release_entry_slot()

    def _reserve_entry_slot(self) -> bool:
        with self._pending_lock:
            if self._pending_entries >= self._cfg.max_pending_entries:
                first_drop = self._state.entries_dropped == 0
                self._state.entries_dropped += 1
            else:
                self._pending_entries += 1
                return True
        if first_drop:
            print(f"[Server] Clients fall behind; dropping entries past {self._cfg.max_pending_entries} pending")
        return False

    def _release_entry_slot(self) -> None:
        with self._pending_lock:
            self._pending_entries -= 1

    @property
    def pending_entries(self) -> int:
        with self._pending_lock:
            return self._pending_entries

    def _on_entry(self, entry: LogEntry) -> None:
        self._post({"type": "log_entry", "offset": entry.offset, "record": entry.record})

    def _on_cycle_end(self, offset: int) -> None:
        self._post({"type": "cycle_end", "offset": int(offset)})

    def _on_file_size(self, size: int) -> None:
        self._post({"type": "file_size", "size": int(size)})

    def _on_paused(self, paused: bool) -> None:
        self._post({"type": "paused", "paused": bool(paused)})

    def _on_path(self, path: str) -> None:
        self._post({"type": "path", "path": path})

    def _on_error(self, message: str) -> None:
        print(f"[Server] Follower error: {message}")
        self._post({"type": "error", "message": message})

    def _connect_follower(self) -> None:
        f = self._follower
        f.new_entry.connect(self._on_entry)
        f.cycle_end_reached.connect(self._on_cycle_end)
        f.file_size_changed.connect(self._on_file_size)
        f.paused_changed.connect(self._on_paused)
        f.path_changed.connect(self._on_path)
        f.error_occurred.connect(self._on_error)

    def _disconnect_follower(self) -> None:
        f = self._follower
        f.new_entry.disconnect(self._on_entry)
        f.cycle_end_reached.disconnect(self._on_cycle_end)
        f.file_size_changed.disconnect(self._on_file_size)
        f.paused_changed.disconnect(self._on_paused)
        f.path_changed.disconnect(self._on_path)
        f.error_occurred.disconnect(self._on_error)

    async def _send_command_output(self, *, ws: web.WebSocketResponse, lines: list[str], ok: bool) -> None:
        level = "stdout" if ok else "stderr"
        for line in lines:
            await ws.send_str(
                json.dumps(
                    {
                        "type": "command_output",
                        "timestamp": datetime.now(timezone.utc).isoformat(),
                        "stream": "command",
                        "level": level,
                        "line": str(line),
                    },
                    ensure_ascii=False,
                )
            )

    async def _broadcast(self, payload: Dict[str, Any]) -> None:
        ptype = payload.get("type")
        if ptype == "log_entry":
            self._state.record_entry()
        elif ptype == "cycle_end":
            self._state.record_cycle(int(payload.get("offset", 0)))
        elif ptype == "error":
            self._state.record_error(str(payload.get("message", "")))

        msg = json.dumps(payload, ensure_ascii=False, default=str)
        dead: Set[web.WebSocketResponse] = set()
        for ws in self._clients:
            try:
                await ws.send_str(msg)
            except Exception:
                dead.add(ws)
        self._clients.difference_update(dead)

    async def _pump_events(self) -> None:
        assert self._events is not None
        while True:
            payload = await self._events.get()
            if payload.get("type") == "log_entry":
                self._release_entry_slot()
            try:
                await self._broadcast(payload)
            except Exception as e:
                print(f"[Server] Broadcast failed: {e!r}")

    async def _emit_stats(self) -> None:
        while True:
            await asyncio.sleep(1.0)
            await self._events.put(
                {
                    "type": "stats_update",
                    "timestamp": datetime.now(timezone.utc).isoformat(),
                    "stats": self._state.stats_snapshot(window_s=60.0),
                }
            )

    async def ws_handler(self, request: web.Request) -> web.WebSocketResponse:
        ws = web.WebSocketResponse(heartbeat=30)
        await ws.prepare(request)
        self._clients.add(ws)

        await ws.send_str(json.dumps(self._system_status_payload(), ensure_ascii=False))

        try:
            async for msg in ws:
                if msg.type == web.WSMsgType.TEXT:
                    await self._handle_ws_text(ws, msg.data, client=request.remote)
                elif msg.type == web.WSMsgType.ERROR:
                    break
        except asyncio.CancelledError:
            # aiohttp cancels in-flight handlers on shutdown; treat as disconnect.
            pass
        finally:
            self._clients.discard(ws)
        return ws

    async def _handle_ws_text(self, ws: web.WebSocketResponse, data: str, *, client: str | None = None) -> None:
        cmd = None
        try:
            payload = json.loads(data)
            if isinstance(payload, dict) and payload.get("type") == "command":
                cmd = str(payload.get("command", ""))
        except Exception:
            cmd = data

        if not cmd:
            await ws.send_str(json.dumps({"type": "error", "message": "No command provided"}))
            return

        # set_path/stop join the tail thread; keep that off the event loop.
        res = await asyncio.to_thread(self._router.dispatch, cmd, client=client)
        await self._send_command_output(ws=ws, lines=res.messages, ok=res.ok)
        await self._broadcast(self._system_status_payload())

    async def health(self, _request: web.Request) -> web.Response:
        return web.json_response({"ok": True, "time": datetime.now(timezone.utc).isoformat()})

    async def status(self, _request: web.Request) -> web.Response:
        return web.json_response(
            {
                "follower": self._state.follower_snapshot(),
                "stats": self._state.stats_snapshot(window_s=60.0),
            }
        )

    async def on_startup(self, _app: web.Application) -> None:
        self._loop = asyncio.get_running_loop()
        self._events = asyncio.Queue()
        with self._pending_lock:
            self._pending_entries = 0
        self._connect_follower()
        self._pump_task = asyncio.create_task(self._pump_events())
        self._stats_task = asyncio.create_task(self._emit_stats())

        if self._cfg.initial_path is not None:
            try:
                self._follower.set_path(self._cfg.initial_path)
                self._follower.start()
                print(f"[Server] Following {self._cfg.initial_path}")
            except ValidationError as ve:
                print(f"[Server] Not following initial path: {ve}")

    async def on_cleanup(self, _app: web.Application) -> None:
        await asyncio.to_thread(self._follower.close)
        self._disconnect_follower()
        for task in (self._pump_task, self._stats_task):
            if task:
                task.cancel()
                await asyncio.gather(task, return_exceptions=True)
        self._loop = None

    def make_app(self) -> web.Application:
        app = web.Application(client_max_size=1_000_000)
        app.add_routes(
            [
                web.get(self._cfg.websocket_path, self.ws_handler),
                web.get("/api/health", self.health),
                web.get("/api/status", self.status),
            ]
        )
        app.on_startup.append(self.on_startup)
        app.on_cleanup.append(self.on_cleanup)
        return app


def config_summary(cfg: FollowConfig) -> Dict[str, Any]:
    return {k: str(v) if v is not None else None for k, v in asdict(cfg).items()}


def main() -> int:
    cfg = FollowConfig.from_env()
    print(f"[Server] Config: {json.dumps(config_summary(cfg))}")
    server = FollowServer(cfg)
    app = server.make_app()
    web.run_app(app, host=cfg.listen_host, port=cfg.listen_port)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
