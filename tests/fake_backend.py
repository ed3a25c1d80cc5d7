"""In-process stand-in for the recordbase server, built on aiohttp.web."""

import asyncio
import json
from typing import Optional

from aiohttp import web


def sse_frame(data: str, event: Optional[str] = None) -> str:
    """Format one server-sent event."""
    lines = []
    if event:
        lines.append(f"event: {event}")
    for part in data.split("\n"):
        lines.append(f"data: {part}")
    return "\n".join(lines) + "\n\n"


def connect_frame(client_id: str) -> str:
    return sse_frame(json.dumps({"clientId": client_id}), event="PB_CONNECT")


def event_frame(action: str, record: dict) -> str:
    return sse_frame(json.dumps({"action": action, "record": record}))


class FakeBackend:
    """Scriptable server: realtime stream, control endpoint, login and refresh."""

    def __init__(self):
        self.url = ""
        # Realtime behaviour
        self.client_ids: list[str] = []
        self.send_connect = True
        self.connect_payload: Optional[str] = None
        self.connect_event = "PB_CONNECT"
        self.stream_status = 200
        self.control_status = 204
        self.control_delay = 0.0
        self.events_after_subscribe: list[str] = []
        self.events_before_ack: list[str] = []
        # Recorded traffic
        self.stream_auth: list[Optional[str]] = []
        self.control_requests: list[dict] = []
        self.control_auth: list[Optional[str]] = []
        self.streams_opened = 0
        self.streams_closed = 0
        self.stream_closed = asyncio.Event()
        self.subscribed = asyncio.Event()
        # Auth behaviour
        self.refresh_status = 200
        self.refresh_delay = 0.0
        self.refresh_calls: list[tuple[str, Optional[str]]] = []
        self.login_calls: list[tuple[str, dict, Optional[str]]] = []
        self.login_status = 200
        self.request_auth: list[Optional[str]] = []
        self._token_counter = 0
        self._queues: dict[str, asyncio.Queue] = {}
        self._stopping = False

    def make_app(self) -> web.Application:
        app = web.Application()
        app.router.add_get("/api/realtime", self.handle_stream)
        app.router.add_post("/api/realtime", self.handle_subscribe)
        app.router.add_post("/api/admins/auth-with-password", self.handle_login)
        app.router.add_post("/api/collections/{collection}/auth-with-password", self.handle_login)
        app.router.add_post("/api/admins/auth-refresh", self.handle_refresh)
        app.router.add_post("/api/collections/{collection}/auth-refresh", self.handle_refresh)
        app.router.add_get("/api/health", self.handle_health)
        return app

    def stop(self) -> None:
        self._stopping = True

    def issue_token(self) -> str:
        self._token_counter += 1
        return f"token-{self._token_counter}"

    def push(self, frame: Optional[str], client_id: Optional[str] = None) -> None:
        """Queue a raw frame (None closes the stream) for one or all connections."""
        targets = [self._queues[client_id]] if client_id else list(self._queues.values())
        for queue in targets:
            queue.put_nowait(frame)

    async def handle_stream(self, request: web.Request) -> web.StreamResponse:
        self.stream_auth.append(request.headers.get("Authorization"))
        if self.stream_status >= 400:
            return web.json_response(
                {"code": self.stream_status, "message": "Stream refused.", "data": {}},
                status=self.stream_status,
            )

        response = web.StreamResponse(headers={
            "Content-Type": "text/event-stream",
            "Cache-Control": "no-store",
        })
        await response.prepare(request)
        self.streams_opened += 1
        client_id = self.client_ids.pop(0) if self.client_ids else f"client-{self.streams_opened}"
        queue: asyncio.Queue = asyncio.Queue()
        self._queues[client_id] = queue

        try:
            if self.send_connect:
                payload = self.connect_payload or json.dumps({"clientId": client_id})
                await response.write(sse_frame(payload, event=self.connect_event).encode())
            while not self._stopping:
                if request.transport is None or request.transport.is_closing():
                    break
                try:
                    frame = await asyncio.wait_for(queue.get(), timeout=0.02)
                except asyncio.TimeoutError:
                    continue
                if frame is None:
                    break
                await response.write(frame.encode())
        except ConnectionResetError:
            pass
        finally:
            self._queues.pop(client_id, None)
            self.streams_closed += 1
            self.stream_closed.set()
        return response

    async def handle_subscribe(self, request: web.Request) -> web.Response:
        body = await request.json()
        self.control_requests.append(body)
        self.control_auth.append(request.headers.get("Authorization"))
        queue = self._queues.get(body.get("clientId"))

        if queue is not None:
            for frame in self.events_before_ack:
                queue.put_nowait(frame)
        if self.control_delay:
            await asyncio.sleep(self.control_delay)
        if self.control_status >= 400:
            return web.json_response(
                {"code": self.control_status, "message": "Missing or invalid client id.", "data": {}},
                status=self.control_status,
            )

        self.subscribed.set()
        if queue is not None:
            for frame in self.events_after_subscribe:
                queue.put_nowait(frame)
        return web.Response(status=self.control_status)

    async def handle_login(self, request: web.Request) -> web.Response:
        body = await request.json()
        self.login_calls.append((request.path, body, request.headers.get("Authorization")))
        if self.login_status >= 400:
            return web.json_response(
                {"code": 400, "message": "Failed to authenticate.", "data": {}},
                status=self.login_status,
            )
        return web.json_response(self._auth_body(request))

    async def handle_refresh(self, request: web.Request) -> web.Response:
        self.refresh_calls.append((request.path, request.headers.get("Authorization")))
        if self.refresh_delay:
            await asyncio.sleep(self.refresh_delay)
        if self.refresh_status >= 400:
            return web.json_response(
                {"code": 401, "message": "Missing or invalid record authorization token.", "data": {}},
                status=self.refresh_status,
            )
        return web.json_response(self._auth_body(request))

    async def handle_health(self, request: web.Request) -> web.Response:
        self.request_auth.append(request.headers.get("Authorization"))
        return web.json_response({"code": 200, "message": "API is healthy.", "data": {}})

    def _auth_body(self, request: web.Request) -> dict:
        token = self.issue_token()
        collection = request.match_info.get("collection")
        if collection is None:
            return {"token": token, "admin": {"id": "admin1", "email": "root@example.com"}}
        return {
            "token": token,
            "record": {"id": "user1", "collectionName": collection, "email": "bob@example.com"},
        }
