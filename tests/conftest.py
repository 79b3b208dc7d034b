"""Shared test configuration: a fake APIC and a controllable clock."""

import asyncio
from contextlib import asynccontextmanager
from typing import Optional

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from aci_listener.session import TOKEN_COOKIE


class FakeApic:
    """Minimal APIC REST + WebSocket endpoints with recorded requests."""

    def __init__(self, token: str = "T1", target_class: str = "faultInst"):
        self.token = token
        self.target_class = target_class
        # Behaviour knobs
        self.login_status = 200
        self.login_error = ""
        self.set_cookie = True
        self.login_raw: Optional[bytes] = None
        self.refresh_status = 200
        self.refresh_error = ""
        self.subscription_id = "72057594037927937"
        self.subscribe_body: Optional[dict] = None
        self.subscribe_raw: Optional[bytes] = None
        self.subscription_refresh_error = ""
        self.stream_messages: list[str] = []
        self.close_stream = False
        # Recorded traffic
        self.login_payloads: list[dict] = []
        self.refresh_cookies: list[Optional[str]] = []
        self.subscribe_queries: list[dict] = []
        self.subscription_refresh_ids: list[str] = []
        self.sockets_opened = 0
        self.sockets_closed = 0
        self.subscribed = asyncio.Event()

    @property
    def logins(self) -> int:
        return len(self.login_payloads)

    def make_app(self) -> web.Application:
        app = web.Application()
        app.router.add_post("/api/aaaLogin.json", self.handle_login)
        app.router.add_get("/api/aaaRefresh.json", self.handle_refresh)
        app.router.add_get(f"/api/class/{self.target_class}.json", self.handle_class)
        app.router.add_get("/api/subscriptionRefresh.json", self.handle_subscription_refresh)
        app.router.add_get(f"/socket{self.token}", self.handle_socket)
        return app

    @staticmethod
    def error_body(text: str, code: str = "400") -> dict:
        return {
            "totalCount": "1",
            "imdata": [{"error": {"attributes": {"code": code, "text": text}}}],
        }

    async def handle_login(self, request: web.Request) -> web.StreamResponse:
        self.login_payloads.append(await request.json())
        if self.login_raw is not None:
            res = web.Response(body=self.login_raw, content_type="application/json")
            if self.set_cookie:
                res.set_cookie(TOKEN_COOKIE, self.token)
            return res
        if self.login_error:
            return web.json_response(self.error_body(self.login_error, "401"), status=401)
        if self.login_status != 200:
            return web.Response(status=self.login_status, text="Service Unavailable")
        res = web.json_response({
            "totalCount": "1",
            "imdata": [{
                "aaaLogin": {
                    "attributes": {"token": self.token, "refreshTimeoutSeconds": "600"},
                },
            }],
        })
        if self.set_cookie:
            res.set_cookie(TOKEN_COOKIE, self.token)
        return res

    async def handle_refresh(self, request: web.Request) -> web.StreamResponse:
        self.refresh_cookies.append(request.cookies.get(TOKEN_COOKIE))
        if self.refresh_error:
            return web.json_response(self.error_body(self.refresh_error, "403"))
        return web.json_response({"totalCount": "0", "imdata": []}, status=self.refresh_status)

    async def handle_class(self, request: web.Request) -> web.StreamResponse:
        self.subscribe_queries.append(dict(request.query))
        self.subscribed.set()
        if self.subscribe_raw is not None:
            return web.Response(body=self.subscribe_raw, content_type="application/json")
        if self.subscribe_body is not None:
            return web.json_response(self.subscribe_body)
        return web.json_response({
            "totalCount": "0",
            "subscriptionId": self.subscription_id,
            "imdata": [],
        })

    async def handle_subscription_refresh(self, request: web.Request) -> web.StreamResponse:
        self.subscription_refresh_ids.append(request.query.get("id", ""))
        if self.subscription_refresh_error:
            return web.json_response(self.error_body(self.subscription_refresh_error))
        return web.json_response({"totalCount": "0", "imdata": []})

    async def handle_socket(self, request: web.Request) -> web.StreamResponse:
        ws = web.WebSocketResponse()
        await ws.prepare(request)
        self.sockets_opened += 1
        try:
            await self.subscribed.wait()
            for message in self.stream_messages:
                await ws.send_str(message)
            if self.close_stream:
                await ws.close()
                return ws
            async for _ in ws:
                pass
        finally:
            self.sockets_closed += 1
        return ws


class FakeClock:
    """Monotonic clock that only moves when sleep() is awaited."""

    class Stop(Exception):
        """Raised by sleep() once max_sleeps is reached."""

    def __init__(self, start: float = 1000.0, max_sleeps: int = 1000):
        self.now = start
        self.max_sleeps = max_sleeps
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds
        if len(self.sleeps) >= self.max_sleeps:
            raise FakeClock.Stop()


@pytest.fixture
def fake_apic() -> FakeApic:
    return FakeApic()


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def apic_server():
    """Serve a FakeApic over HTTP; yields the base URL."""

    @asynccontextmanager
    async def serve(apic: FakeApic):
        server = TestServer(apic.make_app())
        await server.start_server()
        try:
            yield f"http://{server.host}:{server.port}"
        finally:
            await server.close()

    return serve
