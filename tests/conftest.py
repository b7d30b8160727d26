"""
Shared fixtures: an in-process fake of the Market appliance endpoints.
"""

import asyncio
import json
from datetime import datetime, timezone
from typing import Any, List, Optional, Tuple

import pytest
import pytest_asyncio
from aiohttp import web
from aiohttp.test_utils import TestServer

from appliance.auth.token_storage import TOKEN_FILE
from shared.models import TokenPair

FIXED_NOW = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)


class FakeMarket:
    """Scriptable stand-in for the Market authority."""

    def __init__(self):
        self.base_url = ""
        self.register_response: Tuple[int, Any] = (200, {"access": "a1", "refresh": "r1", "ttl": 3600})
        self.refresh_response: Tuple[int, Any] = (200, {"access": "a2", "refresh": "r2", "ttl": 3600})
        self.verify_status = 200
        self.calls: List[Tuple[str, str, Optional[str]]] = []

        # Set refresh_gate to hold refresh responses until the test releases it.
        self.refresh_gate: Optional[asyncio.Event] = None
        self.refresh_started = asyncio.Event()

    def calls_to(self, name: str) -> List[Tuple[str, str, Optional[str]]]:
        return [call for call in self.calls if call[0] == name]

    @staticmethod
    def _respond(status: int, body: Any) -> web.Response:
        text = body if isinstance(body, str) else json.dumps(body)
        return web.Response(status=status, text=text, content_type="application/json")

    async def handle_register(self, request: web.Request) -> web.Response:
        self.calls.append(("register", request.match_info["otp"], request.headers.get("Authorization")))
        return self._respond(*self.register_response)

    async def handle_verify(self, request: web.Request) -> web.Response:
        self.calls.append(("verify", request.method, request.headers.get("Authorization")))
        return web.Response(status=self.verify_status)

    async def handle_refresh(self, request: web.Request) -> web.Response:
        self.calls.append(("refresh", request.method, request.headers.get("Authorization")))
        self.refresh_started.set()
        if self.refresh_gate is not None:
            await self.refresh_gate.wait()
        return self._respond(*self.refresh_response)

    def make_app(self) -> web.Application:
        app = web.Application()
        app.router.add_post("/appliance/register/{otp}", self.handle_register)
        app.router.add_get("/appliance/verify", self.handle_verify)
        app.router.add_post("/appliance/refresh", self.handle_refresh)
        return app


@pytest_asyncio.fixture
async def market():
    fake = FakeMarket()
    server = TestServer(fake.make_app())
    await server.start_server()
    fake.base_url = f"http://{server.host}:{server.port}"
    yield fake
    await server.close()


@pytest.fixture
def fixed_clock():
    return lambda: FIXED_NOW


@pytest.fixture
def write_tokens(tmp_path):
    """Write a token file into tmp_path the way the storage lays it out."""
    def _write(tokens: TokenPair) -> None:
        (tmp_path / TOKEN_FILE).write_text(json.dumps(tokens.to_dict()))
    return _write
