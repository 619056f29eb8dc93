from __future__ import annotations

import asyncio
import inspect
from collections.abc import Callable
from typing import Any
from urllib.parse import parse_qsl

import httpx
from fastapi import FastAPI, Request

from turnstile_gate.config import TurnstileConfig
from turnstile_gate.middleware import TurnstileMiddleware
from turnstile_gate.services.turnstile import TurnstileClient

SECRET = "0x4AAAAAAAtest-secret-do-not-leak"

Responder = Callable[[dict[str, str]], Any]


def make_config(**overrides: Any) -> TurnstileConfig:
    return TurnstileConfig(secret_key=SECRET, **overrides)


def success_response(form: dict[str, str]) -> httpx.Response:
    return httpx.Response(
        200,
        json={
            "success": True,
            "challenge_ts": "2024-01-01T00:00:00.000Z",
            "hostname": "example.com",
            "action": "login",
            "error-codes": [],
        },
    )


class FakeSiteverify:
    """Stands in for Cloudflare's siteverify endpoint and records every call."""

    def __init__(self, responder: Responder = success_response) -> None:
        self.responder = responder
        self.calls: list[dict[str, str]] = []

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        form = dict(parse_qsl(request.content.decode()))
        self.calls.append(form)
        response = self.responder(form)
        if inspect.isawaitable(response):
            response = await response
        return response

    def client(self, config: TurnstileConfig) -> TurnstileClient:
        transport = httpx.MockTransport(self)
        return TurnstileClient(config, http_client=httpx.AsyncClient(transport=transport))


def build_echo_app(config: TurnstileConfig, client: TurnstileClient) -> FastAPI:
    app = FastAPI()
    app.add_middleware(TurnstileMiddleware, config=config, client=client)

    @app.api_route("/echo/{rest:path}", methods=["GET", "POST", "PUT", "DELETE"])
    async def echo(request: Request, rest: str) -> dict[str, Any]:
        body = await request.body()
        state = getattr(request.state, "turnstile", "unset")
        return {
            "method": request.method,
            "path": request.url.path,
            "body": body.decode(),
            "verified_hostname": state.hostname if state not in (None, "unset") else state,
        }

    return app


def make_request(
    headers: dict[str, str] | None = None,
    body: bytes = b"",
    client: tuple[str, int] | None = ("198.51.100.20", 50000),
    method: str = "POST",
    path: str = "/",
    disconnect_after: float | None = None,
) -> Request:
    """Build a request whose body arrives at once.

    With ``disconnect_after`` set, the client goes away that many seconds
    after the body was read; otherwise it stays connected.
    """
    scope = {
        "type": "http",
        "method": method,
        "path": path,
        "query_string": b"",
        "headers": [(k.lower().encode(), v.encode()) for k, v in (headers or {}).items()],
        "client": client,
    }
    sent = False
    gone_at: float | None = None

    async def receive() -> dict:
        nonlocal sent, gone_at
        loop = asyncio.get_running_loop()
        if sent:
            # Answer without suspending: is_disconnected() cancels any wait
            if gone_at is not None and loop.time() >= gone_at:
                return {"type": "http.disconnect"}
            # Like a live connection: nothing more until the client goes away
            await asyncio.Event().wait()
            return {"type": "http.disconnect"}
        sent = True
        if disconnect_after is not None:
            gone_at = loop.time() + disconnect_after
        return {"type": "http.request", "body": body, "more_body": False}

    return Request(scope, receive)
