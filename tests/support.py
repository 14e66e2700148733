from __future__ import annotations

import asyncio
import base64
import itertools
import json
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

import httpx

from dashlink.auth.tokens import Credential
from dashlink.context import ClientContext

API_URL = "http://api.test"

_token_ids = itertools.count(1)


def _segment(data: dict[str, Any]) -> str:
    raw = base64.urlsafe_b64encode(json.dumps(data).encode()).decode()
    return raw.rstrip("=")


def make_token(expires_in: float | None = 3600, **claims: Any) -> str:
    payload: dict[str, Any] = {"jti": next(_token_ids), **claims}
    if expires_in is not None:
        payload["exp"] = int(time.time() + expires_in)
    return f"{_segment({'alg': 'HS256', 'typ': 'JWT'})}.{_segment(payload)}.signature"


Outcome = int | httpx.Response | Exception | Callable[[httpx.Request], Any]


class FakeBackend:
    """Scripted backend: per-path outcome queues plus a refresh endpoint."""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.scripts: dict[str, list[Outcome]] = {}
        self.refresh_calls = 0
        self.refresh_status = 200
        self.refresh_delay = 0.0
        self.refresh_body: dict[str, Any] | None = None
        self.issued: list[Credential] = []

    def script(self, path: str, *outcomes: Outcome) -> None:
        self.scripts[path] = list(outcomes)

    def calls_to(self, path: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.path == path]

    async def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.path == "/auth/refresh":
            return await self._refresh(request)

        queue = self.scripts.get(request.url.path, [200])
        outcome = queue.pop(0) if len(queue) > 1 else queue[0]
        if callable(outcome) and not isinstance(outcome, httpx.Response):
            outcome = outcome(request)
            if asyncio.iscoroutine(outcome):
                outcome = await outcome
        if isinstance(outcome, Exception):
            raise outcome
        if isinstance(outcome, int):
            return httpx.Response(outcome, json={"path": request.url.path})
        return outcome

    async def _refresh(self, request: httpx.Request) -> httpx.Response:
        self.refresh_calls += 1
        if self.refresh_delay:
            await asyncio.sleep(self.refresh_delay)
        if self.refresh_status != 200:
            return httpx.Response(self.refresh_status, json={"message": "invalid refresh token"})
        if self.refresh_body is not None:
            return httpx.Response(200, json=self.refresh_body)
        credential = Credential(
            access_token=make_token(3600, sub="user-1", username="ada", email="ada@example.com"),
            refresh_token=f"refresh-{self.refresh_calls}",
        )
        self.issued.append(credential)
        return httpx.Response(200, json=credential.to_dict())


class FakeClock:
    def __init__(self) -> None:
        self.now = datetime(2024, 1, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class RecordingSleep:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        await asyncio.sleep(0)


def login(context: ClientContext, expires_in: float | None = 3600) -> Credential:
    credential = Credential(
        access_token=make_token(expires_in, sub="user-1"),
        refresh_token="refresh-0",
    )
    context.store.set(credential)
    return credential
