from __future__ import annotations

import json

import httpx
import pytest

from dashlink.auth.service import AuthService, SessionUser
from dashlink.context import ClientContext
from dashlink.services.errors import AuthenticationError
from tests.support import FakeBackend, login, make_token


def _issue_tokens(request: httpx.Request) -> httpx.Response:
    return httpx.Response(
        200,
        json={
            "accessToken": make_token(3600, userId="u-42", username="ada", email="ada@example.com"),
            "refreshToken": "refresh-login",
        },
    )


@pytest.mark.asyncio
async def test_login_with_email_stores_tokens(context: ClientContext, backend: FakeBackend) -> None:
    backend.script("/auth/login", _issue_tokens)

    user = await AuthService(context).login("ada@example.com", "secret")

    body = json.loads(backend.calls_to("/auth/login")[0].content)
    assert body == {"email": "ada@example.com", "password": "secret"}
    assert user == SessionUser(user_id="u-42", username="ada", email="ada@example.com")
    assert context.store.refresh_token == "refresh-login"


@pytest.mark.asyncio
async def test_login_with_user_id(context: ClientContext, backend: FakeBackend) -> None:
    backend.script("/auth/login", _issue_tokens)

    await AuthService(context).login("u-42", "secret")

    body = json.loads(backend.calls_to("/auth/login")[0].content)
    assert body == {"userId": "u-42", "password": "secret"}


@pytest.mark.asyncio
async def test_login_failure_surfaces_server_message(
    context: ClientContext, backend: FakeBackend
) -> None:
    backend.script("/auth/login", httpx.Response(401, json={"message": "Account locked"}))

    with pytest.raises(AuthenticationError, match="Account locked"):
        await AuthService(context).login("ada@example.com", "secret")

    assert context.store.get() is None


@pytest.mark.asyncio
async def test_register_starts_session(context: ClientContext, backend: FakeBackend) -> None:
    backend.script("/auth/register", _issue_tokens)

    user = await AuthService(context).register({"userId": "u-42", "password": "secret"})

    assert user is not None
    assert user.user_id == "u-42"
    assert context.store.is_authenticated


@pytest.mark.asyncio
async def test_register_failure_uses_fallback_message(
    context: ClientContext, backend: FakeBackend
) -> None:
    backend.script("/auth/register", httpx.Response(409, text="conflict"))

    with pytest.raises(AuthenticationError, match="Registration failed"):
        await AuthService(context).register({"userId": "u-42"})


@pytest.mark.asyncio
async def test_initialize_without_session(context: ClientContext) -> None:
    assert await AuthService(context).initialize() is None


@pytest.mark.asyncio
async def test_initialize_refreshes_token_expiring_within_startup_margin(
    context: ClientContext, backend: FakeBackend
) -> None:
    login(context, expires_in=120)

    user = await AuthService(context).initialize()

    assert backend.refresh_calls == 1
    assert user == SessionUser(user_id="user-1", username="ada", email="ada@example.com")


@pytest.mark.asyncio
async def test_initialize_keeps_long_lived_token(
    context: ClientContext, backend: FakeBackend
) -> None:
    login(context, expires_in=3600)

    user = await AuthService(context).initialize()

    assert backend.refresh_calls == 0
    assert user is not None
    assert user.user_id == "user-1"


@pytest.mark.asyncio
async def test_initialize_with_rejected_refresh_ends_session(
    context: ClientContext, backend: FakeBackend, expired_events: list[str]
) -> None:
    login(context, expires_in=60)
    backend.refresh_status = 400

    assert await AuthService(context).initialize() is None
    assert context.store.get() is None
    assert len(expired_events) == 1


@pytest.mark.asyncio
async def test_verify_token(context: ClientContext, backend: FakeBackend) -> None:
    credential = login(context)
    backend.script("/auth/verify", 200)

    assert await AuthService(context).verify_token() is True
    request = backend.calls_to("/auth/verify")[0]
    assert request.headers["Authorization"] == f"Bearer {credential.access_token}"

    backend.script("/auth/verify", 401)
    assert await AuthService(context).verify_token() is False


def test_logout_does_not_broadcast(context: ClientContext, expired_events: list[str]) -> None:
    login(context)

    AuthService(context).logout()

    assert context.store.get() is None
    assert expired_events == []
