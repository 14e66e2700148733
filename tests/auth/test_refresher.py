from __future__ import annotations

import asyncio

import pytest

from dashlink.auth.tokens import Credential
from dashlink.context import ClientContext
from dashlink.services.errors import AuthenticationError
from tests.support import FakeBackend, login, make_token


@pytest.mark.asyncio
async def test_ensure_fresh_without_credential_is_unauthenticated(
    context: ClientContext, backend: FakeBackend
) -> None:
    assert await context.refresher.ensure_fresh(30) is None
    assert backend.refresh_calls == 0


@pytest.mark.asyncio
async def test_ensure_fresh_keeps_valid_token(context: ClientContext, backend: FakeBackend) -> None:
    credential = login(context, expires_in=3600)

    token = await context.refresher.ensure_fresh(30)

    assert token == credential.access_token
    assert backend.refresh_calls == 0


@pytest.mark.asyncio
async def test_ensure_fresh_refreshes_token_inside_margin(
    context: ClientContext, backend: FakeBackend
) -> None:
    login(context, expires_in=10)

    token = await context.refresher.ensure_fresh(30)

    assert backend.refresh_calls == 1
    assert token == backend.issued[0].access_token
    assert context.store.get() == backend.issued[0]
    refresh_request = backend.calls_to("/auth/refresh")[0]
    assert refresh_request.method == "POST"
    assert refresh_request.url.params["refresh_token"] == "refresh-0"


@pytest.mark.asyncio
async def test_startup_margin_is_wider_than_request_margin(
    context: ClientContext, backend: FakeBackend
) -> None:
    login(context, expires_in=120)

    await context.refresher.ensure_fresh(30)
    assert backend.refresh_calls == 0

    await context.refresher.ensure_fresh(300)
    assert backend.refresh_calls == 1


@pytest.mark.asyncio
async def test_undecodable_token_is_treated_as_expired(
    context: ClientContext, backend: FakeBackend
) -> None:
    context.store.set(Credential("opaque-token", "refresh-0"))

    token = await context.refresher.ensure_fresh(30)

    assert backend.refresh_calls == 1
    assert token == backend.issued[0].access_token


@pytest.mark.asyncio
async def test_expiring_token_without_refresh_token_is_used_as_is(
    context: ClientContext, backend: FakeBackend
) -> None:
    token = make_token(5)
    context.store.set(Credential(token, None))

    assert await context.refresher.ensure_fresh(30) == token
    assert backend.refresh_calls == 0


@pytest.mark.asyncio
async def test_concurrent_callers_share_one_refresh(
    context: ClientContext, backend: FakeBackend
) -> None:
    login(context, expires_in=10)
    backend.refresh_delay = 0.01

    tokens = await asyncio.gather(*(context.refresher.ensure_fresh(30) for _ in range(5)))

    assert backend.refresh_calls == 1
    assert set(tokens) == {backend.issued[0].access_token}
    assert context.refresher.refresh_count == 1
    assert not context.refresher.refresh_in_progress


@pytest.mark.asyncio
async def test_sequential_refreshes_each_hit_the_backend(
    context: ClientContext, backend: FakeBackend
) -> None:
    login(context)

    first = await context.refresher.refresh()
    second = await context.refresher.refresh()

    assert backend.refresh_calls == 2
    assert first != second
    assert context.store.refresh_token == "refresh-2"


@pytest.mark.asyncio
async def test_failed_refresh_clears_session_and_notifies_once(
    context: ClientContext, backend: FakeBackend, expired_events: list[str]
) -> None:
    login(context, expires_in=10)
    backend.refresh_status = 401
    backend.refresh_delay = 0.01

    results = await asyncio.gather(
        *(context.refresher.ensure_fresh(30) for _ in range(3)), return_exceptions=True
    )

    assert all(isinstance(r, AuthenticationError) for r in results)
    assert backend.refresh_calls == 1
    assert context.store.get() is None
    assert len(expired_events) == 1


@pytest.mark.asyncio
async def test_malformed_refresh_body_is_a_refresh_failure(
    context: ClientContext, backend: FakeBackend, expired_events: list[str]
) -> None:
    login(context)
    backend.refresh_body = {"accessToken": ""}

    with pytest.raises(AuthenticationError):
        await context.refresher.refresh()

    assert context.store.get() is None
    assert len(expired_events) == 1


@pytest.mark.asyncio
async def test_refresh_without_refresh_token_fails(
    context: ClientContext, backend: FakeBackend, expired_events: list[str]
) -> None:
    context.store.set(Credential(make_token(5), None))

    with pytest.raises(AuthenticationError):
        await context.refresher.refresh()

    assert backend.refresh_calls == 0
    assert len(expired_events) == 1


@pytest.mark.asyncio
async def test_renew_rejected_reuses_token_swapped_by_another_caller(
    context: ClientContext, backend: FakeBackend
) -> None:
    rejected = login(context).access_token
    context.store.set(Credential(make_token(3600), "refresh-newer"))

    token = await context.refresher.renew_rejected(rejected)

    assert token == context.store.access_token
    assert backend.refresh_calls == 0


@pytest.mark.asyncio
async def test_renew_rejected_refreshes_current_token(
    context: ClientContext, backend: FakeBackend
) -> None:
    rejected = login(context).access_token

    token = await context.refresher.renew_rejected(rejected)

    assert backend.refresh_calls == 1
    assert token != rejected


@pytest.mark.asyncio
async def test_closing_context_cancels_refresh_in_flight(
    context: ClientContext, backend: FakeBackend
) -> None:
    login(context)
    backend.refresh_delay = 1.0
    pending = asyncio.create_task(context.refresher.refresh())
    await asyncio.sleep(0)
    assert context.refresher.refresh_in_progress

    await context.aclose()

    assert not context.refresher.refresh_in_progress
    with pytest.raises(asyncio.CancelledError):
        await pending
