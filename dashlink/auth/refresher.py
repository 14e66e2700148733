"""
TokenRefresher - Keeps the held access token fresh.

Refreshes for the same credential slot are single-flight: while one refresh
is running, every other caller awaits it, so a refresh token is never sent
to the backend twice concurrently (most backends reject a replayed one).
"""

import asyncio
from typing import NoReturn

import httpx
from loguru import logger
from pydantic import BaseModel, Field, ValidationError

from dashlink.auth.session import SessionEvents
from dashlink.auth.tokens import Credential, TokenClaims, TokenStore
from dashlink.services.errors import AuthenticationError
from dashlink.services.single_flight import SingleFlight, SingleFlightStats

CREDENTIAL_SLOT = "credential"


class TokenPair(BaseModel):
    """Body returned by the login, register and refresh endpoints."""

    access_token: str = Field(alias="accessToken", min_length=1)
    refresh_token: str = Field(alias="refreshToken", min_length=1)

    def to_credential(self) -> Credential:
        return Credential(access_token=self.access_token, refresh_token=self.refresh_token)


class TokenRefresher:
    def __init__(
        self,
        store: TokenStore,
        events: SessionEvents,
        http_client: httpx.AsyncClient,
        api_url: str,
        refresh_path: str = "/auth/refresh",
        timeout: float = 30.0,
    ):
        self._store = store
        self._events = events
        self._http = http_client
        self._refresh_url = f"{api_url.rstrip('/')}{refresh_path}"
        self._timeout = timeout
        self._flight = SingleFlight(name="token-refresh")

    @property
    def refresh_in_progress(self) -> bool:
        return self._flight.is_in_flight(CREDENTIAL_SLOT)

    @property
    def refresh_count(self) -> int:
        """Number of network refreshes actually started."""
        return self._flight.get_stats().started

    def get_stats(self) -> SingleFlightStats:
        return self._flight.get_stats()

    async def ensure_fresh(self, margin_seconds: float = 30) -> str | None:
        """
        Return an access token valid for at least margin_seconds.

        Returns None when no credential is held (unauthenticated).

        Raises:
            AuthenticationError: If a needed refresh fails
        """
        credential = self._store.get()
        if credential is None or not credential.access_token:
            return None

        claims = TokenClaims.from_token(credential.access_token)
        remaining = claims.seconds_until_expiry() if claims else 0.0
        if remaining >= margin_seconds:
            return credential.access_token

        if not credential.refresh_token:
            # Nothing to renew with; let the server decide
            return credential.access_token

        logger.debug(f"Access token expires in {remaining:.0f}s, refreshing")
        return await self.refresh()

    async def refresh(self, refresh_token: str | None = None) -> str:
        """
        Renew the credential pair, joining a refresh already in flight.

        Returns:
            The new access token

        Raises:
            AuthenticationError: If the backend rejects the refresh
        """
        return await self._flight.do(
            CREDENTIAL_SLOT, lambda: self._refresh(refresh_token)
        )

    async def renew_rejected(self, rejected_token: str | None) -> str:
        """
        Get a replacement for an access token the backend answered 401 to.

        If another caller already swapped the credential while the rejected
        request was in flight, the newer token is reused without a refresh.
        """
        current = self._store.access_token
        if current and current != rejected_token and not self.refresh_in_progress:
            return current
        return await self.refresh()

    def terminate_session(self, reason: str) -> None:
        """Drop the credential and tell the session owner, once per session."""
        if self._store.get() is None:
            logger.debug(f"Session already ended, not notifying again: {reason}")
            return
        self._store.clear()
        self._events.notify_expired(reason)

    async def close(self) -> None:
        """Cancel a refresh still in flight."""
        cancelled = await self._flight.cancel_all()
        if cancelled:
            logger.debug(f"Cancelled {cancelled} in-flight token refresh")

    async def _refresh(self, refresh_token: str | None) -> str:
        refresh_token = refresh_token or self._store.refresh_token
        if not refresh_token:
            self._fail("No refresh token available")

        try:
            response = await asyncio.wait_for(
                self._http.post(
                    self._refresh_url,
                    params={"refresh_token": refresh_token},
                    headers={"Content-Type": "application/json"},
                ),
                timeout=self._timeout,
            )
        except (httpx.HTTPError, asyncio.TimeoutError) as e:
            self._fail(f"Token refresh request failed: {e!r}", cause=e)

        if not response.is_success:
            self._fail(f"Token refresh rejected with HTTP {response.status_code}")

        try:
            pair = TokenPair.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            self._fail(f"Malformed token refresh response: {e}", cause=e)

        self._store.set(pair.to_credential())
        logger.info("Access token refreshed")
        return pair.access_token

    def _fail(self, reason: str, cause: BaseException | None = None) -> NoReturn:
        logger.error(reason)
        self.terminate_session(reason)
        raise AuthenticationError(reason) from cause
