"""
AuthService - Login, registration and session bootstrap against the backend.
"""

from dataclasses import dataclass
from typing import Any

import httpx
from loguru import logger
from pydantic import ValidationError

from dashlink.auth.refresher import TokenPair
from dashlink.auth.tokens import TokenClaims
from dashlink.context import ClientContext
from dashlink.services.errors import AuthenticationError, NetworkError


@dataclass(frozen=True)
class SessionUser:
    """Display data decoded from the access token (advisory, unverified)."""

    user_id: str | None
    username: str | None
    email: str | None

    @classmethod
    def from_claims(cls, claims: TokenClaims) -> "SessionUser":
        return cls(user_id=claims.subject, username=claims.username, email=claims.email)


class AuthService:
    def __init__(self, context: ClientContext):
        self._context = context
        self._base_url = context.settings.api_url.rstrip("/")

    async def login(self, identifier: str, password: str) -> SessionUser | None:
        """
        Log in with an email address or a user id.

        Raises:
            AuthenticationError: If the backend rejects the credentials
        """
        if "@" in identifier:
            body = {"email": identifier, "password": password}
        else:
            body = {"userId": identifier, "password": password}
        await self._obtain_tokens("/auth/login", body, "Invalid email/user ID or password")
        logger.info(f"Logged in as {identifier}")
        return self.current_user()

    async def register(self, user_data: dict[str, Any]) -> SessionUser | None:
        """Create an account and start a session with the returned tokens."""
        await self._obtain_tokens("/auth/register", user_data, "Registration failed")
        logger.info("Registered new account")
        return self.current_user()

    async def verify_token(self, token: str | None = None) -> bool:
        """Ask the backend whether a token is still accepted."""
        token = token or self._context.store.access_token
        if not token:
            return False
        try:
            response = await self._context.http.post(
                f"{self._base_url}/auth/verify",
                headers={"Authorization": f"Bearer {token}"},
            )
        except httpx.HTTPError as e:
            logger.warning(f"Token verification request failed: {e!r}")
            return False
        return response.is_success

    async def initialize(self) -> SessionUser | None:
        """
        Restore the session at startup.

        Renews the access token proactively when it expires within the
        startup margin. The returned user comes from decoded claims and is
        not confirmed by the backend; the first real request settles that.
        """
        if self._context.store.get() is None:
            return None
        try:
            await self._context.refresher.ensure_fresh(
                self._context.settings.startup_refresh_margin
            )
        except AuthenticationError as e:
            logger.warning(f"Could not restore session: {e}")
            return None
        return self.current_user()

    def current_user(self) -> SessionUser | None:
        claims = TokenClaims.from_token(self._context.store.access_token)
        return SessionUser.from_claims(claims) if claims else None

    def logout(self) -> None:
        self._context.store.clear()
        logger.info("Logged out")

    async def _obtain_tokens(self, path: str, body: dict[str, Any], fallback: str) -> None:
        try:
            response = await self._context.http.post(f"{self._base_url}{path}", json=body)
        except httpx.HTTPError as e:
            raise NetworkError(f"{path} request failed: {e!r}") from e

        if not response.is_success:
            raise AuthenticationError(
                _error_message(response) or fallback, status_code=response.status_code
            )

        try:
            pair = TokenPair.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            raise AuthenticationError(f"Malformed {path} response") from e
        self._context.store.set(pair.to_credential())


def _error_message(response: httpx.Response) -> str | None:
    try:
        data = response.json()
    except ValueError:
        return None
    message = data.get("message") if isinstance(data, dict) else None
    return message if isinstance(message, str) and message else None
