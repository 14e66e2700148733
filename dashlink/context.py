"""
ClientContext - Everything one application session shares.

Built once at startup and passed to every call site: the credential store,
session-expiry subscribers, the per-service breakers, the token refresher
and the underlying HTTP client.
"""

from dataclasses import dataclass
from datetime import timedelta

import httpx
from loguru import logger

from dashlink.auth.refresher import TokenRefresher
from dashlink.auth.session import SessionEvents
from dashlink.auth.tokens import TokenStore
from dashlink.services.circuit_breaker import (
    CircuitBreakerConfig,
    CircuitBreakerRegistry,
)
from dashlink.settings import Settings, global_settings


@dataclass
class ClientContext:
    settings: Settings
    store: TokenStore
    events: SessionEvents
    breakers: CircuitBreakerRegistry
    refresher: TokenRefresher
    http: httpx.AsyncClient

    @classmethod
    def create(
        cls,
        settings: Settings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        store: TokenStore | None = None,
        breakers: CircuitBreakerRegistry | None = None,
    ) -> "ClientContext":
        """
        Build a context from settings.

        Args:
            settings: Defaults to the environment-derived global settings
            transport: Custom httpx transport (tests pass a MockTransport)
            store: Pre-built token store; by default one backed by
                TOKEN_STORE_PATH when configured
            breakers: Pre-built breaker registry
        """
        settings = settings or global_settings
        store = store or TokenStore(settings.token_store_path)
        events = SessionEvents()
        breakers = breakers or CircuitBreakerRegistry(
            default_config=CircuitBreakerConfig(
                failure_threshold=settings.breaker_failure_threshold,
                reset_timeout=timedelta(seconds=settings.breaker_reset_timeout),
            )
        )
        http = httpx.AsyncClient(
            timeout=httpx.Timeout(settings.request_timeout),
            follow_redirects=True,
            transport=transport,
        )
        refresher = TokenRefresher(
            store,
            events,
            http,
            api_url=settings.api_url,
            refresh_path=settings.auth_refresh_path,
            timeout=settings.request_timeout,
        )
        logger.debug(f"Client context created for {settings.api_url}")
        return cls(
            settings=settings,
            store=store,
            events=events,
            breakers=breakers,
            refresher=refresher,
            http=http,
        )

    async def aclose(self) -> None:
        """Cancel in-flight refreshes and close the HTTP client."""
        await self.refresher.close()
        await self.http.aclose()
        logger.debug("Client context closed")

    async def __aenter__(self) -> "ClientContext":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()
