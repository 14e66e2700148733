"""
ResilientClient - Authenticated async HTTP calls with resilience patterns.

Combines, per logical request:
- CircuitBreaker gate for the request's service key
- Bearer credential attach with proactive refresh
- Per-attempt deadline, classification and bounded exponential backoff
- One-shot refresh-and-retry when the backend answers 401

Exactly one breaker outcome is recorded per request() call, however many
attempts happened inside it.
"""

import asyncio
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Awaitable, Callable, NoReturn

import httpx
from loguru import logger

from dashlink.services.classifier import ErrorClassifier
from dashlink.services.errors import (
    AuthenticationError,
    ServiceError,
    UnknownServiceError,
)
from dashlink.services.retry import RetryPolicy

if TYPE_CHECKING:
    from dashlink.context import ClientContext

Sleep = Callable[[float], Awaitable[None]]


@dataclass
class RequestSpec:
    """A single HTTP call to issue; relative URLs resolve against the API URL."""

    method: str
    url: str
    params: dict[str, Any] | None = None
    json: Any = None
    headers: dict[str, str] = field(default_factory=dict)


class ResilientClient:
    """
    Usage:
        async with ClientContext.create() as context:
            client = ResilientClient(context)
            tasks = await client.request_json(
                "tasks", RequestSpec("GET", "/data-phantom/tasks")
            )
    """

    def __init__(
        self,
        context: "ClientContext",
        retry_policy: RetryPolicy | None = None,
        classifier: ErrorClassifier | None = None,
        sleep: Sleep = asyncio.sleep,
    ):
        self._context = context
        self._settings = context.settings
        self._default_policy = retry_policy or RetryPolicy.from_settings(context.settings)
        self._classifier = classifier or ErrorClassifier(self._default_policy)
        self._sleep = sleep

    async def request(
        self,
        service_key: str,
        spec: RequestSpec,
        retry_policy: RetryPolicy | None = None,
    ) -> httpx.Response:
        """
        Make an authenticated request with retries behind a circuit breaker.

        Args:
            service_key: Backend capability the call belongs to (breaker key)
            spec: The HTTP call
            retry_policy: Overrides the client's default policy

        Returns:
            The successful (2xx) response

        Raises:
            CircuitOpenError: If the service's breaker rejects the call
            AuthenticationError: If the session could not be renewed
            TransientError: If retryable failures exhausted the policy
            ClientRequestError: For non-retryable 4xx responses
            UnknownServiceError: For anything else
        """
        policy = retry_policy or self._default_policy
        breaker = self._context.breakers.get(service_key)
        return await breaker.execute(
            lambda: self._send_with_retries(service_key, spec, policy)
        )

    async def request_json(
        self,
        service_key: str,
        spec: RequestSpec,
        retry_policy: RetryPolicy | None = None,
    ) -> Any:
        """Same as request(), returning the decoded JSON body."""
        response = await self.request(service_key, spec, retry_policy)
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise UnknownServiceError(
                f"Response body is not valid JSON: {e}",
                service_id=service_key,
                status_code=response.status_code,
                response=response,
            ) from e

    async def _send_with_retries(
        self,
        service_key: str,
        spec: RequestSpec,
        policy: RetryPolicy,
    ) -> httpx.Response:
        refresher = self._context.refresher
        refreshed_after_401 = False
        last_error: ServiceError | None = None

        for attempt in range(1, policy.max_attempts + 1):
            logger.debug(
                f"{service_key}: attempt {attempt}/{policy.max_attempts} "
                f"{spec.method} {spec.url}"
            )
            token = await refresher.ensure_fresh(self._settings.request_refresh_margin)
            outcome = await self._attempt(spec, token)

            if isinstance(outcome, httpx.Response) and outcome.status_code == 401:
                if refreshed_after_401:
                    self._end_session(service_key, "Request unauthorized after token refresh")
                refreshed_after_401 = True
                outcome = await self._retry_with_renewed_token(service_key, spec, token)

            if isinstance(outcome, httpx.Response) and outcome.is_success:
                if attempt > 1:
                    logger.info(f"{service_key}: succeeded on attempt {attempt}")
                return outcome

            error = self._classifier.to_error(
                outcome,
                service_id=service_key,
                policy=policy,
                timeout=self._settings.request_timeout,
            )
            if isinstance(outcome, BaseException):
                error.__cause__ = outcome
            last_error = error

            if not error.classification.retryable:
                logger.warning(f"{service_key}: non-retryable failure: {error}")
                raise error

            if attempt == policy.max_attempts:
                break

            delay = policy.delay_for(attempt)
            logger.warning(
                f"{service_key}: attempt {attempt} failed ({error}), retrying in {delay:.2f}s"
            )
            await self._sleep(delay)

        logger.error(f"{service_key}: all {policy.max_attempts} attempts failed")
        raise last_error

    async def _retry_with_renewed_token(
        self,
        service_key: str,
        spec: RequestSpec,
        rejected_token: str | None,
    ) -> httpx.Response | Exception:
        """Refresh once and replay the request; a second 401 ends the session."""
        if self._context.store.get() is None:
            raise AuthenticationError("Not authenticated", service_id=service_key)

        logger.info(f"{service_key}: received 401, refreshing token and retrying")
        # Raises AuthenticationError (session already ended) on failure
        new_token = await self._context.refresher.renew_rejected(rejected_token)

        outcome = await self._attempt(spec, new_token)
        if isinstance(outcome, httpx.Response) and outcome.status_code == 401:
            self._end_session(service_key, "Request unauthorized after token refresh")
        return outcome

    def _end_session(self, service_key: str, reason: str) -> NoReturn:
        self._context.refresher.terminate_session(reason)
        raise AuthenticationError(reason, service_id=service_key)

    async def _attempt(
        self,
        spec: RequestSpec,
        token: str | None,
    ) -> httpx.Response | Exception:
        """Issue one network call; transport failures are returned, not raised."""
        headers = {"Content-Type": "application/json", **spec.headers}
        if token:
            headers["Authorization"] = f"Bearer {token}"

        try:
            return await asyncio.wait_for(
                self._context.http.request(
                    spec.method,
                    self._resolve(spec.url),
                    params=spec.params,
                    json=spec.json,
                    headers=headers,
                ),
                timeout=self._settings.request_timeout,
            )
        except (httpx.HTTPError, asyncio.TimeoutError, OSError) as e:
            return e

    def _resolve(self, url: str) -> str:
        if url.startswith(("http://", "https://")):
            return url
        return f"{self._settings.api_url.rstrip('/')}/{url.lstrip('/')}"

    # Health and status methods

    def get_health_status(self) -> dict[str, Any]:
        """Get health status of all services."""
        breakers = self._context.breakers
        return {
            "circuit_breakers": breakers.get_all_status(),
            "open_circuits": breakers.get_open_circuits(),
            "authenticated": self._context.store.is_authenticated,
            "token_refresh": self._context.refresher.get_stats().to_dict(),
        }

    def get_circuit_status(self, service_key: str) -> dict[str, Any] | None:
        """Get circuit breaker status for a specific service."""
        cb = self._context.breakers.peek(service_key)
        return cb.get_status() if cb else None

    def reset_circuit(self, service_key: str) -> bool:
        """Reset circuit breaker for a service."""
        return self._context.breakers.reset(service_key)
