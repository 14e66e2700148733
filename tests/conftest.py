from __future__ import annotations

import httpx
import pytest

from dashlink.context import ClientContext
from dashlink.settings import Settings
from tests.support import API_URL, FakeBackend, RecordingSleep


@pytest.fixture
def settings() -> Settings:
    return Settings(api_url=API_URL, request_timeout=5.0)


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def context(settings: Settings, backend: FakeBackend) -> ClientContext:
    return ClientContext.create(settings, transport=httpx.MockTransport(backend.handler))


@pytest.fixture
def sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def expired_events(context: ClientContext) -> list[str]:
    reasons: list[str] = []
    context.events.subscribe(reasons.append)
    return reasons
