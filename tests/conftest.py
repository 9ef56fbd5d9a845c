"""
Pytest configuration and shared fixtures.

Provides test settings, scripted provider clients, mock HTTP clients
and an API client for the Lumen AI test suite.

IMPORTANT: Environment variables must be set BEFORE importing lumen_ai
modules that use pydantic-settings, as Settings is cached on first use.
"""

import os
import tempfile

# Set test environment variables before importing lumen_ai modules
os.environ["OPENAI_API_KEY"] = "test-key-not-real"
os.environ["LOG_LEVEL"] = "WARNING"
os.environ["DEBUG"] = "false"
os.environ["DATA_DIR"] = tempfile.mkdtemp(prefix="lumen-ai-tests-")
for _name in ("ANTHROPIC_API_KEY", "XAI_API_KEY", "OPENROUTER_API_KEY", "OPENCLAW_API_KEY"):
    os.environ.pop(_name, None)

# Now safe to import everything else
from datetime import datetime, timezone

import httpx
import pytest
from fastapi.testclient import TestClient

from fixtures import ScriptedProvider
from lumen_ai.config import Settings
from lumen_ai.providers import ProviderClients
from lumen_ai.providers.base import ChatUsage
from lumen_ai.registry.models import AIProvider
from lumen_ai.schemas.chat import ChatMessage, ChatRequest


def pytest_configure(config):
    """Configure custom pytest markers."""
    config.addinivalue_line("markers", "asyncio: mark test as async")
    config.addinivalue_line(
        "markers", "integration: mark test as requiring real API calls"
    )


@pytest.fixture(autouse=True)
def reset_singletons():
    """
    Reset all singleton instances between tests.

    This ensures each test starts with a clean state.
    """
    yield

    from lumen_ai import providers, service
    from lumen_ai.metrics import cost
    from lumen_ai.registry import models

    cost._calculator = None
    models._registry_instance = None
    providers._clients = None
    service.reset_ai_service()


@pytest.fixture
def test_settings(tmp_path):
    """Settings pointing at a per-test data directory."""
    return Settings(_env_file=None, data_dir=tmp_path)


@pytest.fixture
def scripted_provider(test_settings):
    """
    Factory fixture for ScriptedProvider instances.

    Usage:
        provider = scripted_provider(tokens=["Hi"], block=True)
    """

    def _create(**kwargs):
        return ScriptedProvider(test_settings, **kwargs)

    return _create


@pytest.fixture
def make_request():
    """
    Factory fixture for ChatRequest objects.

    Usage:
        request = make_request("Hello", feature="summary")
    """

    def _create(content: str = "Hello", **kwargs):
        return ChatRequest(
            conversation_id=kwargs.pop("conversation_id", "conv-1"),
            messages=[ChatMessage(role="user", content=content)],
            **kwargs,
        )

    return _create


@pytest.fixture
def fixed_clock():
    """
    Factory fixture for a settable UTC clock.

    Usage:
        clock = fixed_clock(2025, 1, 31)
        clock.now = datetime(2025, 2, 1, tzinfo=timezone.utc)
    """

    class _Clock:
        def __init__(self, now: datetime):
            self.now = now

        def __call__(self) -> datetime:
            return self.now

    def _create(year: int = 2025, month: int = 3, day: int = 14, hour: int = 12):
        return _Clock(datetime(year, month, day, hour, tzinfo=timezone.utc))

    return _create


@pytest.fixture
def mock_http():
    """
    Factory fixture for an httpx.AsyncClient backed by MockTransport.

    The handler receives each httpx.Request and returns an httpx.Response
    (or an awaitable of one). Requests are recorded in the list returned
    alongside the client.

    Usage:
        client, requests = mock_http(lambda request: httpx.Response(200, content=body))
    """

    def _create(handler):
        recorded: list[httpx.Request] = []

        def _handle(request: httpx.Request):
            recorded.append(request)
            return handler(request)

        return httpx.AsyncClient(transport=httpx.MockTransport(_handle)), recorded

    return _create


@pytest.fixture
def service_factory(test_settings):
    """
    Factory fixture for AIService instances.

    Usage:
        service = service_factory({AIProvider.OPENAI: provider})
    """
    from lumen_ai.service import AIService

    def _create(overrides=None, settings=None, clock=None, sleep=None, http_client=None):
        settings = settings or test_settings
        clients = ProviderClients(
            http_client=http_client, settings=settings, overrides=overrides or {}
        )
        return AIService(settings=settings, clients=clients, clock=clock, sleep=sleep)

    return _create


@pytest.fixture
def api_client(service_factory, scripted_provider):
    """
    FastAPI TestClient wired to an AIService with a scripted OpenAI client.

    Yields (client, service, provider).
    """
    from lumen_ai.main import app
    from lumen_ai.service import get_ai_service

    provider = scripted_provider(
        tokens=["Hi", " there"],
        usage=ChatUsage(prompt_tokens=1000, completion_tokens=500, total_tokens=1500),
    )
    service = service_factory({AIProvider.OPENAI: provider})
    app.dependency_overrides[get_ai_service] = lambda: service

    with TestClient(app) as client:
        yield client, service, provider

    app.dependency_overrides.clear()
