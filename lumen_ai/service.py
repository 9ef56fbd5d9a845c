"""
AI Service: Boundary Operations

Wires the stores, ledger, provider clients, dispatcher and event broker
together and exposes the operations callers use:

- get_config: Settings, usage, key presence, model list and budget
- save_config: Persist settings and optionally a new API key
- test_connection: Short probe request against a provider
- start_chat / cancel_chat: Streamed chat requests
- events: Broker delivering StreamEvents for started chats

The HTTP layer (main.py) is a thin mapping of these operations.
"""

import asyncio
import logging
from datetime import datetime
from typing import Callable

from lumen_ai.cancellation import CancellationToken
from lumen_ai.config import Settings, get_settings
from lumen_ai.dispatcher.queue import Dispatcher, with_system_prompt
from lumen_ai.dispatcher.retry import RetryPolicy, SleepFunc, stream_with_retry
from lumen_ai.errors import CancelReason, LumenAIError
from lumen_ai.events import EventBroker
from lumen_ai.metrics.cost import get_cost_calculator
from lumen_ai.metrics.ledger import UsageLedger
from lumen_ai.metrics.reporter import BudgetReporter
from lumen_ai.providers import ProviderClients
from lumen_ai.providers.base import ChatOptions
from lumen_ai.registry.models import AIProvider, get_model_registry
from lumen_ai.schemas.chat import (
    CancelChatResponse,
    ChatMessage,
    ChatRequest,
    ChatRole,
    ConfigResponse,
    ConnectionTestResponse,
    SaveConfigRequest,
    SaveConfigResponse,
    StartChatResponse,
    StoredConfig,
)
from lumen_ai.storage.secret_store import SecretStore
from lumen_ai.storage.settings_store import SettingsStore

logger = logging.getLogger(__name__)

TEST_PROMPT = "Reply with only: OK"
TEST_MAX_TOKENS = 12


class AIService:
    """
    Facade over the AI request pipeline.

    All collaborators can be injected; anything omitted is built from
    settings, with files stored under Settings.data_dir.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        settings_store: SettingsStore | None = None,
        secret_store: SecretStore | None = None,
        clients: ProviderClients | None = None,
        events: EventBroker | None = None,
        clock: Callable[[], datetime] | None = None,
        sleep: SleepFunc | None = None,
    ):
        self._settings = settings or get_settings()
        data_dir = self._settings.data_dir

        self.settings_store = settings_store or SettingsStore(data_dir / "settings.json")
        self.secret_store = secret_store or SecretStore(
            data_dir / "secrets.json",
            fallback_keys={
                p.value: self._settings.env_api_key(p.value) for p in AIProvider
            },
        )
        self.ledger = (
            UsageLedger(self.settings_store, clock)
            if clock is not None
            else UsageLedger(self.settings_store)
        )
        self.clients = clients or ProviderClients(settings=self._settings)
        self.events = events or EventBroker()
        self.reporter = BudgetReporter(self._settings.budget_warning_ratio)
        self.retry_policy = RetryPolicy.from_settings(self._settings)
        self._sleep = sleep

        self.dispatcher = Dispatcher(
            settings_store=self.settings_store,
            secret_store=self.secret_store,
            ledger=self.ledger,
            clients=self.clients,
            emit=self.events.publish,
            calculator=get_cost_calculator(),
            reporter=self.reporter,
            max_concurrent=self._settings.max_concurrent_streams,
            request_timeout=self._settings.request_timeout_seconds,
            default_temperature=self._settings.default_temperature,
            retry_policy=self.retry_policy,
            sleep=sleep,
        )

    def get_config(self) -> ConfigResponse:
        """Current settings, usage for this month and budget position."""
        settings = self.settings_store.read().settings
        usage = self.ledger.current_usage()
        return ConfigResponse(
            settings=settings,
            usage=usage,
            has_api_key=self.secret_store.has_api_key(settings.provider),
            available_models=get_model_registry().available_models(settings.provider),
            budget=self.reporter.generate_report(usage, settings.monthly_budget_usd),
        )

    def save_config(self, request: SaveConfigRequest) -> SaveConfigResponse:
        """
        Persist settings and, if given, the API key for settings.provider.

        A missing or blank api_key leaves the stored key untouched.
        """

        def _apply(config: StoredConfig) -> None:
            config.settings = request.settings

        self.settings_store.update(_apply)

        if request.api_key and request.api_key.strip():
            self.secret_store.set_api_key(request.settings.provider, request.api_key)

        logger.info(
            f"Settings saved: {request.settings.provider.value}/{request.settings.model}, "
            f"budget ${request.settings.monthly_budget_usd:.2f}"
        )
        return SaveConfigResponse(
            settings=request.settings,
            has_api_key=self.secret_store.has_api_key(request.settings.provider),
            available_models=get_model_registry().available_models(request.settings.provider),
        )

    async def test_connection(self, provider: AIProvider | str) -> ConnectionTestResponse:
        """
        Send a tiny request to check that a provider answers.

        Uses the provider's first default model and the same timeout and
        retry handling as chats. Tokens are discarded and the usage
        ledger is not charged.
        """
        provider = AIProvider(provider)
        client = self.clients.get(provider)
        api_key = self.secret_store.get_api_key(provider)
        if not api_key:
            return ConnectionTestResponse(ok=False, message="Missing API key")

        settings = self.settings_store.read().settings
        defaults = get_model_registry().available_models(provider)
        model = defaults[0] if defaults else settings.model
        messages = with_system_prompt(
            [ChatMessage(role=ChatRole.USER, content=TEST_PROMPT)], settings.system_prompt
        )

        timeout = self._settings.request_timeout_seconds
        token = CancellationToken(timeout_seconds=timeout)
        timer = asyncio.get_running_loop().call_later(
            timeout, token.cancel, CancelReason.TIMEOUT
        )
        try:
            await stream_with_retry(
                client,
                api_key,
                model,
                messages,
                ChatOptions(max_tokens=TEST_MAX_TOKENS, temperature=0.0),
                lambda fragment: None,
                token,
                policy=self.retry_policy,
                sleep=self._sleep,
            )
        except LumenAIError as e:
            logger.warning(f"Connection test for {provider.value} failed: {e.message}")
            return ConnectionTestResponse(ok=False, message=e.message)
        finally:
            timer.cancel()

        logger.info(f"Connection test for {provider.value} succeeded ({model})")
        return ConnectionTestResponse(ok=True, message="Connection successful")

    def start_chat(self, request: ChatRequest) -> StartChatResponse:
        """
        Admit a chat request.

        Raises:
            MissingCredentialError: No key for the selected provider
            BudgetExceededError: Monthly budget already reached
        """
        return StartChatResponse(request_id=self.dispatcher.submit(request))

    def cancel_chat(self, request_id: str) -> CancelChatResponse:
        """Cancel a chat. Unknown or finished ids are ignored."""
        self.dispatcher.cancel(request_id)
        return CancelChatResponse(ok=True)

    async def aclose(self) -> None:
        """Stop all requests and release HTTP connections."""
        await self.dispatcher.aclose()
        await self.clients.aclose()


_service: AIService | None = None


def get_ai_service() -> AIService:
    """
    Get the global AI service instance.

    Returns:
        Singleton AIService instance
    """
    global _service
    if _service is None:
        _service = AIService()
    return _service


def reset_ai_service() -> None:
    """Drop the global instance. Used by tests."""
    global _service
    _service = None
