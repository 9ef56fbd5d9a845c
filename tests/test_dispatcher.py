"""
Dispatcher Tests

Tests for admission, FIFO scheduling, cancellation and completion events
with scripted provider clients in place of HTTP.

Test Categories:
1. TestAdmission - Credential and budget checks, model resolution
2. TestCompletion - Token and done events, cost and ledger updates
3. TestConcurrency - Slot limit, FIFO order and the queued notice
4. TestCancellation - Queued, running and unknown requests
5. TestTimeout - Wall-clock limit for running requests
6. TestFailures - Provider errors, retries and unexpected exceptions
"""

import asyncio
import itertools
from types import SimpleNamespace

import pytest

from fixtures import provider_error, settle
from lumen_ai.dispatcher import QUEUED_MESSAGE, Dispatcher, with_system_prompt
from lumen_ai.errors import BudgetExceededError, CancelReason, MissingCredentialError
from lumen_ai.metrics.ledger import UsageLedger
from lumen_ai.providers import ProviderClients
from lumen_ai.providers.base import ChatUsage
from lumen_ai.registry.models import AIProvider
from lumen_ai.schemas.chat import (
    DEFAULT_SYSTEM_PROMPT,
    ChatMessage,
    ChatRequest,
    ChatRole,
    ErrorCodes,
)
from lumen_ai.storage import SecretStore, SettingsStore


USAGE = ChatUsage(prompt_tokens=10_000, completion_tokens=5_000, total_tokens=15_000)
# gpt-4o-mini: 10k prompt at 0.15/M + 5k completion at 0.60/M
USAGE_COST = 0.0045


@pytest.fixture
def build_dispatcher(tmp_path, test_settings, fixed_clock):
    """
    Factory fixture for a Dispatcher over real stores and scripted clients.

    Usage:
        env = build_dispatcher(provider, max_concurrent=1)
        request_id = env.dispatcher.submit(request)
        await env.dispatcher.wait_idle()
        env.events  # every published StreamEvent
    """

    def _create(*providers, max_concurrent=2, request_timeout=30.0, sleep=None, emit=None):
        store = SettingsStore(tmp_path / "settings.json")
        secrets = SecretStore(tmp_path / "secrets.json", fallback_keys={"openai": "sk-test"})
        ledger = UsageLedger(store, fixed_clock())
        clients = ProviderClients(
            settings=test_settings, overrides={p.provider: p for p in providers}
        )
        events = []
        ids = itertools.count(1)
        dispatcher = Dispatcher(
            settings_store=store,
            secret_store=secrets,
            ledger=ledger,
            clients=clients,
            emit=emit or events.append,
            max_concurrent=max_concurrent,
            request_timeout=request_timeout,
            id_factory=lambda: f"req-{next(ids)}",
            sleep=sleep,
        )
        return SimpleNamespace(
            dispatcher=dispatcher, events=events, store=store, secrets=secrets, ledger=ledger
        )

    return _create


def events_for(events, request_id):
    return [e for e in events if e.request_id == request_id]


def done_events(events, request_id):
    return [e for e in events_for(events, request_id) if e.done]


async def no_sleep(seconds):
    return None


class TestSystemPrompt:
    """Tests for with_system_prompt."""

    def test_prepends_when_missing(self):
        messages = [ChatMessage(role="user", content="Hi")]

        result = with_system_prompt(messages, "Be brief.")

        assert result[0] == ChatMessage(role=ChatRole.SYSTEM, content="Be brief.")
        assert result[1:] == messages
        assert len(messages) == 1

    def test_existing_system_message_kept(self):
        messages = [
            ChatMessage(role="system", content="Custom"),
            ChatMessage(role="user", content="Hi"),
        ]

        assert with_system_prompt(messages, "Be brief.") == messages

    def test_blank_prompt_ignored(self):
        messages = [ChatMessage(role="user", content="Hi")]

        assert with_system_prompt(messages, "   ") == messages


class TestAdmission:
    """Tests for checks made before a request is queued."""

    @pytest.mark.asyncio
    async def test_missing_credential(self, build_dispatcher, scripted_provider, make_request):
        """A provider without a key is rejected before any call."""
        openai = scripted_provider()
        anthropic = scripted_provider(provider=AIProvider.ANTHROPIC)
        env = build_dispatcher(openai, anthropic)

        with pytest.raises(MissingCredentialError) as exc_info:
            env.dispatcher.submit(make_request(provider_override="anthropic"))

        assert exc_info.value.message == "No API key configured for anthropic"
        assert exc_info.value.code == ErrorCodes.MISSING_CREDENTIAL
        assert env.events == []
        assert anthropic.calls == []
        assert env.dispatcher.active_request_ids == []

    @pytest.mark.asyncio
    async def test_openclaw_needs_key(self, build_dispatcher, scripted_provider, make_request):
        """The self-hosted gateway is held to the same key check."""
        gateway = scripted_provider(provider=AIProvider.OPENCLAW)
        env = build_dispatcher(gateway)

        with pytest.raises(MissingCredentialError) as exc_info:
            env.dispatcher.submit(make_request(provider_override="openclaw"))

        assert exc_info.value.message == "No API key configured for openclaw"
        assert gateway.calls == []
        assert env.events == []

    @pytest.mark.asyncio
    async def test_openclaw_with_key_admitted(
        self, build_dispatcher, scripted_provider, make_request
    ):
        """A stored gateway token admits the request with its default model."""
        gateway = scripted_provider(provider=AIProvider.OPENCLAW)
        env = build_dispatcher(gateway)
        env.secrets.set_api_key(AIProvider.OPENCLAW, "claw-token")

        env.dispatcher.submit(make_request(provider_override="openclaw"))
        await env.dispatcher.wait_idle()

        assert gateway.calls[0].api_key == "claw-token"
        assert gateway.calls[0].model == "openclaw:main"

    @pytest.mark.asyncio
    async def test_budget_reached(self, build_dispatcher, scripted_provider, make_request):
        """Spend at the limit rejects new requests before the network."""
        provider = scripted_provider()
        env = build_dispatcher(provider)
        env.ledger.record(0, 0, 20.0)

        with pytest.raises(BudgetExceededError) as exc_info:
            env.dispatcher.submit(make_request())

        assert exc_info.value.message == "Monthly AI budget reached"
        assert provider.calls == []
        assert env.events == []

    @pytest.mark.asyncio
    async def test_configured_model_used(self, build_dispatcher, scripted_provider, make_request):
        """Without overrides the saved provider and model are used."""
        provider = scripted_provider(provider=AIProvider.XAI)
        env = build_dispatcher(provider)
        env.secrets.set_api_key(AIProvider.XAI, "xai-key")

        def _configure(config):
            config.settings.provider = AIProvider.XAI
            config.settings.model = "grok-3-mini"

        env.store.update(_configure)

        env.dispatcher.submit(make_request())
        await env.dispatcher.wait_idle()

        assert provider.calls[0].model == "grok-3-mini"
        assert provider.calls[0].api_key == "xai-key"

    @pytest.mark.asyncio
    async def test_provider_override_uses_first_default(
        self, build_dispatcher, scripted_provider, make_request
    ):
        """A provider override without a model uses that provider's first default."""
        provider = scripted_provider(provider=AIProvider.OPENROUTER)
        env = build_dispatcher(provider)
        env.secrets.set_api_key(AIProvider.OPENROUTER, "or-key")

        env.dispatcher.submit(make_request(provider_override="openrouter"))
        await env.dispatcher.wait_idle()

        assert provider.calls[0].model == "moonshotai/kimi-k2:free"

    @pytest.mark.asyncio
    async def test_model_override(self, build_dispatcher, scripted_provider, make_request):
        """model_override replaces the configured model."""
        provider = scripted_provider()
        env = build_dispatcher(provider)

        env.dispatcher.submit(make_request(model_override="gpt-4o"))
        await env.dispatcher.wait_idle()

        assert provider.calls[0].model == "gpt-4o"

    @pytest.mark.asyncio
    async def test_options_and_system_prompt(
        self, build_dispatcher, scripted_provider, make_request
    ):
        """The system prompt is prepended and sampling options passed through."""
        provider = scripted_provider()
        env = build_dispatcher(provider)

        env.dispatcher.submit(make_request("Hi", max_tokens=64, temperature=1.1))
        await env.dispatcher.wait_idle()

        call = provider.calls[0]
        assert call.api_key == "sk-test"
        assert call.messages[0].role == ChatRole.SYSTEM
        assert call.messages[0].content == DEFAULT_SYSTEM_PROMPT
        assert call.messages[1].content == "Hi"
        assert call.options.max_tokens == 64
        assert call.options.temperature == 1.1

    @pytest.mark.asyncio
    async def test_default_temperature(self, build_dispatcher, scripted_provider, make_request):
        provider = scripted_provider()
        env = build_dispatcher(provider)

        env.dispatcher.submit(make_request())
        await env.dispatcher.wait_idle()

        assert provider.calls[0].options.temperature == 0.4
        assert provider.calls[0].options.max_tokens is None


class TestCompletion:
    """Tests for successful requests."""

    @pytest.mark.asyncio
    async def test_tokens_then_done(self, build_dispatcher, scripted_provider, make_request):
        """Tokens arrive in order, followed by one done event with cost."""
        provider = scripted_provider(tokens=["Hel", "lo"], usage=USAGE)
        env = build_dispatcher(provider)

        request_id = env.dispatcher.submit(make_request())
        await env.dispatcher.wait_idle()

        events = events_for(env.events, request_id)
        assert [e.token for e in events[:-1]] == ["Hel", "lo"]
        assert all(not e.done for e in events[:-1])

        done = events[-1]
        assert done.done is True
        assert done.error is None
        assert done.queued is None
        assert done.estimated_cost_usd == pytest.approx(USAGE_COST)
        assert done.request_usage.prompt_tokens == 10_000
        assert done.request_usage.completion_tokens == 5_000
        assert done.request_usage.total_tokens == 15_000
        assert done.usage.estimated_cost_usd == pytest.approx(USAGE_COST)
        assert done.budget_reached is False
        assert done.budget_warning is False

    @pytest.mark.asyncio
    async def test_ledger_updated(self, build_dispatcher, scripted_provider, make_request):
        """Successful requests are charged to the requesting feature."""
        provider = scripted_provider(usage=USAGE)
        env = build_dispatcher(provider)

        env.dispatcher.submit(make_request(feature="summary"))
        env.dispatcher.submit(make_request())
        await env.dispatcher.wait_idle()

        usage = env.ledger.current_usage()
        assert usage.prompt_tokens == 20_000
        assert usage.completion_tokens == 10_000
        assert usage.estimated_cost_usd == pytest.approx(2 * USAGE_COST)
        assert usage.feature_costs == {
            "summary": pytest.approx(USAGE_COST),
            "chat": pytest.approx(USAGE_COST),
        }

    @pytest.mark.asyncio
    async def test_missing_usage_charges_nothing(
        self, build_dispatcher, scripted_provider, make_request
    ):
        """Without reported usage the request costs zero."""
        provider = scripted_provider(usage=None)
        env = build_dispatcher(provider)

        request_id = env.dispatcher.submit(make_request())
        await env.dispatcher.wait_idle()

        done = done_events(env.events, request_id)[0]
        assert done.estimated_cost_usd == 0.0
        assert done.request_usage is None
        assert env.ledger.current_usage().prompt_tokens == 0

    @pytest.mark.asyncio
    async def test_budget_warning_flag(self, build_dispatcher, scripted_provider, make_request):
        """Crossing 80% of the budget sets budget_warning on done."""
        provider = scripted_provider(
            usage=ChatUsage(prompt_tokens=1_000_000, completion_tokens=0, total_tokens=1_000_000)
        )
        env = build_dispatcher(provider)
        env.store.update(lambda c: setattr(c.settings, "monthly_budget_usd", 1.0))
        env.ledger.record(0, 0, 0.7)

        request_id = env.dispatcher.submit(make_request())
        await env.dispatcher.wait_idle()

        done = done_events(env.events, request_id)[0]
        assert done.usage.estimated_cost_usd == pytest.approx(0.85)
        assert done.budget_warning is True
        assert done.budget_reached is False

    @pytest.mark.asyncio
    async def test_admitted_request_runs_past_budget(
        self, build_dispatcher, scripted_provider, make_request
    ):
        """An admitted request completes even if it overruns the budget."""
        provider = scripted_provider(
            usage=ChatUsage(prompt_tokens=1_000_000, completion_tokens=0, total_tokens=1_000_000)
        )
        env = build_dispatcher(provider)
        env.store.update(lambda c: setattr(c.settings, "monthly_budget_usd", 1.0))
        env.ledger.record(0, 0, 0.9)

        request_id = env.dispatcher.submit(make_request())
        await env.dispatcher.wait_idle()

        done = done_events(env.events, request_id)[0]
        assert done.error is None
        assert done.usage.estimated_cost_usd == pytest.approx(1.05)
        assert done.budget_reached is True

        with pytest.raises(BudgetExceededError):
            env.dispatcher.submit(make_request())

    @pytest.mark.asyncio
    async def test_failing_emit_does_not_break_request(
        self, build_dispatcher, scripted_provider, make_request
    ):
        """Errors from the event sink are logged and the request still completes."""

        def _broken_emit(event):
            raise RuntimeError("sink down")

        provider = scripted_provider(usage=USAGE)
        env = build_dispatcher(provider, emit=_broken_emit)

        env.dispatcher.submit(make_request())
        await env.dispatcher.wait_idle()

        assert env.ledger.current_usage().prompt_tokens == 10_000
        assert env.dispatcher.running_count == 0


class TestConcurrency:
    """Tests for the slot limit and FIFO queue."""

    @pytest.mark.asyncio
    async def test_at_most_two_running(self, build_dispatcher, scripted_provider, make_request):
        """Three requests: two run, the third is queued with a notice."""
        provider = scripted_provider(block=True)
        env = build_dispatcher(provider)

        ids = [env.dispatcher.submit(make_request(text)) for text in ("one", "two", "three")]
        await settle()

        assert env.dispatcher.running_count == 2
        assert env.dispatcher.queued_count == 1
        assert env.dispatcher.is_queued(ids[2]) is True
        assert provider.started == ["one", "two"]

        queued = [e for e in env.events if e.queued]
        assert len(queued) == 1
        assert queued[0].request_id == ids[2]
        assert queued[0].message == QUEUED_MESSAGE
        assert queued[0].done is False

        provider.release()
        await asyncio.wait_for(env.dispatcher.wait_idle(), timeout=2.0)

        assert provider.started == ["one", "two", "three"]
        assert provider.max_active == 2
        for request_id in ids:
            assert len(done_events(env.events, request_id)) == 1

    @pytest.mark.asyncio
    async def test_fifo_order(self, build_dispatcher, scripted_provider, make_request):
        """Queued requests start in submission order."""
        provider = scripted_provider()
        env = build_dispatcher(provider, max_concurrent=1)

        for text in ("a", "b", "c", "d", "e"):
            env.dispatcher.submit(make_request(text))
        await env.dispatcher.wait_idle()

        assert provider.started == ["a", "b", "c", "d", "e"]
        assert provider.max_active == 1

    @pytest.mark.asyncio
    async def test_slot_freed_after_failure(
        self, build_dispatcher, scripted_provider, make_request
    ):
        """A failed request releases its slot to the next one."""
        provider = scripted_provider(outcomes=[provider_error(401)])
        env = build_dispatcher(provider, max_concurrent=1)

        first = env.dispatcher.submit(make_request("first"))
        second = env.dispatcher.submit(make_request("second"))
        await env.dispatcher.wait_idle()

        assert done_events(env.events, first)[0].error_code == ErrorCodes.AUTHENTICATION_FAILED
        assert done_events(env.events, second)[0].error is None
        assert provider.started == ["first", "second"]

    def test_invalid_limit(self, build_dispatcher):
        with pytest.raises(ValueError):
            build_dispatcher(max_concurrent=0)


class TestCancellation:
    """Tests for Dispatcher.cancel."""

    @pytest.mark.asyncio
    async def test_cancel_queued_never_runs(
        self, build_dispatcher, scripted_provider, make_request
    ):
        """A request canceled while queued never reaches the provider."""
        provider = scripted_provider(block=True)
        env = build_dispatcher(provider)

        ids = [env.dispatcher.submit(make_request(text)) for text in ("one", "two", "three")]
        await settle()

        assert env.dispatcher.cancel(ids[2]) is True
        assert env.dispatcher.queued_count == 0

        provider.release()
        await asyncio.wait_for(env.dispatcher.wait_idle(), timeout=2.0)

        assert provider.started == ["one", "two"]
        done = done_events(env.events, ids[2])
        assert len(done) == 1
        assert done[0].canceled is True
        assert done[0].error == "Request canceled by user"
        assert done[0].error_code == ErrorCodes.CANCELED

    @pytest.mark.asyncio
    async def test_cancel_running(self, build_dispatcher, scripted_provider, make_request):
        """Canceling a running request ends it and frees its slot."""
        provider = scripted_provider(block=True, usage=USAGE)
        env = build_dispatcher(provider, max_concurrent=1)

        first = env.dispatcher.submit(make_request("first"))
        second = env.dispatcher.submit(make_request("second"))
        await settle()

        assert env.dispatcher.cancel(first) is True
        await settle()

        done = done_events(env.events, first)
        assert len(done) == 1
        assert done[0].canceled is True
        assert done[0].error == "Request canceled by user"
        assert provider.started == ["first", "second"]

        provider.release()
        await asyncio.wait_for(env.dispatcher.wait_idle(), timeout=2.0)

        assert done_events(env.events, second)[0].error is None
        # Only the second request was charged
        assert env.ledger.current_usage().prompt_tokens == 10_000

    @pytest.mark.asyncio
    async def test_cancel_unknown_is_noop(self, build_dispatcher, scripted_provider):
        env = build_dispatcher(scripted_provider())

        assert env.dispatcher.cancel("no-such-request") is False
        assert env.events == []

    @pytest.mark.asyncio
    async def test_cancel_twice(self, build_dispatcher, scripted_provider, make_request):
        """Only the first cancel has an effect; one done event is emitted."""
        provider = scripted_provider(block=True)
        env = build_dispatcher(provider)

        request_id = env.dispatcher.submit(make_request())
        await settle()

        assert env.dispatcher.cancel(request_id) is True
        assert env.dispatcher.cancel(request_id) is False
        await asyncio.wait_for(env.dispatcher.wait_idle(), timeout=2.0)

        assert len(done_events(env.events, request_id)) == 1

    @pytest.mark.asyncio
    async def test_cancel_finished_is_noop(
        self, build_dispatcher, scripted_provider, make_request
    ):
        provider = scripted_provider()
        env = build_dispatcher(provider)

        request_id = env.dispatcher.submit(make_request())
        await env.dispatcher.wait_idle()

        assert env.dispatcher.cancel(request_id) is False
        assert len(done_events(env.events, request_id)) == 1

    @pytest.mark.asyncio
    async def test_aclose_cancels_everything(
        self, build_dispatcher, scripted_provider, make_request
    ):
        """Shutdown ends queued and running requests with a shutdown reason."""
        provider = scripted_provider(block=True)
        env = build_dispatcher(provider)

        ids = [env.dispatcher.submit(make_request(text)) for text in ("one", "two", "three")]
        await settle()

        await asyncio.wait_for(env.dispatcher.aclose(), timeout=2.0)

        for request_id in ids:
            done = done_events(env.events, request_id)
            assert len(done) == 1
            assert done[0].error == "Request canceled by shutdown"
        assert provider.started == ["one", "two"]
        assert env.dispatcher.running_count == 0


class TestTimeout:
    """Tests for the per-request wall-clock limit."""

    @pytest.mark.asyncio
    async def test_running_request_times_out(
        self, build_dispatcher, scripted_provider, make_request
    ):
        """A request still running at the limit ends with a timeout."""
        provider = scripted_provider(block=True)
        env = build_dispatcher(provider, request_timeout=0.05)

        request_id = env.dispatcher.submit(make_request())
        await asyncio.wait_for(env.dispatcher.wait_idle(), timeout=2.0)

        done = done_events(env.events, request_id)
        assert len(done) == 1
        assert done[0].canceled is True
        assert done[0].error == "Request timed out after 0.05s"
        assert done[0].error_code == ErrorCodes.TIMEOUT
        assert env.ledger.current_usage().estimated_cost_usd == 0.0

    @pytest.mark.asyncio
    async def test_fast_request_not_affected(
        self, build_dispatcher, scripted_provider, make_request
    ):
        """Requests finishing before the limit are not canceled later."""
        provider = scripted_provider()
        env = build_dispatcher(provider, request_timeout=0.05)

        request_id = env.dispatcher.submit(make_request())
        await env.dispatcher.wait_idle()
        await asyncio.sleep(0.1)

        done = done_events(env.events, request_id)
        assert len(done) == 1
        assert done[0].error is None


class TestFailures:
    """Tests for failed requests."""

    @pytest.mark.asyncio
    async def test_provider_error_event(self, build_dispatcher, scripted_provider, make_request):
        """Provider failures end the request with their message and code."""
        provider = scripted_provider(
            outcomes=[provider_error(401, "OpenAI rejected the API key. Check the key in settings.")]
        )
        env = build_dispatcher(provider)

        request_id = env.dispatcher.submit(make_request())
        await env.dispatcher.wait_idle()

        events = events_for(env.events, request_id)
        assert len(events) == 1
        assert events[0].done is True
        assert events[0].canceled is False
        assert events[0].error == "OpenAI rejected the API key. Check the key in settings."
        assert events[0].error_code == ErrorCodes.AUTHENTICATION_FAILED
        assert env.ledger.current_usage().prompt_tokens == 0

    @pytest.mark.asyncio
    async def test_transient_error_retried(
        self, build_dispatcher, scripted_provider, make_request
    ):
        """A 429 is retried and tokens are delivered once."""
        provider = scripted_provider(outcomes=[provider_error(429)], tokens=["ok"])
        env = build_dispatcher(provider, sleep=no_sleep)

        request_id = env.dispatcher.submit(make_request())
        await env.dispatcher.wait_idle()

        tokens = [e.token for e in events_for(env.events, request_id) if e.token]
        assert tokens == ["ok"]
        assert len(provider.calls) == 2
        assert done_events(env.events, request_id)[0].error is None

    @pytest.mark.asyncio
    async def test_unexpected_exception(self, build_dispatcher, scripted_provider, make_request):
        """Unexpected errors end the request with a generic message."""
        provider = scripted_provider(outcomes=[RuntimeError("bug")])
        env = build_dispatcher(provider)

        request_id = env.dispatcher.submit(make_request())
        await env.dispatcher.wait_idle()

        done = done_events(env.events, request_id)[0]
        assert done.error == "AI request failed"
        assert done.error_code == ErrorCodes.INTERNAL_ERROR
        assert done.canceled is False

    @pytest.mark.asyncio
    async def test_every_request_gets_one_done(
        self, build_dispatcher, scripted_provider, make_request
    ):
        """Mixed outcomes still produce exactly one done event each."""
        provider = scripted_provider(
            outcomes=[None, provider_error(400), RuntimeError("bug"), None]
        )
        env = build_dispatcher(provider)

        ids = [env.dispatcher.submit(make_request(str(i))) for i in range(4)]
        await env.dispatcher.wait_idle()

        for request_id in ids:
            assert len(done_events(env.events, request_id)) == 1
        assert env.dispatcher.active_request_ids == []
