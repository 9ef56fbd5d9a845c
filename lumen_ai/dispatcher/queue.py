"""
Request Dispatcher

Admits chat requests, queues them FIFO and runs at most
max_concurrent of them at a time (2 by default).

Admission happens synchronously in submit():
1. Resolve provider, model and API key (MissingCredentialError)
2. Check the month's spend against the budget (BudgetExceededError)
3. Prepend the configured system prompt if the request has none
4. Enqueue and start as many queued requests as slots allow

Both checks run before any network I/O. Admitted requests always run
to completion, even if they push spend past the budget.

Each running request gets a wall-clock timeout (30s by default) that
fires its cancellation token. Every admitted request ends with exactly
one done=True event, whether it succeeded, failed, timed out or was
canceled while still queued.

The queue, controller map and running counter are only touched from
the event loop thread, with no awaits between check and update.
"""

import asyncio
import logging
import time
import uuid
from collections import deque
from dataclasses import dataclass
from functools import partial
from typing import Awaitable, Callable

from lumen_ai.cancellation import CancellationToken
from lumen_ai.dispatcher.retry import RetryPolicy, SleepFunc, stream_with_retry
from lumen_ai.errors import (
    BudgetExceededError,
    CancelReason,
    LumenAIError,
    MissingCredentialError,
    RequestCanceled,
)
from lumen_ai.metrics.cost import CostCalculator, get_cost_calculator
from lumen_ai.metrics.ledger import UsageLedger
from lumen_ai.metrics.reporter import BudgetReporter
from lumen_ai.providers import ProviderClients
from lumen_ai.providers.base import ChatOptions
from lumen_ai.registry.models import AIProvider, get_model_registry
from lumen_ai.schemas.chat import (
    ChatMessage,
    ChatRequest,
    ChatRole,
    ErrorCodes,
    RequestUsage,
    StreamEvent,
)
from lumen_ai.storage.secret_store import SecretStore
from lumen_ai.storage.settings_store import SettingsStore

logger = logging.getLogger(__name__)

QUEUED_MESSAGE = "AI is busy. Your request is queued."

EventEmitter = Callable[[StreamEvent], None]


@dataclass
class StreamController:
    """
    Dispatcher-side handle for an admitted request.

    Attributes:
        token: Cancellation token for the request
        queued: True until the request leaves the queue
    """

    token: CancellationToken
    queued: bool = True


@dataclass
class QueueItem:
    """A request waiting for a free slot."""

    request_id: str
    run: Callable[[], Awaitable[None]]


@dataclass
class RequestPlan:
    """Everything resolved at admission time."""

    provider: AIProvider
    model: str
    api_key: str
    messages: list[ChatMessage]
    options: ChatOptions
    feature: str | None = None


def with_system_prompt(messages: list[ChatMessage], system_prompt: str) -> list[ChatMessage]:
    """
    Prepend the system prompt unless it is blank or a system message exists.

    Returns:
        A new list; the input is never modified
    """
    if not system_prompt.strip():
        return list(messages)
    if any(m.role == ChatRole.SYSTEM for m in messages):
        return list(messages)
    return [ChatMessage(role=ChatRole.SYSTEM, content=system_prompt), *messages]


class Dispatcher:
    """
    Bounded-concurrency FIFO dispatcher for streamed chat requests.

    Example:
        dispatcher = Dispatcher(store, secrets, ledger, clients, emit=broker.publish)
        request_id = dispatcher.submit(request)
        ...
        dispatcher.cancel(request_id)
    """

    def __init__(
        self,
        settings_store: SettingsStore,
        secret_store: SecretStore,
        ledger: UsageLedger,
        clients: ProviderClients,
        emit: EventEmitter,
        calculator: CostCalculator | None = None,
        reporter: BudgetReporter | None = None,
        max_concurrent: int = 2,
        request_timeout: float = 30.0,
        default_temperature: float = 0.4,
        retry_policy: RetryPolicy | None = None,
        id_factory: Callable[[], str] | None = None,
        sleep: SleepFunc | None = None,
    ):
        """
        Initialize the dispatcher.

        Args:
            settings_store: Source of AI settings (provider, model, budget)
            secret_store: Source of provider API keys
            ledger: Usage ledger updated after each successful request
            clients: Provider clients
            emit: Receives every StreamEvent
            calculator: Cost estimator (defaults to the global one)
            reporter: Budget thresholds (defaults to an 80% warning ratio)
            max_concurrent: Requests allowed to run at the same time
            request_timeout: Seconds before a running request is canceled
            default_temperature: Used when a request sets none
            retry_policy: Retry limits for provider calls
            id_factory: Generates request ids (defaults to uuid4)
            sleep: Backoff sleep override, used by tests
        """
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")

        self._settings_store = settings_store
        self._secret_store = secret_store
        self._ledger = ledger
        self._clients = clients
        self._emit = emit
        self._calculator = calculator or get_cost_calculator()
        self._reporter = reporter or BudgetReporter()
        self._max_concurrent = max_concurrent
        self._request_timeout = request_timeout
        self._default_temperature = default_temperature
        self._retry_policy = retry_policy or RetryPolicy()
        self._id_factory = id_factory or (lambda: str(uuid.uuid4()))
        self._sleep = sleep

        self._queue: deque[QueueItem] = deque()
        self._controllers: dict[str, StreamController] = {}
        self._tasks: dict[str, asyncio.Task] = {}
        self._running = 0
        self._idle = asyncio.Event()
        self._idle.set()

    @property
    def max_concurrent(self) -> int:
        return self._max_concurrent

    @property
    def running_count(self) -> int:
        return self._running

    @property
    def queued_count(self) -> int:
        return len(self._queue)

    @property
    def active_request_ids(self) -> list[str]:
        """Ids of requests that are running or queued."""
        return list(self._controllers.keys())

    def is_queued(self, request_id: str) -> bool:
        controller = self._controllers.get(request_id)
        return controller is not None and controller.queued

    # -------------------------------------------------------------------------
    # Admission
    # -------------------------------------------------------------------------

    def _resolve_plan(self, request: ChatRequest) -> RequestPlan:
        settings = self._settings_store.read().settings
        provider = request.provider_override or settings.provider

        model_override = (request.model_override or "").strip()
        if model_override:
            model = model_override
        elif provider == settings.provider:
            model = settings.model
        else:
            defaults = get_model_registry().available_models(provider)
            model = defaults[0] if defaults else settings.model

        api_key = self._secret_store.get_api_key(provider)
        if not api_key:
            raise MissingCredentialError(provider.value)

        usage = self._ledger.current_usage()
        if self._reporter.is_reached(usage.estimated_cost_usd, settings.monthly_budget_usd):
            raise BudgetExceededError(usage.estimated_cost_usd, settings.monthly_budget_usd)

        return RequestPlan(
            provider=provider,
            model=model,
            api_key=api_key,
            messages=with_system_prompt(request.messages, settings.system_prompt),
            options=ChatOptions(
                max_tokens=request.max_tokens,
                temperature=(
                    request.temperature
                    if request.temperature is not None
                    else self._default_temperature
                ),
            ),
            feature=request.feature.value if request.feature else None,
        )

    def submit(self, request: ChatRequest) -> str:
        """
        Admit a request and start it as soon as a slot is free.

        Must be called from the event loop thread.

        Args:
            request: The chat request

        Returns:
            The new request id

        Raises:
            MissingCredentialError: Provider needs a key and none is stored
            BudgetExceededError: The month's spend reached the budget
        """
        plan = self._resolve_plan(request)

        request_id = self._id_factory()
        controller = StreamController(
            token=CancellationToken(timeout_seconds=self._request_timeout)
        )
        self._controllers[request_id] = controller
        self._queue.append(
            QueueItem(
                request_id=request_id,
                run=partial(self._execute, request_id, controller, plan),
            )
        )
        self._idle.clear()
        self._drain()

        if controller.queued:
            logger.info(
                f"Request {request_id} queued ({self._running} running, "
                f"{len(self._queue)} waiting)"
            )
            self._publish(
                StreamEvent(request_id=request_id, queued=True, message=QUEUED_MESSAGE)
            )
        return request_id

    # -------------------------------------------------------------------------
    # Scheduling
    # -------------------------------------------------------------------------

    def _drain(self) -> None:
        loop = asyncio.get_running_loop()
        while self._running < self._max_concurrent and self._queue:
            item = self._queue.popleft()
            controller = self._controllers.get(item.request_id)
            if controller is None or controller.token.cancelled:
                continue

            controller.queued = False
            self._running += 1
            task = loop.create_task(item.run(), name=f"lumen-ai-{item.request_id}")
            self._tasks[item.request_id] = task
            task.add_done_callback(partial(self._on_task_done, item.request_id))

    def _on_task_done(self, request_id: str, task: asyncio.Task) -> None:
        self._running -= 1
        self._tasks.pop(request_id, None)
        self._controllers.pop(request_id, None)

        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Request {request_id} task crashed: {task.exception()!r}")

        self._drain()
        if self._running == 0 and not self._queue:
            self._idle.set()

    def _publish(self, event: StreamEvent) -> None:
        try:
            self._emit(event)
        except Exception:
            logger.exception(f"Event delivery failed for request {event.request_id}")

    async def _execute(
        self, request_id: str, controller: StreamController, plan: RequestPlan
    ) -> None:
        token = controller.token
        loop = asyncio.get_running_loop()
        timer = loop.call_later(self._request_timeout, token.cancel, CancelReason.TIMEOUT)
        started = time.perf_counter()
        client = self._clients.get(plan.provider)

        logger.info(f"Request {request_id} started on {plan.provider.value}/{plan.model}")

        try:
            result = await stream_with_retry(
                client,
                plan.api_key,
                plan.model,
                plan.messages,
                plan.options,
                lambda fragment: self._publish(
                    StreamEvent(request_id=request_id, token=fragment)
                ),
                token,
                policy=self._retry_policy,
                sleep=self._sleep,
            )
            timer.cancel()

            prompt_tokens = (result.usage.prompt_tokens if result.usage else None) or 0
            completion_tokens = (
                result.usage.completion_tokens if result.usage else None
            ) or 0
            cost = self._calculator.estimate_cost(plan.model, prompt_tokens, completion_tokens)
            usage = self._ledger.record(prompt_tokens, completion_tokens, cost, plan.feature)
            limit = self._settings_store.read().settings.monthly_budget_usd
            spent = usage.estimated_cost_usd

            event = StreamEvent(
                request_id=request_id,
                done=True,
                usage=usage,
                request_usage=(
                    RequestUsage(
                        prompt_tokens=result.usage.prompt_tokens,
                        completion_tokens=result.usage.completion_tokens,
                        total_tokens=result.usage.total_tokens,
                    )
                    if result.usage
                    else None
                ),
                estimated_cost_usd=cost,
                budget_reached=self._reporter.is_reached(spent, limit),
                budget_warning=self._reporter.is_warning(spent, limit),
            )
            logger.info(
                f"Request {request_id} completed in "
                f"{(time.perf_counter() - started) * 1000:.0f}ms "
                f"({prompt_tokens}+{completion_tokens} tokens, ${cost:.6f})"
            )
        except RequestCanceled as e:
            logger.info(f"Request {request_id} stopped: {e.message}")
            event = StreamEvent(
                request_id=request_id,
                done=True,
                error=e.message,
                error_code=e.code,
                canceled=True,
            )
        except LumenAIError as e:
            logger.warning(f"Request {request_id} failed: {e.message}")
            event = StreamEvent(
                request_id=request_id,
                done=True,
                error=e.message,
                error_code=e.code,
                canceled=False,
            )
        except Exception:
            logger.exception(f"Request {request_id} failed unexpectedly")
            event = StreamEvent(
                request_id=request_id,
                done=True,
                error="AI request failed",
                error_code=ErrorCodes.INTERNAL_ERROR,
                canceled=False,
            )
        finally:
            timer.cancel()
            self._controllers.pop(request_id, None)

        self._publish(event)

    # -------------------------------------------------------------------------
    # Cancellation
    # -------------------------------------------------------------------------

    def cancel(self, request_id: str, reason: CancelReason = CancelReason.USER) -> bool:
        """
        Cancel a queued or running request.

        Unknown and already finished ids are ignored.

        Returns:
            True if a request was canceled by this call
        """
        controller = self._controllers.pop(request_id, None)
        if controller is None:
            return False

        if controller.queued:
            for item in self._queue:
                if item.request_id == request_id:
                    self._queue.remove(item)
                    break
            controller.token.cancel(reason)
            error = controller.token.error()
            logger.info(f"Queued request {request_id} canceled")
            self._publish(
                StreamEvent(
                    request_id=request_id,
                    done=True,
                    error=error.message,
                    error_code=error.code,
                    canceled=True,
                )
            )
            if self._running == 0 and not self._queue:
                self._idle.set()
            return True

        return controller.token.cancel(reason)

    async def wait_idle(self) -> None:
        """Wait until nothing is running or queued."""
        await self._idle.wait()

    async def aclose(self) -> None:
        """Cancel everything and wait for running requests to finish."""
        for request_id in [item.request_id for item in self._queue]:
            self.cancel(request_id, CancelReason.SHUTDOWN)
        for request_id in list(self._controllers):
            self.cancel(request_id, CancelReason.SHUTDOWN)

        tasks = list(self._tasks.values())
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
