"""
Usage Ledger

Accumulates token counts and estimated spend for the current calendar
month (UTC), broken down by day and by originating feature.

The month rolls over lazily: the first read or write after a month
boundary sees a fresh, empty period. On write the finished period is
archived in the store's usage_history so past months stay available.

All writes go through SettingsStore.update, which serializes them.
Sums are rounded to 4 decimal places after every addition, keeping
estimated_cost_usd equal to the sum of daily and of feature_costs.
"""

import logging
from datetime import datetime, timezone
from typing import Callable

from lumen_ai.schemas.chat import AIUsage, StoredConfig
from lumen_ai.storage.settings_store import SettingsStore

logger = logging.getLogger(__name__)

DEFAULT_FEATURE = "chat"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def period_key(now: datetime) -> str:
    """Month key in YYYY-MM form."""
    return now.strftime("%Y-%m")


def day_key(now: datetime) -> str:
    """Day key in YYYY-MM-DD form."""
    return now.strftime("%Y-%m-%d")


class UsageLedger:
    """
    Monthly usage accounting on top of the settings store.

    Example:
        ledger = UsageLedger(store)
        usage = ledger.record(120, 480, 0.000306, feature="summary")
        print(usage.estimated_cost_usd)
    """

    def __init__(
        self, store: SettingsStore, clock: Callable[[], datetime] = _utc_now
    ):
        """
        Initialize the ledger.

        Args:
            store: Settings store holding the usage document
            clock: Returns the current time, UTC-aware
        """
        self._store = store
        self._clock = clock

    def _now(self) -> datetime:
        now = self._clock()
        if now.tzinfo is None:
            return now.replace(tzinfo=timezone.utc)
        return now.astimezone(timezone.utc)

    @staticmethod
    def _current(config: StoredConfig, key: str) -> AIUsage:
        usage = config.usage
        if usage is None or usage.period_key != key:
            return AIUsage(period_key=key)
        return usage

    def current_usage(self) -> AIUsage:
        """
        Usage for the current month, without writing anything.

        Returns:
            The stored usage if it belongs to this month, else an empty period
        """
        key = period_key(self._now())
        return self._current(self._store.read(), key)

    def record(
        self,
        prompt_tokens: int,
        completion_tokens: int,
        cost_usd: float,
        feature: str | None = None,
    ) -> AIUsage:
        """
        Add one finished request to the current month.

        Thread-safe. Performs rollover first if the stored period is stale.

        Args:
            prompt_tokens: Prompt tokens reported by the provider
            completion_tokens: Completion tokens reported by the provider
            cost_usd: Estimated cost of the request
            feature: Originating feature, defaults to 'chat'

        Returns:
            Snapshot of the updated usage
        """
        now = self._now()
        month = period_key(now)
        today = day_key(now)
        feature_name = feature or DEFAULT_FEATURE

        def _apply(config: StoredConfig) -> AIUsage:
            stored = config.usage
            if stored is not None and stored.period_key != month:
                config.usage_history[stored.period_key] = stored
                logger.info(
                    f"Usage period {stored.period_key} closed at "
                    f"${stored.estimated_cost_usd:.4f}, starting {month}"
                )

            usage = self._current(config, month).model_copy(deep=True)
            usage.prompt_tokens += max(0, prompt_tokens)
            usage.completion_tokens += max(0, completion_tokens)
            usage.estimated_cost_usd = round(usage.estimated_cost_usd + cost_usd, 4)
            usage.daily[today] = round(usage.daily.get(today, 0.0) + cost_usd, 4)
            usage.feature_costs[feature_name] = round(
                usage.feature_costs.get(feature_name, 0.0) + cost_usd, 4
            )
            config.usage = usage
            return usage.model_copy(deep=True)

        return self._store.update(_apply)

    def history(self) -> dict[str, AIUsage]:
        """Archived months keyed by period."""
        return dict(self._store.read().usage_history)
