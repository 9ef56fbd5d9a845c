"""
Budget Reporter

Turns the current month's usage and the configured budget into the
BudgetStatus returned by get_config and attached to completion events.

A budget is reached once spend is at or above the limit, and warns
once spend is at or above the warning ratio (80% by default).
"""

from lumen_ai.schemas.chat import AIUsage, BudgetStatus


class BudgetReporter:
    """
    Generate budget reports from usage snapshots.

    Example:
        reporter = BudgetReporter(warning_ratio=0.8)
        status = reporter.generate_report(usage, limit_usd=20.0)
        if status.warning:
            ...
    """

    def __init__(self, warning_ratio: float = 0.8):
        self._warning_ratio = warning_ratio

    def is_reached(self, spent_usd: float, limit_usd: float) -> bool:
        return spent_usd >= limit_usd

    def is_warning(self, spent_usd: float, limit_usd: float) -> bool:
        return spent_usd >= self._warning_ratio * limit_usd

    def generate_report(self, usage: AIUsage, limit_usd: float) -> BudgetStatus:
        """
        Build the budget position for a usage period.

        Args:
            usage: Usage of the current period
            limit_usd: Monthly budget

        Returns:
            BudgetStatus ready for API serialization
        """
        spent = usage.estimated_cost_usd
        return BudgetStatus(
            limit_usd=limit_usd,
            warning_usd=round(limit_usd * self._warning_ratio, 2),
            spent_usd=spent,
            remaining_usd=round(max(0.0, limit_usd - spent), 4),
            reached=self.is_reached(spent, limit_usd),
            warning=self.is_warning(spent, limit_usd),
        )


def get_reporter(warning_ratio: float | None = None) -> BudgetReporter:
    """
    Get a BudgetReporter using the configured warning ratio.

    Args:
        warning_ratio: Override for Settings.budget_warning_ratio
    """
    if warning_ratio is None:
        from lumen_ai.config import get_settings

        warning_ratio = get_settings().budget_warning_ratio
    return BudgetReporter(warning_ratio=warning_ratio)
