"""
Metrics module: Cost estimation, usage accounting and budget reporting.

This module contains:
- cost.py: Per-request cost from registry prices
- ledger.py: Monthly usage ledger with lazy rollover
- reporter.py: Budget status for API responses and events

Public API:
- CostCalculator, CostBreakdown, get_cost_calculator
- UsageLedger
- BudgetReporter, get_reporter
"""

# Cost calculation
from lumen_ai.metrics.cost import (
    CostCalculator,
    CostBreakdown,
    get_cost_calculator,
)

# Usage accounting
from lumen_ai.metrics.ledger import (
    UsageLedger,
    day_key,
    period_key,
)

# Reporting
from lumen_ai.metrics.reporter import (
    BudgetReporter,
    get_reporter,
)


__all__ = [
    # Cost calculation
    "CostCalculator",
    "CostBreakdown",
    "get_cost_calculator",
    # Usage accounting
    "UsageLedger",
    "day_key",
    "period_key",
    # Reporting
    "BudgetReporter",
    "get_reporter",
]
