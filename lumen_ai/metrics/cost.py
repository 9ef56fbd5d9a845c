"""
Cost Calculator for Model Inference

Estimates the USD cost of a finished request from its token usage and
the per-1M-token prices in the model registry.

Costs are rounded to 6 decimal places. Models that are not in the
registry (custom OpenClaw agents, new provider models) cost nothing.
"""

from dataclasses import dataclass

from lumen_ai.registry.models import ModelMetadata, get_model_registry


@dataclass
class CostBreakdown:
    """
    Cost breakdown for a single request.

    Attributes:
        prompt_tokens: Number of prompt tokens processed
        completion_tokens: Number of completion tokens generated
        prompt_cost_usd: Cost for prompt tokens in USD
        completion_cost_usd: Cost for completion tokens in USD
        total_cost_usd: Rounded total cost (prompt + completion)
        model_used: Model the request ran on
        priced: False when the model has no registry entry
    """

    prompt_tokens: int
    completion_tokens: int
    prompt_cost_usd: float
    completion_cost_usd: float
    total_cost_usd: float
    model_used: str
    priced: bool = True

    @property
    def total_tokens(self) -> int:
        """Total tokens processed (prompt + completion)."""
        return self.prompt_tokens + self.completion_tokens


class CostCalculator:
    """
    Calculate inference costs.

    The calculator is thread-safe as it only performs read operations
    on the model registry.

    Example:
        calculator = CostCalculator()
        cost = calculator.estimate_cost("gpt-4o", 1_000_000, 0)
        print(f"Cost ${cost:.6f}")  # Cost $5.000000
    """

    def calculate(
        self, model: ModelMetadata, prompt_tokens: int, completion_tokens: int
    ) -> CostBreakdown:
        """
        Calculate cost breakdown for a request.

        Args:
            model: Model metadata with pricing information
            prompt_tokens: Number of prompt tokens used
            completion_tokens: Number of completion tokens generated

        Returns:
            Cost breakdown with the total rounded to 6 places
        """
        prompt_cost = (prompt_tokens / 1_000_000) * model.cost_per_1m_prompt_tokens
        completion_cost = (
            completion_tokens / 1_000_000
        ) * model.cost_per_1m_completion_tokens

        return CostBreakdown(
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            prompt_cost_usd=prompt_cost,
            completion_cost_usd=completion_cost,
            total_cost_usd=round(prompt_cost + completion_cost, 6),
            model_used=model.model_id,
        )

    def calculate_by_model_id(
        self, model_id: str, prompt_tokens: int, completion_tokens: int
    ) -> CostBreakdown:
        """
        Calculate cost using model ID lookup.

        Unknown models produce a zero-cost breakdown with priced=False.

        Args:
            model_id: Model name as sent to the provider
            prompt_tokens: Number of prompt tokens used
            completion_tokens: Number of completion tokens generated

        Returns:
            CostBreakdown for the request
        """
        model = get_model_registry().get_model(model_id)
        if model is None:
            return CostBreakdown(
                prompt_tokens=prompt_tokens,
                completion_tokens=completion_tokens,
                prompt_cost_usd=0.0,
                completion_cost_usd=0.0,
                total_cost_usd=0.0,
                model_used=model_id,
                priced=False,
            )
        return self.calculate(model, prompt_tokens, completion_tokens)

    def estimate_cost(
        self, model_id: str, prompt_tokens: int, completion_tokens: int
    ) -> float:
        """Estimated USD cost of a request, rounded to 6 places."""
        return self.calculate_by_model_id(
            model_id, prompt_tokens, completion_tokens
        ).total_cost_usd


_calculator: CostCalculator | None = None


def get_cost_calculator() -> CostCalculator:
    """
    Get the global cost calculator instance.

    Returns:
        Singleton CostCalculator instance
    """
    global _calculator
    if _calculator is None:
        _calculator = CostCalculator()
    return _calculator
