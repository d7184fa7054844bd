"""Token usage to USD conversion."""
from __future__ import annotations

from agent_handoff_coordinator.config import PricingConfig
from agent_handoff_coordinator.generation.base import (
    GenerationRequest,
    TokenUsage,
    estimate_tokens,
)


class CostCalculator:
    """Price token usage with a :class:`PricingConfig`.

    ``cost = input_tokens / 1000 * input_rate + output_tokens / 1000 * output_rate``;
    image analysis adds a flat ``image_base_cost``.
    """

    def __init__(self, pricing: PricingConfig | None = None) -> None:
        self._pricing = pricing or PricingConfig()

    def cost(self, usage: TokenUsage, *, include_image: bool = False) -> float:
        pricing = self._pricing
        amount = (
            usage.input_tokens / 1000 * pricing.input_token_cost
            + usage.output_tokens / 1000 * pricing.output_token_cost
        )
        if include_image:
            amount += pricing.image_base_cost
        return round(amount, 6)

    def estimate_request(
        self, request: GenerationRequest, *, include_image: bool = False
    ) -> float:
        """Upper-bound the cost of ``request`` by pricing a reply of
        ``request.max_output_tokens`` tokens."""
        usage = TokenUsage(
            input_tokens=estimate_tokens(request.prompt),
            output_tokens=request.max_output_tokens,
        )
        return self.cost(usage, include_image=include_image)


__all__ = ["CostCalculator"]
