"""Generative AI backends and cost calculation."""
from __future__ import annotations

from agent_handoff_coordinator.generation.base import (
    GenerationBackend,
    GenerationRequest,
    GenerationResult,
    TokenUsage,
    estimate_tokens,
)
from agent_handoff_coordinator.generation.cost import CostCalculator
from agent_handoff_coordinator.generation.live import LiveGenerationBackend
from agent_handoff_coordinator.generation.simulated import SimulatedGenerationBackend

__all__ = [
    "CostCalculator",
    "GenerationBackend",
    "GenerationRequest",
    "GenerationResult",
    "LiveGenerationBackend",
    "SimulatedGenerationBackend",
    "TokenUsage",
    "estimate_tokens",
]
