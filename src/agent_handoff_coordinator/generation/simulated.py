"""Deterministic generation backend for demos and tests.

Replies cycle through a fixed list; analysis requests return a canned
structured product analysis.  Token usage is estimated from text length so
cost accounting behaves exactly as with a live model.

Classes
-------
- SimulatedGenerationBackend  — canned, reproducible generation
"""
from __future__ import annotations

import asyncio
import copy
import json
from typing import Any, Sequence

from agent_handoff_coordinator.generation.base import (
    GenerationBackend,
    GenerationRequest,
    GenerationResult,
    TokenUsage,
    estimate_tokens,
)

DEFAULT_REPLIES: tuple[str, ...] = (
    "Thanks! That helps me understand the product. What makes it unique compared "
    "to similar products?",
    "Great detail. Who do you picture as the ideal customer for this product?",
    "Understood. How would you like the brand to be positioned against competitors?",
    "Nice. What visual style, colors or mood should the commercial have?",
    "I have a clear picture now. We can move on to creative direction whenever you're ready.",
)

DEFAULT_ANALYSIS: dict[str, Any] = {
    "productName": "Premium Wireless Headphones",
    "category": "electronics",
    "confidence": 0.87,
    "summary": (
        "Over-ear wireless headphones with active noise cancellation and a "
        "premium matte finish."
    ),
    "sections": {
        "product": {
            "keyFeatures": ["active noise cancellation", "30-hour battery", "memory foam cushions"],
            "materials": ["aluminium", "protein leather"],
        },
        "targetAudience": {
            "primary": "urban professionals aged 25-40",
            "interests": ["music", "travel", "productivity"],
        },
        "positioning": {
            "brandPersonality": "sophisticated and calm",
            "valueProposition": "studio sound and silence anywhere",
        },
        "visualPreferences": {
            "style": "minimal",
            "palette": ["matte black", "warm grey"],
            "mood": "focused",
        },
        "commercialStrategy": {
            "keyMessages": ["escape the noise", "all-day comfort"],
            "callToAction": "Hear the difference",
        },
    },
}


class SimulatedGenerationBackend(GenerationBackend):
    """Canned generation backend.

    Parameters
    ----------
    replies:
        Chat replies returned in rotation.
    analysis:
        Structured analysis returned for ``kind="analysis"`` requests.
    fail_with:
        When set, every call raises this exception instead of replying.
    latency_seconds:
        Artificial delay applied to each call.
    """

    name = "simulated"

    def __init__(
        self,
        replies: Sequence[str] | None = None,
        analysis: dict[str, Any] | None = None,
        *,
        fail_with: Exception | None = None,
        latency_seconds: float = 0.0,
    ) -> None:
        self._replies: tuple[str, ...] = tuple(replies) if replies else DEFAULT_REPLIES
        self._analysis = analysis if analysis is not None else DEFAULT_ANALYSIS
        self.fail_with = fail_with
        self._latency_seconds = latency_seconds
        self._calls = 0
        self.requests: list[GenerationRequest] = []

    @property
    def call_count(self) -> int:
        return self._calls

    async def generate(self, request: GenerationRequest) -> GenerationResult:
        self.requests.append(request)
        if self._latency_seconds:
            await asyncio.sleep(self._latency_seconds)
        if self.fail_with is not None:
            raise self.fail_with

        if request.kind == "analysis":
            structured = copy.deepcopy(self._analysis)
            text = json.dumps(structured)
        else:
            structured = None
            text = self._replies[self._calls % len(self._replies)]
        self._calls += 1
        usage = TokenUsage(
            input_tokens=estimate_tokens(request.prompt),
            output_tokens=estimate_tokens(text),
        )
        return GenerationResult(text=text, usage=usage, structured=structured, model=self.name)

    def __repr__(self) -> str:
        return f"SimulatedGenerationBackend(replies={len(self._replies)}, calls={self._calls})"


__all__ = ["DEFAULT_ANALYSIS", "DEFAULT_REPLIES", "SimulatedGenerationBackend"]
