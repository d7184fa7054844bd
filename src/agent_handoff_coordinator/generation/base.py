"""Generative AI backend interface.

The coordinator only ever talks to a :class:`GenerationBackend`; whether
replies come from canned text or a live model is decided by which
implementation is injected.

Classes
-------
- TokenUsage         — input/output token counts of one call
- GenerationRequest  — prompt plus call options
- GenerationResult   — text, optional structured result, usage
- GenerationBackend  — abstract base for all backends
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Literal

CHARS_PER_TOKEN = 4


def estimate_tokens(text: str) -> int:
    """Rough token count: one token per four characters, rounded up."""
    return -(-len(text) // CHARS_PER_TOKEN)


@dataclass(frozen=True)
class TokenUsage:
    input_tokens: int = 0
    output_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


@dataclass(frozen=True)
class GenerationRequest:
    """One call to the generative AI service.

    Parameters
    ----------
    prompt:
        Full prompt text.
    kind:
        ``"analysis"`` requests a structured JSON product analysis;
        ``"chat"`` requests a conversational reply.
    image_url:
        Optional product image reference passed alongside the prompt.
    mime_type:
        MIME type of ``image_url``.
    temperature:
        Sampling temperature.
    max_output_tokens:
        Upper bound on reply length.
    """

    prompt: str
    kind: Literal["analysis", "chat"] = "chat"
    image_url: str | None = None
    mime_type: str | None = None
    temperature: float = 0.7
    max_output_tokens: int = 1024


@dataclass(frozen=True)
class GenerationResult:
    text: str
    usage: TokenUsage
    structured: dict[str, Any] | None = None
    model: str = ""
    metadata: dict[str, Any] = field(default_factory=dict)


class GenerationBackend(ABC):
    """Prompt in, text or structured result plus token usage out.

    Implementations raise ``TransientError`` for retryable failures and
    ``GenerationFailedError`` for permanent ones.
    """

    name: str = "generation"

    @abstractmethod
    async def generate(self, request: GenerationRequest) -> GenerationResult:
        """Run ``request`` against the service."""

    async def close(self) -> None:
        """Release network resources held by the backend."""


__all__ = [
    "CHARS_PER_TOKEN",
    "GenerationBackend",
    "GenerationRequest",
    "GenerationResult",
    "TokenUsage",
    "estimate_tokens",
]
