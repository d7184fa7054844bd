"""Gemini REST generation backend.

Calls the ``models/<model>:generateContent`` endpoint with httpx.  Failure
mapping: transport errors, timeouts, HTTP 429 and 5xx raise
``TransientError``; any other 4xx, blocked or empty candidates, and
unparseable structured output raise ``GenerationFailedError``.

Classes
-------
- LiveGenerationBackend  — httpx-backed Gemini client
"""
from __future__ import annotations

import json
import logging
from typing import Any

import httpx

from agent_handoff_coordinator.errors import GenerationFailedError, TransientError
from agent_handoff_coordinator.generation.base import (
    GenerationBackend,
    GenerationRequest,
    GenerationResult,
    TokenUsage,
    estimate_tokens,
)

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"
DEFAULT_MODEL = "gemini-1.5-flash"


class LiveGenerationBackend(GenerationBackend):
    """Generate replies with a hosted Gemini model.

    Parameters
    ----------
    api_key:
        Google AI Studio API key.
    model:
        Model name, e.g. ``"gemini-1.5-flash"``.
    base_url:
        API root.  Override for proxies and tests.
    timeout:
        Per-request timeout in seconds.
    client:
        Optional pre-built ``httpx.AsyncClient``.  When omitted the backend
        creates and owns one.
    """

    name = "live"

    def __init__(
        self,
        api_key: str,
        *,
        model: str = DEFAULT_MODEL,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        if not api_key:
            raise ValueError("LiveGenerationBackend requires a non-empty api_key.")
        self._api_key = api_key
        self._model = model
        self._base_url = base_url.rstrip("/")
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=httpx.Timeout(timeout))

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _body(self, request: GenerationRequest) -> dict[str, Any]:
        parts: list[dict[str, Any]] = [{"text": request.prompt}]
        if request.image_url and request.mime_type:
            parts.append(
                {"fileData": {"mimeType": request.mime_type, "fileUri": request.image_url}}
            )
        generation_config: dict[str, Any] = {
            "temperature": request.temperature,
            "maxOutputTokens": request.max_output_tokens,
        }
        if request.kind == "analysis":
            generation_config["responseMimeType"] = "application/json"
        return {
            "contents": [{"role": "user", "parts": parts}],
            "generationConfig": generation_config,
        }

    def _raise_for_status(self, response: httpx.Response) -> None:
        status = response.status_code
        if status < 400:
            return
        detail = response.text[:500]
        if status == 429 or status >= 500:
            raise TransientError(
                f"Generation service returned HTTP {status}.",
                {"status": status, "body": detail},
            )
        raise GenerationFailedError(
            f"Generation service rejected the request with HTTP {status}.",
            {"status": status, "body": detail},
        )

    @staticmethod
    def _extract_text(data: dict[str, Any]) -> str:
        candidates = data.get("candidates") or []
        if not candidates:
            reason = (data.get("promptFeedback") or {}).get("blockReason", "no candidates")
            raise GenerationFailedError(f"Generation returned no candidates ({reason}).")
        parts = (candidates[0].get("content") or {}).get("parts") or []
        text = "".join(str(part.get("text", "")) for part in parts)
        if not text:
            finish = candidates[0].get("finishReason", "unknown")
            raise GenerationFailedError(
                f"Generation returned an empty reply (finishReason={finish})."
            )
        return text

    # ------------------------------------------------------------------
    # GenerationBackend interface
    # ------------------------------------------------------------------

    async def generate(self, request: GenerationRequest) -> GenerationResult:
        url = f"{self._base_url}/models/{self._model}:generateContent"
        try:
            response = await self._client.post(
                url,
                params={"key": self._api_key},
                json=self._body(request),
            )
        except httpx.TimeoutException as exc:
            raise TransientError(f"Generation request timed out: {exc}") from exc
        except httpx.TransportError as exc:
            raise TransientError(f"Generation request failed: {exc}") from exc

        self._raise_for_status(response)
        try:
            data = response.json()
        except json.JSONDecodeError as exc:
            raise GenerationFailedError("Generation service returned invalid JSON.") from exc

        text = self._extract_text(data)
        structured: dict[str, Any] | None = None
        if request.kind == "analysis":
            try:
                structured = json.loads(text)
            except json.JSONDecodeError as exc:
                raise GenerationFailedError("Structured analysis was not valid JSON.") from exc
            if not isinstance(structured, dict):
                raise GenerationFailedError("Structured analysis must be a JSON object.")

        usage_meta = data.get("usageMetadata") or {}
        usage = TokenUsage(
            input_tokens=int(usage_meta.get("promptTokenCount", estimate_tokens(request.prompt))),
            output_tokens=int(usage_meta.get("candidatesTokenCount", estimate_tokens(text))),
        )
        logger.debug(
            "LiveGenerationBackend: %s call used %d/%d tokens",
            request.kind,
            usage.input_tokens,
            usage.output_tokens,
        )
        return GenerationResult(
            text=text,
            usage=usage,
            structured=structured,
            model=str(data.get("modelVersion", self._model)),
        )

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    def __repr__(self) -> str:
        return f"LiveGenerationBackend(model={self._model!r}, base_url={self._base_url!r})"


__all__ = ["DEFAULT_BASE_URL", "DEFAULT_MODEL", "LiveGenerationBackend"]
