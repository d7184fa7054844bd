"""Unit tests for agent_handoff_coordinator.generation.

The live backend is exercised against ``httpx.MockTransport`` so no network
access is required.
"""
from __future__ import annotations

import json
from typing import Any, Callable

import httpx
import pytest

from agent_handoff_coordinator.config import PricingConfig
from agent_handoff_coordinator.errors import GenerationFailedError, TransientError
from agent_handoff_coordinator.generation.base import (
    GenerationRequest,
    TokenUsage,
    estimate_tokens,
)
from agent_handoff_coordinator.generation.cost import CostCalculator
from agent_handoff_coordinator.generation.live import LiveGenerationBackend
from agent_handoff_coordinator.generation.simulated import (
    DEFAULT_ANALYSIS,
    DEFAULT_REPLIES,
    SimulatedGenerationBackend,
)


def _reply(text: str, **extra: Any) -> dict[str, Any]:
    body: dict[str, Any] = {"candidates": [{"content": {"parts": [{"text": text}]}}]}
    body.update(extra)
    return body


def _live(
    handler: Callable[[httpx.Request], httpx.Response],
) -> LiveGenerationBackend:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return LiveGenerationBackend("test-key", base_url="https://ai.example/v1/", client=client)


# ---------------------------------------------------------------------------
# Token estimation and cost
# ---------------------------------------------------------------------------


class TestEstimateTokens:
    @pytest.mark.parametrize(("text", "tokens"), [("", 0), ("abcd", 1), ("abcde", 2)])
    def test_rounds_up(self, text: str, tokens: int) -> None:
        assert estimate_tokens(text) == tokens

    def test_total_tokens(self) -> None:
        assert TokenUsage(input_tokens=3, output_tokens=4).total_tokens == 7


class TestCostCalculator:
    def test_token_cost(self) -> None:
        usage = TokenUsage(input_tokens=1000, output_tokens=1000)
        assert CostCalculator().cost(usage) == 0.0005

    def test_image_surcharge(self) -> None:
        usage = TokenUsage(input_tokens=1000, output_tokens=1000)
        assert CostCalculator().cost(usage, include_image=True) == 0.00175

    def test_custom_pricing(self) -> None:
        calc = CostCalculator(PricingConfig(input_token_cost=1.0, output_token_cost=2.0))
        assert calc.cost(TokenUsage(input_tokens=500, output_tokens=250)) == 1.0

    def test_estimate_request_prices_max_output_tokens(self) -> None:
        calc = CostCalculator(PricingConfig(input_token_cost=1.0, output_token_cost=2.0))
        request = GenerationRequest(prompt="x" * 4000, max_output_tokens=500)
        assert calc.estimate_request(request) == 2.0
        assert calc.estimate_request(request, include_image=True) == 2.00125

    def test_zero_usage_is_free(self) -> None:
        assert CostCalculator().cost(TokenUsage()) == 0.0


# ---------------------------------------------------------------------------
# Simulated backend
# ---------------------------------------------------------------------------


class TestSimulatedBackend:
    @pytest.mark.asyncio
    async def test_replies_rotate(self) -> None:
        backend = SimulatedGenerationBackend(replies=["one", "two"])
        texts = [(await backend.generate(GenerationRequest(prompt="hi"))).text for _ in range(3)]
        assert texts == ["one", "two", "one"]
        assert backend.call_count == 3

    @pytest.mark.asyncio
    async def test_default_replies(self) -> None:
        result = await SimulatedGenerationBackend().generate(GenerationRequest(prompt="hi"))
        assert result.text == DEFAULT_REPLIES[0]
        assert result.model == "simulated"

    @pytest.mark.asyncio
    async def test_analysis_is_structured_copy(self) -> None:
        backend = SimulatedGenerationBackend()
        result = await backend.generate(GenerationRequest(prompt="analyze", kind="analysis"))
        assert result.structured == DEFAULT_ANALYSIS
        assert json.loads(result.text) == DEFAULT_ANALYSIS
        result.structured["productName"] = "mutated"
        assert DEFAULT_ANALYSIS["productName"] == "Premium Wireless Headphones"

    @pytest.mark.asyncio
    async def test_usage_estimated_from_text(self) -> None:
        result = await SimulatedGenerationBackend(replies=["abcdefgh"]).generate(
            GenerationRequest(prompt="x" * 40)
        )
        assert result.usage == TokenUsage(input_tokens=10, output_tokens=2)

    @pytest.mark.asyncio
    async def test_fail_with(self) -> None:
        backend = SimulatedGenerationBackend(fail_with=TransientError("down"))
        with pytest.raises(TransientError):
            await backend.generate(GenerationRequest(prompt="hi"))
        assert len(backend.requests) == 1
        assert backend.call_count == 0


# ---------------------------------------------------------------------------
# Live backend
# ---------------------------------------------------------------------------


class TestLiveBackend:
    def test_empty_api_key_rejected(self) -> None:
        with pytest.raises(ValueError):
            LiveGenerationBackend("")

    @pytest.mark.asyncio
    async def test_chat_request_shape_and_usage(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(
                200,
                json=_reply(
                    "Hello!",
                    usageMetadata={"promptTokenCount": 12, "candidatesTokenCount": 3},
                    modelVersion="gemini-1.5-flash-002",
                ),
            )

        backend = _live(handler)
        result = await backend.generate(GenerationRequest(prompt="Hi", temperature=0.2))
        request = seen[0]
        assert request.url.path == "/v1/models/gemini-1.5-flash:generateContent"
        assert request.url.params["key"] == "test-key"
        body = json.loads(request.content)
        assert body["contents"][0]["parts"] == [{"text": "Hi"}]
        assert body["generationConfig"]["temperature"] == 0.2
        assert "responseMimeType" not in body["generationConfig"]
        assert result.text == "Hello!"
        assert result.usage == TokenUsage(input_tokens=12, output_tokens=3)
        assert result.model == "gemini-1.5-flash-002"
        assert result.structured is None

    @pytest.mark.asyncio
    async def test_analysis_request_parses_json(self) -> None:
        seen: list[dict[str, Any]] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(json.loads(request.content))
            return httpx.Response(200, json=_reply(json.dumps({"productName": "Mug"})))

        backend = _live(handler)
        result = await backend.generate(
            GenerationRequest(
                prompt="analyze",
                kind="analysis",
                image_url="gs://bucket/mug.png",
                mime_type="image/png",
            )
        )
        assert result.structured == {"productName": "Mug"}
        assert seen[0]["generationConfig"]["responseMimeType"] == "application/json"
        assert seen[0]["contents"][0]["parts"][1] == {
            "fileData": {"mimeType": "image/png", "fileUri": "gs://bucket/mug.png"}
        }

    @pytest.mark.asyncio
    async def test_usage_falls_back_to_estimate(self) -> None:
        backend = _live(lambda request: httpx.Response(200, json=_reply("abcdefgh")))
        result = await backend.generate(GenerationRequest(prompt="x" * 8))
        assert result.usage == TokenUsage(input_tokens=2, output_tokens=2)

    @pytest.mark.parametrize("status", [429, 500, 503])
    @pytest.mark.asyncio
    async def test_retryable_status(self, status: int) -> None:
        backend = _live(lambda request: httpx.Response(status, text="busy"))
        with pytest.raises(TransientError):
            await backend.generate(GenerationRequest(prompt="hi"))

    @pytest.mark.parametrize("status", [400, 403, 404])
    @pytest.mark.asyncio
    async def test_permanent_status(self, status: int) -> None:
        backend = _live(lambda request: httpx.Response(status, text="nope"))
        with pytest.raises(GenerationFailedError) as exc_info:
            await backend.generate(GenerationRequest(prompt="hi"))
        assert exc_info.value.details["status"] == status

    @pytest.mark.asyncio
    async def test_transport_error_is_transient(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(TransientError):
            await _live(handler).generate(GenerationRequest(prompt="hi"))

    @pytest.mark.asyncio
    async def test_timeout_is_transient(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("slow", request=request)

        with pytest.raises(TransientError, match="timed out"):
            await _live(handler).generate(GenerationRequest(prompt="hi"))

    @pytest.mark.asyncio
    async def test_blocked_prompt(self) -> None:
        backend = _live(
            lambda request: httpx.Response(
                200, json={"candidates": [], "promptFeedback": {"blockReason": "SAFETY"}}
            )
        )
        with pytest.raises(GenerationFailedError, match="SAFETY"):
            await backend.generate(GenerationRequest(prompt="hi"))

    @pytest.mark.asyncio
    async def test_empty_reply(self) -> None:
        backend = _live(
            lambda request: httpx.Response(
                200, json={"candidates": [{"content": {"parts": []}, "finishReason": "MAX_TOKENS"}]}
            )
        )
        with pytest.raises(GenerationFailedError, match="MAX_TOKENS"):
            await backend.generate(GenerationRequest(prompt="hi"))

    @pytest.mark.asyncio
    async def test_invalid_body(self) -> None:
        backend = _live(lambda request: httpx.Response(200, text="<html>"))
        with pytest.raises(GenerationFailedError, match="invalid JSON"):
            await backend.generate(GenerationRequest(prompt="hi"))

    @pytest.mark.parametrize("text", ["not json", "[1, 2]"])
    @pytest.mark.asyncio
    async def test_bad_structured_output(self, text: str) -> None:
        backend = _live(lambda request: httpx.Response(200, json=_reply(text)))
        with pytest.raises(GenerationFailedError):
            await backend.generate(GenerationRequest(prompt="analyze", kind="analysis"))

    @pytest.mark.asyncio
    async def test_close_leaves_injected_client_open(self) -> None:
        client = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(200)))
        backend = LiveGenerationBackend("k", client=client)
        await backend.close()
        assert client.is_closed is False
        await client.aclose()

    @pytest.mark.asyncio
    async def test_close_owned_client(self) -> None:
        backend = LiveGenerationBackend("k")
        await backend.close()
        assert backend._client.is_closed is True
