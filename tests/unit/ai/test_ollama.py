"""Tests for OllamaDecisionService."""

from __future__ import annotations

import json
import uuid
from collections.abc import Callable
from typing import Any

import httpx
import pytest

from commhub.ai.base import AIDecisionError
from commhub.ai.ollama import OllamaDecisionService
from commhub.models.message import Message


def _service(handler: Callable[[httpx.Request], httpx.Response]) -> OllamaDecisionService:
    client = httpx.AsyncClient(base_url="http://ollama", transport=httpx.MockTransport(handler))
    return OllamaDecisionService("http://ollama", model="test-model", client=client)


def _generate_response(payload: Any) -> httpx.Response:
    return httpx.Response(200, json={"response": json.dumps(payload), "done": True})


@pytest.fixture
def message() -> Message:
    """An unsaved message."""
    return Message(
        id=uuid.uuid4(),
        user_id=uuid.uuid4(),
        account_id=uuid.uuid4(),
        external_id="ext-1",
        sender="promo@deals.example",
        subject="You won!",
        content="Click here to claim your prize.",
    )


class TestOllamaDecisionService:
    """Tests for OllamaDecisionService."""

    @pytest.mark.asyncio
    async def test_score_spam(self, message: Message) -> None:
        """Test spam probability is read as a percentage."""
        seen: list[dict[str, Any]] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(json.loads(request.content))
            return _generate_response({"probability": 92, "reasoning": "prize scam"})

        async with _service(handler) as ai:
            score = await ai.score_spam(message)

        assert score == pytest.approx(0.92)
        assert seen[0]["model"] == "test-model"
        assert seen[0]["format"] == "json"
        assert seen[0]["stream"] is False
        assert "You won!" in seen[0]["prompt"]

    @pytest.mark.asyncio
    async def test_draft_reply(self, message: Message) -> None:
        """Test a reply draft is built from the JSON answer."""

        def handler(request: httpx.Request) -> httpx.Response:
            return _generate_response(
                {"needs_response": True, "confidence": 88, "reply": " Thanks, noted. "}
            )

        async with _service(handler) as ai:
            draft = await ai.draft_reply(message)

        assert draft is not None
        assert draft.text == "Thanks, noted."
        assert draft.confidence == pytest.approx(0.88)

    @pytest.mark.asyncio
    async def test_draft_reply_not_needed(self, message: Message) -> None:
        """Test no draft is returned when no response is needed."""

        def handler(request: httpx.Request) -> httpx.Response:
            return _generate_response({"needs_response": False, "confidence": 95, "reply": ""})

        async with _service(handler) as ai:
            assert await ai.draft_reply(message) is None

    @pytest.mark.asyncio
    async def test_score_priority(self, message: Message) -> None:
        """Test priority stays on the 0-100 scale and is clamped."""

        def handler(request: httpx.Request) -> httpx.Response:
            return _generate_response({"score": 140})

        async with _service(handler) as ai:
            assert await ai.score_priority(message) == pytest.approx(100.0)

    @pytest.mark.asyncio
    async def test_http_error(self, message: Message) -> None:
        """Test server errors become AIDecisionError."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(500, json={"error": "model not found"})

        async with _service(handler) as ai:
            with pytest.raises(AIDecisionError, match="Ollama request failed"):
                await ai.score_spam(message)

    @pytest.mark.asyncio
    async def test_invalid_json(self, message: Message) -> None:
        """Test unparsable model output becomes AIDecisionError."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"response": "not json at all"})

        async with _service(handler) as ai:
            with pytest.raises(AIDecisionError, match="invalid JSON"):
                await ai.score_spam(message)

    @pytest.mark.asyncio
    async def test_missing_field(self, message: Message) -> None:
        """Test a JSON answer without the expected field is rejected."""

        def handler(request: httpx.Request) -> httpx.Response:
            return _generate_response({"reasoning": "unsure"})

        async with _service(handler) as ai:
            with pytest.raises(AIDecisionError, match="probability"):
                await ai.score_spam(message)

    @pytest.mark.asyncio
    async def test_health_check(self) -> None:
        """Test health check reflects /api/tags availability."""

        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/api/tags"
            return httpx.Response(200, json={"models": []})

        async with _service(handler) as ai:
            assert await ai.health_check() is True

    @pytest.mark.asyncio
    async def test_health_check_unreachable(self) -> None:
        """Test health check is False when the server cannot be reached."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        async with _service(handler) as ai:
            assert await ai.health_check() is False
