"""Ollama-backed AI decision service."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

import httpx
import structlog

from commhub.ai.base import AIDecisionError, AIDecisionService, ReplyDraft, clamp_unit

if TYPE_CHECKING:
    from commhub.models.message import Message

logger = structlog.get_logger(__name__)

_CONTENT_PREVIEW = 1000

SPAM_SYSTEM_PROMPT = (
    "You are an expert spam detection system. Always respond with valid JSON "
    "containing probability (0-100) and reasoning fields."
)
REPLY_SYSTEM_PROMPT = (
    "You are an email assistant. Always respond with valid JSON containing "
    "needs_response (boolean), confidence (0-100) and reply (string) fields."
)
PRIORITY_SYSTEM_PROMPT = (
    "You analyze email priority. Always respond with valid JSON containing "
    "score (0-100) and reasoning fields."
)


def _describe(message: Message) -> str:
    return (
        f"Subject: {message.subject or 'None'}\n"
        f"From: {message.sender}\n"
        f"Content: {message.content[:_CONTENT_PREVIEW]}"
    )


class OllamaDecisionService(AIDecisionService):
    """AI decision service talking to an Ollama server.

    Each call is a non-streaming ``/api/generate`` request in JSON mode.

    Typical usage:
        async with OllamaDecisionService("http://localhost:11434") as ai:
            probability = await ai.score_spam(message)
    """

    def __init__(
        self,
        base_url: str,
        model: str = "llama3.1:8b",
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize Ollama client.

        Args:
            base_url: Ollama server URL.
            model: Model name.
            timeout: HTTP timeout in seconds.
            client: Preconfigured HTTP client (tests inject a mock transport).
        """
        self.base_url = base_url.rstrip("/")
        self.model = model
        self._client = client or httpx.AsyncClient(base_url=self.base_url, timeout=timeout)

    async def close(self) -> None:
        """Close the HTTP client."""
        await self._client.aclose()

    async def __aenter__(self) -> OllamaDecisionService:
        """Enter async context manager."""
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> None:
        """Exit async context manager."""
        await self.close()

    async def _generate(self, system: str, prompt: str) -> dict[str, Any]:
        """Run one JSON-mode generation.

        Raises:
            AIDecisionError: On HTTP errors or unparsable output.
        """
        try:
            response = await self._client.post(
                "/api/generate",
                json={
                    "model": self.model,
                    "system": system,
                    "prompt": prompt,
                    "format": "json",
                    "stream": False,
                },
            )
            response.raise_for_status()
            body = response.json()
            parsed = json.loads(body.get("response", ""))
        except httpx.HTTPError as e:
            await logger.awarning("ollama_request_failed", error=str(e))
            raise AIDecisionError(f"Ollama request failed: {e}") from e
        except ValueError as e:
            raise AIDecisionError(f"Ollama returned invalid JSON: {e}") from e

        if not isinstance(parsed, dict):
            raise AIDecisionError("Ollama returned a non-object JSON value")
        return parsed

    @staticmethod
    def _percent(data: dict[str, Any], key: str) -> float:
        try:
            return clamp_unit(float(data[key]) / 100)
        except (KeyError, TypeError, ValueError) as e:
            raise AIDecisionError(f"Ollama response is missing numeric '{key}'") from e

    async def score_spam(self, message: Message) -> float:
        """Score spam probability in [0, 1]."""
        data = await self._generate(
            SPAM_SYSTEM_PROMPT,
            "Analyze this email for spam characteristics such as unsolicited "
            "offers, phishing and suspicious links.\n\n"
            f"{_describe(message)}\n\n"
            'Respond in JSON: {"probability": <0-100>, "reasoning": "<brief>"}',
        )
        return self._percent(data, "probability")

    async def draft_reply(self, message: Message) -> ReplyDraft | None:
        """Draft a reply, None when the message needs no response."""
        data = await self._generate(
            REPLY_SYSTEM_PROMPT,
            "Decide whether this email needs a response and, if so, write a "
            "brief professional reply.\n\n"
            f"{_describe(message)}\n\n"
            'Respond in JSON: {"needs_response": <bool>, "confidence": <0-100>, '
            '"reply": "<text>"}',
        )
        if not data.get("needs_response"):
            return None
        text = str(data.get("reply") or "").strip()
        if not text:
            return None
        return ReplyDraft(text=text, confidence=self._percent(data, "confidence"))

    async def score_priority(self, message: Message) -> float | None:
        """Score priority in [0, 100]."""
        data = await self._generate(
            PRIORITY_SYSTEM_PROMPT,
            "Assign a priority score considering urgency keywords, sender "
            "importance and content sensitivity.\n\n"
            f"{_describe(message)}\n\n"
            'Respond in JSON: {"score": <0-100>, "reasoning": "<brief>"}',
        )
        return self._percent(data, "score") * 100

    async def health_check(self) -> bool:
        """Check if the server answers ``/api/tags``."""
        try:
            response = await self._client.get("/api/tags")
        except httpx.HTTPError:
            return False
        return response.status_code == 200
