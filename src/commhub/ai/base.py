"""AI decision service interface."""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from commhub.models.message import Message


class AIDecisionError(Exception):
    """Raised when the AI service times out or cannot answer."""

    def __init__(self, message: str, *, timed_out: bool = False) -> None:
        """Initialize AI decision error.

        Args:
            message: Error description.
            timed_out: True if the call exceeded its deadline.
        """
        super().__init__(message)
        self.timed_out = timed_out


@dataclass(frozen=True, slots=True)
class ReplyDraft:
    """Generated reply and the model's confidence in sending it.

    Attributes:
        text: Reply body.
        confidence: Confidence in [0, 1].
    """

    text: str
    confidence: float


@dataclass(frozen=True, slots=True)
class Decision:
    """Combined AI verdict for one message.

    Attributes:
        spam_probability: Spam probability in [0, 1].
        reply: Reply draft, None when no reply was requested or proposed.
        priority_score: Optional priority score in [0, 100].
    """

    spam_probability: float
    reply: ReplyDraft | None = None
    priority_score: float | None = None

    @property
    def reply_confidence(self) -> float | None:
        """Confidence of the reply draft, if any."""
        return self.reply.confidence if self.reply is not None else None


def clamp_unit(value: float) -> float:
    """Clamp a score into [0, 1]."""
    return max(0.0, min(1.0, float(value)))


class AIDecisionService(ABC):
    """Black-box scoring and generation service."""

    @abstractmethod
    async def score_spam(self, message: Message) -> float:
        """Score how likely a message is spam.

        Args:
            message: Message to score.

        Returns:
            Probability in [0, 1].
        """

    @abstractmethod
    async def draft_reply(self, message: Message) -> ReplyDraft | None:
        """Draft a reply.

        Args:
            message: Message to answer.

        Returns:
            Draft with confidence, None when no reply is warranted.
        """

    async def score_priority(self, message: Message) -> float | None:
        """Score message priority. Optional; the default returns None."""
        return None


async def decide(
    service: AIDecisionService,
    message: Message,
    *,
    timeout: float,
    want_reply: bool,
) -> Decision:
    """Ask the AI service for a verdict under a deadline.

    Args:
        service: AI decision service.
        message: Message to analyze.
        timeout: Seconds allowed for the whole exchange.
        want_reply: Whether to request a reply draft.

    Returns:
        Decision with scores clamped into range.

    Raises:
        AIDecisionError: On timeout or any service failure.
    """

    async def _ask() -> Decision:
        spam = clamp_unit(await service.score_spam(message))
        reply = await service.draft_reply(message) if want_reply else None
        if reply is not None:
            reply = ReplyDraft(text=reply.text, confidence=clamp_unit(reply.confidence))
        priority = await service.score_priority(message)
        return Decision(spam_probability=spam, reply=reply, priority_score=priority)

    try:
        return await asyncio.wait_for(_ask(), timeout=timeout)
    except TimeoutError as e:
        raise AIDecisionError(f"AI decision timed out after {timeout}s", timed_out=True) from e
    except AIDecisionError:
        raise
    except Exception as e:
        raise AIDecisionError(f"AI decision failed: {e}") from e
