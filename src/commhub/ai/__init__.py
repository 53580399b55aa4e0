"""AI decision service contract and implementations."""

from commhub.ai.base import (
    AIDecisionError,
    AIDecisionService,
    Decision,
    ReplyDraft,
    decide,
)
from commhub.ai.ollama import OllamaDecisionService

__all__ = [
    "AIDecisionError",
    "AIDecisionService",
    "Decision",
    "OllamaDecisionService",
    "ReplyDraft",
    "decide",
]
