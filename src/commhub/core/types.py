"""Shared type definitions."""

from __future__ import annotations

from typing import TypedDict


class FetchedMessage(TypedDict, total=False):
    """Message data structure returned by fetch clients."""

    external_id: str
    thread_id: str | None
    sender: str
    recipient: str | None
    subject: str | None
    content: str
    received_at: str | None  # ISO format datetime
    is_read: bool
    labels: list[str]
