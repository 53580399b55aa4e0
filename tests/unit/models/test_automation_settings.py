"""Tests for AutomationSettings."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime

from commhub.repositories.automation_settings import default_settings


class TestSenderLists:
    """Tests for allow and deny list matching."""

    def test_empty_lists_allow_everyone(self) -> None:
        """Test no lists means every sender is allowed."""
        settings = default_settings(uuid.uuid4())
        assert settings.is_allowed_sender("anyone@example.com") is True

    def test_denylist_is_case_insensitive_substring(self) -> None:
        """Test denylist entries match anywhere in the sender."""
        settings = default_settings(uuid.uuid4())
        settings.sender_denylist = ["NoReply@"]

        assert settings.is_denylisted("Shop <noreply@shop.example>") is True
        assert settings.is_allowed_sender("noreply@shop.example") is False

    def test_allowlist_restricts(self) -> None:
        """Test a non-empty allowlist admits only matching senders."""
        settings = default_settings(uuid.uuid4())
        settings.sender_allowlist = ["@partner.example"]

        assert settings.is_allowed_sender("bob@partner.example") is True
        assert settings.is_allowed_sender("eve@other.example") is False

    def test_denylist_beats_allowlist(self) -> None:
        """Test a sender on both lists is refused."""
        settings = default_settings(uuid.uuid4())
        settings.sender_allowlist = ["partner.example"]
        settings.sender_denylist = ["billing@partner.example"]

        assert settings.is_allowed_sender("billing@partner.example") is False


class TestBusinessHours:
    """Tests for business hour checks."""

    def test_inside_hours_on_weekday(self) -> None:
        """Test a Monday morning in the user's timezone is inside hours."""
        settings = default_settings(uuid.uuid4())
        settings.timezone = "America/New_York"
        # Monday 14:00 UTC is 10:00 in New York
        assert settings.is_business_hours(datetime(2026, 10, 19, 14, 0, tzinfo=UTC)) is True

    def test_end_hour_is_exclusive(self) -> None:
        """Test the end hour itself is outside hours."""
        settings = default_settings(uuid.uuid4())
        assert settings.is_business_hours(datetime(2026, 10, 19, 17, 0, tzinfo=UTC)) is False
        assert settings.is_business_hours(datetime(2026, 10, 19, 9, 0, tzinfo=UTC)) is True

    def test_weekend_is_outside_hours(self) -> None:
        """Test Saturday is outside hours."""
        settings = default_settings(uuid.uuid4())
        assert settings.is_business_hours(datetime(2026, 10, 24, 11, 0, tzinfo=UTC)) is False

    def test_local_weekday_is_used(self) -> None:
        """Test the weekday is taken in the user's timezone."""
        settings = default_settings(uuid.uuid4())
        settings.timezone = "America/New_York"
        settings.business_hours_start = 0
        settings.business_hours_end = 24
        # Monday 02:00 UTC is still Sunday evening in New York
        assert settings.is_business_hours(datetime(2026, 10, 19, 2, 0, tzinfo=UTC)) is False

    def test_local_day_start(self) -> None:
        """Test the day start is local midnight."""
        settings = default_settings(uuid.uuid4())
        settings.timezone = "America/New_York"

        start = settings.local_day_start(datetime(2026, 10, 19, 14, 30, tzinfo=UTC))

        assert start.astimezone(UTC) == datetime(2026, 10, 19, 4, 0, tzinfo=UTC)
