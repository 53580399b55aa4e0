"""Tests for automation schemas."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from commhub.schemas.automation import AutomationSettingsUpdate


class TestAutomationSettingsUpdate:
    """Tests for AutomationSettingsUpdate validation."""

    def test_known_timezone(self) -> None:
        """Test IANA timezone keys are accepted."""
        update = AutomationSettingsUpdate(timezone="Europe/Berlin")

        assert update.timezone == "Europe/Berlin"

    @pytest.mark.parametrize("timezone", ["Mars/Olympus", "../etc/passwd"])
    def test_unknown_timezone(self, timezone: str) -> None:
        """Test unknown timezone keys are rejected before they are stored."""
        with pytest.raises(ValidationError, match="Unknown timezone"):
            AutomationSettingsUpdate(timezone=timezone)

    def test_business_hours_window(self) -> None:
        """Test the start hour must come before the end hour."""
        assert AutomationSettingsUpdate(business_hours_start=8, business_hours_end=18)

        with pytest.raises(ValidationError, match="must be before"):
            AutomationSettingsUpdate(business_hours_start=18, business_hours_end=8)
        with pytest.raises(ValidationError, match="must be before"):
            AutomationSettingsUpdate(business_hours_start=10, business_hours_end=10)

    def test_partial_update_skips_window_check(self) -> None:
        """Test a single bound is validated against stored settings instead."""
        update = AutomationSettingsUpdate(business_hours_start=20)

        assert update.model_dump(exclude_unset=True) == {"business_hours_start": 20}
