"""Automation settings repository."""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from commhub.models.automation_settings import AutomationSettings
from commhub.schemas.automation import AutomationSettingsUpdate


def default_settings(user_id: UUID) -> AutomationSettings:
    """Build unsaved settings carrying the column defaults."""
    return AutomationSettings(
        user_id=user_id,
        auto_delete_enabled=False,
        auto_reply_enabled=False,
        spam_threshold=80,
        reply_confidence_threshold=85,
        sender_allowlist=[],
        sender_denylist=[],
        business_hours_only=False,
        business_hours_start=9,
        business_hours_end=17,
        timezone="UTC",
        max_replies_per_day=50,
    )


class AutomationSettingsRepository:
    """Repository for per-user automation settings."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize repository with database session.

        Args:
            session: Async SQLAlchemy session.
        """
        self.session = session

    async def get_by_user_id(self, user_id: UUID) -> AutomationSettings | None:
        """Get settings by user ID.

        Args:
            user_id: User UUID.

        Returns:
            Settings if stored, None otherwise.
        """
        result = await self.session.execute(
            select(AutomationSettings).where(AutomationSettings.user_id == user_id)
        )
        return result.scalar_one_or_none()

    async def get_or_default(self, user_id: UUID) -> AutomationSettings:
        """Get stored settings, or unsaved defaults when the user has none."""
        settings = await self.get_by_user_id(user_id)
        if settings is None:
            return default_settings(user_id)
        return settings

    async def upsert(self, user_id: UUID, data: AutomationSettingsUpdate) -> AutomationSettings:
        """Create or update a user's settings.

        Args:
            user_id: User UUID.
            data: Fields to change.

        Returns:
            Stored settings.

        Raises:
            ValueError: If the resulting business hours window is empty.
        """
        settings = await self.get_by_user_id(user_id)
        update_data = data.model_dump(exclude_unset=True)
        current = settings or default_settings(user_id)
        start = update_data.get("business_hours_start", current.business_hours_start)
        end = update_data.get("business_hours_end", current.business_hours_end)
        if start >= end:
            msg = f"Business hours start ({start}) must be before end ({end})"
            raise ValueError(msg)

        if settings is None:
            settings = current
            self.session.add(settings)

        for key, value in update_data.items():
            setattr(settings, key, value)

        await self.session.commit()
        await self.session.refresh(settings)
        return settings
