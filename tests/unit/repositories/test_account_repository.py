"""Tests for AccountRepository."""

from __future__ import annotations

import uuid

import pytest

from commhub.core.database import SessionFactory
from commhub.models.account import AccountSyncStatus, ConnectionHealth
from commhub.repositories.account import AccountRepository


class TestAccountRepositoryQueries:
    """Tests for lookup and filtering."""

    @pytest.mark.asyncio
    async def test_get_by_id(self, session_factory: SessionFactory, make_account) -> None:
        """Test getting an account by ID."""
        account = await make_account()

        async with session_factory() as session:
            found = await AccountRepository(session).get_by_id(account.id)
            missing = await AccountRepository(session).get_by_id(uuid.uuid4())

        assert found is not None
        assert found.id == account.id
        assert missing is None

    @pytest.mark.asyncio
    async def test_find_filters(
        self, session_factory: SessionFactory, make_account, user_id: uuid.UUID
    ) -> None:
        """Test find combines status, enabled and user filters."""
        active = await make_account()
        paused = await make_account(sync_status="paused")
        await make_account(sync_status="error")
        await make_account(sync_enabled=False)
        await make_account(user_id=uuid.uuid4())

        async with session_factory() as session:
            found = await AccountRepository(session).find(
                statuses=[AccountSyncStatus.ACTIVE, AccountSyncStatus.PAUSED],
                sync_enabled=True,
                user_id=user_id,
            )

        assert {a.id for a in found} == {active.id, paused.id}

    @pytest.mark.asyncio
    async def test_list_active_user_ids(
        self, session_factory: SessionFactory, make_account
    ) -> None:
        """Test only users with an active or syncing enabled account are listed."""
        active = await make_account(user_id=uuid.uuid4())
        syncing = await make_account(user_id=uuid.uuid4(), sync_status="syncing")
        await make_account(user_id=uuid.uuid4(), sync_status="paused")
        await make_account(user_id=uuid.uuid4(), sync_enabled=False)

        async with session_factory() as session:
            user_ids = await AccountRepository(session).list_active_user_ids()

        assert set(user_ids) == {active.user_id, syncing.user_id}


class TestAccountRepositoryClaims:
    """Tests for guarded status transitions."""

    @pytest.mark.asyncio
    async def test_claim_for_sync(self, session_factory: SessionFactory, make_account) -> None:
        """Test only the first claim with the observed status wins."""
        account = await make_account()

        async with session_factory() as session:
            repo = AccountRepository(session)
            first = await repo.claim_for_sync(account.id, "active")
            second = await repo.claim_for_sync(account.id, "active")
            current = await repo.get_by_id(account.id)

        assert first is True
        assert second is False
        assert current is not None
        assert current.sync_status == "syncing"

    @pytest.mark.asyncio
    async def test_claim_refused_when_observed_syncing(
        self, session_factory: SessionFactory, make_account
    ) -> None:
        """Test an account observed as syncing cannot be claimed."""
        account = await make_account(sync_status="syncing")

        async with session_factory() as session:
            assert await AccountRepository(session).claim_for_sync(account.id, "syncing") is False

    @pytest.mark.asyncio
    async def test_release_sync_only_from_syncing(
        self, session_factory: SessionFactory, make_account
    ) -> None:
        """Test release does not overwrite a status changed by someone else."""
        account = await make_account(sync_status="paused")

        async with session_factory() as session:
            released = await AccountRepository(session).release_sync(account.id, "active")

        assert released is False

    @pytest.mark.asyncio
    async def test_reset_stale_syncing(self, session_factory: SessionFactory, make_account) -> None:
        """Test accounts stuck in syncing return to active."""
        stuck = await make_account(sync_status="syncing")
        await make_account()

        async with session_factory() as session:
            reset = await AccountRepository(session).reset_stale_syncing()
            current = await AccountRepository(session).get_by_id(stuck.id)

        assert reset == [stuck.id]
        assert current is not None
        assert current.sync_status == "active"


class TestAccountRepositoryOutcomes:
    """Tests for recording sync outcomes."""

    @pytest.mark.asyncio
    async def test_record_success_resets_failures(
        self, session_factory: SessionFactory, make_account
    ) -> None:
        """Test success clears the failure counter and stores the cursor."""
        account = await make_account(
            sync_status="syncing", consecutive_failures=2, connection_health="degraded"
        )

        async with session_factory() as session:
            repo = AccountRepository(session)
            await repo.record_sync_success(account.id, "active", "cursor-2")
            current = await repo.get_by_id(account.id)

        assert current is not None
        assert current.sync_status == "active"
        assert current.consecutive_failures == 0
        assert current.connection_health == ConnectionHealth.HEALTHY.value
        assert current.sync_since_cursor == "cursor-2"
        assert current.last_sync_at is not None

    @pytest.mark.asyncio
    async def test_record_success_recovers_error_account(
        self, session_factory: SessionFactory, make_account
    ) -> None:
        """Test a manual sync that succeeds moves an error account to active."""
        account = await make_account(sync_status="syncing")

        async with session_factory() as session:
            repo = AccountRepository(session)
            await repo.record_sync_success(account.id, "error", None)
            current = await repo.get_by_id(account.id)

        assert current is not None
        assert current.sync_status == "active"

    @pytest.mark.asyncio
    async def test_record_failure_below_threshold(
        self, session_factory: SessionFactory, make_account
    ) -> None:
        """Test a failure below the threshold degrades health but keeps the status."""
        account = await make_account(sync_status="syncing")

        async with session_factory() as session:
            updated = await AccountRepository(session).record_sync_failure(
                account.id, "active", "timeout", failure_threshold=3
            )

        assert updated is not None
        assert updated.sync_status == "active"
        assert updated.consecutive_failures == 1
        assert updated.connection_health == ConnectionHealth.DEGRADED.value
        assert updated.last_error == "timeout"

    @pytest.mark.asyncio
    async def test_record_failure_escalates_at_threshold(
        self, session_factory: SessionFactory, make_account
    ) -> None:
        """Test reaching the threshold moves the account to error."""
        account = await make_account(sync_status="syncing", consecutive_failures=2)

        async with session_factory() as session:
            updated = await AccountRepository(session).record_sync_failure(
                account.id, "active", "refused", failure_threshold=3, needs_reauth=True
            )

        assert updated is not None
        assert updated.sync_status == "error"
        assert updated.consecutive_failures == 3
        assert updated.connection_health == ConnectionHealth.ERROR.value
        assert updated.needs_reauth is True

    @pytest.mark.asyncio
    async def test_record_failure_missing_account(self, session_factory: SessionFactory) -> None:
        """Test recording a failure for a missing account returns None."""
        async with session_factory() as session:
            result = await AccountRepository(session).record_sync_failure(
                uuid.uuid4(), "active", "x", failure_threshold=3
            )

        assert result is None
