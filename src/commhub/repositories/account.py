"""Connected account repository for database operations."""

from __future__ import annotations

from collections.abc import Sequence
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from commhub.models.account import AccountSyncStatus, ConnectedAccount, ConnectionHealth
from commhub.models.base import utcnow


class AccountRepository:
    """Repository for connected account database operations.

    Status transitions go through guarded UPDATE statements so that two
    workers racing on the same account cannot both move it to ``syncing``.
    """

    def __init__(self, session: AsyncSession) -> None:
        """Initialize repository with database session.

        Args:
            session: Async SQLAlchemy session.
        """
        self.session = session

    async def get_by_id(self, account_id: UUID) -> ConnectedAccount | None:
        """Get account by ID.

        Args:
            account_id: Account UUID.

        Returns:
            Account if found, None otherwise.
        """
        result = await self.session.execute(
            select(ConnectedAccount).where(ConnectedAccount.id == account_id)
        )
        return result.scalar_one_or_none()

    async def find(
        self,
        *,
        statuses: Sequence[AccountSyncStatus] | None = None,
        sync_enabled: bool | None = None,
        user_id: UUID | None = None,
    ) -> list[ConnectedAccount]:
        """Find accounts matching all given filters.

        Args:
            statuses: Allowed sync statuses.
            sync_enabled: Required value of the sync-enabled flag.
            user_id: Owning user.

        Returns:
            Matching accounts ordered by creation time.
        """
        query = select(ConnectedAccount)
        if statuses is not None:
            query = query.where(ConnectedAccount.sync_status.in_([s.value for s in statuses]))
        if sync_enabled is not None:
            query = query.where(ConnectedAccount.sync_enabled == sync_enabled)
        if user_id is not None:
            query = query.where(ConnectedAccount.user_id == user_id)
        query = query.order_by(ConnectedAccount.created_at, ConnectedAccount.id)
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def save(self, account: ConnectedAccount) -> ConnectedAccount:
        """Persist a new or modified account.

        Args:
            account: Account to save.

        Returns:
            Refreshed account.
        """
        self.session.add(account)
        await self.session.commit()
        await self.session.refresh(account)
        return account

    async def claim_for_sync(self, account_id: UUID, observed_status: str) -> bool:
        """Move an account to ``syncing`` if its status is still ``observed_status``.

        Args:
            account_id: Account UUID.
            observed_status: Status read just before claiming.

        Returns:
            True if this caller now owns the sync, False if another caller
            changed the status first or the account is already syncing.
        """
        if observed_status == AccountSyncStatus.SYNCING.value:
            return False
        result = await self.session.execute(
            update(ConnectedAccount)
            .where(
                ConnectedAccount.id == account_id,
                ConnectedAccount.sync_status == observed_status,
            )
            .values(sync_status=AccountSyncStatus.SYNCING.value, updated_at=utcnow())
        )
        await self.session.commit()
        return result.rowcount == 1

    async def set_status(self, account_id: UUID, status: AccountSyncStatus) -> bool:
        """Set the sync status unconditionally.

        Args:
            account_id: Account UUID.
            status: New status.

        Returns:
            True if the account exists.
        """
        result = await self.session.execute(
            update(ConnectedAccount)
            .where(ConnectedAccount.id == account_id)
            .values(sync_status=status.value, updated_at=utcnow())
        )
        await self.session.commit()
        return result.rowcount == 1

    async def release_sync(self, account_id: UUID, status: str) -> bool:
        """Leave ``syncing`` for ``status`` unless someone else moved it already.

        Args:
            account_id: Account UUID.
            status: Status to restore.

        Returns:
            True if the status was changed.
        """
        result = await self.session.execute(
            update(ConnectedAccount)
            .where(
                ConnectedAccount.id == account_id,
                ConnectedAccount.sync_status == AccountSyncStatus.SYNCING.value,
            )
            .values(sync_status=status, updated_at=utcnow())
        )
        await self.session.commit()
        return result.rowcount == 1

    async def record_sync_success(
        self,
        account_id: UUID,
        restore_status: str,
        cursor: str | None,
    ) -> None:
        """Record a successful sync and release the account.

        Args:
            account_id: Account UUID.
            restore_status: Status to return to (``error`` becomes ``active``).
            cursor: New sync cursor, None to keep the current one.
        """
        values: dict[str, object] = {
            "connection_health": ConnectionHealth.HEALTHY.value,
            "last_error": None,
            "last_sync_at": utcnow(),
            "consecutive_failures": 0,
            "needs_reauth": False,
            "updated_at": utcnow(),
        }
        if cursor is not None:
            values["sync_since_cursor"] = cursor
        await self.session.execute(
            update(ConnectedAccount).where(ConnectedAccount.id == account_id).values(**values)
        )
        if restore_status == AccountSyncStatus.ERROR.value:
            restore_status = AccountSyncStatus.ACTIVE.value
        await self.release_sync(account_id, restore_status)

    async def record_sync_failure(
        self,
        account_id: UUID,
        restore_status: str,
        error: str,
        *,
        failure_threshold: int,
        needs_reauth: bool = False,
    ) -> ConnectedAccount | None:
        """Record a connection-level sync failure and release the account.

        Below ``failure_threshold`` consecutive failures the account goes
        back to ``restore_status`` with degraded health; at the threshold it
        moves to ``error``.

        Args:
            account_id: Account UUID.
            restore_status: Status held before the sync claimed the account.
            error: Error description.
            failure_threshold: Consecutive failures that escalate to error.
            needs_reauth: Whether the failure was an authorization failure.

        Returns:
            Refreshed account, None if it no longer exists.
        """
        account = await self.get_by_id(account_id)
        if account is None:
            return None

        failures = account.consecutive_failures + 1
        escalated = failures >= failure_threshold
        await self.session.execute(
            update(ConnectedAccount)
            .where(ConnectedAccount.id == account_id)
            .values(
                consecutive_failures=failures,
                last_error=error,
                needs_reauth=needs_reauth or account.needs_reauth,
                connection_health=(
                    ConnectionHealth.ERROR.value if escalated else ConnectionHealth.DEGRADED.value
                ),
                updated_at=utcnow(),
            )
        )
        await self.release_sync(
            account_id, AccountSyncStatus.ERROR.value if escalated else restore_status
        )
        await self.session.refresh(account)
        return account

    async def reset_stale_syncing(self) -> list[UUID]:
        """Return accounts left in ``syncing`` by a dead process to ``active``.

        Returns:
            IDs of the accounts that were reset.
        """
        result = await self.session.execute(
            select(ConnectedAccount.id).where(
                ConnectedAccount.sync_status == AccountSyncStatus.SYNCING.value
            )
        )
        account_ids = list(result.scalars().all())
        if account_ids:
            await self.session.execute(
                update(ConnectedAccount)
                .where(
                    ConnectedAccount.id.in_(account_ids),
                    ConnectedAccount.sync_status == AccountSyncStatus.SYNCING.value,
                )
                .values(sync_status=AccountSyncStatus.ACTIVE.value, updated_at=utcnow())
            )
            await self.session.commit()
        return account_ids

    async def list_active_user_ids(self) -> list[UUID]:
        """List users owning at least one active or syncing, sync-enabled account.

        Returns:
            Distinct user IDs.
        """
        result = await self.session.execute(
            select(ConnectedAccount.user_id)
            .where(
                ConnectedAccount.sync_status.in_(
                    [AccountSyncStatus.ACTIVE.value, AccountSyncStatus.SYNCING.value]
                ),
                ConnectedAccount.sync_enabled.is_(True),
            )
            .distinct()
        )
        return list(result.scalars().all())
