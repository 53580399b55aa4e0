"""Account sync scheduler.

Keeps one recurring timer task per scheduled account and spawns a sync tick
on every interval. Ticks run as their own tasks so a slow account never
delays another account's timer; a global slot limit bounds how many sync
passes run at once, and an in-flight map ensures one account never has two
passes in this process (the runner's atomic ``syncing`` claim covers other
processes).
"""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import AsyncIterator
from dataclasses import asdict, dataclass
from typing import TYPE_CHECKING, Any
from uuid import UUID

import structlog

from commhub.models.account import AccountSyncStatus
from commhub.repositories.account import AccountRepository

if TYPE_CHECKING:
    from commhub.core.database import SessionFactory
    from commhub.services.sync_progress import SyncProgressTracker
    from commhub.services.sync_runner import SyncOutcome, SyncRunner

logger = structlog.get_logger(__name__)

_RELOADABLE = ("default_interval_minutes", "enabled", "max_concurrent")


@dataclass
class SchedulerConfig:
    """Scheduler settings.

    Attributes:
        default_interval_minutes: Interval for accounts without their own frequency.
        enabled: Whether scheduling runs at all.
        max_concurrent: Maximum sync passes running at once.
        initial_delay_seconds: Delay before the first scheduling pass.
        rescan_interval_seconds: Interval between scheduling passes.
        shutdown_timeout_seconds: Grace period for running passes on shutdown.
    """

    default_interval_minutes: int = 5
    enabled: bool = True
    max_concurrent: int = 5
    initial_delay_seconds: float = 30.0
    rescan_interval_seconds: float = 3600.0
    shutdown_timeout_seconds: float = 30.0


class AccountSyncScheduler:
    """Drives periodic sync passes for every schedulable account."""

    def __init__(
        self,
        session_factory: SessionFactory,
        runner: SyncRunner,
        tracker: SyncProgressTracker,
        config: SchedulerConfig | None = None,
    ) -> None:
        """Initialize scheduler.

        Args:
            session_factory: Factory for async sessions.
            runner: Runs one sync pass.
            tracker: Sync progress tracker (crash recovery and purging).
            config: Scheduler settings.
        """
        self._session_factory = session_factory
        self._runner = runner
        self._tracker = tracker
        self.config = config or SchedulerConfig()
        self.is_running = False
        self._timers: dict[UUID, asyncio.Task[None]] = {}
        self._intervals: dict[UUID, float] = {}
        self._in_flight: dict[UUID, asyncio.Task[SyncOutcome | None]] = {}
        self._rescan_task: asyncio.Task[None] | None = None
        self._slots = asyncio.Condition()
        self._active_passes = 0

    async def start(self) -> None:
        """Start scheduling.

        Recovers state left by a crashed process, then schedules all
        accounts after the initial delay and rescans periodically.
        """
        if not self.config.enabled:
            await logger.ainfo("sync_scheduler_disabled")
            return
        if self.is_running:
            await logger.awarning("sync_scheduler_already_running")
            return
        self.is_running = True
        await self.recover()
        self._rescan_task = asyncio.create_task(self._rescan_loop())
        await logger.ainfo(
            "sync_scheduler_started",
            initial_delay_seconds=self.config.initial_delay_seconds,
            rescan_interval_seconds=self.config.rescan_interval_seconds,
        )

    async def recover(self) -> None:
        """Fail orphaned runs and release accounts stuck in ``syncing``."""
        failed_runs = await self._tracker.fail_orphaned_runs()
        async with self._session_factory() as session:
            reset = await AccountRepository(session).reset_stale_syncing()
        if failed_runs or reset:
            await logger.awarning(
                "sync_state_recovered", failed_runs=failed_runs, reset_accounts=len(reset)
            )

    async def _rescan_loop(self) -> None:
        await asyncio.sleep(self.config.initial_delay_seconds)
        while True:
            try:
                await self._tracker.purge_expired()
                await self.schedule_all_accounts()
            except Exception:
                await logger.aexception("sync_rescan_failed")
            await asyncio.sleep(self.config.rescan_interval_seconds)

    async def schedule_all_accounts(self) -> int:
        """Schedule every sync-enabled account that is active or paused.

        Other accounts are left as they are.

        Returns:
            Number of accounts scheduled.
        """
        async with self._session_factory() as session:
            accounts = await AccountRepository(session).find(
                statuses=[AccountSyncStatus.ACTIVE, AccountSyncStatus.PAUSED],
                sync_enabled=True,
            )
        await logger.ainfo("sync_schedule_pass", accounts=len(accounts))
        scheduled = 0
        for account in accounts:
            if await self.schedule_account(account.id):
                scheduled += 1
        return scheduled

    async def schedule_account(self, account_id: UUID) -> bool:
        """Arm a recurring timer for an account and fire one sync now.

        Args:
            account_id: Account to schedule.

        Returns:
            True if scheduled, False if the account is missing or sync-disabled.
        """
        async with self._session_factory() as session:
            account = await AccountRepository(session).get_by_id(account_id)
        if account is None:
            await logger.awarning("sync_schedule_account_missing", account_id=str(account_id))
            return False
        if not account.sync_enabled:
            await logger.ainfo("sync_schedule_disabled_account", account_id=str(account_id))
            return False

        self._cancel_timer(account_id)
        interval = float(
            account.sync_frequency_seconds or self.config.default_interval_minutes * 60
        )
        self._intervals[account_id] = interval
        self._timers[account_id] = asyncio.create_task(self._timer_loop(account_id, interval))
        await logger.ainfo(
            "sync_account_scheduled", account_id=str(account_id), interval_seconds=interval
        )
        self._spawn_tick(account_id)
        return True

    def unschedule_account(self, account_id: UUID) -> bool:
        """Stop an account's timer.

        Returns:
            True if a timer was cancelled, False if none existed.
        """
        cancelled = self._cancel_timer(account_id)
        if cancelled:
            logger.info("sync_account_unscheduled", account_id=str(account_id))
        return cancelled

    def _cancel_timer(self, account_id: UUID) -> bool:
        task = self._timers.pop(account_id, None)
        self._intervals.pop(account_id, None)
        if task is None:
            return False
        task.cancel()
        return True

    def is_scheduled(self, account_id: UUID) -> bool:
        """Check if an account has an armed timer."""
        return account_id in self._timers

    async def _timer_loop(self, account_id: UUID, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            self._spawn_tick(account_id)

    def _spawn_tick(self, account_id: UUID) -> asyncio.Task[SyncOutcome | None] | None:
        running = self._in_flight.get(account_id)
        if running is not None and not running.done():
            logger.info("sync_tick_skipped", account_id=str(account_id), reason="in_flight")
            return None
        task = asyncio.create_task(self._sync_account(account_id))
        self._in_flight[account_id] = task

        def _done(finished: asyncio.Task[SyncOutcome | None]) -> None:
            if self._in_flight.get(account_id) is finished:
                del self._in_flight[account_id]

        task.add_done_callback(_done)
        return task

    @contextlib.asynccontextmanager
    async def _sync_slot(self) -> AsyncIterator[None]:
        """Hold one of ``max_concurrent`` pass slots.

        The limit is read on every wake-up, so waiters follow a reloaded
        ``max_concurrent`` instead of the value at the time they queued.
        """
        async with self._slots:
            await self._slots.wait_for(
                lambda: self._active_passes < max(self.config.max_concurrent, 1)
            )
            self._active_passes += 1
        try:
            yield
        finally:
            self._active_passes -= 1
            async with self._slots:
                self._slots.notify_all()

    async def _sync_account(self, account_id: UUID) -> SyncOutcome | None:
        try:
            async with self._session_factory() as session:
                account = await AccountRepository(session).get_by_id(account_id)
            if account is None:
                await logger.awarning("sync_account_missing", account_id=str(account_id))
                self.unschedule_account(account_id)
                return None
            if account.is_syncing:
                await logger.ainfo(
                    "sync_tick_skipped", account_id=str(account_id), reason="already_syncing"
                )
                return None

            async with self._sync_slot():
                outcome = await self._runner.run(account_id)

            if not outcome.success and not outcome.skipped and not outcome.cancelled:
                async with self._session_factory() as session:
                    account = await AccountRepository(session).get_by_id(account_id)
                if account is not None and account.sync_status == AccountSyncStatus.ERROR.value:
                    await logger.awarning(
                        "sync_account_escalated",
                        account_id=str(account_id),
                        consecutive_failures=account.consecutive_failures,
                        needs_reauth=account.needs_reauth,
                    )
                    self.unschedule_account(account_id)
            return outcome
        except Exception:
            await logger.aexception("sync_tick_failed", account_id=str(account_id))
            return None

    async def trigger_sync(self, account_id: UUID) -> SyncOutcome | None:
        """Run a sync for an account now and wait for it.

        Returns:
            Outcome, None if the tick was skipped or the account is missing.
        """
        task = self._spawn_tick(account_id)
        if task is None:
            return None
        return await task

    async def trigger_user_sync(self, user_id: UUID) -> list[SyncOutcome]:
        """Sync all of a user's active, paused and error accounts now.

        Accounts are synced in batches of ``max_concurrent``.

        Returns:
            Outcomes of the passes that ran.
        """
        async with self._session_factory() as session:
            accounts = await AccountRepository(session).find(
                statuses=[
                    AccountSyncStatus.ACTIVE,
                    AccountSyncStatus.PAUSED,
                    AccountSyncStatus.ERROR,
                ],
                user_id=user_id,
            )
        await logger.ainfo("sync_user_triggered", user_id=str(user_id), accounts=len(accounts))
        outcomes: list[SyncOutcome] = []
        batch_size = max(self.config.max_concurrent, 1)
        for start in range(0, len(accounts), batch_size):
            batch = accounts[start : start + batch_size]
            results = await asyncio.gather(*(self.trigger_sync(a.id) for a in batch))
            outcomes.extend(r for r in results if r is not None)
        return outcomes

    async def pause_account(self, account_id: UUID) -> bool:
        """Persist ``paused`` and stop the account's timer.

        Returns:
            True if the account exists.
        """
        async with self._session_factory() as session:
            found = await AccountRepository(session).set_status(
                account_id, AccountSyncStatus.PAUSED
            )
        if not found:
            await logger.awarning("sync_pause_account_missing", account_id=str(account_id))
            return False
        self.unschedule_account(account_id)
        await logger.ainfo("sync_account_paused", account_id=str(account_id))
        return True

    async def resume_account(self, account_id: UUID) -> bool:
        """Persist ``active`` and schedule the account again.

        Returns:
            True if the account exists and was scheduled.
        """
        async with self._session_factory() as session:
            found = await AccountRepository(session).set_status(
                account_id, AccountSyncStatus.ACTIVE
            )
        if not found:
            await logger.awarning("sync_resume_account_missing", account_id=str(account_id))
            return False
        await logger.ainfo("sync_account_resumed", account_id=str(account_id))
        return await self.schedule_account(account_id)

    async def update_config(self, **changes: Any) -> SchedulerConfig:
        """Hot-reload interval, enabled flag or concurrency.

        Turning ``enabled`` off stops the scheduler; turning it on starts it.
        A new ``max_concurrent`` applies to passes already waiting for a
        slot; passes already running are not interrupted.

        Args:
            **changes: Any of default_interval_minutes, enabled, max_concurrent.

        Returns:
            The updated configuration.

        Raises:
            ValueError: If an unknown or non-reloadable key is given.
        """
        unknown = set(changes) - set(_RELOADABLE)
        if unknown:
            raise ValueError(f"Cannot update scheduler settings: {sorted(unknown)}")
        for key, value in changes.items():
            setattr(self.config, key, value)
        if "max_concurrent" in changes:
            async with self._slots:
                self._slots.notify_all()
        await logger.ainfo("sync_scheduler_config_updated", **changes)

        if changes.get("enabled") is False and self.is_running:
            await self.stop()
        elif changes.get("enabled") is True and not self.is_running:
            await self.start()
        return self.config

    def get_status(self) -> dict[str, Any]:
        """Get scheduler status."""
        return {
            "is_running": self.is_running,
            "scheduled_accounts": len(self._timers),
            "in_flight": len(self._in_flight),
            "config": asdict(self.config),
        }

    async def stop(self) -> None:
        """Cancel every timer and the rescan loop; running passes continue."""
        timers = list(self._timers.values())
        for account_id in list(self._timers):
            self._cancel_timer(account_id)
        await asyncio.gather(*timers, return_exceptions=True)
        if self._rescan_task is not None:
            self._rescan_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._rescan_task
            self._rescan_task = None
        self.is_running = False
        await logger.ainfo("sync_scheduler_stopped")

    async def shutdown(self) -> None:
        """Stop scheduling and wait for running passes, cancelling stragglers."""
        await self.stop()
        pending = [task for task in self._in_flight.values() if not task.done()]
        if not pending:
            return
        _, still_running = await asyncio.wait(
            pending, timeout=self.config.shutdown_timeout_seconds
        )
        for task in still_running:
            task.cancel()
        if still_running:
            await asyncio.gather(*still_running, return_exceptions=True)
            await logger.awarning("sync_passes_cancelled_on_shutdown", count=len(still_running))
