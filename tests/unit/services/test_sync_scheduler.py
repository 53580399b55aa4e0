"""Tests for AccountSyncScheduler."""

from __future__ import annotations

import asyncio
import uuid
from collections.abc import AsyncIterator

import pytest
import pytest_asyncio

from commhub.core.database import SessionFactory
from commhub.models.account import AccountSyncStatus
from commhub.repositories.account import AccountRepository
from commhub.services.sync_progress import SyncProgressTracker
from commhub.services.sync_runner import SyncOutcome
from commhub.services.sync_scheduler import AccountSyncScheduler, SchedulerConfig


class FakeRunner:
    """Runner stand-in recording passes, optionally blocking or failing them."""

    def __init__(self, session_factory: SessionFactory) -> None:
        self.session_factory = session_factory
        self.calls: list[uuid.UUID] = []
        self.gate: asyncio.Event | None = None
        self.escalate = False

    async def run(self, account_id: uuid.UUID) -> SyncOutcome:
        self.calls.append(account_id)
        if self.gate is not None:
            await self.gate.wait()
        if self.escalate:
            async with self.session_factory() as session:
                await AccountRepository(session).set_status(account_id, AccountSyncStatus.ERROR)
            return SyncOutcome(account_id=account_id, success=False, error="down")
        return SyncOutcome(account_id=account_id, success=True)


async def _wait_for(predicate, timeout: float = 2.0) -> None:
    async def _poll() -> None:
        while not predicate():
            await asyncio.sleep(0.01)

    await asyncio.wait_for(_poll(), timeout)


@pytest.fixture
def runner(session_factory: SessionFactory) -> FakeRunner:
    """Recording runner."""
    return FakeRunner(session_factory)


@pytest.fixture
def tracker(session_factory: SessionFactory) -> SyncProgressTracker:
    """Real progress tracker."""
    return SyncProgressTracker(session_factory)


@pytest_asyncio.fixture
async def scheduler(
    session_factory: SessionFactory, runner: FakeRunner, tracker: SyncProgressTracker
) -> AsyncIterator[AccountSyncScheduler]:
    """Scheduler whose timers never fire during a test."""
    config = SchedulerConfig(
        default_interval_minutes=60,
        initial_delay_seconds=3600,
        rescan_interval_seconds=3600,
        shutdown_timeout_seconds=1,
    )
    sched = AccountSyncScheduler(session_factory, runner, tracker, config)  # type: ignore[arg-type]
    yield sched
    await sched.shutdown()


class TestScheduleAccounts:
    """Tests for arming account timers."""

    @pytest.mark.asyncio
    async def test_schedule_all_accounts(
        self, scheduler: AccountSyncScheduler, runner: FakeRunner, make_account
    ) -> None:
        """Test active and paused enabled accounts are scheduled and synced once."""
        active = await make_account()
        paused = await make_account(sync_status="paused")
        errored = await make_account(sync_status="error")
        disabled = await make_account(sync_enabled=False)

        scheduled = await scheduler.schedule_all_accounts()
        await _wait_for(lambda: len(runner.calls) == 2)

        assert scheduled == 2
        assert scheduler.is_scheduled(active.id)
        assert scheduler.is_scheduled(paused.id)
        assert not scheduler.is_scheduled(errored.id)
        assert not scheduler.is_scheduled(disabled.id)
        assert set(runner.calls) == {active.id, paused.id}

    @pytest.mark.asyncio
    async def test_schedule_account_rejects_missing_and_disabled(
        self, scheduler: AccountSyncScheduler, make_account
    ) -> None:
        """Test unknown or sync-disabled accounts are not scheduled."""
        disabled = await make_account(sync_enabled=False)

        assert await scheduler.schedule_account(uuid.uuid4()) is False
        assert await scheduler.schedule_account(disabled.id) is False

    @pytest.mark.asyncio
    async def test_account_frequency_overrides_default(
        self, scheduler: AccountSyncScheduler, runner: FakeRunner, make_account
    ) -> None:
        """Test an account's own frequency drives its timer."""
        account = await make_account(sync_frequency_seconds=1)

        await scheduler.schedule_account(account.id)
        await _wait_for(lambda: len(runner.calls) >= 2, timeout=3.0)

        assert runner.calls[0] == account.id

    @pytest.mark.asyncio
    async def test_rescheduling_replaces_timer(
        self, scheduler: AccountSyncScheduler, make_account
    ) -> None:
        """Test scheduling twice keeps a single timer."""
        account = await make_account()

        await scheduler.schedule_account(account.id)
        await scheduler.schedule_account(account.id)

        assert scheduler.get_status()["scheduled_accounts"] == 1
        assert scheduler.unschedule_account(account.id) is True
        assert scheduler.unschedule_account(account.id) is False

    @pytest.mark.asyncio
    async def test_unschedule_stops_further_ticks(
        self, scheduler: AccountSyncScheduler, runner: FakeRunner, make_account
    ) -> None:
        """Test no pass starts once an account's timer is cancelled."""
        account = await make_account(sync_frequency_seconds=1)

        await scheduler.schedule_account(account.id)
        await _wait_for(lambda: len(runner.calls) == 1)
        assert scheduler.unschedule_account(account.id) is True

        await asyncio.sleep(1.6)

        assert runner.calls == [account.id]


class TestTicks:
    """Tests for sync ticks."""

    @pytest.mark.asyncio
    async def test_no_overlapping_passes(
        self, scheduler: AccountSyncScheduler, runner: FakeRunner, make_account
    ) -> None:
        """Test a tick is skipped while the account's previous pass runs."""
        account = await make_account()
        runner.gate = asyncio.Event()

        first = asyncio.create_task(scheduler.trigger_sync(account.id))
        await _wait_for(lambda: len(runner.calls) == 1)
        second = await scheduler.trigger_sync(account.id)
        runner.gate.set()
        outcome = await first

        assert second is None
        assert outcome is not None
        assert outcome.success is True
        assert runner.calls == [account.id]

    @pytest.mark.asyncio
    async def test_skips_account_marked_syncing(
        self, scheduler: AccountSyncScheduler, runner: FakeRunner, make_account
    ) -> None:
        """Test an account already syncing elsewhere is not passed to the runner."""
        account = await make_account(sync_status="syncing")

        assert await scheduler.trigger_sync(account.id) is None
        assert runner.calls == []

    @pytest.mark.asyncio
    async def test_missing_account_is_unscheduled(
        self,
        scheduler: AccountSyncScheduler,
        session_factory: SessionFactory,
        runner: FakeRunner,
        make_account,
    ) -> None:
        """Test a deleted account loses its timer on the next tick."""
        account = await make_account()
        runner.gate = asyncio.Event()
        await scheduler.schedule_account(account.id)
        await _wait_for(lambda: len(runner.calls) == 1)
        async with session_factory() as session:
            stored = await AccountRepository(session).get_by_id(account.id)
            await session.delete(stored)
            await session.commit()
        runner.gate.set()
        await _wait_for(lambda: scheduler.get_status()["in_flight"] == 0)

        assert await scheduler.trigger_sync(account.id) is None
        assert not scheduler.is_scheduled(account.id)

    @pytest.mark.asyncio
    async def test_escalated_account_is_unscheduled(
        self, scheduler: AccountSyncScheduler, runner: FakeRunner, make_account
    ) -> None:
        """Test a failure that moves the account to error stops its timer."""
        account = await make_account()
        runner.escalate = True

        await scheduler.schedule_account(account.id)
        await _wait_for(lambda: not scheduler.is_scheduled(account.id))

        assert runner.calls == [account.id]

    @pytest.mark.asyncio
    async def test_trigger_user_sync_includes_error_accounts(
        self, scheduler: AccountSyncScheduler, runner: FakeRunner, make_account
    ) -> None:
        """Test a manual user sync covers active, paused and errored accounts."""
        scheduler.config.max_concurrent = 2
        active = await make_account()
        paused = await make_account(sync_status="paused")
        errored = await make_account(sync_status="error")
        await make_account(user_id=uuid.uuid4())

        outcomes = await scheduler.trigger_user_sync(active.user_id)

        assert len(outcomes) == 3
        assert set(runner.calls) == {active.id, paused.id, errored.id}


class TestPauseResume:
    """Tests for pausing and resuming accounts."""

    @pytest.mark.asyncio
    async def test_pause_and_resume(
        self,
        scheduler: AccountSyncScheduler,
        session_factory: SessionFactory,
        runner: FakeRunner,
        make_account,
    ) -> None:
        """Test pausing persists and unschedules; resuming reverses both."""
        account = await make_account()
        await scheduler.schedule_account(account.id)
        await _wait_for(lambda: scheduler.get_status()["in_flight"] == 0)

        assert await scheduler.pause_account(account.id) is True
        async with session_factory() as session:
            paused = await AccountRepository(session).get_by_id(account.id)
        assert paused is not None
        assert paused.sync_status == "paused"
        assert not scheduler.is_scheduled(account.id)

        assert await scheduler.resume_account(account.id) is True
        async with session_factory() as session:
            resumed = await AccountRepository(session).get_by_id(account.id)
        assert resumed is not None
        assert resumed.sync_status == "active"
        assert scheduler.is_scheduled(account.id)

    @pytest.mark.asyncio
    async def test_paused_account_is_not_synced(
        self, scheduler: AccountSyncScheduler, runner: FakeRunner, make_account
    ) -> None:
        """Test a paused account gets no further passes from its timer."""
        account = await make_account(sync_frequency_seconds=1)
        await scheduler.schedule_account(account.id)
        await _wait_for(lambda: len(runner.calls) == 1)

        assert await scheduler.pause_account(account.id) is True
        await asyncio.sleep(1.6)

        assert runner.calls == [account.id]

    @pytest.mark.asyncio
    async def test_pause_missing_account(self, scheduler: AccountSyncScheduler) -> None:
        """Test pausing or resuming an unknown account reports False."""
        assert await scheduler.pause_account(uuid.uuid4()) is False
        assert await scheduler.resume_account(uuid.uuid4()) is False


class TestLifecycle:
    """Tests for start, stop and configuration."""

    @pytest.mark.asyncio
    async def test_disabled_scheduler_does_not_start(
        self, scheduler: AccountSyncScheduler
    ) -> None:
        """Test start is a no-op when scheduling is disabled."""
        scheduler.config.enabled = False

        await scheduler.start()

        assert scheduler.is_running is False

    @pytest.mark.asyncio
    async def test_start_schedules_after_initial_delay(
        self, scheduler: AccountSyncScheduler, runner: FakeRunner, make_account
    ) -> None:
        """Test the first scheduling pass runs after the initial delay."""
        account = await make_account()
        scheduler.config.initial_delay_seconds = 0

        await scheduler.start()
        await _wait_for(lambda: scheduler.is_scheduled(account.id))
        await scheduler.stop()

        assert scheduler.is_running is False
        assert scheduler.get_status()["scheduled_accounts"] == 0

    @pytest.mark.asyncio
    async def test_recover_releases_crashed_state(
        self,
        scheduler: AccountSyncScheduler,
        tracker: SyncProgressTracker,
        session_factory: SessionFactory,
        make_account,
    ) -> None:
        """Test orphaned runs fail and stuck accounts return to active."""
        account = await make_account(sync_status="syncing")
        run = await tracker.create_sync_progress(account.id, account.user_id)

        await scheduler.recover()

        async with session_factory() as session:
            refreshed = await AccountRepository(session).get_by_id(account.id)
        info = await tracker.get_sync_progress(run.sync_id)
        assert refreshed is not None
        assert refreshed.sync_status == "active"
        assert info is not None
        assert info.status == "failed"

    @pytest.mark.asyncio
    async def test_update_config(self, scheduler: AccountSyncScheduler) -> None:
        """Test reloadable settings change and others are rejected."""
        config = await scheduler.update_config(default_interval_minutes=10, max_concurrent=2)

        assert config.default_interval_minutes == 10
        assert config.max_concurrent == 2
        with pytest.raises(ValueError, match="shutdown_timeout_seconds"):
            await scheduler.update_config(shutdown_timeout_seconds=5)

    @pytest.mark.asyncio
    async def test_raised_concurrency_releases_waiting_passes(
        self, scheduler: AccountSyncScheduler, runner: FakeRunner, make_account
    ) -> None:
        """Test passes queued under the old limit start once the limit is raised."""
        runner.gate = asyncio.Event()
        await scheduler.update_config(max_concurrent=1)
        first = await make_account()
        second = await make_account()

        await scheduler.schedule_account(first.id)
        await scheduler.schedule_account(second.id)
        await _wait_for(lambda: len(runner.calls) == 1)
        await asyncio.sleep(0.1)
        assert len(runner.calls) == 1

        await scheduler.update_config(max_concurrent=2)
        await _wait_for(lambda: len(runner.calls) == 2)
        runner.gate.set()
        await _wait_for(lambda: scheduler.get_status()["in_flight"] == 0)

        assert set(runner.calls) == {first.id, second.id}

    @pytest.mark.asyncio
    async def test_update_config_toggles_running(self, scheduler: AccountSyncScheduler) -> None:
        """Test toggling enabled starts and stops the scheduler."""
        await scheduler.start()
        assert scheduler.is_running is True

        await scheduler.update_config(enabled=False)
        assert scheduler.is_running is False

        await scheduler.update_config(enabled=True)
        assert scheduler.is_running is True

    @pytest.mark.asyncio
    async def test_shutdown_cancels_stragglers(
        self, scheduler: AccountSyncScheduler, runner: FakeRunner, make_account
    ) -> None:
        """Test passes still running after the grace period are cancelled."""
        account = await make_account()
        runner.gate = asyncio.Event()
        scheduler.config.shutdown_timeout_seconds = 0.05
        task = asyncio.create_task(scheduler.trigger_sync(account.id))
        await _wait_for(lambda: len(runner.calls) == 1)

        await scheduler.shutdown()

        with pytest.raises(asyncio.CancelledError):
            await task
        assert scheduler.get_status()["in_flight"] == 0
