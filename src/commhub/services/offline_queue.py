"""Offline operation queue.

Clients stage mutations while disconnected; the queue applies them against
the message mirror in order, per resource, with bounded retries.

Application rules:
- A completed operation is never applied again.
- Operations on the same resource apply one at a time in queue order; the
  first failure in a resource group holds back the rest of that group.
- An operation whose target vanished, or was changed server-side after the
  client staged it, fails as ``stale_target`` and is never retried
  automatically.
- Replies go through the reply sender keyed by the client correlation ID, so
  a retried ``send_reply`` never sends twice.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING
from uuid import UUID

import structlog
from pydantic import ValidationError

from commhub.models.base import as_utc
from commhub.models.offline_operation import (
    FailureKind,
    OperationStatus,
    OperationType,
    QueuedOperation,
    ResourceType,
)
from commhub.repositories.message import MessageRepository
from commhub.repositories.offline_operation import OfflineOperationRepository
from commhub.schemas.offline import (
    ArchivePayload,
    CategorizePayload,
    DeletePayload,
    MarkReadPayload,
    MarkUnreadPayload,
    QueueOperationCreate,
    QueueProcessResult,
    QueueStats,
    SendReplyPayload,
    UnarchivePayload,
    parse_payload,
)

if TYPE_CHECKING:
    from commhub.core.database import SessionFactory
    from commhub.services.reply_sender import ReplySender

logger = structlog.get_logger(__name__)

MIN_PRIORITY = 1
MAX_PRIORITY = 10


class OfflineQueueError(Exception):
    """Base exception for offline queue errors."""

    def __init__(self, message: str, operation_id: int | None = None) -> None:
        """Initialize offline queue error.

        Args:
            message: Error description.
            operation_id: Operation involved, if any.
        """
        super().__init__(message)
        self.operation_id = operation_id


class InvalidOperationError(OfflineQueueError):
    """Raised when an operation fails validation; nothing is persisted."""


class OperationNotFoundError(OfflineQueueError):
    """Raised when an operation does not exist."""


class StaleTargetError(OfflineQueueError):
    """Raised when the target is gone or changed after the client staged the operation."""


class OperationExecutionError(OfflineQueueError):
    """Raised when applying an operation fails transiently."""


class OfflineQueueManager:
    """Durable queue of client-originated mutations."""

    def __init__(
        self,
        session_factory: SessionFactory,
        reply_sender: ReplySender,
        *,
        max_attempts: int = 3,
        max_concurrent: int = 4,
    ) -> None:
        """Initialize queue manager.

        Args:
            session_factory: Factory for async sessions.
            reply_sender: Sender for queued replies.
            max_attempts: Attempts before an operation stays failed.
            max_concurrent: Resource groups processed at once.
        """
        self._session_factory = session_factory
        self._reply_sender = reply_sender
        self.max_attempts = max_attempts
        self.max_concurrent = max_concurrent

    def _validate(self, data: QueueOperationCreate) -> dict[str, object]:
        valid_types = {t.value for t in OperationType}
        if data.operation_type not in valid_types:
            raise InvalidOperationError(f"Unknown operation type '{data.operation_type}'")
        if data.resource_type not in {r.value for r in ResourceType}:
            raise InvalidOperationError(f"Unknown resource type '{data.resource_type}'")
        if data.resource_type != ResourceType.MESSAGE.value:
            raise InvalidOperationError(
                f"Operation '{data.operation_type}' cannot target a {data.resource_type}"
            )
        if not data.resource_id:
            raise InvalidOperationError(f"Operation '{data.operation_type}' needs a resource_id")
        try:
            UUID(data.resource_id)
        except ValueError as e:
            raise InvalidOperationError(f"Invalid message id '{data.resource_id}'") from e
        if not MIN_PRIORITY <= data.priority <= MAX_PRIORITY:
            raise InvalidOperationError(
                f"Priority must be between {MIN_PRIORITY} and {MAX_PRIORITY}, got {data.priority}"
            )
        try:
            payload = parse_payload(data.operation_type, data.payload)
        except ValidationError as e:
            raise InvalidOperationError(f"Invalid payload for '{data.operation_type}': {e}") from e
        return payload.model_dump(exclude={"operation_type"})

    async def enqueue(self, data: QueueOperationCreate) -> QueuedOperation:
        """Validate and persist an operation.

        When the user already queued an operation with the same
        ``client_id``, that operation is returned instead.

        Args:
            data: Operation to enqueue.

        Returns:
            The queued (or previously queued) operation.

        Raises:
            InvalidOperationError: If validation fails.
        """
        payload = self._validate(data)
        async with self._session_factory() as session:
            repo = OfflineOperationRepository(session)
            if data.client_id:
                existing = await repo.get_by_client_id(data.user_id, data.client_id)
                if existing is not None:
                    await logger.ainfo(
                        "queue_operation_duplicate",
                        operation_id=existing.id,
                        client_id=data.client_id,
                    )
                    return existing
            operation = await repo.create(
                QueuedOperation(
                    user_id=data.user_id,
                    operation_type=data.operation_type,
                    resource_type=data.resource_type,
                    resource_id=data.resource_id,
                    payload=payload,
                    status=OperationStatus.PENDING.value,
                    priority=data.priority,
                    attempt_count=0,
                    max_attempts=self.max_attempts,
                    client_id=data.client_id,
                    client_timestamp=as_utc(data.client_timestamp),
                )
            )
        await logger.ainfo(
            "queue_operation_enqueued",
            operation_id=operation.id,
            operation_type=operation.operation_type,
            user_id=str(data.user_id),
            priority=operation.priority,
        )
        return operation

    async def get_operation(
        self, operation_id: int, user_id: UUID | None = None
    ) -> QueuedOperation | None:
        """Get an operation by ID."""
        async with self._session_factory() as session:
            return await OfflineOperationRepository(session).get_by_id(operation_id, user_id)

    async def get_pending_operations(self, user_id: UUID) -> list[QueuedOperation]:
        """List pending and retryable operations in application order."""
        async with self._session_factory() as session:
            return await OfflineOperationRepository(session).list_pending(user_id)

    async def process_operation(self, operation_id: int) -> QueuedOperation:
        """Apply one operation.

        Completed operations are returned untouched. Stale and exhausted
        failures are returned without a new attempt.

        Args:
            operation_id: Operation to apply.

        Returns:
            The operation in its resulting state.

        Raises:
            OperationNotFoundError: If the operation does not exist.
        """
        async with self._session_factory() as session:
            repo = OfflineOperationRepository(session)
            operation = await repo.get_by_id(operation_id)
            if operation is None:
                raise OperationNotFoundError(f"Operation {operation_id} not found", operation_id)
            if operation.status in (
                OperationStatus.COMPLETED.value,
                OperationStatus.PROCESSING.value,
            ):
                return operation
            if operation.status == OperationStatus.FAILED.value and not operation.can_retry:
                return operation
            if not await repo.claim(operation):
                await logger.ainfo("queue_operation_claim_lost", operation_id=operation_id)
                return await repo.get_by_id(operation_id) or operation

        log = logger.bind(
            operation_id=operation.id,
            operation_type=operation.operation_type,
            attempt=operation.attempt_count,
        )
        try:
            await self._apply(operation)
        except StaleTargetError as e:
            await self._finish(operation_id, FailureKind.STALE_TARGET, str(e))
            await log.awarning("queue_operation_stale", error=str(e))
        except Exception as e:
            await self._finish(operation_id, FailureKind.TRANSIENT, str(e) or type(e).__name__)
            await log.awarning(
                "queue_operation_failed",
                error=str(e),
                exhausted=operation.attempt_count >= operation.max_attempts,
            )
        else:
            await self._finish(operation_id, None, None)
            await log.ainfo("queue_operation_completed")

        async with self._session_factory() as session:
            result = await OfflineOperationRepository(session).get_by_id(operation_id)
        return result or operation

    async def _finish(self, operation_id: int, kind: FailureKind | None, error: str | None) -> None:
        async with self._session_factory() as session:
            repo = OfflineOperationRepository(session)
            if kind is None:
                await repo.mark_completed(operation_id)
            else:
                await repo.mark_failed(operation_id, kind, error or "")

    async def _apply(self, operation: QueuedOperation) -> None:
        payload = parse_payload(operation.operation_type, operation.payload)
        message_id = UUID(str(operation.resource_id))
        user_id = operation.user_id

        async with self._session_factory() as session:
            store = MessageRepository(session)
            message = await store.get_by_id(message_id, user_id)
            if message is None:
                raise StaleTargetError(f"Message {message_id} no longer exists", operation.id)
            server_modified = as_utc(message.server_modified_at)
            client_timestamp = as_utc(operation.client_timestamp)
            if server_modified and client_timestamp and server_modified > client_timestamp:
                raise StaleTargetError(
                    f"Message {message_id} changed on the server after the client staged "
                    "this operation",
                    operation.id,
                )

            # Writes are guarded by client_timestamp; a server change after the
            # read above makes them miss.
            if isinstance(payload, MarkReadPayload):
                applied = await store.update_read_status(
                    message_id, user_id, True, unchanged_since=client_timestamp
                )
            elif isinstance(payload, MarkUnreadPayload):
                applied = await store.update_read_status(
                    message_id, user_id, False, unchanged_since=client_timestamp
                )
            elif isinstance(payload, ArchivePayload):
                applied = await store.archive(
                    message_id, user_id, archived=True, unchanged_since=client_timestamp
                )
            elif isinstance(payload, UnarchivePayload):
                applied = await store.archive(
                    message_id, user_id, archived=False, unchanged_since=client_timestamp
                )
            elif isinstance(payload, CategorizePayload):
                applied = await store.categorize(
                    message_id, user_id, payload.category_id, unchanged_since=client_timestamp
                )
            elif isinstance(payload, DeletePayload):
                applied = await store.trash(
                    message_id, user_id, unchanged_since=client_timestamp
                )
            elif isinstance(payload, SendReplyPayload):
                dedup_key = operation.client_id or f"op-{operation.id}"
                await self._reply_sender.send_reply(message, payload.body, dedup_key)
                applied = True
            else:
                raise OperationExecutionError(
                    f"Unsupported operation '{operation.operation_type}'", operation.id
                )
        if not applied:
            raise StaleTargetError(
                f"Message {message_id} was removed or changed on the server before the "
                "operation applied",
                operation.id,
            )

    async def process_user_queue(self, user_id: UUID) -> QueueProcessResult:
        """Apply a user's pending operations.

        Operations are grouped by target resource. Each group runs in queue
        order and stops at its first failure or at an operation another
        worker is still processing; groups run concurrently up to
        ``max_concurrent``.

        Args:
            user_id: User whose queue to drain.

        Returns:
            Counts of processed, succeeded, failed and stale operations, and
            of operations skipped because another worker holds them.
        """
        operations = await self.get_pending_operations(user_id)
        groups: dict[tuple[str, str], list[QueuedOperation]] = {}
        for operation in operations:
            groups.setdefault(operation.resource_key, []).append(operation)

        result = QueueProcessResult()
        semaphore = asyncio.Semaphore(max(self.max_concurrent, 1))

        async def _run_group(group: list[QueuedOperation]) -> None:
            async with semaphore:
                for queued in group:
                    processed = await self.process_operation(queued.id)
                    if processed.status not in (
                        OperationStatus.COMPLETED.value,
                        OperationStatus.FAILED.value,
                    ):
                        # Claimed elsewhere; later operations wait behind it
                        result.skipped += 1
                        break
                    result.processed += 1
                    if processed.status == OperationStatus.COMPLETED.value:
                        result.succeeded += 1
                        continue
                    result.failed += 1
                    if processed.is_stale:
                        result.stale += 1
                    break

        await asyncio.gather(*(_run_group(group) for group in groups.values()))
        await logger.ainfo(
            "queue_processed",
            user_id=str(user_id),
            groups=len(groups),
            **result.model_dump(),
        )
        return result

    async def get_queue_stats(self, user_id: UUID) -> QueueStats:
        """Count a user's operations per status."""
        async with self._session_factory() as session:
            counts = await OfflineOperationRepository(session).count_by_status(user_id)
        stats = QueueStats(
            pending=counts.get(OperationStatus.PENDING.value, 0),
            processing=counts.get(OperationStatus.PROCESSING.value, 0),
            completed=counts.get(OperationStatus.COMPLETED.value, 0),
            failed=counts.get(OperationStatus.FAILED.value, 0),
            stale=counts.get("stale", 0),
        )
        stats.total = stats.pending + stats.processing + stats.completed + stats.failed
        return stats

    async def retry_failed(self, user_id: UUID) -> int:
        """Return transient failures below the attempt cap to ``pending``.

        Attempt counts are kept. Stale and exhausted operations stay failed.

        Returns:
            Number of operations reset.
        """
        async with self._session_factory() as session:
            count = await OfflineOperationRepository(session).reset_retryable(user_id)
        await logger.ainfo("queue_retry_failed", user_id=str(user_id), count=count)
        return count

    async def clear_completed(self, user_id: UUID) -> int:
        """Delete a user's completed operations.

        Returns:
            Number of operations deleted.
        """
        async with self._session_factory() as session:
            count = await OfflineOperationRepository(session).delete_completed(user_id)
        await logger.ainfo("queue_cleared", user_id=str(user_id), count=count)
        return count

    async def recover_processing(self) -> int:
        """Return operations abandoned by a dead process to ``pending``.

        Returns:
            Number of operations recovered.
        """
        async with self._session_factory() as session:
            count = await OfflineOperationRepository(session).reset_processing()
        if count:
            await logger.awarning("queue_operations_recovered", count=count)
        return count
