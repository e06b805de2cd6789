import logging
from datetime import timedelta
from typing import Any, Dict, List, Optional
from uuid import UUID

from tortoise import timezone
from tortoise.expressions import F
from tortoise.transactions import in_transaction

from cms_infra.models.outbox import OutboxEvent, OutboxStatus

log = logging.getLogger(__name__)


async def publish(topic: str, payload: Any, conn: Any = None) -> Dict[str, Any]:
    """
    Creates a new pending Outbox event using the provided database connection (transaction).

    CRITICAL: Passing 'conn' ensures the event is committed atomically with the business data.
    Storage errors are not caught here; they must abort the caller's transaction.
    """
    event = await OutboxEvent.create(
        topic=topic,
        payload=payload,
        status=OutboxStatus.PENDING,
        attempts=0,
        using_db=conn,
    )
    return {"id": event.id, "topic": event.topic}


async def claim(limit: int = 25) -> List[UUID]:
    """
    Flips up to `limit` pending events (oldest first) to 'processing' and returns their ids.

    The select and the conditional update run in one transaction. On backends that support it,
    the selected rows are locked with SKIP LOCKED so concurrent dispatchers pick disjoint batches.
    """
    async with in_transaction() as conn:
        pending = await (
            OutboxEvent.filter(status=OutboxStatus.PENDING)
            .order_by("created_at")
            .limit(limit)
            .select_for_update(skip_locked=True)
            .using_db(conn)
        )
        if not pending:
            return []

        ids = [event.id for event in pending]
        await OutboxEvent.filter(id__in=ids, status=OutboxStatus.PENDING).using_db(conn).update(
            status=OutboxStatus.PROCESSING,
            updated_at=timezone.now(),
        )

    log.debug(f"Claimed {len(ids)} outbox events")
    return ids


async def load(event_id: UUID) -> Optional[OutboxEvent]:
    """Returns the full row, or None if it no longer exists (callers skip it)."""
    return await OutboxEvent.get_or_none(id=event_id)


async def mark_done(event_id: UUID) -> None:
    await OutboxEvent.filter(id=event_id).update(
        status=OutboxStatus.DONE,
        updated_at=timezone.now(),
    )


async def mark_error(event_id: UUID, attempt_increment: int = 1) -> None:
    """Terminal failure: no requeue happens here. The increment is applied in SQL."""
    await OutboxEvent.filter(id=event_id).update(
        status=OutboxStatus.ERROR,
        attempts=F("attempts") + attempt_increment,
        updated_at=timezone.now(),
    )


async def release_stale(older_than_seconds: int) -> int:
    """
    Puts 'processing' rows untouched for longer than `older_than_seconds` back to 'pending'.
    Used when a dispatcher died between claim and mark. Returns the number of rows released.
    """
    cutoff = timezone.now() - timedelta(seconds=older_than_seconds)
    released = await OutboxEvent.filter(
        status=OutboxStatus.PROCESSING,
        updated_at__lt=cutoff,
    ).update(status=OutboxStatus.PENDING, updated_at=timezone.now())
    if released:
        log.warning(f"Released {released} stale outbox events back to pending")
    return released


async def count_by_status() -> Dict[str, int]:
    return {
        status.value: await OutboxEvent.filter(status=status).count()
        for status in OutboxStatus
    }
