from typing import Any

from sqlalchemy import text
from sqlalchemy.engine import Row
from sqlalchemy.ext.asyncio import AsyncSession

from ledger_service.domain.models import OutboxEvent
from ledger_service.infrastructure.repositories._json import dump_json, load_json


_EVENT_COLUMNS = """
    id, aggregate_type, aggregate_id, event_type, payload, created_at,
    published_at, retry_count, next_attempt_at, last_error
"""


def _to_event(row: Row[Any]) -> OutboxEvent:
    return OutboxEvent(
        id=row.id,
        aggregate_type=row.aggregate_type,
        aggregate_id=row.aggregate_id,
        event_type=row.event_type,
        payload=load_json(row.payload),
        created_at=row.created_at,
        published_at=row.published_at,
        retry_count=row.retry_count,
        next_attempt_at=row.next_attempt_at,
        last_error=row.last_error,
    )


class OutboxRepository:
    """Ledger events awaiting relay.

    Transfer units append rows; the relay claims rows that are due, then either
    closes them (published or dead lettered) or pushes ``next_attempt_at`` out.
    """

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def add(
        self,
        aggregate_type: str,
        aggregate_id: str,
        event_type: str,
        payload: dict[str, Any],
    ) -> OutboxEvent:
        event = OutboxEvent.create(
            aggregate_type=aggregate_type,
            aggregate_id=aggregate_id,
            event_type=event_type,
            payload=payload,
        )
        await self._session.execute(
            text("""
                INSERT INTO outbox_events
                    (id, aggregate_type, aggregate_id, event_type, payload, created_at)
                VALUES
                    (:id, :aggregate_type, :aggregate_id, :event_type,
                     CAST(:payload AS JSONB), :created_at)
            """),
            {
                "id": event.id,
                "aggregate_type": event.aggregate_type,
                "aggregate_id": event.aggregate_id,
                "event_type": event.event_type,
                "payload": dump_json(event.payload),
                "created_at": event.created_at,
            },
        )
        return event

    async def claim_due(self, event_type: str, limit: int = 100) -> list[OutboxEvent]:
        """Lock up to ``limit`` open events of one type whose backoff has elapsed.

        Rows locked by another relay are skipped, not waited on.
        """
        result = await self._session.execute(
            text(f"""
                SELECT {_EVENT_COLUMNS}
                FROM outbox_events
                WHERE published_at IS NULL
                  AND event_type = :event_type
                  AND next_attempt_at <= NOW()
                ORDER BY created_at
                LIMIT :limit
                FOR UPDATE SKIP LOCKED
            """),
            {"event_type": event_type, "limit": limit},
        )
        return [_to_event(row) for row in result.fetchall()]

    async def count_pending(self, event_type: str) -> int:
        result = await self._session.execute(
            text("""
                SELECT COUNT(*) FROM outbox_events
                WHERE published_at IS NULL AND event_type = :event_type
            """),
            {"event_type": event_type},
        )
        return int(result.scalar_one())

    async def mark_published(self, event_ids: list[str]) -> None:
        if not event_ids:
            return
        await self._session.execute(
            text("UPDATE outbox_events SET published_at = NOW() WHERE id = ANY(:ids)"),
            {"ids": event_ids},
        )

    async def reschedule(self, event_id: str, delay_seconds: float, error: str) -> None:
        await self._session.execute(
            text("""
                UPDATE outbox_events
                SET retry_count = retry_count + 1,
                    next_attempt_at = NOW() + make_interval(secs => CAST(:delay AS DOUBLE PRECISION)),
                    last_error = :error
                WHERE id = :id
            """),
            {"id": event_id, "delay": delay_seconds, "error": error},
        )

    async def mark_dead_lettered(self, event_id: str) -> None:
        await self._session.execute(
            text("""
                UPDATE outbox_events
                SET published_at = NOW(), dead_lettered_at = NOW()
                WHERE id = :id
            """),
            {"id": event_id},
        )
