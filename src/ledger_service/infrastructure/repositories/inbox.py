from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession


class InboxRepository:
    """Per-consumer record of events already handled."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def record(self, consumer: str, event_id: str) -> bool:
        """Returns False when ``consumer`` has already recorded ``event_id``."""
        result = await self._session.execute(
            text("""
                INSERT INTO inbox_events (consumer, event_id)
                VALUES (:consumer, :event_id)
                ON CONFLICT (consumer, event_id) DO NOTHING
                RETURNING event_id
            """),
            {"consumer": consumer, "event_id": event_id},
        )
        return result.scalar_one_or_none() is not None
