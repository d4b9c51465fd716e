from datetime import UTC, datetime

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from ledger_service.domain.models import Account


class AccountRepository:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get(self, account_id: str) -> Account | None:
        result = await self._session.execute(
            text("""
                SELECT id, zone_id, created_at
                FROM accounts
                WHERE id = :id
            """),
            {"id": account_id},
        )
        row = result.fetchone()
        if not row:
            return None
        return Account(
            id=row.id,
            zone_id=row.zone_id,
            created_at=row.created_at,
        )

    async def ensure(self, account_id: str, zone_id: str) -> None:
        """Create the account in ``zone_id`` unless it already exists.

        An existing account keeps its original zone.
        """
        await self._session.execute(
            text("""
                INSERT INTO accounts (id, zone_id, created_at)
                VALUES (:id, :zone_id, :created_at)
                ON CONFLICT (id) DO NOTHING
            """),
            {
                "id": account_id,
                "zone_id": zone_id,
                "created_at": datetime.now(UTC),
            },
        )
