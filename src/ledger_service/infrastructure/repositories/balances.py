from datetime import UTC, datetime

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from ledger_service.domain.models import Balance


class BalanceRepository:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get(self, account_id: str) -> Balance | None:
        result = await self._session.execute(
            text("""
                SELECT account_id, balance_units, updated_at
                FROM balances
                WHERE account_id = :account_id
            """),
            {"account_id": account_id},
        )
        row = result.fetchone()
        if not row:
            return None
        return Balance(
            account_id=row.account_id,
            balance_units=row.balance_units,
            updated_at=row.updated_at,
        )

    async def adjust(self, account_id: str, delta: int) -> None:
        """Add ``delta`` to the running balance, starting from zero for a new account.

        The increment is computed by the database against the locked row, so
        concurrent adjustments of the same account compose.
        """
        await self._session.execute(
            text("""
                INSERT INTO balances (account_id, balance_units, updated_at)
                VALUES (:account_id, :delta, :updated_at)
                ON CONFLICT (account_id) DO UPDATE
                SET balance_units = balances.balance_units + EXCLUDED.balance_units,
                    updated_at = EXCLUDED.updated_at
            """),
            {
                "account_id": account_id,
                "delta": delta,
                "updated_at": datetime.now(UTC),
            },
        )

    async def list_recent(self, limit: int = 100) -> list[Balance]:
        result = await self._session.execute(
            text("""
                SELECT account_id, balance_units, updated_at
                FROM balances
                ORDER BY updated_at DESC
                LIMIT :limit
            """),
            {"limit": limit},
        )
        return [
            Balance(
                account_id=row.account_id,
                balance_units=row.balance_units,
                updated_at=row.updated_at,
            )
            for row in result.fetchall()
        ]
