from typing import Any

from sqlalchemy import Row, text
from sqlalchemy.ext.asyncio import AsyncSession

from ledger_service.domain.exceptions import DuplicateRequestError
from ledger_service.domain.models import (
    Posting,
    PostingDirection,
    Transaction,
    TransactionRef,
)
from ledger_service.infrastructure.repositories._json import dump_json, load_json


def _to_transaction(row: Row[Any], postings: list[Posting] | None = None) -> Transaction:
    return Transaction(
        id=row.id,
        request_id=row.request_id,
        payload_hash=row.payload_hash,
        from_account=row.from_account,
        to_account=row.to_account,
        amount_units=row.amount_units,
        zone_id=row.zone_id,
        metadata=load_json(row.metadata),
        created_at=row.created_at,
        postings=postings or [],
    )


class TransactionRepository:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def find_by_request_id(self, request_id: str) -> TransactionRef | None:
        result = await self._session.execute(
            text("""
                SELECT id, request_id, payload_hash, created_at
                FROM transactions
                WHERE request_id = :request_id
            """),
            {"request_id": request_id},
        )
        row = result.fetchone()
        if not row:
            return None
        return TransactionRef(
            id=row.id,
            request_id=row.request_id,
            payload_hash=row.payload_hash,
            created_at=row.created_at,
        )

    async def add_with_postings(self, txn: Transaction) -> None:
        """Append the transaction and its postings.

        Raises:
            DuplicateRequestError: another unit committed the same request_id
                between our idempotency lookup and this insert.
        """
        result = await self._session.execute(
            text("""
                INSERT INTO transactions
                    (id, request_id, payload_hash, from_account, to_account,
                     amount_units, zone_id, metadata, created_at)
                VALUES
                    (:id, :request_id, :payload_hash, :from_account, :to_account,
                     :amount_units, :zone_id, CAST(:metadata AS JSONB), :created_at)
                ON CONFLICT (request_id) DO NOTHING
                RETURNING id
            """),
            {
                "id": txn.id,
                "request_id": txn.request_id,
                "payload_hash": txn.payload_hash,
                "from_account": txn.from_account,
                "to_account": txn.to_account,
                "amount_units": txn.amount_units,
                "zone_id": txn.zone_id,
                "metadata": dump_json(txn.metadata),
                "created_at": txn.created_at,
            },
        )
        if result.fetchone() is None:
            raise DuplicateRequestError(txn.request_id)

        for posting in txn.postings:
            await self._session.execute(
                text("""
                    INSERT INTO postings
                        (id, transaction_id, account_id, direction, amount_units, created_at)
                    VALUES
                        (:id, :transaction_id, :account_id, :direction, :amount_units, :created_at)
                """),
                {
                    "id": posting.id,
                    "transaction_id": posting.transaction_id,
                    "account_id": posting.account_id,
                    "direction": posting.direction.value,
                    "amount_units": posting.amount_units,
                    "created_at": posting.created_at,
                },
            )

    async def get(self, transaction_id: str) -> Transaction | None:
        result = await self._session.execute(
            text("""
                SELECT id, request_id, payload_hash, from_account, to_account,
                       amount_units, zone_id, metadata, created_at
                FROM transactions
                WHERE id = :id
            """),
            {"id": transaction_id},
        )
        row = result.fetchone()
        if not row:
            return None
        return _to_transaction(row, await self.get_postings(transaction_id))

    async def get_postings(self, transaction_id: str) -> list[Posting]:
        result = await self._session.execute(
            text("""
                SELECT id, transaction_id, account_id, direction, amount_units, created_at
                FROM postings
                WHERE transaction_id = :transaction_id
                ORDER BY direction DESC
            """),
            {"transaction_id": transaction_id},
        )
        return [
            Posting(
                id=row.id,
                transaction_id=row.transaction_id,
                account_id=row.account_id,
                direction=PostingDirection(row.direction),
                amount_units=row.amount_units,
                created_at=row.created_at,
            )
            for row in result.fetchall()
        ]

    async def list_recent(self, limit: int = 100) -> list[Transaction]:
        result = await self._session.execute(
            text("""
                SELECT id, request_id, payload_hash, from_account, to_account,
                       amount_units, zone_id, metadata, created_at
                FROM transactions
                ORDER BY created_at DESC
                LIMIT :limit
            """),
            {"limit": limit},
        )
        return [_to_transaction(row) for row in result.fetchall()]
