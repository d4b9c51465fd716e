from types import TracebackType
from typing import Self

from sqlalchemy.ext.asyncio import AsyncSession

from ledger_service.infrastructure.repositories import (
    AccountRepository,
    AuditLogRepository,
    BalanceRepository,
    InboxRepository,
    IncidentRepository,
    OutboxRepository,
    TransactionRepository,
    ZoneRepository,
)


class UnitOfWork:
    """One database transaction shared by every repository it exposes.

    Leaving the ``async with`` block because of an exception rolls the
    transaction back; success must be made durable with an explicit commit.
    """

    def __init__(self, session: AsyncSession) -> None:
        self._session = session
        self.zones = ZoneRepository(session)
        self.accounts = AccountRepository(session)
        self.transactions = TransactionRepository(session)
        self.balances = BalanceRepository(session)
        self.outbox = OutboxRepository(session)
        self.audit = AuditLogRepository(session)
        self.incidents = IncidentRepository(session)
        self.inbox = InboxRepository(session)

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        if exc_type is not None:
            await self.rollback()

    async def commit(self) -> None:
        await self._session.commit()

    async def rollback(self) -> None:
        await self._session.rollback()
