"""Repository implementations."""

from ledger_service.infrastructure.repositories.accounts import AccountRepository
from ledger_service.infrastructure.repositories.audit import AuditLogRepository
from ledger_service.infrastructure.repositories.balances import BalanceRepository
from ledger_service.infrastructure.repositories.inbox import InboxRepository
from ledger_service.infrastructure.repositories.incidents import IncidentRepository
from ledger_service.infrastructure.repositories.outbox import OutboxRepository
from ledger_service.infrastructure.repositories.transactions import TransactionRepository
from ledger_service.infrastructure.repositories.zones import ZoneRepository


__all__ = [
    "AccountRepository",
    "AuditLogRepository",
    "BalanceRepository",
    "InboxRepository",
    "IncidentRepository",
    "OutboxRepository",
    "TransactionRepository",
    "ZoneRepository",
]
