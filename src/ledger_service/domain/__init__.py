"""Domain layer - ledger entities, errors and request fingerprinting."""

from ledger_service.domain.exceptions import (
    ConflictError,
    DomainError,
    DuplicateRequestError,
    IdempotencyConflictError,
    IncidentNotFoundError,
    InternalError,
    InvalidAmountError,
    NotFoundError,
    TransactionNotFoundError,
    UnavailableError,
    UnknownZoneError,
    ValidationError,
    ZoneNotFoundError,
    ZoneUnavailableError,
)
from ledger_service.domain.fingerprint import compute_fingerprint
from ledger_service.domain.models import (
    Account,
    AuditLogEntry,
    Balance,
    Incident,
    IncidentAction,
    IncidentSeverity,
    IncidentStatus,
    OutboxEvent,
    Posting,
    PostingDirection,
    Transaction,
    TransactionRef,
    Zone,
    ZoneStatus,
)


__all__ = [
    "Account",
    "AuditLogEntry",
    "Balance",
    "ConflictError",
    "DomainError",
    "DuplicateRequestError",
    "IdempotencyConflictError",
    "Incident",
    "IncidentAction",
    "IncidentNotFoundError",
    "IncidentSeverity",
    "IncidentStatus",
    "InternalError",
    "InvalidAmountError",
    "NotFoundError",
    "OutboxEvent",
    "Posting",
    "PostingDirection",
    "Transaction",
    "TransactionNotFoundError",
    "TransactionRef",
    "UnavailableError",
    "UnknownZoneError",
    "ValidationError",
    "Zone",
    "ZoneNotFoundError",
    "ZoneStatus",
    "ZoneUnavailableError",
    "compute_fingerprint",
]
