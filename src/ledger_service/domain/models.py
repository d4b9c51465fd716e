from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from ulid import ULID


TRANSACTION_AGGREGATE = "Transaction"
TRANSFER_POSTED_EVENT = "TransferPosted"


class ZoneStatus(Enum):
    OK = "OK"
    DEGRADED = "DEGRADED"
    DOWN = "DOWN"


class PostingDirection(Enum):
    DEBIT = "DEBIT"
    CREDIT = "CREDIT"


class IncidentSeverity(Enum):
    INFO = "INFO"
    WARN = "WARN"
    CRITICAL = "CRITICAL"


class IncidentStatus(Enum):
    OPEN = "OPEN"
    ACK = "ACK"
    RESOLVED = "RESOLVED"


class IncidentAction(Enum):
    ACK = "ACK"
    ASSIGN = "ASSIGN"
    RESOLVE = "RESOLVE"


def _now() -> datetime:
    return datetime.now(UTC)


@dataclass
class Zone:
    id: str
    name: str
    status: ZoneStatus
    updated_at: datetime = field(default_factory=_now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "status": self.status.value,
            "updated_at": self.updated_at.isoformat(),
        }


@dataclass
class Account:
    id: str
    zone_id: str
    created_at: datetime = field(default_factory=_now)


@dataclass
class Balance:
    account_id: str
    balance_units: int
    updated_at: datetime = field(default_factory=_now)


@dataclass(frozen=True)
class Posting:
    id: str
    transaction_id: str
    account_id: str
    direction: PostingDirection
    amount_units: int
    created_at: datetime = field(default_factory=_now)

    @classmethod
    def create(
        cls,
        transaction_id: str,
        account_id: str,
        direction: PostingDirection,
        amount_units: int,
        created_at: datetime,
    ) -> "Posting":
        return cls(
            id=str(ULID()),
            transaction_id=transaction_id,
            account_id=account_id,
            direction=direction,
            amount_units=amount_units,
            created_at=created_at,
        )

    @property
    def signed_units(self) -> int:
        """Effect of this posting on the account balance."""
        if self.direction is PostingDirection.CREDIT:
            return self.amount_units
        return -self.amount_units


@dataclass
class Transaction:
    id: str
    request_id: str
    payload_hash: str
    from_account: str
    to_account: str
    amount_units: int
    zone_id: str
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=_now)
    postings: list[Posting] = field(default_factory=list)

    @classmethod
    def create(
        cls,
        request_id: str,
        payload_hash: str,
        from_account: str,
        to_account: str,
        amount_units: int,
        zone_id: str,
        metadata: dict[str, Any] | None = None,
    ) -> "Transaction":
        txn = cls(
            id=str(ULID()),
            request_id=request_id,
            payload_hash=payload_hash,
            from_account=from_account,
            to_account=to_account,
            amount_units=amount_units,
            zone_id=zone_id,
            metadata=dict(metadata or {}),
        )
        txn.postings = [
            Posting.create(txn.id, from_account, PostingDirection.DEBIT, amount_units, txn.created_at),
            Posting.create(txn.id, to_account, PostingDirection.CREDIT, amount_units, txn.created_at),
        ]
        return txn

    def balance_deltas(self) -> list[tuple[str, int]]:
        """Per-account balance changes, ordered by account id."""
        deltas: dict[str, int] = {}
        for posting in self.postings:
            deltas[posting.account_id] = deltas.get(posting.account_id, 0) + posting.signed_units
        return sorted(deltas.items())

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "request_id": self.request_id,
            "from_account": self.from_account,
            "to_account": self.to_account,
            "amount_units": self.amount_units,
            "zone_id": self.zone_id,
            "metadata": self.metadata,
            "created_at": self.created_at.isoformat(),
            "postings": [
                {
                    "account_id": p.account_id,
                    "direction": p.direction.value,
                    "amount_units": p.amount_units,
                }
                for p in self.postings
            ],
        }


@dataclass(frozen=True)
class TransactionRef:
    """What the idempotency lookup needs to know about a committed transaction."""

    id: str
    request_id: str
    payload_hash: str
    created_at: datetime


@dataclass
class OutboxEvent:
    id: str
    aggregate_type: str
    aggregate_id: str
    event_type: str
    payload: dict[str, Any]
    created_at: datetime = field(default_factory=_now)
    published_at: datetime | None = None
    retry_count: int = 0
    next_attempt_at: datetime | None = None
    last_error: str | None = None

    @classmethod
    def create(
        cls,
        aggregate_type: str,
        aggregate_id: str,
        event_type: str,
        payload: dict[str, Any],
    ) -> "OutboxEvent":
        return cls(
            id=str(ULID()),
            aggregate_type=aggregate_type,
            aggregate_id=aggregate_id,
            event_type=event_type,
            payload=payload,
        )


@dataclass
class Incident:
    id: str
    zone_id: str
    severity: IncidentSeverity
    title: str
    status: IncidentStatus = IncidentStatus.OPEN
    details: dict[str, Any] = field(default_factory=dict)
    related_transaction_id: str | None = None
    detected_at: datetime = field(default_factory=_now)

    @classmethod
    def create(
        cls,
        zone_id: str,
        severity: IncidentSeverity,
        title: str,
        details: dict[str, Any] | None = None,
        related_transaction_id: str | None = None,
    ) -> "Incident":
        return cls(
            id=str(ULID()),
            zone_id=zone_id,
            severity=severity,
            title=title,
            details=dict(details or {}),
            related_transaction_id=related_transaction_id,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "zone_id": self.zone_id,
            "related_transaction_id": self.related_transaction_id,
            "severity": self.severity.value,
            "status": self.status.value,
            "title": self.title,
            "details": self.details,
            "detected_at": self.detected_at.isoformat(),
        }


@dataclass
class AuditLogEntry:
    id: str
    actor: str
    action: str
    target_type: str
    target_id: str
    reason: str | None = None
    details: dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=_now)

    @classmethod
    def create(
        cls,
        actor: str,
        action: str,
        target_type: str,
        target_id: str,
        reason: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> "AuditLogEntry":
        return cls(
            id=str(ULID()),
            actor=actor,
            action=action,
            target_type=target_type,
            target_id=target_id,
            reason=reason or None,
            details=dict(details or {}),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "actor": self.actor,
            "action": self.action,
            "target_type": self.target_type,
            "target_id": self.target_id,
            "reason": self.reason,
            "details": self.details,
            "created_at": self.created_at.isoformat(),
        }
