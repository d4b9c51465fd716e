from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

import structlog
from sqlalchemy.exc import SQLAlchemyError

from ledger_service.application.unit_of_work import UnitOfWork
from ledger_service.application.zone_gate import ZoneGate
from ledger_service.config import settings
from ledger_service.domain.exceptions import (
    BalanceNotFoundError,
    ConflictError,
    DomainError,
    DuplicateRequestError,
    IdempotencyConflictError,
    IncidentNotFoundError,
    InternalError,
    InvalidAmountError,
    InvalidIncidentActionError,
    InvalidMetadataError,
    InvalidZoneStatusError,
    MissingFieldError,
    TransactionNotFoundError,
    UnavailableError,
    ValidationError,
    ZoneNotFoundError,
)
from ledger_service.domain.fingerprint import compute_fingerprint
from ledger_service.domain.models import (
    TRANSACTION_AGGREGATE,
    TRANSFER_POSTED_EVENT,
    AuditLogEntry,
    Balance,
    Incident,
    IncidentAction,
    IncidentSeverity,
    IncidentStatus,
    Transaction,
    Zone,
    ZoneStatus,
)
from ledger_service.infrastructure.metrics import (
    INBOX_EVENTS_TOTAL,
    INCIDENTS_RAISED_TOTAL,
    TRANSFER_REQUESTS_TOTAL,
    TRANSFERS_POSTED_TOTAL,
    ZONE_STATUS_CHANGES_TOTAL,
    track_transfer_duration,
)


logger = structlog.get_logger()

MAX_AMOUNT_UNITS = 2**63 - 1


def _require(field: str, value: Any) -> None:
    if not isinstance(value, str) or not value.strip():
        raise MissingFieldError(field)


def _outcome_for(exc: DomainError) -> str:
    if isinstance(exc, ValidationError):
        return "validation"
    if isinstance(exc, UnavailableError):
        return "unavailable"
    if isinstance(exc, ConflictError):
        return "conflict"
    return "internal"


@dataclass
class CreateTransferCommand:
    request_id: str
    from_account: str
    to_account: str
    amount_units: int
    zone_id: str
    metadata: dict[str, Any] | None = None


@dataclass
class TransferResult:
    transaction_id: str
    request_id: str
    created_at: datetime
    replayed: bool = False


class TransferService:
    """Turns transfer requests into idempotent double-entry ledger facts.

    Each attempt is a single unit of work: zone gate, idempotency lookup,
    account provisioning, postings, balance projection and outbox event are
    committed together or not at all.
    """

    def __init__(self, uow: UnitOfWork, max_attempts: int | None = None) -> None:
        self.uow = uow
        self._gate = ZoneGate(uow)
        self._max_attempts = max_attempts or settings.transfer_max_attempts

    @track_transfer_duration
    async def create_transfer(self, cmd: CreateTransferCommand) -> TransferResult:
        log = logger.bind(
            request_id=cmd.request_id,
            zone_id=cmd.zone_id,
            from_account=cmd.from_account,
            to_account=cmd.to_account,
            amount_units=cmd.amount_units,
        )

        try:
            self._validate(cmd)
            fingerprint = compute_fingerprint(
                request_id=cmd.request_id,
                from_account=cmd.from_account,
                to_account=cmd.to_account,
                amount_units=cmd.amount_units,
                zone_id=cmd.zone_id,
                metadata=cmd.metadata,
            )
            result = await self._post_with_retry(cmd, fingerprint, log)
        except DomainError as exc:
            outcome = _outcome_for(exc)
            TRANSFER_REQUESTS_TOTAL.labels(outcome=outcome).inc()
            log.info("transfer_rejected", outcome=outcome, error=str(exc))
            raise

        TRANSFER_REQUESTS_TOTAL.labels(outcome="replayed" if result.replayed else "posted").inc()
        return result

    def _validate(self, cmd: CreateTransferCommand) -> None:
        _require("request_id", cmd.request_id)
        _require("zone_id", cmd.zone_id)
        _require("from_account", cmd.from_account)
        _require("to_account", cmd.to_account)

        amount = cmd.amount_units
        if isinstance(amount, bool) or not isinstance(amount, int):
            raise InvalidAmountError(amount, "must be an integer number of minor units")
        if amount <= 0:
            raise InvalidAmountError(amount, "must be positive")
        if amount > MAX_AMOUNT_UNITS:
            raise InvalidAmountError(amount, "exceeds the signed 64-bit range")

        if cmd.metadata is not None and not isinstance(cmd.metadata, dict):
            raise InvalidMetadataError("must be a JSON object")

    async def _post_with_retry(
        self,
        cmd: CreateTransferCommand,
        fingerprint: str,
        log: structlog.stdlib.BoundLogger,
    ) -> TransferResult:
        for attempt in range(1, self._max_attempts + 1):
            try:
                return await self._post_once(cmd, fingerprint, log)
            except DuplicateRequestError:
                # A concurrent unit committed this request_id first. The next
                # attempt sees its row and resolves to replay or conflict.
                log.warning("request_id_insert_race", attempt=attempt)

        raise InternalError(
            f"Request {cmd.request_id} kept losing insert races after {self._max_attempts} attempts"
        )

    async def _post_once(
        self,
        cmd: CreateTransferCommand,
        fingerprint: str,
        log: structlog.stdlib.BoundLogger,
    ) -> TransferResult:
        try:
            async with self.uow:
                admission = await self._gate.admit(cmd.zone_id)

                # Retries resolve against the recorded fact even while the zone is DOWN.
                existing = await self.uow.transactions.find_by_request_id(cmd.request_id)
                if existing is not None:
                    if existing.payload_hash != fingerprint:
                        log.warning("idempotency_conflict", transaction_id=existing.id)
                        raise IdempotencyConflictError(cmd.request_id)
                    await self.uow.commit()
                    log.info("idempotent_replay", transaction_id=existing.id)
                    return TransferResult(
                        transaction_id=existing.id,
                        request_id=existing.request_id,
                        created_at=existing.created_at,
                        replayed=True,
                    )

                self._gate.raise_if_blocked(admission)
                log.info("transfer_gated", step="1/4", zone_status=admission.status.value)

                # Sorted order keeps row locks consistent across concurrent units.
                for account_id in sorted({cmd.from_account, cmd.to_account}):
                    await self.uow.accounts.ensure(account_id, cmd.zone_id)

                txn = Transaction.create(
                    request_id=cmd.request_id,
                    payload_hash=fingerprint,
                    from_account=cmd.from_account,
                    to_account=cmd.to_account,
                    amount_units=cmd.amount_units,
                    zone_id=cmd.zone_id,
                    metadata=cmd.metadata,
                )
                await self.uow.transactions.add_with_postings(txn)
                log.info("transfer_postings_created", step="2/4", transaction_id=txn.id)

                for account_id, delta in txn.balance_deltas():
                    await self.uow.balances.adjust(account_id, delta)
                log.info("transfer_balances_projected", step="3/4", transaction_id=txn.id)

                await self.uow.outbox.add(
                    aggregate_type=TRANSACTION_AGGREGATE,
                    aggregate_id=txn.id,
                    event_type=TRANSFER_POSTED_EVENT,
                    payload={
                        "transaction_id": txn.id,
                        "request_id": txn.request_id,
                        "from_account": txn.from_account,
                        "to_account": txn.to_account,
                        "amount_units": txn.amount_units,
                        "zone_id": txn.zone_id,
                        "created_at": txn.created_at.isoformat(),
                    },
                )

                await self.uow.commit()
        except SQLAlchemyError as exc:
            log.error("transfer_store_failure", error=str(exc), exc_info=True)
            raise InternalError("Transfer could not be recorded; nothing was persisted") from exc

        TRANSFERS_POSTED_TOTAL.inc()
        log.info("transfer_posted", step="4/4", transaction_id=txn.id)

        return TransferResult(
            transaction_id=txn.id,
            request_id=txn.request_id,
            created_at=txn.created_at,
        )


class ZoneStatusService:
    """Sole writer of zone status."""

    AUDIT_ACTION = "SET_ZONE_STATUS"

    def __init__(self, uow: UnitOfWork) -> None:
        self.uow = uow

    async def set_zone_status(
        self,
        zone_id: str,
        status: str | ZoneStatus,
        actor: str,
        reason: str | None = None,
    ) -> Zone:
        _require("zone_id", zone_id)
        _require("actor", actor)
        try:
            new_status = ZoneStatus(status)
        except ValueError as exc:
            raise InvalidZoneStatusError(str(status)) from exc

        log = logger.bind(zone_id=zone_id, status=new_status.value, actor=actor)

        try:
            async with self.uow:
                current = await self.uow.zones.get_for_update(zone_id)
                if current is None:
                    raise ZoneNotFoundError(zone_id)

                zone = await self.uow.zones.update_status(zone_id, new_status)
                if zone is None:
                    raise ZoneNotFoundError(zone_id)

                await self.uow.audit.add(
                    AuditLogEntry.create(
                        actor=actor,
                        action=self.AUDIT_ACTION,
                        target_type="zone",
                        target_id=zone_id,
                        reason=reason,
                        details={
                            "status": new_status.value,
                            "previous_status": current.status.value,
                        },
                    )
                )

                incident: Incident | None = None
                if new_status is ZoneStatus.DOWN:
                    incident = await self.uow.incidents.add(
                        Incident.create(
                            zone_id=zone_id,
                            severity=IncidentSeverity.CRITICAL,
                            title="Zone marked DOWN",
                            details={"reason": reason, "actor": actor},
                        )
                    )

                await self.uow.commit()
        except SQLAlchemyError as exc:
            log.error("zone_status_store_failure", error=str(exc), exc_info=True)
            raise InternalError(f"Status of zone {zone_id} could not be changed") from exc

        ZONE_STATUS_CHANGES_TOTAL.labels(status=new_status.value).inc()
        log.info("zone_status_changed", previous_status=current.status.value)
        if incident is not None:
            INCIDENTS_RAISED_TOTAL.labels(severity=incident.severity.value).inc()
            log.warning("incident_raised", incident_id=incident.id, severity=incident.severity.value)

        return zone


@dataclass
class IncidentActionCommand:
    action: str
    actor: str
    assignee: str = ""
    note: str = ""
    reason: str | None = None


class IncidentService:
    def __init__(self, uow: UnitOfWork) -> None:
        self.uow = uow

    async def apply_action(self, incident_id: str, cmd: IncidentActionCommand) -> Incident:
        _require("actor", cmd.actor)
        try:
            action = IncidentAction(cmd.action)
        except ValueError as exc:
            raise InvalidIncidentActionError(cmd.action, "expected ACK, ASSIGN or RESOLVE") from exc
        if action is IncidentAction.ASSIGN and not cmd.assignee:
            raise InvalidIncidentActionError(cmd.action, "assignee is required")

        try:
            async with self.uow:
                incident = await self.uow.incidents.get(incident_id, for_update=True)
                if incident is None:
                    raise IncidentNotFoundError(incident_id)

                details = dict(incident.details)
                if action is IncidentAction.ASSIGN:
                    details["assignee"] = cmd.assignee
                if cmd.note:
                    notes = list(details.get("notes") or [])
                    notes.append(
                        {
                            "at": datetime.now(UTC).isoformat(),
                            "actor": cmd.actor,
                            "note": cmd.note,
                            "action": action.value,
                        }
                    )
                    details["notes"] = notes

                if action is IncidentAction.ACK:
                    incident.status = IncidentStatus.ACK
                elif action is IncidentAction.RESOLVE:
                    incident.status = IncidentStatus.RESOLVED
                incident.details = details

                await self.uow.incidents.update(incident)
                await self.uow.audit.add(
                    AuditLogEntry.create(
                        actor=cmd.actor,
                        action=f"INCIDENT_{action.value}",
                        target_type="incident",
                        target_id=incident_id,
                        reason=cmd.reason,
                        details={
                            "assignee": cmd.assignee,
                            "note": cmd.note,
                            "status": incident.status.value,
                        },
                    )
                )
                await self.uow.commit()
        except SQLAlchemyError as exc:
            logger.error("incident_store_failure", incident_id=incident_id, error=str(exc), exc_info=True)
            raise InternalError(f"Incident {incident_id} could not be updated") from exc

        logger.info(
            "incident_action_applied",
            incident_id=incident_id,
            action=action.value,
            status=incident.status.value,
            actor=cmd.actor,
        )
        return incident


@dataclass(frozen=True)
class TransferPostedNotice:
    """The fields of a TransferPosted event that screening looks at."""

    event_id: str
    transaction_id: str
    zone_id: str
    amount_units: int


class FraudScreeningService:
    """Raises incidents for suspicious posted transfers.

    Redeliveries are absorbed by the inbox: the inbox row and any incident are
    written in one unit, so an event is screened exactly once per consumer.
    """

    LARGE_TRANSFER_RULE = "large_transfer"
    LARGE_TRANSFER_TITLE = "Large time transfer"

    def __init__(
        self,
        uow: UnitOfWork,
        consumer: str | None = None,
        large_transfer_units: int | None = None,
    ) -> None:
        self.uow = uow
        self.consumer = consumer or settings.fraud_consumer_name
        self.large_transfer_units = large_transfer_units or settings.fraud_large_transfer_units

    async def screen(self, notice: TransferPostedNotice) -> Incident | None:
        """Returns the incident raised, or None if the event was clean or already seen."""
        log = logger.bind(consumer=self.consumer, event_id=notice.event_id, transaction_id=notice.transaction_id)

        incident: Incident | None = None
        async with self.uow:
            if not await self.uow.inbox.record(self.consumer, notice.event_id):
                INBOX_EVENTS_TOTAL.labels(consumer=self.consumer, outcome="duplicate").inc()
                log.debug("inbox_event_duplicate")
                return None

            if notice.amount_units >= self.large_transfer_units:
                incident = await self.uow.incidents.add(
                    Incident.create(
                        zone_id=notice.zone_id,
                        severity=IncidentSeverity.WARN,
                        title=self.LARGE_TRANSFER_TITLE,
                        details={
                            "amount_units": notice.amount_units,
                            "rule": self.LARGE_TRANSFER_RULE,
                            "event_id": notice.event_id,
                        },
                        related_transaction_id=notice.transaction_id,
                    )
                )
            await self.uow.commit()

        INBOX_EVENTS_TOTAL.labels(consumer=self.consumer, outcome="processed").inc()
        if incident is not None:
            INCIDENTS_RAISED_TOTAL.labels(severity=incident.severity.value).inc()
            log.warning(
                "incident_raised",
                incident_id=incident.id,
                severity=incident.severity.value,
                rule=self.LARGE_TRANSFER_RULE,
                amount_units=notice.amount_units,
            )
        return incident


def _clamp(limit: int, maximum: int, default: int) -> int:
    if limit <= 0 or limit > maximum:
        return default
    return limit


class LedgerQueryService:
    """Read-only projections of persisted state."""

    def __init__(self, uow: UnitOfWork) -> None:
        self.uow = uow

    async def list_zones(self) -> list[Zone]:
        return await self.uow.zones.list_all()

    async def get_zone(self, zone_id: str) -> Zone:
        zone = await self.uow.zones.get(zone_id)
        if zone is None:
            raise ZoneNotFoundError(zone_id)
        return zone

    async def get_balance(self, account_id: str) -> Balance:
        balance = await self.uow.balances.get(account_id)
        if balance is None:
            raise BalanceNotFoundError(account_id)
        return balance

    async def list_balances(self, limit: int = 100) -> list[Balance]:
        return await self.uow.balances.list_recent(_clamp(limit, 500, 100))

    async def get_transaction(self, transaction_id: str) -> Transaction:
        txn = await self.uow.transactions.get(transaction_id)
        if txn is None:
            raise TransactionNotFoundError(transaction_id)
        return txn

    async def list_transactions(self, limit: int = 100) -> list[Transaction]:
        return await self.uow.transactions.list_recent(_clamp(limit, 500, 100))

    async def get_incident(self, incident_id: str) -> Incident:
        incident = await self.uow.incidents.get(incident_id)
        if incident is None:
            raise IncidentNotFoundError(incident_id)
        return incident

    async def list_incidents(self, zone_id: str | None = None, limit: int = 500) -> list[Incident]:
        if zone_id is not None:
            return await self.uow.incidents.list_by_zone(zone_id, _clamp(limit, 2000, 200))
        return await self.uow.incidents.list_recent(_clamp(limit, 2000, 500))

    async def list_audit_for_zone(self, zone_id: str, limit: int = 100) -> list[AuditLogEntry]:
        return await self.uow.audit.list_for_zone(zone_id, _clamp(limit, 500, 100))
