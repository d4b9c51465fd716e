"""Application layer - ledger engine and administrative use cases."""

from ledger_service.application.services import (
    CreateTransferCommand,
    FraudScreeningService,
    IncidentActionCommand,
    IncidentService,
    LedgerQueryService,
    TransferPostedNotice,
    TransferResult,
    TransferService,
    ZoneStatusService,
)
from ledger_service.application.unit_of_work import UnitOfWork
from ledger_service.application.zone_gate import Admission, ZoneGate


__all__ = [
    "Admission",
    "CreateTransferCommand",
    "FraudScreeningService",
    "IncidentActionCommand",
    "IncidentService",
    "LedgerQueryService",
    "TransferPostedNotice",
    "TransferResult",
    "TransferService",
    "UnitOfWork",
    "ZoneGate",
    "ZoneStatusService",
]
