from dataclasses import dataclass

import structlog

from ledger_service.application.unit_of_work import UnitOfWork
from ledger_service.domain.exceptions import UnknownZoneError, ZoneUnavailableError
from ledger_service.domain.models import ZoneStatus


logger = structlog.get_logger()


@dataclass(frozen=True)
class Admission:
    zone_id: str
    status: ZoneStatus
    allowed: bool
    reason: str | None = None


def admission_for(zone_id: str, status: ZoneStatus) -> Admission:
    """Admission policy: only DOWN blocks. DEGRADED is informational."""
    if status is ZoneStatus.DOWN:
        return Admission(zone_id=zone_id, status=status, allowed=False, reason="zone down")
    return Admission(zone_id=zone_id, status=status, allowed=True)


class ZoneGate:
    """Decides whether new transfers may enter a zone.

    Status is read through the caller's unit of work on every call; nothing
    is cached between requests.
    """

    def __init__(self, uow: UnitOfWork) -> None:
        self.uow = uow

    async def admit(self, zone_id: str) -> Admission:
        status = await self.uow.zones.get_status(zone_id)
        if status is None:
            raise UnknownZoneError(zone_id)
        return admission_for(zone_id, status)

    async def ensure_admitted(self, zone_id: str) -> Admission:
        admission = await self.admit(zone_id)
        self.raise_if_blocked(admission)
        return admission

    @staticmethod
    def raise_if_blocked(admission: Admission) -> None:
        """Reject new work for a blocked zone.

        Callers that resolve retries of already-recorded requests read the
        admission first and apply it only once the request is known to be new.
        """
        if not admission.allowed:
            logger.info("zone_gate_blocked", zone_id=admission.zone_id, status=admission.status.value)
            raise ZoneUnavailableError(admission.zone_id, admission.reason or "blocked")
