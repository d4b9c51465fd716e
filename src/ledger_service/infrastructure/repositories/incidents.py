from typing import Any

from sqlalchemy import Row, text
from sqlalchemy.ext.asyncio import AsyncSession

from ledger_service.domain.models import Incident, IncidentSeverity, IncidentStatus
from ledger_service.infrastructure.repositories._json import dump_json, load_json


_COLUMNS = """
    id, zone_id, related_transaction_id, severity, status, title, details, detected_at
"""


def _to_incident(row: Row[Any]) -> Incident:
    return Incident(
        id=row.id,
        zone_id=row.zone_id,
        related_transaction_id=row.related_transaction_id,
        severity=IncidentSeverity(row.severity),
        status=IncidentStatus(row.status),
        title=row.title,
        details=load_json(row.details),
        detected_at=row.detected_at,
    )


class IncidentRepository:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def add(self, incident: Incident) -> Incident:
        await self._session.execute(
            text("""
                INSERT INTO incidents
                    (id, zone_id, related_transaction_id, severity, status,
                     title, details, detected_at)
                VALUES
                    (:id, :zone_id, :related_transaction_id, :severity, :status,
                     :title, CAST(:details AS JSONB), :detected_at)
            """),
            {
                "id": incident.id,
                "zone_id": incident.zone_id,
                "related_transaction_id": incident.related_transaction_id,
                "severity": incident.severity.value,
                "status": incident.status.value,
                "title": incident.title,
                "details": dump_json(incident.details),
                "detected_at": incident.detected_at,
            },
        )
        return incident

    async def get(self, incident_id: str, for_update: bool = False) -> Incident | None:
        query = f"SELECT {_COLUMNS} FROM incidents WHERE id = :id"
        if for_update:
            query += " FOR UPDATE"
        result = await self._session.execute(text(query), {"id": incident_id})
        row = result.fetchone()
        return _to_incident(row) if row else None

    async def update(self, incident: Incident) -> None:
        await self._session.execute(
            text("""
                UPDATE incidents
                SET status = :status, details = CAST(:details AS JSONB)
                WHERE id = :id
            """),
            {
                "id": incident.id,
                "status": incident.status.value,
                "details": dump_json(incident.details),
            },
        )

    async def list_recent(self, limit: int = 500) -> list[Incident]:
        result = await self._session.execute(
            text(f"SELECT {_COLUMNS} FROM incidents ORDER BY detected_at DESC LIMIT :limit"),
            {"limit": limit},
        )
        return [_to_incident(row) for row in result.fetchall()]

    async def list_by_zone(self, zone_id: str, limit: int = 200) -> list[Incident]:
        result = await self._session.execute(
            text(f"""
                SELECT {_COLUMNS}
                FROM incidents
                WHERE zone_id = :zone_id
                ORDER BY detected_at DESC
                LIMIT :limit
            """),
            {"zone_id": zone_id, "limit": limit},
        )
        return [_to_incident(row) for row in result.fetchall()]
