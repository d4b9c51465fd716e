from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from ledger_service.domain.models import AuditLogEntry
from ledger_service.infrastructure.repositories._json import dump_json, load_json


class AuditLogRepository:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def add(self, entry: AuditLogEntry) -> AuditLogEntry:
        await self._session.execute(
            text("""
                INSERT INTO audit_log
                    (id, actor, action, target_type, target_id, reason, details, created_at)
                VALUES
                    (:id, :actor, :action, :target_type, :target_id, :reason,
                     CAST(:details AS JSONB), :created_at)
            """),
            {
                "id": entry.id,
                "actor": entry.actor,
                "action": entry.action,
                "target_type": entry.target_type,
                "target_id": entry.target_id,
                "reason": entry.reason,
                "details": dump_json(entry.details),
                "created_at": entry.created_at,
            },
        )
        return entry

    async def list_for_zone(self, zone_id: str, limit: int = 100) -> list[AuditLogEntry]:
        """Entries targeting the zone itself or any of its incidents, newest first."""
        result = await self._session.execute(
            text("""
                SELECT a.id, a.actor, a.action, a.target_type, a.target_id,
                       a.reason, a.details, a.created_at
                FROM audit_log a
                WHERE (a.target_type = 'zone' AND a.target_id = :zone_id)
                   OR (a.target_type = 'incident' AND a.target_id IN (
                        SELECT i.id FROM incidents i WHERE i.zone_id = :zone_id
                   ))
                ORDER BY a.created_at DESC
                LIMIT :limit
            """),
            {"zone_id": zone_id, "limit": limit},
        )
        return [
            AuditLogEntry(
                id=row.id,
                actor=row.actor,
                action=row.action,
                target_type=row.target_type,
                target_id=row.target_id,
                reason=row.reason,
                details=load_json(row.details),
                created_at=row.created_at,
            )
            for row in result.fetchall()
        ]
