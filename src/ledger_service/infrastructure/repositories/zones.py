from datetime import UTC, datetime
from typing import Any

from sqlalchemy import Row, text
from sqlalchemy.ext.asyncio import AsyncSession

from ledger_service.domain.models import Zone, ZoneStatus


def _to_zone(row: Row[Any]) -> Zone:
    return Zone(
        id=row.id,
        name=row.name,
        status=ZoneStatus(row.status),
        updated_at=row.updated_at,
    )


class ZoneRepository:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get(self, zone_id: str) -> Zone | None:
        result = await self._session.execute(
            text("""
                SELECT id, name, status, updated_at
                FROM zones
                WHERE id = :id
            """),
            {"id": zone_id},
        )
        row = result.fetchone()
        return _to_zone(row) if row else None

    async def get_status(self, zone_id: str) -> ZoneStatus | None:
        # FOR SHARE holds off a concurrent status change until this unit ends,
        # so an admitted transfer cannot commit after its zone went DOWN.
        result = await self._session.execute(
            text("""
                SELECT status
                FROM zones
                WHERE id = :id
                FOR SHARE
            """),
            {"id": zone_id},
        )
        row = result.fetchone()
        return ZoneStatus(row.status) if row else None

    async def get_for_update(self, zone_id: str) -> Zone | None:
        result = await self._session.execute(
            text("""
                SELECT id, name, status, updated_at
                FROM zones
                WHERE id = :id
                FOR UPDATE
            """),
            {"id": zone_id},
        )
        row = result.fetchone()
        return _to_zone(row) if row else None

    async def list_all(self) -> list[Zone]:
        result = await self._session.execute(
            text("""
                SELECT id, name, status, updated_at
                FROM zones
                ORDER BY id
            """),
        )
        return [_to_zone(row) for row in result.fetchall()]

    async def update_status(self, zone_id: str, status: ZoneStatus) -> Zone | None:
        result = await self._session.execute(
            text("""
                UPDATE zones
                SET status = :status, updated_at = :updated_at
                WHERE id = :id
                RETURNING id, name, status, updated_at
            """),
            {
                "id": zone_id,
                "status": status.value,
                "updated_at": datetime.now(UTC),
            },
        )
        row = result.fetchone()
        return _to_zone(row) if row else None
