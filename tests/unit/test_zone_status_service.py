"""Unit tests for ZoneStatusService and its coupling to the transfer gate."""

from unittest.mock import AsyncMock

import pytest
from sqlalchemy.exc import SQLAlchemyError

from ledger_service.application.services import (
    CreateTransferCommand,
    TransferService,
    ZoneStatusService,
)
from ledger_service.domain.exceptions import (
    IdempotencyConflictError,
    InternalError,
    InvalidZoneStatusError,
    MissingFieldError,
    ZoneNotFoundError,
    ZoneUnavailableError,
)
from ledger_service.domain.models import (
    Incident,
    IncidentSeverity,
    IncidentStatus,
    Zone,
    ZoneStatus,
)
from tests.fakes import FakeUnitOfWork


class TestSetZoneStatus:
    @pytest.fixture
    def service(self, mock_uow: AsyncMock) -> ZoneStatusService:
        return ZoneStatusService(mock_uow)

    @pytest.fixture(autouse=True)
    def zone_exists(self, mock_uow: AsyncMock, sample_zone: Zone) -> None:
        mock_uow.zones.get_for_update.return_value = sample_zone

        async def update_status(zone_id: str, status: ZoneStatus) -> Zone:
            return Zone(id=zone_id, name=sample_zone.name, status=status)

        mock_uow.zones.update_status.side_effect = update_status

    async def test_degraded_updates_status_and_audits(
        self,
        service: ZoneStatusService,
        mock_uow: AsyncMock,
    ) -> None:
        zone = await service.set_zone_status("zone-eu", "DEGRADED", actor="ops@example.com", reason="latency")

        assert zone.status is ZoneStatus.DEGRADED
        mock_uow.zones.update_status.assert_called_once_with("zone-eu", ZoneStatus.DEGRADED)
        entry = mock_uow.audit.add.call_args[0][0]
        assert entry.action == "SET_ZONE_STATUS"
        assert entry.target_type == "zone"
        assert entry.target_id == "zone-eu"
        assert entry.actor == "ops@example.com"
        assert entry.reason == "latency"
        assert entry.details == {"status": "DEGRADED", "previous_status": "OK"}
        mock_uow.incidents.add.assert_not_called()
        mock_uow.commit.assert_called_once()

    async def test_down_raises_critical_incident(
        self,
        service: ZoneStatusService,
        mock_uow: AsyncMock,
    ) -> None:
        await service.set_zone_status("zone-eu", ZoneStatus.DOWN, actor="ops@example.com", reason="fire drill")

        incident: Incident = mock_uow.incidents.add.call_args[0][0]
        assert incident.zone_id == "zone-eu"
        assert incident.severity is IncidentSeverity.CRITICAL
        assert incident.status is IncidentStatus.OPEN
        assert incident.title == "Zone marked DOWN"
        assert incident.details == {"reason": "fire drill", "actor": "ops@example.com"}
        mock_uow.commit.assert_called_once()

    async def test_repeated_down_raises_another_incident(
        self,
        service: ZoneStatusService,
        mock_uow: AsyncMock,
    ) -> None:
        await service.set_zone_status("zone-eu", "DOWN", actor="ops")
        await service.set_zone_status("zone-eu", "DOWN", actor="ops")

        assert mock_uow.incidents.add.call_count == 2

    async def test_unknown_zone(self, service: ZoneStatusService, mock_uow: AsyncMock) -> None:
        mock_uow.zones.get_for_update.return_value = None

        with pytest.raises(ZoneNotFoundError):
            await service.set_zone_status("zone-xx", "OK", actor="ops")

        mock_uow.audit.add.assert_not_called()
        mock_uow.commit.assert_not_called()

    @pytest.mark.parametrize("status", ["BROKEN", "ok", ""])
    async def test_invalid_status(self, service: ZoneStatusService, mock_uow: AsyncMock, status: str) -> None:
        with pytest.raises(InvalidZoneStatusError):
            await service.set_zone_status("zone-eu", status, actor="ops")

        mock_uow.zones.get_for_update.assert_not_called()

    async def test_actor_is_required(self, service: ZoneStatusService) -> None:
        with pytest.raises(MissingFieldError):
            await service.set_zone_status("zone-eu", "OK", actor="")

    async def test_audit_failure_rolls_back_status_change(
        self,
        service: ZoneStatusService,
        mock_uow: AsyncMock,
    ) -> None:
        mock_uow.audit.add.side_effect = SQLAlchemyError("audit table locked")

        with pytest.raises(InternalError):
            await service.set_zone_status("zone-eu", "DOWN", actor="ops")

        mock_uow.incidents.add.assert_not_called()
        mock_uow.commit.assert_not_called()


class TestZoneGateCoupling:
    async def test_transfers_blocked_while_down_and_resume_after_ok(
        self,
        fake_uow: FakeUnitOfWork,
    ) -> None:
        zones = ZoneStatusService(fake_uow)
        transfers = TransferService(fake_uow)
        cmd = CreateTransferCommand("req-gate", "a", "b", 10, "zone-eu")

        await zones.set_zone_status("zone-eu", "DOWN", actor="ops", reason="outage")
        with pytest.raises(ZoneUnavailableError):
            await transfers.create_transfer(cmd)

        await zones.set_zone_status("zone-eu", "OK", actor="ops")
        result = await transfers.create_transfer(cmd)

        assert result.replayed is False
        assert len(fake_uow.state.transactions) == 1

    async def test_posted_transfer_replays_while_down(self, fake_uow: FakeUnitOfWork) -> None:
        transfers = TransferService(fake_uow)
        cmd = CreateTransferCommand("req-replay", "a", "b", 10, "zone-eu")
        first = await transfers.create_transfer(cmd)

        await ZoneStatusService(fake_uow).set_zone_status("zone-eu", "DOWN", actor="ops")
        replay = await transfers.create_transfer(cmd)

        assert replay.replayed is True
        assert replay.transaction_id == first.transaction_id
        assert len(fake_uow.state.transactions) == 1
        assert fake_uow.state.balances["b"].balance_units == 10

    async def test_changed_retry_conflicts_while_down(self, fake_uow: FakeUnitOfWork) -> None:
        transfers = TransferService(fake_uow)
        await transfers.create_transfer(CreateTransferCommand("req-changed", "a", "b", 10, "zone-eu"))

        await ZoneStatusService(fake_uow).set_zone_status("zone-eu", "DOWN", actor="ops")

        with pytest.raises(IdempotencyConflictError):
            await transfers.create_transfer(CreateTransferCommand("req-changed", "a", "b", 11, "zone-eu"))

        assert len(fake_uow.state.transactions) == 1

    async def test_down_transition_leaves_audit_and_incident(self, fake_uow: FakeUnitOfWork) -> None:
        await ZoneStatusService(fake_uow).set_zone_status("zone-na", "DOWN", actor="ops", reason="power")

        state = fake_uow.state
        assert state.zones["zone-na"].status is ZoneStatus.DOWN
        assert [e.action for e in state.audit] == ["SET_ZONE_STATUS"]
        assert state.audit[0].details["previous_status"] == "DEGRADED"
        [incident] = state.incidents.values()
        assert incident.zone_id == "zone-na"
        assert incident.severity is IncidentSeverity.CRITICAL
