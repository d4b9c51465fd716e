"""Unit tests for incident workflow actions."""

from unittest.mock import AsyncMock

import pytest

from ledger_service.application.services import (
    IncidentActionCommand,
    IncidentService,
    ZoneStatusService,
)
from ledger_service.domain.exceptions import (
    IncidentNotFoundError,
    InvalidIncidentActionError,
    MissingFieldError,
)
from ledger_service.domain.models import Incident, IncidentStatus
from tests.fakes import FakeUnitOfWork


class TestApplyAction:
    @pytest.fixture
    def service(self, mock_uow: AsyncMock) -> IncidentService:
        return IncidentService(mock_uow)

    @pytest.fixture(autouse=True)
    def incident_exists(self, mock_uow: AsyncMock, sample_incident: Incident) -> None:
        mock_uow.incidents.get.return_value = sample_incident

    async def test_ack(self, service: IncidentService, mock_uow: AsyncMock, sample_incident: Incident) -> None:
        incident = await service.apply_action(sample_incident.id, IncidentActionCommand("ACK", actor="oncall"))

        assert incident.status is IncidentStatus.ACK
        mock_uow.incidents.get.assert_called_once_with(sample_incident.id, for_update=True)
        mock_uow.incidents.update.assert_called_once()
        entry = mock_uow.audit.add.call_args[0][0]
        assert entry.action == "INCIDENT_ACK"
        assert entry.target_type == "incident"
        assert entry.target_id == sample_incident.id
        mock_uow.commit.assert_called_once()

    async def test_assign_records_assignee_without_status_change(
        self,
        service: IncidentService,
        sample_incident: Incident,
    ) -> None:
        incident = await service.apply_action(
            sample_incident.id,
            IncidentActionCommand("ASSIGN", actor="lead", assignee="sre-bob"),
        )

        assert incident.status is IncidentStatus.OPEN
        assert incident.details["assignee"] == "sre-bob"
        assert incident.details["reason"] == "maintenance"

    async def test_resolve_with_note_appends_note(
        self,
        service: IncidentService,
        sample_incident: Incident,
    ) -> None:
        incident = await service.apply_action(
            sample_incident.id,
            IncidentActionCommand("RESOLVE", actor="oncall", note="failover complete"),
        )

        assert incident.status is IncidentStatus.RESOLVED
        [note] = incident.details["notes"]
        assert note["actor"] == "oncall"
        assert note["note"] == "failover complete"
        assert note["action"] == "RESOLVE"

    async def test_assign_requires_assignee(self, service: IncidentService, mock_uow: AsyncMock) -> None:
        with pytest.raises(InvalidIncidentActionError):
            await service.apply_action("any", IncidentActionCommand("ASSIGN", actor="lead"))

        mock_uow.incidents.get.assert_not_called()

    async def test_unknown_action(self, service: IncidentService) -> None:
        with pytest.raises(InvalidIncidentActionError):
            await service.apply_action("any", IncidentActionCommand("ESCALATE", actor="lead"))

    async def test_actor_is_required(self, service: IncidentService) -> None:
        with pytest.raises(MissingFieldError):
            await service.apply_action("any", IncidentActionCommand("ACK", actor=""))

    async def test_missing_incident(self, service: IncidentService, mock_uow: AsyncMock) -> None:
        mock_uow.incidents.get.return_value = None

        with pytest.raises(IncidentNotFoundError):
            await service.apply_action("missing", IncidentActionCommand("ACK", actor="oncall"))

        mock_uow.audit.add.assert_not_called()
        mock_uow.commit.assert_not_called()


class TestIncidentLifecycle:
    async def test_down_incident_through_resolution(self, fake_uow: FakeUnitOfWork) -> None:
        await ZoneStatusService(fake_uow).set_zone_status("zone-eu", "DOWN", actor="ops", reason="outage")
        [incident_id] = fake_uow.state.incidents
        service = IncidentService(fake_uow)

        await service.apply_action(incident_id, IncidentActionCommand("ACK", actor="oncall"))
        await service.apply_action(incident_id, IncidentActionCommand("ASSIGN", actor="lead", assignee="sre-amy"))
        await service.apply_action(incident_id, IncidentActionCommand("RESOLVE", actor="sre-amy", note="restored"))

        stored = fake_uow.state.incidents[incident_id]
        assert stored.status is IncidentStatus.RESOLVED
        assert stored.details["assignee"] == "sre-amy"
        assert stored.details["reason"] == "outage"
        assert [e.action for e in fake_uow.state.audit] == [
            "SET_ZONE_STATUS",
            "INCIDENT_ACK",
            "INCIDENT_ASSIGN",
            "INCIDENT_RESOLVE",
        ]
