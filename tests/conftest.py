"""Shared pytest fixtures for ledger service tests."""

from datetime import UTC, datetime
from unittest.mock import AsyncMock, MagicMock

import pytest

from ledger_service.application.services import CreateTransferCommand
from ledger_service.application.unit_of_work import UnitOfWork
from ledger_service.domain.models import (
    Incident,
    IncidentSeverity,
    TransactionRef,
    Zone,
    ZoneStatus,
)
from tests.fakes import FakeUnitOfWork, LedgerState


@pytest.fixture
def mock_zone_repository() -> AsyncMock:
    """Create mock ZoneRepository with zone-eu in OK state."""
    repo = AsyncMock()
    repo.get_status = AsyncMock(return_value=ZoneStatus.OK)
    repo.get = AsyncMock(return_value=None)
    repo.get_for_update = AsyncMock(return_value=None)
    repo.list_all = AsyncMock(return_value=[])
    repo.update_status = AsyncMock(return_value=None)
    return repo


@pytest.fixture
def mock_account_repository() -> AsyncMock:
    repo = AsyncMock()
    repo.ensure = AsyncMock(return_value=None)
    return repo


@pytest.fixture
def mock_transaction_repository() -> AsyncMock:
    repo = AsyncMock()
    repo.find_by_request_id = AsyncMock(return_value=None)
    repo.add_with_postings = AsyncMock(return_value=None)
    repo.get = AsyncMock(return_value=None)
    repo.list_recent = AsyncMock(return_value=[])
    return repo


@pytest.fixture
def mock_balance_repository() -> AsyncMock:
    repo = AsyncMock()
    repo.get = AsyncMock(return_value=None)
    repo.adjust = AsyncMock(return_value=None)
    repo.list_recent = AsyncMock(return_value=[])
    return repo


@pytest.fixture
def mock_outbox_repository() -> AsyncMock:
    repo = AsyncMock()
    repo.add = AsyncMock(return_value=MagicMock())
    repo.claim_due = AsyncMock(return_value=[])
    repo.mark_published = AsyncMock(return_value=None)
    repo.reschedule = AsyncMock(return_value=None)
    return repo


@pytest.fixture
def mock_audit_repository() -> AsyncMock:
    repo = AsyncMock()
    repo.add = AsyncMock(side_effect=lambda entry: entry)
    repo.list_for_zone = AsyncMock(return_value=[])
    return repo


@pytest.fixture
def mock_incident_repository() -> AsyncMock:
    repo = AsyncMock()
    repo.add = AsyncMock(side_effect=lambda incident: incident)
    repo.get = AsyncMock(return_value=None)
    repo.update = AsyncMock(return_value=None)
    repo.list_recent = AsyncMock(return_value=[])
    repo.list_by_zone = AsyncMock(return_value=[])
    return repo


@pytest.fixture
def mock_inbox_repository() -> AsyncMock:
    repo = AsyncMock()
    repo.record = AsyncMock(return_value=True)
    return repo


@pytest.fixture
def mock_uow(
    mock_zone_repository: AsyncMock,
    mock_account_repository: AsyncMock,
    mock_transaction_repository: AsyncMock,
    mock_balance_repository: AsyncMock,
    mock_outbox_repository: AsyncMock,
    mock_audit_repository: AsyncMock,
    mock_incident_repository: AsyncMock,
    mock_inbox_repository: AsyncMock,
) -> AsyncMock:
    """Create mock Unit of Work with all repositories."""
    uow = AsyncMock(spec=UnitOfWork)
    uow.zones = mock_zone_repository
    uow.accounts = mock_account_repository
    uow.transactions = mock_transaction_repository
    uow.balances = mock_balance_repository
    uow.outbox = mock_outbox_repository
    uow.audit = mock_audit_repository
    uow.incidents = mock_incident_repository
    uow.inbox = mock_inbox_repository
    uow.commit = AsyncMock(return_value=None)
    uow.rollback = AsyncMock(return_value=None)

    uow.__aenter__ = AsyncMock(return_value=uow)
    uow.__aexit__ = AsyncMock(return_value=None)

    return uow


@pytest.fixture
def ledger_state() -> LedgerState:
    """Zones: zone-eu OK, zone-na DEGRADED, zone-ap DOWN."""
    return LedgerState.with_zones(
        zone_eu=ZoneStatus.OK,
        zone_na=ZoneStatus.DEGRADED,
        zone_ap=ZoneStatus.DOWN,
    )


@pytest.fixture
def fake_uow(ledger_state: LedgerState) -> FakeUnitOfWork:
    return FakeUnitOfWork(ledger_state)


@pytest.fixture
def transfer_command() -> CreateTransferCommand:
    return CreateTransferCommand(
        request_id="req-001",
        from_account="acct-alice",
        to_account="acct-bob",
        amount_units=2500,
        zone_id="zone-eu",
        metadata={"memo": "rent", "tags": ["home", "monthly"]},
    )


@pytest.fixture
def sample_zone() -> Zone:
    return Zone(
        id="zone-eu",
        name="Europe",
        status=ZoneStatus.OK,
        updated_at=datetime.now(UTC),
    )


@pytest.fixture
def sample_incident() -> Incident:
    return Incident(
        id="01HW8BI0000000000000000001",
        zone_id="zone-eu",
        severity=IncidentSeverity.CRITICAL,
        title="Zone marked DOWN",
        details={"reason": "maintenance", "actor": "ops@example.com"},
        detected_at=datetime.now(UTC),
    )


def create_transaction_ref(
    transaction_id: str = "01HW8BT0000000000000000001",
    request_id: str = "req-001",
    payload_hash: str = "0" * 64,
) -> TransactionRef:
    """Helper to create TransactionRef with custom values."""
    return TransactionRef(
        id=transaction_id,
        request_id=request_id,
        payload_hash=payload_hash,
        created_at=datetime.now(UTC),
    )
