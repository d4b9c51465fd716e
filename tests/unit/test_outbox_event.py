"""Unit tests for OutboxEvent and the relay's envelope helpers."""

from datetime import UTC, datetime

from ledger_service.domain.models import OutboxEvent
from ledger_service.infrastructure.event_publisher import (
    build_envelope,
    dead_letter_for,
    message_for,
    topic_for,
)


class TestOutboxEvent:
    def test_create_factory_generates_ulid(self) -> None:
        event = OutboxEvent.create(
            aggregate_type="Transaction",
            aggregate_id="01HW8BT0000000000000000001",
            event_type="TransferPosted",
            payload={"transaction_id": "01HW8BT0000000000000000001"},
        )

        assert len(event.id) == 26
        assert event.published_at is None
        assert event.retry_count == 0

    def test_defaults(self) -> None:
        event = OutboxEvent(
            id="01HW8B00000000000000000001",
            aggregate_type="Transaction",
            aggregate_id="01HW8BT0000000000000000001",
            event_type="TransferPosted",
            payload={},
        )

        assert event.published_at is None
        assert event.retry_count == 0
        assert event.created_at.tzinfo is not None


class TestTopicFor:
    def test_camel_case_becomes_snake_case(self) -> None:
        assert topic_for("ledger", "TransferPosted") == "ledger.transfer_posted"

    def test_single_word(self) -> None:
        assert topic_for("ledger", "Posted") == "ledger.posted"

    def test_custom_prefix(self) -> None:
        assert topic_for("staging-ledger", "TransferPosted") == "staging-ledger.transfer_posted"


def posted_event(**overrides: object) -> OutboxEvent:
    fields: dict = {
        "id": "01HW8B00000000000000000001",
        "aggregate_type": "Transaction",
        "aggregate_id": "01HW8BT0000000000000000001",
        "event_type": "TransferPosted",
        "payload": {"amount_units": 10},
        "created_at": datetime(2024, 6, 15, 10, 30, tzinfo=UTC),
    }
    fields.update(overrides)
    return OutboxEvent(**fields)


class TestBuildEnvelope:
    def test_envelope_fields(self) -> None:
        assert build_envelope(posted_event()) == {
            "event_id": "01HW8B00000000000000000001",
            "aggregate_type": "Transaction",
            "aggregate_id": "01HW8BT0000000000000000001",
            "event_type": "TransferPosted",
            "payload": {"amount_units": 10, "event_id": "01HW8B00000000000000000001"},
            "timestamp": "2024-06-15T10:30:00+00:00",
        }

    def test_payload_event_id_is_not_overwritten(self) -> None:
        event = posted_event(payload={"event_id": "01HW8BX0000000000000000009"})

        assert build_envelope(event)["payload"]["event_id"] == "01HW8BX0000000000000000009"

    def test_stored_payload_is_left_untouched(self) -> None:
        event = posted_event()

        build_envelope(event)

        assert event.payload == {"amount_units": 10}


class TestRelayMessages:
    def test_message_is_keyed_by_aggregate(self) -> None:
        message = message_for(posted_event(), "ledger")

        assert message.topic == "ledger.transfer_posted"
        assert message.key == "01HW8BT0000000000000000001"
        assert message.headers == [("event_id", b"01HW8B00000000000000000001")]

    def test_dead_letter_carries_failure_details(self) -> None:
        event = posted_event(retry_count=5, last_error="KafkaTimeoutError")

        message = dead_letter_for(event, "ledger")

        assert message.topic == "ledger.dlq"
        assert message.value["error"] == "max_retries_exceeded"
        assert message.value["last_error"] == "KafkaTimeoutError"
        assert message.value["retry_count"] == 5
        assert message.value["payload"]["event_id"] == event.id
