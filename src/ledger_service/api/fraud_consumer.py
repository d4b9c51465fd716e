import asyncio
import json
from collections.abc import Sequence

import structlog
from aiokafka import AIOKafkaConsumer, ConsumerRecord, TopicPartition
from aiokafka.errors import KafkaError
from sqlalchemy.exc import SQLAlchemyError

from ledger_service.application.services import FraudScreeningService, TransferPostedNotice
from ledger_service.application.unit_of_work import UnitOfWork
from ledger_service.config import settings
from ledger_service.domain.models import TRANSFER_POSTED_EVENT, Incident
from ledger_service.infrastructure.database import Database
from ledger_service.infrastructure.event_publisher import topic_for


logger = structlog.get_logger()


def parse_notice(value: bytes | None, headers: Sequence[tuple[str, bytes]] = ()) -> TransferPostedNotice | None:
    """Read a relayed TransferPosted envelope.

    ``event_id`` is taken from the payload first, then the envelope, then the
    message header. Returns None for anything that cannot be screened.
    """
    try:
        envelope = json.loads(value or b"")
    except (UnicodeDecodeError, json.JSONDecodeError):
        return None
    if not isinstance(envelope, dict):
        return None

    payload = envelope.get("payload", envelope)
    if not isinstance(payload, dict):
        return None

    event_id = payload.get("event_id") or envelope.get("event_id")
    if not event_id:
        event_id = next((v.decode("utf-8") for k, v in headers if k == "event_id" and v), None)

    amount = payload.get("amount_units")
    transaction_id = payload.get("transaction_id")
    zone_id = payload.get("zone_id")
    if not (event_id and transaction_id and zone_id) or isinstance(amount, bool) or not isinstance(amount, int):
        return None

    return TransferPostedNotice(
        event_id=str(event_id),
        transaction_id=str(transaction_id),
        zone_id=str(zone_id),
        amount_units=amount,
    )


class FraudConsumer:
    """Screens posted transfers read from ``<prefix>.transfer_posted``.

    Offsets are committed only after a message's unit has committed. When the
    store fails, the partition is rewound to the failed message so it is read
    again; the inbox makes that redelivery harmless.
    """

    def __init__(
        self,
        database: Database,
        consumer: AIOKafkaConsumer | None = None,
        name: str | None = None,
        topic_prefix: str | None = None,
        poll_timeout_ms: int = 1000,
        max_records: int = 10,
    ) -> None:
        self._database = database
        self._consumer = consumer
        self.name = name or settings.fraud_consumer_name
        self.topic = topic_for(topic_prefix or settings.kafka_topic_prefix, TRANSFER_POSTED_EVENT)
        self._poll_timeout_ms = poll_timeout_ms
        self._max_records = max_records
        self._stopping = asyncio.Event()

    @property
    def running(self) -> bool:
        return self._consumer is not None and not self._stopping.is_set()

    async def start(self) -> None:
        if self._consumer is None:
            self._consumer = AIOKafkaConsumer(
                self.topic,
                bootstrap_servers=settings.kafka_brokers,
                group_id=self.name,
                auto_offset_reset="earliest",
                enable_auto_commit=False,
            )
        self._stopping.clear()
        await self._consumer.start()
        logger.info("fraud_consumer_started", topic=self.topic, group_id=self.name)
        try:
            while not self._stopping.is_set():
                try:
                    batches = await self._consumer.getmany(
                        timeout_ms=self._poll_timeout_ms, max_records=self._max_records
                    )
                except KafkaError as exc:
                    logger.warning("fraud_consumer_fetch_failed", error=str(exc))
                    await asyncio.sleep(1)
                    continue
                for partition, messages in batches.items():
                    await self.consume(partition, messages)
        finally:
            consumer, self._consumer = self._consumer, None
            await consumer.stop()
            logger.info("fraud_consumer_stopped")

    def stop(self) -> None:
        self._stopping.set()

    async def consume(self, partition: TopicPartition, messages: Sequence[ConsumerRecord]) -> int:
        """Screen messages in offset order; returns how many were handled."""
        handled = 0
        for message in messages:
            try:
                await self.handle(message.value, message.headers)
            except SQLAlchemyError as exc:
                logger.warning(
                    "fraud_screening_failed",
                    partition=partition.partition,
                    offset=message.offset,
                    error=str(exc),
                )
                self._consumer.seek(partition, message.offset)
                break
            await self._consumer.commit({partition: message.offset + 1})
            handled += 1
        return handled

    async def handle(self, value: bytes | None, headers: Sequence[tuple[str, bytes]] = ()) -> Incident | None:
        notice = parse_notice(value, headers)
        if notice is None:
            logger.warning("fraud_message_skipped", reason="unreadable TransferPosted envelope")
            return None

        async with self._database.session() as session:
            service = FraudScreeningService(UnitOfWork(session), consumer=self.name)
            return await service.screen(notice)
