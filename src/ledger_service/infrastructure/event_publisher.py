import asyncio
import contextlib
import json
import random
import re
from collections.abc import Sequence
from dataclasses import asdict, dataclass
from datetime import UTC, datetime
from typing import Any

import structlog
from aiokafka import AIOKafkaProducer
from aiokafka.errors import KafkaError

from ledger_service.config import settings
from ledger_service.domain.models import TRANSFER_POSTED_EVENT, OutboxEvent
from ledger_service.infrastructure.database import Database
from ledger_service.infrastructure.metrics import (
    OUTBOX_EVENTS_DEAD_LETTERED,
    OUTBOX_EVENTS_FAILED,
    OUTBOX_EVENTS_PUBLISHED,
    OUTBOX_PENDING_EVENTS,
)
from ledger_service.infrastructure.repositories.outbox import OutboxRepository


logger = structlog.get_logger()

_CAMEL_BOUNDARY = re.compile(r"(?<!^)(?=[A-Z])")

DEAD_LETTER_REASON = "max_retries_exceeded"


def topic_for(prefix: str, event_type: str) -> str:
    """``TransferPosted`` -> ``<prefix>.transfer_posted``."""
    return f"{prefix}.{_CAMEL_BOUNDARY.sub('_', event_type).lower()}"


def dead_letter_topic(prefix: str) -> str:
    return f"{prefix}.dlq"


def build_envelope(event: OutboxEvent) -> dict[str, Any]:
    """Wire form of an outbox row.

    The payload also carries ``event_id`` so consumers that only look at the
    payload can still deduplicate redeliveries.
    """
    payload = dict(event.payload)
    payload.setdefault("event_id", event.id)
    return {
        "event_id": event.id,
        "aggregate_type": event.aggregate_type,
        "aggregate_id": event.aggregate_id,
        "event_type": event.event_type,
        "payload": payload,
        "timestamp": event.created_at.isoformat(),
    }


@dataclass(frozen=True)
class RelayMessage:
    topic: str
    key: str
    value: dict[str, Any]
    headers: list[tuple[str, bytes]]


def message_for(event: OutboxEvent, prefix: str) -> RelayMessage:
    return RelayMessage(
        topic=topic_for(prefix, event.event_type),
        key=event.aggregate_id,
        value=build_envelope(event),
        headers=[("event_id", event.id.encode("utf-8"))],
    )


def dead_letter_for(event: OutboxEvent, prefix: str) -> RelayMessage:
    return RelayMessage(
        topic=dead_letter_topic(prefix),
        key=event.aggregate_id,
        value={
            **build_envelope(event),
            "retry_count": event.retry_count,
            "failed_at": datetime.now(UTC).isoformat(),
            "error": DEAD_LETTER_REASON,
            "last_error": event.last_error,
        },
        headers=[("event_id", event.id.encode("utf-8"))],
    )


@dataclass
class RelayReport:
    event_type: str
    claimed: int = 0
    published: int = 0
    rescheduled: int = 0
    dead_lettered: int = 0


class OutboxProcessor:
    """Relays committed ledger events from ``outbox_events`` to Kafka.

    Each event type is claimed separately with ``FOR UPDATE SKIP LOCKED``, so
    several relays can share the table and one backlog does not delay the
    others. Delivery is at least once; ``event_id`` travels in the envelope,
    the payload and a message header for consumer deduplication.

    A failed publish pushes the row's ``next_attempt_at`` out with capped
    exponential backoff. A row that has used up ``max_retries`` is sent to
    ``<prefix>.dlq`` and closed.
    """

    MAX_CONSECUTIVE_FAILURES = 10

    def __init__(
        self,
        database: Database,
        event_types: Sequence[str] = (TRANSFER_POSTED_EVENT,),
        producer: AIOKafkaProducer | None = None,
        batch_size: int | None = None,
        poll_interval: float | None = None,
        max_retries: int | None = None,
        base_delay: float | None = None,
        max_delay: float | None = None,
        topic_prefix: str | None = None,
    ) -> None:
        self._database = database
        self._event_types = tuple(event_types)
        self._producer = producer
        self._batch_size = batch_size or settings.outbox_batch_size
        self._poll_interval = poll_interval or settings.outbox_poll_interval_seconds
        self._max_retries = max_retries or settings.outbox_max_retries
        self._base_delay = base_delay or settings.outbox_base_delay_seconds
        self._max_delay = max_delay or settings.outbox_max_delay_seconds
        self._topic_prefix = topic_prefix or settings.kafka_topic_prefix
        self._stopping = asyncio.Event()
        self.consecutive_failures = 0

    @property
    def running(self) -> bool:
        return self._producer is not None and not self._stopping.is_set()

    async def start(self) -> None:
        """Run the relay until ``stop`` is called or the failure limit is hit."""
        if self._producer is None:
            self._producer = AIOKafkaProducer(
                bootstrap_servers=settings.kafka_brokers,
                value_serializer=lambda v: json.dumps(v).encode("utf-8"),
                key_serializer=lambda k: k.encode("utf-8"),
                acks="all",
                enable_idempotence=True,
            )
        self._stopping.clear()
        await self._producer.start()
        logger.info(
            "outbox_relay_started",
            event_types=list(self._event_types),
            batch_size=self._batch_size,
            topic_prefix=self._topic_prefix,
        )
        try:
            await self._run()
        finally:
            producer, self._producer = self._producer, None
            await producer.stop()
            logger.info("outbox_relay_stopped")

    def stop(self) -> None:
        self._stopping.set()

    async def _run(self) -> None:
        self.consecutive_failures = 0
        while not self._stopping.is_set():
            try:
                claimed = await self.relay_once()
            except Exception as exc:
                self.consecutive_failures += 1
                logger.error(
                    "outbox_relay_cycle_failed",
                    error=str(exc),
                    consecutive_failures=self.consecutive_failures,
                    exc_info=True,
                )
                if self.consecutive_failures >= self.MAX_CONSECUTIVE_FAILURES:
                    logger.critical("outbox_relay_giving_up", consecutive_failures=self.consecutive_failures)
                    return
                await self._idle()
                continue

            self.consecutive_failures = 0
            if claimed == 0:
                await self._idle()

    async def _idle(self) -> None:
        with contextlib.suppress(TimeoutError):
            await asyncio.wait_for(self._stopping.wait(), timeout=self._poll_interval)

    async def relay_once(self) -> int:
        """Relay one batch of every event type; returns the number of rows claimed."""
        claimed = 0
        for event_type in self._event_types:
            report = await self._relay_event_type(event_type)
            claimed += report.claimed
        return claimed

    async def _relay_event_type(self, event_type: str) -> RelayReport:
        report = RelayReport(event_type=event_type)
        async with self._database.session() as session:
            outbox = OutboxRepository(session)
            events = await outbox.claim_due(event_type, self._batch_size)
            report.claimed = len(events)

            published: list[str] = []
            for event in events:
                if event.retry_count >= self._max_retries:
                    await self._dead_letter(event, outbox, report)
                    continue

                error = await self._send(message_for(event, self._topic_prefix))
                if error is None:
                    OUTBOX_EVENTS_PUBLISHED.labels(event_type=event_type).inc()
                    published.append(event.id)
                    continue

                OUTBOX_EVENTS_FAILED.labels(event_type=event_type).inc()
                delay = self.backoff_delay(event.retry_count)
                await outbox.reschedule(event.id, delay, error)
                report.rescheduled += 1
                logger.warning(
                    "outbox_event_rescheduled",
                    event_id=event.id,
                    attempt=event.retry_count + 1,
                    next_attempt_in_seconds=round(delay, 3),
                    error=error,
                )

            if published:
                await outbox.mark_published(published)
            report.published = len(published)
            await session.commit()

            OUTBOX_PENDING_EVENTS.labels(event_type=event_type).set(await outbox.count_pending(event_type))

        if report.claimed:
            logger.info("outbox_batch_relayed", **asdict(report))
        return report

    async def _dead_letter(self, event: OutboxEvent, outbox: OutboxRepository, report: RelayReport) -> None:
        error = await self._send(dead_letter_for(event, self._topic_prefix))
        if error is not None:
            # The row stays open and is retried once the longest backoff has passed.
            await outbox.reschedule(event.id, self._max_delay, f"dead letter publish failed: {error}")
            report.rescheduled += 1
            logger.error("outbox_dead_letter_failed", event_id=event.id, error=error)
            return

        await outbox.mark_dead_lettered(event.id)
        OUTBOX_EVENTS_DEAD_LETTERED.labels(event_type=event.event_type).inc()
        report.dead_lettered += 1
        logger.warning(
            "outbox_event_dead_lettered",
            event_id=event.id,
            aggregate_id=event.aggregate_id,
            retry_count=event.retry_count,
            last_error=event.last_error,
        )

    async def _send(self, message: RelayMessage) -> str | None:
        """Publish one message; returns the broker error text on failure."""
        if self._producer is None:
            return "producer not started"
        try:
            await self._producer.send_and_wait(
                topic=message.topic,
                key=message.key,
                value=message.value,
                headers=message.headers,
            )
        except KafkaError as exc:
            return str(exc) or type(exc).__name__
        return None

    def backoff_delay(self, retry_count: int) -> float:
        """Seconds until the next attempt: capped exponential with up to 10% jitter."""
        delay = min(self._base_delay * (2**retry_count), self._max_delay)
        return delay + random.uniform(0, delay * 0.1)
