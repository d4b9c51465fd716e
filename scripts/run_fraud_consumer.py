#!/usr/bin/env python3
"""Run the fraud screening consumer as a standalone worker.

SIGINT/SIGTERM finish the current fetch, then the Kafka consumer and the
database pool are closed.
"""
import asyncio
import signal

import structlog

from ledger_service.api.fraud_consumer import FraudConsumer
from ledger_service.config import settings
from ledger_service.infrastructure.database import Database
from ledger_service.logging import configure_logging


logger = structlog.get_logger()


async def main() -> None:
    configure_logging(level=settings.log_level, log_format=settings.log_format)

    database = Database(settings.database_url)
    consumer = FraudConsumer(database=database)

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, consumer.stop)

    logger.info(
        "fraud_consumer_worker_starting",
        topic=consumer.topic,
        group_id=consumer.name,
        kafka_brokers=settings.kafka_brokers,
        large_transfer_units=settings.fraud_large_transfer_units,
    )
    try:
        await consumer.start()
    finally:
        await database.close()


if __name__ == "__main__":
    asyncio.run(main())
