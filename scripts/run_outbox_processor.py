#!/usr/bin/env python3
"""Run the outbox relay as a standalone worker.

SIGINT/SIGTERM let the current batch finish, then the producer and the
database pool are closed.
"""
import asyncio
import signal

import structlog

from ledger_service.config import settings
from ledger_service.infrastructure.database import Database
from ledger_service.infrastructure.event_publisher import OutboxProcessor
from ledger_service.logging import configure_logging


logger = structlog.get_logger()


async def main() -> None:
    configure_logging(level=settings.log_level, log_format=settings.log_format)

    database = Database(settings.database_url)
    relay = OutboxProcessor(database=database)

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, relay.stop)

    logger.info(
        "outbox_relay_worker_starting",
        database=settings.database_url.split("@")[-1],
        kafka_brokers=settings.kafka_brokers,
        poll_interval=settings.outbox_poll_interval_seconds,
    )
    try:
        await relay.start()
    finally:
        await database.close()
        logger.info("outbox_relay_worker_exited", consecutive_failures=relay.consecutive_failures)


if __name__ == "__main__":
    asyncio.run(main())
