import asyncio
import signal
from typing import NoReturn

import structlog

from ledger_service.api.server import ApiServer
from ledger_service.config import settings
from ledger_service.infrastructure.database import Database
from ledger_service.logging import configure_logging


logger = structlog.get_logger()


async def main() -> NoReturn:
    configure_logging(
        level=settings.log_level,
        log_format=settings.log_format,
    )

    logger.info(
        "starting_ledger_service",
        http_host=settings.http_host,
        http_port=settings.http_port,
        log_level=settings.log_level,
        metrics_enabled=settings.metrics_enabled,
        transfer_max_attempts=settings.transfer_max_attempts,
    )

    database = Database(settings.database_url)
    server = ApiServer(
        database=database,
        host=settings.http_host,
        port=settings.http_port,
        metrics_enabled=settings.metrics_enabled,
    )

    loop = asyncio.get_running_loop()

    async def shutdown() -> None:
        logger.info("shutting_down")
        await server.stop()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(
            sig,
            lambda: asyncio.create_task(shutdown()),
        )

    await server.start()
    try:
        await server.wait_for_termination()
    finally:
        await database.close()

    raise SystemExit(0)


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
