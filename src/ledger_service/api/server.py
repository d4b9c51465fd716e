import asyncio
import contextlib

import structlog
import uvicorn

from ledger_service.api.http_app import create_app
from ledger_service.infrastructure.database import Database


logger = structlog.get_logger()


class ApiServer:
    """Serves the ledger HTTP API with uvicorn on the running event loop."""

    def __init__(
        self,
        database: Database,
        host: str = "0.0.0.0",
        port: int = 8080,
        metrics_enabled: bool = True,
    ) -> None:
        self._database = database
        self._host = host
        self._port = port
        self._metrics_enabled = metrics_enabled
        self._server: uvicorn.Server | None = None
        self._task: asyncio.Task[None] | None = None

    async def start(self) -> None:
        app = create_app(self._database, metrics_enabled=self._metrics_enabled)
        config = uvicorn.Config(
            app,
            host=self._host,
            port=self._port,
            log_level="warning",
            access_log=False,
        )
        self._server = uvicorn.Server(config)

        self._task = asyncio.create_task(self._server.serve())
        logger.info("api_server_started", host=self._host, port=self._port)

    async def wait_for_termination(self) -> None:
        if self._task:
            with contextlib.suppress(asyncio.CancelledError):
                await self._task

    async def stop(self) -> None:
        if self._server:
            self._server.should_exit = True

        if self._task:
            try:
                await asyncio.wait_for(self._task, timeout=5.0)
            except TimeoutError:
                self._task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await self._task

        logger.info("api_server_stopped")
