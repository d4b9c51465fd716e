import time
from collections.abc import AsyncGenerator, Awaitable, Callable
from typing import Annotated, Any

import structlog
from fastapi import Depends, FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, PlainTextResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from pydantic import BaseModel, StrictInt
from sqlalchemy.exc import SQLAlchemyError

from ledger_service.application.services import (
    CreateTransferCommand,
    IncidentActionCommand,
    IncidentService,
    LedgerQueryService,
    TransferService,
    ZoneStatusService,
)
from ledger_service.application.unit_of_work import UnitOfWork
from ledger_service.domain.exceptions import (
    ConflictError,
    DomainError,
    InternalError,
    NotFoundError,
    UnavailableError,
    ValidationError,
)
from ledger_service.domain.models import Balance, Transaction
from ledger_service.infrastructure.database import Database
from ledger_service.infrastructure.metrics import HTTP_REQUEST_DURATION, HTTP_REQUESTS_TOTAL
from ledger_service.logging import bind_request_context, clear_request_context


logger = structlog.get_logger()


ERROR_STATUS: tuple[tuple[type[DomainError], int, str], ...] = (
    (ValidationError, 400, "VALIDATION_ERROR"),
    (NotFoundError, 404, "NOT_FOUND"),
    (ConflictError, 409, "IDEMPOTENCY_CONFLICT"),
    (UnavailableError, 503, "ZONE_UNAVAILABLE"),
    (InternalError, 500, "INTERNAL_ERROR"),
)


class CreateTransferRequest(BaseModel):
    request_id: str = ""
    from_account: str = ""
    to_account: str = ""
    amount_units: StrictInt = 0
    zone_id: str = ""
    metadata: dict[str, Any] | None = None


class SetZoneStatusRequest(BaseModel):
    status: str = ""
    actor: str = ""
    reason: str | None = None


class IncidentActionRequest(BaseModel):
    action: str = ""
    actor: str = ""
    assignee: str = ""
    note: str = ""
    reason: str | None = None


def _error_body(code: str, message: str) -> dict[str, Any]:
    return {"error": {"code": code, "message": message}}


def _balance_dict(balance: Balance) -> dict[str, Any]:
    return {
        "account_id": balance.account_id,
        "balance_units": balance.balance_units,
        "updated_at": balance.updated_at.isoformat(),
    }


def _transaction_summary(txn: Transaction) -> dict[str, Any]:
    summary = txn.to_dict()
    summary.pop("postings")
    summary.pop("metadata")
    return summary


async def get_uow(request: Request) -> AsyncGenerator[UnitOfWork, None]:
    database: Database = request.app.state.database
    async with database.session() as session:
        yield UnitOfWork(session)


UowDep = Annotated[UnitOfWork, Depends(get_uow)]


def create_app(database: Database | None = None, metrics_enabled: bool = True) -> FastAPI:
    """Create the ledger HTTP application.

    ``database`` may be omitted when every unit of work is supplied through
    ``app.dependency_overrides[get_uow]``.
    """
    app = FastAPI(title="Transfer Ledger Service")
    app.state.database = database

    @app.middleware("http")
    async def observe_requests(
        request: Request,
        call_next: Callable[[Request], Awaitable[Response]],
    ) -> Response:
        bind_request_context(
            http_method=request.method,
            http_path=request.url.path,
            correlation_id=request.headers.get("x-request-id"),
        )
        start = time.perf_counter()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            return response
        finally:
            route = request.scope.get("route")
            path = getattr(route, "path", "unmatched")
            HTTP_REQUEST_DURATION.labels(method=request.method, path=path).observe(
                time.perf_counter() - start
            )
            HTTP_REQUESTS_TOTAL.labels(
                method=request.method, path=path, status_code=str(status_code)
            ).inc()
            clear_request_context()

    @app.exception_handler(DomainError)
    async def domain_error_handler(request: Request, exc: DomainError) -> JSONResponse:
        for error_type, status_code, code in ERROR_STATUS:
            if isinstance(exc, error_type):
                break
        else:
            status_code, code = 500, "INTERNAL_ERROR"
        if status_code >= 500:
            logger.error("request_failed", error=str(exc), error_type=type(exc).__name__)
        return JSONResponse(status_code=status_code, content=_error_body(code, str(exc)))

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(
            status_code=400,
            content=_error_body("VALIDATION_ERROR", "malformed request body"),
        )

    @app.exception_handler(SQLAlchemyError)
    async def store_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
        logger.error("store_read_failed", error=str(exc))
        return JSONResponse(status_code=500, content=_error_body("INTERNAL_ERROR", "storage failure"))

    @app.post("/v1/transfers")
    async def create_transfer(body: CreateTransferRequest, uow: UowDep) -> dict[str, Any]:
        result = await TransferService(uow).create_transfer(
            CreateTransferCommand(
                request_id=body.request_id,
                from_account=body.from_account,
                to_account=body.to_account,
                amount_units=body.amount_units,
                zone_id=body.zone_id,
                metadata=body.metadata,
            )
        )
        return {
            "status": "APPLIED",
            "transaction_id": result.transaction_id,
            "request_id": result.request_id,
            "created_at": result.created_at.isoformat(),
            "replayed": result.replayed,
        }

    @app.post("/v1/zones/{zone_id}/status")
    async def set_zone_status(zone_id: str, body: SetZoneStatusRequest, uow: UowDep) -> dict[str, Any]:
        zone = await ZoneStatusService(uow).set_zone_status(
            zone_id=zone_id,
            status=body.status,
            actor=body.actor,
            reason=body.reason,
        )
        return zone.to_dict()

    @app.get("/v1/zones")
    async def list_zones(uow: UowDep) -> dict[str, Any]:
        zones = await LedgerQueryService(uow).list_zones()
        return {"zones": [zone.to_dict() for zone in zones]}

    @app.get("/v1/balances")
    async def list_balances(uow: UowDep, limit: int = 100) -> dict[str, Any]:
        balances = await LedgerQueryService(uow).list_balances(limit)
        return {"balances": [_balance_dict(b) for b in balances]}

    @app.get("/v1/balances/{account_id}")
    async def get_balance(account_id: str, uow: UowDep) -> dict[str, Any]:
        return _balance_dict(await LedgerQueryService(uow).get_balance(account_id))

    @app.get("/v1/transactions")
    async def list_transactions(uow: UowDep, limit: int = 100) -> dict[str, Any]:
        txns = await LedgerQueryService(uow).list_transactions(limit)
        return {"transactions": [_transaction_summary(t) for t in txns]}

    @app.get("/v1/transactions/{transaction_id}")
    async def get_transaction(transaction_id: str, uow: UowDep) -> dict[str, Any]:
        return (await LedgerQueryService(uow).get_transaction(transaction_id)).to_dict()

    @app.get("/v1/incidents")
    async def list_incidents(uow: UowDep, limit: int = 500) -> dict[str, Any]:
        incidents = await LedgerQueryService(uow).list_incidents(limit=limit)
        return {"incidents": [i.to_dict() for i in incidents]}

    @app.get("/v1/zones/{zone_id}/incidents")
    async def list_zone_incidents(zone_id: str, uow: UowDep, limit: int = 200) -> dict[str, Any]:
        incidents = await LedgerQueryService(uow).list_incidents(zone_id=zone_id, limit=limit)
        return {"incidents": [i.to_dict() for i in incidents]}

    @app.get("/v1/incidents/{incident_id}")
    async def get_incident(incident_id: str, uow: UowDep) -> dict[str, Any]:
        return (await LedgerQueryService(uow).get_incident(incident_id)).to_dict()

    @app.post("/v1/incidents/{incident_id}/action")
    async def apply_incident_action(
        incident_id: str, body: IncidentActionRequest, uow: UowDep
    ) -> dict[str, Any]:
        incident = await IncidentService(uow).apply_action(
            incident_id,
            IncidentActionCommand(
                action=body.action,
                actor=body.actor,
                assignee=body.assignee,
                note=body.note,
                reason=body.reason,
            ),
        )
        return incident.to_dict()

    @app.get("/v1/zones/{zone_id}/audit")
    async def list_zone_audit(zone_id: str, uow: UowDep, limit: int = 100) -> dict[str, Any]:
        entries = await LedgerQueryService(uow).list_audit_for_zone(zone_id, limit)
        return {"audit": [e.to_dict() for e in entries]}

    if metrics_enabled:

        @app.get("/metrics", response_class=PlainTextResponse)
        async def metrics() -> PlainTextResponse:
            return PlainTextResponse(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    @app.get("/healthz")
    async def healthz() -> dict[str, str]:
        return {"status": "ok"}

    @app.get("/readyz")
    async def readyz() -> JSONResponse:
        if app.state.database is None:
            return JSONResponse(status_code=503, content={"status": "no database"})
        try:
            await app.state.database.ping()
        except (SQLAlchemyError, OSError) as exc:
            logger.warning("readiness_check_failed", error=str(exc))
            return JSONResponse(status_code=503, content={"status": "database unavailable"})
        return JSONResponse(content={"status": "ready"})

    return app
