import time
from collections.abc import Awaitable, Callable
from functools import wraps
from typing import ParamSpec, TypeVar

from prometheus_client import Counter, Gauge, Histogram


TRANSFER_REQUESTS_TOTAL = Counter(
    "ledger_transfer_requests_total",
    "Total number of transfer requests by outcome",
    ["outcome"],
)

TRANSFERS_POSTED_TOTAL = Counter(
    "ledger_transfers_posted_total",
    "Total number of transfers committed to the ledger",
)

TRANSFER_DURATION_SECONDS = Histogram(
    "ledger_transfer_duration_seconds",
    "Transfer processing duration",
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
)

ZONE_STATUS_CHANGES_TOTAL = Counter(
    "ledger_zone_status_changes_total",
    "Total number of zone status changes",
    ["status"],
)

INCIDENTS_RAISED_TOTAL = Counter(
    "ledger_incidents_raised_total",
    "Total number of incidents raised",
    ["severity"],
)

OUTBOX_EVENTS_PUBLISHED = Counter(
    "outbox_events_published_total",
    "Total outbox events published",
    ["event_type"],
)

OUTBOX_EVENTS_FAILED = Counter(
    "outbox_events_failed_total",
    "Total outbox events that failed to publish",
    ["event_type"],
)

OUTBOX_EVENTS_DEAD_LETTERED = Counter(
    "outbox_events_dead_lettered_total",
    "Total outbox events moved to the dead letter topic",
    ["event_type"],
)

OUTBOX_PENDING_EVENTS = Gauge(
    "outbox_pending_events",
    "Number of open events in the outbox",
    ["event_type"],
)

INBOX_EVENTS_TOTAL = Counter(
    "inbox_events_total",
    "Events received by a consumer, by whether they were new or redelivered",
    ["consumer", "outcome"],
)

HTTP_REQUESTS_TOTAL = Counter(
    "http_requests_total",
    "Total number of HTTP requests",
    ["method", "path", "status_code"],
)

HTTP_REQUEST_DURATION = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration",
    ["method", "path"],
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
)


P = ParamSpec("P")
R = TypeVar("R")


def track_transfer_duration(
    func: Callable[P, Awaitable[R]],
) -> Callable[P, Awaitable[R]]:
    @wraps(func)
    async def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
        start = time.perf_counter()
        try:
            return await func(*args, **kwargs)
        finally:
            duration = time.perf_counter() - start
            TRANSFER_DURATION_SECONDS.observe(duration)

    return wrapper
