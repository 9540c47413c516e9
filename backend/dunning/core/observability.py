"""
Prometheus instrumentation for the dunning engine.

Counters are incremented from the service layer so that both the HTTP host
and the reminder worker report the same series.
"""

from __future__ import annotations

from prometheus_client import CONTENT_TYPE_LATEST, Counter, generate_latest
from fastapi import Request, Response
from fastapi.responses import PlainTextResponse

reminder_dispatch_total = Counter(
    "dunning_reminder_dispatch_total",
    "Reminder dispatch attempts by outcome",
    ["kind", "status"],
)

payments_recorded_total = Counter(
    "dunning_payments_recorded_total",
    "Payments accepted by the ledger",
)

invoices_auto_paid_total = Counter(
    "dunning_invoices_auto_paid_total",
    "Invoices moved to paid by ledger settlement",
)

reconciliation_runs_total = Counter(
    "dunning_reconciliation_runs_total",
    "Completed reconciliation passes",
)


def record_dispatch(kind: str, status: str) -> None:
    reminder_dispatch_total.labels(kind=kind, status=status).inc()


async def metrics_endpoint(request: Request) -> Response:
    """Prometheus metrics endpoint handler."""
    return PlainTextResponse(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST,
    )
