from __future__ import annotations

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from dunning.core.exceptions import (
    DunningError,
    ExceedsPayableError,
    InvoiceNotFoundError,
    InvoiceStateError,
    PaymentNotFoundError,
    ValidationError,
)
from dunning.core.logging import RequestLoggingMiddleware, configure_logging
from dunning.core.observability import metrics_endpoint
from dunning.core.settings import settings
from dunning.routers import invoices, reminders

configure_logging(level=settings.log_level)

app = FastAPI(title=settings.project_name, version=settings.project_version)

app.add_middleware(RequestLoggingMiddleware)
app.add_api_route("/metrics", metrics_endpoint, methods=["GET"], tags=["observability"], include_in_schema=False)

app.include_router(invoices.router)
app.include_router(reminders.router)

_ERROR_STATUS = (
    (InvoiceNotFoundError, status.HTTP_404_NOT_FOUND),
    (PaymentNotFoundError, status.HTTP_404_NOT_FOUND),
    (ExceedsPayableError, status.HTTP_409_CONFLICT),
    (InvoiceStateError, status.HTTP_409_CONFLICT),
    (ValidationError, status.HTTP_400_BAD_REQUEST),
)


def status_for_error(exc: DunningError) -> int:
    for error_type, code in _ERROR_STATUS:
        if isinstance(exc, error_type):
            return code
    return status.HTTP_400_BAD_REQUEST


@app.exception_handler(DunningError)
async def dunning_error_handler(request: Request, exc: DunningError) -> JSONResponse:
    return JSONResponse(status_code=status_for_error(exc), content={"detail": exc.to_dict()})


@app.get("/healthz", tags=["health"])
def healthcheck() -> dict[str, str]:
    return {"status": "ok", "environment": settings.environment}
