from __future__ import annotations

import json
import logging
import sys
import time
import uuid
from datetime import datetime, timezone
from typing import Any, Optional

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware


REQUEST_FIELDS = ("request_id", "account_id", "path", "method", "status_code", "latency_ms")
DUNNING_FIELDS = ("invoice_id", "reminder_kind", "reminder_id", "outcome")


class JsonFormatter(logging.Formatter):
    """One JSON object per line; only known context fields are copied over."""

    fields = REQUEST_FIELDS + DUNNING_FIELDS

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        payload.update({key: getattr(record, key) for key in self.fields if hasattr(record, key)})
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def configure_logging(level: str = "INFO") -> None:
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter())
    logging.basicConfig(level=level, handlers=[handler], force=True)


def _account_id(request: Request) -> Optional[int]:
    raw = request.headers.get("x-account-id", "")
    return int(raw) if raw.isdigit() else None


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Tags each request with an id and logs method, path, status and latency."""

    def __init__(self, app, logger_name: str = "dunning.request") -> None:
        super().__init__(app)
        self.logger = logging.getLogger(logger_name)

    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = request.headers.get("x-request-id") or uuid.uuid4().hex
        request.state.request_id = request_id
        start = time.perf_counter()
        context = {
            "request_id": request_id,
            "account_id": _account_id(request),
            "path": request.url.path,
            "method": request.method,
        }
        try:
            response = await call_next(request)
        except Exception:
            context["latency_ms"] = round((time.perf_counter() - start) * 1000, 2)
            self.logger.exception("unhandled_exception", extra=context)
            raise

        context["status_code"] = response.status_code
        context["latency_ms"] = round((time.perf_counter() - start) * 1000, 2)
        self.logger.info("request", extra=context)
        response.headers["X-Request-Id"] = request_id
        return response
