"""
FastAPI middleware for request context, logging and metrics
"""
import time
import uuid
from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from intakeflow.core.logging_config import LoggingConfig
from intakeflow.core.metrics import (http_errors_total,
                                     http_request_duration_seconds,
                                     http_requests_total)
from intakeflow.core.tracing import add_span_attributes, get_current_trace_id

logger = LoggingConfig.get_logger(__name__)


class LoggingContextMiddleware(BaseHTTPMiddleware):
    """Middleware to add request context to logs"""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get("x-request-id") or str(uuid.uuid4())

        LoggingConfig.set_context(
            request_id=request_id,
            method=request.method,
            path=request.url.path,
            client_host=request.client.host if request.client else None,
        )

        otel_trace_id = get_current_trace_id()
        if otel_trace_id:
            LoggingConfig.set_context(trace_id=otel_trace_id)
            add_span_attributes(request_id=request_id)
        else:
            header_trace_id = request.headers.get("x-trace-id") or request.headers.get("traceparent")
            if header_trace_id:
                LoggingConfig.set_context(trace_id=header_trace_id)

        start_time = time.time()
        logger.info("Request started", extra={"query_params": str(request.query_params)})

        try:
            response = await call_next(request)
            duration_ms = int((time.time() - start_time) * 1000)
            logger.info(
                "Request completed",
                extra={"status_code": response.status_code, "duration_ms": duration_ms}
            )
            response.headers["X-Request-ID"] = request_id
            return response
        except Exception as e:
            duration_ms = int((time.time() - start_time) * 1000)
            logger.error(
                "Request failed",
                exc_info=True,
                extra={"error": str(e), "error_type": type(e).__name__, "duration_ms": duration_ms}
            )
            raise
        finally:
            LoggingConfig.clear_context()


class MetricsMiddleware(BaseHTTPMiddleware):
    """
    Middleware to collect HTTP request metrics for Prometheus
    """

    async def dispatch(self, request: Request, call_next):
        if request.url.path == "/metrics":
            return await call_next(request)

        start_time = time.time()
        status_code = 500
        error_type = None
        try:
            response = await call_next(request)
            status_code = response.status_code
            return response
        except Exception as e:
            error_type = type(e).__name__
            raise
        finally:
            duration = time.time() - start_time

            # Collapse identifiers so audit lookups aggregate under one label
            endpoint = request.url.path
            if endpoint.startswith("/api/audit/"):
                endpoint = "/api/audit/{correlation_id}"

            method = request.method
            status_code_str = str(status_code)
            http_requests_total.labels(method=method, endpoint=endpoint, status_code=status_code_str).inc()
            http_request_duration_seconds.labels(
                method=method, endpoint=endpoint, status_code=status_code_str
            ).observe(duration)
            if status_code >= 400:
                http_errors_total.labels(
                    method=method,
                    endpoint=endpoint,
                    status_code=status_code_str,
                    error_type=error_type or f"http_{status_code}"
                ).inc()
