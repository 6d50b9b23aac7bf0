from __future__ import annotations

import logging
from typing import Any

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

_LOG = logging.getLogger("query_engine.errors")


class QueryEngineError(Exception):
    status_code = 500
    error_code = "internal_error"


class MalformedRequestError(QueryEngineError):
    """Request parameters could not be parsed at all (bad JSON, wrong shape)."""

    status_code = 400
    error_code = "malformed_request"

    def __init__(self, detail: str, *, parameter: str | None = None):
        super().__init__(detail)
        self.detail = detail
        self.parameter = parameter


class QueryValidationError(QueryEngineError):
    """Aggregated whitelist/operator/range violations for one request.

    Built once from a finished ``ValidationResult``; never used as a collector.
    """

    status_code = 422
    error_code = "validation_failed"

    def __init__(self, violations: list[dict[str, Any]], message: str = "Parameter validation failed"):
        super().__init__(message)
        self.violations = list(violations)


class ExecutionError(QueryEngineError):
    status_code = 500
    error_code = "internal_error"

    def __init__(self, detail: str, *, correlation_id: str | None = None):
        super().__init__(detail)
        self.detail = detail
        self.correlation_id = correlation_id


class FormatterError(QueryEngineError):
    """Unknown response format. Recovered by the formatter, never sent to clients."""

    def __init__(self, requested_format: str):
        super().__init__(f'Unsupported response format "{requested_format}"')
        self.requested_format = requested_format


def _request_id(request: Request) -> str | None:
    return getattr(request.state, "request_id", None)


def install_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(MalformedRequestError)
    async def _malformed_request_handler(request: Request, exc: MalformedRequestError):
        body: dict[str, Any] = {"success": False, "error": exc.error_code, "detail": exc.detail}
        if exc.parameter:
            body["parameter"] = exc.parameter
        return JSONResponse(status_code=exc.status_code, content=body)

    @app.exception_handler(QueryValidationError)
    async def _validation_handler(request: Request, exc: QueryValidationError):
        return JSONResponse(
            status_code=exc.status_code,
            content={
                "success": False,
                "error": exc.error_code,
                "detail": str(exc),
                "validation_errors": exc.violations,
            },
        )

    @app.exception_handler(ExecutionError)
    async def _execution_handler(request: Request, exc: ExecutionError):
        correlation_id = exc.correlation_id or _request_id(request)
        # Data store details stay in the log; clients only get the correlation id.
        _LOG.error("query execution failed correlation_id=%s detail=%s", correlation_id, exc.detail)
        return JSONResponse(
            status_code=exc.status_code,
            content={
                "success": False,
                "error": exc.error_code,
                "detail": "Query execution failed",
                "correlation_id": correlation_id,
            },
        )
