"""FastAPI middleware for request tracing, error handling, and CORS.

Middleware stack (applied bottom-up):
    1. RequestIDMiddleware — injects X-Request-ID into every request/response
    2. ErrorHandlerMiddleware — catches domain exceptions -> structured JSON errors
    3. CORSMiddleware — handles browser-based dashboards
"""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING

import structlog
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from escrow_settlement.domain.exceptions import (
    ConcurrencyError,
    ConditionConfigError,
    ConditionsNotMetError,
    DisputePeriodExpiredError,
    DuplicateOperationError,
    EscrowError,
    InvalidStateTransitionError,
    PaymentRailError,
    RefundNotAllowedError,
    TransactionAlreadySettledError,
    TransactionNotFoundError,
    UnauthorizedActorError,
    ValidationError,
)

if TYPE_CHECKING:
    from fastapi import FastAPI, Request, Response

logger = structlog.get_logger(__name__)

# Checked in order; the first matching class decides the status code.
_STATUS_CODES: tuple[tuple[type[EscrowError], int], ...] = (
    (TransactionNotFoundError, 404),
    (UnauthorizedActorError, 403),
    (InvalidStateTransitionError, 409),
    (TransactionAlreadySettledError, 409),
    (ConditionsNotMetError, 409),
    (RefundNotAllowedError, 409),
    (DisputePeriodExpiredError, 409),
    (ConcurrencyError, 409),
    (DuplicateOperationError, 409),
    (ConditionConfigError, 422),
    (ValidationError, 400),
    (PaymentRailError, 502),
)


def status_code_for(exc: EscrowError) -> int:
    for exc_type, status_code in _STATUS_CODES:
        if isinstance(exc, exc_type):
            return status_code
    return 400


def error_body(exc: EscrowError) -> dict:
    body: dict = {"success": False, "error": exc.code, "message": exc.message}
    if isinstance(exc, ConditionConfigError) and exc.errors:
        body["errors"] = exc.errors
    return body


# ---------------------------------------------------------------------------
# 1. Request ID Middleware
# ---------------------------------------------------------------------------
class RequestIDMiddleware(BaseHTTPMiddleware):
    """Inject a unique X-Request-ID into every request for log correlation."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(request_id=request_id)

        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response


# ---------------------------------------------------------------------------
# 2. Error Handler Middleware
# ---------------------------------------------------------------------------
class ErrorHandlerMiddleware(BaseHTTPMiddleware):
    """Catch domain exceptions and return structured JSON error responses."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        try:
            return await call_next(request)
        except InvalidStateTransitionError as exc:
            logger.warning(
                "state_machine.invalid_transition",
                current=exc.current_state,
                attempted=exc.attempted_event,
            )
            return JSONResponse(status_code=409, content=error_body(exc))
        except PaymentRailError as exc:
            logger.error(
                "payment.rail_error",
                error=exc.message,
                code=exc.code,
                operation=exc.operation,
            )
            return JSONResponse(status_code=502, content=error_body(exc))
        except EscrowError as exc:
            status_code = status_code_for(exc)
            logger.warning("domain.error", error=exc.message, code=exc.code, status_code=status_code)
            return JSONResponse(status_code=status_code, content=error_body(exc))
        except Exception as exc:
            logger.exception("unhandled.error", error=str(exc))
            return JSONResponse(
                status_code=500,
                content={
                    "success": False,
                    "error": "INTERNAL_ERROR",
                    "message": "An unexpected error occurred",
                },
            )


# ---------------------------------------------------------------------------
# Setup function
# ---------------------------------------------------------------------------
def setup_middleware(app: FastAPI) -> None:
    """Register all middleware on the FastAPI application.

    Middleware is applied bottom-up, so the last added middleware runs first.
    """
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(ErrorHandlerMiddleware)
    app.add_middleware(RequestIDMiddleware)
