"""도메인 예외 -> HTTP 응답 매핑."""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from ..errors import (
    AlreadyClaimedError,
    AmbiguousPaymentError,
    ConcurrentUpdateError,
    InsufficientBalanceError,
    LedgerError,
    MaxClaimsReachedError,
    NotFoundError,
    UnauthorizedError,
    ValidationError,
)
from .schemas.common import ErrorResponse


logger = logging.getLogger(__name__)


STATUS_BY_ERROR: dict[type[LedgerError], int] = {
    ValidationError: status.HTTP_400_BAD_REQUEST,
    NotFoundError: status.HTTP_404_NOT_FOUND,
    InsufficientBalanceError: status.HTTP_402_PAYMENT_REQUIRED,
    AlreadyClaimedError: status.HTTP_409_CONFLICT,
    MaxClaimsReachedError: status.HTTP_409_CONFLICT,
    AmbiguousPaymentError: status.HTTP_409_CONFLICT,
    ConcurrentUpdateError: status.HTTP_503_SERVICE_UNAVAILABLE,
    UnauthorizedError: status.HTTP_403_FORBIDDEN,
}


def status_for(exc: LedgerError) -> int:
    for error_type in type(exc).__mro__:
        code = STATUS_BY_ERROR.get(error_type)  # type: ignore[arg-type]
        if code is not None:
            return code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


async def ledger_error_handler(request: Request, exc: LedgerError) -> JSONResponse:
    status_code = status_for(exc)
    if status_code >= 500:
        logger.warning(
            "ledger error method=%s path=%s code=%s message=%s",
            request.method,
            request.url.path,
            exc.code,
            exc.message,
        )
    body = ErrorResponse(code=exc.code, message=exc.message)
    return JSONResponse(status_code=status_code, content=body.model_dump())


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(LedgerError, ledger_error_handler)  # type: ignore[arg-type]
