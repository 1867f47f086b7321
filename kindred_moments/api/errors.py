"""Exception handlers translating domain errors into HTTP responses.

Every error body has the same shape: ``{"kind": ..., "message": ...}``.
"""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from kindred_moments.domain.errors import ErrorKind, MomentError

logger = logging.getLogger(__name__)

STATUS_BY_KIND: dict[ErrorKind, int] = {
    ErrorKind.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorKind.INACTIVE: status.HTTP_409_CONFLICT,
    ErrorKind.NOT_PARTICIPANT: status.HTTP_403_FORBIDDEN,
    ErrorKind.VALIDATION_FAILED: status.HTTP_400_BAD_REQUEST,
    ErrorKind.UNAUTHENTICATED: status.HTTP_401_UNAUTHORIZED,
    ErrorKind.CONFLICT: status.HTTP_409_CONFLICT,
    ErrorKind.UNAVAILABLE: status.HTTP_503_SERVICE_UNAVAILABLE,
}


async def moment_error_handler(request: Request, exc: MomentError) -> JSONResponse:
    status_code = STATUS_BY_KIND.get(exc.kind, status.HTTP_400_BAD_REQUEST)
    if status_code >= 500:
        logger.warning("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=status_code, content=exc.to_dict())


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    fields = []
    for error in exc.errors():
        field = str(error["loc"][-1]) if error["loc"] else "unknown"
        fields.append(f"{field}: {error['msg']}")
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"kind": ErrorKind.VALIDATION_FAILED.value, "message": "; ".join(fields) or "Invalid request"},
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(MomentError, moment_error_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
