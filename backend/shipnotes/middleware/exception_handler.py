"""Exception handlers producing ``{"error", "code", "details"?}`` bodies."""

import logging

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from ..exceptions import ErrorCode, ShipnotesError

logger = logging.getLogger(__name__)


async def shipnotes_exception_handler(request: Request, exc: ShipnotesError) -> JSONResponse:
    """Render a domain error from its own status code and ``to_dict()``."""
    log = logger.error if exc.status_code >= 500 else logger.info
    log(
        f"ShipnotesError: {exc.error_code.value}",
        extra={
            "error_code": exc.error_code.value,
            "path": request.url.path,
            "method": request.method,
            "details": exc.details,
            "status_code": exc.status_code,
        },
    )
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Request body/path/query validation failures become 400 with the issue list."""
    issues = [
        {"path": [str(p) for p in err.get("loc", ())], "message": err.get("msg", "")}
        for err in exc.errors()
    ]
    logger.info(
        "Request validation failed",
        extra={"path": request.url.path, "method": request.method, "issue_count": len(issues)},
    )
    return JSONResponse(
        status_code=400,
        content={
            "error": "Validation failed",
            "code": ErrorCode.VALIDATION_ERROR.value,
            "details": {"issues": issues},
        },
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Last resort: log with traceback, never echo internals to the client."""
    logger.exception(
        "Unhandled exception",
        extra={"path": request.url.path, "method": request.method},
    )
    return JSONResponse(
        status_code=500,
        content={"error": "Internal server error", "code": ErrorCode.INTERNAL_ERROR.value},
    )
