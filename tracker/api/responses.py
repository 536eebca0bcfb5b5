"""
Turn workflow Results into HTTP responses.

    ok       -> 2xx   {"data": ..., "message": ...}
    partial  -> 500   {"data": ..., "error": {"kind": "notification_failed", ...}}
    failed   -> 4xx / 500 via HTTPException {"detail": {"kind": ..., "message": ...}}
"""

from __future__ import annotations

from typing import Any

from fastapi import HTTPException
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from tracker.core.results import ErrorKind, Result

STATUS_BY_KIND: dict[ErrorKind, int] = {
    ErrorKind.UNAUTHENTICATED: 401,
    ErrorKind.FORBIDDEN: 403,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.CONFLICT: 409,
    ErrorKind.INVALID_OPERATION: 400,
    ErrorKind.NOT_A_MEMBER: 400,
    ErrorKind.DEPENDENCY_FAILURE: 500,
}

NOTIFICATION_FAILED = "notification_failed"


def error_detail(kind: str, message: str) -> dict[str, str]:
    return {"kind": kind, "message": message}


def respond(result: Result[Any], message: str = "", status_code: int = 200) -> Any:
    """
    Map a Result to a response.

    Raises HTTPException for failed results.
    """
    if result.failed:
        raise HTTPException(
            status_code=STATUS_BY_KIND[result.error],
            detail=error_detail(result.error.value, result.message),
        )

    body = {"data": jsonable_encoder(result.value), "message": message}
    if result.partial:
        body["error"] = error_detail(NOTIFICATION_FAILED, result.notification_error)
        return JSONResponse(status_code=500, content=body)

    if status_code != 200:
        return JSONResponse(status_code=status_code, content=body)
    return body
