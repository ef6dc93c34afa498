"""Outcome codes and the error taxonomy of the staff authentication core.

Services raise ``CoreError`` subclasses carrying a machine-readable code.
The HTTP layer renders them as ``{"error": code, ...}``; display copy is the
client's job.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

logger = logging.getLogger(__name__)


@dataclass
class Outcome:
    """Successful result of a core operation."""

    code: str
    data: dict[str, Any] = field(default_factory=dict)

    def as_dict(self) -> dict[str, Any]:
        return {"success": self.code, **self.data}


class CoreError(Exception):
    status_code = 500
    default_code = "server-error"

    def __init__(
        self,
        code: Optional[str] = None,
        *,
        details: Optional[Iterable[Any]] = None,
        extra: Optional[dict[str, Any]] = None,
    ) -> None:
        self.code = code or self.default_code
        self.details = list(details) if details is not None else []
        self.extra = dict(extra or {})
        super().__init__(self.code)

    def as_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"error": self.code}
        if self.details:
            payload["details"] = self.details
        payload.update(self.extra)
        return payload


class AuthenticationRequired(CoreError):
    """No valid caller identity, or the presented credential did not verify."""

    status_code = 401
    default_code = "authentication-required"


class AuthorizationDenied(CoreError):
    status_code = 403
    default_code = "unauthorized-access"


class ValidationFailed(CoreError):
    """Malformed input. ``details`` lists every offending entry, not just the first."""

    status_code = 422
    default_code = "validation-failed"


class RateLimited(CoreError):
    status_code = 429
    default_code = "rate-limited"

    def __init__(self, code: Optional[str] = None, *, minutes_remaining: int) -> None:
        super().__init__(code, extra={"minutes": minutes_remaining})
        self.minutes_remaining = minutes_remaining


class Conflict(CoreError):
    status_code = 409
    default_code = "conflict"


class NotFound(CoreError):
    status_code = 404
    default_code = "not-found"


class InternalError(CoreError):
    status_code = 500
    default_code = "server-error"


async def _core_error_handler(_request: Request, exc: CoreError) -> JSONResponse:
    if isinstance(exc, InternalError):
        logger.error("Internal error code=%s", exc.code, exc_info=exc)
    return JSONResponse(status_code=exc.status_code, content=exc.as_dict())


async def _sqlalchemy_error_handler(_request: Request, exc: SQLAlchemyError) -> JSONResponse:
    logger.error("Database error: %s", exc, exc_info=True)
    return JSONResponse(status_code=InternalError.status_code, content=InternalError().as_dict())


async def _unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error method=%s path=%s", request.method, request.url.path, exc_info=exc)
    return JSONResponse(status_code=InternalError.status_code, content=InternalError().as_dict())


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(CoreError, _core_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(SQLAlchemyError, _sqlalchemy_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, _unhandled_error_handler)
