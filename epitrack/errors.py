"""
Application error taxonomy and the handlers that turn it into JSON responses.

Every error body has the shape ``{"error": code, "message": text}``; validation
failures add ``"details"``, a list of ``{"field", "message"}`` objects, and
authentication failures add ``"reason"``.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException


logger = structlog.get_logger(__name__)


class AppError(Exception):
    status_code = 500
    code = "internal_error"

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[List[Dict[str, Any]]] = None,
        reason: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        self.details = details
        self.reason = reason

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"error": self.code, "message": self.message}
        if self.reason:
            body["reason"] = self.reason
        if self.details:
            body["details"] = self.details
        return body


class AuthenticationError(AppError):
    """401; ``reason`` is one of token_missing|token_invalid|token_expired|user_inactive|invalid_credentials"""
    status_code = 401
    code = "authentication_error"

    def __init__(self, message: str, reason: str = "token_invalid"):
        super().__init__(message, reason=reason)


class AuthorizationError(AppError):
    status_code = 403
    code = "forbidden"


class ValidationError(AppError):
    status_code = 400
    code = "validation_error"


class NotFoundError(AppError):
    status_code = 404
    code = "not_found"


class ConflictError(AppError):
    status_code = 409
    code = "conflict"


class InvariantViolation(AppError):
    status_code = 422
    code = "invariant_violation"


@dataclass
class FieldError:
    field: str
    message: str


@dataclass
class ValidationResult:
    """Outcome of a domain rule check, evaluated before anything is committed."""

    errors: List[FieldError] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors

    def add(self, field_name: str, message: str) -> "ValidationResult":
        self.errors.append(FieldError(field_name, message))
        return self

    def merge(self, other: "ValidationResult") -> "ValidationResult":
        self.errors.extend(other.errors)
        return self

    def raise_for_errors(self, message: str = "Domain rule violated") -> None:
        if self.errors:
            details = [{"field": e.field, "message": e.message} for e in self.errors]
            raise InvariantViolation(self.errors[0].message if len(self.errors) == 1 else message, details=details)


def _field_path(loc) -> str:
    # Drop the "body"/"query" prefix FastAPI puts in front of the field path
    parts = [str(p) for p in loc]
    if parts and parts[0] in ("body", "query", "path", "header"):
        parts = parts[1:]
    return ".".join(parts)


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(AppError)
    async def _app_error(request: Request, exc: AppError):
        if exc.status_code >= 500:
            logger.error("app_error", code=exc.code, message=exc.message, path=request.url.path)
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def _request_validation_error(request: Request, exc: RequestValidationError):
        details = [{"field": _field_path(e.get("loc", ())), "message": e.get("msg", "")} for e in exc.errors()]
        return JSONResponse(
            status_code=400,
            content={"error": "validation_error", "message": "Invalid input", "details": details},
        )

    @app.exception_handler(StarletteHTTPException)
    async def _http_error(request: Request, exc: StarletteHTTPException):
        code = {401: "authentication_error", 403: "forbidden", 404: "not_found", 405: "method_not_allowed"}.get(
            exc.status_code, "http_error"
        )
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": code, "message": str(exc.detail)},
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(Exception)
    async def _unhandled(request: Request, exc: Exception):
        logger.error("unhandled_exception", path=request.url.path, exc_info=exc)
        return JSONResponse(
            status_code=500,
            content={"error": "internal_error", "message": "An internal server error occurred"},
        )
