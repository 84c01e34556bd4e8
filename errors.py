"""Error taxonomy and the JSON error envelope."""

import logging
from typing import Any, Dict, Iterable

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)


class CatalogError(Exception):
    """Base class for errors that map onto an HTTP status."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(CatalogError):
    """Missing or out-of-range input."""

    status_code = 400


class AuthError(CatalogError):
    """Missing, invalid or expired credential."""

    status_code = 401


class NotFoundError(CatalogError):
    """No matching product."""

    status_code = 404


class ConflictError(CatalogError):
    """Identifier collision on create."""

    status_code = 409


class InternalError(CatalogError):
    """Unexpected store or runtime failure."""

    status_code = 500


def error_body(message: str) -> Dict[str, Any]:
    return {"success": False, "message": message}


def format_validation_errors(errors: Iterable[Dict[str, Any]]) -> str:
    """Render pydantic error dicts as 'field: reason; field: reason'."""
    parts = []
    for err in errors:
        loc = [str(p) for p in err.get("loc", ()) if p not in ("body", "query", "path")]
        field_name = ".".join(loc)
        msg = err.get("msg", "Invalid value")
        parts.append(f"{field_name}: {msg}" if field_name else msg)
    return "; ".join(parts) or "Invalid request"


async def _catalog_error_handler(request: Request, exc: CatalogError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=error_body(exc.message))


async def _request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(status_code=400, content=error_body(format_validation_errors(exc.errors())))


async def _http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    if exc.status_code == 404 and exc.detail == "Not Found":
        message = "Route not found"
    else:
        message = str(exc.detail)
    return JSONResponse(status_code=exc.status_code, content=error_body(message), headers=exc.headers)


async def _unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(f"Unhandled error on {request.method} {request.url.path}: {exc}")
    return JSONResponse(status_code=500, content=error_body("Something went wrong!"))


def register_exception_handlers(app: FastAPI) -> None:
    """Convert every failure into the {success: false, message} envelope."""
    app.add_exception_handler(CatalogError, _catalog_error_handler)
    app.add_exception_handler(RequestValidationError, _request_validation_handler)
    app.add_exception_handler(StarletteHTTPException, _http_exception_handler)
    app.add_exception_handler(Exception, _unhandled_exception_handler)
