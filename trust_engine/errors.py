# trust_engine/errors.py
"""
Error taxonomy shared by every component, plus the FastAPI handlers that turn
each class into the `{error, message, details}` response body.
"""
import logging
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

log = logging.getLogger("errors")

GENERIC_MESSAGE = "We have a problem! Something went wrong on our end. Our team has been notified."


class TrustEngineError(Exception):
    status_code = 500

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ValidationError(TrustEngineError):
    """Malformed, missing or oversized input. Always lists every offending field."""

    status_code = 400

    def __init__(self, message: str, errors: Optional[List[Dict[str, Any]]] = None, details=None):
        details = dict(details or {})
        if errors:
            details["validationErrors"] = errors
        super().__init__(message, details)


class ConflictError(TrustEngineError):
    status_code = 409


class UnauthorizedInstructionError(TrustEngineError):
    status_code = 403


class UpstreamServiceError(TrustEngineError):
    """
    A collaborator (ledger, storage, custodial provider) failed. When the
    upstream reported a status it is passed through with its message,
    otherwise the response is masked as a generic 500.
    """

    def __init__(self, message: str, status: Optional[int] = None, details=None):
        super().__init__(message, details)
        self.upstream_status = status
        self.status_code = status or 500


def error_body(message: str, details: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    body: Dict[str, Any] = {"error": True, "message": message}
    if details:
        body["details"] = details
    return body


def _field_name(loc) -> str:
    parts = [str(p) for p in loc if p not in ("body", "query", "path")]
    return ".".join(parts) or "body"


def request_validation_errors(exc: RequestValidationError) -> List[Dict[str, Any]]:
    errors = []
    for err in exc.errors():
        errors.append({
            "field": _field_name(err.get("loc", ())),
            "type": err.get("type"),
            "message": err.get("msg"),
        })
    return errors


def register_exception_handlers(app: FastAPI) -> None:

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, exc: RequestValidationError):
        errors = request_validation_errors(exc)
        return JSONResponse(
            status_code=400,
            content=error_body("Input validation failed", {"validationErrors": errors}),
        )

    @app.exception_handler(UpstreamServiceError)
    async def handle_upstream(request: Request, exc: UpstreamServiceError):
        if exc.upstream_status:
            log.error("Upstream failure on %s (%s): %s", request.url.path, exc.upstream_status, exc.message)
            return JSONResponse(status_code=exc.status_code, content=error_body(exc.message, exc.details))
        log.error("Upstream failure on %s: %s", request.url.path, exc.message)
        return JSONResponse(status_code=500, content=error_body(GENERIC_MESSAGE))

    @app.exception_handler(TrustEngineError)
    async def handle_domain(request: Request, exc: TrustEngineError):
        if exc.status_code >= 500:
            log.error("Failure on %s: %s", request.url.path, exc.message)
            return JSONResponse(status_code=exc.status_code, content=error_body(GENERIC_MESSAGE))
        return JSONResponse(status_code=exc.status_code, content=error_body(exc.message, exc.details))

    @app.exception_handler(Exception)
    async def handle_unexpected(request: Request, exc: Exception):
        log.exception("Unexpected error on %s", request.url.path)
        return JSONResponse(status_code=500, content=error_body(GENERIC_MESSAGE))
