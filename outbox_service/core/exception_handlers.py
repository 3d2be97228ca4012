import logging

from fastapi import FastAPI, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from outbox_service.core.errors import PersistenceError
from outbox_service.schemas.response import new_request_id

log = logging.getLogger(__name__)

REQUEST_ID_HEADER = "x-request-id"


def _request_id(request: Request) -> str:
    """Echoes the caller's request id when one was sent."""
    return request.headers.get(REQUEST_ID_HEADER) or new_request_id()


def _error_response(request: Request, status_code: int, code: str, message, **extra) -> JSONResponse:
    error = {"code": code, "message": message}
    error.update(extra)
    body = {"success": False, "error": error, "request_id": _request_id(request)}
    return JSONResponse(status_code=status_code, content=body)


def http_exception_handler(request: Request, exc: HTTPException):
    """404 / 400 / 409 raised by the routers."""
    return _error_response(request, exc.status_code, "http_error", exc.detail)


def validation_exception_handler(request: Request, exc: RequestValidationError):
    return _error_response(
        request, 422, "validation_error", "Invalid input data", details=jsonable_encoder(exc.errors())
    )


def persistence_exception_handler(request: Request, exc: PersistenceError):
    """The write and its domain event were rolled back together; the client may retry."""
    log.error(f"Persistence failure on path {request.url.path}: {exc}")
    return _error_response(request, 503, "persistence_error", "The change could not be stored. Please retry.")


def generic_exception_handler(request: Request, exc: Exception):
    log.error(f"Unhandled exception on path: {request.url.path}", exc_info=exc)
    return _error_response(request, 500, "server_error", "Internal Server Error")


def setup_exception_handlers(app: FastAPI):
    """Maps routing, validation and storage errors to the error envelope."""
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(PersistenceError, persistence_exception_handler)
    app.add_exception_handler(Exception, generic_exception_handler)
    return app
