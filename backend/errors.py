import logging
import os
import traceback
from typing import Any, List, Optional

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)


class AppError(HTTPException):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    code = "INTERNAL_ERROR"
    default_message = "Internal server error"

    def __init__(self, message: Optional[str] = None, errors: Optional[List[Any]] = None):
        super().__init__(status_code=self.status_code, detail=message or self.default_message)
        self.errors = errors


class ValidationError(AppError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "VALIDATION_ERROR"
    default_message = "Validation failed"


class NoFieldsToUpdateError(ValidationError):
    code = "NO_FIELDS_TO_UPDATE"
    default_message = "No valid fields to update"


class AuthError(AppError):
    status_code = status.HTTP_401_UNAUTHORIZED
    code = "UNAUTHORIZED"
    default_message = "Invalid admin credentials"


class NotFoundError(AppError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "NOT_FOUND"
    default_message = "Registration not found"


class ConflictError(AppError):
    status_code = status.HTTP_409_CONFLICT
    code = "CONFLICT"
    default_message = "Duplicate value violates a unique constraint"


class DuplicateKeyError(ConflictError):
    code = "DUPLICATE_KEY"


class DuplicateUtrError(ConflictError):
    code = "DUPLICATE_UTR"
    default_message = "UTR already used"


class DuplicateEmailEventError(ConflictError):
    code = "DUPLICATE_EMAIL_EVENT"
    default_message = "Duplicate registration detected for this email and event"


class UpstreamStorageError(AppError):
    code = "STORAGE_ERROR"
    default_message = "Upload failed"


class InternalError(AppError):
    pass


def is_development() -> bool:
    return os.environ.get("APP_ENV", "production").lower() == "development"


def _error_body(message: str, code: Optional[str] = None, errors: Optional[List[Any]] = None) -> dict:
    body = {"success": False, "message": message}
    if code:
        body["code"] = code
    if errors:
        body["errors"] = errors
    return body


async def app_error_handler(request: Request, exc: AppError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.detail)
    return JSONResponse(status_code=exc.status_code, content=_error_body(exc.detail, exc.code, exc.errors))


async def http_error_handler(request: Request, exc: StarletteHTTPException):
    message = exc.detail
    body = None
    if exc.status_code == status.HTTP_404_NOT_FOUND and message == "Not Found":
        body = _error_body("API endpoint not found")
        body["path"] = request.url.path
    if body is None:
        body = _error_body(str(message))
    return JSONResponse(status_code=exc.status_code, content=body, headers=getattr(exc, "headers", None))


async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = [
        {"field": ".".join(str(part) for part in err.get("loc", ()) if part not in ("body", "query", "path")), "message": err.get("msg")}
        for err in exc.errors()
    ]
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=_error_body("Validation failed", ValidationError.code, errors),
    )


async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    body = _error_body("Internal server error")
    if is_development():
        body["error"] = str(exc)
        body["stack"] = traceback.format_exception(type(exc), exc, exc.__traceback__)
    return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=body)


def install_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)


def from_pydantic(exc, message: str = "Validation failed") -> ValidationError:
    errors = [
        {"field": ".".join(str(part) for part in err.get("loc", ())), "message": err.get("msg")}
        for err in exc.errors()
    ]
    return ValidationError(message, errors=errors)
