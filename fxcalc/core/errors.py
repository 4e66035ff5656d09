"""Error taxonomy and FastAPI exception handlers.

Every failure the calculator or the rate layer raises is an ``AppError`` with a
category. Handlers translate categories into HTTP responses: validation messages
are safe to show verbatim, everything else gets a generic message while the
original is logged server side.
"""

from __future__ import annotations

import logging
import traceback
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from fastapi import Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette import status

logger = logging.getLogger("fxcalc.errors")


class ErrorCategory(str, Enum):
    API = "API_ERROR"
    VALIDATION = "VALIDATION_ERROR"
    NOT_FOUND = "NOT_FOUND_ERROR"
    CONVERSION = "CONVERSION_ERROR"
    NETWORK = "NETWORK_ERROR"
    UNKNOWN = "UNKNOWN_ERROR"


_USER_MESSAGES = {
    ErrorCategory.API: "There was a problem communicating with an external service. Please try again later.",
    ErrorCategory.NOT_FOUND: "The requested resource could not be found.",
    ErrorCategory.CONVERSION: "Currency conversion failed. Please check the currency codes and try again.",
    ErrorCategory.NETWORK: "Network error. Please check your connection and try again.",
    ErrorCategory.UNKNOWN: "An unexpected error occurred. Please try again later.",
}

_HTTP_STATUS = {
    ErrorCategory.VALIDATION: status.HTTP_400_BAD_REQUEST,
    ErrorCategory.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorCategory.API: status.HTTP_502_BAD_GATEWAY,
    ErrorCategory.NETWORK: status.HTTP_502_BAD_GATEWAY,
    ErrorCategory.CONVERSION: status.HTTP_502_BAD_GATEWAY,
    ErrorCategory.UNKNOWN: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


class AppError(Exception):
    """Base application error.

    status_code is the HTTP status observed where the error originated (for
    provider errors, the upstream response status), not the status we answer with.
    """

    category: ErrorCategory = ErrorCategory.UNKNOWN

    def __init__(
        self,
        message: str,
        original_error: Optional[BaseException] = None,
        status_code: Optional[int] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.original_error = original_error
        self.status_code = status_code
        self.context = context or {}
        if original_error is not None:
            self.__cause__ = original_error

    def user_friendly_message(self) -> str:
        if self.category is ErrorCategory.VALIDATION:
            return self.message
        return _USER_MESSAGES[self.category]

    @property
    def http_status(self) -> int:
        return _HTTP_STATUS[self.category]

    def to_log_format(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "name": type(self).__name__,
            "message": self.message,
            "category": self.category.value,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        if self.status_code is not None:
            data["status_code"] = self.status_code
        if self.context:
            data["context"] = self.context
        if self.original_error is not None:
            data["original_error"] = {
                "name": type(self.original_error).__name__,
                "message": str(self.original_error),
                "stack": "".join(
                    traceback.format_exception(
                        type(self.original_error),
                        self.original_error,
                        self.original_error.__traceback__,
                    )
                ),
            }
        return data


class ValidationError(AppError):
    category = ErrorCategory.VALIDATION

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(message, status_code=400, context=context)


class NotFoundError(AppError):
    category = ErrorCategory.NOT_FOUND

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(message, status_code=404, context=context)


class ApiError(AppError):
    category = ErrorCategory.API


class NetworkError(AppError):
    category = ErrorCategory.NETWORK


class ConversionError(AppError):
    category = ErrorCategory.CONVERSION


def log_error(error: BaseException, **additional_info: Any) -> None:
    """Emit one structured error record for any exception."""
    if isinstance(error, AppError):
        data = error.to_log_format()
    else:
        data = {
            "name": type(error).__name__,
            "message": str(error),
            "category": ErrorCategory.UNKNOWN.value,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
    if additional_info:
        data["additional_info"] = additional_info
    logger.error("%s: %s", data["name"], data["message"], extra={"context": data})


# Handlers ----------------------------------------------------------------


def app_error_handler(request: Request, exc: AppError):  # type: ignore
    if exc.category is not ErrorCategory.VALIDATION:
        log_error(exc, path=request.url.path, method=request.method)
    return JSONResponse(
        status_code=exc.http_status,
        content={
            "error": exc.category.value.lower(),
            "detail": exc.user_friendly_message(),
        },
    )


def http_error_handler(request: Request, exc):  # type: ignore
    if exc.status_code != status.HTTP_404_NOT_FOUND:
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": "http_error", "detail": exc.detail},
            headers=getattr(exc, "headers", None),
        )
    detail = exc.detail
    if detail == "Not Found":
        detail = f"No route for {request.method} {request.url.path}"
    return JSONResponse(
        status_code=status.HTTP_404_NOT_FOUND,
        content={"error": "not_found", "detail": detail},
    )


def validation_error_handler(request: Request, exc: RequestValidationError):  # type: ignore
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "error": "validation_error",
            "detail": jsonable_encoder(exc.errors()),
        },
    )


def server_error_handler(request: Request, exc: Exception):  # type: ignore
    logger.exception("unhandled exception")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": "internal_error",
            "detail": "An unexpected error occurred.",
        },
    )
