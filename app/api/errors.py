from __future__ import annotations

import logging
from typing import Any

from fastapi import FastAPI, HTTPException, Request
from fastapi.exception_handlers import (
    http_exception_handler as fastapi_http_exception_handler,
)
from fastapi.exception_handlers import (
    request_validation_exception_handler as fastapi_validation_exception_handler,
)
from fastapi.exceptions import RequestValidationError
from sqlalchemy.exc import InterfaceError, OperationalError

from app.api.responses import error_response
from app.logging_utils import structured_log
from app.services.credits.errors import InsufficientCreditsError, LedgerPeriodMissingError
from app.services.purchases.errors import (
    CheckoutUnavailableError,
    CreditPackError,
    PurchaseNotFoundError,
    StoreUnavailableError,
    SubscriptionRequiredError,
    WebhookVerificationError,
)
from app.services.search_jobs.errors import (
    JobNotFoundError,
    ProviderStartFailedError,
    SearchValidationError,
    UserNotFoundError,
)

logger = logging.getLogger(__name__)

STORE_RETRY_AFTER_SECONDS = "5"


def _is_api_path(path: str) -> bool:
    return path.startswith("/api/")


def _status_code_to_error_code(status_code: int) -> str:
    mapping = {
        400: "bad_request",
        401: "auth_required",
        402: "payment_required",
        403: "forbidden",
        404: "not_found",
        409: "conflict",
        422: "validation_error",
        500: "internal_error",
        502: "bad_gateway",
        503: "service_unavailable",
    }
    return mapping.get(status_code, "error")


class ApiException(Exception):
    def __init__(
        self,
        *,
        status_code: int,
        code: str,
        message: str,
        details: Any | None = None,
        headers: dict[str, str] | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.message = message
        self.details = details
        self.headers = headers


def translate_domain_error(exc: Exception) -> ApiException:
    """Map a service-layer exception onto the HTTP error envelope."""
    if isinstance(exc, SearchValidationError):
        return ApiException(status_code=400, code=exc.code, message=exc.message)
    if isinstance(exc, (UserNotFoundError, JobNotFoundError, PurchaseNotFoundError)):
        return ApiException(status_code=404, code=exc.code, message=exc.message)
    if isinstance(exc, InsufficientCreditsError):
        return ApiException(
            status_code=402,
            code=exc.code,
            message="Not enough credits for this action.",
            details={"category": exc.category},
        )
    if isinstance(exc, ProviderStartFailedError):
        return ApiException(
            status_code=502,
            code=exc.code,
            message=exc.message,
            details={"job_id": exc.job_id},
        )
    if isinstance(exc, (CreditPackError, SubscriptionRequiredError, WebhookVerificationError)):
        return ApiException(status_code=400, code=exc.code, message=exc.message)
    if isinstance(exc, LedgerPeriodMissingError):
        return ApiException(
            status_code=409,
            code=exc.code,
            message=exc.message,
            details={"category": exc.category},
        )
    if isinstance(exc, CheckoutUnavailableError):
        return ApiException(status_code=502, code=exc.code, message=exc.message)
    if isinstance(exc, StoreUnavailableError):
        return ApiException(
            status_code=503,
            code=exc.code,
            message=exc.message,
            details={"retryable": True},
            headers={"Retry-After": STORE_RETRY_AFTER_SECONDS},
        )
    raise TypeError(f"Unmapped domain error: {exc.__class__.__name__}")


def register_api_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(ApiException)
    async def _handle_api_exception(request: Request, exc: ApiException):
        return error_response(
            request,
            status_code=exc.status_code,
            code=exc.code,
            message=exc.message,
            details=exc.details,
            headers=exc.headers,
        )

    @app.exception_handler(HTTPException)
    async def _handle_http_exception(request: Request, exc: HTTPException):
        if not _is_api_path(request.url.path):
            return await fastapi_http_exception_handler(request, exc)
        return error_response(
            request,
            status_code=exc.status_code,
            code=_status_code_to_error_code(exc.status_code),
            message=str(exc.detail) if exc.detail is not None else "Request failed.",
            details=exc.detail if isinstance(exc.detail, (dict, list)) else None,
        )

    @app.exception_handler(RequestValidationError)
    async def _handle_validation_exception(request: Request, exc: RequestValidationError):
        if not _is_api_path(request.url.path):
            return await fastapi_validation_exception_handler(request, exc)
        return error_response(
            request,
            status_code=422,
            code="validation_error",
            message="Request validation failed.",
            details=exc.errors(),
        )

    async def _handle_store_unavailable(request: Request, exc: Exception):
        structured_log(
            logger,
            "warning",
            "api.store_unavailable",
            path=request.url.path,
            error=exc.__class__.__name__,
        )
        return error_response(
            request,
            status_code=503,
            code="STORE_UNAVAILABLE",
            message="Storage is temporarily unavailable. Please retry.",
            details={"retryable": True},
            headers={"Retry-After": STORE_RETRY_AFTER_SECONDS},
        )

    for error_class in (OperationalError, InterfaceError):
        app.add_exception_handler(error_class, _handle_store_unavailable)
