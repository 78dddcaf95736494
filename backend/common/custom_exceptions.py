from typing import Any, Optional
from fastapi import FastAPI, HTTPException, Request,status
from fastapi.exceptions import RequestValidationError
from backend import logger
from backend.common.utils import build_error, json_error
from backend.common.constants import ERROR_MESSAGE_SERVER, request_id_ctx
from backend.config.admin_config import admin_config


class AppError(HTTPException):
    """Base of the domain error taxonomy, routed by the HTTPException handler."""

    status_code_default = status.HTTP_500_INTERNAL_SERVER_ERROR
    code = "APP_ERROR"

    def __init__(self, message: str, details: Optional[Any] = None):
        super().__init__(status_code=self.status_code_default, detail=message)
        self.message = message
        self.details = details


class InvalidRequest(AppError):
    status_code_default = status.HTTP_400_BAD_REQUEST
    code = "INVALID_REQUEST"


class NotFound(AppError):
    status_code_default = status.HTTP_404_NOT_FOUND
    code = "NOT_FOUND"


class CheckoutConflict(AppError):
    status_code_default = status.HTTP_409_CONFLICT
    code = "CHECKOUT_CONFLICT"


class VerificationFailure(AppError):
    status_code_default = status.HTTP_400_BAD_REQUEST
    code = "VERIFICATION_FAILED"


class PaymentProviderError(AppError):
    status_code_default = status.HTTP_500_INTERNAL_SERVER_ERROR
    code = "PAYMENT_PROVIDER_ERROR"

    def __init__(self, provider: str, diagnostic: str):
        # provider diagnostics only leave the service in dev
        message = f"{provider} payment request failed"
        if admin_config.ENV == "dev":
            message = f"{message}: {diagnostic}"
        super().__init__(message)
        self.provider = provider
        self.diagnostic = diagnostic


async def fallback_handler(request: Request, exc: Exception):

    rid = request_id_ctx.get(None)

    logger.error(
        "unexpected.exception",
        extra={
            "path": request.url.path,
            "method": request.method,
            "request_id": rid,
        },
        exc_info=exc,
    )

    payload = build_error(ERROR_MESSAGE_SERVER, code="SERVER_ERROR", request_id=rid)
    return json_error(payload, status_code=status.HTTP_500_INTERNAL_SERVER_ERROR)


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    rid = request_id_ctx.get(None)
    logger.warning(
        "request.validation_failed",
        extra={
            "errors": exc.errors(),
            "path": request.url.path,
            "request_id": rid,
        },
    )

    payload = build_error("Invalid request body", code=InvalidRequest.code, request_id=rid,
                          details=[{"loc": e.get("loc"), "msg": e.get("msg")} for e in exc.errors()])
    return json_error(payload, status_code=status.HTTP_400_BAD_REQUEST)


async def http_exception_handler(request: Request, exc: HTTPException):

    rid = request_id_ctx.get(None)

    if isinstance(exc, AppError):
        payload = build_error(exc.message, code=exc.code, request_id=rid, details=exc.details)
    else:
        payload = build_error(str(exc.detail), code=f"HTTP_{exc.status_code}", request_id=rid)

    if isinstance(exc, PaymentProviderError):
        logger.error("payment_provider.failed",
                     extra={"provider": exc.provider, "diagnostic": exc.diagnostic, "path": request.url.path})

    return json_error(payload, status_code=exc.status_code, headers=getattr(exc, "headers", None))


def register_all_exceptions(app: FastAPI):

    app.add_exception_handler(
        Exception, # catch all unidentified/unhandled exceptions
        fallback_handler
    )

    app.add_exception_handler(
        RequestValidationError,
        validation_exception_handler
    )

    app.add_exception_handler(
        HTTPException,
        http_exception_handler
    )
