"""
Global Exception Handlers

Unified handling of all API exceptions to ensure consistent error response format.
"""

import logging
import os

from fastapi import Request, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError, HTTPException
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.config.settings import CredentialCookieConfig
from app.utils.model.response_model import BaseResponse
from app.utils.model.response_code import ResponseCode
from .base_exceptions import BusinessException, UnauthorizedError

logger = logging.getLogger(__name__)

# request.state attribute holding the credential store of the request
CREDENTIAL_STORE_STATE = "credential_store"


def carry_credential_cookies(request: Request, response: JSONResponse) -> JSONResponse:
    """Copy cookies the credential store already wrote, e.g. a refreshed token"""
    store = getattr(request.state, CREDENTIAL_STORE_STATE, None)
    pending = getattr(store, "response", None)
    if pending is not None:
        for value in pending.headers.getlist("set-cookie"):
            response.headers.append("set-cookie", value)
    return response


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """
    Handle request parameter validation errors

    Args:
        request: Request object
        exc: Validation exception

    Returns:
        Unified format error response
    """
    logger.warning(f"Validation error on {request.url.path}: {exc.errors()}")

    messages = []
    details = []
    for error in exc.errors():
        ctx = error.get("ctx")
        if isinstance(ctx, dict) and "error" in ctx:
            messages.append(str(ctx["error"]))
        else:
            messages.append(error["msg"])

        detail = {
            "loc": list(error["loc"]),
            "msg": error["msg"],
            "type": error["type"],
        }
        if "input" in error:
            detail["input"] = str(error["input"])
        if isinstance(ctx, dict):
            detail["ctx"] = {k: str(v) for k, v in ctx.items()}
        details.append(detail)

    response = BaseResponse.validation_error(
        data={"details": details},
        message="; ".join(messages)
    )

    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=response.model_dump()
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """
    Handle HTTP exceptions

    Args:
        request: Request object
        exc: HTTP exception

    Returns:
        Unified format error response
    """
    logger.warning(f"HTTP {exc.status_code} on {request.url.path}: {exc.detail}")

    if exc.status_code == status.HTTP_401_UNAUTHORIZED:
        response = BaseResponse.unauthorized(message=exc.detail)
    elif exc.status_code == status.HTTP_403_FORBIDDEN:
        response = BaseResponse.forbidden(message=exc.detail)
    elif exc.status_code == status.HTTP_404_NOT_FOUND:
        response = BaseResponse.not_found(message=exc.detail)
    elif exc.status_code == status.HTTP_400_BAD_REQUEST:
        response = BaseResponse.bad_request(message=exc.detail)
    else:
        response = BaseResponse.error(message=exc.detail, code=exc.status_code)

    return JSONResponse(
        status_code=exc.status_code,
        content=response.model_dump()
    )


async def starlette_http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Route Starlette HTTP exceptions through the FastAPI handler"""
    return await http_exception_handler(request, HTTPException(status_code=exc.status_code, detail=exc.detail))


async def business_exception_handler(request: Request, exc: BusinessException) -> JSONResponse:
    """
    Handle business logic exceptions

    The exception's ``code`` is used as HTTP status when it is a valid one,
    otherwise 400.

    Args:
        request: Request object
        exc: Business exception

    Returns:
        Unified format error response
    """
    logger.warning(f"Business error on {request.url.path}: [{exc.error}] {exc.message}")

    http_status = exc.code if 200 <= exc.code < 600 else status.HTTP_400_BAD_REQUEST
    response = BaseResponse.error(
        message=exc.message,
        data=exc.to_data(),
        code=exc.code,
    )

    return carry_credential_cookies(request, JSONResponse(
        status_code=http_status,
        content=response.model_dump()
    ))


async def unauthorized_exception_handler(request: Request, exc: UnauthorizedError) -> JSONResponse:
    """
    Handle Bitbucket authorization failures

    The credential cookie is always cleared so that the client is sent
    through the login flow instead of retrying with a dead token.
    """
    response = await business_exception_handler(request, exc)
    response.delete_cookie(CredentialCookieConfig.NAME, path="/")
    return response


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Handle all uncaught exceptions

    Args:
        request: Request object
        exc: Exception

    Returns:
        Unified format error response
    """
    logger.error(f"Unhandled exception on {request.url.path}: {exc}", exc_info=True)

    # Detailed errors only in development
    if os.getenv("ENVIRONMENT", "development") == "development":
        message = f"Internal server error: {exc}"
        data = {
            "error_type": type(exc).__name__,
            "error_message": str(exc)
        }
    else:
        message = "Internal server error, please try again later"
        data = None

    response = BaseResponse.error(
        message=message,
        data=data,
        code=ResponseCode.INTERNAL_SERVER_ERROR
    )

    return carry_credential_cookies(request, JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=response.model_dump()
    ))


def register_exception_handlers(app):
    """
    Register all exception handlers

    Args:
        app: FastAPI application instance
    """
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(StarletteHTTPException, starlette_http_exception_handler)
    app.add_exception_handler(UnauthorizedError, unauthorized_exception_handler)
    app.add_exception_handler(BusinessException, business_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)

    logger.info("Exception handlers registered")
