from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
import logging

from otpauth.core.exceptions import OtpAuthError, ErrorKind
from otpauth.schemas.response import ErrorResponse
from otpauth.core.config import settings

logger = logging.getLogger(__name__)

# Fatal for the current request: operators get the details, clients a generic message.
FATAL_CODES = {
    ErrorKind.DUPLICATE_IDENTITY.value,
    ErrorKind.CREDENTIAL_MINT_FAILED.value,
    "CONFIGURATION_ERROR",
}

GENERIC_FATAL_MESSAGE = "We couldn't complete sign-in. Please try again later."


def error_body(message: str, code: str, details=None) -> dict:
    return ErrorResponse(error=message, error_kind=code, details=details).model_dump(by_alias=True)


def add_exception_handlers(app: FastAPI):
    """
    Registers exception handlers with the FastAPI app.
    """
    @app.exception_handler(OtpAuthError)
    async def otpauth_exception_handler(request: Request, exc: OtpAuthError):
        if exc.code in FATAL_CODES:
            logger.error(
                f"Fatal {exc.code} on {request.method} {request.url.path}: {exc.details}",
                exc_info=exc.status_code >= 500,
            )
            return JSONResponse(
                status_code=exc.status_code,
                content=error_body(GENERIC_FATAL_MESSAGE, exc.code)
            )

        return JSONResponse(
            status_code=exc.status_code,
            content=error_body(exc.message, exc.code, exc.details)
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        """
        Handles standard HTTP exceptions (404, etc.)
        """
        return JSONResponse(
            status_code=exc.status_code,
            content=error_body(str(exc.detail), "HTTP_ERROR"),
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        """
        Handles Pydantic validation errors.
        """
        return JSONResponse(
            status_code=422,
            content=error_body(
                "Input validation failed",
                "VALIDATION_ERROR",
                jsonable_errors(exc),
            )
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """
        Catch-all for unhandled exceptions.
        """
        logger.error(
            f"Unhandled exception: {str(exc)}",
            extra={
                "method": request.method,
                "url": str(request.url),
                "client": request.client.host if request.client else "unknown"
            },
            exc_info=True
        )

        message = "An internal error occurred. Please try again later." if settings.is_production else str(exc)

        return JSONResponse(
            status_code=500,
            content=error_body(message, "INTERNAL_ERROR")
        )


def jsonable_errors(exc: RequestValidationError) -> list:
    """Pydantic error list with non-serialisable context (e.g. exceptions) stringified."""
    errors = []
    for err in exc.errors():
        err = dict(err)
        if "ctx" in err:
            err["ctx"] = {key: str(value) for key, value in err["ctx"].items()}
        errors.append(err)
    return errors
