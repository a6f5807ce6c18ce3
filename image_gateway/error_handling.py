"""
Centralised error-handling registration for the FastAPI application.

Every gateway exception is rendered to HTTP here and nowhere else.  Each
branch of the exception hierarchy maps to one status code and one
machine-readable error code:

    - BadRequestError           →  400 ``bad_request``
    - InternalServerError       →  500 ``internal_server_error``
    - MethodNotAllowedError     →  405 ``method_not_allowed``
    - Framework 404 / 405       →  404 ``not_found`` / 405 ``method_not_allowed``
    - Unexpected exceptions     →  500 (handled in ``CorrelationIdMiddleware``)

All error bodies share one shape::

    {"error": {"code": "...", "message": "...", "correlation_id": "..."}}

Starlette raises its own ``HTTPException`` for unknown paths and methods;
a handler is registered for it so those responses are JSON as well.
"""

import fastapi
import fastapi.exceptions
import fastapi.responses
import starlette.exceptions
import structlog

import image_gateway.exceptions
import image_gateway.models

logger = structlog.get_logger()

# Methods accepted by the edit and variation endpoints, advertised on 405.
IMAGE_ENDPOINT_ALLOWED_METHODS = "OPTIONS, POST"

_HTTP_STATUS_CODE_TO_ERROR_CODE: dict[int, str] = {
    400: "bad_request",
    404: "not_found",
    405: "method_not_allowed",
}

_HTTP_STATUS_CODE_TO_ERROR_MESSAGE: dict[int, str] = {
    404: "The requested endpoint does not exist.",
    405: "The HTTP method is not allowed for this endpoint.",
}

_HTTP_STATUS_CODE_TO_LOG_EVENT_NAME: dict[int, str] = {
    404: "http_not_found",
    405: "http_method_not_allowed",
}


def _get_correlation_id(request: fastapi.Request) -> str:
    """
    Read the correlation ID set by ``CorrelationIdMiddleware``, falling
    back to ``"unknown"`` if the middleware has not run.
    """
    return getattr(request.state, "correlation_id", "unknown")


def _build_error_response(
    status_code: int,
    code: str,
    message: str,
    correlation_id: str,
) -> fastapi.responses.JSONResponse:
    """
    Build a JSON error response in the shared ``ErrorResponse`` shape.

    Args:
        status_code: The HTTP status code for the response.
        code: The machine-readable error code in ``snake_case`` format.
        message: The exception's human-readable detail.
        correlation_id: The UUID v4 correlation identifier for this
            request.
    """
    error_response = image_gateway.models.ErrorResponse(
        error=image_gateway.models.ErrorDetail(
            code=code,
            message=message,
            correlation_id=correlation_id,
        ),
    )

    return fastapi.responses.JSONResponse(
        status_code=status_code,
        content=error_response.model_dump(exclude_none=True),
    )


def register_error_handlers(fastapi_application: fastapi.FastAPI) -> None:
    """
    Register all exception handlers on the given FastAPI application.

    Called once from ``server_factory.create_application``.  The catch-all
    for unexpected exceptions lives in ``CorrelationIdMiddleware`` because
    Starlette's ``ServerErrorMiddleware`` re-raises after responding.
    """

    @fastapi_application.exception_handler(
        image_gateway.exceptions.BadRequestError,
    )
    async def handle_bad_request_error(
        request: fastapi.Request,
        bad_request_error: image_gateway.exceptions.BadRequestError,
    ) -> fastapi.responses.JSONResponse:
        """Return 400 for any request the gateway could not decode."""
        logger.warning(
            "request_decoding_failed",
            error_type=type(bad_request_error).__name__,
            field_name=getattr(bad_request_error, "field_name", None),
            detail=bad_request_error.detail,
        )
        return _build_error_response(
            400,
            "bad_request",
            bad_request_error.detail,
            _get_correlation_id(request),
        )

    @fastapi_application.exception_handler(
        image_gateway.exceptions.InternalServerError,
    )
    async def handle_internal_server_error(
        request: fastapi.Request,
        internal_error: image_gateway.exceptions.InternalServerError,
    ) -> fastapi.responses.JSONResponse:
        """
        Return 500 for storage, lookup, engine and translation failures,
        as well as unsupported file paths and methods.
        """
        logger.error(
            "request_processing_failed",
            error_type=type(internal_error).__name__,
            detail=internal_error.detail,
        )
        return _build_error_response(
            500,
            "internal_server_error",
            internal_error.detail,
            _get_correlation_id(request),
        )

    @fastapi_application.exception_handler(
        image_gateway.exceptions.MethodNotAllowedError,
    )
    async def handle_method_not_allowed_error(
        request: fastapi.Request,
        method_error: image_gateway.exceptions.MethodNotAllowedError,
    ) -> fastapi.responses.JSONResponse:
        logger.warning(
            "http_method_not_allowed",
            method=method_error.method,
            path=request.url.path,
        )
        response = _build_error_response(
            405,
            "method_not_allowed",
            method_error.detail,
            _get_correlation_id(request),
        )
        response.headers["Allow"] = IMAGE_ENDPOINT_ALLOWED_METHODS
        return response

    @fastapi_application.exception_handler(
        fastapi.exceptions.RequestValidationError,
    )
    async def handle_request_validation_error(
        request: fastapi.Request,
        validation_error: fastapi.exceptions.RequestValidationError,
    ) -> fastapi.responses.JSONResponse:
        errors = validation_error.errors()
        logger.warning("http_validation_failed", error_count=len(errors))
        return _build_error_response(
            400,
            "bad_request",
            "The request could not be decoded.",
            _get_correlation_id(request),
        )

    @fastapi_application.exception_handler(
        starlette.exceptions.HTTPException,
    )
    async def handle_starlette_http_exception(
        request: fastapi.Request,
        http_exception: starlette.exceptions.HTTPException,
    ) -> fastapi.responses.JSONResponse:
        """
        Return structured JSON for framework-raised HTTP errors such as
        undefined endpoints (404) and disallowed methods (405).
        Unmapped status codes fall back to ``"unexpected_error"``.
        """
        error_code = _HTTP_STATUS_CODE_TO_ERROR_CODE.get(
            http_exception.status_code,
            "unexpected_error",
        )
        error_message = _HTTP_STATUS_CODE_TO_ERROR_MESSAGE.get(
            http_exception.status_code,
            str(http_exception.detail),
        )

        log_event_name = _HTTP_STATUS_CODE_TO_LOG_EVENT_NAME.get(
            http_exception.status_code,
            "http_framework_error",
        )
        logger.warning(
            log_event_name,
            status_code=http_exception.status_code,
            error_code=error_code,
            detail=str(http_exception.detail),
        )

        response = _build_error_response(
            http_exception.status_code,
            error_code,
            error_message,
            _get_correlation_id(request),
        )

        # Starlette attaches ``Allow`` to its 405s.
        if http_exception.headers:
            response.headers.update(http_exception.headers)

        return response
