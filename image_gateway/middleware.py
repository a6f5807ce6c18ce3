"""
HTTP middleware for the FastAPI application.

Provides cross-cutting concerns that apply to every request/response cycle:

- **CrossOriginHeadersMiddleware** (outermost): stamps the permissive
  ``Access-Control-Allow-*`` headers on every response, including error
  responses produced by the middleware below it.

- **CorrelationIdMiddleware**: assigns a UUID v4 correlation ID to every
  request and attaches it to both the response header and the structured
  log context.  Also serves as the catch-all error boundary for unhandled
  exceptions (HTTP 500).

Middleware registration order
-----------------------------
ASGI middleware executes in reverse registration order (last registered =
outermost).  The resulting execution order is::

    Request → CrossOriginHeaders → CorrelationId → App

Both are pure ASGI middleware: ``BaseHTTPMiddleware`` wraps unhandled
exceptions in ``ExceptionGroup``, which defeats the catch-all boundary.
"""

import json
import time
import uuid

import starlette.responses
import starlette.types
import structlog
import structlog.contextvars

logger = structlog.get_logger()

CROSS_ORIGIN_RESPONSE_HEADERS: tuple[tuple[bytes, bytes], ...] = (
    (b"access-control-allow-origin", b"*"),
    (b"access-control-allow-methods", b"*"),
    (b"access-control-allow-headers", b"*"),
)


def build_preflight_response() -> starlette.responses.Response:
    """Answer an ``OPTIONS`` request: no body, JSON content type."""
    return starlette.responses.Response(content=b"", media_type="application/json")


def extract_content_length_from_headers(
    headers: list[tuple[bytes, bytes]],
) -> int | None:
    """
    Search an ASGI header list for the Content-Length header and return
    its integer value, or ``None`` if the header is absent or cannot be
    parsed as an integer.
    """
    for header_name, header_value in headers:
        if header_name.lower() == b"content-length":
            try:
                return int(header_value)
            except (ValueError, TypeError):
                return None
    return None


class CrossOriginHeadersMiddleware:
    """
    Add ``Access-Control-Allow-Origin/Methods/Headers: *`` to every HTTP
    response.

    Preflight ``OPTIONS`` requests are answered by the routes themselves
    (an empty JSON body), so this middleware only decorates responses and
    never short-circuits a request.  Headers already set by the
    application are left untouched.
    """

    def __init__(self, app: starlette.types.ASGIApp) -> None:
        self.app = app

    async def __call__(
        self,
        scope: starlette.types.Scope,
        receive: starlette.types.Receive,
        send: starlette.types.Send,
    ) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        async def send_with_cross_origin_headers(
            message: starlette.types.Message,
        ) -> None:
            if message["type"] == "http.response.start":
                headers = list(message.get("headers", []))
                present_header_names = {header_name.lower() for header_name, _ in headers}
                for header_name, header_value in CROSS_ORIGIN_RESPONSE_HEADERS:
                    if header_name not in present_header_names:
                        headers.append((header_name, header_value))
                message["headers"] = headers
            await send(message)

        await self.app(scope, receive, send_with_cross_origin_headers)


class CorrelationIdMiddleware:
    """
    Assign a unique correlation ID (UUID v4) to every incoming request.

    The ID is stored on ``request.state.correlation_id`` so that error
    handlers can include it in response bodies, and is added as an
    ``X-Correlation-ID`` response header.

    Unhandled exceptions are caught here rather than in an exception
    handler: Starlette routes ``Exception`` handlers to
    ``ServerErrorMiddleware``, which always re-raises after responding.
    """

    def __init__(self, app: starlette.types.ASGIApp) -> None:
        self.app = app

    async def __call__(
        self,
        scope: starlette.types.Scope,
        receive: starlette.types.Receive,
        send: starlette.types.Send,
    ) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        correlation_id = str(uuid.uuid4())
        method = scope.get("method", "")
        path = scope.get("path", "")
        start_time = time.monotonic()
        response_status = 0
        response_payload_bytes = 0
        response_started = False

        if "state" not in scope:
            scope["state"] = {}
        scope["state"]["correlation_id"] = correlation_id

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(correlation_id=correlation_id)

        logger.info(
            "http_request_received",
            method=method,
            path=path,
            request_payload_bytes=extract_content_length_from_headers(scope.get("headers", [])),
        )

        async def send_with_correlation_id_and_size_tracking(
            message: starlette.types.Message,
        ) -> None:
            nonlocal response_status, response_payload_bytes, response_started
            if message["type"] == "http.response.start":
                response_started = True
                response_status = message.get("status", 0)
                headers = list(message.get("headers", []))
                headers.append((b"x-correlation-id", correlation_id.encode()))
                message["headers"] = headers
            elif message["type"] == "http.response.body":
                response_payload_bytes += len(message.get("body", b""))
            await send(message)

        try:
            await self.app(
                scope,
                receive,
                send_with_correlation_id_and_size_tracking,
            )
        except Exception:
            response_status = 500
            logger.exception("unexpected_exception")
            if response_started:
                # The status line is already on the wire; nothing more can be sent.
                return
            error_response_body = json.dumps(
                {
                    "error": {
                        "code": "internal_server_error",
                        "message": "An unexpected internal error occurred.",
                        "correlation_id": correlation_id,
                    }
                }
            ).encode()
            response_payload_bytes = len(error_response_body)
            await send(
                {
                    "type": "http.response.start",
                    "status": 500,
                    "headers": [
                        (b"content-type", b"application/json"),
                        (b"x-correlation-id", correlation_id.encode()),
                    ],
                }
            )
            await send(
                {
                    "type": "http.response.body",
                    "body": error_response_body,
                }
            )
        finally:
            duration_milliseconds = (time.monotonic() - start_time) * 1000
            logger.info(
                "http_request_completed",
                method=method,
                path=path,
                status=response_status,
                duration_milliseconds=round(duration_milliseconds, 1),
                response_payload_bytes=response_payload_bytes,
            )
