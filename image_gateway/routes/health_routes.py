"""
Route definitions for operational probes.

- ``GET /health``: liveness.  Returns 200 whenever the process is running.
- ``GET /health/ready``: readiness.  Returns 200 when the archives
  directory is writable and the inference engine answers its health
  probe; otherwise 503 with a ``Retry-After`` header.
- ``GET /echo``: plain-text connectivity check.

Probe responses carry ``Cache-Control: no-store, no-cache`` and
``Pragma: no-cache`` so proxies never serve a stale status.
"""

import asyncio

import fastapi
import fastapi.responses
import structlog

logger = structlog.get_logger()

health_router = fastapi.APIRouter(tags=["Health"])

_INFRASTRUCTURE_CACHE_SUPPRESSION_HEADERS: dict[str, str] = {
    "Cache-Control": "no-store, no-cache",
    "Pragma": "no-cache",
}


@health_router.get(
    "/health",
    summary="Liveness check",
    description="Returns a simple healthy status when the service is running.",
    status_code=200,
)
async def health_check() -> fastapi.responses.JSONResponse:
    return fastapi.responses.JSONResponse(
        content={"status": "healthy"},
        headers=_INFRASTRUCTURE_CACHE_SUPPRESSION_HEADERS,
    )


@health_router.get(
    "/health/ready",
    summary="Readiness check",
    description=(
        "Checks that the archives directory is writable and the inference "
        "engine is reachable. Returns HTTP 503 with a Retry-After header "
        "when either is unavailable."
    ),
    status_code=200,
)
async def readiness_check(request: fastapi.Request) -> fastapi.responses.JSONResponse:
    """
    Aggregate the readiness of the file registry and the inference engine.

    The body reports each check as ``"ok"`` or ``"unavailable"``::

        {"status": "not_ready", "checks": {"file_registry": "ok", "inference_engine": "unavailable"}}
    """
    checks: dict[str, str] = {}

    file_registry = getattr(request.app.state, "file_registry", None)
    if file_registry is not None and await asyncio.to_thread(file_registry.is_writable):
        checks["file_registry"] = "ok"
    else:
        checks["file_registry"] = "unavailable"

    inference_engine_service = getattr(request.app.state, "inference_engine_service", None)
    if inference_engine_service is not None and await inference_engine_service.check_health():
        checks["inference_engine"] = "ok"
    else:
        checks["inference_engine"] = "unavailable"

    all_checks_passed = all(check_status == "ok" for check_status in checks.values())
    response_headers: dict[str, str] = dict(_INFRASTRUCTURE_CACHE_SUPPRESSION_HEADERS)

    if not all_checks_passed:
        logger.warning("readiness_check_failed", checks=checks)
        retry_after_not_ready_seconds = getattr(request.app.state, "retry_after_not_ready_seconds", 10)
        response_headers["Retry-After"] = str(retry_after_not_ready_seconds)

    return fastapi.responses.JSONResponse(
        content={
            "status": "ready" if all_checks_passed else "not_ready",
            "checks": checks,
        },
        status_code=200 if all_checks_passed else 503,
        headers=response_headers,
    )


@health_router.get(
    "/echo",
    summary="Connectivity check",
    response_class=fastapi.responses.PlainTextResponse,
)
async def echo() -> fastapi.responses.PlainTextResponse:
    return fastapi.responses.PlainTextResponse("echo test")
