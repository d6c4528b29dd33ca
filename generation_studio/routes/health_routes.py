"""
Route definitions for the liveness and readiness probes.

- ``GET /health`` answers 200 whenever the process is serving requests.
- ``GET /health/ready`` additionally checks that the record store answers
  a trivial query, and answers 503 with ``Retry-After`` when it does not.

Both responses carry ``Cache-Control: no-store, no-cache`` and
``Pragma: no-cache`` so that intermediaries never serve a stale probe
result.
"""

import fastapi
import fastapi.responses
import structlog

logger = structlog.get_logger()

health_router = fastapi.APIRouter(tags=["Health"])

_PROBE_CACHE_SUPPRESSION_HEADERS: dict[str, str] = {
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
    """Report liveness only. Backend checks belong to ``/health/ready``."""
    return fastapi.responses.JSONResponse(
        content={"status": "healthy"},
        headers=_PROBE_CACHE_SUPPRESSION_HEADERS,
    )


@health_router.get(
    "/health/ready",
    summary="Readiness check",
    description=(
        "Checks that the record store is initialised and reachable. Returns "
        "HTTP 503 with a Retry-After header when it is not."
    ),
    status_code=200,
    responses={
        503: {
            "description": "Service Unavailable — the database did not answer.",
            "content": {
                "application/json": {
                    "example": {"status": "not_ready", "checks": {"database": "unavailable"}},
                },
            },
        },
    },
)
async def readiness_check(request: fastapi.Request) -> fastapi.responses.JSONResponse:
    """
    Aggregate backend checks into ``{"status", "checks"}``.

    The record store is absent from ``app.state`` until the lifespan
    startup has run; that counts as unavailable.
    """
    checks: dict[str, str] = {}

    record_store = getattr(request.app.state, "record_store", None)
    database_is_healthy = record_store is not None and await record_store.check_health()
    checks["database"] = "ok" if database_is_healthy else "unavailable"

    all_backends_are_healthy = all(check_status == "ok" for check_status in checks.values())
    response_headers = dict(_PROBE_CACHE_SUPPRESSION_HEADERS)

    if not all_backends_are_healthy:
        logger.warning("readiness_check_failed", checks=checks)
        response_headers["Retry-After"] = str(getattr(request.app.state, "retry_after_not_ready_seconds", 10))

    return fastapi.responses.JSONResponse(
        content={
            "status": "ready" if all_backends_are_healthy else "not_ready",
            "checks": checks,
        },
        status_code=200 if all_backends_are_healthy else 503,
        headers=response_headers,
    )
