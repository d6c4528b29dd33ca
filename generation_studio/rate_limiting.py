"""
Per-client rate limiting for the authentication endpoints.

``POST /auth/signup`` and ``POST /auth/login`` hash or verify a bcrypt
password on every call, which makes them the cheapest way to burn server
CPU and the natural target of credential stuffing.  They are throttled per
remote address with slowapi (backed by the ``limits`` library).

This throttle is unrelated to the simulated overload on
``POST /generations``: both answer HTTP 429, but with different error
codes (``rate_limit_exceeded`` versus ``service_overloaded``) and
different ``Retry-After`` values, and only the latter is retried by the
client retry controller.

slowapi applies limits through a decorator evaluated when the route
modules are imported, so the limiter and the limit holder live at module
level.  ``server_factory.create_application`` writes the operator's limit
into the holder once at startup; tests call ``rate_limiter.reset()`` to
clear counters between cases.
"""

import fastapi
import fastapi.responses
import slowapi
import slowapi.errors
import slowapi.util
import structlog

import generation_studio.models

logger = structlog.get_logger()


class AuthenticationRateLimitConfiguration:
    """
    Holds the authentication rate limit string.

    An instance is callable so that it can be handed to
    ``slowapi.Limiter.limit()`` as a dynamic limit: slowapi calls it on
    every request and receives a string such as ``"20/minute"``.
    """

    def __init__(self, default_rate_limit: str = "20/minute") -> None:
        self._rate_limit_string: str = default_rate_limit

    def configure(self, rate_limit_string: str) -> None:
        """Replace the limit. Called once during application construction."""
        self._rate_limit_string = rate_limit_string

    def __call__(self) -> str:
        return self._rate_limit_string


authentication_rate_limit_configuration = AuthenticationRateLimitConfiguration()

rate_limiter = slowapi.Limiter(key_func=slowapi.util.get_remote_address)

authentication_rate_limit = rate_limiter.limit(authentication_rate_limit_configuration)


async def rate_limit_exceeded_handler(
    request: fastapi.Request,
    rate_limit_exceeded_exception: slowapi.errors.RateLimitExceeded,
) -> fastapi.responses.JSONResponse:
    """
    Answer a throttled authentication request with a structured HTTP 429.

    ``Retry-After`` carries ``retry_after_rate_limit_seconds`` from
    ``app.state``, falling back to 60 when the lifespan has not run.
    """
    correlation_id = getattr(request.state, "correlation_id", "unknown")
    retry_after_seconds = getattr(request.app.state, "retry_after_rate_limit_seconds", 60)

    logger.warning(
        "authentication_rate_limit_exceeded",
        path=request.url.path,
        limit=str(rate_limit_exceeded_exception.detail),
    )

    response = fastapi.responses.JSONResponse(
        status_code=429,
        content=generation_studio.models.ErrorResponse(
            error=generation_studio.models.ErrorDetail(
                code="rate_limit_exceeded",
                message=f"Rate limit exceeded: {rate_limit_exceeded_exception.detail}",
                correlation_id=correlation_id,
            ),
        ).model_dump(exclude_unset=True),
    )
    response.headers["Retry-After"] = str(retry_after_seconds)
    return response
