"""
Exception handlers that turn every anticipated failure into the JSON error
envelope::

    {"error": {"code": "...", "message": "...", "correlation_id": "...",
               "details": [...]}}

``details`` is present only for field-level validation failures.

Three handlers are registered:

``ServiceError``
    One handler for the whole hierarchy.  The status code is the value of
    the exception's ``ErrorKind`` and ``code`` comes from the exception
    class, so a new error class never needs a new handler.  OVERLOADED
    responses carry ``Retry-After``; UNAUTHORIZED responses carry
    ``WWW-Authenticate: Bearer``.

``RequestValidationError``
    FastAPI's JSON body validation (signup and login).  Unparseable JSON is
    ``invalid_request_json``; a well-formed body with bad fields is
    ``request_validation_failed`` with per-field ``details``.

``starlette.exceptions.HTTPException``
    Raised by the framework itself: unknown paths (404), methods a path
    does not support (405, with ``Allow``) and multipart bodies the parser
    rejects (400).

Unexpected exceptions are not handled here; ``CorrelationIdMiddleware``
answers them with a bare 500.
"""

import typing

import fastapi
import fastapi.exceptions
import fastapi.responses
import starlette.exceptions
import starlette.routing
import structlog

import generation_studio.exceptions
import generation_studio.models

logger = structlog.get_logger()


class _FrameworkError(typing.NamedTuple):
    code: str
    message: str
    log_event: str


_FRAMEWORK_ERRORS: dict[int, _FrameworkError] = {
    400: _FrameworkError(
        "malformed_request_body",
        "The request body could not be parsed.",
        "http_malformed_request_body",
    ),
    404: _FrameworkError(
        "not_found",
        "The requested endpoint does not exist.",
        "http_not_found",
    ),
    405: _FrameworkError(
        "method_not_allowed",
        "The HTTP method is not allowed for this endpoint.",
        "http_method_not_allowed",
    ),
}


_HTTP_METHODS = frozenset({"GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS", "TRACE"})


def _get_correlation_id(request: fastapi.Request) -> str:
    return getattr(request.state, "correlation_id", "unknown")


def sanitise_validation_errors(errors: list) -> list[dict]:
    """
    Reduce Pydantic error dictionaries to ``loc``, ``msg`` and ``type``.

    Raw Pydantic errors contain the rejected input and documentation URLs;
    neither belongs in a response body.
    """
    return [
        {
            "loc": list(error.get("loc", [])),
            "msg": error.get("msg", ""),
            "type": error.get("type", ""),
        }
        for error in errors
    ]


def _allowed_methods_header(request: fastapi.Request) -> str:
    """
    Collect the methods of every operation whose path template matches this
    request.

    The OpenAPI document is read rather than ``app.routes`` because included
    routers are not always flattened into the application's route list, and
    Starlette only reports the methods of the first partially matching route
    while ``/generations`` is served by two (GET and POST).
    """
    allowed_methods: set[str] = set()
    for path_template, operations in request.app.openapi().get("paths", {}).items():
        path_regex, _, _ = starlette.routing.compile_path(path_template)
        if path_regex.match(request.url.path):
            allowed_methods.update(
                method.upper() for method in operations if method.upper() in _HTTP_METHODS
            )
    if "GET" in allowed_methods:
        allowed_methods.add("HEAD")
    return ", ".join(sorted(allowed_methods))


def build_error_response(
    status_code: int,
    code: str,
    message: str,
    correlation_id: str,
    details: list | None = None,
) -> fastapi.responses.JSONResponse:
    """Serialise the error envelope, leaving ``details`` out when it is ``None``."""
    error_response = generation_studio.models.ErrorResponse(
        error=generation_studio.models.ErrorDetail(
            code=code,
            message=message,
            correlation_id=correlation_id,
            details=details,
        ),
    )
    return fastapi.responses.JSONResponse(
        status_code=status_code,
        content=error_response.model_dump(exclude_none=True),
    )


def _headers_for_kind(
    request: fastapi.Request,
    error_kind: generation_studio.exceptions.ErrorKind,
) -> dict[str, str]:
    if error_kind is generation_studio.exceptions.ErrorKind.OVERLOADED:
        return {"Retry-After": str(getattr(request.app.state, "retry_after_overloaded_seconds", 1))}
    if error_kind is generation_studio.exceptions.ErrorKind.UNAUTHORIZED:
        return {"WWW-Authenticate": "Bearer"}
    return {}


def register_error_handlers(fastapi_application: fastapi.FastAPI) -> None:
    """Attach the service, validation and framework error handlers."""

    @fastapi_application.exception_handler(generation_studio.exceptions.ServiceError)
    async def handle_service_error(
        request: fastapi.Request,
        service_error: generation_studio.exceptions.ServiceError,
    ) -> fastapi.responses.JSONResponse:
        is_internal = service_error.kind is generation_studio.exceptions.ErrorKind.INTERNAL
        (logger.error if is_internal else logger.warning)(
            "service_error",
            error_kind=service_error.kind.name,
            error_code=service_error.code,
            status_code=service_error.status_code,
            detail=service_error.detail,
        )

        response = build_error_response(
            service_error.status_code,
            service_error.code,
            service_error.detail,
            _get_correlation_id(request),
            details=service_error.details,
        )
        response.headers.update(_headers_for_kind(request, service_error.kind))
        return response

    @fastapi_application.exception_handler(fastapi.exceptions.RequestValidationError)
    async def handle_request_validation_error(
        request: fastapi.Request,
        validation_error: fastapi.exceptions.RequestValidationError,
    ) -> fastapi.responses.JSONResponse:
        errors = validation_error.errors()
        logger.warning("http_validation_failed", error_count=len(errors))

        if any(error.get("type", "").startswith("json") for error in errors):
            return build_error_response(
                400,
                "invalid_request_json",
                "The request body contains invalid JSON.",
                _get_correlation_id(request),
            )

        return build_error_response(
            400,
            generation_studio.exceptions.RequestValidationFailedError.code,
            generation_studio.exceptions.RequestValidationFailedError.default_detail,
            _get_correlation_id(request),
            details=sanitise_validation_errors(errors),
        )

    @fastapi_application.exception_handler(starlette.exceptions.HTTPException)
    async def handle_starlette_http_exception(
        request: fastapi.Request,
        http_exception: starlette.exceptions.HTTPException,
    ) -> fastapi.responses.JSONResponse:
        framework_error = _FRAMEWORK_ERRORS.get(
            http_exception.status_code,
            _FrameworkError("unexpected_error", str(http_exception.detail), "http_framework_error"),
        )
        logger.warning(
            framework_error.log_event,
            status_code=http_exception.status_code,
            error_code=framework_error.code,
            detail=str(http_exception.detail),
        )

        response = build_error_response(
            http_exception.status_code,
            framework_error.code,
            framework_error.message,
            _get_correlation_id(request),
        )
        if http_exception.status_code == 405:
            response.headers["Allow"] = _allowed_methods_header(request)
        return response
