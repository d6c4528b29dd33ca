"""
Pure ASGI middleware for the Generation Studio API.

``server_factory`` registers them innermost first, so a request passes
through::

    CorrelationId → RequestTimeout → PayloadSizeLimit → (CORS) → routes

CorrelationIdMiddleware
    Gives every request a UUID v4, binds it to the structlog context as
    ``correlation_id``, echoes it in ``X-Correlation-ID`` and answers any
    exception that escaped the application with a JSON 500.

RequestTimeoutMiddleware
    Answers 504 ``request_timeout`` when a request outlives
    ``timeout_for_requests_in_seconds``.

RequestPayloadSizeLimitMiddleware
    Answers 413 ``payload_too_large`` for bodies above
    ``maximum_request_payload_bytes``.  The ceiling is higher than the
    artifact limit, so a moderately oversized image still reaches the
    generation service and is reported as ``artifact_too_large``.

Middleware cannot rely on FastAPI's exception handlers, so the error
envelope is written straight to the ASGI channel by ``send_json_error``.
"""

import asyncio
import collections.abc
import contextlib
import json
import time
import uuid

import starlette.datastructures
import starlette.types
import structlog
import structlog.contextvars

logger = structlog.get_logger()

_CORRELATION_ID_HEADER = b"x-correlation-id"


class InFlightRequestCounter:
    """
    How many requests are inside the middleware stack right now.

    Only touched from the event loop, so no lock is needed.  The lifespan
    reads it when shutdown starts.
    """

    def __init__(self) -> None:
        self._count = 0

    @property
    def count(self) -> int:
        return self._count

    @contextlib.contextmanager
    def track(self) -> collections.abc.Iterator[None]:
        self._count += 1
        try:
            yield
        finally:
            self._count -= 1


def declared_content_length(scope: starlette.types.Scope) -> int | None:
    """``Content-Length`` of the request as an integer, or ``None`` if absent or garbled."""
    raw_value = starlette.datastructures.Headers(scope=scope).get("content-length")
    if raw_value is None:
        return None
    try:
        return int(raw_value)
    except ValueError:
        return None


def correlation_id_from_scope(scope: starlette.types.Scope) -> str:
    return scope.get("state", {}).get("correlation_id", "unknown")


async def send_json_error(
    send: starlette.types.Send,
    status_code: int,
    code: str,
    message: str,
    correlation_id: str,
    extra_headers: list[tuple[bytes, bytes]] | None = None,
) -> None:
    """Write a complete error response (start and body) to ``send``."""
    response_body = json.dumps(
        {"error": {"code": code, "message": message, "correlation_id": correlation_id}},
    ).encode()

    await send(
        {
            "type": "http.response.start",
            "status": status_code,
            "headers": [
                (b"content-type", b"application/json"),
                (b"content-length", str(len(response_body)).encode()),
                *(extra_headers or []),
            ],
        },
    )
    await send({"type": "http.response.body", "body": response_body})


class _HttpMiddleware:
    """Pass non-HTTP scopes (lifespan, websocket) straight through."""

    def __init__(self, app: starlette.types.ASGIApp) -> None:
        self.app = app

    async def __call__(
        self,
        scope: starlette.types.Scope,
        receive: starlette.types.Receive,
        send: starlette.types.Send,
    ) -> None:
        if scope["type"] == "http":
            await self.handle_http(scope, receive, send)
        else:
            await self.app(scope, receive, send)

    async def handle_http(
        self,
        scope: starlette.types.Scope,
        receive: starlette.types.Receive,
        send: starlette.types.Send,
    ) -> None:
        raise NotImplementedError


class CorrelationIdMiddleware(_HttpMiddleware):
    """
    Assign a correlation ID to every HTTP request and contain unhandled
    errors.

    The ID is written to ``scope["state"]`` so that handlers can read it as
    ``request.state.correlation_id``.  Unhandled exceptions are caught here
    rather than in an ``Exception`` handler: Starlette's
    ``ServerErrorMiddleware`` re-raises after answering, and
    ``BaseHTTPMiddleware`` would wrap the error in an ``ExceptionGroup``.
    """

    def __init__(
        self,
        app: starlette.types.ASGIApp,
        in_flight_request_counter: InFlightRequestCounter | None = None,
    ) -> None:
        super().__init__(app)
        self._in_flight_request_counter = in_flight_request_counter or InFlightRequestCounter()

    async def handle_http(
        self,
        scope: starlette.types.Scope,
        receive: starlette.types.Receive,
        send: starlette.types.Send,
    ) -> None:
        correlation_id = str(uuid.uuid4())
        correlation_header = (_CORRELATION_ID_HEADER, correlation_id.encode())
        scope.setdefault("state", {})["correlation_id"] = correlation_id

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            correlation_id=correlation_id,
            method=scope.get("method", ""),
            path=scope.get("path", ""),
        )
        logger.info("http_request_received", request_payload_bytes=declared_content_length(scope))

        response_status: int | None = None
        started_at = time.monotonic()

        async def send_with_correlation_id(message: starlette.types.Message) -> None:
            nonlocal response_status
            if message["type"] == "http.response.start":
                response_status = message["status"]
                message["headers"] = [*message.get("headers", []), correlation_header]
            await send(message)

        with self._in_flight_request_counter.track():
            try:
                await self.app(scope, receive, send_with_correlation_id)
            except Exception:
                logger.exception("unexpected_exception")
                if response_status is None:
                    response_status = 500
                    await send_json_error(
                        send,
                        500,
                        "internal_server_error",
                        "An unexpected internal error occurred.",
                        correlation_id,
                        extra_headers=[correlation_header],
                    )
            finally:
                logger.info(
                    "http_request_completed",
                    status=response_status,
                    duration_milliseconds=round((time.monotonic() - started_at) * 1000, 1),
                )


class RequestTimeoutMiddleware(_HttpMiddleware):
    """
    Bound the whole request by a wall-clock timeout.

    If the application already sent its response headers when the timeout
    fires, the status is committed and the timeout is only logged.
    """

    def __init__(self, app: starlette.types.ASGIApp, request_timeout_seconds: float = 30.0) -> None:
        super().__init__(app)
        self._request_timeout_seconds = request_timeout_seconds

    async def handle_http(
        self,
        scope: starlette.types.Scope,
        receive: starlette.types.Receive,
        send: starlette.types.Send,
    ) -> None:
        response_started = False

        async def send_and_remember_start(message: starlette.types.Message) -> None:
            nonlocal response_started
            response_started = response_started or message["type"] == "http.response.start"
            await send(message)

        try:
            await asyncio.wait_for(
                self.app(scope, receive, send_and_remember_start),
                timeout=self._request_timeout_seconds,
            )
        except TimeoutError:
            logger.error(
                "request_timeout_exceeded",
                timeout_seconds=self._request_timeout_seconds,
                response_started=response_started,
            )
            if not response_started:
                await send_json_error(
                    send,
                    504,
                    "request_timeout",
                    "The request exceeded the maximum allowed processing time and was aborted.",
                    correlation_id_from_scope(scope),
                )


class RequestPayloadSizeLimitMiddleware(_HttpMiddleware):
    """
    Reject request bodies above a byte ceiling.

    A declared ``Content-Length`` over the limit is refused before the body
    is read.  Otherwise the body is counted as it streams in.  When the
    count passes the limit the application sees an early end of body, its
    response is discarded and the 413 is sent in its place.
    """

    def __init__(
        self,
        app: starlette.types.ASGIApp,
        maximum_request_payload_bytes: int = 6 * 1024 * 1024,
    ) -> None:
        super().__init__(app)
        self._maximum_request_payload_bytes = maximum_request_payload_bytes

    async def handle_http(
        self,
        scope: starlette.types.Scope,
        receive: starlette.types.Receive,
        send: starlette.types.Send,
    ) -> None:
        content_length = declared_content_length(scope)
        if content_length is not None and content_length > self._maximum_request_payload_bytes:
            logger.warning(
                "http_payload_too_large",
                declared_content_length=content_length,
                maximum_allowed_bytes=self._maximum_request_payload_bytes,
            )
            await self._reject(scope, send)
            return

        received_bytes = 0
        limit_exceeded = False
        response_started = False

        async def counting_receive() -> starlette.types.Message:
            nonlocal received_bytes, limit_exceeded
            message = await receive()
            if message["type"] == "http.request" and not limit_exceeded:
                received_bytes += len(message.get("body", b""))
                if received_bytes > self._maximum_request_payload_bytes:
                    limit_exceeded = True
                    logger.warning(
                        "http_payload_too_large",
                        accumulated_bytes=received_bytes,
                        maximum_allowed_bytes=self._maximum_request_payload_bytes,
                    )
                    return {"type": "http.request", "body": b"", "more_body": False}
            return message

        async def send_unless_rejected(message: starlette.types.Message) -> None:
            nonlocal response_started
            if limit_exceeded and not response_started:
                return
            response_started = response_started or message["type"] == "http.response.start"
            await send(message)

        try:
            await self.app(scope, counting_receive, send_unless_rejected)
        except Exception:
            # Parsing a truncated body may fail in any number of ways.
            if not limit_exceeded or response_started:
                raise

        if limit_exceeded and not response_started:
            await self._reject(scope, send)

    async def _reject(self, scope: starlette.types.Scope, send: starlette.types.Send) -> None:
        await send_json_error(
            send,
            413,
            "payload_too_large",
            f"The request payload exceeds the maximum allowed size of {self._maximum_request_payload_bytes} bytes.",
            correlation_id_from_scope(scope),
        )
