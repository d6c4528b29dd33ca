"""
Asynchronous client for the Generation Studio REST API.

``GenerationClient`` wraps a persistent ``httpx.AsyncClient`` and keeps the
bearer token obtained from signup or login, attaching it to every
authenticated call.  It performs exactly one HTTP request per method call:
retrying overloaded generations is the job of
``generation_studio.client.retry_controller``.

Error translation
-----------------
Every non-2xx response is turned back into the exception hierarchy of
``generation_studio.exceptions``.  The status code selects the
``ErrorKind``; the ``code`` member of the JSON error body then selects the
most specific exception class of that kind.  A code that is unknown, or
whose class belongs to a different kind, falls back to the generic class
of the kind.  The message text is never inspected.

Transport failures (connection refused, timeouts, protocol errors) raise
``InternalServiceError``.
"""

import dataclasses

import httpx
import structlog

import generation_studio.exceptions
import generation_studio.models

logger = structlog.get_logger()


@dataclasses.dataclass(frozen=True)
class GenerationImage:
    """An image to upload alongside a generation request."""

    file_name: str
    content: bytes
    content_type: str = "image/png"


@dataclasses.dataclass(frozen=True)
class GenerationRequest:
    """The inputs of one logical generation, reused unchanged on every retry."""

    prompt: str
    style: str
    image: GenerationImage | None = None


def _read_error_body(http_response: httpx.Response) -> tuple[str | None, str | None, list | None]:
    """
    Extract ``code``, ``message`` and ``details`` from an error response.

    Any of the three is ``None`` when the body is not the standard JSON
    error envelope.
    """
    try:
        response_body = http_response.json()
    except ValueError:
        return None, None, None

    error = response_body.get("error") if isinstance(response_body, dict) else None
    if not isinstance(error, dict):
        return None, None, None

    details = error.get("details")
    return error.get("code"), error.get("message"), details if isinstance(details, list) else None


def translate_error_response(http_response: httpx.Response) -> generation_studio.exceptions.ServiceError:
    """Build the exception that corresponds to a non-2xx response."""
    error_kind = generation_studio.exceptions.ErrorKind.from_status_code(http_response.status_code)
    error_code, error_message, error_details = _read_error_body(http_response)

    exception_class = generation_studio.exceptions.EXCEPTION_CLASS_FOR_CODE.get(error_code or "")
    if exception_class is None or exception_class.kind is not error_kind:
        exception_class = generation_studio.exceptions.EXCEPTION_CLASS_FOR_KIND[error_kind]

    return exception_class(detail=error_message, details=error_details)


class GenerationClient:
    """
    Stateful API client: one instance per signed-in user.

    The client must be closed with ``close`` (or used as an async context
    manager) to release its connection pool.
    """

    def __init__(
        self,
        base_url: str = "http://127.0.0.1:4000",
        request_timeout_seconds: float = 30.0,
        token: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """
        Args:
            base_url: Root URL of the API.
            request_timeout_seconds: Per-request timeout.  It must exceed
                the server's simulated latency (two seconds by default).
            token: A previously issued bearer token, if any.
            transport: Optional httpx transport, for example
                ``httpx.ASGITransport`` to talk to an in-process app.
        """
        self._token = token
        self.http_client = httpx.AsyncClient(
            base_url=base_url,
            timeout=httpx.Timeout(request_timeout_seconds),
            transport=transport,
        )

    async def __aenter__(self) -> "GenerationClient":
        return self

    async def __aexit__(self, *exception_information: object) -> None:
        await self.close()

    @property
    def token(self) -> str | None:
        return self._token

    @property
    def is_authenticated(self) -> bool:
        return self._token is not None

    async def sign_up(self, email: str, password: str) -> str:
        """Create an account, keep its token and return it."""
        token_response = await self._exchange_credentials("/auth/signup", email, password)
        self._token = token_response.token
        return self._token

    async def log_in(self, email: str, password: str) -> str:
        """Log in, keep the token and return it."""
        token_response = await self._exchange_credentials("/auth/login", email, password)
        self._token = token_response.token
        return self._token

    def log_out(self) -> None:
        """Forget the token.  Tokens are stateless, so nothing is sent."""
        self._token = None

    async def submit_generation(
        self,
        generation_request: GenerationRequest,
    ) -> generation_studio.models.GenerationResult:
        """
        Send one ``POST /generations`` request.

        The body is always ``multipart/form-data``.  The text fields are
        encoded as file-less parts so that httpx produces a multipart body
        even when there is no image to upload.

        Raises:
            ServiceOverloadedError: The simulated model rejected the
                request (HTTP 429).  This is the only retryable outcome.
            ServiceError: Any other failure, translated by kind.
        """
        multipart_fields: list[tuple[str, tuple]] = [
            ("prompt", (None, generation_request.prompt)),
            ("style", (None, generation_request.style)),
        ]
        if generation_request.image is not None:
            multipart_fields.append(
                (
                    "file",
                    (
                        generation_request.image.file_name,
                        generation_request.image.content,
                        generation_request.image.content_type,
                    ),
                ),
            )

        http_response = await self._send("POST", "/generations", files=multipart_fields)
        return generation_studio.models.GenerationResult.model_validate(http_response.json())

    async def list_generations(self) -> list[generation_studio.models.GenerationResult]:
        """Fetch the caller's most recent generations, newest first."""
        http_response = await self._send("GET", "/generations")
        return [
            generation_studio.models.GenerationResult.model_validate(generation_payload)
            for generation_payload in http_response.json()
        ]

    async def close(self) -> None:
        await self.http_client.aclose()

    async def _exchange_credentials(
        self,
        path: str,
        email: str,
        password: str,
    ) -> generation_studio.models.TokenResponse:
        http_response = await self._send(
            "POST",
            path,
            json={"email": email, "password": password},
            authenticated=False,
        )
        return generation_studio.models.TokenResponse.model_validate(http_response.json())

    async def _send(
        self,
        method: str,
        path: str,
        authenticated: bool = True,
        **request_arguments,
    ) -> httpx.Response:
        headers: dict[str, str] = {}
        if authenticated and self._token is not None:
            headers["Authorization"] = f"Bearer {self._token}"

        try:
            http_response = await self.http_client.request(method, path, headers=headers, **request_arguments)
        except httpx.TimeoutException as timeout_error:
            logger.error("api_request_timed_out", method=method, path=path)
            raise generation_studio.exceptions.InternalServiceError(
                detail="The request to the generation service timed out.",
            ) from timeout_error
        except httpx.RequestError as request_error:
            logger.error(
                "api_request_failed",
                method=method,
                path=path,
                error_type=type(request_error).__name__,
                error=str(request_error),
            )
            raise generation_studio.exceptions.InternalServiceError(
                detail=f"The generation service could not be reached: {type(request_error).__name__}.",
            ) from request_error

        if http_response.is_success:
            return http_response

        service_error = translate_error_response(http_response)
        logger.info(
            "api_request_rejected",
            method=method,
            path=path,
            status_code=http_response.status_code,
            error_code=service_error.code,
        )
        raise service_error
