"""
Client-side retry policy for generation requests.

The server rejects a fraction of valid generation requests with HTTP 429
(``service_overloaded``) and never retries on its own.
``GenerationRetryController`` turns that into a bounded, selective retry:

- at most ``MAXIMUM_ATTEMPTS`` (3) attempts per logical generation;
- only ``ServiceOverloadedError`` is retried, every other failure is
  returned to the caller after the first attempt;
- before attempt ``n + 1`` the controller waits
  ``RETRY_DELAY_SECONDS * n`` (0.5 s, then 1.0 s);
- when the final attempt is also overloaded, ``RetryLimitReachedError``
  is raised with the last server rejection chained as ``__cause__`` and
  ``is_exhausted`` stays set until the next ``generate``.

Cancellation
------------
Each call to ``generate`` runs under a fresh ``CancellationToken``.  Both
the HTTP call and the backoff sleep are raced against it, so ``cancel()``
aborts an in-flight request and also stops a pending retry from ever being
sent.  Starting a new ``generate`` cancels the previous one.  The
controller only resets its own state when the settling call still owns
the current token, so a superseded call cannot clobber the state of its
successor.
"""

import asyncio
import collections.abc
import typing

import structlog

import generation_studio.client.generation_client
import generation_studio.exceptions
import generation_studio.models

logger = structlog.get_logger()

MAXIMUM_ATTEMPTS = 3
RETRY_DELAY_SECONDS = 0.5

_T = typing.TypeVar("_T")


class CancellationToken:
    """
    One-shot cancellation signal shared by every step of a logical call.
    """

    def __init__(self) -> None:
        self._cancelled = asyncio.Event()

    @property
    def is_cancelled(self) -> bool:
        return self._cancelled.is_set()

    def cancel(self) -> None:
        self._cancelled.set()

    async def run(self, awaitable: collections.abc.Awaitable[_T]) -> _T:
        """
        Await ``awaitable`` unless the token is cancelled first.

        On cancellation the underlying task is cancelled and
        ``GenerationCancelledError`` is raised.  An already cancelled token
        never starts the awaitable.

        Raises:
            GenerationCancelledError: When the token is cancelled before
                the awaitable completes.
        """
        if self.is_cancelled:
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            raise generation_studio.exceptions.GenerationCancelledError()

        operation_task = asyncio.ensure_future(awaitable)
        cancellation_task = asyncio.ensure_future(self._cancelled.wait())
        try:
            await asyncio.wait(
                {operation_task, cancellation_task},
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            cancellation_task.cancel()
            if not operation_task.done():
                operation_task.cancel()

        if self.is_cancelled:
            if operation_task.done() and not operation_task.cancelled():
                # Retrieve the outcome so asyncio does not report it as unhandled.
                operation_task.exception()
            raise generation_studio.exceptions.GenerationCancelledError()

        return operation_task.result()


class GenerationRetryController:
    """
    Drives one logical generation at a time through a ``GenerationClient``.

    Exposed state, for a user interface to render:

    - ``attempt``: the current attempt number, 0 when idle;
    - ``is_retrying``: an attempt after the first is in progress;
    - ``is_exhausted``: the last call ended in ``RetryLimitReachedError``;
    - ``last_error``: the most recent failure reported by the server;
    - ``status_message``: a user-facing line describing the above.
    """

    def __init__(
        self,
        generation_client: generation_studio.client.generation_client.GenerationClient,
        maximum_attempts: int = MAXIMUM_ATTEMPTS,
        retry_delay_seconds: float = RETRY_DELAY_SECONDS,
        sleep: collections.abc.Callable[[float], collections.abc.Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if maximum_attempts < 1:
            raise ValueError("maximum_attempts must be at least 1.")
        self._generation_client = generation_client
        self._maximum_attempts = maximum_attempts
        self._retry_delay_seconds = retry_delay_seconds
        self._sleep = sleep
        self._attempt = 0
        self._is_exhausted = False
        self._last_error: generation_studio.exceptions.ServiceError | None = None
        self._cancellation_token: CancellationToken | None = None

    @property
    def attempt(self) -> int:
        return self._attempt

    @property
    def maximum_attempts(self) -> int:
        return self._maximum_attempts

    @property
    def is_retrying(self) -> bool:
        return self._attempt > 1

    @property
    def is_exhausted(self) -> bool:
        return self._is_exhausted

    @property
    def is_in_flight(self) -> bool:
        return self._cancellation_token is not None

    @property
    def last_error(self) -> generation_studio.exceptions.ServiceError | None:
        return self._last_error

    @property
    def status_message(self) -> str | None:
        if self.is_retrying:
            return (
                f"Retry attempt {self._attempt} of {self._maximum_attempts}: "
                "the service is overloaded, please hold on..."
            )
        if self._is_exhausted:
            return "Retry limit reached because the service is overloaded. Please wait a moment before trying again."
        return None

    def cancel(self) -> None:
        """
        Abort the in-flight call, if any, and return to idle.

        Safe to call at any time, including when nothing is running.
        """
        if self._cancellation_token is not None:
            logger.info("generation_cancel_requested", attempt=self._attempt)
            self._cancellation_token.cancel()
            self._cancellation_token = None
        self._attempt = 0

    async def generate(
        self,
        generation_request: generation_studio.client.generation_client.GenerationRequest,
    ) -> generation_studio.models.GenerationResult:
        """
        Submit ``generation_request``, retrying while the service is
        overloaded.

        Raises:
            RetryLimitReachedError: Every attempt was rejected as
                overloaded.
            GenerationCancelledError: ``cancel()`` was called, or a newer
                ``generate`` superseded this one.
            ServiceError: Any non-retryable failure, on its first
                occurrence.
        """
        self.cancel()

        cancellation_token = CancellationToken()
        self._cancellation_token = cancellation_token
        self._is_exhausted = False
        self._last_error = None

        try:
            for attempt in range(1, self._maximum_attempts + 1):
                self._attempt = attempt
                logger.info("generation_attempt_started", attempt=attempt, maximum_attempts=self._maximum_attempts)

                try:
                    return await cancellation_token.run(
                        self._generation_client.submit_generation(generation_request),
                    )
                except generation_studio.exceptions.GenerationCancelledError:
                    logger.info("generation_cancelled", attempt=attempt)
                    raise
                except generation_studio.exceptions.ServiceError as service_error:
                    self._last_error = service_error
                    if not service_error.kind.is_retryable:
                        raise

                    if attempt == self._maximum_attempts:
                        self._is_exhausted = True
                        logger.warning("generation_retry_limit_reached", attempts=attempt)
                        raise generation_studio.exceptions.RetryLimitReachedError(attempts=attempt) from service_error

                retry_delay_seconds = self._retry_delay_seconds * attempt
                logger.info(
                    "generation_retry_scheduled",
                    attempt=attempt,
                    retry_delay_seconds=retry_delay_seconds,
                )
                try:
                    await cancellation_token.run(self._sleep(retry_delay_seconds))
                except generation_studio.exceptions.GenerationCancelledError:
                    logger.info("generation_cancelled", attempt=attempt)
                    raise

            # Unreachable: the final attempt either returns or raises.
            raise generation_studio.exceptions.InternalServiceError()
        finally:
            if self._cancellation_token is cancellation_token:
                self._cancellation_token = None
                self._attempt = 0
