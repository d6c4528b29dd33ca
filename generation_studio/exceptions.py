"""
Custom exception classes for the Generation Studio service and client.

This module defines the complete exception hierarchy for all anticipated
failure modes.  Every exception belongs to exactly one ``ErrorKind``, a
closed enumeration that fixes the HTTP status code and whether the client
retry controller may retry it.  Both sides of the wire share the
hierarchy: the server's error-handling layer (``error_handling.py``) maps
an exception to a JSON error response, and the generation client maps a
JSON error response back to the same exception class.

Exception hierarchy
-------------------
::

    Exception (Python built-in)
    └── ServiceError (base class for all service exceptions)
        ├── UnauthorizedError               → 401 (UNAUTHORIZED)
        │   └── InvalidCredentialsError     → 401
        ├── RequestValidationFailedError    → 400 (VALIDATION)
        │   ├── MultipartRequiredError      → 400
        │   └── ArtifactTooLargeError       → 400
        ├── UserNotFoundError               → 404 (NOT_FOUND)
        ├── UserAlreadyExistsError          → 409 (CONFLICT)
        ├── ServiceOverloadedError          → 429 (OVERLOADED)
        │   └── RetryLimitReachedError      → 429 (client side only)
        ├── RequestAbortedError             → 499 (CANCELLED)
        │   └── GenerationCancelledError    → client side only
        └── InternalServiceError            → 500 (INTERNAL)
            └── ArtifactStorageError        → 500
"""

import enum


class ErrorKind(enum.Enum):
    """
    Closed classification of every failure the service can report.

    The value of each member is the HTTP status code used on the wire.
    Errors are matched on their kind, never on their message text.
    """

    UNAUTHORIZED = 401
    VALIDATION = 400
    NOT_FOUND = 404
    CONFLICT = 409
    OVERLOADED = 429
    CANCELLED = 499
    INTERNAL = 500

    @property
    def status_code(self) -> int:
        return self.value

    @property
    def is_retryable(self) -> bool:
        """Only a capacity rejection is worth repeating unchanged."""
        return self is ErrorKind.OVERLOADED

    @classmethod
    def from_status_code(cls, status_code: int) -> "ErrorKind":
        """
        Resolve the kind for an HTTP status code received by a client.

        Unlisted 4xx codes (for example 413 from the payload size limit)
        are validation failures; everything else is internal.
        """
        for kind in cls:
            if kind.value == status_code:
                return kind
        if 400 <= status_code < 500:
            return cls.VALIDATION
        return cls.INTERNAL


class ServiceError(Exception):
    """
    Base exception for all service-level errors.

    Every service exception carries a ``detail`` attribute containing a
    human-readable description of the failure, safe for inclusion in API
    responses, and a machine-readable ``code``.  Subclasses set ``kind``,
    ``code`` and ``default_detail`` as class attributes.

    Attributes:
        detail: A human-readable description of the error.
        details: Optional structured context (per-field validation
            failures), serialised into the ``details`` member of the error
            response body.
    """

    kind: ErrorKind = ErrorKind.INTERNAL
    code: str = "internal_server_error"
    default_detail: str = "A service error occurred."

    def __init__(self, detail: str | None = None, details: list | None = None) -> None:
        self.detail = detail or self.default_detail
        self.details = details
        super().__init__(self.detail)

    @property
    def status_code(self) -> int:
        return self.kind.status_code


class UnauthorizedError(ServiceError):
    """
    Raised when the bearer credential is missing, malformed, expired or
    carries an invalid signature.
    """

    kind = ErrorKind.UNAUTHORIZED
    code = "unauthorized"
    default_detail = "A valid bearer token is required."


class InvalidCredentialsError(UnauthorizedError):
    """
    Raised by login when the email is unknown or the password does not
    match.  Both cases share one message so that the response does not
    reveal which accounts exist.
    """

    code = "invalid_credentials"
    default_detail = "Invalid email or password."


class RequestValidationFailedError(ServiceError):
    """
    Raised when a request payload fails shape or length constraints.

    ``details`` lists every failing field as ``{"loc", "msg", "type"}``
    objects, matching the FastAPI request validation error format.
    """

    kind = ErrorKind.VALIDATION
    code = "request_validation_failed"
    default_detail = "Request body failed schema validation."


class MultipartRequiredError(RequestValidationFailedError):
    """Raised when the generation endpoint receives a non-multipart body."""

    code = "multipart_required"
    default_detail = "The request body must be multipart/form-data."


class ArtifactTooLargeError(RequestValidationFailedError):
    """Raised when an uploaded artifact exceeds the configured maximum size."""

    code = "artifact_too_large"
    default_detail = "The uploaded file exceeds the maximum allowed size."


class UserNotFoundError(ServiceError):
    """
    Raised when an authenticated identity no longer resolves to a stored
    user, for example a token that outlived its user.
    """

    kind = ErrorKind.NOT_FOUND
    code = "user_not_found"
    default_detail = "The authenticated user no longer exists."


class UserAlreadyExistsError(ServiceError):
    """Raised by signup when the email is already registered."""

    kind = ErrorKind.CONFLICT
    code = "user_already_exists"
    default_detail = "User already exists."


class ServiceOverloadedError(ServiceError):
    """
    Raised when the generation endpoint sheds load.

    This is the only retryable failure: it describes a capacity condition
    rather than a defect in the request or the server.
    """

    kind = ErrorKind.OVERLOADED
    code = "service_overloaded"
    default_detail = "Model overloaded, please retry."


class RetryLimitReachedError(ServiceOverloadedError):
    """
    Raised by the retry controller when every allowed attempt was rejected
    as overloaded.  The final server rejection is chained as ``__cause__``.
    """

    code = "retry_limit_reached"
    default_detail = "The retry limit was reached because the service is overloaded."

    def __init__(self, attempts: int, detail: str | None = None) -> None:
        self.attempts = attempts
        super().__init__(detail)


class RequestAbortedError(ServiceError):
    """
    Raised on the server when the client disconnects while the request is
    still being processed.
    """

    kind = ErrorKind.CANCELLED
    code = "request_aborted"
    default_detail = "The client closed the connection before processing completed."


class GenerationCancelledError(RequestAbortedError):
    """Raised by the retry controller when the caller cancels a generation."""

    code = "generation_cancelled"
    default_detail = "The generation request was cancelled."


class InternalServiceError(ServiceError):
    """Raised for store or storage failures and unexpected server errors."""

    kind = ErrorKind.INTERNAL
    code = "internal_server_error"
    default_detail = "An unexpected internal error occurred."


class ArtifactStorageError(InternalServiceError):
    """Raised when an uploaded artifact cannot be written durably."""

    code = "artifact_storage_failed"
    default_detail = "Failed to process uploaded image."


# Exception class used by the client for each kind when the server's error
# code is not one it recognises.
EXCEPTION_CLASS_FOR_KIND: dict[ErrorKind, type[ServiceError]] = {
    ErrorKind.UNAUTHORIZED: UnauthorizedError,
    ErrorKind.VALIDATION: RequestValidationFailedError,
    ErrorKind.NOT_FOUND: UserNotFoundError,
    ErrorKind.CONFLICT: UserAlreadyExistsError,
    ErrorKind.OVERLOADED: ServiceOverloadedError,
    ErrorKind.CANCELLED: RequestAbortedError,
    ErrorKind.INTERNAL: InternalServiceError,
}

EXCEPTION_CLASS_FOR_CODE: dict[str, type[ServiceError]] = {
    exception_class.code: exception_class
    for exception_class in (
        UnauthorizedError,
        InvalidCredentialsError,
        RequestValidationFailedError,
        MultipartRequiredError,
        ArtifactTooLargeError,
        UserNotFoundError,
        UserAlreadyExistsError,
        ServiceOverloadedError,
        RequestAbortedError,
        InternalServiceError,
        ArtifactStorageError,
    )
}
