"""
Pydantic models for request validation and response serialisation.

Request models enforce the boundary contract: malformed payloads are
rejected before any business logic runs.  Response models use the field
names of the public API contract exactly (``imageUrl``, ``createdAt``),
populated from snake_case attributes through aliases.
"""

import datetime

import pydantic

# ──────────────────────────────────────────────────────────────────────────────
#  Request Constants
# ──────────────────────────────────────────────────────────────────────────────

MINIMUM_PROMPT_LENGTH = 3
MAXIMUM_PROMPT_LENGTH = 300
MINIMUM_STYLE_LENGTH = 1
MAXIMUM_STYLE_LENGTH = 40

MINIMUM_PASSWORD_LENGTH = 8
MAXIMUM_PASSWORD_LENGTH = 72
MAXIMUM_PASSWORD_BYTES = 72  # bcrypt refuses longer input

GENERATION_STATUS_SUCCEEDED = "succeeded"

# ──────────────────────────────────────────────────────────────────────────────
#  Request Models
# ──────────────────────────────────────────────────────────────────────────────


class CredentialsRequest(pydantic.BaseModel):
    """
    Request body for POST /auth/signup and POST /auth/login.

    The email is normalised (surrounding whitespace removed, lower-cased)
    so that it can serve as a case-insensitive uniqueness key.
    """

    email: pydantic.EmailStr = pydantic.Field(
        ...,
        description="The account email address.",
        examples=["a@example.com"],
    )

    password: str = pydantic.Field(
        ...,
        min_length=MINIMUM_PASSWORD_LENGTH,
        max_length=MAXIMUM_PASSWORD_LENGTH,
        description=(
            f"The account password, between {MINIMUM_PASSWORD_LENGTH} and "
            f"{MAXIMUM_PASSWORD_LENGTH} characters and at most "
            f"{MAXIMUM_PASSWORD_BYTES} bytes once UTF-8 encoded."
        ),
    )

    @pydantic.field_validator("email", mode="before")
    @classmethod
    def normalise_email(cls, email_value: object) -> object:
        """Trim and lower-case the email before format validation."""
        if isinstance(email_value, str):
            return email_value.strip().lower()
        return email_value

    @pydantic.field_validator("password")
    @classmethod
    def limit_encoded_password_length(cls, password_value: str) -> str:
        if len(password_value.encode("utf-8")) > MAXIMUM_PASSWORD_BYTES:
            raise ValueError(
                f"Password must be at most {MAXIMUM_PASSWORD_BYTES} bytes when UTF-8 encoded."
            )
        return password_value

    model_config = pydantic.ConfigDict(extra="forbid")


class GenerationFields(pydantic.BaseModel):
    """
    Text fields of the multipart POST /generations request.

    The optional uploaded file travels beside these fields and is handled
    by the artifact storage service, not by this model.
    """

    prompt: str = pydantic.Field(
        ...,
        min_length=MINIMUM_PROMPT_LENGTH,
        max_length=MAXIMUM_PROMPT_LENGTH,
        description=(
            f"The text prompt describing the desired image, between "
            f"{MINIMUM_PROMPT_LENGTH} and {MAXIMUM_PROMPT_LENGTH} characters."
        ),
    )

    style: str = pydantic.Field(
        ...,
        min_length=MINIMUM_STYLE_LENGTH,
        max_length=MAXIMUM_STYLE_LENGTH,
        description=(
            f"The requested visual style, between {MINIMUM_STYLE_LENGTH} and "
            f"{MAXIMUM_STYLE_LENGTH} characters."
        ),
        examples=["watercolor"],
    )

    model_config = pydantic.ConfigDict(strict=True)


# ──────────────────────────────────────────────────────────────────────────────
#  Response Models
# ──────────────────────────────────────────────────────────────────────────────


class TokenResponse(pydantic.BaseModel):
    """Response body for the signup and login endpoints."""

    token: str = pydantic.Field(
        ...,
        description="Bearer token to send as 'Authorization: Bearer <token>'.",
    )


class GenerationResult(pydantic.BaseModel):
    """
    Public representation of a stored generation.

    Built from a ``Generation`` ORM row (``from_attributes``) and serialised
    with camelCase aliases.  Naive timestamps read back from the store are
    UTC and are made timezone-aware so that ``createdAt`` is emitted as an
    unambiguous ISO 8601 string.
    """

    id: str = pydantic.Field(..., description="Server-generated generation identifier.")

    prompt: str = pydantic.Field(..., description="The prompt as submitted.")

    style: str = pydantic.Field(..., description="The style as submitted.")

    image_url: str = pydantic.Field(
        ...,
        alias="imageUrl",
        description="Reference to the stored upload or the placeholder image.",
    )

    status: str = pydantic.Field(
        ...,
        description="Generation status. Always 'succeeded' in the current service.",
        examples=[GENERATION_STATUS_SUCCEEDED],
    )

    created_at: datetime.datetime = pydantic.Field(
        ...,
        alias="createdAt",
        description="ISO 8601 UTC creation timestamp.",
    )

    @pydantic.field_validator("created_at")
    @classmethod
    def ensure_timezone_aware(cls, created_at_value: datetime.datetime) -> datetime.datetime:
        if created_at_value.tzinfo is None:
            return created_at_value.replace(tzinfo=datetime.timezone.utc)
        return created_at_value

    model_config = pydantic.ConfigDict(from_attributes=True, populate_by_name=True)


# ──────────────────────────────────────────────────────────────────────────────
#  Error Models
# ──────────────────────────────────────────────────────────────────────────────


class ErrorDetail(pydantic.BaseModel):
    """
    Detailed error information nested inside the error response.

    The ``details`` field is an array of validation error objects for
    ``request_validation_failed`` and is omitted for every other error.
    """

    code: str = pydantic.Field(
        ...,
        description="A machine-readable error code in snake_case format.",
    )

    message: str = pydantic.Field(
        ...,
        description="A human-readable error description safe for display to end users.",
    )

    details: str | list | None = pydantic.Field(
        default=None,
        description="Additional context about the error, when available.",
    )

    correlation_id: str = pydantic.Field(
        ...,
        description="UUID v4 correlation identifier matching the X-Correlation-ID response header.",
    )


class ErrorResponse(pydantic.BaseModel):
    """
    Standardised error response returned for all error conditions.
    """

    error: ErrorDetail = pydantic.Field(
        ...,
        description="An object containing error details.",
    )
