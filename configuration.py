"""
Application configuration module.

Loads all configuration values from environment variables with the prefix
GENERATION_STUDIO_. Default values are provided for local development. A
.env file is also supported via pydantic-settings.

The ``ApplicationConfiguration`` instance is constructed once by the
composition root (``main.py`` or a test fixture) and passed explicitly into
``generation_studio.server_factory.create_application``.  No other module
reads the environment.
"""

import typing

import pydantic
import pydantic_settings


class ApplicationConfiguration(pydantic_settings.BaseSettings):
    """
    Centralised configuration for the Generation Studio service.

    Every field maps to an environment variable prefixed with
    GENERATION_STUDIO_.  For example, the field ``token_signing_secret`` is
    populated from GENERATION_STUDIO_TOKEN_SIGNING_SECRET.

    Configuration categories
    ------------------------
    - **Application**: host, port, CORS, log level and format,
      authentication rate limit
    - **Persistence**: database URL
    - **Credentials**: token signing secret and lifetime
    - **Simulated generation**: overload switch and probability, latency
      bounds, listing size
    - **Artifacts**: storage directory, URL prefix, placeholder reference,
      maximum upload size
    - **Resilience**: Retry-After durations, request payload ceiling,
      end-to-end request timeout
    """

    # ── Application settings ─────────────────────────────────────────────

    application_host: str = "127.0.0.1"

    application_port: int = pydantic.Field(default=4000, ge=1, le=65535)

    cors_allowed_origins: list[str] = pydantic.Field(
        default=[],
        description=(
            "Allowed CORS origins as a JSON list. An empty list disables CORS "
            "entirely. Example: '[\"http://localhost:5173\"]'."
        ),
    )

    log_level: str = pydantic.Field(
        default="INFO",
        description=(
            "Minimum log level for structured JSON logging. "
            "Accepted values: DEBUG, INFO, WARNING, ERROR, CRITICAL."
        ),
    )

    log_format: typing.Literal["json", "console"] = pydantic.Field(
        default="json",
        description=(
            "Log renderer: 'json' for one JSON object per line, 'console' "
            "for human-readable key/value lines during local development."
        ),
    )

    auth_rate_limit: str = pydantic.Field(
        default="20/minute",
        description=(
            "Per-IP rate limit for the signup and login endpoints. Uses the "
            "format 'count/period' where period is one of: second, minute, "
            "hour, day."
        ),
    )

    # ── Persistence settings ─────────────────────────────────────────────

    database_url: str = pydantic.Field(
        default="sqlite+aiosqlite:///./generation_studio.db",
        description="SQLAlchemy async database URL for the record store.",
    )

    # ── Credential settings ──────────────────────────────────────────────

    token_signing_secret: pydantic.SecretStr = pydantic.Field(
        default=pydantic.SecretStr("change-me-in-production"),
        description="HMAC secret used to sign and verify bearer tokens (HS256).",
    )

    token_lifetime_seconds: int = pydantic.Field(
        default=86_400,
        ge=1,
        description="Lifetime of issued bearer tokens. Default is one day.",
    )

    # ── Simulated generation settings ────────────────────────────────────

    simulated_overload_enabled: bool = pydantic.Field(
        default=True,
        description=(
            "When false, the generation endpoint never answers with the "
            "simulated HTTP 429 (service_overloaded). Used for deterministic "
            "testing and demonstrations."
        ),
    )

    simulated_overload_probability: float = pydantic.Field(
        default=0.2,
        ge=0.0,
        le=1.0,
        description="Probability that a valid generation request is rejected as overloaded.",
    )

    simulated_latency_minimum_seconds: float = pydantic.Field(
        default=1.0,
        ge=0.0,
        description="Lower bound (inclusive) of the simulated processing delay.",
    )

    simulated_latency_maximum_seconds: float = pydantic.Field(
        default=2.0,
        ge=0.0,
        description="Upper bound (exclusive) of the simulated processing delay.",
    )

    listing_limit: int = pydantic.Field(
        default=5,
        ge=1,
        description="Number of most recent generations returned by GET /generations.",
    )

    # ── Artifact settings ────────────────────────────────────────────────

    artifact_storage_directory: str = pydantic.Field(
        default="public/uploads",
        description="Directory where uploaded generation artifacts are written.",
    )

    artifact_url_prefix: str = pydantic.Field(
        default="/static/uploads",
        description="URL prefix prepended to stored artifact file names.",
    )

    default_artifact_url: str = pydantic.Field(
        default="/static/mock.png",
        description="Placeholder artifact reference used when no file is uploaded.",
    )

    maximum_artifact_bytes: int = pydantic.Field(
        default=5 * 1024 * 1024,
        ge=1,
        description=(
            "Maximum accepted size of an uploaded artifact. Larger uploads "
            "are rejected with HTTP 400 (artifact_too_large)."
        ),
    )

    # ── Resilience settings ──────────────────────────────────────────────

    retry_after_overloaded_seconds: int = pydantic.Field(
        default=1,
        ge=0,
        description=(
            "Value (in seconds) of the Retry-After header on simulated "
            "HTTP 429 (service_overloaded) responses."
        ),
    )

    retry_after_rate_limit_seconds: int = pydantic.Field(
        default=60,
        ge=0,
        description=(
            "Value (in seconds) of the Retry-After header on HTTP 429 "
            "responses caused by the per-IP authentication rate limit."
        ),
    )

    retry_after_not_ready_seconds: int = pydantic.Field(
        default=10,
        ge=0,
        description="Value (in seconds) of the Retry-After header on HTTP 503 readiness responses.",
    )

    maximum_request_payload_bytes: int = pydantic.Field(
        default=6 * 1024 * 1024,
        ge=1,
        description=(
            "Maximum request payload size in bytes, including multipart "
            "framing. Requests exceeding this limit are rejected with HTTP 413."
        ),
    )

    timeout_for_requests_in_seconds: float = pydantic.Field(
        default=30.0,
        gt=0,
        description=(
            "Maximum end-to-end duration in seconds for any single HTTP "
            "request. Requests exceeding this ceiling are aborted with "
            "HTTP 504 (request_timeout)."
        ),
    )

    @pydantic.model_validator(mode="after")
    def validate_latency_bounds(self) -> "ApplicationConfiguration":
        """Reject a latency range whose upper bound is below its lower bound."""
        if self.simulated_latency_maximum_seconds < self.simulated_latency_minimum_seconds:
            raise ValueError(
                "simulated_latency_maximum_seconds must be greater than or equal to "
                "simulated_latency_minimum_seconds."
            )
        return self

    model_config = pydantic_settings.SettingsConfigDict(
        env_file=".env",
        env_prefix="GENERATION_STUDIO_",
    )
