"""
FastAPI application factory.

``create_application`` builds a fully wired FastAPI instance from an
``ApplicationConfiguration``: service lifecycle, error handlers, rate
limiting, middleware and routes.  A factory rather than a module-level
global keeps every test free to build its own application against its own
database file and settings.
"""

import collections.abc
import contextlib

import fastapi
import fastapi.middleware.cors
import slowapi.errors
import structlog

import configuration
import generation_studio.admission_control
import generation_studio.error_handling
import generation_studio.logging_config
import generation_studio.middleware
import generation_studio.rate_limiting
import generation_studio.routes.authentication_routes
import generation_studio.routes.generation_routes
import generation_studio.routes.health_routes
import generation_studio.services.artifact_storage
import generation_studio.services.credential_service
import generation_studio.services.generation_service
import generation_studio.services.record_store

logger = structlog.get_logger()


def create_application(
    application_configuration: configuration.ApplicationConfiguration | None = None,
) -> fastapi.FastAPI:
    """
    Create and fully configure the FastAPI application.

    This function:
      1. Reads configuration from the environment unless one is supplied.
      2. Configures structured logging.
      3. Defines a lifespan that builds the shared services on startup
         and releases them on shutdown.
      4. Registers error handlers, the authentication rate limiter and
         the middleware stack.
      5. Includes all routers.
    """
    if application_configuration is None:
        application_configuration = configuration.ApplicationConfiguration()

    generation_studio.logging_config.configure_logging(
        log_level=application_configuration.log_level,
        log_format=application_configuration.log_format,
    )

    in_flight_request_counter = generation_studio.middleware.InFlightRequestCounter()

    @contextlib.asynccontextmanager
    async def application_lifespan(
        fastapi_application: fastapi.FastAPI,
    ) -> collections.abc.AsyncIterator[None]:
        """
        Build the record store, credential, artifact and generation
        services on startup and dispose of the database engine on
        shutdown.
        """
        record_store_instance = generation_studio.services.record_store.RecordStore.from_database_url(
            application_configuration.database_url,
        )
        await record_store_instance.create_schema()

        credential_service_instance = generation_studio.services.credential_service.CredentialService(
            signing_secret=application_configuration.token_signing_secret.get_secret_value(),
            token_lifetime_seconds=application_configuration.token_lifetime_seconds,
        )

        artifact_storage_instance = generation_studio.services.artifact_storage.ArtifactStorage(
            storage_directory=application_configuration.artifact_storage_directory,
            artifact_url_prefix=application_configuration.artifact_url_prefix,
            default_artifact_url=application_configuration.default_artifact_url,
            maximum_artifact_bytes=application_configuration.maximum_artifact_bytes,
        )

        admission_policy_instance = generation_studio.admission_control.build_admission_policy(
            simulated_overload_enabled=application_configuration.simulated_overload_enabled,
            rejection_probability=application_configuration.simulated_overload_probability,
        )

        generation_service_instance = generation_studio.services.generation_service.GenerationService(
            record_store=record_store_instance,
            artifact_storage=artifact_storage_instance,
            admission_policy=admission_policy_instance,
            latency_minimum_seconds=application_configuration.simulated_latency_minimum_seconds,
            latency_maximum_seconds=application_configuration.simulated_latency_maximum_seconds,
            listing_limit=application_configuration.listing_limit,
        )

        fastapi_application.state.record_store = record_store_instance
        fastapi_application.state.credential_service = credential_service_instance
        fastapi_application.state.generation_service = generation_service_instance
        fastapi_application.state.retry_after_overloaded_seconds = (
            application_configuration.retry_after_overloaded_seconds
        )
        fastapi_application.state.retry_after_rate_limit_seconds = (
            application_configuration.retry_after_rate_limit_seconds
        )
        fastapi_application.state.retry_after_not_ready_seconds = (
            application_configuration.retry_after_not_ready_seconds
        )

        logger.info(
            "services_initialised",
            simulated_overload_enabled=application_configuration.simulated_overload_enabled,
            simulated_overload_probability=application_configuration.simulated_overload_probability,
            artifact_storage_directory=application_configuration.artifact_storage_directory,
        )

        yield

        # Logged first so the in-flight count reflects the moment shutdown began.
        logger.info(
            "graceful_shutdown_initiated",
            in_flight_requests=in_flight_request_counter.count,
        )

        await record_store_instance.close()
        logger.info("services_shutdown_complete")

    fastapi_application = fastapi.FastAPI(
        title="Generation Studio",
        description=(
            "Accounts, simulated image generation with a deliberately "
            "overloaded model, and a per-user history of recent generations."
        ),
        version="1.0.0",
        lifespan=application_lifespan,
    )

    generation_studio.error_handling.register_error_handlers(fastapi_application)

    generation_studio.rate_limiting.authentication_rate_limit_configuration.configure(
        application_configuration.auth_rate_limit,
    )
    fastapi_application.state.limiter = generation_studio.rate_limiting.rate_limiter
    fastapi_application.add_exception_handler(
        slowapi.errors.RateLimitExceeded,
        generation_studio.rate_limiting.rate_limit_exceeded_handler,  # type: ignore[arg-type]
    )

    if application_configuration.cors_allowed_origins:
        fastapi_application.add_middleware(
            fastapi.middleware.cors.CORSMiddleware,
            allow_origins=application_configuration.cors_allowed_origins,
            allow_methods=["GET", "POST"],
            allow_headers=["Authorization", "Content-Type", "Accept"],
            expose_headers=["Retry-After", "X-Correlation-ID"],
        )

    # Last added runs outermost:
    #   Request → CorrelationId → RequestTimeout → PayloadSizeLimit → CORS → App
    fastapi_application.add_middleware(
        generation_studio.middleware.RequestPayloadSizeLimitMiddleware,
        maximum_request_payload_bytes=application_configuration.maximum_request_payload_bytes,
    )

    fastapi_application.add_middleware(
        generation_studio.middleware.RequestTimeoutMiddleware,
        request_timeout_seconds=application_configuration.timeout_for_requests_in_seconds,
    )

    fastapi_application.add_middleware(
        generation_studio.middleware.CorrelationIdMiddleware,
        in_flight_request_counter=in_flight_request_counter,
    )

    fastapi_application.include_router(
        generation_studio.routes.authentication_routes.authentication_router,
    )
    fastapi_application.include_router(
        generation_studio.routes.generation_routes.generation_router,
    )
    fastapi_application.include_router(
        generation_studio.routes.health_routes.health_router,
    )

    return fastapi_application
