"""
FastAPI dependency injection providers.

Each function in this module retrieves a shared service instance from the
FastAPI application state, or derives a per-request value (the
authenticated user identifier) from it.  This keeps route handlers
decoupled from service construction and lets tests swap any collaborator
through ``app.dependency_overrides``.
"""

import typing

import fastapi
import fastapi.security

import generation_studio.exceptions
import generation_studio.services.credential_service
import generation_studio.services.generation_service
import generation_studio.services.record_store

_bearer_scheme = fastapi.security.HTTPBearer(auto_error=False, description="Bearer token from signup or login.")


def get_record_store(
    request: fastapi.Request,
) -> generation_studio.services.record_store.RecordStore:
    """Retrieve the shared RecordStore instance from application state."""
    return request.app.state.record_store  # type: ignore[no-any-return]


def get_credential_service(
    request: fastapi.Request,
) -> generation_studio.services.credential_service.CredentialService:
    """Retrieve the shared CredentialService instance from application state."""
    return request.app.state.credential_service  # type: ignore[no-any-return]


def get_generation_service(
    request: fastapi.Request,
) -> generation_studio.services.generation_service.GenerationService:
    """Retrieve the shared GenerationService instance from application state."""
    return request.app.state.generation_service  # type: ignore[no-any-return]


def get_authenticated_user_identifier(
    authorization_credentials: typing.Annotated[
        fastapi.security.HTTPAuthorizationCredentials | None,
        fastapi.Depends(_bearer_scheme),
    ],
    credential_service: typing.Annotated[
        generation_studio.services.credential_service.CredentialService,
        fastapi.Depends(get_credential_service),
    ],
) -> str:
    """
    Resolve the ``Authorization: Bearer <token>`` header to a user identifier.

    ``HTTPBearer`` with ``auto_error=False`` yields ``None`` both for a
    missing header and for a non-Bearer scheme; either way the request is
    rejected with ``UnauthorizedError`` (HTTP 401) before the route body
    runs.
    """
    if authorization_credentials is None or not authorization_credentials.credentials:
        raise generation_studio.exceptions.UnauthorizedError(
            detail="A bearer token is required in the Authorization header.",
        )
    return credential_service.resolve_token(authorization_credentials.credentials)
