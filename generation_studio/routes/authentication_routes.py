"""
Route definitions for account creation and login.

Both endpoints accept a JSON ``{email, password}`` body and answer with a
bearer token.  They are throttled per client address by
``rate_limiting.authentication_rate_limit`` because each call performs a
deliberately slow bcrypt operation.
"""

import typing

import fastapi
import fastapi.responses
import structlog

import generation_studio.dependencies
import generation_studio.exceptions
import generation_studio.models
import generation_studio.rate_limiting
import generation_studio.services.credential_service
import generation_studio.services.record_store

logger = structlog.get_logger()

authentication_router = fastapi.APIRouter(
    prefix="/auth",
    tags=["Authentication"],
)

_CREDENTIAL_ERROR_RESPONSES: dict[int | str, dict[str, typing.Any]] = {
    400: {
        "description": (
            "Bad Request — the body is not valid JSON (``invalid_request_json``) "
            "or fails validation (``request_validation_failed``)."
        ),
        "model": generation_studio.models.ErrorResponse,
    },
    429: {
        "description": (
            "Too Many Requests — the per-IP authentication rate limit was exceeded "
            "(``rate_limit_exceeded``). See the ``Retry-After`` header."
        ),
        "model": generation_studio.models.ErrorResponse,
    },
}


@authentication_router.post(
    "/signup",
    response_model=generation_studio.models.TokenResponse,
    summary="Create an account",
    description="Registers a new account and returns a bearer token for it.",
    status_code=201,
    responses={
        **_CREDENTIAL_ERROR_RESPONSES,
        409: {
            "description": "Conflict — the email is already registered (``user_already_exists``).",
            "model": generation_studio.models.ErrorResponse,
        },
    },
)
@generation_studio.rate_limiting.authentication_rate_limit
async def handle_signup_request(
    request: fastapi.Request,
    credentials_request: generation_studio.models.CredentialsRequest,
    record_store: typing.Annotated[
        generation_studio.services.record_store.RecordStore,
        fastapi.Depends(generation_studio.dependencies.get_record_store),
    ],
    credential_service: typing.Annotated[
        generation_studio.services.credential_service.CredentialService,
        fastapi.Depends(generation_studio.dependencies.get_credential_service),
    ],
) -> fastapi.responses.JSONResponse:
    """
    Create the user and issue a token for it.

    The unique index on ``users.email`` decides duplicates, so two
    concurrent signups for the same address produce exactly one user and
    one HTTP 409.
    """
    password_hash = await credential_service.hash_password(credentials_request.password)
    user = await record_store.create_user(
        email=credentials_request.email,
        password_hash=password_hash,
    )

    token_response = generation_studio.models.TokenResponse(
        token=credential_service.issue_token(user.id),
    )
    return fastapi.responses.JSONResponse(
        status_code=201,
        content=token_response.model_dump(),
        headers={"Cache-Control": "no-store"},
    )


@authentication_router.post(
    "/login",
    response_model=generation_studio.models.TokenResponse,
    summary="Log in",
    description="Exchanges an email and password for a bearer token.",
    status_code=200,
    responses={
        **_CREDENTIAL_ERROR_RESPONSES,
        401: {
            "description": "Unauthorized — unknown email or wrong password (``invalid_credentials``).",
            "model": generation_studio.models.ErrorResponse,
        },
    },
)
@generation_studio.rate_limiting.authentication_rate_limit
async def handle_login_request(
    request: fastapi.Request,
    credentials_request: generation_studio.models.CredentialsRequest,
    record_store: typing.Annotated[
        generation_studio.services.record_store.RecordStore,
        fastapi.Depends(generation_studio.dependencies.get_record_store),
    ],
    credential_service: typing.Annotated[
        generation_studio.services.credential_service.CredentialService,
        fastapi.Depends(generation_studio.dependencies.get_credential_service),
    ],
) -> fastapi.responses.JSONResponse:
    """
    Verify the credentials and issue a token.

    An unknown email and a wrong password raise the same
    ``InvalidCredentialsError`` so the response does not reveal which
    addresses are registered.
    """
    user = await record_store.find_user_by_email(credentials_request.email)

    if user is None or not await credential_service.verify_password(
        credentials_request.password,
        user.password_hash,
    ):
        logger.warning("login_rejected", reason="unknown_email" if user is None else "wrong_password")
        raise generation_studio.exceptions.InvalidCredentialsError()

    logger.info("login_succeeded", user_id=user.id)

    token_response = generation_studio.models.TokenResponse(
        token=credential_service.issue_token(user.id),
    )
    return fastapi.responses.JSONResponse(
        content=token_response.model_dump(),
        headers={"Cache-Control": "no-store"},
    )
