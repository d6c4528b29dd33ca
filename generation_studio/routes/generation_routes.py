"""
Route definitions for creating and listing generations.

``POST /generations`` takes a ``multipart/form-data`` body with the text
fields ``prompt`` and ``style`` and an optional image under ``file`` (or
``image``).  The body is parsed by hand instead of through ``Form``/
``File`` parameters so that the checks run in a fixed order:

1. bearer authentication (a dependency, resolved before the body is read),
2. the multipart content type,
3. the shape of the text fields,

and only then the generation service, which owns admission, latency,
artifact storage and persistence.  The parsed form is closed when the
handler leaves its ``async with`` block, on success and on every error,
which discards any spooled upload.

``GET /generations`` returns the caller's most recent generations, newest
first.
"""

import typing

import fastapi
import fastapi.responses
import pydantic
import starlette.datastructures
import structlog

import generation_studio.dependencies
import generation_studio.error_handling
import generation_studio.exceptions
import generation_studio.models
import generation_studio.services.generation_service

logger = structlog.get_logger()

generation_router = fastapi.APIRouter(tags=["Generations"])

_GENERATION_TEXT_FIELD_NAMES = ("prompt", "style")

# The first field present wins.
_UPLOAD_FIELD_NAMES = ("file", "image")

_NO_STORE_HEADERS: dict[str, str] = {"Cache-Control": "no-store"}

_UNAUTHORIZED_RESPONSE: dict[str, typing.Any] = {
    "description": "Unauthorized — the bearer token is missing, malformed, expired or invalid (``unauthorized``).",
    "model": generation_studio.models.ErrorResponse,
}


def _is_multipart_request(request: fastapi.Request) -> bool:
    content_type = request.headers.get("content-type", "")
    return content_type.strip().lower().startswith("multipart/form-data")


def _validate_generation_fields(
    form: starlette.datastructures.FormData,
) -> generation_studio.models.GenerationFields:
    """
    Validate the text fields of the form.

    Only fields that are present are handed to the model, so an absent
    field is reported as ``missing`` and a file sent under a text field
    name fails the strict string check.
    """
    submitted_fields = {
        field_name: form.get(field_name) for field_name in _GENERATION_TEXT_FIELD_NAMES if field_name in form
    }
    try:
        return generation_studio.models.GenerationFields.model_validate(submitted_fields)
    except pydantic.ValidationError as validation_error:
        details = generation_studio.error_handling.sanitise_validation_errors(validation_error.errors())
        for detail in details:
            detail["loc"] = ["body", *detail["loc"]]
        raise generation_studio.exceptions.RequestValidationFailedError(details=details) from validation_error


def _extract_upload(
    form: starlette.datastructures.FormData,
) -> starlette.datastructures.UploadFile | None:
    for field_name in _UPLOAD_FIELD_NAMES:
        candidate = form.get(field_name)
        if isinstance(candidate, starlette.datastructures.UploadFile):
            return candidate
    return None


@generation_router.post(
    "/generations",
    response_model=generation_studio.models.GenerationResult,
    summary="Create a generation",
    description=(
        "Accepts a multipart form with 'prompt', 'style' and an optional image "
        "file. The simulated model rejects about one request in five with "
        "HTTP 429 (service_overloaded); clients are expected to retry those."
    ),
    status_code=200,
    responses={
        400: {
            "description": (
                "Bad Request — the body is not multipart (``multipart_required``), "
                "a field fails validation (``request_validation_failed``) or the "
                "upload is too large (``artifact_too_large``)."
            ),
            "model": generation_studio.models.ErrorResponse,
        },
        401: _UNAUTHORIZED_RESPONSE,
        404: {
            "description": "Not Found — the token's user no longer exists (``user_not_found``).",
            "model": generation_studio.models.ErrorResponse,
        },
        413: {
            "description": "Payload Too Large — the request body exceeds the payload ceiling (``payload_too_large``).",
            "model": generation_studio.models.ErrorResponse,
        },
        429: {
            "description": (
                "Too Many Requests — the simulated model is overloaded "
                "(``service_overloaded``). Retry after the ``Retry-After`` delay."
            ),
            "model": generation_studio.models.ErrorResponse,
        },
        500: {
            "description": "Internal Server Error — the upload could not be stored (``artifact_storage_failed``).",
            "model": generation_studio.models.ErrorResponse,
        },
    },
)
async def handle_generation_request(
    request: fastapi.Request,
    user_identifier: typing.Annotated[
        str,
        fastapi.Depends(generation_studio.dependencies.get_authenticated_user_identifier),
    ],
    generation_service: typing.Annotated[
        generation_studio.services.generation_service.GenerationService,
        fastapi.Depends(generation_studio.dependencies.get_generation_service),
    ],
) -> fastapi.responses.JSONResponse:
    """
    Run one simulated generation for the authenticated caller.

    No retry happens on the server.  A 429 from this handler is the signal
    for the client retry controller.
    """
    if not _is_multipart_request(request):
        raise generation_studio.exceptions.MultipartRequiredError()

    async with request.form() as form:
        generation_fields = _validate_generation_fields(form)
        upload = _extract_upload(form)

        generation_result = await generation_service.submit_generation(
            user_identifier=user_identifier,
            generation_fields=generation_fields,
            upload=upload,
            is_client_disconnected=request.is_disconnected,
        )

    return fastapi.responses.JSONResponse(
        content=generation_result.model_dump(mode="json", by_alias=True),
        headers=_NO_STORE_HEADERS,
    )


@generation_router.get(
    "/generations",
    response_model=list[generation_studio.models.GenerationResult],
    summary="List recent generations",
    description="Returns the caller's most recent generations, newest first.",
    status_code=200,
    responses={401: _UNAUTHORIZED_RESPONSE},
)
async def handle_generation_listing_request(
    user_identifier: typing.Annotated[
        str,
        fastapi.Depends(generation_studio.dependencies.get_authenticated_user_identifier),
    ],
    generation_service: typing.Annotated[
        generation_studio.services.generation_service.GenerationService,
        fastapi.Depends(generation_studio.dependencies.get_generation_service),
    ],
) -> fastapi.responses.JSONResponse:
    generation_results = await generation_service.list_generations(user_identifier)
    return fastapi.responses.JSONResponse(
        content=[
            generation_result.model_dump(mode="json", by_alias=True) for generation_result in generation_results
        ],
        headers=_NO_STORE_HEADERS,
    )
