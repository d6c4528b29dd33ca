"""Tests for GenerationClient request shaping and error translation."""

import json

import httpx
import pytest

import generation_studio.client.generation_client
import generation_studio.exceptions

_GENERATION_PAYLOAD = {
    "id": "generation-1",
    "prompt": "A lighthouse at dusk",
    "style": "watercolor",
    "imageUrl": "/static/mock.png",
    "status": "succeeded",
    "createdAt": "2026-01-01T12:00:00Z",
}


def _error_body(code: str, message: str, details: list | None = None) -> dict:
    error = {"code": code, "message": message, "correlation_id": "correlation-1"}
    if details is not None:
        error["details"] = details
    return {"error": error}


def _build_client(handler, token=None) -> generation_studio.client.generation_client.GenerationClient:
    return generation_studio.client.generation_client.GenerationClient(
        base_url="http://testserver",
        token=token,
        transport=httpx.MockTransport(handler),
    )


def _generation_request(image=None) -> generation_studio.client.generation_client.GenerationRequest:
    return generation_studio.client.generation_client.GenerationRequest(
        prompt="A lighthouse at dusk",
        style="watercolor",
        image=image,
    )


class TestAuthentication:
    @pytest.mark.asyncio
    async def test_sign_up_keeps_the_token(self):
        received_requests: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            received_requests.append(request)
            return httpx.Response(201, json={"token": "issued-token"})

        async with _build_client(handler) as generation_client:
            token = await generation_client.sign_up("a@example.com", "password123")

            assert token == "issued-token"
            assert generation_client.token == "issued-token"
            assert generation_client.is_authenticated

        assert received_requests[0].url.path == "/auth/signup"
        assert json.loads(received_requests[0].content) == {"email": "a@example.com", "password": "password123"}
        assert "Authorization" not in received_requests[0].headers

    @pytest.mark.asyncio
    async def test_failed_login_keeps_previous_state(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(401, json=_error_body("invalid_credentials", "Invalid email or password."))

        async with _build_client(handler) as generation_client:
            with pytest.raises(generation_studio.exceptions.InvalidCredentialsError):
                await generation_client.log_in("a@example.com", "wrong-password")

            assert not generation_client.is_authenticated

    @pytest.mark.asyncio
    async def test_authenticated_calls_carry_the_bearer_token(self):
        authorization_headers: list[str | None] = []

        def handler(request: httpx.Request) -> httpx.Response:
            authorization_headers.append(request.headers.get("Authorization"))
            return httpx.Response(200, json=[])

        async with _build_client(handler, token="existing-token") as generation_client:
            await generation_client.list_generations()
            generation_client.log_out()
            await generation_client.list_generations()

        assert authorization_headers == ["Bearer existing-token", None]


class TestSubmitGeneration:
    @pytest.mark.asyncio
    async def test_request_without_image_is_still_multipart(self):
        received_requests: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            received_requests.append(request)
            return httpx.Response(200, json=_GENERATION_PAYLOAD)

        async with _build_client(handler, token="token") as generation_client:
            generation_result = await generation_client.submit_generation(_generation_request())

        assert generation_result.id == "generation-1"
        assert generation_result.image_url == "/static/mock.png"
        assert received_requests[0].headers["Content-Type"].startswith("multipart/form-data")
        assert b'name="prompt"' in received_requests[0].content
        assert b"A lighthouse at dusk" in received_requests[0].content
        assert b'name="style"' in received_requests[0].content
        assert b'name="file"' not in received_requests[0].content

    @pytest.mark.asyncio
    async def test_image_is_sent_as_file_part(self):
        received_requests: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            received_requests.append(request)
            return httpx.Response(200, json=_GENERATION_PAYLOAD)

        image = generation_studio.client.generation_client.GenerationImage(
            file_name="sketch.png",
            content=b"image bytes",
        )
        async with _build_client(handler, token="token") as generation_client:
            await generation_client.submit_generation(_generation_request(image=image))

        body = received_requests[0].content
        assert b'name="file"; filename="sketch.png"' in body
        assert b"Content-Type: image/png" in body
        assert b"image bytes" in body

    @pytest.mark.asyncio
    async def test_list_generations_parses_results(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json=[_GENERATION_PAYLOAD, {**_GENERATION_PAYLOAD, "id": "generation-0"}])

        async with _build_client(handler, token="token") as generation_client:
            generation_results = await generation_client.list_generations()

        assert [generation_result.id for generation_result in generation_results] == ["generation-1", "generation-0"]
        assert generation_results[0].created_at.tzinfo is not None


class TestErrorTranslation:
    @pytest.mark.asyncio
    async def test_overloaded_response_becomes_service_overloaded_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(429, json=_error_body("service_overloaded", "Model overloaded, please retry."))

        async with _build_client(handler, token="token") as generation_client:
            with pytest.raises(generation_studio.exceptions.ServiceOverloadedError) as exception_information:
                await generation_client.submit_generation(_generation_request())

        assert exception_information.value.kind is generation_studio.exceptions.ErrorKind.OVERLOADED
        assert exception_information.value.detail == "Model overloaded, please retry."

    def test_validation_details_are_preserved(self):
        details = [{"loc": ["body", "prompt"], "msg": "too short", "type": "string_too_short"}]
        http_response = httpx.Response(400, json=_error_body("request_validation_failed", "Invalid.", details))

        service_error = generation_studio.client.generation_client.translate_error_response(http_response)

        assert type(service_error) is generation_studio.exceptions.RequestValidationFailedError
        assert service_error.details == details

    def test_specific_code_selects_specific_class(self):
        http_response = httpx.Response(400, json=_error_body("multipart_required", "Use multipart."))

        service_error = generation_studio.client.generation_client.translate_error_response(http_response)

        assert isinstance(service_error, generation_studio.exceptions.MultipartRequiredError)

    def test_code_of_another_kind_falls_back_to_status_kind(self):
        http_response = httpx.Response(404, json=_error_body("service_overloaded", "Mismatched."))

        service_error = generation_studio.client.generation_client.translate_error_response(http_response)

        assert type(service_error) is generation_studio.exceptions.UserNotFoundError
        assert not service_error.kind.is_retryable

    def test_unlisted_client_error_status_is_validation(self):
        http_response = httpx.Response(413, json=_error_body("payload_too_large", "Too large."))

        service_error = generation_studio.client.generation_client.translate_error_response(http_response)

        assert service_error.kind is generation_studio.exceptions.ErrorKind.VALIDATION
        assert service_error.detail == "Too large."

    def test_non_json_server_error_is_internal_with_default_message(self):
        http_response = httpx.Response(502, text="<html>Bad Gateway</html>")

        service_error = generation_studio.client.generation_client.translate_error_response(http_response)

        assert type(service_error) is generation_studio.exceptions.InternalServiceError
        assert service_error.detail == generation_studio.exceptions.InternalServiceError.default_detail

    def test_message_text_does_not_influence_the_class(self):
        http_response = httpx.Response(401, json=_error_body("unauthorized", "Model overloaded, please retry."))

        service_error = generation_studio.client.generation_client.translate_error_response(http_response)

        assert type(service_error) is generation_studio.exceptions.UnauthorizedError


class TestTransportFailures:
    @pytest.mark.asyncio
    async def test_connection_error_becomes_internal_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("Connection refused", request=request)

        async with _build_client(handler, token="token") as generation_client:
            with pytest.raises(generation_studio.exceptions.InternalServiceError) as exception_information:
                await generation_client.list_generations()

        assert isinstance(exception_information.value.__cause__, httpx.ConnectError)
        assert not exception_information.value.kind.is_retryable

    @pytest.mark.asyncio
    async def test_timeout_becomes_internal_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("Timed out", request=request)

        async with _build_client(handler, token="token") as generation_client:
            with pytest.raises(generation_studio.exceptions.InternalServiceError) as exception_information:
                await generation_client.submit_generation(_generation_request())

        assert "timed out" in exception_information.value.detail
