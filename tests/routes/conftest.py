"""Shared fixtures for route tests: a fully wired application per test."""

import httpx
import pytest
import pytest_asyncio

import generation_studio.admission_control
import generation_studio.server_factory
import generation_studio.services.artifact_storage
import generation_studio.services.generation_service


@pytest_asyncio.fixture
async def test_app(application_configuration):
    """The real application, with its lifespan started against a temporary database."""
    app = generation_studio.server_factory.create_application(application_configuration)
    async with app.router.lifespan_context(app):
        yield app


@pytest_asyncio.fixture
async def client(test_app):
    transport = httpx.ASGITransport(app=test_app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as http_client:
        yield http_client


@pytest.fixture
def sign_up(client):
    """Create an account and return the Authorization header for it."""

    async def _sign_up(email: str = "a@example.com", password: str = "password123") -> dict[str, str]:
        response = await client.post("/auth/signup", json={"email": email, "password": password})
        assert response.status_code == 201
        return {"Authorization": f"Bearer {response.json()['token']}"}

    return _sign_up


@pytest_asyncio.fixture
async def auth_headers(sign_up):
    return await sign_up()


@pytest.fixture
def replace_generation_service(test_app, tmp_path):
    """
    Swap the application's generation service for one with a fixed
    admission decision and, optionally, a smaller artifact limit.
    """

    def _replace(reject: bool = False, maximum_artifact_bytes: int = 5 * 1024 * 1024):
        test_app.state.generation_service = generation_studio.services.generation_service.GenerationService(
            record_store=test_app.state.record_store,
            artifact_storage=generation_studio.services.artifact_storage.ArtifactStorage(
                storage_directory=tmp_path / "uploads",
                maximum_artifact_bytes=maximum_artifact_bytes,
            ),
            admission_policy=generation_studio.admission_control.FixedAdmissionPolicy(reject=reject),
            latency_minimum_seconds=0.0,
            latency_maximum_seconds=0.0,
        )
        return test_app.state.generation_service

    return _replace
