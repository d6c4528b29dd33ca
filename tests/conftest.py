"""Root test configuration: shared fixtures for every test package."""

import pytest

import configuration
import generation_studio.rate_limiting


@pytest.fixture(autouse=True)
def _reset_rate_limiter():
    """Reset the rate limiter state before each test to prevent cross-test contamination."""
    generation_studio.rate_limiting.authentication_rate_limit_configuration.configure("1000/minute")
    generation_studio.rate_limiting.rate_limiter.reset()


@pytest.fixture
def database_url(tmp_path) -> str:
    return f"sqlite+aiosqlite:///{tmp_path / 'generation_studio_test.db'}"


@pytest.fixture
def application_configuration(tmp_path, database_url) -> configuration.ApplicationConfiguration:
    """
    A configuration isolated to the test's temporary directory, with the
    simulated overload disabled and no artificial latency.
    """
    return configuration.ApplicationConfiguration(
        _env_file=None,
        database_url=database_url,
        token_signing_secret="test-signing-secret",
        simulated_overload_enabled=False,
        simulated_latency_minimum_seconds=0.0,
        simulated_latency_maximum_seconds=0.0,
        artifact_storage_directory=str(tmp_path / "uploads"),
        auth_rate_limit="1000/minute",
    )
