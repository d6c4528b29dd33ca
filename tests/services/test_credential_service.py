"""Tests for generation_studio/services/credential_service.py."""

import datetime

import jwt
import pytest

import generation_studio.exceptions
import generation_studio.services.credential_service


@pytest.fixture
def credential_service():
    return generation_studio.services.credential_service.CredentialService(
        signing_secret="credential-test-secret",
        token_lifetime_seconds=3600,
    )


class TestPasswordHashing:
    @pytest.mark.asyncio
    async def test_hash_verifies_against_original_password(self, credential_service):
        password_hash = await credential_service.hash_password("correct horse")

        assert password_hash != "correct horse"
        assert await credential_service.verify_password("correct horse", password_hash) is True

    @pytest.mark.asyncio
    async def test_wrong_password_does_not_verify(self, credential_service):
        password_hash = await credential_service.hash_password("correct horse")

        assert await credential_service.verify_password("battery staple", password_hash) is False

    @pytest.mark.asyncio
    async def test_hashes_are_salted(self, credential_service):
        first_hash = await credential_service.hash_password("same password")
        second_hash = await credential_service.hash_password("same password")

        assert first_hash != second_hash

    @pytest.mark.asyncio
    async def test_corrupt_hash_is_a_mismatch(self, credential_service):
        assert await credential_service.verify_password("anything", "not-a-bcrypt-hash") is False


class TestTokens:
    def test_issued_token_resolves_to_the_same_user(self, credential_service):
        token = credential_service.issue_token("user-42")

        assert credential_service.resolve_token(token) == "user-42"

    def test_token_carries_sub_iat_and_exp(self, credential_service):
        token = credential_service.issue_token("user-42")

        claims = jwt.decode(token, "credential-test-secret", algorithms=["HS256"])

        assert claims["sub"] == "user-42"
        assert claims["exp"] - claims["iat"] == 3600

    def test_expired_token_is_unauthorized(self):
        credential_service = generation_studio.services.credential_service.CredentialService(
            signing_secret="credential-test-secret",
            token_lifetime_seconds=-60,
        )
        token = credential_service.issue_token("user-42")

        with pytest.raises(generation_studio.exceptions.UnauthorizedError, match="expired"):
            credential_service.resolve_token(token)

    def test_token_signed_with_another_secret_is_unauthorized(self, credential_service):
        foreign_service = generation_studio.services.credential_service.CredentialService(
            signing_secret="someone-else",
        )
        token = foreign_service.issue_token("user-42")

        with pytest.raises(generation_studio.exceptions.UnauthorizedError):
            credential_service.resolve_token(token)

    def test_malformed_token_is_unauthorized(self, credential_service):
        with pytest.raises(generation_studio.exceptions.UnauthorizedError):
            credential_service.resolve_token("definitely.not.a-token")

    def test_token_without_subject_is_unauthorized(self, credential_service):
        token = jwt.encode(
            {"exp": datetime.datetime.now(datetime.timezone.utc) + datetime.timedelta(minutes=5)},
            "credential-test-secret",
            algorithm="HS256",
        )

        with pytest.raises(generation_studio.exceptions.UnauthorizedError):
            credential_service.resolve_token(token)

