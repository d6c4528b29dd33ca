"""Tests for generation_studio/services/record_store.py against a temporary SQLite file."""

import asyncio
import datetime

import pytest
import pytest_asyncio
import sqlalchemy
import sqlalchemy.exc

import generation_studio.database
import generation_studio.exceptions
import generation_studio.services.record_store


@pytest_asyncio.fixture
async def record_store(database_url):
    store = generation_studio.services.record_store.RecordStore.from_database_url(database_url)
    await store.create_schema()
    yield store
    await store.close()


async def _create_generation(record_store, user_identifier, prompt="A quiet harbour"):
    return await record_store.create_generation(
        user_identifier=user_identifier,
        prompt=prompt,
        style="watercolor",
        image_url="/static/mock.png",
        status="succeeded",
    )


class TestUsers:
    @pytest.mark.asyncio
    async def test_created_user_can_be_found_by_email_and_identifier(self, record_store):
        user = await record_store.create_user(email="a@example.com", password_hash="hash")

        by_email = await record_store.find_user_by_email("a@example.com")
        by_identifier = await record_store.find_user_by_identifier(user.id)

        assert by_email.id == user.id
        assert by_identifier.email == "a@example.com"

    @pytest.mark.asyncio
    async def test_unknown_user_lookups_return_none(self, record_store):
        assert await record_store.find_user_by_email("nobody@example.com") is None
        assert await record_store.find_user_by_identifier("missing-id") is None

    @pytest.mark.asyncio
    async def test_duplicate_email_raises_and_keeps_one_row(self, record_store):
        await record_store.create_user(email="a@example.com", password_hash="hash")

        with pytest.raises(generation_studio.exceptions.UserAlreadyExistsError):
            await record_store.create_user(email="a@example.com", password_hash="other-hash")

        async with record_store._session_factory() as session:
            user_count = await session.scalar(
                sqlalchemy.select(sqlalchemy.func.count()).select_from(generation_studio.database.User)
            )
        assert user_count == 1

    @pytest.mark.asyncio
    async def test_concurrent_duplicate_signups_create_one_user(self, record_store):
        outcomes = await asyncio.gather(
            *(record_store.create_user(email="race@example.com", password_hash="hash") for _ in range(5)),
            return_exceptions=True,
        )

        created = [outcome for outcome in outcomes if isinstance(outcome, generation_studio.database.User)]
        rejected = [
            outcome
            for outcome in outcomes
            if isinstance(outcome, generation_studio.exceptions.UserAlreadyExistsError)
        ]
        assert len(created) == 1
        assert len(rejected) == 4


class TestGenerations:
    @pytest.mark.asyncio
    async def test_created_generation_has_identifier_and_utc_timestamp(self, record_store):
        user = await record_store.create_user(email="a@example.com", password_hash="hash")

        generation = await _create_generation(record_store, user.id)

        assert generation.id
        assert generation.user_id == user.id
        assert generation.status == "succeeded"
        assert generation.created_at.utcoffset() == datetime.timedelta(0)

    @pytest.mark.asyncio
    async def test_listing_is_newest_first_and_limited(self, record_store):
        user = await record_store.create_user(email="a@example.com", password_hash="hash")
        for index in range(7):
            await _create_generation(record_store, user.id, prompt=f"prompt number {index}")

        generations = await record_store.list_recent_generations(user.id, limit=5)

        assert [generation.prompt for generation in generations] == [
            f"prompt number {index}" for index in (6, 5, 4, 3, 2)
        ]
        assert await record_store.count_generations(user.id) == 7

    @pytest.mark.asyncio
    async def test_listing_never_includes_other_users_rows(self, record_store):
        alice = await record_store.create_user(email="alice@example.com", password_hash="hash")
        bob = await record_store.create_user(email="bob@example.com", password_hash="hash")
        await _create_generation(record_store, alice.id, prompt="alice's prompt")
        await _create_generation(record_store, bob.id, prompt="bob's prompt")

        alice_generations = await record_store.list_recent_generations(alice.id, limit=5)

        assert [generation.prompt for generation in alice_generations] == ["alice's prompt"]

    @pytest.mark.asyncio
    async def test_listing_for_user_without_generations_is_empty(self, record_store):
        user = await record_store.create_user(email="a@example.com", password_hash="hash")

        assert await record_store.list_recent_generations(user.id, limit=5) == []

    @pytest.mark.asyncio
    async def test_generation_for_missing_user_violates_foreign_key(self, record_store):
        with pytest.raises(sqlalchemy.exc.IntegrityError):
            await _create_generation(record_store, "missing-user")


class TestHealth:
    @pytest.mark.asyncio
    async def test_reachable_database_is_healthy(self, record_store):
        assert await record_store.check_health() is True

    @pytest.mark.asyncio
    async def test_unreachable_database_is_unhealthy(self, tmp_path):
        store = generation_studio.services.record_store.RecordStore.from_database_url(
            f"sqlite+aiosqlite:///{tmp_path / 'missing-directory' / 'db.sqlite'}"
        )

        assert await store.check_health() is False
        await store.close()
