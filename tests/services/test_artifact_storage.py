"""Tests for generation_studio/services/artifact_storage.py."""

import io

import pytest
import starlette.datastructures

import generation_studio.exceptions
import generation_studio.services.artifact_storage


def _upload(content: bytes, filename: str | None = "photo.png", declare_size: bool = True):
    return starlette.datastructures.UploadFile(
        file=io.BytesIO(content),
        size=len(content) if declare_size else None,
        filename=filename,
    )


@pytest.fixture
def storage_directory(tmp_path):
    return tmp_path / "uploads"


@pytest.fixture
def artifact_storage(storage_directory):
    return generation_studio.services.artifact_storage.ArtifactStorage(
        storage_directory=storage_directory,
        maximum_artifact_bytes=1024,
    )


class TestStoreUpload:
    @pytest.mark.asyncio
    async def test_upload_is_written_under_a_uuid_name(self, artifact_storage, storage_directory):
        reference = await artifact_storage.store_upload(_upload(b"\x89PNG fake bytes", filename="cat.png"))

        assert reference.startswith("/static/uploads/")
        assert reference.endswith(".png")
        stored_files = list(storage_directory.iterdir())
        assert len(stored_files) == 1
        assert stored_files[0].read_bytes() == b"\x89PNG fake bytes"
        assert reference == f"/static/uploads/{stored_files[0].name}"

    @pytest.mark.asyncio
    async def test_original_extension_is_kept_lower_cased(self, artifact_storage):
        reference = await artifact_storage.store_upload(_upload(b"jpeg bytes", filename="Holiday.JPG"))

        assert reference.endswith(".jpg")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("filename", ["no_extension", "weird.ext!", "archive."])
    async def test_unusable_extension_defaults_to_png(self, artifact_storage, filename):
        reference = await artifact_storage.store_upload(_upload(b"bytes", filename=filename))

        assert reference.endswith(".png")

    @pytest.mark.asyncio
    async def test_missing_upload_uses_default_reference(self, artifact_storage, storage_directory):
        assert await artifact_storage.store_upload(None) == "/static/mock.png"
        assert not storage_directory.exists()

    @pytest.mark.asyncio
    async def test_empty_file_uses_default_reference(self, artifact_storage, storage_directory):
        reference = await artifact_storage.store_upload(_upload(b"", filename="empty.png"))

        assert reference == "/static/mock.png"
        assert not storage_directory.exists()

    @pytest.mark.asyncio
    async def test_placeholder_without_filename_uses_default_reference(self, artifact_storage):
        reference = await artifact_storage.store_upload(_upload(b"data", filename=""))

        assert reference == "/static/mock.png"

    @pytest.mark.asyncio
    async def test_oversized_stream_is_rejected_and_removed(self, artifact_storage, storage_directory):
        with pytest.raises(generation_studio.exceptions.ArtifactTooLargeError):
            await artifact_storage.store_upload(_upload(b"x" * 200_000, declare_size=False))

        assert list(storage_directory.iterdir()) == []

    @pytest.mark.asyncio
    async def test_write_failure_raises_storage_error(self, tmp_path):
        blocking_file = tmp_path / "not-a-directory"
        blocking_file.write_text("occupied")
        artifact_storage = generation_studio.services.artifact_storage.ArtifactStorage(
            storage_directory=blocking_file / "uploads",
        )

        with pytest.raises(generation_studio.exceptions.ArtifactStorageError) as exception_info:
            await artifact_storage.store_upload(_upload(b"bytes"))

        assert exception_info.value.status_code == 500


class TestEnsureWithinSizeLimit:
    def test_declared_oversize_is_rejected(self, artifact_storage):
        with pytest.raises(generation_studio.exceptions.ArtifactTooLargeError):
            artifact_storage.ensure_within_size_limit(_upload(b"x" * 2048))

    def test_upload_at_the_limit_is_accepted(self, artifact_storage):
        artifact_storage.ensure_within_size_limit(_upload(b"x" * 1024))

    def test_missing_upload_is_accepted(self, artifact_storage):
        artifact_storage.ensure_within_size_limit(None)
