"""
Local file storage for generation artifacts.

An uploaded image is streamed chunk by chunk to the artifact directory
under a fresh UUID4 name that keeps the original file extension (``.png``
when the upload has none or an unusable one).  The returned reference is
the URL path under which a static file server would expose the file.

A request without an upload, or with an empty placeholder file, gets the
fixed default reference instead and nothing is written.

Failure semantics
-----------------
- An upload larger than ``maximum_artifact_bytes`` raises
  ``ArtifactTooLargeError`` (HTTP 400).
- Any ``OSError`` while writing raises ``ArtifactStorageError``
  (HTTP 500).
In both cases the partially written file is removed, so a failed request
never leaves an orphaned artifact behind.
"""

import pathlib
import re
import uuid

import aiofiles
import aiofiles.os
import starlette.datastructures
import structlog

import generation_studio.exceptions

logger = structlog.get_logger()

DEFAULT_ARTIFACT_EXTENSION = ".png"

_READ_CHUNK_BYTES = 64 * 1024

_ACCEPTABLE_EXTENSION_PATTERN = re.compile(r"^\.[A-Za-z0-9]{1,10}$")


class ArtifactStorage:
    """Writes uploaded artifacts to a local directory."""

    def __init__(
        self,
        storage_directory: str | pathlib.Path,
        artifact_url_prefix: str = "/static/uploads",
        default_artifact_url: str = "/static/mock.png",
        maximum_artifact_bytes: int = 5 * 1024 * 1024,
    ) -> None:
        self._storage_directory = pathlib.Path(storage_directory)
        self._artifact_url_prefix = artifact_url_prefix.rstrip("/")
        self._default_artifact_url = default_artifact_url
        self._maximum_artifact_bytes = maximum_artifact_bytes

    @property
    def default_artifact_url(self) -> str:
        return self._default_artifact_url

    @staticmethod
    def has_content(upload: starlette.datastructures.UploadFile | None) -> bool:
        """
        Return whether the upload is a real file rather than an absent or
        empty placeholder field.
        """
        if upload is None or not upload.filename:
            return False
        return upload.size is None or upload.size > 0

    def ensure_within_size_limit(self, upload: starlette.datastructures.UploadFile | None) -> None:
        """
        Reject an upload whose declared size already exceeds the limit.

        Runs during request validation, before any side effect.  The byte
        count is checked again while streaming because ``size`` is not
        always known.
        """
        if upload is not None and upload.size is not None and upload.size > self._maximum_artifact_bytes:
            raise generation_studio.exceptions.ArtifactTooLargeError(
                detail=(
                    f"The uploaded file exceeds the maximum allowed size of {self._maximum_artifact_bytes} bytes."
                ),
            )

    async def store_upload(self, upload: starlette.datastructures.UploadFile | None) -> str:
        """
        Persist the upload and return its artifact reference.

        Returns the default artifact reference when there is nothing to
        store.

        Raises:
            ArtifactTooLargeError: When the streamed content exceeds the
                configured maximum.
            ArtifactStorageError: When the file cannot be written.
        """
        if not self.has_content(upload):
            return self._default_artifact_url

        first_chunk = await upload.read(_READ_CHUNK_BYTES)
        if not first_chunk:
            return self._default_artifact_url

        target_file_name = f"{uuid.uuid4()}{self._choose_extension(upload.filename)}"
        target_path = self._storage_directory / target_file_name
        written_bytes = 0

        try:
            await aiofiles.os.makedirs(self._storage_directory, exist_ok=True)
            async with aiofiles.open(target_path, "wb") as artifact_file:
                chunk = first_chunk
                while chunk:
                    written_bytes += len(chunk)
                    if written_bytes > self._maximum_artifact_bytes:
                        raise generation_studio.exceptions.ArtifactTooLargeError(
                            detail=(
                                f"The uploaded file exceeds the maximum allowed size of "
                                f"{self._maximum_artifact_bytes} bytes."
                            ),
                        )
                    await artifact_file.write(chunk)
                    chunk = await upload.read(_READ_CHUNK_BYTES)
        except generation_studio.exceptions.ArtifactTooLargeError:
            await self._discard_partial_artifact(target_path)
            raise
        except OSError as write_error:
            logger.error(
                "artifact_write_failed",
                artifact=target_file_name,
                error=str(write_error),
            )
            await self._discard_partial_artifact(target_path)
            raise generation_studio.exceptions.ArtifactStorageError() from write_error

        logger.info("artifact_stored", artifact=target_file_name, size_bytes=written_bytes)
        return f"{self._artifact_url_prefix}/{target_file_name}"

    @staticmethod
    def _choose_extension(original_file_name: str) -> str:
        extension = pathlib.PurePath(original_file_name).suffix
        if _ACCEPTABLE_EXTENSION_PATTERN.match(extension):
            return extension.lower()
        return DEFAULT_ARTIFACT_EXTENSION

    @staticmethod
    async def _discard_partial_artifact(target_path: pathlib.Path) -> None:
        try:
            await aiofiles.os.remove(target_path)
        except FileNotFoundError:
            pass
        except OSError as removal_error:
            logger.warning(
                "partial_artifact_removal_failed",
                artifact=target_path.name,
                error=str(removal_error),
            )
