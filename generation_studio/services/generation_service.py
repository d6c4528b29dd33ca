"""
Simulated image generation.

``GenerationService`` carries out the business steps of
``POST /generations`` once the route has authenticated the caller and
validated the text fields:

1. Reject an upload whose declared size exceeds the artifact limit.
2. Consult the admission policy; a rejection raises
   ``ServiceOverloadedError`` (HTTP 429) before any side effect.
3. Wait a random processing delay in
   ``[latency_minimum_seconds, latency_maximum_seconds)``.  The wait is an
   ``asyncio`` sleep, so other requests keep being served, and it is
   abandoned with ``RequestAbortedError`` if the client disconnects.
4. Confirm the caller still exists (``UserNotFoundError`` otherwise).
5. Store the upload, or fall back to the placeholder reference.
6. Create the ``Generation`` row with status ``"succeeded"``.

No retries happen here.  Retrying an overloaded request is the client's
decision (see ``generation_studio.client.retry_controller``).

It also serves ``GET /generations``: the caller's most recent generations,
newest first.
"""

import asyncio
import collections.abc
import random

import starlette.datastructures
import structlog

import generation_studio.admission_control
import generation_studio.exceptions
import generation_studio.models
import generation_studio.services.artifact_storage
import generation_studio.services.record_store

logger = structlog.get_logger()

DisconnectProbe = collections.abc.Callable[[], collections.abc.Awaitable[bool]]


class GenerationService:
    """
    Stateless orchestration of the generation lifecycle.

    All collaborators are injected, so tests can substitute a fixed
    admission policy, a seeded random source or an instant ``sleep``.
    """

    def __init__(
        self,
        record_store: generation_studio.services.record_store.RecordStore,
        artifact_storage: generation_studio.services.artifact_storage.ArtifactStorage,
        admission_policy: generation_studio.admission_control.AdmissionPolicy,
        latency_minimum_seconds: float = 1.0,
        latency_maximum_seconds: float = 2.0,
        listing_limit: int = 5,
        random_source: random.Random | None = None,
        sleep: collections.abc.Callable[[float], collections.abc.Awaitable[None]] = asyncio.sleep,
        disconnect_poll_interval_seconds: float = 0.1,
    ) -> None:
        self._record_store = record_store
        self._artifact_storage = artifact_storage
        self._admission_policy = admission_policy
        self._latency_minimum_seconds = latency_minimum_seconds
        self._latency_maximum_seconds = latency_maximum_seconds
        self._listing_limit = listing_limit
        self._random_source = random_source or random.Random()
        self._sleep = sleep
        self._disconnect_poll_interval_seconds = disconnect_poll_interval_seconds

    @property
    def listing_limit(self) -> int:
        return self._listing_limit

    async def submit_generation(
        self,
        user_identifier: str,
        generation_fields: generation_studio.models.GenerationFields,
        upload: starlette.datastructures.UploadFile | None = None,
        is_client_disconnected: DisconnectProbe | None = None,
    ) -> generation_studio.models.GenerationResult:
        """
        Run one generation for an authenticated user.

        Args:
            user_identifier: The identifier resolved from the bearer token.
            generation_fields: The validated prompt and style.
            upload: The optional uploaded artifact.  The caller owns it and
                closes it afterwards, whatever the outcome.
            is_client_disconnected: Optional probe polled during the
                simulated latency; when it reports a disconnect the request
                stops without creating a record.

        Raises:
            ArtifactTooLargeError: The upload exceeds the size limit.
            ServiceOverloadedError: The admission policy rejected the request.
            RequestAbortedError: The client went away during the delay.
            UserNotFoundError: The user no longer exists.
            ArtifactStorageError: The upload could not be written.
        """
        self._artifact_storage.ensure_within_size_limit(upload)

        generation_studio.admission_control.admit_or_reject(self._admission_policy)

        await self._simulate_latency(is_client_disconnected)

        user = await self._record_store.find_user_by_identifier(user_identifier)
        if user is None:
            logger.warning("generation_owner_not_found", user_id=user_identifier)
            raise generation_studio.exceptions.UserNotFoundError()

        image_url = await self._artifact_storage.store_upload(upload)

        generation = await self._record_store.create_generation(
            user_identifier=user_identifier,
            prompt=generation_fields.prompt,
            style=generation_fields.style,
            image_url=image_url,
            status=generation_studio.models.GENERATION_STATUS_SUCCEEDED,
        )

        logger.info(
            "generation_created",
            generation_id=generation.id,
            user_id=user_identifier,
            uploaded_artifact=image_url != self._artifact_storage.default_artifact_url,
        )

        return generation_studio.models.GenerationResult.model_validate(generation)

    async def list_generations(self, user_identifier: str) -> list[generation_studio.models.GenerationResult]:
        generations = await self._record_store.list_recent_generations(
            user_identifier=user_identifier,
            limit=self._listing_limit,
        )
        return [generation_studio.models.GenerationResult.model_validate(generation) for generation in generations]

    async def _simulate_latency(self, is_client_disconnected: DisconnectProbe | None) -> None:
        delay_seconds = self._latency_minimum_seconds + self._random_source.random() * (
            self._latency_maximum_seconds - self._latency_minimum_seconds
        )

        if is_client_disconnected is None:
            await self._sleep(delay_seconds)
            return

        latency_task = asyncio.ensure_future(self._sleep(delay_seconds))
        disconnect_task = asyncio.ensure_future(self._wait_for_disconnect(is_client_disconnected))
        try:
            finished_tasks, _ = await asyncio.wait(
                {latency_task, disconnect_task},
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            for pending_task in (latency_task, disconnect_task):
                if not pending_task.done():
                    pending_task.cancel()

        if disconnect_task in finished_tasks:
            # Surfaces any error raised by the probe itself.
            disconnect_task.result()
            logger.info("generation_aborted_client_disconnected", delay_seconds=round(delay_seconds, 3))
            raise generation_studio.exceptions.RequestAbortedError()

    async def _wait_for_disconnect(self, is_client_disconnected: DisconnectProbe) -> None:
        while not await is_client_disconnected():
            await asyncio.sleep(self._disconnect_poll_interval_seconds)
