"""Server-side job lifecycle: create a job, then wait for its processing.

Two-phase protocol:

1. **Before upload** -- create the job, point every file at the job's
   ingest endpoint (one atomic registry swap), and optionally open the
   job's status channel.
2. **After upload** -- wait until the status channel reports the terminal
   event selected by the wait mode.

The ``assembly_finished`` event always closes the channel and also
satisfies a ``metadata-ready`` wait, since a finished job has its metadata.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Iterable, Mapping
from typing import Any

import httpx
from pydantic import ValidationError

from fileferry.models import FileRecord, JobConfig, JobDescriptor, WaitMode
from fileferry.upload.channel import EventChannel
from fileferry.upload.exceptions import (
    ChannelError,
    ConfigurationError,
    JobCreationError,
)
from fileferry.upload.fsm import JobLifecycleSM, create_job_fsm
from fileferry.upload.notifier import UploadNotifier
from fileferry.upload.registry import FileRegistry
from fileferry.upload.schemas import JobCreated

logger = logging.getLogger(__name__)


def _consume_exception(future: asyncio.Future) -> None:
    # Mark rejections as retrieved when nobody awaits the future.
    if not future.cancelled():
        future.exception()


class JobLifecycleCoordinator:
    """Creates a job ahead of an upload and awaits its completion.

    Usage::

        jobs = JobLifecycleCoordinator(job_config, http)
        jobs.install(pipeline)
        result = await pipeline.run(registry.ids())

    Args:
        config: Job settings (auth key, template, wait mode, event names).
        client: HTTP client for the job-creation request.
        notifier: Sink for user-facing messages.
        channel_factory: Builds the status event channel for an address.

    Raises:
        ConfigurationError: If no auth key or no template/params are set.
    """

    def __init__(
        self,
        config: JobConfig,
        client: httpx.AsyncClient,
        notifier: UploadNotifier | None = None,
        channel_factory: Any = EventChannel,
    ) -> None:
        if not config.resolved_auth_key:
            raise ConfigurationError(
                "A job auth key is required. Set it with: "
                "fileferry config set-auth-key YOUR_KEY"
            )
        if not config.template_id and not config.params:
            raise ConfigurationError(
                "At least one of template_id and params is required to create a job"
            )
        self._config = config
        self._client = client
        self._notifier = notifier or UploadNotifier()
        self._channel_factory = channel_factory

        self._fsm: JobLifecycleSM = create_job_fsm()
        self._channel: EventChannel | None = None
        self._hooks: tuple[Any, Any] | None = None
        self._mode: WaitMode | None = None
        self.job: JobDescriptor | None = None
        self.connected: asyncio.Future[None] | None = None
        self.ready: asyncio.Future[None] | None = None

    @property
    def state(self) -> str:
        """Current lifecycle state value (see :class:`JobLifecycleSM`)."""
        return self._fsm.current_state.value

    # ------------------------------------------------------------------
    # Phase 1: job creation
    # ------------------------------------------------------------------

    async def create_job(self, expected_file_count: int) -> JobDescriptor:
        """Submit the job parameters and return the created job.

        Raises:
            JobCreationError: On transport errors, non-2xx responses, a
                service-reported error or an unreadable response.
        """
        self._fsm = create_job_fsm()
        self._fsm.start_create()
        logger.info("Creating job for %d files", expected_file_count)

        try:
            job = await self._request_job(expected_file_count)
        except JobCreationError as exc:
            self._fsm.fail_create()
            logger.error("Job creation failed: %s", exc)
            raise

        self._fsm.complete_create()
        self.job = job
        logger.info("Created job %s", job.job_id)
        return job

    async def _request_job(self, expected_file_count: int) -> JobDescriptor:
        params: dict[str, Any] = dict(self._config.params or {})
        auth = dict(params.get("auth") or {})
        auth.setdefault("key", self._config.resolved_auth_key)
        params["auth"] = auth
        if self._config.template_id:
            params["template_id"] = self._config.template_id

        form = {
            "params": json.dumps(params),
            "num_expected_upload_files": str(expected_file_count),
        }
        if self._config.signature:
            form["signature"] = self._config.signature

        url = f"{self._config.service_url.rstrip('/')}/assemblies"
        try:
            response = await self._client.post(url, data=form)
        except httpx.HTTPError as exc:
            raise JobCreationError(f"Could not reach job service: {exc}") from exc

        if not 200 <= response.status_code < 300:
            raise JobCreationError(
                f"Job service responded {response.status_code}",
                status_code=response.status_code,
            )

        try:
            body = response.json()
        except ValueError as exc:
            raise JobCreationError("Job service returned invalid JSON") from exc
        if isinstance(body, dict) and body.get("error"):
            raise JobCreationError(
                f"{body['error']}: {body.get('message', '')}".rstrip(": "),
                status_code=response.status_code,
            )
        try:
            created = JobCreated.model_validate(body)
        except ValidationError as exc:
            raise JobCreationError(f"Unexpected job service response: {exc}") from exc

        return JobDescriptor(
            job_id=created.assembly_id,
            job_url=created.assembly_url,
            ingest_url=created.tus_url,
            websocket_url=created.websocket_url,
            raw=body,
        )

    @staticmethod
    def attach_job(
        files: Mapping[str, FileRecord], job: JobDescriptor
    ) -> dict[str, FileRecord]:
        """Return a new snapshot of *files* pointed at *job*.

        Adds ``assembly_url``, ``filename`` and ``fieldname`` to each
        record's metadata and sets its transfer endpoint to the job's
        ingest URL. The input mapping is left untouched.
        """
        return {
            file_id: record.with_updates(
                meta={
                    "assembly_url": job.job_url,
                    "filename": record.name,
                    "fieldname": "file",
                },
                transport={"endpoint": job.ingest_url},
            )
            for file_id, record in files.items()
        }

    async def prepare_upload(
        self, registry: FileRegistry, file_ids: Iterable[str] = ()
    ) -> None:
        """Pre-processing step: create the job and retarget every file.

        On failure nothing in *registry* changes and the error propagates,
        so no transfer starts against a job that does not exist.
        """
        self._notifier.inform("Preparing upload...", "info")
        try:
            job = await self.create_job(len(registry))
        except JobCreationError:
            self._notifier.inform("Could not create job", "error")
            raise

        registry.replace_all(self.attach_job(registry.snapshot(), job))

        if self._config.wait_mode is not None:
            try:
                await self.begin_waiting(job)
            except ChannelError:
                self._notifier.inform("Could not connect to job status channel", "error")
                raise
        self._notifier.hide_info()

    # ------------------------------------------------------------------
    # Phase 2: waiting for processing
    # ------------------------------------------------------------------

    async def begin_waiting(
        self, job: JobDescriptor, wait_mode: WaitMode | None = None
    ) -> None:
        """Open the job's status channel; return once it is connected.

        Sets :attr:`connected` (resolved on connect) and :attr:`ready`
        (resolved on the wait mode's terminal event). A channel error
        rejects whichever of the two is still pending.

        A wait already open (or satisfied) on the same job is reused when it
        covers *wait_mode*. Any other job, including one this coordinator
        did not create, gets a lifecycle starting at ``created`` and
        replaces the earlier wait.

        Raises:
            ChannelError: If the channel errors before it connects.
        """
        mode = WaitMode(wait_mode or self._config.wait_mode or WaitMode.PROCESSING_FINISHED)
        if self._waiting_on(job, mode):
            logger.debug("Reusing open wait for job %s", job.job_id)
            await self.connected
            return
        if self.state != "created" or self.job is None or self.job.job_id != job.job_id:
            await self.close()
            self._fsm = create_job_fsm("created")
        self.job = job
        self._mode = mode

        loop = asyncio.get_running_loop()
        connected: asyncio.Future[None] = loop.create_future()
        ready: asyncio.Future[None] = loop.create_future()
        ready.add_done_callback(_consume_exception)
        self.connected, self.ready = connected, ready

        channel = self._channel_factory(job.websocket_url)
        self._channel = channel
        self._fsm.begin_wait()
        logger.info("Waiting for job %s (%s)", job.job_id, mode.value)

        async def _on_connect() -> None:
            await channel.emit(self._config.announce_event, {"id": job.job_id})
            if not connected.done():
                connected.set_result(None)

        def _satisfy(event: str) -> None:
            if ready.done():
                return
            logger.info("Job %s reached %s", job.job_id, event)
            self._fsm.satisfy()
            ready.set_result(None)

        def _on_metadata(payload: Any = None) -> None:
            if mode == WaitMode.METADATA_READY:
                _satisfy(self._config.metadata_event)
            elif not ready.done():
                self._fsm.observe()

        async def _on_finished(payload: Any = None) -> None:
            _satisfy(self._config.finished_event)
            await channel.close()

        async def _on_error(error: Any = None) -> None:
            exc = error if isinstance(error, ChannelError) else ChannelError(str(error))
            logger.error("Job %s status channel error: %s", job.job_id, exc)
            if not ready.done():
                self._fsm.fail_channel()
            for future in (connected, ready):
                if not future.done():
                    future.set_exception(exc)
            await channel.close()

        channel.on("connect", _on_connect)
        channel.on(self._config.metadata_event, _on_metadata)
        channel.on(self._config.finished_event, _on_finished)
        channel.on("error", _on_error)

        try:
            await channel.open()
        except ChannelError:
            if not connected.done():
                raise
        await connected

    def _waiting_on(self, job: JobDescriptor, mode: WaitMode) -> bool:
        # a processing-finished wait also covers metadata-ready
        return (
            self.state in ("awaiting_event", "satisfied")
            and self.job is not None
            and self.job.job_id == job.job_id
            and self.ready is not None
            and (mode == self._mode or mode == WaitMode.METADATA_READY)
        )

    async def await_completion(
        self, job: JobDescriptor, wait_mode: WaitMode | None = None
    ) -> None:
        """Open the status channel and wait for the terminal event."""
        await self.begin_waiting(job, wait_mode)
        await self.ready

    async def after_upload(self, file_ids: Iterable[str] = ()) -> None:
        """Post-processing step: wait for the job opened in :meth:`prepare_upload`."""
        if self.ready is None:
            logger.warning("after_upload called without an open job wait")
            return
        self._notifier.inform("Processing...", "info")
        try:
            await self.ready
        except ChannelError:
            self._notifier.inform("Job processing could not be confirmed", "error")
            raise
        self._notifier.hide_info()

    async def close(self) -> None:
        """Close the status channel, if one is open."""
        if self._channel is not None:
            await self._channel.close()

    # ------------------------------------------------------------------
    # Pipeline hooks
    # ------------------------------------------------------------------

    def install(self, pipeline: Any) -> None:
        """Register the pre/post-processing steps on an upload pipeline."""
        async def _prepare(file_ids: Iterable[str]) -> None:
            await self.prepare_upload(pipeline.registry, file_ids)

        pipeline.add_preprocessor(_prepare)
        post = None
        if self._config.wait_mode is not None:
            post = self.after_upload
            pipeline.add_postprocessor(post)
        self._hooks = (_prepare, post)

    def uninstall(self, pipeline: Any) -> None:
        if self._hooks is None:
            return
        prepare, post = self._hooks
        pipeline.remove_preprocessor(prepare)
        if post is not None:
            pipeline.remove_postprocessor(post)
        self._hooks = None
