"""Batch upload orchestrator.

Composes the transfer primitives (direct executor, remote delegate,
cancellation registry, notifier) into a batch engine that:

* Resolves file ids against the host's registry
* Dispatches each file by transport mode
* Runs every transfer concurrently, optionally bounded by ``asyncio.Semaphore``
* Settles: waits for every transfer and returns one outcome per file
* Re-runs single files or subsets on retry
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable, Mapping
from functools import partial
from typing import Any

import httpx

from fileferry.models import (
    BatchResult,
    FileRecord,
    Outcome,
    UploadConfig,
    UploadFailure,
)
from fileferry.upload.cancellation import CancellationRegistry
from fileferry.upload.channel import EventChannel
from fileferry.upload.delegate import RemoteDelegateCoordinator
from fileferry.upload.exceptions import (
    TransferCancelledError,
    UnknownFileError,
    UploadError,
)
from fileferry.upload.notifier import UploadNotifier
from fileferry.upload.registry import FileRegistry
from fileferry.upload.transfer import TransferExecutor

logger = logging.getLogger(__name__)


class BatchOrchestrator:
    """Main upload engine for batches of registered files.

    Usage::

        orchestrator = BatchOrchestrator(registry, executor, delegate)
        result = await orchestrator.upload_batch(["a", "b", "c"])
        if result.failed_ids:
            retried = await orchestrator.retry_all(result.failed_ids)

    Args:
        registry: Host-owned file registry.
        executor: Direct HTTP transfer executor.
        delegate: Remote delegate coordinator.
        cancellation: Registry shared with *executor* and *delegate*.
        notifier: Sink for unexpected per-file errors.
        max_concurrency: Upper bound on simultaneous transfers
            (``None`` for unbounded).
        overrides: Batch-level option layer applied to every transfer.
    """

    def __init__(
        self,
        registry: FileRegistry,
        executor: TransferExecutor,
        delegate: RemoteDelegateCoordinator,
        cancellation: CancellationRegistry | None = None,
        notifier: UploadNotifier | None = None,
        max_concurrency: int | None = None,
        overrides: Mapping[str, Any] | None = None,
    ) -> None:
        if max_concurrency is not None and max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        self._registry = registry
        self._executor = executor
        self._delegate = delegate
        self._cancellation = cancellation or CancellationRegistry()
        self._notifier = notifier or UploadNotifier()
        self._max_concurrency = max_concurrency
        self.overrides: dict[str, Any] = dict(overrides or {})

    @classmethod
    def from_config(
        cls,
        config: UploadConfig,
        registry: FileRegistry,
        client: httpx.AsyncClient,
        notifier: UploadNotifier | None = None,
    ) -> BatchOrchestrator:
        """Wire executor, delegate and cancellation from an :class:`UploadConfig`."""
        notifier = notifier or UploadNotifier()
        cancellation = CancellationRegistry()
        defaults = config.transfer_defaults()
        executor = TransferExecutor(client, notifier, cancellation, defaults)
        delegate = RemoteDelegateCoordinator(
            client,
            notifier,
            cancellation,
            defaults,
            channel_factory=partial(
                EventChannel, connect_attempts=config.channel_connect_attempts
            ),
        )
        return cls(
            registry,
            executor,
            delegate,
            cancellation=cancellation,
            notifier=notifier,
            max_concurrency=config.max_concurrency,
        )

    # ------------------------------------------------------------------
    # Batches
    # ------------------------------------------------------------------

    async def upload_batch(self, file_ids: Iterable[str]) -> BatchResult:
        """Upload *file_ids* concurrently and settle every outcome.

        A failing file never cancels its siblings or raises out of this
        call. Duplicate ids are uploaded once.

        Returns:
            One outcome per distinct input id, in input order.
        """
        ids = list(dict.fromkeys(file_ids))
        if not ids:
            logger.info("No files to upload")
            return BatchResult()

        logger.info("Uploading batch of %d files", len(ids))
        semaphore = (
            asyncio.Semaphore(self._max_concurrency)
            if self._max_concurrency is not None
            else None
        )
        total = len(ids)
        tasks = [
            self._upload_one(file_id, position, total, semaphore)
            for position, file_id in enumerate(ids, start=1)
        ]
        results = await asyncio.gather(*tasks, return_exceptions=True)

        outcomes: dict[str, Outcome] = {}
        for file_id, result in zip(ids, results):
            if isinstance(result, asyncio.CancelledError):
                raise result
            if isinstance(result, BaseException):
                logger.error("Upload task exception for %s: %s", file_id, result)
                error = result if isinstance(result, UploadError) else UploadError(str(result))
                self._notifier.upload_error(file_id, error)
                result = UploadFailure(file_id, error)
            outcomes[file_id] = result

        batch = BatchResult(outcomes)
        logger.info(
            "Batch complete: %d succeeded, %d failed",
            len(batch.successful),
            len(batch.failed),
        )
        return batch

    async def retry(self, file_id: str) -> BatchResult:
        """Re-run exactly *file_id* as a fresh batch of one."""
        logger.info("Retrying upload of %s", file_id)
        return await self.upload_batch([file_id])

    async def retry_all(self, file_ids: Iterable[str]) -> BatchResult:
        """Re-run *file_ids* as a fresh batch.

        The result covers only the retried files; reconciling it with an
        earlier batch is up to the caller.
        """
        return await self.upload_batch(file_ids)

    # ------------------------------------------------------------------
    # Cancellation
    # ------------------------------------------------------------------

    def cancel(self, file_id: str) -> bool:
        return self._cancellation.cancel(file_id)

    def cancel_all(self) -> int:
        return self._cancellation.cancel_all()

    def in_flight(self) -> list[str]:
        """Ids of files currently transferring or queued for a slot."""
        return self._cancellation.in_flight()

    # ------------------------------------------------------------------
    # Single file
    # ------------------------------------------------------------------

    async def _upload_one(
        self,
        file_id: str,
        position: int,
        total: int,
        semaphore: asyncio.Semaphore | None,
    ) -> Outcome:
        file = self._registry.get(file_id)
        if file is None:
            error = UnknownFileError(file_id)
            logger.error("%s", error)
            self._notifier.upload_error(file_id, error)
            return UploadFailure(file_id, error)

        if semaphore is None:
            return await self._dispatch(file, position, total)
        # queued files are cancellable before they reach the transport
        with self._cancellation.watch(file_id) as queued:
            async with semaphore:
                if queued.is_set():
                    logger.warning("Upload of %s cancelled while queued", file_id)
                    error = TransferCancelledError(file_id)
                    self._notifier.upload_error(file_id, error)
                    return UploadFailure(file_id, error)
                return await self._dispatch(file, position, total)

    async def _dispatch(self, file: FileRecord, position: int, total: int) -> Outcome:
        if file.is_remote:
            return await self._delegate.transfer(file, position, total, self.overrides)
        return await self._executor.transfer(file, position, total, self.overrides)
