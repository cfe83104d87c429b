"""Pre-processing, upload and post-processing in sequence.

A pre-processor that raises aborts the run before any transfer is
dispatched. Per-file failures never raise; they are returned in the
:class:`~fileferry.models.BatchResult`.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Iterable

from fileferry.models import BatchResult
from fileferry.upload.orchestrator import BatchOrchestrator
from fileferry.upload.registry import FileRegistry

logger = logging.getLogger(__name__)

Processor = Callable[[list[str]], Awaitable[None]]


class UploadPipeline:
    """Runs registered pre-processors, a batch upload, then post-processors."""

    def __init__(self, registry: FileRegistry, orchestrator: BatchOrchestrator) -> None:
        self.registry = registry
        self.orchestrator = orchestrator
        self._preprocessors: list[Processor] = []
        self._postprocessors: list[Processor] = []

    def add_preprocessor(self, fn: Processor) -> None:
        self._preprocessors.append(fn)

    def remove_preprocessor(self, fn: Processor) -> None:
        if fn in self._preprocessors:
            self._preprocessors.remove(fn)

    def add_postprocessor(self, fn: Processor) -> None:
        self._postprocessors.append(fn)

    def remove_postprocessor(self, fn: Processor) -> None:
        if fn in self._postprocessors:
            self._postprocessors.remove(fn)

    async def run(self, file_ids: Iterable[str]) -> BatchResult:
        """Upload *file_ids* between the pre- and post-processing steps."""
        ids = list(file_ids)

        for fn in self._preprocessors:
            await fn(ids)

        result = await self.orchestrator.upload_batch(ids)

        for fn in self._postprocessors:
            await fn(ids)

        logger.info(
            "Upload run finished: %d succeeded, %d failed",
            len(result.successful),
            len(result.failed),
        )
        return result
