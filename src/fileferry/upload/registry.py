"""Host-owned registry of file records.

The engine only reads records through :meth:`FileRegistry.get` and asks for
whole-set replacement through :meth:`FileRegistry.replace_all`, so a job's
destination rewrite becomes visible to every reader at once.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from types import MappingProxyType

from fileferry.models import FileRecord

logger = logging.getLogger(__name__)


class FileRegistry:
    """Mapping of file id to :class:`FileRecord`, swapped atomically."""

    def __init__(self, files: Iterable[FileRecord] = ()) -> None:
        self._files: Mapping[str, FileRecord] = MappingProxyType(
            {f.id: f for f in files}
        )

    def add(self, record: FileRecord) -> None:
        self._files = MappingProxyType({**self._files, record.id: record})

    def remove(self, file_id: str) -> None:
        files = dict(self._files)
        files.pop(file_id, None)
        self._files = MappingProxyType(files)

    def get(self, file_id: str) -> FileRecord | None:
        return self._files.get(file_id)

    def ids(self) -> list[str]:
        return list(self._files)

    def snapshot(self) -> Mapping[str, FileRecord]:
        """Return the current read-only view of all records."""
        return self._files

    def replace_all(self, files: Mapping[str, FileRecord]) -> None:
        """Swap in a new snapshot in a single assignment."""
        self._files = MappingProxyType(dict(files))
        logger.debug("Registry replaced with %d records", len(files))

    def __len__(self) -> int:
        return len(self._files)

    def __contains__(self, file_id: object) -> bool:
        return file_id in self._files
