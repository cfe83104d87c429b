"""Notification sink for upload progress and user-facing messages.

Components receive an :class:`UploadNotifier` at construction instead of
publishing to a shared bus. The base class ignores every notification;
subclass it and override only what you need (see
:class:`~fileferry.upload.progress.UploadProgressTracker`).
"""

from __future__ import annotations

from typing import Any


class UploadNotifier:
    """No-op notification sink keyed by file id."""

    def upload_started(self, file_id: str) -> None:
        pass

    def upload_progress(self, file_id: str, bytes_uploaded: int, bytes_total: int) -> None:
        pass

    def upload_success(self, file_id: str, response: Any, upload_url: str | None) -> None:
        pass

    def upload_error(self, file_id: str, error: BaseException) -> None:
        pass

    def inform(self, message: str, level: str = "info") -> None:
        """Show a user-facing message about the whole operation."""

    def hide_info(self) -> None:
        """Dismiss the message shown by :meth:`inform`."""
