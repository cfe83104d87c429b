"""Exception hierarchy for the upload engine.

Per-file errors (:class:`UploadError` and subclasses) are recovered into a
batch's outcomes; job-level errors (:class:`JobCreationError`,
:class:`ChannelError`) propagate to the caller.
"""

from __future__ import annotations

from typing import Any


class FileferryError(Exception):
    """Base class for all fileferry errors."""


class ConfigurationError(FileferryError):
    """Raised when required upload or job settings are missing."""


class UploadError(FileferryError):
    """A single file's transfer failed.

    Attributes:
        response: Raw transport response, when one was received.
    """

    def __init__(self, message: str = "Upload error", response: Any = None) -> None:
        super().__init__(message)
        self.response = response


class TransferCancelledError(UploadError):
    """Raised when an in-flight transfer is aborted by a cancel signal."""

    def __init__(self, file_id: str) -> None:
        super().__init__(f"Upload of {file_id} was cancelled")
        self.file_id = file_id


class UnknownFileError(UploadError):
    """Raised when a batch names a file id the registry does not hold."""

    def __init__(self, file_id: str) -> None:
        super().__init__(f"No file with id {file_id!r} in registry")
        self.file_id = file_id


class DelegationError(UploadError):
    """Raised when a remote worker rejects or loses a delegated transfer."""


class JobCreationError(FileferryError):
    """Raised when the server-side job could not be created."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ChannelError(FileferryError):
    """Raised on an event-channel protocol error."""


class ChannelConnectError(ChannelError):
    """Raised when an event channel cannot be connected."""
