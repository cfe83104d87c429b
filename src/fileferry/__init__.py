"""Batch file upload engine with direct and delegated transports."""

__version__ = "0.1.0"

from fileferry.models import (
    BatchResult,
    FileRecord,
    JobConfig,
    JobDescriptor,
    RemoteSource,
    TransportMode,
    UploadConfig,
    UploadFailure,
    UploadSuccess,
    WaitMode,
)

__all__ = [
    "BatchResult",
    "FileRecord",
    "JobConfig",
    "JobDescriptor",
    "RemoteSource",
    "TransportMode",
    "UploadConfig",
    "UploadFailure",
    "UploadSuccess",
    "WaitMode",
    "__version__",
]
