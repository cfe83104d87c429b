"""Upload orchestration engine.

Public API
----------
.. autoclass:: BatchOrchestrator
.. autoclass:: TransferExecutor
.. autoclass:: RemoteDelegateCoordinator
.. autoclass:: JobLifecycleCoordinator
.. autoclass:: EventChannel
.. autoclass:: UploadPipeline
.. autoclass:: UploadNotifier
.. autoclass:: UploadProgressTracker
"""

from fileferry.upload.cancellation import CancellationRegistry
from fileferry.upload.channel import EventChannel
from fileferry.upload.delegate import RemoteDelegateCoordinator, socket_host
from fileferry.upload.exceptions import (
    ChannelConnectError,
    ChannelError,
    ConfigurationError,
    DelegationError,
    FileferryError,
    JobCreationError,
    TransferCancelledError,
    UnknownFileError,
    UploadError,
)
from fileferry.upload.job import JobLifecycleCoordinator
from fileferry.upload.notifier import UploadNotifier
from fileferry.upload.options import TransferOptions
from fileferry.upload.orchestrator import BatchOrchestrator
from fileferry.upload.pipeline import UploadPipeline
from fileferry.upload.progress import UploadProgressTracker
from fileferry.upload.registry import FileRegistry
from fileferry.upload.transfer import TransferExecutor

__all__ = [
    "BatchOrchestrator",
    "CancellationRegistry",
    "ChannelConnectError",
    "ChannelError",
    "ConfigurationError",
    "DelegationError",
    "EventChannel",
    "FileRegistry",
    "FileferryError",
    "JobCreationError",
    "JobLifecycleCoordinator",
    "RemoteDelegateCoordinator",
    "TransferCancelledError",
    "TransferExecutor",
    "TransferOptions",
    "UnknownFileError",
    "UploadError",
    "UploadNotifier",
    "UploadPipeline",
    "UploadProgressTracker",
    "socket_host",
]
