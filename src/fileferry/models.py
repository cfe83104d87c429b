"""Data models and enums for the fileferry upload engine."""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path
from types import MappingProxyType
from typing import Any, Union


class TransportMode(str, Enum):
    """How a file's bytes reach the destination endpoint."""

    LOCAL = "local"
    DELEGATED = "delegated"


class WaitMode(str, Enum):
    """Which job lifecycle event completes a post-upload wait."""

    PROCESSING_FINISHED = "processing-finished"
    METADATA_READY = "metadata-ready"


@dataclass(frozen=True)
class RemoteSource:
    """Remote worker that performs a delegated transfer on our behalf.

    Attributes:
        url: Job-submission URL of the worker.
        host: Worker host used to derive the event-channel address.
        body: Extra JSON fields the worker needs to locate the source file.
    """

    url: str
    host: str
    body: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class FileRecord:
    """One file queued for upload.

    Records are owned by the host's registry and never mutated in place;
    use :meth:`with_updates` to derive a changed copy.
    """

    id: str
    name: str
    data: Union[bytes, Path]
    meta: Mapping[str, str] = field(default_factory=dict)
    transport: Mapping[str, Any] = field(default_factory=dict)
    mode: TransportMode = TransportMode.LOCAL
    remote: RemoteSource | None = None

    @property
    def is_remote(self) -> bool:
        return self.mode == TransportMode.DELEGATED

    @property
    def size(self) -> int:
        """Payload length in bytes."""
        if isinstance(self.data, Path):
            return self.data.stat().st_size
        return len(self.data)

    def read_payload(self) -> bytes:
        """Read the payload once for a transfer attempt."""
        if isinstance(self.data, Path):
            return self.data.read_bytes()
        return bytes(self.data)

    def with_updates(
        self,
        meta: Mapping[str, str] | None = None,
        transport: Mapping[str, Any] | None = None,
    ) -> FileRecord:
        """Return a copy with *meta* and *transport* merged over the current values."""
        return replace(
            self,
            meta={**self.meta, **(meta or {})},
            transport={**self.transport, **(transport or {})},
        )


# ---------------------------------------------------------------------------
# Outcomes
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class UploadSuccess:
    """A file reached its destination."""

    file_id: str
    response: Any
    upload_url: str | None = None

    ok = True


@dataclass(frozen=True)
class UploadFailure:
    """A file's transfer attempt ended without success.

    ``response`` holds the raw transport response when one was received.
    """

    file_id: str
    error: BaseException
    response: Any = None

    ok = False


Outcome = Union[UploadSuccess, UploadFailure]


class BatchResult(Mapping[str, Outcome]):
    """Settled outcomes of one batch, keyed by file id in input order."""

    def __init__(self, outcomes: Mapping[str, Outcome] | None = None) -> None:
        self._outcomes: dict[str, Outcome] = dict(outcomes or {})

    def __getitem__(self, file_id: str) -> Outcome:
        return self._outcomes[file_id]

    def __iter__(self) -> Iterator[str]:
        return iter(self._outcomes)

    def __len__(self) -> int:
        return len(self._outcomes)

    def __repr__(self) -> str:
        return (
            f"BatchResult(total={len(self)}, succeeded={len(self.successful)}, "
            f"failed={len(self.failed)})"
        )

    @property
    def successful(self) -> list[UploadSuccess]:
        return [o for o in self._outcomes.values() if isinstance(o, UploadSuccess)]

    @property
    def failed(self) -> list[UploadFailure]:
        return [o for o in self._outcomes.values() if isinstance(o, UploadFailure)]

    @property
    def failed_ids(self) -> list[str]:
        """Ids of failed files, ready to pass to ``retry_all``."""
        return [o.file_id for o in self.failed]


# ---------------------------------------------------------------------------
# Jobs
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class JobDescriptor:
    """Server-side job created before transfers begin.

    Attributes:
        job_id: Identifier announced on the status channel after connect.
        job_url: Status URL of the job, attached to every file's metadata.
        ingest_url: Job-specific upload endpoint files are redirected to.
        websocket_url: Address of the job's status event channel.
        raw: The full decoded job-creation response (read-only).
    """

    job_id: str
    job_url: str
    ingest_url: str
    websocket_url: str
    raw: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "raw", MappingProxyType(dict(self.raw)))


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


@dataclass
class JobConfig:
    """Settings for the server-side job created ahead of an upload.

    Either ``auth_key`` or ``params["auth"]["key"]`` must supply the key, and
    at least one of ``template_id`` / ``params`` must describe the job.
    """

    service_url: str = "https://api2.transloadit.com"
    auth_key: str | None = None
    template_id: str | None = None
    params: dict[str, Any] | None = None
    signature: str | None = None
    wait_mode: WaitMode | None = None
    finished_event: str = "assembly_finished"
    metadata_event: str = "assembly_upload_meta_data_extracted"
    announce_event: str = "assembly_connect"

    def __post_init__(self) -> None:
        if isinstance(self.wait_mode, str):
            self.wait_mode = WaitMode(self.wait_mode)

    @property
    def resolved_auth_key(self) -> str | None:
        if self.auth_key:
            return self.auth_key
        auth = (self.params or {}).get("auth") or {}
        return auth.get("key")


@dataclass
class UploadConfig:
    """Global configuration for the upload engine.

    Transfer fields form the lowest layer of option resolution; batch-level
    and per-file overrides are merged on top of them.
    """

    endpoint: str | None = None
    method: str = "POST"
    field_name: str = "files[]"
    form_data: bool = True
    meta_fields: list[str] | None = None
    response_url_field: str = "url"
    headers: dict[str, str] = field(default_factory=dict)
    max_concurrency: int | None = None
    timeout_seconds: float = 300.0
    channel_connect_attempts: int = 3
    job: JobConfig | None = None

    def transfer_defaults(self) -> dict[str, Any]:
        """Transfer option layer contributed by this config."""
        return {
            "endpoint": self.endpoint,
            "method": self.method,
            "field_name": self.field_name,
            "form_data": self.form_data,
            "meta_fields": self.meta_fields,
            "response_url_field": self.response_url_field,
            "headers": dict(self.headers),
        }
