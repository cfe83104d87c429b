"""Pydantic models for wire payloads consumed by the upload engine.

Only the fields the engine reads are declared; everything else in a payload
is kept (``extra="allow"``) so it can be handed back to callers untouched.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class DelegateTicket(BaseModel):
    """Response of a remote worker's job-submission endpoint."""

    model_config = ConfigDict(extra="allow")

    token: str = Field(min_length=1)


class ChannelProgress(BaseModel):
    """``progress`` event payload sent by a remote worker."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    progress: Any = None
    bytes_uploaded: int = Field(default=0, alias="bytesUploaded")
    bytes_total: int = Field(default=0, alias="bytesTotal")


class JobCreated(BaseModel):
    """Job-creation response.

    Field names follow the job service's JSON; ``ok``/``error`` are set by the
    service when creation was accepted or refused.
    """

    model_config = ConfigDict(extra="allow")

    assembly_id: str
    assembly_url: str
    tus_url: str
    websocket_url: str
    ok: str | None = None
    error: str | None = None
    message: str | None = None
