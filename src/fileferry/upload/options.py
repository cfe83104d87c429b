"""Layered transfer options.

Options come from three layers, later layers winning on key collision:

* **global** -- :meth:`UploadConfig.transfer_defaults`
* **batch** -- overrides passed to the orchestrator for one run
* **file** -- ``FileRecord.transport``

Headers are merged key-wise across the same layers rather than replaced.
The merge happens once per transfer and yields a frozen
:class:`TransferOptions` snapshot.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field, fields
from types import MappingProxyType
from typing import Any

import httpx

from fileferry.upload.exceptions import ConfigurationError, UploadError


def default_response_data(response: httpx.Response) -> Any:
    """Decode a successful response body as JSON."""
    return response.json()


def default_response_error(response: httpx.Response | None) -> BaseException:
    """Build the generic error reported for a failed transfer."""
    return UploadError("Upload error", response=response)


@dataclass(frozen=True)
class TransferOptions:
    """Immutable per-transfer option snapshot."""

    endpoint: str
    method: str = "POST"
    field_name: str = "files[]"
    form_data: bool = True
    meta_fields: tuple[str, ...] | None = None
    response_url_field: str = "url"
    headers: Mapping[str, str] = field(default_factory=dict)
    get_response_data: Callable[[httpx.Response], Any] = default_response_data
    get_response_error: Callable[[httpx.Response | None], BaseException | None] = (
        default_response_error
    )

    @classmethod
    def resolve(cls, *layers: Mapping[str, Any] | None) -> TransferOptions:
        """Merge option *layers* (lowest precedence first) into a snapshot.

        ``None`` values in a layer do not override lower layers.

        Raises:
            ConfigurationError: If no layer supplies an endpoint or method.
        """
        known = {f.name for f in fields(cls)}
        merged: dict[str, Any] = {}
        headers: dict[str, str] = {}

        for layer in layers:
            if not layer:
                continue
            for key, value in layer.items():
                if key == "headers":
                    headers.update(value or {})
                elif key in known and value is not None:
                    merged[key] = value

        if not merged.get("endpoint"):
            raise ConfigurationError("Transfer endpoint is not configured")
        if not merged.get("method", "POST"):
            raise ConfigurationError("Transfer method is not configured")

        if merged.get("meta_fields") is not None:
            merged["meta_fields"] = tuple(merged["meta_fields"])
        merged["method"] = str(merged.get("method", "POST")).upper()
        merged["headers"] = MappingProxyType(headers)
        return cls(**merged)

    def select_meta(self, meta: Mapping[str, str]) -> dict[str, str]:
        """Pick the metadata fields sent along with a file (all by default)."""
        names = self.meta_fields if self.meta_fields is not None else tuple(meta)
        return {name: meta[name] for name in names if name in meta}
