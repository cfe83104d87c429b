"""Delegated transfers performed by a remote worker.

The worker receives a job-submission request describing where to send the
file and replies with an opaque token. Progress and completion then arrive
over an :class:`~fileferry.upload.channel.EventChannel` at
``{socket host}/api/{token}``.
"""

from __future__ import annotations

import asyncio
import logging
import re
from collections.abc import Callable, Mapping
from typing import Any

import httpx
from pydantic import ValidationError

from fileferry.models import FileRecord, Outcome, UploadFailure, UploadSuccess
from fileferry.upload.cancellation import CancellationRegistry, run_cancellable
from fileferry.upload.channel import EventChannel
from fileferry.upload.exceptions import (
    ChannelError,
    DelegationError,
    TransferCancelledError,
)
from fileferry.upload.notifier import UploadNotifier
from fileferry.upload.options import TransferOptions
from fileferry.upload.schemas import ChannelProgress, DelegateTicket

logger = logging.getLogger(__name__)

_HOST_RE = re.compile(r"^(?:(https?):)?(?://)?(?:[^@/\n]+@)?(?:www\.)?([^\n]+?)/*$")


def socket_host(host: str) -> str:
    """Normalise a worker host into the origin used for event channels.

    Credentials and a leading ``www.`` are dropped; the scheme defaults to
    ``https`` when the host does not carry one.
    """
    match = _HOST_RE.match(host.strip())
    if match is None or not match.group(2):
        raise ValueError(f"Invalid worker host: {host!r}")
    scheme = match.group(1) or "https"
    return f"{scheme}://{match.group(2)}"


class RemoteDelegateCoordinator:
    """Hands files to remote workers and observes them over event channels.

    Args:
        client: HTTP client used for job-submission requests.
        notifier: Sink for started/progress/success/error notifications.
        cancellation: Registry consulted for cancel signals.
        defaults: Global option layer (lowest precedence).
        channel_factory: Builds an event channel for an address.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        notifier: UploadNotifier | None = None,
        cancellation: CancellationRegistry | None = None,
        defaults: Mapping[str, Any] | None = None,
        channel_factory: Callable[[str], EventChannel] = EventChannel,
    ) -> None:
        self._client = client
        self._notifier = notifier or UploadNotifier()
        self._cancellation = cancellation or CancellationRegistry()
        self._defaults = dict(defaults or {})
        self._channel_factory = channel_factory

    async def transfer(
        self,
        file: FileRecord,
        current: int,
        total: int,
        overrides: Mapping[str, Any] | None = None,
    ) -> Outcome:
        """Delegate *file* to its remote worker and settle its outcome.

        Exactly one of success, failure or cancellation settles the
        transfer, and the event channel is closed on every path.
        """
        if file.remote is None:
            return self._fail(file, DelegationError(f"{file.id} has no remote worker"))

        opts = TransferOptions.resolve(self._defaults, overrides, file.transport)
        logger.debug("Delegating %d of %d: %s", current, total, file.name)

        with self._cancellation.watch(file.id) as cancel_signal:
            self._notifier.upload_started(file.id)
            cancelled, result = await run_cancellable(
                self._delegate(file, opts), cancel_signal
            )

        if cancelled:
            return self._fail(file, TransferCancelledError(file.id))
        return result

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _delegate(self, file: FileRecord, opts: TransferOptions) -> Outcome:
        try:
            token = await self._submit(file, opts)
        except DelegationError as exc:
            logger.error("Delegation of %s failed: %s", file.name, exc)
            return self._fail(file, exc, exc.response)

        address = f"{socket_host(file.remote.host)}/api/{token}"
        channel = self._channel_factory(address)
        settled: asyncio.Future[Outcome] = asyncio.get_running_loop().create_future()

        def _settle(outcome: Outcome) -> bool:
            if settled.done():
                return False
            settled.set_result(outcome)
            return True

        def _on_progress(payload: Any = None) -> None:
            try:
                progress = ChannelProgress.model_validate(payload or {})
            except ValidationError:
                logger.debug("Ignoring malformed progress for %s: %r", file.id, payload)
                return
            if progress.progress:
                self._notifier.upload_progress(
                    file.id, progress.bytes_uploaded, progress.bytes_total
                )

        async def _on_success(payload: Any = None) -> None:
            data = payload if payload is not None else {}
            url = data.get("url") if isinstance(data, Mapping) else None
            if _settle(UploadSuccess(file.id, data, url)):
                self._notifier.upload_success(file.id, data, url)
            await channel.close()

        async def _on_error(error: Any = None) -> None:
            exc = error if isinstance(error, BaseException) else ChannelError(str(error))
            if _settle(UploadFailure(file.id, exc)):
                logger.error("Channel error delegating %s: %s", file.name, exc)
                self._notifier.upload_error(file.id, exc)
            await channel.close()

        channel.on("progress", _on_progress)
        channel.on("success", _on_success)
        channel.on("error", _on_error)

        try:
            try:
                await channel.open()
            except ChannelError:
                # error handler already settled the outcome
                pass
            return await settled
        finally:
            await channel.close()

    async def _submit(self, file: FileRecord, opts: TransferOptions) -> str:
        body = {
            **dict(file.remote.body),
            "endpoint": opts.endpoint,
            "size": file.size,
            "fieldname": opts.field_name,
            "fields": opts.select_meta(file.meta),
            "headers": dict(opts.headers),
        }
        try:
            response = await self._client.post(
                file.remote.url,
                json=body,
                headers={"Accept": "application/json"},
            )
        except httpx.HTTPError as exc:
            raise DelegationError(f"Could not reach remote worker: {exc}") from exc

        if not 200 <= response.status_code < 300:
            raise DelegationError(
                f"Remote worker responded {response.status_code} {response.reason_phrase}",
                response=response,
            )
        try:
            ticket = DelegateTicket.model_validate(response.json())
        except (ValueError, ValidationError) as exc:
            raise DelegationError(
                "Remote worker response has no token", response=response
            ) from exc
        return ticket.token

    def _fail(
        self, file: FileRecord, error: BaseException, response: Any = None
    ) -> Outcome:
        self._notifier.upload_error(file.id, error)
        return UploadFailure(file.id, error, response)
