"""Direct HTTP transfer of a single file.

The request body is either a multipart form (selected metadata fields plus
the payload under the configured field name) or the bare payload. The body
is encoded up front and streamed in fixed-size chunks so upload progress can
be reported against a known total.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Mapping
from typing import Any

import httpx

from fileferry.models import FileRecord, Outcome, UploadFailure, UploadSuccess
from fileferry.upload.cancellation import CancellationRegistry, run_cancellable
from fileferry.upload.exceptions import TransferCancelledError, UploadError
from fileferry.upload.notifier import UploadNotifier
from fileferry.upload.options import TransferOptions

logger = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024


class TransferExecutor:
    """Uploads one file per call over a shared ``httpx.AsyncClient``.

    Usage::

        async with httpx.AsyncClient() as http:
            executor = TransferExecutor(http, defaults=config.transfer_defaults())
            outcome = await executor.transfer(file, 1, 1)

    Args:
        client: HTTP client used for every request.
        notifier: Sink for started/progress/success/error notifications.
        cancellation: Registry consulted for cancel signals.
        defaults: Global option layer (lowest precedence).
        chunk_size: Bytes per streamed body chunk.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        notifier: UploadNotifier | None = None,
        cancellation: CancellationRegistry | None = None,
        defaults: Mapping[str, Any] | None = None,
        chunk_size: int = CHUNK_SIZE,
    ) -> None:
        self._client = client
        self._notifier = notifier or UploadNotifier()
        self._cancellation = cancellation or CancellationRegistry()
        self._defaults = dict(defaults or {})
        self._chunk_size = chunk_size

    def options_for(
        self, file: FileRecord, overrides: Mapping[str, Any] | None = None
    ) -> TransferOptions:
        """Resolve global < batch < file option layers for *file*."""
        return TransferOptions.resolve(self._defaults, overrides, file.transport)

    async def transfer(
        self,
        file: FileRecord,
        current: int,
        total: int,
        overrides: Mapping[str, Any] | None = None,
    ) -> Outcome:
        """Upload *file* and settle its outcome.

        Never raises for transport problems: non-2xx responses, connection
        errors, decode errors and cancellation all settle as
        :class:`UploadFailure`.
        """
        opts = self.options_for(file, overrides)
        logger.debug("Uploading %d of %d: %s", current, total, file.name)

        request = self._build_request(file, opts)

        with self._cancellation.watch(file.id) as cancel_signal:
            self._notifier.upload_started(file.id)
            try:
                cancelled, response = await run_cancellable(
                    self._client.send(request), cancel_signal
                )
            except httpx.HTTPError as exc:
                logger.error("Transport error uploading %s: %s", file.name, exc)
                error = opts.get_response_error(None) or UploadError(str(exc))
                return self._fail(file, error, None)

        if cancelled:
            return self._fail(file, TransferCancelledError(file.id), None)

        if 200 <= response.status_code < 300:
            return self._succeed(file, opts, response)

        logger.error(
            "Upload of %s failed with HTTP %d", file.name, response.status_code
        )
        error = opts.get_response_error(response) or UploadError(
            "Upload error", response=response
        )
        return self._fail(file, error, response)

    # ------------------------------------------------------------------
    # Request body
    # ------------------------------------------------------------------

    def _build_request(self, file: FileRecord, opts: TransferOptions) -> httpx.Request:
        payload = file.read_payload()
        headers = dict(opts.headers)

        if opts.form_data:
            encoded = self._client.build_request(
                opts.method,
                opts.endpoint,
                headers=headers,
                data=opts.select_meta(file.meta),
                files={opts.field_name: (file.name, payload)},
            )
        else:
            encoded = self._client.build_request(
                opts.method, opts.endpoint, headers=headers, content=payload
            )

        body = encoded.read()
        # Re-issue with a streamed body; Content-Length from the encoded
        # request suppresses chunked transfer encoding.
        return httpx.Request(
            opts.method,
            encoded.url,
            headers=encoded.headers,
            content=self._iter_body(file.id, body),
        )

    async def _iter_body(self, file_id: str, body: bytes) -> AsyncIterator[bytes]:
        total = len(body)
        sent = 0
        for start in range(0, total, self._chunk_size):
            chunk = body[start : start + self._chunk_size]
            yield chunk
            sent += len(chunk)
            if total:
                self._notifier.upload_progress(file_id, sent, total)

    # ------------------------------------------------------------------
    # Settlement
    # ------------------------------------------------------------------

    def _succeed(
        self, file: FileRecord, opts: TransferOptions, response: httpx.Response
    ) -> Outcome:
        try:
            data = opts.get_response_data(response)
        except Exception as exc:
            logger.error("Could not decode upload response for %s: %s", file.name, exc)
            error = UploadError(f"Could not decode response: {exc}", response=response)
            return self._fail(file, error, response)

        upload_url = None
        if isinstance(data, Mapping):
            upload_url = data.get(opts.response_url_field)

        self._notifier.upload_success(file.id, data, upload_url)
        if upload_url:
            logger.info("Download %s from %s", file.name, upload_url)
        return UploadSuccess(file.id, data, upload_url)

    def _fail(
        self, file: FileRecord, error: BaseException, response: httpx.Response | None
    ) -> Outcome:
        self._notifier.upload_error(file.id, error)
        return UploadFailure(file.id, error, response)
