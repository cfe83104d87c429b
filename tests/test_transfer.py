"""Unit tests for direct HTTP transfers.

Groups:
  - Option resolution (layering, header merge, validation)
  - Request body (multipart, bare payload, progress chunks, file paths)
  - Settlement (2xx, non-2xx, transport errors, decode errors)
  - Cancellation
"""

from __future__ import annotations

import asyncio

import httpx
import pytest

from conftest import local_file
from fileferry.upload.cancellation import CancellationRegistry, run_cancellable
from fileferry.upload.exceptions import (
    ConfigurationError,
    TransferCancelledError,
    UploadError,
)
from fileferry.upload.options import TransferOptions
from fileferry.upload.transfer import TransferExecutor

ENDPOINT = "https://upload.example.com/files"


def _ok(url: str = "https://x/1"):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"url": url})

    return handler


# ======================================================================
# Option resolution
# ======================================================================


class TestTransferOptions:
    """Tests for TransferOptions.resolve layering."""

    def test_later_layers_win(self):
        """Batch overrides beat globals; file transport beats both."""
        opts = TransferOptions.resolve(
            {"endpoint": "https://global", "field_name": "upload"},
            {"endpoint": "https://batch"},
            {"endpoint": "https://file"},
        )
        assert opts.endpoint == "https://file"
        assert opts.field_name == "upload"

    def test_none_values_do_not_override(self):
        """A None in a higher layer keeps the lower layer's value."""
        opts = TransferOptions.resolve(
            {"endpoint": "https://global", "method": "put"},
            {"endpoint": None, "method": None},
        )
        assert opts.endpoint == "https://global"
        assert opts.method == "PUT"

    def test_headers_merge_key_wise(self):
        """Headers from every layer are combined, later keys winning."""
        opts = TransferOptions.resolve(
            {"endpoint": ENDPOINT, "headers": {"X-A": "1", "X-B": "1"}},
            {"headers": {"X-B": "2"}},
            {"headers": {"X-C": "3"}},
        )
        assert dict(opts.headers) == {"X-A": "1", "X-B": "2", "X-C": "3"}

    def test_missing_endpoint_raises(self):
        with pytest.raises(ConfigurationError):
            TransferOptions.resolve({"method": "POST"}, None, {})

    def test_unknown_keys_ignored(self):
        opts = TransferOptions.resolve({"endpoint": ENDPOINT, "colour": "blue"})
        assert not hasattr(opts, "colour")

    def test_select_meta_defaults_to_all_fields(self):
        opts = TransferOptions.resolve({"endpoint": ENDPOINT})
        assert opts.select_meta({"a": "1", "b": "2"}) == {"a": "1", "b": "2"}

    def test_select_meta_skips_missing_fields(self):
        """Configured field names absent from the metadata are not sent."""
        opts = TransferOptions.resolve({"endpoint": ENDPOINT, "meta_fields": ["a", "z"]})
        assert opts.select_meta({"a": "1", "b": "2"}) == {"a": "1"}


# ======================================================================
# Request body
# ======================================================================


class TestRequestBody:
    """Tests for how the request body is encoded and streamed."""

    @pytest.mark.asyncio
    async def test_multipart_carries_each_meta_field_value(
        self, make_http, requests_seen, notifier
    ):
        """Every selected metadata field is sent with its own value."""
        executor = TransferExecutor(
            make_http(_ok()), notifier, defaults={"endpoint": ENDPOINT}
        )
        file = local_file("a", meta={"name": "a.txt", "caption": "sunset"})

        outcome = await executor.transfer(file, 1, 1)

        assert outcome.ok
        request = requests_seen[0]
        assert request.method == "POST"
        assert str(request.url) == ENDPOINT
        assert request.headers["content-type"].startswith("multipart/form-data")
        body = request.content
        assert b'name="name"\r\n\r\na.txt' in body
        assert b'name="caption"\r\n\r\nsunset' in body
        assert b'name="files[]"; filename="a.txt"' in body
        assert b"hello world" in body

    @pytest.mark.asyncio
    async def test_meta_fields_restrict_form_fields(self, make_http, requests_seen):
        executor = TransferExecutor(
            make_http(_ok()), defaults={"endpoint": ENDPOINT, "meta_fields": ["caption"]}
        )
        file = local_file("a", meta={"name": "a.txt", "caption": "sunset"})

        await executor.transfer(file, 1, 1)

        body = requests_seen[0].content
        assert b'name="caption"' in body
        assert b'name="name"' not in body

    @pytest.mark.asyncio
    async def test_bare_payload(self, make_http, requests_seen):
        """With form_data off the body is exactly the payload."""
        executor = TransferExecutor(
            make_http(_ok()),
            defaults={"endpoint": ENDPOINT, "form_data": False, "method": "put"},
        )

        await executor.transfer(local_file("a"), 1, 1)

        request = requests_seen[0]
        assert request.method == "PUT"
        assert request.content == b"hello world"
        assert request.headers["content-length"] == "11"
        assert "transfer-encoding" not in request.headers

    @pytest.mark.asyncio
    async def test_progress_reported_per_chunk(self, make_http, notifier):
        """Progress reports cumulative bytes against the body length."""
        executor = TransferExecutor(
            make_http(_ok()),
            notifier,
            defaults={"endpoint": ENDPOINT, "form_data": False},
            chunk_size=4,
        )

        await executor.transfer(local_file("a"), 1, 1)

        assert notifier.of("progress", "a") == [
            ("progress", "a", 4, 11),
            ("progress", "a", 8, 11),
            ("progress", "a", 11, 11),
        ]

    @pytest.mark.asyncio
    async def test_headers_layered_onto_request(self, make_http, requests_seen):
        executor = TransferExecutor(
            make_http(_ok()),
            defaults={"endpoint": ENDPOINT, "headers": {"X-A": "1", "X-B": "1"}},
        )
        file = local_file("a", transport={"headers": {"X-C": "3"}})

        await executor.transfer(file, 1, 1, overrides={"headers": {"X-B": "2"}})

        headers = requests_seen[0].headers
        assert headers["x-a"] == "1"
        assert headers["x-b"] == "2"
        assert headers["x-c"] == "3"

    @pytest.mark.asyncio
    async def test_payload_read_from_path(self, make_http, requests_seen, tmp_path):
        path = tmp_path / "photo.bin"
        path.write_bytes(b"\x00\x01binary")
        executor = TransferExecutor(
            make_http(_ok()), defaults={"endpoint": ENDPOINT, "form_data": False}
        )

        await executor.transfer(local_file("a", data=path), 1, 1)

        assert requests_seen[0].content == b"\x00\x01binary"

    @pytest.mark.asyncio
    async def test_missing_endpoint_raises_before_request(self, make_http, requests_seen):
        executor = TransferExecutor(make_http(_ok()))

        with pytest.raises(ConfigurationError):
            await executor.transfer(local_file("a"), 1, 1)

        assert requests_seen == []


# ======================================================================
# Settlement
# ======================================================================


class TestSettlement:
    """Tests for how responses become outcomes and notifications."""

    @pytest.mark.asyncio
    async def test_success_extracts_url(self, make_http, notifier):
        executor = TransferExecutor(
            make_http(_ok("https://x/9")), notifier, defaults={"endpoint": ENDPOINT}
        )

        outcome = await executor.transfer(local_file("a"), 1, 1)

        assert outcome.ok
        assert outcome.upload_url == "https://x/9"
        assert outcome.response == {"url": "https://x/9"}
        assert notifier.of("started", "a") == [("started", "a")]
        assert notifier.of("success", "a") == [("success", "a", "https://x/9")]
        assert notifier.of("error") == []

    @pytest.mark.asyncio
    async def test_response_url_field_override(self, make_http):
        def handler(request):
            return httpx.Response(201, json={"location": "https://x/loc"})

        executor = TransferExecutor(
            make_http(handler),
            defaults={"endpoint": ENDPOINT, "response_url_field": "location"},
        )

        outcome = await executor.transfer(local_file("a"), 1, 1)

        assert outcome.upload_url == "https://x/loc"

    @pytest.mark.asyncio
    async def test_non_mapping_body_has_no_url(self, make_http):
        def handler(request):
            return httpx.Response(200, json=["stored"])

        executor = TransferExecutor(make_http(handler), defaults={"endpoint": ENDPOINT})

        outcome = await executor.transfer(local_file("a"), 1, 1)

        assert outcome.ok
        assert outcome.upload_url is None
        assert outcome.response == ["stored"]

    @pytest.mark.asyncio
    async def test_custom_response_decoder(self, make_http):
        def handler(request):
            return httpx.Response(200, text="https://x/plain")

        executor = TransferExecutor(
            make_http(handler),
            defaults={
                "endpoint": ENDPOINT,
                "get_response_data": lambda r: {"url": r.text},
            },
        )

        outcome = await executor.transfer(local_file("a"), 1, 1)

        assert outcome.upload_url == "https://x/plain"

    @pytest.mark.asyncio
    async def test_non_2xx_is_failure_with_response(self, make_http, notifier):
        def handler(request):
            return httpx.Response(500, json={"error": "disk full"})

        executor = TransferExecutor(
            make_http(handler), notifier, defaults={"endpoint": ENDPOINT}
        )

        outcome = await executor.transfer(local_file("a"), 1, 1)

        assert not outcome.ok
        assert isinstance(outcome.error, UploadError)
        assert str(outcome.error) == "Upload error"
        assert outcome.response.status_code == 500
        assert outcome.error.response is outcome.response
        assert notifier.of("error", "a")[0][2] is outcome.error
        assert notifier.of("success") == []

    @pytest.mark.asyncio
    async def test_redirect_status_is_failure(self, make_http):
        """Only 2xx counts as success."""
        def handler(request):
            return httpx.Response(304)

        executor = TransferExecutor(make_http(handler), defaults={"endpoint": ENDPOINT})

        outcome = await executor.transfer(local_file("a"), 1, 1)

        assert not outcome.ok

    @pytest.mark.asyncio
    async def test_custom_error_builder(self, make_http):
        def handler(request):
            return httpx.Response(413)

        executor = TransferExecutor(
            make_http(handler),
            defaults={
                "endpoint": ENDPOINT,
                "get_response_error": lambda r: UploadError(f"rejected {r.status_code}", r),
            },
        )

        outcome = await executor.transfer(local_file("a"), 1, 1)

        assert str(outcome.error) == "rejected 413"

    @pytest.mark.asyncio
    async def test_transport_error_is_failure(self, make_http, notifier):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        executor = TransferExecutor(
            make_http(handler), notifier, defaults={"endpoint": ENDPOINT}
        )

        outcome = await executor.transfer(local_file("a"), 1, 1)

        assert not outcome.ok
        assert isinstance(outcome.error, UploadError)
        assert outcome.response is None
        assert len(notifier.of("error", "a")) == 1

    @pytest.mark.asyncio
    async def test_undecodable_success_body_is_failure(self, make_http, notifier):
        def handler(request):
            return httpx.Response(200, text="<html>not json</html>")

        executor = TransferExecutor(
            make_http(handler), notifier, defaults={"endpoint": ENDPOINT}
        )

        outcome = await executor.transfer(local_file("a"), 1, 1)

        assert not outcome.ok
        assert "Could not decode response" in str(outcome.error)
        assert outcome.response.status_code == 200
        assert notifier.of("success") == []


# ======================================================================
# Cancellation
# ======================================================================


class TestCancellation:
    """Tests for cancelling an in-flight transfer."""

    @pytest.mark.asyncio
    async def test_cancel_settles_as_cancelled(self, make_http, notifier):
        release = asyncio.Event()

        async def handler(request):
            await request.aread()
            await release.wait()
            return httpx.Response(200, json={"url": "https://x/late"})

        cancellation = CancellationRegistry()
        executor = TransferExecutor(
            make_http(handler), notifier, cancellation, defaults={"endpoint": ENDPOINT}
        )

        task = asyncio.create_task(executor.transfer(local_file("a"), 1, 1))
        while "a" not in cancellation.in_flight():
            await asyncio.sleep(0)

        assert cancellation.cancel("a") is True
        outcome = await task

        assert not outcome.ok
        assert isinstance(outcome.error, TransferCancelledError)
        assert outcome.error.file_id == "a"
        assert cancellation.in_flight() == []
        assert notifier.of("success") == []

    def test_cancel_idle_file_is_noop(self):
        assert CancellationRegistry().cancel("nobody") is False

    @pytest.mark.asyncio
    async def test_cancel_after_settle_does_not_affect_next_attempt(self, make_http):
        cancellation = CancellationRegistry()
        executor = TransferExecutor(
            make_http(_ok()), cancellation=cancellation, defaults={"endpoint": ENDPOINT}
        )

        first = await executor.transfer(local_file("a"), 1, 1)
        assert cancellation.cancel("a") is False
        second = await executor.transfer(local_file("a"), 1, 1)

        assert first.ok and second.ok

    @pytest.mark.asyncio
    async def test_signal_set_before_completion_wins(self):
        """A signal already raised cancels even an operation that finishes at once."""
        signal = asyncio.Event()
        signal.set()

        async def quick():
            return 1

        assert await run_cancellable(quick(), signal) == (True, None)

    @pytest.mark.asyncio
    async def test_unsignalled_operation_returns_result(self):
        async def quick():
            return 1

        assert await run_cancellable(quick(), asyncio.Event()) == (False, 1)
