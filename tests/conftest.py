"""Shared pytest fixtures for the fileferry upload engine tests.

Provides a recording notification sink, an in-memory Socket.IO double
that replays scripted events after connect, HTTP clients backed by
``httpx.MockTransport``, and small file-record builders.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import Any

import httpx
import pytest
from socketio.exceptions import ConnectionError as SocketConnectionError

from fileferry.models import FileRecord, RemoteSource, TransportMode
from fileferry.upload.channel import EventChannel
from fileferry.upload.notifier import UploadNotifier


class RecordingNotifier(UploadNotifier):
    """Notification sink that records every call as a tuple."""

    def __init__(self) -> None:
        self.events: list[tuple] = []

    def upload_started(self, file_id):
        self.events.append(("started", file_id))

    def upload_progress(self, file_id, bytes_uploaded, bytes_total):
        self.events.append(("progress", file_id, bytes_uploaded, bytes_total))

    def upload_success(self, file_id, response, upload_url):
        self.events.append(("success", file_id, upload_url))

    def upload_error(self, file_id, error):
        self.events.append(("error", file_id, error))

    def inform(self, message, level="info"):
        self.events.append(("inform", message, level))

    def hide_info(self):
        self.events.append(("hide",))

    def of(self, kind: str, file_id: str | None = None) -> list[tuple]:
        return [
            e for e in self.events
            if e[0] == kind and (file_id is None or e[1] == file_id)
        ]


class FakeSocketClient:
    """Stand-in for ``socketio.AsyncClient``.

    Handlers registered with ``on`` are invoked the way python-socketio
    invokes them: ``connect`` with no arguments, ``*`` with the event name
    followed by the payload.
    """

    def __init__(self, server: FakeSocketServer) -> None:
        self._server = server
        self.handlers: dict[str, Callable[..., Any]] = {}
        self.url: str | None = None
        self.path: str | None = None
        self.emitted: list[tuple[str, Any]] = []
        self.disconnects = 0

    def on(self, event, handler=None, namespace=None):
        self.handlers[event] = handler

    async def connect(self, url, socketio_path="socket.io", **kwargs):
        self.url = url
        self.path = socketio_path
        self._server.connect_attempts.append(socketio_path)
        if socketio_path in self._server.refuse:
            raise SocketConnectionError("Connection refused by the server")
        await self.handlers["connect"]()
        script = self._server.scripts.get(socketio_path)
        if script:
            self._server.tasks.append(asyncio.ensure_future(self.play(script)))

    async def emit(self, event, data=None, **kwargs):
        self.emitted.append((event, data))

    async def disconnect(self):
        self.disconnects += 1

    async def fire(self, event, *args):
        """Deliver a server event, even after disconnect."""
        await self.handlers["*"](event, *args)

    async def play(self, script):
        for event, payload in script:
            await asyncio.sleep(0)
            await self.fire(event, payload)


class FakeSocketServer:
    """Factory and registry for :class:`FakeSocketClient` instances.

    ``scripts`` maps a Socket.IO path to ``(event, payload)`` pairs replayed
    after connect; ``refuse`` lists paths whose connect attempts fail.
    """

    def __init__(self) -> None:
        self.scripts: dict[str, list[tuple[str, Any]]] = {}
        self.refuse: set[str] = set()
        self.clients: list[FakeSocketClient] = []
        self.channels: list[EventChannel] = []
        self.connect_attempts: list[str] = []
        self.tasks: list[asyncio.Future] = []

    def client(self) -> FakeSocketClient:
        client = FakeSocketClient(self)
        self.clients.append(client)
        return client

    def channel(self, address: str) -> EventChannel:
        channel = EventChannel(address, connect_attempts=1, client_factory=self.client)
        self.channels.append(channel)
        return channel

    async def drain(self) -> None:
        await asyncio.gather(*self.tasks)


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def socket_server() -> FakeSocketServer:
    return FakeSocketServer()


@pytest.fixture
def requests_seen() -> list[httpx.Request]:
    """Requests received by HTTP clients built with ``make_http``."""
    return []


@pytest.fixture
def make_http(requests_seen):
    """Build an ``httpx.AsyncClient`` whose transport calls *handler*."""
    def _make(handler) -> httpx.AsyncClient:
        async def _recording(request: httpx.Request):
            requests_seen.append(request)
            result = handler(request)
            if asyncio.iscoroutine(result):
                result = await result
            return result

        return httpx.AsyncClient(transport=httpx.MockTransport(_recording))

    return _make


def local_file(file_id: str, data: bytes = b"hello world", **kwargs) -> FileRecord:
    kwargs.setdefault("meta", {"name": f"{file_id}.txt"})
    return FileRecord(id=file_id, name=f"{file_id}.txt", data=data, **kwargs)


def remote_file(file_id: str, token_url: str = "https://worker.example.com/s3/get") -> FileRecord:
    return FileRecord(
        id=file_id,
        name=f"{file_id}.jpg",
        data=b"x" * 2048,
        meta={"name": f"{file_id}.jpg", "caption": "remote"},
        mode=TransportMode.DELEGATED,
        remote=RemoteSource(
            url=token_url,
            host="https://worker.example.com",
            body={"fileId": file_id},
        ),
    )
