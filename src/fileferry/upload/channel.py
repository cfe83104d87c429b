"""Named-event channel over a Socket.IO connection.

Wraps ``socketio.AsyncClient`` with a small local subscription API:

* ``on`` / ``off`` register local handlers for named events
* ``emit`` sends an application message to the remote side
* ``close`` disconnects; it is idempotent and drops every later event

Local events are ``connect`` (once per successful connection), any event the
remote side sends, ``error`` and ``disconnect``. Handlers may be plain
functions or coroutine functions.
"""

from __future__ import annotations

import inspect
import logging
from collections.abc import Callable
from typing import Any
from urllib.parse import urlsplit

import socketio
from socketio.exceptions import ConnectionError as SocketConnectionError
from tenacity import (
    AsyncRetrying,
    RetryError,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from fileferry.upload.exceptions import ChannelConnectError

logger = logging.getLogger(__name__)

Handler = Callable[..., Any]


def split_address(address: str) -> tuple[str, str]:
    """Split a channel address into ``(origin, socketio_path)``."""
    parts = urlsplit(address)
    if not parts.scheme or not parts.netloc:
        raise ValueError(f"Invalid channel address: {address!r}")
    path = parts.path or "/socket.io"
    return f"{parts.scheme}://{parts.netloc}", path


class EventChannel:
    """A durable, explicitly closed connection carrying named events.

    Usage::

        channel = EventChannel("https://jobs.example.com/ws/1234")
        channel.on("connect", lambda: print("connected"))
        channel.on("assembly_finished", on_finished)
        await channel.open()
        ...
        await channel.close()

    Args:
        address: Remote address; its path becomes the Socket.IO path.
        connect_attempts: Connection attempts before giving up.
        client_factory: Builds the underlying Socket.IO client.
    """

    def __init__(
        self,
        address: str,
        connect_attempts: int = 3,
        client_factory: Callable[[], Any] = socketio.AsyncClient,
    ) -> None:
        self.address = address
        self._origin, self._path = split_address(address)
        self._connect_attempts = max(1, connect_attempts)
        self._client = client_factory()
        self._handlers: dict[str, list[Handler]] = {}
        self._closed = False
        self._opened = False

    @property
    def closed(self) -> bool:
        return self._closed

    # ------------------------------------------------------------------
    # Local subscriptions
    # ------------------------------------------------------------------

    def on(self, event: str, handler: Handler) -> None:
        self._handlers.setdefault(event, []).append(handler)

    def off(self, event: str, handler: Handler) -> None:
        handlers = self._handlers.get(event)
        if handlers and handler in handlers:
            handlers.remove(handler)

    async def _dispatch(self, event: str, *args: Any) -> None:
        if self._closed:
            logger.debug("Dropping %r on closed channel %s", event, self.address)
            return
        for handler in list(self._handlers.get(event, ())):
            if self._closed:
                return
            result = handler(*args)
            if inspect.isawaitable(result):
                await result

    # ------------------------------------------------------------------
    # Remote side
    # ------------------------------------------------------------------

    async def open(self) -> None:
        """Connect to the remote side, retrying with exponential backoff.

        Raises:
            ChannelConnectError: If every attempt fails. An ``error`` event
                is dispatched before raising.
        """
        if self._closed:
            raise ChannelConnectError(f"Channel {self.address} is closed")
        if not self._opened:
            self._client.on("connect", self._on_connect)
            self._client.on("disconnect", self._on_disconnect)
            self._client.on("connect_error", self._on_connect_error)
            self._client.on("*", self._on_event)
            self._opened = True

        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self._connect_attempts),
                wait=wait_exponential(multiplier=0.5, max=5),
                retry=retry_if_exception_type(SocketConnectionError),
            ):
                with attempt:
                    if self._closed:
                        return
                    logger.debug(
                        "Connecting channel %s (attempt %d)",
                        self.address,
                        attempt.retry_state.attempt_number,
                    )
                    await self._client.connect(self._origin, socketio_path=self._path)
        except (RetryError, SocketConnectionError) as exc:
            logger.error("Could not connect channel %s: %s", self.address, exc)
            error = ChannelConnectError(f"Could not connect to {self.address}")
            await self._dispatch("error", error)
            raise error from exc

    async def emit(self, event: str, payload: Any = None) -> None:
        """Send *event* to the remote side. Ignored once closed."""
        if self._closed:
            logger.debug("Not emitting %r on closed channel %s", event, self.address)
            return
        await self._client.emit(event, payload)

    async def close(self) -> None:
        """Disconnect and stop delivering events. Safe to call repeatedly."""
        if self._closed:
            return
        self._closed = True
        self._handlers.clear()
        logger.debug("Closing channel %s", self.address)
        await self._client.disconnect()

    # ------------------------------------------------------------------
    # Socket.IO callbacks
    # ------------------------------------------------------------------

    async def _on_connect(self) -> None:
        logger.debug("Channel %s connected", self.address)
        await self._dispatch("connect")

    async def _on_disconnect(self, *args: Any) -> None:
        await self._dispatch("disconnect", *args)

    async def _on_connect_error(self, data: Any = None) -> None:
        logger.warning("Channel %s connect error: %s", self.address, data)

    async def _on_event(self, event: str, *args: Any) -> None:
        await self._dispatch(event, *args)

