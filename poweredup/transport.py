# SPDX-License-Identifier: MIT
# Copyright (c) 2023 The Pybricks Authors

"""
The boundary between a hub session and the wireless link.

A :class:`Transport` connects to one hub, writes raw frames to it and
delivers the raw notifications it receives, in order, through
:meth:`Transport.events`. The event stream ending is the only sign of a
disconnect that the rest of the package relies on.
"""

import abc
import asyncio
import contextlib
import enum
import logging
from typing import AsyncIterator, Optional

from reactivex.subject import BehaviorSubject

from .errors import HubDisconnectedError

logger = logging.getLogger(__name__)


class ConnectionState(enum.Enum):
    """
    Indicates state of a connection.
    """

    CONNECTING = enum.auto()
    CONNECTED = enum.auto()
    DISCONNECTING = enum.auto()
    DISCONNECTED = enum.auto()


class Transport(abc.ABC):
    """
    Abstract base class for a connection to a single hub.

    Subclasses implement the ``_client_*`` methods and call
    :meth:`_handle_notification` for each received notification and
    :meth:`_handle_disconnect` when the link is lost.
    """

    def __init__(self) -> None:
        self.connection_state_observable = BehaviorSubject(ConnectionState.DISCONNECTED)
        self._events: "asyncio.Queue[Optional[bytes]]" = asyncio.Queue()

    @property
    def connected(self) -> bool:
        return self.connection_state_observable.value == ConnectionState.CONNECTED

    @abc.abstractmethod
    async def _client_connect(self) -> None:
        """Establishes the link."""

    @abc.abstractmethod
    async def _client_start_notify(self) -> None:
        """Enables notifications after the link is established."""

    @abc.abstractmethod
    async def _client_disconnect(self) -> None:
        """
        Closes the link. :meth:`_handle_disconnect` must be called once the
        link is closed.
        """

    @abc.abstractmethod
    async def _client_write(self, data: bytes, response: bool) -> None:
        """Writes one frame."""

    async def connect(self) -> None:
        """
        Connects to the hub.

        Raises:
            RuntimeError: Not in the disconnected state.
        """
        if self.connection_state_observable.value != ConnectionState.DISCONNECTED:
            raise RuntimeError(
                "attempting to connect with invalid state: "
                f"{self.connection_state_observable.value}"
            )

        async with contextlib.AsyncExitStack() as stack:
            self.connection_state_observable.on_next(ConnectionState.CONNECTING)

            stack.callback(
                self.connection_state_observable.on_next, ConnectionState.DISCONNECTED
            )

            # each connection gets a new event stream
            self._events = asyncio.Queue()

            await self._client_connect()

            stack.push_async_callback(self._client_disconnect)

            await self._client_start_notify()

            self.connection_state_observable.on_next(ConnectionState.CONNECTED)

            # don't unwind on success
            stack.pop_all()

    async def disconnect(self) -> None:
        """Disconnects from the hub. Does nothing if not connected."""
        if self.connection_state_observable.value == ConnectionState.CONNECTED:
            logger.info("Disconnecting...")
            self.connection_state_observable.on_next(ConnectionState.DISCONNECTING)
            await self._client_disconnect()
        else:
            logger.debug("skipping disconnect because not connected")

    async def write(self, data: bytes, response: bool = False) -> None:
        """
        Writes a frame to the hub.

        Returns once the frame has been accepted for transmission. This does
        not mean that the hub has acted on it.

        Args:
            data: The complete frame.
            response: If ``True``, use a write with response.

        Raises:
            HubDisconnectedError: The hub is not connected or the link was
                lost while writing.
        """
        if not self.connected:
            raise HubDisconnectedError("hub is not connected")

        logger.debug("TX: %s", data.hex(" "))

        try:
            await self._client_write(bytes(data), response)
        except Exception as ex:
            if not self.connected:
                raise HubDisconnectedError("hub disconnected during write") from ex
            raise

    async def events(self) -> AsyncIterator[bytes]:
        """
        Yields the received notifications in the order they arrived.

        There must be only one consumer. Iteration ends when the hub
        disconnects.
        """
        while True:
            data = await self._events.get()

            if data is None:
                return

            yield data

    def _handle_notification(self, data: bytes) -> None:
        logger.debug("RX: %s", bytes(data).hex(" "))
        self._events.put_nowait(bytes(data))

    def _handle_disconnect(self) -> None:
        logger.info("Disconnected!")
        self.connection_state_observable.on_next(ConnectionState.DISCONNECTED)
        # end of stream
        self._events.put_nowait(None)
