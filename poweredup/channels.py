# SPDX-License-Identifier: MIT
# Copyright (c) 2023 The Pybricks Authors

"""
Broadcast channels used to fan out notifications from a hub to any number of
independent consumers.

Each :class:`TopicChannel` wraps a :class:`reactivex.subject.Subject`. Every
call to :meth:`TopicChannel.subscribe` returns a new :class:`ChannelReceiver`
with its own bounded buffer. Publishing never blocks: when a receiver is not
keeping up, the oldest buffered item is discarded.
"""

import asyncio
import logging
import struct
from typing import Any, Callable, Generic, Optional, TypeVar

import reactivex.operators as op
from reactivex.abc import DisposableBase
from reactivex.subject import Subject

from .errors import HubDisconnectedError

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_CHANNEL_SIZE = 16
"""Default number of items buffered for each receiver."""

_CLOSED = object()


class ChannelReceiver(Generic[T]):
    """
    One consumer of a :class:`TopicChannel`.

    Receivers can be awaited with :meth:`get` or used as an async iterator,
    which stops when the channel is closed. Use as a context manager (or call
    :meth:`close`) to stop receiving.
    """

    def __init__(
        self,
        name: str,
        maxsize: int,
        transform: Optional[Callable[[Any], T]] = None,
    ) -> None:
        if maxsize < 1:
            raise ValueError("maxsize must be at least 1")

        self.name = name
        self.maxsize = maxsize
        self.dropped = 0
        """Number of items discarded because the buffer was full."""

        self._transform = transform
        self._queue: asyncio.Queue = asyncio.Queue()
        self._subscription: Optional[DisposableBase] = None
        self._completed = False
        self._closed = False

    def _on_next(self, item: Any) -> None:
        if self._closed:
            return

        if self._transform is not None:
            try:
                item = self._transform(item)
            except (struct.error, ValueError) as ex:
                logger.warning(
                    "%s: dropping value that could not be decoded: %s", self.name, ex
                )
                return

        if self._queue.qsize() >= self.maxsize:
            self._queue.get_nowait()
            self.dropped += 1

            if self.dropped == 1:
                logger.warning(
                    "%s: receiver is not keeping up, dropping oldest items", self.name
                )

        self._queue.put_nowait(item)

    def _on_completed(self) -> None:
        if self.closed:
            return

        self._completed = True
        self._queue.put_nowait(_CLOSED)

    def _on_error(self, error: Exception) -> None:
        logger.error("%s: receiver stopped", self.name, exc_info=error)
        self._on_completed()

    @property
    def closed(self) -> bool:
        """``True`` once no more items will be received."""
        return self._closed or self._completed

    def qsize(self) -> int:
        """Number of items waiting to be received."""
        # the end marker stays in the queue once it is added
        return self._queue.qsize() - (1 if self.closed else 0)

    async def get(self) -> T:
        """
        Waits for the next item.

        Raises:
            HubDisconnectedError: The channel was closed because the hub
                session ended.
            RuntimeError: This receiver was closed.
        """
        if self._closed:
            raise RuntimeError("receiver is closed")

        item = await self._queue.get()

        if item is _CLOSED:
            # leave the marker for the next caller
            self._queue.put_nowait(_CLOSED)

            if self._closed:
                raise RuntimeError("receiver is closed")

            raise HubDisconnectedError(f"{self.name} channel is closed")

        return item

    def close(self) -> None:
        """Stops receiving. Has no effect on the channel or other receivers."""
        if self._closed:
            return

        if not self._completed:
            self._queue.put_nowait(_CLOSED)

        self._closed = True

        if self._subscription is not None:
            self._subscription.dispose()
            self._subscription = None

    def __aiter__(self) -> "ChannelReceiver[T]":
        return self

    async def __anext__(self) -> T:
        try:
            return await self.get()
        except (HubDisconnectedError, RuntimeError):
            raise StopAsyncIteration

    def __enter__(self) -> "ChannelReceiver[T]":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.name!r}, maxsize={self.maxsize})"


class TopicChannel(Generic[T]):
    """
    A broadcast channel with one publisher and any number of receivers.
    """

    def __init__(self, name: str, maxsize: int = DEFAULT_CHANNEL_SIZE) -> None:
        """
        Args:
            name: Name used in log messages.
            maxsize: Default buffer size of receivers.
        """
        self.name = name
        self.maxsize = maxsize
        self._subject: Subject = Subject()

    @property
    def closed(self) -> bool:
        return self._subject.is_stopped

    @property
    def subscriber_count(self) -> int:
        """Number of receivers that are currently subscribed."""
        return len(self._subject.observers)

    def publish(self, item: T) -> None:
        """
        Sends ``item`` to all current receivers.

        It is not an error to publish when there are no receivers. Publishing
        to a closed channel does nothing.
        """
        self._subject.on_next(item)

    def subscribe(
        self,
        predicate: Optional[Callable[[T], bool]] = None,
        transform: Optional[Callable[[T], Any]] = None,
        maxsize: Optional[int] = None,
    ) -> ChannelReceiver:
        """
        Creates a new receiver for items published from now on.

        Args:
            predicate: Only items where this returns ``True`` are received.
            transform: Applied to each received item. Items where this raises
                :class:`struct.error` or :class:`ValueError` are logged and
                dropped.
            maxsize: Buffer size for this receiver. Defaults to the buffer
                size of the channel.

        Returns:
            The new receiver. If the channel is already closed, iterating it
            stops immediately.
        """
        receiver = ChannelReceiver(self.name, maxsize or self.maxsize, transform)

        observable = self._subject

        if predicate is not None:
            observable = observable.pipe(op.filter(predicate))

        receiver._subscription = observable.subscribe(
            on_next=receiver._on_next,
            on_error=receiver._on_error,
            on_completed=receiver._on_completed,
        )

        return receiver

    def close(self) -> None:
        """Closes the channel. All receivers stop once their buffers are drained."""
        if not self._subject.is_stopped:
            self._subject.on_completed()

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.name!r})"


class HubChannels:
    """The set of channels belonging to one hub session."""

    def __init__(self, maxsize: int = DEFAULT_CHANNEL_SIZE) -> None:
        self.port_value = TopicChannel("port_value", maxsize)
        """:class:`.messages.PortValueMessage` from all ports."""

        self.port_value_combo = TopicChannel("port_value_combo", maxsize)
        """:class:`.messages.PortValueComboMessage` from all ports."""

        self.network_command = TopicChannel("network_command", maxsize)
        """:class:`.messages.HwNetCmdMessage`."""

        self.hub_notification = TopicChannel("hub_notification", maxsize)
        """Hub property, action, alert and error messages."""

    def __iter__(self):
        yield self.port_value
        yield self.port_value_combo
        yield self.network_command
        yield self.hub_notification

    def close(self) -> None:
        for channel in self:
            channel.close()
