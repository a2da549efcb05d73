# SPDX-License-Identifier: MIT
# Copyright (c) 2023 The Pybricks Authors

"""Exceptions raised by :mod:`poweredup`."""


class PoweredUpError(Exception):
    """Base class for all errors raised by this package."""


class MalformedMessageError(PoweredUpError, ValueError):
    """
    Raised when a received frame cannot be decoded.

    The dispatcher logs and drops such frames, so callers only see this
    when they decode data themselves.
    """

    def __init__(self, reason: str, data: bytes = b"") -> None:
        super().__init__(f"{reason}: {bytes(data).hex(' ')}" if data else reason)
        self.reason = reason
        self.data = bytes(data)


class HubDisconnectedError(PoweredUpError, ConnectionError):
    """Raised when reading from or writing to a hub that is no longer connected."""


class UnsupportedCommandError(PoweredUpError, TypeError):
    """Raised when a command does not apply to the kind of device on a port."""

    def __init__(self, command: str, kind) -> None:
        super().__init__(f"{command} is not supported for {kind!r}")
        self.command = command
        self.kind = kind


class DeviceNotFoundError(PoweredUpError, LookupError):
    """
    Raised when no device is attached at the requested port, no device of the
    requested kind is attached, or the metadata needed by an operation has not
    been received yet.
    """
