# SPDX-License-Identifier: MIT
# Copyright (c) 2023 The Pybricks Authors

"""
Constants and advertisement decoding for hubs that speak the LEGO Wireless
Protocol v3.

The protocol is documented at
https://lego.github.io/lego-ble-wireless-protocol-docs/
"""

import struct

from .bytecodes import Capabilities, HubKind, LastNetwork, Status

LEGO_CID = 0x0397
"""Bluetooth SIG company identifier of LEGO System A/S."""


def _lwp3_uuid(short: int) -> str:
    """Expands a 16-bit ``short`` id into the 128-bit LWP3 UUID string."""
    return f"0000{short:04x}-1212-efde-1623-785feabcd123"


LWP3_HUB_SERVICE_UUID = _lwp3_uuid(0x1623)
"""GATT service of a hub running LEGO firmware."""

LWP3_HUB_CHARACTERISTIC_UUID = _lwp3_uuid(0x1624)
"""GATT characteristic that carries all LWP3 messages, in both directions."""


class AdvertisementData:
    """
    Decoded manufacturer-specific advertising data of a hub running official
    LEGO firmware. The LEGO company id is not part of ``data``.

    Raises:
        ValueError: ``data`` has the wrong size or an unknown hub kind.
    """

    _layout = struct.Struct("<?BBBBB")

    def __init__(self, data: bytes) -> None:
        if len(data) != self._layout.size:
            raise ValueError(
                f"advertising data must be {self._layout.size} bytes, not {len(data)}"
            )

        self._data = bytes(data)
        pressed, kind, capabilities, network, status, option = self._layout.unpack(
            self._data
        )

        self.is_button_pressed: bool = pressed
        self.hub_kind = HubKind(kind)
        self.hub_capabilities = Capabilities(capabilities)
        self.last_network = LastNetwork(network)
        self.status = Status(status)
        self.option: int = option
        """Reserved."""

    def __bytes__(self) -> bytes:
        return self._data

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self._data!r})"
