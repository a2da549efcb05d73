# SPDX-License-Identifier: MIT
# Copyright (c) 2023 The Pybricks Authors

"""
Bluetooth Low Energy transport and hub discovery, using :mod:`bleak`.
"""

import asyncio
import logging
from typing import Dict, List, NamedTuple, Optional

from bleak import BleakClient, BleakScanner
from bleak.backends.device import BLEDevice
from bleak.backends.scanner import AdvertisementData as BleakAdvertisementData

from .hub import Hub, HubConfig
from .lwp3 import (
    LEGO_CID,
    LWP3_HUB_CHARACTERISTIC_UUID,
    LWP3_HUB_SERVICE_UUID,
    AdvertisementData,
)
from .lwp3.bytecodes import HubKind
from .transport import Transport

logger = logging.getLogger(__name__)


class DiscoveredHub(NamedTuple):
    """A hub found while scanning."""

    kind: HubKind
    address: str
    """Bluetooth address (a UUID on Apple platforms)."""
    name: Optional[str]
    device: BLEDevice


class HubFilter(NamedTuple):
    """
    Selects hubs while scanning. Fields that are ``None`` match any hub.

    ``name`` and ``address`` are not case-sensitive.
    """

    name: Optional[str] = None
    address: Optional[str] = None
    kind: Optional[HubKind] = None

    def matches(self, hub: DiscoveredHub) -> bool:
        if self.name is not None and (hub.name or "").lower() != self.name.lower():
            return False

        if self.address is not None and hub.address.upper() != self.address.upper():
            return False

        if self.kind is not None and hub.kind != self.kind:
            return False

        return True


def identify_hub(
    device: BLEDevice, adv: BleakAdvertisementData
) -> Optional[DiscoveredHub]:
    """
    Checks if an advertisement comes from a hub running LEGO firmware.

    Returns:
        The hub or ``None`` if the advertisement is from some other device.
    """
    if LWP3_HUB_SERVICE_UUID not in adv.service_uuids:
        return None

    mfg_data = adv.manufacturer_data.get(LEGO_CID)

    if mfg_data is None or len(mfg_data) != 6:
        return None

    try:
        data = AdvertisementData(mfg_data)
        kind = data.hub_kind
    except ValueError:
        logger.debug("unknown hub kind in %r", mfg_data)
        return None

    return DiscoveredHub(kind, device.address, adv.local_name or device.name, device)


async def find_hubs(
    hub_filter: HubFilter = HubFilter(), timeout: float = 5
) -> List[DiscoveredHub]:
    """
    Scans for hubs for ``timeout`` seconds.

    Returns:
        All matching hubs that were found, in order of discovery.
    """
    found: Dict[str, DiscoveredHub] = {}

    def detection_callback(device: BLEDevice, adv: BleakAdvertisementData) -> None:
        hub = identify_hub(device, adv)

        if hub is None or not hub_filter.matches(hub):
            return

        if device.address not in found:
            logger.debug("found %s", hub)

        found[device.address] = hub

    async with BleakScanner(
        detection_callback=detection_callback, service_uuids=[LWP3_HUB_SERVICE_UUID]
    ):
        await asyncio.sleep(timeout)

    return list(found.values())


async def find_hub(
    hub_filter: HubFilter = HubFilter(), timeout: float = 10
) -> DiscoveredHub:
    """
    Finds the first advertising hub that matches ``hub_filter``.

    Raises:
        asyncio.TimeoutError: No hub was found within ``timeout`` seconds.
    """
    found: Dict[str, DiscoveredHub] = {}

    def match(device: BLEDevice, adv: BleakAdvertisementData) -> bool:
        hub = identify_hub(device, adv)

        if hub is None or not hub_filter.matches(hub):
            return False

        found[device.address] = hub
        return True

    device = await BleakScanner.find_device_by_filter(
        match, timeout, service_uuids=[LWP3_HUB_SERVICE_UUID]
    )

    if device is None:
        raise asyncio.TimeoutError

    return found[device.address]


class BleakTransport(Transport):
    """Connection to a hub over Bluetooth Low Energy."""

    def __init__(self, device: BLEDevice) -> None:
        super().__init__()

        self._device = device

        def handle_disconnect(_: BleakClient) -> None:
            self._handle_disconnect()

        self._client = BleakClient(device, disconnected_callback=handle_disconnect)

    async def _client_connect(self) -> None:
        logger.info("Connecting to %s", self._device.name)
        await self._client.connect()
        logger.info("Connected successfully!")

    async def _client_start_notify(self) -> None:
        def handle_notify(_, data: bytearray) -> None:
            self._handle_notification(data)

        await self._client.start_notify(LWP3_HUB_CHARACTERISTIC_UUID, handle_notify)

    async def _client_disconnect(self) -> None:
        await self._client.disconnect()

    async def _client_write(self, data: bytes, response: bool) -> None:
        await self._client.write_gatt_char(LWP3_HUB_CHARACTERISTIC_UUID, data, response)


async def connect(hub: DiscoveredHub, config: HubConfig = HubConfig()) -> Hub:
    """
    Connects to a discovered hub and starts its session.

    Returns:
        The connected session. Call :meth:`.Hub.disconnect` when done.
    """
    session = Hub(BleakTransport(hub.device), config)
    await session.connect()
    return session
