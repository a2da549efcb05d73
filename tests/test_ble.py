import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from poweredup.ble import (
    BleakTransport,
    DiscoveredHub,
    HubFilter,
    connect,
    find_hub,
    find_hubs,
    identify_hub,
)
from poweredup.hub import HubConfig
from poweredup.lwp3 import (
    LEGO_CID,
    LWP3_HUB_CHARACTERISTIC_UUID,
    LWP3_HUB_SERVICE_UUID,
    AdvertisementData,
)
from poweredup.lwp3.bytecodes import Capabilities, HubKind, LastNetwork, Status
from poweredup.transport import ConnectionState

TECHNIC_HUB_DATA = b"\x00\x80\x06\x00\x41\x00"


def _advertisement(
    address: str = "90:84:2B:60:3C:B8",
    name: str = "Technic Hub",
    data: bytes = TECHNIC_HUB_DATA,
    service_uuids=(LWP3_HUB_SERVICE_UUID,),
):
    device = MagicMock(address=address)
    device.name = name
    adv = MagicMock(
        service_uuids=list(service_uuids),
        manufacturer_data={LEGO_CID: data},
        local_name=name,
    )
    return device, adv


class FakeScanner:
    """Stands in for ``BleakScanner`` and reports a fixed set of devices."""

    advertisements = []

    def __init__(self, detection_callback, service_uuids):
        self.detection_callback = detection_callback
        self.service_uuids = service_uuids

    async def __aenter__(self):
        for device, adv in self.advertisements:
            self.detection_callback(device, adv)
        return self

    async def __aexit__(self, *exc_info):
        pass


class TestAdvertisementData:
    def test_fields(self):
        data = AdvertisementData(TECHNIC_HUB_DATA)

        assert not data.is_button_pressed
        assert data.hub_kind is HubKind.TECHNIC
        assert data.hub_capabilities == Capabilities.PERIPHERAL | Capabilities.IO
        assert data.last_network is LastNetwork.NONE
        assert data.status == Status.PERIPHERAL | Status.REQUEST_CONNECT
        assert data.option == 0
        assert bytes(data) == TECHNIC_HUB_DATA

    def test_last_network_id(self):
        data = AdvertisementData(b"\x01\x40\x06\x07\x41\x00")

        assert data.is_button_pressed
        assert data.hub_kind is HubKind.BOOST
        assert data.last_network == 7

    @pytest.mark.parametrize("length", [0, 5, 7])
    def test_bad_length(self, length: int):
        with pytest.raises(ValueError):
            AdvertisementData(bytes(length))


class TestIdentifyHub:
    def test_technic_hub(self):
        device, adv = _advertisement()
        hub = identify_hub(device, adv)

        assert hub == DiscoveredHub(
            HubKind.TECHNIC, "90:84:2B:60:3C:B8", "Technic Hub", device
        )

    def test_not_lwp3(self):
        device, adv = _advertisement(service_uuids=[])
        assert identify_hub(device, adv) is None

    def test_no_manufacturer_data(self):
        device, adv = _advertisement()
        adv.manufacturer_data = {}
        assert identify_hub(device, adv) is None

    def test_bad_manufacturer_data(self):
        device, adv = _advertisement(data=b"\x00\x80")
        assert identify_hub(device, adv) is None

    def test_unknown_hub_kind(self):
        device, adv = _advertisement(data=b"\x00\x99\x06\x00\x41\x00")
        assert identify_hub(device, adv) is None

    def test_name_from_device(self):
        device, adv = _advertisement()
        adv.local_name = None
        device.name = "Move Hub"
        assert identify_hub(device, adv).name == "Move Hub"


class TestHubFilter:
    def test_empty_matches_all(self):
        hub = identify_hub(*_advertisement())
        assert HubFilter().matches(hub)

    def test_name(self):
        hub = identify_hub(*_advertisement())
        assert HubFilter(name="technic hub").matches(hub)
        assert not HubFilter(name="Technic").matches(hub)

    def test_address(self):
        hub = identify_hub(*_advertisement())
        assert HubFilter(address="90:84:2b:60:3c:b8").matches(hub)
        assert not HubFilter(address="00:00:00:00:00:00").matches(hub)

    def test_kind(self):
        hub = identify_hub(*_advertisement())
        assert HubFilter(kind=HubKind.TECHNIC).matches(hub)
        assert not HubFilter(name="Technic Hub", kind=HubKind.BOOST).matches(hub)


class TestFindHub:
    @pytest.mark.asyncio
    async def test_found(self):
        device, adv = _advertisement()

        async def find_device_by_filter(match, timeout, service_uuids):
            assert service_uuids == [LWP3_HUB_SERVICE_UUID]
            assert match(device, adv)
            return device

        with patch(
            "poweredup.ble.BleakScanner.find_device_by_filter",
            side_effect=find_device_by_filter,
        ):
            hub = await find_hub(HubFilter(name="Technic Hub"))

        assert hub.kind is HubKind.TECHNIC
        assert hub.device is device

    @pytest.mark.asyncio
    async def test_filtered_out(self):
        device, adv = _advertisement()

        async def find_device_by_filter(match, timeout, service_uuids):
            assert not match(device, adv)
            return None

        with patch(
            "poweredup.ble.BleakScanner.find_device_by_filter",
            side_effect=find_device_by_filter,
        ):
            with pytest.raises(asyncio.TimeoutError):
                await find_hub(HubFilter(name="Move Hub"), timeout=0.1)


class TestFindHubs:
    @pytest.mark.asyncio
    async def test_scan(self):
        FakeScanner.advertisements = [
            _advertisement("00:00:00:00:00:01", "Hub 1"),
            _advertisement("00:00:00:00:00:02", "Hub 2"),
            # advertised again
            _advertisement("00:00:00:00:00:01", "Hub 1"),
            _advertisement("00:00:00:00:00:03", "Other", service_uuids=[]),
        ]

        with patch("poweredup.ble.BleakScanner", FakeScanner):
            hubs = await find_hubs(timeout=0)

        assert [h.name for h in hubs] == ["Hub 1", "Hub 2"]

    @pytest.mark.asyncio
    async def test_scan_with_filter(self):
        FakeScanner.advertisements = [
            _advertisement("00:00:00:00:00:01", "Hub 1"),
            _advertisement("00:00:00:00:00:02", "Hub 2"),
        ]

        with patch("poweredup.ble.BleakScanner", FakeScanner):
            hubs = await find_hubs(HubFilter(name="hub 2"), timeout=0)

        assert [h.address for h in hubs] == ["00:00:00:00:00:02"]


class TestBleakTransport:
    @pytest.mark.asyncio
    async def test_connect(self):
        device, _ = _advertisement()
        client = MagicMock()
        client.connect = AsyncMock()
        client.start_notify = AsyncMock()
        client.write_gatt_char = AsyncMock()
        client.disconnect = AsyncMock()

        with patch("poweredup.ble.BleakClient", return_value=client) as client_class:
            transport = BleakTransport(device)

        assert client_class.call_args.args == (device,)
        disconnected_callback = client_class.call_args.kwargs["disconnected_callback"]

        await transport.connect()

        assert transport.connection_state_observable.value == (
            ConnectionState.CONNECTED
        )
        client.connect.assert_awaited_once()

        uuid, handle_notify = client.start_notify.call_args.args
        assert uuid == LWP3_HUB_CHARACTERISTIC_UUID

        await transport.write(b"\x04\x00\x02\x01")
        client.write_gatt_char.assert_awaited_once_with(
            LWP3_HUB_CHARACTERISTIC_UUID, b"\x04\x00\x02\x01", False
        )

        handle_notify(None, bytearray(b"\x04\x00\x02\x31"))
        disconnected_callback(client)

        assert not transport.connected
        assert [e async for e in transport.events()] == [b"\x04\x00\x02\x31"]

    @pytest.mark.asyncio
    async def test_connect_hub(self):
        device, adv = _advertisement()
        hub = identify_hub(device, adv)

        with patch("poweredup.ble.BleakTransport") as transport_class:
            transport_class.return_value.connect = AsyncMock()

            with patch("poweredup.ble.Hub") as hub_class:
                hub_class.return_value.connect = AsyncMock()
                session = await connect(hub, HubConfig(request_properties=False))

        transport_class.assert_called_once_with(device)
        hub_class.assert_called_once_with(
            transport_class.return_value, HubConfig(request_properties=False)
        )
        session.connect.assert_awaited_once()
