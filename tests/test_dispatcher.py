import logging
from unittest.mock import MagicMock

import pytest

from poweredup.dispatcher import MODE_INFO_REQUEST_ORDER, NotificationDispatcher
from poweredup.hub import Hub
from poweredup.lwp3.bytecodes import (
    AlertKind,
    AlertStatus,
    DataFormat,
    ErrorCode,
    Feedback,
    HubAction,
    HubKind,
    HubProperty,
    HwNetCmd,
    InfoKind,
    IODeviceKind,
    MessageKind,
    ModeCapabilities,
    ModeInfoKind,
    Version,
)
from poweredup.lwp3.messages import (
    ErrorMessage,
    HubActionMessage,
    HubAlertUpdateMessage,
    HubIOAttachedMessage,
    HubIOAttachedVirtualMessage,
    HubIODetachedMessage,
    HubPropertyUpdate,
    HwNetCmdMessage,
    PortInfoCombosMessage,
    PortInfoModeInfoMessage,
    PortInfoRequestMessage,
    PortInputFormatComboMessage,
    PortInputFormatMessage,
    PortModeInfoFormatMessage,
    PortModeInfoNameMessage,
    PortModeInfoRequestMessage,
    PortOutputCommandFeedbackMessage,
    PortValueComboMessage,
    PortValueMessage,
    parse_message,
)
from poweredup.registry import VirtualPortRecord
from poweredup.transport import ConnectionState

V1 = Version(0x10000000)


@pytest.fixture
def dispatcher(hub: Hub, transport) -> NotificationDispatcher:
    # skip the connection handshake
    transport.connection_state_observable.on_next(ConnectionState.CONNECTED)
    return NotificationDispatcher(hub)


def _sent(transport):
    return [parse_message(data) for data in transport.writes]


class TestNegotiation:
    @pytest.mark.asyncio
    async def test_attach_requests_port_info(
        self, dispatcher: NotificationDispatcher, hub: Hub, transport
    ):
        await dispatcher.handle(
            bytes(HubIOAttachedMessage(1, IODeviceKind.TECHNIC_LARGE_MOTOR, V1, V1))
        )

        assert 1 in hub.devices
        assert transport.writes == [b"\x05\x00\x21\x01\x01", b"\x05\x00\x21\x01\x02"]

    @pytest.mark.asyncio
    async def test_mode_info_requests_each_mode(
        self, dispatcher: NotificationDispatcher, hub: Hub, transport
    ):
        await dispatcher.handle(
            bytes(HubIOAttachedMessage(1, IODeviceKind.TECHNIC_LARGE_MOTOR, V1, V1))
        )
        transport.writes.clear()

        await dispatcher.handle(
            bytes(
                PortInfoModeInfoMessage(
                    1,
                    ModeCapabilities.INPUT | ModeCapabilities.OUTPUT,
                    3,
                    [0, 1, 2],
                    [0],
                )
            )
        )

        assert hub.devices.get(1).num_modes == 3
        assert _sent(transport) == [
            PortModeInfoRequestMessage(1, mode, info_kind)
            for mode in range(3)
            for info_kind in MODE_INFO_REQUEST_ORDER
        ]
        assert len(transport.writes) == 24
        assert transport.writes[0] == b"\x06\x00\x22\x01\x00\x00"
        assert transport.writes[7] == b"\x06\x00\x22\x01\x00\x80"

    def test_request_order(self):
        assert MODE_INFO_REQUEST_ORDER[0] is ModeInfoKind.NAME
        assert MODE_INFO_REQUEST_ORDER[-1] is ModeInfoKind.FORMAT
        assert ModeInfoKind.CAPABILITIES not in MODE_INFO_REQUEST_ORDER

    @pytest.mark.asyncio
    async def test_device_becomes_ready(
        self, dispatcher: NotificationDispatcher, hub: Hub
    ):
        for msg in [
            HubIOAttachedMessage(1, IODeviceKind.TECHNIC_LARGE_MOTOR, V1, V1),
            PortInfoModeInfoMessage(1, ModeCapabilities.INPUT, 1, [0], []),
            PortInfoCombosMessage(1, [[0]]),
            PortModeInfoNameMessage(1, 0, "POWER"),
        ]:
            await dispatcher.handle(bytes(msg))

        record = hub.devices.get(1)
        assert record.combos == [[0]]
        assert not record.ready

        await dispatcher.handle(
            bytes(PortModeInfoFormatMessage(1, 0, 1, DataFormat.DATA8, 4, 0))
        )

        assert record.ready

    @pytest.mark.asyncio
    async def test_virtual_attach_keeps_physical_ports(
        self, dispatcher: NotificationDispatcher, hub: Hub, transport
    ):
        for port in 0, 1:
            await dispatcher.handle(
                bytes(
                    HubIOAttachedMessage(
                        port, IODeviceKind.TECHNIC_LARGE_MOTOR, V1, V1
                    )
                )
            )

        transport.writes.clear()

        await dispatcher.handle(
            bytes(
                HubIOAttachedVirtualMessage(
                    16, IODeviceKind.TECHNIC_LARGE_MOTOR, 0, 1
                )
            )
        )

        assert isinstance(hub.devices.get(16), VirtualPortRecord)
        assert [r.port for r in hub.devices] == [0, 1, 16]
        assert _sent(transport) == [
            PortInfoRequestMessage(16, InfoKind.MODE_INFO),
            PortInfoRequestMessage(16, InfoKind.COMBOS),
        ]

    @pytest.mark.asyncio
    async def test_detach(self, dispatcher: NotificationDispatcher, hub: Hub):
        await dispatcher.handle(
            bytes(HubIOAttachedMessage(1, IODeviceKind.TECHNIC_LARGE_MOTOR, V1, V1))
        )
        await dispatcher.handle(bytes(HubIODetachedMessage(1)))

        assert 1 not in hub.devices

    @pytest.mark.asyncio
    async def test_detach_component_of_virtual_port(
        self, dispatcher: NotificationDispatcher, hub: Hub
    ):
        for port in (0, 1):
            await dispatcher.handle(
                bytes(
                    HubIOAttachedMessage(port, IODeviceKind.TECHNIC_LARGE_MOTOR, V1, V1)
                )
            )
        await dispatcher.handle(
            bytes(
                HubIOAttachedVirtualMessage(
                    16, IODeviceKind.TECHNIC_LARGE_MOTOR, 0, 1
                )
            )
        )
        await dispatcher.handle(bytes(HubIODetachedMessage(1)))

        assert [r.port for r in hub.devices] == [0]

    @pytest.mark.asyncio
    async def test_detach_empty_port(
        self, dispatcher: NotificationDispatcher, hub: Hub
    ):
        await dispatcher.handle(bytes(HubIODetachedMessage(2)))
        assert len(hub.devices) == 0

    @pytest.mark.asyncio
    async def test_late_reply_is_discarded(
        self, dispatcher: NotificationDispatcher, hub: Hub, transport
    ):
        await dispatcher.handle(
            bytes(PortInfoModeInfoMessage(1, ModeCapabilities.INPUT, 2, [0, 1], []))
        )
        await dispatcher.handle(bytes(PortModeInfoNameMessage(1, 0, "POWER")))

        assert len(hub.devices) == 0
        assert transport.writes == []

    @pytest.mark.asyncio
    async def test_input_format_ack(self, dispatcher: NotificationDispatcher, hub: Hub):
        await dispatcher.handle(
            bytes(HubIOAttachedMessage(1, IODeviceKind.TECHNIC_LARGE_MOTOR, V1, V1))
        )
        await dispatcher.handle(bytes(PortInputFormatMessage(1, 2, 1, True)))
        await dispatcher.handle(bytes(PortInputFormatComboMessage(1, 0, True, [0])))

        assert hub.devices.get(1).input_format == (2, 1, True)


class TestRouting:
    @pytest.mark.asyncio
    async def test_port_value(self, dispatcher: NotificationDispatcher, hub: Hub):
        receiver = hub.channels.port_value.subscribe()
        msg = PortValueMessage(1, b"\x2a\x00\x00\x00")

        await dispatcher.handle(bytes(msg))

        assert await receiver.get() == msg

    @pytest.mark.asyncio
    async def test_port_value_combo(self, dispatcher: NotificationDispatcher, hub: Hub):
        receiver = hub.channels.port_value_combo.subscribe()
        msg = PortValueComboMessage(1, [0, 1], b"\x01\x02")

        await dispatcher.handle(bytes(msg))

        assert await receiver.get() == msg

    @pytest.mark.asyncio
    async def test_network_command(self, dispatcher: NotificationDispatcher, hub: Hub):
        receiver = hub.channels.network_command.subscribe()
        msg = HwNetCmdMessage(HwNetCmd.FAMILY, b"\x01")

        await dispatcher.handle(bytes(msg))

        assert await receiver.get() == msg

    @pytest.mark.asyncio
    async def test_hub_notifications(
        self, dispatcher: NotificationDispatcher, hub: Hub
    ):
        receiver = hub.channels.hub_notification.subscribe()
        messages = [
            HubActionMessage(HubAction.WILL_DISCONNECT),
            HubAlertUpdateMessage(AlertKind.LOW_VOLTAGE, AlertStatus.ALERT),
            ErrorMessage(MessageKind.PORT_OUTPUT_CMD, ErrorCode.INVALID),
        ]

        for msg in messages:
            await dispatcher.handle(bytes(msg))

        assert [await receiver.get() for _ in messages] == messages

    @pytest.mark.asyncio
    async def test_property_update(self, dispatcher: NotificationDispatcher, hub: Hub):
        receiver = hub.channels.hub_notification.subscribe()

        await dispatcher.handle(b"\x06\x00\x01\x0b\x06\x80")
        await dispatcher.handle(b"\x06\x00\x01\x06\x06\x55")

        assert hub.properties.hub_kind is HubKind.TECHNIC
        assert hub.properties.battery_level == 0x55
        assert (await receiver.get()).prop is HubProperty.HUB_KIND

    @pytest.mark.asyncio
    async def test_other_property_is_published(
        self, dispatcher: NotificationDispatcher, hub: Hub
    ):
        receiver = hub.channels.hub_notification.subscribe()
        msg = HubPropertyUpdate(HubProperty.BUTTON, True)

        await dispatcher.handle(bytes(msg))

        assert await receiver.get() == msg

    @pytest.mark.asyncio
    async def test_feedback_is_not_published(
        self, dispatcher: NotificationDispatcher, hub: Hub
    ):
        receivers = [c.subscribe() for c in hub.channels]

        await dispatcher.handle(
            bytes(PortOutputCommandFeedbackMessage([(1, Feedback.IDLE)]))
        )

        assert all(r.qsize() == 0 for r in receivers)

    @pytest.mark.asyncio
    async def test_order_is_kept(self, dispatcher: NotificationDispatcher, hub: Hub):
        receiver = hub.channels.port_value.subscribe()

        for x in range(10):
            await dispatcher.handle(bytes(PortValueMessage(1, bytes([x]))))

        assert [(await receiver.get()).data[0] for _ in range(10)] == list(range(10))


class TestErrors:
    @pytest.mark.asyncio
    async def test_malformed_message_is_dropped(
        self,
        dispatcher: NotificationDispatcher,
        hub: Hub,
        caplog: pytest.LogCaptureFixture,
    ):
        receiver = hub.channels.port_value.subscribe()

        with caplog.at_level(logging.WARNING):
            await dispatcher.handle(b"\x05\x00\x45")
            await dispatcher.handle(b"\x03\x00\xff")
            await dispatcher.handle(bytes(PortValueMessage(1, b"\x01")))

        assert caplog.text.count("dropping malformed message") == 2
        assert (await receiver.get()).data == b"\x01"

    @pytest.mark.asyncio
    async def test_write_after_disconnect_is_logged(
        self,
        dispatcher: NotificationDispatcher,
        hub: Hub,
        transport,
        caplog: pytest.LogCaptureFixture,
    ):
        await transport.disconnect()

        with caplog.at_level(logging.WARNING):
            await dispatcher.handle(
                bytes(
                    HubIOAttachedMessage(1, IODeviceKind.TECHNIC_LARGE_MOTOR, V1, V1)
                )
            )

        assert 1 in hub.devices
        assert "could not finish handling" in caplog.text

    @pytest.mark.asyncio
    async def test_unexpected_error_is_logged(
        self,
        dispatcher: NotificationDispatcher,
        hub: Hub,
        caplog: pytest.LogCaptureFixture,
    ):
        hub.channels.port_value.publish = MagicMock(side_effect=RuntimeError("broken"))

        with caplog.at_level(logging.ERROR):
            await dispatcher.handle(bytes(PortValueMessage(1, b"\x01")))

        assert "unexpected error" in caplog.text

        # still works
        receiver = hub.channels.network_command.subscribe()
        await dispatcher.handle(bytes(HwNetCmdMessage(HwNetCmd.GET_FAMILY)))
        assert receiver.qsize() == 1


class TestRun:
    @pytest.mark.asyncio
    async def test_run_until_disconnect(
        self, dispatcher: NotificationDispatcher, hub: Hub, transport
    ):
        receiver = hub.channels.port_value.subscribe()

        transport.feed(PortValueMessage(1, b"\x01"))
        transport.feed(b"\x00")
        transport.feed(PortValueMessage(1, b"\x02"))
        transport.close()

        await dispatcher.run()

        assert (await receiver.get()).data == b"\x01"
        assert (await receiver.get()).data == b"\x02"
