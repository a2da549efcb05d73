import asyncio

import pytest

from poweredup.errors import DeviceNotFoundError
from poweredup.lwp3.bytecodes import (
    DataFormat,
    IODeviceKind,
    IODeviceMapping,
    ModeCapabilities,
    Version,
)
from poweredup.lwp3.messages import (
    PortModeInfoCapabilitiesMessage,
    PortModeInfoFormatMessage,
    PortModeInfoMappingMessage,
    PortModeInfoMotorBiasMessage,
    PortModeInfoNameMessage,
    PortModeInfoPercentMessage,
    PortModeInfoRawMessage,
    PortModeInfoRequestMessage,
    PortModeInfoSIMessage,
    PortModeInfoSymbolMessage,
)
from poweredup.registry import (
    InputFormat,
    IODeviceRegistry,
    ModeInfo,
    ValueFormat,
    VirtualPortRecord,
)

V1 = Version(0x10000000)


def _registry_with_motor(port: int = 0) -> IODeviceRegistry:
    registry = IODeviceRegistry()
    registry.attach(port, IODeviceKind.TECHNIC_LARGE_MOTOR, V1, V1)
    return registry


def _describe_mode(registry: IODeviceRegistry, port: int, mode: int, name: str):
    registry.set_mode_info_reply(PortModeInfoNameMessage(port, mode, name))
    registry.set_mode_info_reply(
        PortModeInfoFormatMessage(port, mode, 1, DataFormat.DATA32, 4, 0)
    )


def _position_mode_replies(port: int, mode: int) -> list:
    """Every kind of mode information reply for a motor position mode."""
    return [
        PortModeInfoNameMessage(port, mode, "POS"),
        PortModeInfoRawMessage(port, mode, -360.0, 360.0),
        PortModeInfoPercentMessage(port, mode, -100.0, 100.0),
        PortModeInfoSIMessage(port, mode, -360.0, 360.0),
        PortModeInfoSymbolMessage(port, mode, "DEG"),
        PortModeInfoMappingMessage(
            port, mode, IODeviceMapping.RELATIVE, IODeviceMapping.RELATIVE
        ),
        PortModeInfoMotorBiasMessage(port, mode, 0),
        PortModeInfoCapabilitiesMessage(port, mode, 0),
        PortModeInfoFormatMessage(port, mode, 1, DataFormat.DATA32, 4, 0),
    ]


class TestValueFormat:
    def test_struct_format(self):
        fmt = ValueFormat(3, DataFormat.DATA16)
        assert fmt.struct_format == "<3h"
        assert fmt.size == 6


class TestIODeviceRegistry:
    def test_attach(self):
        registry = _registry_with_motor(1)

        assert 1 in registry
        assert len(registry) == 1

        record = registry.get(1)
        assert record.kind is IODeviceKind.TECHNIC_LARGE_MOTOR
        assert record.hw_ver == V1
        assert record.num_modes is None
        assert not record.ready

    def test_reattach_replaces_record(self):
        registry = _registry_with_motor()
        _describe_mode(registry, 0, 0, "POWER")

        registry.attach(0, IODeviceKind.SPIKE_LARGE_MOTOR, V1, V1)

        record = registry.get(0)
        assert record.kind is IODeviceKind.SPIKE_LARGE_MOTOR
        assert record.modes == {}

    def test_detach(self):
        registry = _registry_with_motor()
        record = registry.get(0)

        assert registry.detach(0) is record
        assert 0 not in registry
        assert registry.detach(0) is None

    def test_get_missing(self):
        with pytest.raises(DeviceNotFoundError):
            IODeviceRegistry().get(0)

    def test_iterates_in_port_order(self):
        registry = IODeviceRegistry()
        registry.attach(50, IODeviceKind.HUB_STATUS_LIGHT, V1, V1)
        registry.attach(1, IODeviceKind.TECHNIC_XL_MOTOR, V1, V1)
        registry.attach(0, IODeviceKind.TECHNIC_XL_MOTOR, V1, V1)

        assert [r.port for r in registry] == [0, 1, 50]

    def test_find(self):
        registry = IODeviceRegistry()
        registry.attach(3, IODeviceKind.TECHNIC_XL_MOTOR, V1, V1)
        registry.attach(1, IODeviceKind.TECHNIC_XL_MOTOR, V1, V1)
        registry.attach(0, IODeviceKind.TECHNIC_LARGE_MOTOR, V1, V1)

        assert registry.find(IODeviceKind.TECHNIC_XL_MOTOR).port == 1
        motors = registry.find_all(IODeviceKind.TECHNIC_XL_MOTOR)
        assert [r.port for r in motors] == [1, 3]

        with pytest.raises(DeviceNotFoundError):
            registry.find(IODeviceKind.HUB_STATUS_LIGHT)

    def test_virtual_port(self):
        registry = IODeviceRegistry()
        registry.attach(0, IODeviceKind.TECHNIC_LARGE_MOTOR, V1, V1)
        registry.attach(1, IODeviceKind.TECHNIC_LARGE_MOTOR, V1, V1)

        record = registry.attach_virtual(16, IODeviceKind.TECHNIC_LARGE_MOTOR, 0, 1)

        assert isinstance(record, VirtualPortRecord)
        assert record.hw_ver is None
        assert len(registry) == 3
        assert registry.components(16) == (registry.get(0), registry.get(1))

    def test_components_of_physical_port(self):
        registry = _registry_with_motor()

        with pytest.raises(DeviceNotFoundError):
            registry.components(0)

    def test_components_after_detach(self):
        registry = _registry_with_motor(0)
        registry.attach(1, IODeviceKind.TECHNIC_LARGE_MOTOR, V1, V1)
        registry.attach_virtual(16, IODeviceKind.TECHNIC_LARGE_MOTOR, 0, 1)
        registry.detach(1)

        with pytest.raises(DeviceNotFoundError):
            registry.components(16)

    def test_detach_removes_virtual_port(self):
        registry = _registry_with_motor(0)
        registry.attach(1, IODeviceKind.TECHNIC_LARGE_MOTOR, V1, V1)
        registry.attach_virtual(16, IODeviceKind.TECHNIC_LARGE_MOTOR, 0, 1)

        record = registry.detach(0)

        assert record.port == 0
        assert 16 not in registry
        assert [r.port for r in registry] == [1]

    def test_detach_virtual_port_keeps_components(self):
        registry = _registry_with_motor(0)
        registry.attach(1, IODeviceKind.TECHNIC_LARGE_MOTOR, V1, V1)
        registry.attach_virtual(16, IODeviceKind.TECHNIC_LARGE_MOTOR, 0, 1)

        registry.detach(16)

        assert [r.port for r in registry] == [0, 1]

    def test_set_mode_info(self):
        registry = _registry_with_motor()
        caps = ModeCapabilities.INPUT | ModeCapabilities.OUTPUT

        record = registry.set_mode_info(0, caps, 2, [0, 1], [0])

        assert record.capabilities == caps
        assert record.num_modes == 2
        assert record.input_modes == [0, 1]
        assert record.output_modes == [0]

    def test_set_combos(self):
        registry = _registry_with_motor()
        record = registry.set_combos(0, [[1, 2, 3], [0]])
        assert record.combos == [[1, 2, 3], [0]]

    def test_set_input_format(self):
        registry = _registry_with_motor()
        record = registry.set_input_format(0, 2, 5, True)
        assert record.input_format == InputFormat(2, 5, True)

    def test_mode_info_replies(self):
        registry = _registry_with_motor()

        for msg in _position_mode_replies(0, 2):
            registry.set_mode_info_reply(msg)

        info = registry.get(0).mode(2)
        assert info.name == "POS"
        assert info.raw == (-360.0, 360.0)
        assert info.pct == (-100.0, 100.0)
        assert info.si == (-360.0, 360.0)
        assert info.symbol == "DEG"
        assert info.input_mapping == IODeviceMapping.RELATIVE
        assert info.motor_bias == 0
        assert info.capabilities == 0
        assert info.value_format == ValueFormat(1, DataFormat.DATA32, 4, 0)

    def test_reply_order_does_not_matter(self):
        replies = _position_mode_replies(0, 1) + _position_mode_replies(0, 2)
        forward = _registry_with_motor()
        backward = _registry_with_motor()

        for msg in replies:
            forward.set_mode_info_reply(msg)

        for msg in reversed(replies):
            backward.set_mode_info_reply(msg)

        assert forward.get(0).modes == backward.get(0).modes
        assert backward.get(0).mode(2).value_format == ValueFormat(
            1, DataFormat.DATA32, 4, 0
        )

    def test_replies_are_idempotent(self):
        registry = _registry_with_motor()
        msg = PortModeInfoSymbolMessage(0, 1, "PCT")

        registry.set_mode_info_reply(msg)
        once = registry.get(0).mode(1)
        snapshot = ModeInfo(1)
        snapshot.symbol = "PCT"

        registry.set_mode_info_reply(msg)

        assert registry.get(0).mode(1) == snapshot
        assert registry.get(0).mode(1) is once

    def test_unsupported_reply(self):
        registry = _registry_with_motor()

        with pytest.raises(TypeError):
            registry.set_mode_info_reply(PortModeInfoRequestMessage(0, 0, 0))

    def test_reply_for_missing_port(self):
        with pytest.raises(DeviceNotFoundError):
            IODeviceRegistry().set_mode_info_reply(
                PortModeInfoNameMessage(0, 0, "POWER")
            )


class TestPortRecord:
    def test_ready_in_any_order(self):
        registry = _registry_with_motor()
        record = registry.get(0)

        _describe_mode(registry, 0, 1, "SPEED")
        assert not record.ready

        registry.set_mode_info(0, ModeCapabilities.INPUT, 2, [0, 1], [])
        assert not record.ready

        registry.set_mode_info_reply(PortModeInfoNameMessage(0, 0, "POWER"))
        assert not record.ready

        registry.set_mode_info_reply(
            PortModeInfoFormatMessage(0, 0, 1, DataFormat.DATA8, 4, 0)
        )
        assert record.ready

    def test_ready_without_modes(self):
        registry = _registry_with_motor()
        registry.set_mode_info(0, ModeCapabilities(0), 0, [], [])
        assert registry.get(0).ready

    @pytest.mark.asyncio
    async def test_wait_ready(self):
        registry = _registry_with_motor()
        record = registry.get(0)

        task = asyncio.create_task(record.wait_ready())
        await asyncio.sleep(0)
        assert not task.done()

        registry.set_mode_info(0, ModeCapabilities.INPUT, 1, [0], [])
        _describe_mode(registry, 0, 0, "POWER")

        await asyncio.wait_for(task, 1)

    def test_mode_lookup(self):
        registry = _registry_with_motor()
        _describe_mode(registry, 0, 0, "POWER")
        _describe_mode(registry, 0, 2, "POS")
        record = registry.get(0)

        assert record.mode_by_name("pos") == 2
        assert record.value_format(0).format is DataFormat.DATA32

        with pytest.raises(DeviceNotFoundError):
            record.mode_by_name("APOS")

        with pytest.raises(DeviceNotFoundError):
            record.mode(1)

    def test_value_format_not_received(self):
        registry = _registry_with_motor()
        registry.set_mode_info_reply(PortModeInfoNameMessage(0, 0, "POWER"))

        with pytest.raises(DeviceNotFoundError):
            registry.get(0).value_format(0)

    def test_repr(self):
        record = _registry_with_motor(1).get(1)
        assert repr(record) == (
            "PortRecord(1, <IODeviceKind.TECHNIC_LARGE_MOTOR: 46>)"
        )
