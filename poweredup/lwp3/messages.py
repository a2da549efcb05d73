# SPDX-License-Identifier: MIT
# Copyright (c) 2023 The Pybricks Authors
# Some portions of the documentation:
# Copyright (c) 2018 LEGO System A/S

"""
Encoding and decoding of `LWP3 protocol`_ messages.

Every message is an immutable value object. ``bytes(msg)`` produces the
complete frame (common header included) and :func:`parse_message` turns a
received frame back into a message object::

    [length (1 or 2 bytes)] [hub id = 0x00] [message kind] [payload ...]

Two messages compare equal when they are of the same class and encode to the
same bytes.

.. _LWP3 protocol: https://lego.github.io/lego-ble-wireless-protocol-docs/
"""

import abc
import struct
from enum import IntEnum
from typing import Any, Dict, Iterable, List, NamedTuple, Optional, Tuple, Type, Union

from ..errors import MalformedMessageError
from .bytecodes import (
    MAX_NAME_SIZE,
    AlertKind,
    AlertOperation,
    AlertStatus,
    BatteryKind,
    BluetoothAddress,
    ComboSetupCommand,
    DataFormat,
    EndInfo,
    EndState,
    ErrorCode,
    Feedback,
    HubAction,
    HubKind,
    HubProperty,
    HubPropertyOperation,
    HwNetCmd,
    InfoKind,
    IODeviceKind,
    IODeviceMapping,
    IOEvent,
    LastNetwork,
    LWPVersion,
    MessageKind,
    ModeCapabilities,
    ModeInfoKind,
    PortID,
    PortOutputCommand,
    Profile,
    StartInfo,
    Version,
    VirtualPortSetupCommand,
)

HUB_ID = 0x00
"""The hub id byte of the common header. Always 0 for a directly connected hub."""

MAX_MESSAGE_SIZE = 0x7F + (0xFF << 7)
"""Largest frame that the 2-byte length encoding can describe."""


def _encode_length(size: int) -> bytes:
    """
    Encodes the length prefix for a frame whose remainder is ``size`` bytes.
    """
    if size + 1 <= 0x7F:
        return bytes([size + 1])

    total = size + 2

    if total > MAX_MESSAGE_SIZE:
        raise ValueError("message is too long")

    return bytes([(total & 0x7F) | 0x80, total >> 7])


def _bits_to_list(flags: int, width: int = 16) -> List[int]:
    return [n for n in range(width) if flags & (1 << n)]


def _list_to_bits(items: Iterable[int]) -> int:
    flags = 0
    for n in items:
        flags |= 1 << n
    return flags


def _check_range(name: str, value: int, low: int, high: int) -> None:
    if not low <= value <= high:
        raise ValueError(f"{name} must be in range {low} to {high}, got {value}")


def _check_mode(mode: int) -> int:
    _check_range("mode", mode, 0, 15)
    return mode


class AbstractMessage(abc.ABC):
    """Common base class for all messages."""

    kind: MessageKind
    """The kind of message (set by each subclass)."""

    _fields: Tuple[str, ...] = ()
    """Attribute names shown by ``repr()``, in constructor order."""

    @abc.abstractmethod
    def _encode_payload(self) -> bytes:
        """Returns the bytes that follow the message kind byte."""

    @classmethod
    @abc.abstractmethod
    def _decode_payload(cls, payload: bytes) -> "AbstractMessage":
        """
        Creates a message from the bytes that follow the message kind byte.

        May raise any of the errors that :func:`parse_message` converts into
        :class:`MalformedMessageError`.
        """

    def __bytes__(self) -> bytes:
        body = bytes([HUB_ID, self.kind]) + self._encode_payload()
        return _encode_length(len(body)) + body

    @property
    def length(self) -> int:
        """Gets the size of the encoded message in bytes."""
        return len(bytes(self))

    def __eq__(self, other: object) -> bool:
        if type(other) is not type(self):
            return NotImplemented
        return bytes(self) == bytes(other)

    def __hash__(self) -> int:
        return hash((type(self), bytes(self)))

    def __repr__(self) -> str:
        args = ", ".join(repr(getattr(self, f)) for f in self._fields)
        return f"{self.__class__.__name__}({args})"


###############################################################################
# Hub property messages
###############################################################################


class _HubPropertyType(NamedTuple):
    type: type
    fmt: str
    max_size: Optional[int] = None


# value encoding for each property
_HUB_PROPERTY_TYPE_MAP = {
    HubProperty.NAME: _HubPropertyType(str, "s", MAX_NAME_SIZE),
    HubProperty.BUTTON: _HubPropertyType(bool, "?"),
    HubProperty.FW_VERSION: _HubPropertyType(Version, "I"),
    HubProperty.HW_VERSION: _HubPropertyType(Version, "I"),
    HubProperty.RSSI: _HubPropertyType(int, "b"),
    HubProperty.BATTERY_VOLTAGE: _HubPropertyType(int, "B"),
    HubProperty.BATTERY_KIND: _HubPropertyType(BatteryKind, "B"),
    HubProperty.MFG_NAME: _HubPropertyType(str, "s", 15),
    HubProperty.RADIO_FW_VERSION: _HubPropertyType(str, "s", 15),
    HubProperty.LWP_VERSION: _HubPropertyType(LWPVersion, "H"),
    HubProperty.HUB_KIND: _HubPropertyType(HubKind, "B"),
    HubProperty.HW_NET_ID: _HubPropertyType(LastNetwork, "B"),
    HubProperty.BDADDR: _HubPropertyType(BluetoothAddress, "6s"),
    HubProperty.BOOTLOADER_BDADDR: _HubPropertyType(BluetoothAddress, "6s"),
    HubProperty.HW_NET_FAMILY: _HubPropertyType(int, "B"),
    HubProperty.VOLUME: _HubPropertyType(int, "B"),
}

_Op = HubPropertyOperation
_READ_ONLY = frozenset({_Op.REQUEST_UPDATE, _Op.UPDATE})
_UPDATABLE = _READ_ONLY | {_Op.ENABLE_UPDATES, _Op.DISABLE_UPDATES}
_ALL_OPS = frozenset(_Op)

# operations allowed on each property
_HUB_PROPERTY_OPS_MAP = {
    HubProperty.NAME: _ALL_OPS,
    HubProperty.BUTTON: _UPDATABLE,
    HubProperty.FW_VERSION: _READ_ONLY,
    HubProperty.HW_VERSION: _READ_ONLY,
    HubProperty.RSSI: _UPDATABLE,
    HubProperty.BATTERY_VOLTAGE: _UPDATABLE,
    HubProperty.BATTERY_KIND: _READ_ONLY,
    HubProperty.MFG_NAME: _READ_ONLY,
    HubProperty.RADIO_FW_VERSION: _READ_ONLY,
    HubProperty.LWP_VERSION: _READ_ONLY,
    HubProperty.HUB_KIND: _READ_ONLY,
    HubProperty.HW_NET_ID: _READ_ONLY | {_Op.SET, _Op.RESET},
    HubProperty.BDADDR: _READ_ONLY,
    HubProperty.BOOTLOADER_BDADDR: _READ_ONLY,
    HubProperty.HW_NET_FAMILY: _READ_ONLY | {_Op.SET},
    HubProperty.VOLUME: _ALL_OPS,
}

del _Op


class AbstractHubPropertyMessage(AbstractMessage):
    """Common base class for hub property messages."""

    kind = MessageKind.HUB_PROPERTY
    op: HubPropertyOperation
    _fields = ("prop",)

    @abc.abstractmethod
    def __init__(self, prop: HubProperty) -> None:
        """
        Args:
            prop: The property.

        Raises:
            TypeError: ``prop`` is not a :class:`.bytecodes.HubProperty`.
            ValueError: The operation of this message does not apply to ``prop``.
        """
        if not isinstance(prop, HubProperty):
            raise TypeError("prop must be HubProperty")

        if self.op not in _HUB_PROPERTY_OPS_MAP[prop]:
            raise ValueError(f"cannot perform {self.op!r} on {prop!r}")

        self.prop = prop

    def _encode_payload(self) -> bytes:
        return bytes([self.prop, self.op])

    @classmethod
    def _decode_payload(cls, payload: bytes) -> "AbstractHubPropertyMessage":
        if len(payload) != 2:
            raise ValueError("unexpected payload size")
        return cls(HubProperty(payload[0]))


class AbstractHubPropertyValueMessage(AbstractHubPropertyMessage):
    """Common base class for hub property messages that carry a value."""

    _fields = ("prop", "value")

    @abc.abstractmethod
    def __init__(self, prop: HubProperty, value: Any) -> None:
        """
        Args:
            prop: The property.
            value: The value, of the type that goes with ``prop``.

        Raises:
            TypeError: ``value`` is not the correct type for ``prop``.
            ValueError: The operation does not apply to ``prop`` or ``value``
                is too long.
        """
        super().__init__(prop)

        meta = _HUB_PROPERTY_TYPE_MAP[prop]

        if not isinstance(value, meta.type):
            raise TypeError(
                f"expecting value of type {meta.type} but received {type(value)}"
            )

        if meta.max_size is not None:
            size = len(value.encode() if isinstance(value, str) else value)
            if size > meta.max_size:
                raise ValueError("length of value is too long")

        self.value = value

    def _encode_payload(self) -> bytes:
        meta = _HUB_PROPERTY_TYPE_MAP[self.prop]

        if meta.max_size is None:
            data = struct.pack(f"<{meta.fmt}", self.value)
        elif isinstance(self.value, str):
            data = self.value.encode()
        else:
            data = bytes(self.value)

        return super()._encode_payload() + data

    @classmethod
    def _decode_payload(cls, payload: bytes) -> "AbstractHubPropertyValueMessage":
        prop = HubProperty(payload[0])
        meta = _HUB_PROPERTY_TYPE_MAP[prop]
        data = payload[2:]

        if meta.max_size is None:
            (value,) = struct.unpack(f"<{meta.fmt}", data)
        elif len(data) > meta.max_size:
            raise ValueError("property value is too long")
        else:
            value = data

        if meta.type is str:
            return cls(prop, value.split(b"\0", 1)[0].decode())

        return cls(prop, meta.type(value))


class HubPropertySet(AbstractHubPropertyValueMessage):
    """Sets the value of a hub property."""

    op = HubPropertyOperation.SET

    def __init__(self, prop: HubProperty, value: Any) -> None:
        super().__init__(prop, value)


class HubPropertyEnableUpdates(AbstractHubPropertyMessage):
    """Asks the hub to send :class:`HubPropertyUpdate` whenever the value changes."""

    op = HubPropertyOperation.ENABLE_UPDATES

    def __init__(self, prop: HubProperty) -> None:
        super().__init__(prop)


class HubPropertyDisableUpdates(AbstractHubPropertyMessage):
    op = HubPropertyOperation.DISABLE_UPDATES

    def __init__(self, prop: HubProperty) -> None:
        super().__init__(prop)


class HubPropertyReset(AbstractHubPropertyMessage):
    """Resets a property to its default value."""

    op = HubPropertyOperation.RESET

    def __init__(self, prop: HubProperty) -> None:
        super().__init__(prop)


class HubPropertyRequestUpdate(AbstractHubPropertyMessage):
    """Asks the hub to send a single :class:`HubPropertyUpdate`."""

    op = HubPropertyOperation.REQUEST_UPDATE

    def __init__(self, prop: HubProperty) -> None:
        super().__init__(prop)


class HubPropertyUpdate(AbstractHubPropertyValueMessage):
    """Current value of a hub property, received from the hub."""

    op = HubPropertyOperation.UPDATE

    def __init__(self, prop: HubProperty, value: Any) -> None:
        super().__init__(prop, value)


###############################################################################
# Hub action and alert messages
###############################################################################


class HubActionMessage(AbstractMessage):
    """
    A hub action: a request when sent to the hub, a notice of an upcoming
    power off or disconnect when received from it.
    """

    kind = MessageKind.HUB_ACTION
    _fields = ("action",)

    def __init__(self, action: HubAction) -> None:
        self.action = HubAction(action)

    def _encode_payload(self) -> bytes:
        return bytes([self.action])

    @classmethod
    def _decode_payload(cls, payload: bytes) -> "HubActionMessage":
        (action,) = struct.unpack("<B", payload)
        return cls(HubAction(action))


class AbstractHubAlertMessage(AbstractMessage):
    kind = MessageKind.HUB_ALERT
    op: AlertOperation
    _fields = ("alert",)

    @abc.abstractmethod
    def __init__(self, alert: AlertKind) -> None:
        self.alert = AlertKind(alert)

    def _encode_payload(self) -> bytes:
        return bytes([self.alert, self.op])

    @classmethod
    def _decode_payload(cls, payload: bytes) -> "AbstractHubAlertMessage":
        alert, _ = struct.unpack("<BB", payload)
        return cls(AlertKind(alert))


class HubAlertEnableUpdatesMessage(AbstractHubAlertMessage):
    op = AlertOperation.ENABLE_UPDATES

    def __init__(self, alert: AlertKind) -> None:
        super().__init__(alert)


class HubAlertDisableUpdatesMessage(AbstractHubAlertMessage):
    op = AlertOperation.DISABLE_UPDATES

    def __init__(self, alert: AlertKind) -> None:
        super().__init__(alert)


class HubAlertRequestUpdateMessage(AbstractHubAlertMessage):
    op = AlertOperation.REQUEST_UPDATE

    def __init__(self, alert: AlertKind) -> None:
        super().__init__(alert)


class HubAlertUpdateMessage(AbstractHubAlertMessage):
    """Current status of an alert, received from the hub."""

    op = AlertOperation.UPDATE
    _fields = ("alert", "status")

    def __init__(self, alert: AlertKind, status: AlertStatus) -> None:
        super().__init__(alert)
        self.status = AlertStatus(status)

    def _encode_payload(self) -> bytes:
        return super()._encode_payload() + bytes([self.status])

    @classmethod
    def _decode_payload(cls, payload: bytes) -> "HubAlertUpdateMessage":
        alert, _, status = struct.unpack("<BBB", payload)
        return cls(AlertKind(alert), AlertStatus(status))


###############################################################################
# Hub attached I/O messages
###############################################################################


class AbstractHubAttachedIOMessage(AbstractMessage):
    kind = MessageKind.HUB_ATTACHED_IO
    event: IOEvent
    _fields = ("port",)

    def __init__(self, port: PortID) -> None:
        self.port = PortID(port)

    def _encode_payload(self) -> bytes:
        return bytes([self.port, self.event])


class HubIODetachedMessage(AbstractHubAttachedIOMessage):
    """The device on :attr:`port` was unplugged."""

    event = IOEvent.DETACHED

    @classmethod
    def _decode_payload(cls, payload: bytes) -> "HubIODetachedMessage":
        port, _ = struct.unpack("<BB", payload)
        return cls(port)


class HubIOAttachedMessage(AbstractHubAttachedIOMessage):
    """A device was plugged in to :attr:`port`."""

    event = IOEvent.ATTACHED
    _fields = ("port", "device", "hw_ver", "fw_ver")

    def __init__(
        self, port: PortID, device: IODeviceKind, hw_ver: Version, fw_ver: Version
    ) -> None:
        super().__init__(port)
        self.device = IODeviceKind(device)
        self.hw_ver = Version(hw_ver)
        self.fw_ver = Version(fw_ver)

    def _encode_payload(self) -> bytes:
        return super()._encode_payload() + struct.pack(
            "<HII", self.device, self.hw_ver, self.fw_ver
        )

    @classmethod
    def _decode_payload(cls, payload: bytes) -> "HubIOAttachedMessage":
        port, _, device, hw_ver, fw_ver = struct.unpack("<BBHII", payload)
        return cls(port, device, hw_ver, fw_ver)


class HubIOAttachedVirtualMessage(AbstractHubAttachedIOMessage):
    """
    The hub created a virtual port that drives :attr:`port_a` and
    :attr:`port_b` together.
    """

    event = IOEvent.ATTACHED_VIRTUAL
    _fields = ("port", "device", "port_a", "port_b")

    def __init__(
        self, port: PortID, device: IODeviceKind, port_a: PortID, port_b: PortID
    ) -> None:
        super().__init__(port)
        self.device = IODeviceKind(device)
        self.port_a = PortID(port_a)
        self.port_b = PortID(port_b)

    def _encode_payload(self) -> bytes:
        return super()._encode_payload() + struct.pack(
            "<HBB", self.device, self.port_a, self.port_b
        )

    @classmethod
    def _decode_payload(cls, payload: bytes) -> "HubIOAttachedVirtualMessage":
        port, _, device, port_a, port_b = struct.unpack("<BBHBB", payload)
        return cls(port, device, port_a, port_b)


###############################################################################
# Generic error and hardware network messages
###############################################################################


class ErrorMessage(AbstractMessage):
    """Generic error reply from the hub."""

    kind = MessageKind.ERROR
    _fields = ("command", "code")

    def __init__(self, command: MessageKind, code: ErrorCode) -> None:
        """
        Args:
            command: The kind of message that caused the error.
            code: What went wrong.
        """
        self.command = MessageKind(command)
        self.code = ErrorCode(code)

    def _encode_payload(self) -> bytes:
        return bytes([self.command, self.code])

    @classmethod
    def _decode_payload(cls, payload: bytes) -> "ErrorMessage":
        command, code = struct.unpack("<BB", payload)
        return cls(MessageKind(command), ErrorCode(code))


class HwNetCmdMessage(AbstractMessage):
    """
    Hardware network command. The payload that follows the command byte is
    kept as raw bytes.
    """

    kind = MessageKind.HW_NET_CMD
    _fields = ("cmd", "payload")

    def __init__(self, cmd: HwNetCmd, payload: bytes = b"") -> None:
        self.cmd = HwNetCmd(cmd)
        self.payload = bytes(payload)

    def _encode_payload(self) -> bytes:
        return bytes([self.cmd]) + self.payload

    @classmethod
    def _decode_payload(cls, payload: bytes) -> "HwNetCmdMessage":
        return cls(HwNetCmd(payload[0]), payload[1:])


###############################################################################
# Port information requests and replies
###############################################################################


class PortInfoRequestMessage(AbstractMessage):
    """Requests a :class:`PortInfoModeInfoMessage` or :class:`PortInfoCombosMessage`."""

    kind = MessageKind.PORT_INFO_REQ
    _fields = ("port", "info_kind")

    def __init__(self, port: PortID, info_kind: InfoKind) -> None:
        self.port = PortID(port)
        self.info_kind = InfoKind(info_kind)

    def _encode_payload(self) -> bytes:
        return bytes([self.port, self.info_kind])

    @classmethod
    def _decode_payload(cls, payload: bytes) -> "PortInfoRequestMessage":
        return cls(*struct.unpack("<BB", payload))


class PortModeInfoRequestMessage(AbstractMessage):
    """Requests one piece of information about one mode of a port."""

    kind = MessageKind.PORT_MODE_INFO_REQ
    _fields = ("port", "mode", "info_kind")

    def __init__(self, port: PortID, mode: int, info_kind: ModeInfoKind) -> None:
        self.port = PortID(port)
        self.mode = _check_mode(mode)
        self.info_kind = ModeInfoKind(info_kind)

    def _encode_payload(self) -> bytes:
        return bytes([self.port, self.mode, self.info_kind])

    @classmethod
    def _decode_payload(cls, payload: bytes) -> "PortModeInfoRequestMessage":
        return cls(*struct.unpack("<BBB", payload))


class AbstractPortInfoMessage(AbstractMessage):
    kind = MessageKind.PORT_INFO
    info_kind: InfoKind

    def __init__(self, port: PortID) -> None:
        self.port = PortID(port)

    def _encode_payload(self) -> bytes:
        return bytes([self.port, self.info_kind])


class PortInfoModeInfoMessage(AbstractPortInfoMessage):
    """Reply describing the modes of a port."""

    info_kind = InfoKind.MODE_INFO
    _fields = ("port", "capabilities", "num_modes", "input_modes", "output_modes")

    def __init__(
        self,
        port: PortID,
        capabilities: ModeCapabilities,
        num_modes: int,
        input_modes: List[int],
        output_modes: List[int],
    ) -> None:
        super().__init__(port)
        _check_range("num_modes", num_modes, 0, 16)
        self.capabilities = ModeCapabilities(capabilities)
        self.num_modes = num_modes
        self.input_modes = sorted(_check_mode(m) for m in input_modes)
        self.output_modes = sorted(_check_mode(m) for m in output_modes)

    def _encode_payload(self) -> bytes:
        return super()._encode_payload() + struct.pack(
            "<BBHH",
            self.capabilities,
            self.num_modes,
            _list_to_bits(self.input_modes),
            _list_to_bits(self.output_modes),
        )

    @classmethod
    def _decode_payload(cls, payload: bytes) -> "PortInfoModeInfoMessage":
        port, _, caps, num_modes, inputs, outputs = struct.unpack("<BBBBHH", payload)
        return cls(
            port, caps, num_modes, _bits_to_list(inputs), _bits_to_list(outputs)
        )


class PortInfoCombosMessage(AbstractPortInfoMessage):
    """Reply listing the mode combinations a port supports."""

    info_kind = InfoKind.COMBOS
    _fields = ("port", "combos")

    def __init__(self, port: PortID, combos: List[List[int]]) -> None:
        super().__init__(port)
        self.combos = [sorted(_check_mode(m) for m in c) for c in combos]

    def _encode_payload(self) -> bytes:
        flags = [_list_to_bits(c) for c in self.combos]
        return super()._encode_payload() + struct.pack(f"<{len(flags)}H", *flags)

    @classmethod
    def _decode_payload(cls, payload: bytes) -> "PortInfoCombosMessage":
        if len(payload) % 2:
            raise ValueError("combination flags must be 16-bit")

        count = (len(payload) - 2) // 2
        flags = struct.unpack_from(f"<{count}H", payload, 2)
        return cls(payload[0], [_bits_to_list(f) for f in flags])


###############################################################################
# Port mode information replies
###############################################################################


class AbstractPortModeInfoMessage(AbstractMessage):
    """Common base class for replies to :class:`PortModeInfoRequestMessage`."""

    kind = MessageKind.PORT_MODE_INFO
    info_kind: ModeInfoKind

    def __init__(self, port: PortID, mode: int) -> None:
        self.port = PortID(port)
        self.mode = _check_mode(mode)

    def _encode_payload(self) -> bytes:
        return bytes([self.port, self.mode, self.info_kind])


class _AbstractPortModeInfoTextMessage(AbstractPortModeInfoMessage):
    _max_size: int

    def _check_text(self, text: str) -> str:
        if len(text.encode("ascii")) > self._max_size:
            raise ValueError(f"must be {self._max_size} bytes or less")
        return text

    @staticmethod
    def _decode_text(data: bytes) -> str:
        return data.split(b"\0", 1)[0].decode("ascii")


class PortModeInfoNameMessage(_AbstractPortModeInfoTextMessage):
    info_kind = ModeInfoKind.NAME
    _max_size = 11
    _fields = ("port", "mode", "name")

    def __init__(self, port: PortID, mode: int, name: str) -> None:
        super().__init__(port, mode)
        self.name = self._check_text(name)

    def _encode_payload(self) -> bytes:
        return super()._encode_payload() + self.name.encode("ascii")

    @classmethod
    def _decode_payload(cls, payload: bytes) -> "PortModeInfoNameMessage":
        return cls(payload[0], payload[1], cls._decode_text(payload[3:]))


class PortModeInfoSymbolMessage(_AbstractPortModeInfoTextMessage):
    """The unit symbol of the SI value, e.g. ``"DEG"``."""

    info_kind = ModeInfoKind.SYMBOL
    _max_size = 5
    _fields = ("port", "mode", "symbol")

    def __init__(self, port: PortID, mode: int, symbol: str) -> None:
        super().__init__(port, mode)
        self.symbol = self._check_text(symbol)

    def _encode_payload(self) -> bytes:
        return super()._encode_payload() + self.symbol.encode("ascii")

    @classmethod
    def _decode_payload(cls, payload: bytes) -> "PortModeInfoSymbolMessage":
        return cls(payload[0], payload[1], cls._decode_text(payload[3:]))


class _AbstractPortModeInfoRangeMessage(AbstractPortModeInfoMessage):
    _fields = ("port", "mode", "min", "max")

    def __init__(self, port: PortID, mode: int, min: float, max: float) -> None:
        super().__init__(port, mode)
        self.min = min
        self.max = max

    def _encode_payload(self) -> bytes:
        return super()._encode_payload() + struct.pack("<ff", self.min, self.max)

    @classmethod
    def _decode_payload(cls, payload: bytes) -> "_AbstractPortModeInfoRangeMessage":
        port, mode, _, min, max = struct.unpack("<BBBff", payload)
        return cls(port, mode, min, max)


class PortModeInfoRawMessage(_AbstractPortModeInfoRangeMessage):
    """Range of the raw value."""

    info_kind = ModeInfoKind.RAW


class PortModeInfoPercentMessage(_AbstractPortModeInfoRangeMessage):
    """Range of the value scaled to percent."""

    info_kind = ModeInfoKind.PCT


class PortModeInfoSIMessage(_AbstractPortModeInfoRangeMessage):
    """Range of the value in SI units."""

    info_kind = ModeInfoKind.SI


class PortModeInfoMappingMessage(AbstractPortModeInfoMessage):
    info_kind = ModeInfoKind.MAPPING
    _fields = ("port", "mode", "input_mapping", "output_mapping")

    def __init__(
        self,
        port: PortID,
        mode: int,
        input_mapping: IODeviceMapping,
        output_mapping: IODeviceMapping,
    ) -> None:
        super().__init__(port, mode)
        self.input_mapping = IODeviceMapping(input_mapping)
        self.output_mapping = IODeviceMapping(output_mapping)

    def _encode_payload(self) -> bytes:
        return super()._encode_payload() + bytes(
            [self.input_mapping, self.output_mapping]
        )

    @classmethod
    def _decode_payload(cls, payload: bytes) -> "PortModeInfoMappingMessage":
        port, mode, _, input_mapping, output_mapping = struct.unpack(
            "<BBBBB", payload
        )
        return cls(port, mode, input_mapping, output_mapping)


class PortModeInfoMotorBiasMessage(AbstractPortModeInfoMessage):
    """Motor bias in percent (0 to 100)."""

    info_kind = ModeInfoKind.MOTOR_BIAS
    _fields = ("port", "mode", "bias")

    def __init__(self, port: PortID, mode: int, bias: int) -> None:
        super().__init__(port, mode)
        _check_range("bias", bias, 0, 255)
        self.bias = bias

    def _encode_payload(self) -> bytes:
        return super()._encode_payload() + bytes([self.bias])

    @classmethod
    def _decode_payload(cls, payload: bytes) -> "PortModeInfoMotorBiasMessage":
        port, mode, _, bias = struct.unpack("<BBBB", payload)
        return cls(port, mode, bias)


class PortModeInfoCapabilitiesMessage(AbstractPortModeInfoMessage):
    """48-bit sensor capability flags."""

    info_kind = ModeInfoKind.CAPABILITIES
    _fields = ("port", "mode", "capabilities")

    def __init__(self, port: PortID, mode: int, capabilities: int) -> None:
        super().__init__(port, mode)
        _check_range("capabilities", capabilities, 0, (1 << 48) - 1)
        self.capabilities = capabilities

    def _encode_payload(self) -> bytes:
        return super()._encode_payload() + self.capabilities.to_bytes(6, "little")

    @classmethod
    def _decode_payload(cls, payload: bytes) -> "PortModeInfoCapabilitiesMessage":
        if len(payload) != 9:
            raise ValueError("unexpected payload size")
        return cls(payload[0], payload[1], int.from_bytes(payload[3:], "little"))


class PortModeInfoFormatMessage(AbstractPortModeInfoMessage):
    """
    How values of a mode are encoded in :class:`PortValueMessage`:
    :attr:`datasets` values of type :attr:`format`.
    """

    info_kind = ModeInfoKind.FORMAT
    _fields = ("port", "mode", "datasets", "format", "figures", "decimals")

    def __init__(
        self,
        port: PortID,
        mode: int,
        datasets: int,
        format: DataFormat,
        figures: int,
        decimals: int,
    ) -> None:
        super().__init__(port, mode)
        _check_range("datasets", datasets, 0, 255)
        _check_range("figures", figures, 0, 255)
        _check_range("decimals", decimals, 0, 255)
        self.datasets = datasets
        self.format = DataFormat(format)
        self.figures = figures
        self.decimals = decimals

    def _encode_payload(self) -> bytes:
        return super()._encode_payload() + bytes(
            [self.datasets, self.format, self.figures, self.decimals]
        )

    @classmethod
    def _decode_payload(cls, payload: bytes) -> "PortModeInfoFormatMessage":
        port, mode, _, datasets, fmt, figures, decimals = struct.unpack(
            "<7B", payload
        )
        return cls(port, mode, datasets, DataFormat(fmt), figures, decimals)


###############################################################################
# Port input format messages
###############################################################################


class PortInputFormatSetupMessage(AbstractMessage):
    """
    Selects the mode of a port and enables or disables value notifications.

    The hub sends a :class:`PortValueMessage` whenever the value changes by at
    least :attr:`delta`.
    """

    kind = MessageKind.PORT_INPUT_FMT_SETUP
    _fields = ("port", "mode", "delta", "notify")

    def __init__(self, port: PortID, mode: int, delta: int, notify: bool) -> None:
        self.port = PortID(port)
        self.mode = _check_mode(mode)
        _check_range("delta", delta, 0, 0xFFFFFFFF)
        self.delta = delta
        self.notify = bool(notify)

    def _encode_payload(self) -> bytes:
        return struct.pack("<BBI?", self.port, self.mode, self.delta, self.notify)

    @classmethod
    def _decode_payload(cls, payload: bytes) -> "PortInputFormatSetupMessage":
        return cls(*struct.unpack("<BBI?", payload))


class PortInputFormatMessage(PortInputFormatSetupMessage):
    """Acknowledges a :class:`PortInputFormatSetupMessage`."""

    kind = MessageKind.PORT_INPUT_FMT


class AbstractPortFormatSetupComboMessage(AbstractMessage):
    kind = MessageKind.PORT_INPUT_FMT_SETUP_COMBO
    command: ComboSetupCommand
    _fields = ("port",)

    @abc.abstractmethod
    def __init__(self, port: PortID) -> None:
        self.port = PortID(port)

    def _encode_payload(self) -> bytes:
        return bytes([self.port, self.command])

    @classmethod
    def _decode_payload(cls, payload: bytes) -> "AbstractPortFormatSetupComboMessage":
        port, _ = struct.unpack("<BB", payload)
        return cls(port)


class PortFormatSetupComboMessage(AbstractPortFormatSetupComboMessage):
    """
    Selects the mode/dataset pairs reported together in a
    :class:`PortValueComboMessage`.

    Must be sent between :class:`PortFormatSetupComboLockMessage` and one of
    the unlock messages.
    """

    command = ComboSetupCommand.SET
    _fields = ("port", "combo", "modes_and_datasets")

    def __init__(
        self, port: PortID, combo: int, modes_and_datasets: List[Tuple[int, int]]
    ) -> None:
        """
        Args:
            port: The port.
            combo: Index into :attr:`PortInfoCombosMessage.combos`.
            modes_and_datasets: ``(mode, dataset)`` pairs.
        """
        super().__init__(port)
        _check_range("combo", combo, 0, 255)
        self.combo = combo
        self.modes_and_datasets = []

        for mode, dataset in modes_and_datasets:
            _check_mode(mode)
            _check_range("dataset", dataset, 0, 15)
            self.modes_and_datasets.append((mode, dataset))

    def _encode_payload(self) -> bytes:
        return (
            super()._encode_payload()
            + bytes([self.combo])
            + bytes((m << 4) | d for m, d in self.modes_and_datasets)
        )

    @classmethod
    def _decode_payload(cls, payload: bytes) -> "PortFormatSetupComboMessage":
        return cls(payload[0], payload[2], [(x >> 4, x & 0xF) for x in payload[3:]])


class PortFormatSetupComboLockMessage(AbstractPortFormatSetupComboMessage):
    """Locks the port for combined mode setup."""

    command = ComboSetupCommand.LOCK

    def __init__(self, port: PortID) -> None:
        super().__init__(port)


class PortFormatSetupComboUnlockEnabledMessage(AbstractPortFormatSetupComboMessage):
    """Ends combined mode setup and starts sending values."""

    command = ComboSetupCommand.UNLOCK_ENABLED

    def __init__(self, port: PortID) -> None:
        super().__init__(port)


class PortFormatSetupComboUnlockDisabledMessage(AbstractPortFormatSetupComboMessage):
    command = ComboSetupCommand.UNLOCK_DISABLED

    def __init__(self, port: PortID) -> None:
        super().__init__(port)


class PortFormatSetupComboResetMessage(AbstractPortFormatSetupComboMessage):
    command = ComboSetupCommand.RESET

    def __init__(self, port: PortID) -> None:
        super().__init__(port)


class PortInputFormatComboMessage(AbstractMessage):
    """Acknowledges a combined mode setup."""

    kind = MessageKind.PORT_INPUT_FMT_COMBO
    _fields = ("port", "combo", "multi_update", "pointers")

    def __init__(
        self, port: PortID, combo: int, multi_update: bool, pointers: List[int]
    ) -> None:
        self.port = PortID(port)
        _check_range("combo", combo, 0, 15)
        self.combo = combo
        self.multi_update = bool(multi_update)
        self.pointers = sorted(pointers)

        for p in self.pointers:
            _check_range("pointer", p, 0, 15)

    def _encode_payload(self) -> bytes:
        combo = self.combo | (0x80 if self.multi_update else 0)
        return struct.pack("<BBH", self.port, combo, _list_to_bits(self.pointers))

    @classmethod
    def _decode_payload(cls, payload: bytes) -> "PortInputFormatComboMessage":
        port, combo, flags = struct.unpack("<BBH", payload)
        return cls(port, combo & 0x0F, combo & 0x80, _bits_to_list(flags))


###############################################################################
# Port value messages
###############################################################################


class PortValueMessage(AbstractMessage):
    """
    A value sample from a single port.

    The value is kept as raw bytes since the encoding depends on the current
    mode of the port. Use :meth:`unpack` with the format from
    :class:`PortModeInfoFormatMessage` to get numbers.
    """

    kind = MessageKind.PORT_VALUE
    _fields = ("port", "data")

    def __init__(self, port: PortID, data: bytes) -> None:
        self.port = PortID(port)
        self.data = bytes(data)

    def unpack(self, fmt: str) -> Tuple[Union[int, float], ...]:
        return struct.unpack_from(fmt, self.data)

    def _encode_payload(self) -> bytes:
        return bytes([self.port]) + self.data

    @classmethod
    def _decode_payload(cls, payload: bytes) -> "PortValueMessage":
        return cls(payload[0], payload[1:])


class PortValueComboMessage(AbstractMessage):
    """
    A value sample from a port in combined mode.

    Each set bit in :attr:`pointers` selects an entry of
    :attr:`PortFormatSetupComboMessage.modes_and_datasets`; the values follow
    in the same order.
    """

    kind = MessageKind.PORT_VALUE_COMBO
    _fields = ("port", "pointers", "data")

    def __init__(self, port: PortID, pointers: List[int], data: bytes) -> None:
        self.port = PortID(port)
        self.pointers = sorted(pointers)
        self.data = bytes(data)

    def unpack(self, fmt: str) -> Tuple[Union[int, float], ...]:
        return struct.unpack_from(fmt, self.data)

    def _encode_payload(self) -> bytes:
        return struct.pack("<BH", self.port, _list_to_bits(self.pointers)) + self.data

    @classmethod
    def _decode_payload(cls, payload: bytes) -> "PortValueComboMessage":
        port, flags = struct.unpack_from("<BH", payload)
        return cls(port, _bits_to_list(flags), payload[3:])


###############################################################################
# Virtual port messages
###############################################################################


class AbstractVirtualPortSetupMessage(AbstractMessage):
    kind = MessageKind.VIRTUAL_PORT_SETUP
    command: VirtualPortSetupCommand


class VirtualPortSetupDisconnectMessage(AbstractVirtualPortSetupMessage):
    """Removes a virtual port."""

    command = VirtualPortSetupCommand.DISCONNECT
    _fields = ("port",)

    def __init__(self, port: PortID) -> None:
        self.port = PortID(port)

    def _encode_payload(self) -> bytes:
        return bytes([self.command, self.port])

    @classmethod
    def _decode_payload(cls, payload: bytes) -> "VirtualPortSetupDisconnectMessage":
        _, port = struct.unpack("<BB", payload)
        return cls(port)


class VirtualPortSetupConnectMessage(AbstractVirtualPortSetupMessage):
    """Asks the hub to combine two ports into a virtual port."""

    command = VirtualPortSetupCommand.CONNECT
    _fields = ("port_a", "port_b")

    def __init__(self, port_a: PortID, port_b: PortID) -> None:
        self.port_a = PortID(port_a)
        self.port_b = PortID(port_b)

    def _encode_payload(self) -> bytes:
        return bytes([self.command, self.port_a, self.port_b])

    @classmethod
    def _decode_payload(cls, payload: bytes) -> "VirtualPortSetupConnectMessage":
        _, port_a, port_b = struct.unpack("<BBB", payload)
        return cls(port_a, port_b)


###############################################################################
# Port output messages
###############################################################################


class AbstractPortOutputCommandMessage(AbstractMessage):
    """
    Common base class for port output commands.

    All commands take keyword-only ``start`` and ``end`` arguments. By default
    commands execute immediately and the hub does not send feedback.
    """

    kind = MessageKind.PORT_OUTPUT_CMD
    command: PortOutputCommand
    _params: str
    """:mod:`struct` format of the parameters that follow the sub-command."""
    _fields = ("port",)
    _param_fields: Tuple[str, ...] = ()

    @abc.abstractmethod
    def __init__(
        self,
        port: PortID,
        *,
        start: StartInfo = StartInfo.IMMEDIATE,
        end: EndInfo = EndInfo.NO_ACTION,
    ) -> None:
        self.port = PortID(port)
        self.start = StartInfo(start)
        self.end = EndInfo(end)

    def _encode_params(self) -> bytes:
        values = (getattr(self, f) for f in self._param_fields)
        return struct.pack(self._params, *values)

    def _encode_payload(self) -> bytes:
        header = bytes([self.port, self.start | self.end, self.command])
        return header + self._encode_params()

    @classmethod
    def _decode_payload(cls, payload: bytes) -> "AbstractPortOutputCommandMessage":
        port, flags, _ = struct.unpack_from("<BBB", payload)
        params = struct.unpack(cls._params, payload[3:])
        return cls(
            port,
            *params,
            start=StartInfo(flags & 0xF0),
            end=EndInfo(flags & 0x0F),
        )

    def __repr__(self) -> str:
        args = [repr(getattr(self, f)) for f in self._fields + self._param_fields]
        args.append(f"start={self.start!r}")
        args.append(f"end={self.end!r}")
        return f"{self.__class__.__name__}({', '.join(args)})"


def _check_speed(speed: int) -> int:
    _check_range("speed", speed, -100, 100)
    return speed


def _check_max_power(max_power: int) -> int:
    _check_range("max_power", max_power, 0, 100)
    return max_power


class PortOutputCommandStartPower2Message(AbstractPortOutputCommandMessage):
    """Sets the power of both motors of a virtual port."""

    command = PortOutputCommand.START_POWER_2
    _params = "<bb"
    _param_fields = ("power1", "power2")

    def __init__(self, port: PortID, power1: int, power2: int, **kwargs) -> None:
        super().__init__(port, **kwargs)
        _check_range("power1", power1, -100, 127)
        _check_range("power2", power2, -100, 127)
        self.power1 = power1
        self.power2 = power2


class PortOutputCommandSetAccTimeMessage(AbstractPortOutputCommandMessage):
    """Sets the time in milliseconds to go from 0 to 100% speed."""

    command = PortOutputCommand.SET_ACC_TIME
    _params = "<HB"
    _param_fields = ("time", "profile_no")

    def __init__(self, port: PortID, time: int, profile_no: int = 0, **kwargs) -> None:
        super().__init__(port, **kwargs)
        _check_range("time", time, 0, 10000)
        _check_range("profile_no", profile_no, 0, 255)
        self.time = time
        self.profile_no = profile_no


class PortOutputCommandSetDecTimeMessage(PortOutputCommandSetAccTimeMessage):
    """Sets the time in milliseconds to go from 100% to 0 speed."""

    command = PortOutputCommand.SET_DEC_TIME


class PortOutputCommandStartSpeedMessage(AbstractPortOutputCommandMessage):
    """Runs a motor at a speed (-100 to 100) until told otherwise."""

    command = PortOutputCommand.START_SPEED
    _params = "<bBB"
    _param_fields = ("speed", "max_power", "profile")

    def __init__(
        self,
        port: PortID,
        speed: int,
        max_power: int = 100,
        profile: Profile = Profile.NONE,
        **kwargs,
    ) -> None:
        super().__init__(port, **kwargs)
        self.speed = _check_speed(speed)
        self.max_power = _check_max_power(max_power)
        self.profile = Profile(profile)


class PortOutputCommandStartSpeedForTimeMessage(AbstractPortOutputCommandMessage):
    """Runs a motor for ``time`` milliseconds."""

    command = PortOutputCommand.START_SPEED_FOR_TIME
    _params = "<HbBBB"
    _param_fields = ("time", "speed", "max_power", "end_state", "profile")

    def __init__(
        self,
        port: PortID,
        time: int,
        speed: int,
        max_power: int = 100,
        end_state: EndState = EndState.BRAKE,
        profile: Profile = Profile.NONE,
        **kwargs,
    ) -> None:
        super().__init__(port, **kwargs)
        _check_range("time", time, 0, 0xFFFF)
        self.time = time
        self.speed = _check_speed(speed)
        self.max_power = _check_max_power(max_power)
        self.end_state = EndState(end_state)
        self.profile = Profile(profile)


class PortOutputCommandStartSpeedForDegreesMessage(AbstractPortOutputCommandMessage):
    """
    Runs a motor for ``degrees`` of rotation. The sign of ``speed`` sets the
    direction.
    """

    command = PortOutputCommand.START_SPEED_FOR_DEGREES
    _params = "<ibBBB"
    _param_fields = ("degrees", "speed", "max_power", "end_state", "profile")

    def __init__(
        self,
        port: PortID,
        degrees: int,
        speed: int,
        max_power: int = 100,
        end_state: EndState = EndState.BRAKE,
        profile: Profile = Profile.NONE,
        **kwargs,
    ) -> None:
        super().__init__(port, **kwargs)
        _check_range("degrees", degrees, 0, 10000000)
        self.degrees = degrees
        self.speed = _check_speed(speed)
        self.max_power = _check_max_power(max_power)
        self.end_state = EndState(end_state)
        self.profile = Profile(profile)


class PortOutputCommandGotoAbsolutePositionMessage(AbstractPortOutputCommandMessage):
    """Runs a motor to an absolute encoder position in degrees."""

    command = PortOutputCommand.GOTO_ABS_POS
    _params = "<ibBBB"
    _param_fields = ("position", "speed", "max_power", "end_state", "profile")

    def __init__(
        self,
        port: PortID,
        position: int,
        speed: int,
        max_power: int = 100,
        end_state: EndState = EndState.BRAKE,
        profile: Profile = Profile.NONE,
        **kwargs,
    ) -> None:
        super().__init__(port, **kwargs)
        _check_range("position", position, -(2**31), 2**31 - 1)
        self.position = position
        self.speed = _check_speed(speed)
        self.max_power = _check_max_power(max_power)
        self.end_state = EndState(end_state)
        self.profile = Profile(profile)


class PortOutputCommandWriteDirectMessage(AbstractPortOutputCommandMessage):
    """Writes raw bytes directly to a device."""

    command = PortOutputCommand.WRITE_DIRECT
    _param_fields = ("payload",)

    def __init__(self, port: PortID, payload: bytes, **kwargs) -> None:
        super().__init__(port, **kwargs)
        self.payload = bytes(payload)

    def _encode_params(self) -> bytes:
        return self.payload

    @classmethod
    def _decode_payload(cls, payload: bytes) -> "PortOutputCommandWriteDirectMessage":
        port, flags, _ = struct.unpack_from("<BBB", payload)
        return cls(
            port,
            payload[3:],
            start=StartInfo(flags & 0xF0),
            end=EndInfo(flags & 0x0F),
        )


class PortOutputCommandWriteDirectModeDataMessage(AbstractPortOutputCommandMessage):
    """
    Writes ``data`` to a mode of a device.

    This is also how the single motor ``StartPower`` and ``PresetEncoder``
    commands and the status light colors are encoded.
    """

    command = PortOutputCommand.WRITE_DIRECT_MODE_DATA
    _param_fields = ("mode", "data")

    def __init__(self, port: PortID, mode: int, data: bytes, **kwargs) -> None:
        super().__init__(port, **kwargs)
        self.mode = _check_mode(mode)
        self.data = bytes(data)

    def unpack(self, fmt: str) -> Tuple[Union[int, float], ...]:
        return struct.unpack_from(fmt, self.data)

    def _encode_params(self) -> bytes:
        return bytes([self.mode]) + self.data

    @classmethod
    def _decode_payload(
        cls, payload: bytes
    ) -> "PortOutputCommandWriteDirectModeDataMessage":
        port, flags, _, mode = struct.unpack_from("<BBBB", payload)
        return cls(
            port,
            mode,
            payload[4:],
            start=StartInfo(flags & 0xF0),
            end=EndInfo(flags & 0x0F),
        )


class PortOutputCommandFeedbackMessage(AbstractMessage):
    """
    Feedback about buffered output commands, for one to three ports.
    """

    kind = MessageKind.PORT_OUTPUT_CMD_FEEDBACK
    _fields = ("feedback",)

    def __init__(self, feedback: List[Tuple[PortID, Feedback]]) -> None:
        if not 1 <= len(feedback) <= 3:
            raise ValueError("requires feedback for one to three ports")

        self.feedback = [(PortID(p), Feedback(f)) for p, f in feedback]

    def _encode_payload(self) -> bytes:
        return b"".join(bytes([p, f]) for p, f in self.feedback)

    @classmethod
    def _decode_payload(cls, payload: bytes) -> "PortOutputCommandFeedbackMessage":
        if len(payload) % 2:
            raise ValueError("incomplete port feedback")

        return cls(list(zip(payload[::2], payload[1::2])))


###############################################################################
# Message parsing
###############################################################################


class _Lookup(NamedTuple):
    """Type discriminator."""

    index: int
    """Index in the payload of the byte that selects the type."""

    value: Union[Dict[IntEnum, Type[AbstractMessage]], Dict[IntEnum, "_Lookup"]]
    """Maps that byte to a message class or to a further lookup."""


def _class_map(*classes: Type[AbstractMessage], attr: str) -> Dict[IntEnum, Type]:
    return {getattr(c, attr): c for c in classes}


_HUB_PROPERTY_OP_CLASS_MAP = _class_map(
    HubPropertySet,
    HubPropertyEnableUpdates,
    HubPropertyDisableUpdates,
    HubPropertyReset,
    HubPropertyRequestUpdate,
    HubPropertyUpdate,
    attr="op",
)

_HUB_ALERT_OP_CLASS_MAP = _class_map(
    HubAlertEnableUpdatesMessage,
    HubAlertDisableUpdatesMessage,
    HubAlertRequestUpdateMessage,
    HubAlertUpdateMessage,
    attr="op",
)

_HUB_ATTACHED_IO_EVENT_CLASS_MAP = _class_map(
    HubIODetachedMessage,
    HubIOAttachedMessage,
    HubIOAttachedVirtualMessage,
    attr="event",
)

_PORT_INPUT_FMT_SETUP_COMBO_CLASS_MAP = _class_map(
    PortFormatSetupComboMessage,
    PortFormatSetupComboLockMessage,
    PortFormatSetupComboUnlockEnabledMessage,
    PortFormatSetupComboUnlockDisabledMessage,
    PortFormatSetupComboResetMessage,
    attr="command",
)

_PORT_INFO_CLASS_MAP = _class_map(
    PortInfoModeInfoMessage,
    PortInfoCombosMessage,
    attr="info_kind",
)

_PORT_MODE_INFO_CLASS_MAP = _class_map(
    PortModeInfoNameMessage,
    PortModeInfoRawMessage,
    PortModeInfoPercentMessage,
    PortModeInfoSIMessage,
    PortModeInfoSymbolMessage,
    PortModeInfoMappingMessage,
    PortModeInfoMotorBiasMessage,
    PortModeInfoCapabilitiesMessage,
    PortModeInfoFormatMessage,
    attr="info_kind",
)

_VIRTUAL_PORT_SETUP_CLASS_MAP = _class_map(
    VirtualPortSetupDisconnectMessage,
    VirtualPortSetupConnectMessage,
    attr="command",
)

_OUTPUT_CMD_CLASS_MAP = _class_map(
    PortOutputCommandStartPower2Message,
    PortOutputCommandSetAccTimeMessage,
    PortOutputCommandSetDecTimeMessage,
    PortOutputCommandStartSpeedMessage,
    PortOutputCommandStartSpeedForTimeMessage,
    PortOutputCommandStartSpeedForDegreesMessage,
    PortOutputCommandGotoAbsolutePositionMessage,
    PortOutputCommandWriteDirectMessage,
    PortOutputCommandWriteDirectModeDataMessage,
    attr="command",
)

# base type discriminator, indexes are relative to the payload
_MESSAGE_CLASS_MAP = {
    MessageKind.HUB_PROPERTY: _Lookup(1, _HUB_PROPERTY_OP_CLASS_MAP),
    MessageKind.HUB_ACTION: HubActionMessage,
    MessageKind.HUB_ALERT: _Lookup(1, _HUB_ALERT_OP_CLASS_MAP),
    MessageKind.HUB_ATTACHED_IO: _Lookup(1, _HUB_ATTACHED_IO_EVENT_CLASS_MAP),
    MessageKind.ERROR: ErrorMessage,
    MessageKind.HW_NET_CMD: HwNetCmdMessage,
    MessageKind.PORT_INFO_REQ: PortInfoRequestMessage,
    MessageKind.PORT_MODE_INFO_REQ: PortModeInfoRequestMessage,
    MessageKind.PORT_INPUT_FMT_SETUP: PortInputFormatSetupMessage,
    MessageKind.PORT_INPUT_FMT_SETUP_COMBO: _Lookup(
        1, _PORT_INPUT_FMT_SETUP_COMBO_CLASS_MAP
    ),
    MessageKind.PORT_INFO: _Lookup(1, _PORT_INFO_CLASS_MAP),
    MessageKind.PORT_MODE_INFO: _Lookup(2, _PORT_MODE_INFO_CLASS_MAP),
    MessageKind.PORT_VALUE: PortValueMessage,
    MessageKind.PORT_VALUE_COMBO: PortValueComboMessage,
    MessageKind.PORT_INPUT_FMT: PortInputFormatMessage,
    MessageKind.PORT_INPUT_FMT_COMBO: PortInputFormatComboMessage,
    MessageKind.VIRTUAL_PORT_SETUP: _Lookup(0, _VIRTUAL_PORT_SETUP_CLASS_MAP),
    MessageKind.PORT_OUTPUT_CMD: _Lookup(2, _OUTPUT_CMD_CLASS_MAP),
    MessageKind.PORT_OUTPUT_CMD_FEEDBACK: PortOutputCommandFeedbackMessage,
}


def parse_message(data: bytes) -> AbstractMessage:
    """
    Parses ``data`` and returns a message object.

    Args:
        data: One complete frame, starting with the length prefix.

    Returns:
        A new message object whose type corresponds to the message data.

    Raises:
        MalformedMessageError:
            The frame is empty or truncated, its length prefix does not match
            the size of ``data``, the message kind is unknown or the payload
            does not fit the message kind.
    """
    data = bytes(data)

    if not data:
        raise MalformedMessageError("empty message")

    if data[0] & 0x80:
        if len(data) < 2:
            raise MalformedMessageError("truncated length", data)

        length = (data[0] & 0x7F) | (data[1] << 7)
        offset = 2
    else:
        length = data[0]
        offset = 1

    if length != len(data):
        raise MalformedMessageError(
            f"length is {length} but received {len(data)} bytes", data
        )

    if length < offset + 2:
        raise MalformedMessageError("missing message header", data)

    # data[offset] is the hub id, which is not checked

    payload = data[offset + 2 :]
    cls = _Lookup(offset + 1, _MESSAGE_CLASS_MAP)
    code = data[cls.index]

    while isinstance(cls, _Lookup):
        try:
            cls = cls.value[code]
        except KeyError:
            raise MalformedMessageError(
                f"unknown type code 0x{code:02X}", data
            ) from None

        if isinstance(cls, _Lookup):
            if cls.index >= len(payload):
                raise MalformedMessageError("truncated payload", data)

            code = payload[cls.index]

    try:
        return cls._decode_payload(payload)
    except (struct.error, ValueError, TypeError, IndexError, KeyError) as ex:
        # UnicodeDecodeError is also a ValueError
        raise MalformedMessageError(f"bad {cls.__name__} payload", data) from ex
