# SPDX-License-Identifier: MIT
# Copyright (c) 2023 The Pybricks Authors
# Some portions of the documentation:
# Copyright (c) 2018 LEGO System A/S

"""
Enumerations for the numeric codes used on the wire by the `LWP3 protocol`_.

Every value in this module must match the published protocol documentation
bit-for-bit, otherwise real hubs will not understand us.

.. _LWP3 protocol: https://lego.github.io/lego-ble-wireless-protocol-docs/
"""

from enum import IntEnum, IntFlag, unique
from typing import Type, Union


def _create_pseudo_member_(cls: Type[IntEnum], value: int) -> IntEnum:
    """
    Returns a cached enum member for ``value``, creating it on first use.

    This lets enums like :class:`PortID` accept values that are valid on the
    wire but are not worth naming.
    """
    member = cls._value2member_map_.get(value, None)

    if member is None:
        member = int.__new__(cls, value)
        member._name_ = str(value)
        member._value_ = value
        member = cls._value2member_map_.setdefault(value, member)

    return member


MAX_NAME_SIZE = 14
"""Hub names are limited to this many bytes."""


class Version(int):
    """
    A firmware or hardware version as packed by LEGO hubs.

    The 32-bit value holds ``major`` (4 bits), ``minor`` (4 bits), ``bug``
    (8 bits, BCD) and ``build`` (16 bits, BCD).
    """

    @property
    def major(self) -> int:
        return (self >> 28) & 0xF

    @property
    def minor(self) -> int:
        return (self >> 24) & 0xF

    @property
    def bug(self) -> int:
        return int(f"{(self >> 16) & 0xFF:X}")

    @property
    def build(self) -> int:
        return int(f"{self & 0xFFFF:X}")

    @staticmethod
    def parse(version: str) -> "Version":
        """Parses a string like ``"1.0.00.0000"``."""
        major, minor, bug, build = version.split(".")
        return Version(
            (int(major) << 28)
            | (int(minor) << 24)
            | (int(bug, 16) << 16)
            | int(build, 16)
        )

    def __str__(self) -> str:
        text = f"{self & 0xFFFFFFFF:08X}"
        return f"{text[0]}.{text[1]}.{text[2:4]}.{text[4:]}"

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(0x{self & 0xFFFFFFFF:08X})"


class LWPVersion(int):
    """The protocol version reported by a hub (two BCD bytes)."""

    @property
    def major(self) -> int:
        return int(f"{(self >> 8) & 0xFF:X}")

    @property
    def minor(self) -> int:
        return int(f"{self & 0xFF:X}")

    @staticmethod
    def parse(version: str) -> "LWPVersion":
        """Parses a string like ``"03.00"``."""
        major, minor = version.split(".")
        return LWPVersion((int(major, 16) << 8) | int(minor, 16))

    def __str__(self) -> str:
        text = f"{self:04X}"
        return f"{text[:2]}.{text[2:]}"

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(0x{self:04X})"


class BluetoothAddress(bytes):
    """A 6-byte Bluetooth device address (EUI-48)."""

    def __new__(cls, value: Union[str, bytes]) -> "BluetoothAddress":
        if isinstance(value, str):
            value = bytes(int(x, 16) for x in value.split(":"))

        if len(value) != 6:
            raise TypeError("requires exactly 6 bytes")

        return bytes.__new__(cls, value)

    def __str__(self) -> str:
        return ":".join(f"{b:02X}" for b in self)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({str(self)!r})"


@unique
class HubKind(IntEnum):
    """
    The kind of hub, as found in advertising data and in the
    :attr:`HubProperty.HUB_KIND` property.
    """

    WEDO2 = 0x00
    DUPLO_TRAIN = 0x20
    BOOST = 0x40
    CITY = 0x41
    """2-port Powered Up hub."""
    HANDSET = 0x42
    """2-port handset (remote control)."""
    MARIO = 0x43
    LUIGI = 0x44
    PEACH = 0x45
    TECHNIC = 0x80
    """4-port Technic (Control+) hub."""
    TECHNIC_LARGE = 0x81
    TECHNIC_SMALL = 0x83


@unique
class Capabilities(IntFlag):
    """Hub capability flags from advertising data."""

    CENTRAL = 1 << 0
    PERIPHERAL = 1 << 1
    IO = 1 << 2
    REMOTE = 1 << 3


@unique
class LastNetwork(IntEnum):
    """The last network id used when pairing. Values 1 to 250 are ids."""

    NONE = 0
    LOCKED = 251
    NOT_LOCKED = 252
    RSSI = 253
    DISABLE_HW_NET = 254
    DONT_CARE = 255

    @classmethod
    def _missing_(cls, value):
        if value <= cls.NONE or value >= cls.LOCKED:
            return None
        return _create_pseudo_member_(cls, value)


@unique
class Status(IntFlag):
    """Connection request status flags from advertising data."""

    PERIPHERAL = 0x01
    CENTRAL = 0x02
    REQUEST_WINDOW = 0x20
    REQUEST_CONNECT = 0x40


@unique
class BatteryKind(IntEnum):
    NORMAL = 0x00
    RECHARGEABLE = 0x01


@unique
class MessageKind(IntEnum):
    """
    The message type byte that follows the common header.
    """

    HUB_PROPERTY = 0x01
    HUB_ACTION = 0x02
    HUB_ALERT = 0x03
    HUB_ATTACHED_IO = 0x04
    ERROR = 0x05
    HW_NET_CMD = 0x08

    PORT_INFO_REQ = 0x21
    PORT_MODE_INFO_REQ = 0x22
    PORT_INPUT_FMT_SETUP = 0x41
    PORT_INPUT_FMT_SETUP_COMBO = 0x42
    PORT_INFO = 0x43
    PORT_MODE_INFO = 0x44
    PORT_VALUE = 0x45
    PORT_VALUE_COMBO = 0x46
    PORT_INPUT_FMT = 0x47
    PORT_INPUT_FMT_COMBO = 0x48
    VIRTUAL_PORT_SETUP = 0x61
    PORT_OUTPUT_CMD = 0x81
    PORT_OUTPUT_CMD_FEEDBACK = 0x82


@unique
class HubProperty(IntEnum):
    """Properties used in :attr:`MessageKind.HUB_PROPERTY` messages."""

    NAME = 0x01
    BUTTON = 0x02
    FW_VERSION = 0x03
    HW_VERSION = 0x04
    RSSI = 0x05
    BATTERY_VOLTAGE = 0x06
    """Battery level in percent."""
    BATTERY_KIND = 0x07
    MFG_NAME = 0x08
    RADIO_FW_VERSION = 0x09
    LWP_VERSION = 0x0A
    HUB_KIND = 0x0B
    HW_NET_ID = 0x0C
    BDADDR = 0x0D
    BOOTLOADER_BDADDR = 0x0E
    HW_NET_FAMILY = 0x0F
    VOLUME = 0x12


@unique
class HubPropertyOperation(IntEnum):
    SET = 0x01
    ENABLE_UPDATES = 0x02
    DISABLE_UPDATES = 0x03
    RESET = 0x04
    REQUEST_UPDATE = 0x05
    UPDATE = 0x06


@unique
class HubAction(IntEnum):
    """
    Hub actions. Values below 0x30 are sent to the hub, the rest are
    notifications from the hub.
    """

    POWER_OFF = 0x01
    DISCONNECT = 0x02
    PORT_VCC_ON = 0x03
    PORT_VCC_OFF = 0x04
    SET_BUSY = 0x05
    RESET_BUSY = 0x06
    FAST_POWER_OFF = 0x2F

    WILL_POWER_OFF = 0x30
    WILL_DISCONNECT = 0x31
    WILL_UPDATE = 0x32


@unique
class AlertKind(IntEnum):
    LOW_VOLTAGE = 0x01
    HIGH_CURRENT = 0x02
    LOW_SIGNAL = 0x03
    OVER_POWER = 0x04


@unique
class AlertOperation(IntEnum):
    ENABLE_UPDATES = 0x01
    DISABLE_UPDATES = 0x02
    REQUEST_UPDATE = 0x03
    UPDATE = 0x04


@unique
class AlertStatus(IntEnum):
    OK = 0x00
    ALERT = 0xFF


@unique
class PortID(IntEnum):
    """
    An I/O port number.

    0 to 49 are external ports and 50 to 100 are internal ports. Only the
    lettered external ports are named, the other members are created on
    demand. Values above 100 are reserved.
    """

    A = 0
    B = 1
    C = 2
    D = 3

    @property
    def internal(self) -> bool:
        return 50 <= self <= 100

    @classmethod
    def _missing_(cls, value):
        if value < 0 or value > 100:
            return None
        return _create_pseudo_member_(cls, value)


@unique
class IOEvent(IntEnum):
    DETACHED = 0x00
    ATTACHED = 0x01
    ATTACHED_VIRTUAL = 0x02


@unique
class IODeviceKind(IntEnum):
    """
    The kind of device attached to a port.

    Unknown 16-bit values are accepted so that new or home-made devices do not
    break the session.
    """

    NONE = 0x00
    MEDIUM_MOTOR = 0x01
    TRAIN_MOTOR = 0x02
    TURN = 0x03
    POWER = 0x04
    TOUCH = 0x05
    LMOTOR = 0x06
    XMOTOR = 0x07
    LIGHTS = 0x08
    LIGHT1 = 0x09
    LIGHT2 = 0x0A
    TPOINT = 0x0B
    EXPLOD = 0x0C
    THREE_PART = 0x0D
    UART = 0x0E
    HUB_BATTERY_VOLTAGE = 0x14
    HUB_BATTERY_CURRENT = 0x15
    HUB_PIEZO = 0x16
    HUB_STATUS_LIGHT = 0x17
    EV3_COLOR_SENSOR = 0x1D
    EV3_ULTRASONIC_SENSOR = 0x1E
    EV3_GYRO_SENSOR = 0x20
    EV3_IR_SENSOR = 0x21
    WEDO_TILT_SENSOR = 0x22
    WEDO_MOTION_SENSOR = 0x23
    WEDO_GENERIC = 0x24
    BOOST_COLOR_DISTANCE_SENSOR = 0x25
    BOOST_INTERACTIVE_MOTOR = 0x26
    BOOST_HUB_MOTOR = 0x27
    BOOST_HUB_ACCEL = 0x28
    DUPLO_TRAIN_MOTOR = 0x29
    DUPLO_TRAIN_BEEPER = 0x2A
    DUPLO_TRAIN_COLOR_SENSOR = 0x2B
    DUPLO_TRAIN_SPEED = 0x2C
    TECHNIC_LARGE_MOTOR = 0x2E
    TECHNIC_XL_MOTOR = 0x2F
    SPIKE_MEDIUM_MOTOR = 0x30
    SPIKE_LARGE_MOTOR = 0x31
    HUB_IMU_GESTURE = 0x36
    REMOTE_BUTTONS = 0x37
    HUB_RSSI = 0x38
    HUB_IMU_ACCEL = 0x39
    HUB_IMU_GYRO = 0x3A
    HUB_IMU_ORIENTATION = 0x3B
    HUB_IMU_TEMPERATURE = 0x3C
    SPIKE_COLOR_SENSOR = 0x3D
    SPIKE_ULTRASONIC_SENSOR = 0x3E
    SPIKE_FORCE_SENSOR = 0x3F
    TECHNIC_MEDIUM_ANGULAR_MOTOR = 0x4B
    TECHNIC_LARGE_ANGULAR_MOTOR = 0x4C

    @classmethod
    def _missing_(cls, value):
        if value < 0 or value > 0xFFFF:
            return None
        return _create_pseudo_member_(cls, value)


@unique
class ErrorCode(IntEnum):
    ACK = 0x01
    NACK = 0x02
    BUFFER_OVERFLOW = 0x03
    TIMEOUT = 0x04
    UNKNOWN_COMMAND = 0x05
    INVALID = 0x06
    OVER_CURRENT = 0x07
    INTERNAL_ERROR = 0x08


@unique
class HwNetCmd(IntEnum):
    """
    Hardware network (hub-to-hub) commands.

    Their payloads are passed through without interpretation.
    """

    CONNECTION_REQUEST = 0x02
    FAMILY_REQUEST = 0x03
    FAMILY_SET = 0x04
    JOIN_DENIED = 0x05
    GET_FAMILY = 0x06
    FAMILY = 0x07
    GET_SUBFAMILY = 0x08
    SUBFAMILY = 0x09
    SUBFAMILY_SET = 0x0A
    GET_EXTENDED_FAMILY = 0x0B
    EXTENDED_FAMILY = 0x0C
    EXTENDED_FAMILY_SET = 0x0D
    RESET_LONG_PRESS = 0x0E


@unique
class InfoKind(IntEnum):
    """Information requested with a port information request."""

    PORT_VALUE = 0x00
    MODE_INFO = 0x01
    COMBOS = 0x02


@unique
class ModeInfoKind(IntEnum):
    """Information requested with a port mode information request."""

    NAME = 0x00
    RAW = 0x01
    PCT = 0x02
    SI = 0x03
    SYMBOL = 0x04
    MAPPING = 0x05
    MOTOR_BIAS = 0x07
    CAPABILITIES = 0x08
    FORMAT = 0x80


@unique
class ComboSetupCommand(IntEnum):
    """Sub-commands of :attr:`MessageKind.PORT_INPUT_FMT_SETUP_COMBO`."""

    SET = 0x01
    LOCK = 0x02
    UNLOCK_ENABLED = 0x03
    UNLOCK_DISABLED = 0x04
    RESET = 0x06


@unique
class ModeCapabilities(IntFlag):
    OUTPUT = 1 << 0
    INPUT = 1 << 1
    LOGICAL_COMBINABLE = 1 << 2
    LOGICAL_SYNCHRONIZABLE = 1 << 3


class IODeviceMapping(IntFlag):
    NONE = 0
    DISCRETE = 1 << 2
    RELATIVE = 1 << 3
    ABSOLUTE = 1 << 4
    SUPPORTS_MAPPING_V2 = 1 << 6
    SUPPORTS_NULL = 1 << 7


@unique
class DataFormat(IntEnum):
    """How each dataset of a mode value is encoded."""

    DATA8 = 0x00
    """8-bit signed integer."""

    DATA16 = 0x01
    """16-bit signed integer, little-endian."""

    DATA32 = 0x02
    """32-bit signed integer, little-endian."""

    DATAF = 0x03
    """32-bit floating point, little-endian."""

    @property
    def size(self) -> int:
        """Size of one dataset in bytes."""
        return (1, 2, 4, 4)[self]

    @property
    def struct_code(self) -> str:
        """The :mod:`struct` format character for one dataset."""
        return "bhif"[self]


@unique
class VirtualPortSetupCommand(IntEnum):
    DISCONNECT = 0x00
    CONNECT = 0x01


@unique
class PortOutputCommand(IntEnum):
    """Port output sub-commands. Members ending in ``_2`` drive two motors."""

    START_POWER = 0x01
    START_POWER_2 = 0x02
    SET_ACC_TIME = 0x05
    SET_DEC_TIME = 0x06
    START_SPEED = 0x07
    START_SPEED_2 = 0x08
    START_SPEED_FOR_TIME = 0x09
    START_SPEED_FOR_TIME_2 = 0x0A
    START_SPEED_FOR_DEGREES = 0x0B
    START_SPEED_FOR_DEGREES_2 = 0x0C
    GOTO_ABS_POS = 0x0D
    GOTO_ABS_POS_2 = 0x0E
    PRESET_ENCODER_2 = 0x14
    WRITE_DIRECT = 0x50
    WRITE_DIRECT_MODE_DATA = 0x51


@unique
class StartInfo(IntEnum):
    BUFFER = 0x00
    IMMEDIATE = 0x10


@unique
class EndInfo(IntEnum):
    NO_ACTION = 0x00
    FEEDBACK = 0x01


@unique
class Feedback(IntFlag):
    BUFFER_EMPTY_IN_PROGRESS = 1 << 0
    BUFFER_EMPTY_COMPLETED = 1 << 1
    DISCARDED = 1 << 2
    IDLE = 1 << 3
    BUSY = 1 << 4


@unique
class EndState(IntEnum):
    """What a motor does once a timed or positioned command completes."""

    FLOAT = 0
    HOLD = 126
    BRAKE = 127


class Profile(IntFlag):
    """Selects the acceleration/deceleration profiles used by a command."""

    NONE = 0
    ACCELERATION = 1 << 0
    DECELERATION = 1 << 1


class Power(IntEnum):
    """Special values for the power parameter of start power commands."""

    FLOAT = 0
    BRAKE = 127


@unique
class Color(IntEnum):
    """Color numbers understood by the hub status light."""

    BLACK = 0
    PINK = 1
    PURPLE = 2
    BLUE = 3
    LIGHT_BLUE = 4
    CYAN = 5
    GREEN = 6
    YELLOW = 7
    ORANGE = 8
    RED = 9
    WHITE = 10
    NONE = 255


@unique
class StatusLightMode(IntEnum):
    """Modes of :attr:`IODeviceKind.HUB_STATUS_LIGHT`."""

    COLOR = 0
    RGB = 1
