# SPDX-License-Identifier: MIT
# Copyright (c) 2023 The Pybricks Authors

"""
Handles for driving the devices attached to a hub.

A :class:`Device` is bound to one port. Commands that every port understands
(mode selection, direct writes, value subscriptions) are available on all
handles. Commands for a specific kind of device are only valid for the
matching :class:`DeviceFamily` and raise :class:`.UnsupportedCommandError`
without sending anything otherwise.
"""

import enum
import struct
from typing import TYPE_CHECKING, Dict, List, Optional, Tuple, Union

from .channels import ChannelReceiver
from .errors import UnsupportedCommandError
from .lwp3.bytecodes import (
    Color,
    EndState,
    IODeviceKind,
    Power,
    Profile,
    StatusLightMode,
)
from .lwp3.messages import (
    AbstractMessage,
    PortFormatSetupComboLockMessage,
    PortFormatSetupComboMessage,
    PortFormatSetupComboUnlockEnabledMessage,
    PortInputFormatSetupMessage,
    PortOutputCommandGotoAbsolutePositionMessage,
    PortOutputCommandSetAccTimeMessage,
    PortOutputCommandSetDecTimeMessage,
    PortOutputCommandStartSpeedForDegreesMessage,
    PortOutputCommandStartSpeedForTimeMessage,
    PortOutputCommandStartSpeedMessage,
    PortOutputCommandWriteDirectModeDataMessage,
    PortValueComboMessage,
    PortValueMessage,
)
from .registry import PortRecord, ValueFormat

if TYPE_CHECKING:
    from .hub import Hub


class DeviceFamily(enum.Enum):
    """Groups of device kinds that accept the same commands."""

    MOTOR = enum.auto()
    """Motors without a position sensor."""

    TACHO_MOTOR = enum.auto()
    """Motors with a position sensor."""

    STATUS_LIGHT = enum.auto()
    """The RGB light built into a hub."""

    LIGHT = enum.auto()
    REMOTE_BUTTONS = enum.auto()
    SENSOR = enum.auto()

    OTHER = enum.auto()
    """Unknown device kinds. Only the generic port commands apply."""


_K = IODeviceKind

_DEVICE_FAMILIES = {
    DeviceFamily.MOTOR: (
        _K.MEDIUM_MOTOR,
        _K.TRAIN_MOTOR,
        _K.DUPLO_TRAIN_MOTOR,
    ),
    DeviceFamily.TACHO_MOTOR: (
        _K.BOOST_INTERACTIVE_MOTOR,
        _K.BOOST_HUB_MOTOR,
        _K.TECHNIC_LARGE_MOTOR,
        _K.TECHNIC_XL_MOTOR,
        _K.SPIKE_MEDIUM_MOTOR,
        _K.SPIKE_LARGE_MOTOR,
        _K.TECHNIC_MEDIUM_ANGULAR_MOTOR,
        _K.TECHNIC_LARGE_ANGULAR_MOTOR,
    ),
    DeviceFamily.STATUS_LIGHT: (_K.HUB_STATUS_LIGHT,),
    DeviceFamily.LIGHT: (_K.LIGHTS,),
    DeviceFamily.REMOTE_BUTTONS: (_K.REMOTE_BUTTONS,),
    DeviceFamily.SENSOR: (
        _K.TOUCH,
        _K.HUB_BATTERY_VOLTAGE,
        _K.HUB_BATTERY_CURRENT,
        _K.EV3_COLOR_SENSOR,
        _K.EV3_ULTRASONIC_SENSOR,
        _K.EV3_GYRO_SENSOR,
        _K.EV3_IR_SENSOR,
        _K.WEDO_TILT_SENSOR,
        _K.WEDO_MOTION_SENSOR,
        _K.BOOST_COLOR_DISTANCE_SENSOR,
        _K.BOOST_HUB_ACCEL,
        _K.DUPLO_TRAIN_COLOR_SENSOR,
        _K.DUPLO_TRAIN_SPEED,
        _K.HUB_IMU_GESTURE,
        _K.HUB_RSSI,
        _K.HUB_IMU_ACCEL,
        _K.HUB_IMU_GYRO,
        _K.HUB_IMU_ORIENTATION,
        _K.HUB_IMU_TEMPERATURE,
        _K.SPIKE_COLOR_SENSOR,
        _K.SPIKE_ULTRASONIC_SENSOR,
        _K.SPIKE_FORCE_SENSOR,
    ),
}

_FAMILY_MAP = {k: f for f, kinds in _DEVICE_FAMILIES.items() for k in kinds}

del _K

_MOTORS = (DeviceFamily.MOTOR, DeviceFamily.TACHO_MOTOR)


def device_family(kind: IODeviceKind) -> DeviceFamily:
    """Gets the family of a device kind."""
    return _FAMILY_MAP.get(kind, DeviceFamily.OTHER)


Value = Tuple[Union[int, float], ...]
"""The datasets of one value sample."""

# mode numbers used with write direct mode data
_MOTOR_POWER_MODE = 0
_MOTOR_PRESET_MODE = 2
_LIGHT_BRIGHTNESS_MODE = 0


class Device:
    """
    Handle for the device attached to one port of a hub.

    Get one from :meth:`.Hub.device` or :meth:`.Hub.wait_for_device`.
    Handles are cheap and can be copied. They do not take the hub lock, so
    commands to different ports never wait on each other.
    """

    def __init__(self, hub: "Hub", record: PortRecord) -> None:
        self.port = record.port
        self.kind = record.kind
        self.family = device_family(record.kind)
        self.record = record

        self._transport = hub.transport
        self._channels = hub.channels
        self._response = hub.config.write_with_response
        self._logger = hub.logger

    def _require(self, command: str, *families: DeviceFamily) -> None:
        if self.family not in families:
            raise UnsupportedCommandError(command, self.kind)

    async def send(self, msg: AbstractMessage) -> None:
        """
        Sends a message to the hub.

        Raises:
            HubDisconnectedError: The hub is no longer connected.
        """
        self._logger.debug("sending %r", msg)
        await self._transport.write(bytes(msg), self._response)

    async def set_port_mode(
        self, mode: int, delta: int = 1, notify: bool = False
    ) -> None:
        """Selects the mode of the port and enables or disables notifications."""
        await self.send(PortInputFormatSetupMessage(self.port, mode, delta, notify))

    async def write_direct_mode_data(self, mode: int, fmt: str, *values) -> None:
        """
        Writes values to a mode of the device.

        Args:
            mode: The mode.
            fmt: :mod:`struct` format of ``values``.
            values: The values.
        """
        data = struct.pack(fmt, *values)
        await self.send(
            PortOutputCommandWriteDirectModeDataMessage(self.port, mode, data)
        )

    async def subscribe_values(
        self,
        mode: int,
        delta: int = 1,
        value_format: Optional[ValueFormat] = None,
    ) -> ChannelReceiver:
        """
        Selects ``mode``, enables value notifications and returns a receiver
        for the decoded values.

        Args:
            mode: The mode.
            delta: Minimum change in value that triggers a notification.
            value_format: How values are encoded. Defaults to the format
                reported by the device.

        Returns:
            A new receiver. Close it to stop receiving. Notifications stay
            enabled on the hub.

        Raises:
            DeviceNotFoundError: ``value_format`` is not given and the
                device has not reported the format of ``mode`` yet.
            HubDisconnectedError: The hub is no longer connected.
        """
        if value_format is None:
            value_format = self.record.value_format(mode)

        fmt = value_format.struct_format
        port = self.port

        def is_for_port(msg: PortValueMessage) -> bool:
            return msg.port == port

        def decode(msg: PortValueMessage) -> Value:
            return msg.unpack(fmt)

        receiver = self._channels.port_value.subscribe(is_for_port, decode)

        try:
            await self.set_port_mode(mode, delta, notify=True)
        except BaseException:
            receiver.close()
            raise

        return receiver

    async def subscribe_combined(
        self, modes_and_datasets: List[Tuple[int, int]], delta: int = 1
    ) -> ChannelReceiver:
        """
        Sets up combined mode so that the hub reports the values of several
        modes in one notification.

        Args:
            modes_and_datasets: ``(mode, dataset)`` pairs to report.
            delta: Minimum change in value that triggers a notification.

        Returns:
            A new receiver that yields a dictionary of mode to datasets.

        Raises:
            ValueError: The device cannot report these modes together.
            DeviceNotFoundError: The device has not reported the format of
                one of the modes yet.
            HubDisconnectedError: The hub is no longer connected.
        """
        pairs = list(modes_and_datasets)
        modes = sorted({m for m, _ in pairs})

        for combo, combo_modes in enumerate(self.record.combos or []):
            if set(modes) <= set(combo_modes):
                break
        else:
            raise ValueError(f"modes {modes} of port {self.port} cannot be combined")

        formats = {m: self.record.value_format(m).format for m in modes}
        port = self.port

        def is_for_port(msg: PortValueComboMessage) -> bool:
            return msg.port == port

        def decode(msg: PortValueComboMessage) -> Dict[int, Value]:
            values: Dict[int, List[Union[int, float]]] = {}
            offset = 0

            for pointer in msg.pointers:
                if pointer >= len(pairs):
                    raise ValueError(f"unexpected combined value pointer {pointer}")

                mode, _ = pairs[pointer]
                fmt = formats[mode]
                (value,) = struct.unpack_from(f"<{fmt.struct_code}", msg.data, offset)
                offset += fmt.size
                values.setdefault(mode, []).append(value)

            return {m: tuple(v) for m, v in values.items()}

        receiver = self._channels.port_value_combo.subscribe(is_for_port, decode)

        try:
            await self.send(PortFormatSetupComboLockMessage(self.port))
            await self.send(PortFormatSetupComboMessage(self.port, combo, pairs))

            for mode in modes:
                await self.set_port_mode(mode, delta, notify=True)

            await self.send(PortFormatSetupComboUnlockEnabledMessage(self.port))
        except BaseException:
            receiver.close()
            raise

        return receiver

    # motors

    async def start_power(self, power: int) -> None:
        """
        Sets the motor power in percent (-100 to 100).

        Use :attr:`.Power.BRAKE` to brake.
        """
        self._require("start_power", *_MOTORS)

        if power != Power.BRAKE and not -100 <= power <= 100:
            raise ValueError("power must be in range -100 to 100")

        await self.write_direct_mode_data(_MOTOR_POWER_MODE, "<b", power)

    async def start_speed(
        self, speed: int, max_power: int = 100, profile: Profile = Profile.NONE
    ) -> None:
        """Runs the motor at ``speed`` percent (-100 to 100)."""
        self._require("start_speed", *_MOTORS)
        await self.send(
            PortOutputCommandStartSpeedMessage(self.port, speed, max_power, profile)
        )

    async def brake(self) -> None:
        """Stops the motor actively."""
        self._require("brake", *_MOTORS)
        await self.start_power(Power.BRAKE)

    # tacho motors

    async def start_speed_for_time(
        self,
        time: int,
        speed: int,
        max_power: int = 100,
        end_state: EndState = EndState.BRAKE,
        profile: Profile = Profile.NONE,
    ) -> None:
        """Runs the motor for ``time`` milliseconds."""
        self._require("start_speed_for_time", DeviceFamily.TACHO_MOTOR)
        await self.send(
            PortOutputCommandStartSpeedForTimeMessage(
                self.port, time, speed, max_power, end_state, profile
            )
        )

    async def start_speed_for_degrees(
        self,
        degrees: int,
        speed: int,
        max_power: int = 100,
        end_state: EndState = EndState.BRAKE,
        profile: Profile = Profile.NONE,
    ) -> None:
        """
        Runs the motor for ``degrees`` of rotation. Negative ``degrees``
        reverse the direction.
        """
        self._require("start_speed_for_degrees", DeviceFamily.TACHO_MOTOR)

        if degrees < 0:
            degrees, speed = -degrees, -speed

        await self.send(
            PortOutputCommandStartSpeedForDegreesMessage(
                self.port, degrees, speed, max_power, end_state, profile
            )
        )

    async def goto_absolute_position(
        self,
        position: int,
        speed: int,
        max_power: int = 100,
        end_state: EndState = EndState.BRAKE,
        profile: Profile = Profile.NONE,
    ) -> None:
        self._require("goto_absolute_position", DeviceFamily.TACHO_MOTOR)
        await self.send(
            PortOutputCommandGotoAbsolutePositionMessage(
                self.port, position, speed, max_power, end_state, profile
            )
        )

    async def preset_encoder(self, position: int = 0) -> None:
        """Sets the current position of the motor to ``position`` degrees."""
        self._require("preset_encoder", DeviceFamily.TACHO_MOTOR)
        await self.write_direct_mode_data(_MOTOR_PRESET_MODE, "<i", position)

    async def set_acc_time(self, time: int, profile_no: int = 0) -> None:
        self._require("set_acc_time", DeviceFamily.TACHO_MOTOR)
        await self.send(PortOutputCommandSetAccTimeMessage(self.port, time, profile_no))

    async def set_dec_time(self, time: int, profile_no: int = 0) -> None:
        self._require("set_dec_time", DeviceFamily.TACHO_MOTOR)
        await self.send(PortOutputCommandSetDecTimeMessage(self.port, time, profile_no))

    # lights

    async def set_color(self, color: Color) -> None:
        """Sets the hub status light to one of the predefined colors."""
        self._require("set_color", DeviceFamily.STATUS_LIGHT)
        color = Color(color)
        await self.set_port_mode(StatusLightMode.COLOR)
        await self.write_direct_mode_data(StatusLightMode.COLOR, "<B", color)

    async def set_rgb(self, red: int, green: int, blue: int) -> None:
        """Sets the hub status light to any color (0 to 255 per channel)."""
        self._require("set_rgb", DeviceFamily.STATUS_LIGHT)
        await self.set_port_mode(StatusLightMode.RGB)
        await self.write_direct_mode_data(
            StatusLightMode.RGB, "<BBB", red, green, blue
        )

    async def set_brightness(self, brightness: int) -> None:
        """Sets the brightness of a light in percent (0 to 100)."""
        self._require("set_brightness", DeviceFamily.LIGHT)

        if not 0 <= brightness <= 100:
            raise ValueError("brightness must be in range 0 to 100")

        await self.write_direct_mode_data(_LIGHT_BRIGHTNESS_MODE, "<b", brightness)

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} {self.kind!r} on port {self.port}>"

    async def float(self) -> None:
        """Lets the motor spin freely."""
        self._require("float", *_MOTORS)
        await self.start_power(Power.FLOAT)
