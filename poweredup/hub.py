# SPDX-License-Identifier: MIT
# Copyright (c) 2023 The Pybricks Authors

"""
A session with one hub running the official LEGO firmware.

The session owns the record of attached devices, the topic channels that
values are published on and the dispatcher task that reads notifications
from the hub. Devices are driven through the handles returned by
:meth:`Hub.device`.
"""

import asyncio
import contextlib
import logging
from typing import List, NamedTuple, Optional, Union

from reactivex.subject import BehaviorSubject

from .channels import DEFAULT_CHANNEL_SIZE, HubChannels
from .devices import Device
from .dispatcher import NotificationDispatcher
from .errors import HubDisconnectedError
from .lwp3.bytecodes import (
    AlertKind,
    AlertOperation,
    BluetoothAddress,
    HubAction,
    HubKind,
    HubProperty,
    HubPropertyOperation,
    InfoKind,
    IODeviceKind,
    ModeInfoKind,
    Version,
)
from .lwp3.messages import (
    AbstractMessage,
    HubActionMessage,
    HubAlertDisableUpdatesMessage,
    HubAlertEnableUpdatesMessage,
    HubAlertRequestUpdateMessage,
    HubPropertyDisableUpdates,
    HubPropertyEnableUpdates,
    HubPropertyRequestUpdate,
    HubPropertyReset,
    HubPropertySet,
    PortInfoRequestMessage,
    PortInputFormatSetupMessage,
    PortModeInfoRequestMessage,
)
from .registry import IODeviceRegistry, PortRecord
from .transport import Transport

logger = logging.getLogger(__name__)

PortOrKind = Union[int, IODeviceKind]


class HubConfig(NamedTuple):
    """Options for a :class:`Hub` session."""

    channel_size: int = DEFAULT_CHANNEL_SIZE
    """Number of items buffered for each channel receiver."""

    write_with_response: bool = False
    """Use Bluetooth writes with response for all frames."""

    request_properties: bool = True
    """Request the hub name, versions, address and battery level on connect."""

    logger: Optional[logging.Logger] = None
    """Logger for the session and its dispatcher. Defaults to this module's."""


# properties requested on connect
_IDENTITY_PROPERTIES = (
    HubProperty.NAME,
    HubProperty.FW_VERSION,
    HubProperty.HW_VERSION,
    HubProperty.BDADDR,
    HubProperty.HUB_KIND,
    HubProperty.BATTERY_VOLTAGE,
    HubProperty.RSSI,
)


class HubProperties:
    """Identity of a hub. Fields are ``None`` until the hub reports them."""

    # property -> attribute
    _ATTRS = {
        HubProperty.NAME: "name",
        HubProperty.FW_VERSION: "fw_version",
        HubProperty.HW_VERSION: "hw_version",
        HubProperty.BDADDR: "address",
        HubProperty.BATTERY_VOLTAGE: "battery_level",
        HubProperty.RSSI: "rssi",
        HubProperty.HUB_KIND: "hub_kind",
    }

    def __init__(self) -> None:
        self.name: Optional[str] = None
        self.fw_version: Optional[Version] = None
        self.hw_version: Optional[Version] = None
        self.address: Optional[BluetoothAddress] = None
        self.battery_level: Optional[int] = None
        """Battery level in percent."""
        self.rssi: Optional[int] = None
        self.hub_kind: Optional[HubKind] = None

    def update(self, prop: HubProperty, value) -> bool:
        """
        Stores the value of a property.

        Returns:
            ``True`` if ``prop`` is one of the identity properties.
        """
        attr = self._ATTRS.get(prop)

        if attr is None:
            return False

        setattr(self, attr, value)
        return True

    def __repr__(self) -> str:
        fields = ", ".join(f"{k}={v!r}" for k, v in vars(self).items())
        return f"{self.__class__.__name__}({fields})"


_PROPERTY_OP_CLASS_MAP = {
    HubPropertyOperation.ENABLE_UPDATES: HubPropertyEnableUpdates,
    HubPropertyOperation.DISABLE_UPDATES: HubPropertyDisableUpdates,
    HubPropertyOperation.RESET: HubPropertyReset,
    HubPropertyOperation.REQUEST_UPDATE: HubPropertyRequestUpdate,
}

_ALERT_OP_CLASS_MAP = {
    AlertOperation.ENABLE_UPDATES: HubAlertEnableUpdatesMessage,
    AlertOperation.DISABLE_UPDATES: HubAlertDisableUpdatesMessage,
    AlertOperation.REQUEST_UPDATE: HubAlertRequestUpdateMessage,
}


class Hub:
    """
    A session with one hub.

    Example::

        async with Hub(transport) as hub:
            motor = await hub.wait_for_device(IODeviceKind.TECHNIC_LARGE_MOTOR)
            await motor.start_speed(50)

    A session can only be connected once. Create a new :class:`Hub` to
    reconnect.
    """

    def __init__(self, transport: Transport, config: HubConfig = HubConfig()) -> None:
        self.transport = transport
        self.config = config
        self.logger = config.logger or logger

        self.properties = HubProperties()
        self.devices = IODeviceRegistry()
        self.channels = HubChannels(config.channel_size)

        self.lock = asyncio.Lock()
        """Guards :attr:`properties` and :attr:`devices`."""

        # notified while holding lock whenever the registry changes
        self._devices_changed = asyncio.Condition(self.lock)
        self._dispatcher_task: Optional[asyncio.Task] = None
        self._ended = False

    @property
    def connection_state_observable(self) -> BehaviorSubject:
        return self.transport.connection_state_observable

    @property
    def connected(self) -> bool:
        return self.transport.connected and not self._ended

    async def connect(self) -> None:
        """
        Connects to the hub and starts receiving notifications.

        Raises:
            RuntimeError: The session was already used.
        """
        if self._dispatcher_task is not None:
            raise RuntimeError("a Hub session can only be connected once")

        async with contextlib.AsyncExitStack() as stack:
            await self.transport.connect()

            self._dispatcher_task = asyncio.create_task(self._run_dispatcher())
            stack.push_async_callback(self.disconnect)

            if self.config.request_properties:
                for prop in _IDENTITY_PROPERTIES:
                    await self.hub_property(prop)

            # don't unwind on success
            stack.pop_all()

    async def disconnect(self) -> None:
        """
        Disconnects from the hub and waits for the session to end.

        All channel receivers stop once their buffers are drained.
        """
        await self.transport.disconnect()

        if self._dispatcher_task is not None:
            await self._dispatcher_task

    async def __aenter__(self) -> "Hub":
        await self.connect()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.disconnect()

    async def _run_dispatcher(self) -> None:
        try:
            await NotificationDispatcher(self).run()
        finally:
            self._ended = True
            self.channels.close()

            async with self._devices_changed:
                self._devices_changed.notify_all()

            self.logger.info("session ended")

    async def send(self, msg: AbstractMessage) -> None:
        """
        Sends a message to the hub.

        Returns once the message is accepted for transmission.

        Raises:
            HubDisconnectedError: The hub is not connected.
        """
        self.logger.debug("sending %r", msg)
        await self.transport.write(bytes(msg), self.config.write_with_response)

    async def request_port_info(self, port: int, info_kind: InfoKind) -> None:
        await self.send(PortInfoRequestMessage(port, info_kind))

    async def request_mode_info(
        self, port: int, mode: int, info_kind: ModeInfoKind
    ) -> None:
        await self.send(PortModeInfoRequestMessage(port, mode, info_kind))

    async def set_port_mode(
        self, port: int, mode: int, delta: int = 1, notify: bool = False
    ) -> None:
        """
        Selects the mode of a port.

        Args:
            port: The port.
            mode: The mode.
            delta: Minimum change in value that triggers a notification.
            notify: Enables value notifications.
        """
        await self.send(PortInputFormatSetupMessage(port, mode, delta, notify))

    async def hub_property(
        self,
        prop: HubProperty,
        op: HubPropertyOperation = HubPropertyOperation.REQUEST_UPDATE,
        value=None,
    ) -> None:
        """
        Sends a hub property operation. Updates are published on
        :attr:`.HubChannels.hub_notification` and stored in
        :attr:`properties`.

        Args:
            prop: The property.
            op: The operation.
            value: The new value when ``op`` is
                :attr:`~.HubPropertyOperation.SET`.

        Raises:
            ValueError: ``op`` is not valid for ``prop`` or cannot be sent.
        """
        if op == HubPropertyOperation.SET:
            msg = HubPropertySet(prop, value)
        elif op in _PROPERTY_OP_CLASS_MAP:
            msg = _PROPERTY_OP_CLASS_MAP[op](prop)
        else:
            raise ValueError(f"cannot send {op!r}")

        await self.send(msg)

    async def hub_action(self, action: HubAction) -> None:
        await self.send(HubActionMessage(action))

    async def hub_alert(
        self,
        alert: AlertKind,
        op: AlertOperation = AlertOperation.REQUEST_UPDATE,
    ) -> None:
        try:
            cls = _ALERT_OP_CLASS_MAP[op]
        except KeyError:
            raise ValueError(f"cannot send {op!r}") from None

        await self.send(cls(alert))

    def _find_record(self, port_or_kind: PortOrKind) -> PortRecord:
        if isinstance(port_or_kind, IODeviceKind):
            return self.devices.find(port_or_kind)

        return self.devices.get(port_or_kind)

    def device(self, port_or_kind: PortOrKind) -> Device:
        """
        Gets a handle for the device on a port, or for the first device of a
        kind.

        Raises:
            DeviceNotFoundError: There is no such device.
        """
        return Device(self, self._find_record(port_or_kind))

    def devices_of_kind(self, kind: IODeviceKind) -> List[Device]:
        return [Device(self, r) for r in self.devices.find_all(kind)]

    async def wait_for_device(
        self, port_or_kind: PortOrKind, timeout: Optional[float] = None
    ) -> Device:
        """
        Waits until a device is attached and the information about all of its
        modes has been received.

        Raises:
            asyncio.TimeoutError: ``timeout`` seconds passed.
            HubDisconnectedError: The session ended while waiting.
        """

        def ready() -> Optional[PortRecord]:
            if self._ended:
                raise HubDisconnectedError("hub disconnected while waiting for device")

            try:
                record = self._find_record(port_or_kind)
            except LookupError:
                return None

            return record if record.ready else None

        async def wait() -> PortRecord:
            async with self._devices_changed:
                return await self._devices_changed.wait_for(ready)

        record = await asyncio.wait_for(wait(), timeout)
        return Device(self, record)

    def __repr__(self) -> str:
        state = self.connection_state_observable.value
        name = self.properties.name
        return f"<{self.__class__.__name__} {name!r} {state.name.lower()}>"

