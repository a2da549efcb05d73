# SPDX-License-Identifier: MIT
# Copyright (c) 2023 The Pybricks Authors

"""
The task that reads all notifications from a hub.

There is exactly one :class:`NotificationDispatcher` per connected
:class:`.Hub`. It decodes each notification in the order it was received,
keeps the device registry up to date (requesting the information about newly
attached devices as it goes) and publishes everything else on the session's
topic channels.
"""

from typing import TYPE_CHECKING

from .errors import HubDisconnectedError, MalformedMessageError
from .lwp3.bytecodes import InfoKind, ModeInfoKind
from .lwp3.messages import (
    AbstractHubAlertMessage,
    AbstractHubAttachedIOMessage,
    AbstractHubPropertyMessage,
    AbstractMessage,
    AbstractPortInfoMessage,
    AbstractPortModeInfoMessage,
    ErrorMessage,
    HubActionMessage,
    HubIOAttachedMessage,
    HubIOAttachedVirtualMessage,
    HubIODetachedMessage,
    HubPropertyUpdate,
    HwNetCmdMessage,
    PortInfoCombosMessage,
    PortInfoModeInfoMessage,
    PortInputFormatComboMessage,
    PortInputFormatMessage,
    PortOutputCommandFeedbackMessage,
    PortValueComboMessage,
    PortValueMessage,
    parse_message,
)

if TYPE_CHECKING:
    from .hub import Hub

MODE_INFO_REQUEST_ORDER = (
    ModeInfoKind.NAME,
    ModeInfoKind.RAW,
    ModeInfoKind.PCT,
    ModeInfoKind.SI,
    ModeInfoKind.SYMBOL,
    ModeInfoKind.MAPPING,
    ModeInfoKind.MOTOR_BIAS,
    ModeInfoKind.FORMAT,
)
"""Information requested for each mode of a newly attached device, in order."""

# messages that change the device registry
_REGISTRY_MESSAGES = (
    AbstractHubAttachedIOMessage,
    AbstractPortInfoMessage,
    AbstractPortModeInfoMessage,
    PortInputFormatMessage,
    PortInputFormatComboMessage,
)

# messages published on the hub notification channel
_HUB_NOTIFICATION_MESSAGES = (
    AbstractHubPropertyMessage,
    HubActionMessage,
    AbstractHubAlertMessage,
    ErrorMessage,
)


class NotificationDispatcher:
    """
    Reads notifications from the transport of ``hub`` until the hub
    disconnects.
    """

    def __init__(self, hub: "Hub") -> None:
        self.hub = hub
        self.logger = hub.logger

    async def run(self) -> None:
        """Handles notifications until the transport event stream ends."""
        async for data in self.hub.transport.events():
            await self.handle(data)

        self.logger.debug("notification stream ended")

    async def handle(self, data: bytes) -> None:
        """
        Handles one raw notification.

        Errors are logged. Nothing raised while handling one notification is
        allowed to stop the dispatcher.
        """
        try:
            msg = parse_message(data)
        except MalformedMessageError as ex:
            self.logger.warning("dropping malformed message: %s", ex)
            return

        try:
            await self._dispatch(msg)
        except HubDisconnectedError as ex:
            self.logger.warning("could not finish handling %r: %s", msg, ex)
        except Exception:
            self.logger.exception("unexpected error while handling %r", msg)

    async def _dispatch(self, msg: AbstractMessage) -> None:
        channels = self.hub.channels

        if isinstance(msg, PortValueMessage):
            channels.port_value.publish(msg)
        elif isinstance(msg, PortValueComboMessage):
            channels.port_value_combo.publish(msg)
        elif isinstance(msg, HwNetCmdMessage):
            channels.network_command.publish(msg)
        elif isinstance(msg, _REGISTRY_MESSAGES):
            async with self.hub._devices_changed:
                await self._update_registry(msg)
                self.hub._devices_changed.notify_all()
        elif isinstance(msg, _HUB_NOTIFICATION_MESSAGES):
            if isinstance(msg, HubPropertyUpdate):
                async with self.hub.lock:
                    self.hub.properties.update(msg.prop, msg.value)

            channels.hub_notification.publish(msg)
        elif isinstance(msg, PortOutputCommandFeedbackMessage):
            # not used yet
            self.logger.debug("ignoring %r", msg)
        else:
            self.logger.debug("dropping unexpected %r", msg)

    async def _update_registry(self, msg: AbstractMessage) -> None:
        """Applies ``msg`` to the registry. Must be called with the lock held."""
        hub = self.hub
        devices = hub.devices

        if isinstance(msg, HubIOAttachedMessage):
            devices.attach(msg.port, msg.device, msg.hw_ver, msg.fw_ver)
            self.logger.info("%r attached to port %d", msg.device, msg.port)

            await hub.request_port_info(msg.port, InfoKind.MODE_INFO)
            await hub.request_port_info(msg.port, InfoKind.COMBOS)
            return

        if isinstance(msg, HubIOAttachedVirtualMessage):
            devices.attach_virtual(msg.port, msg.device, msg.port_a, msg.port_b)
            self.logger.info(
                "virtual port %d attached for ports %d and %d",
                msg.port,
                msg.port_a,
                msg.port_b,
            )

            await hub.request_port_info(msg.port, InfoKind.MODE_INFO)
            await hub.request_port_info(msg.port, InfoKind.COMBOS)
            return

        if isinstance(msg, HubIODetachedMessage):
            if devices.detach(msg.port) is None:
                self.logger.debug("detach for empty port %d", msg.port)
            else:
                self.logger.info("device detached from port %d", msg.port)
            return

        if msg.port not in devices:
            # late reply for a device that was detached
            self.logger.debug("discarding %r for empty port", msg)
            return

        if isinstance(msg, PortInfoModeInfoMessage):
            devices.set_mode_info(
                msg.port,
                msg.capabilities,
                msg.num_modes,
                msg.input_modes,
                msg.output_modes,
            )

            for mode in range(msg.num_modes):
                for info_kind in MODE_INFO_REQUEST_ORDER:
                    await hub.request_mode_info(msg.port, mode, info_kind)
        elif isinstance(msg, PortInfoCombosMessage):
            devices.set_combos(msg.port, msg.combos)
        elif isinstance(msg, AbstractPortModeInfoMessage):
            devices.set_mode_info_reply(msg)
        elif isinstance(msg, PortInputFormatMessage):
            devices.set_input_format(msg.port, msg.mode, msg.delta, msg.notify)
        else:
            self.logger.debug("combined input format: %r", msg)
