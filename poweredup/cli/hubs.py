# SPDX-License-Identifier: MIT
# Copyright (c) 2023 The Pybricks Authors

"""
Implementations of the command line tools that connect to a hub.
"""

import asyncio
import logging
import re
import sys
from typing import Optional

from poweredup.ble import HubFilter, connect, find_hub, find_hubs
from poweredup.devices import DeviceFamily
from poweredup.errors import DeviceNotFoundError
from poweredup.hub import Hub
from poweredup.lwp3.bytecodes import Color, IODeviceKind
from poweredup.registry import PortRecord, VirtualPortRecord

logger = logging.getLogger(__name__)

_MOTOR_FAMILIES = (DeviceFamily.MOTOR, DeviceFamily.TACHO_MOTOR)

# Bluetooth address or the UUID used instead on Apple platforms
_ADDRESS = re.compile(
    r"^([0-9A-F]{2}:){5}[0-9A-F]{2}$|^[0-9A-F]{8}(-[0-9A-F]{4}){3}-[0-9A-F]{12}$",
    re.IGNORECASE,
)


def hub_filter(name: Optional[str]) -> HubFilter:
    """
    Creates a filter from a command line argument that can be either a hub
    name or a Bluetooth address.
    """
    if name is None:
        return HubFilter()

    if _ADDRESS.match(name):
        return HubFilter(address=name)

    return HubFilter(name=name)


async def _connect(name: Optional[str], timeout: float) -> Hub:
    print(f"Searching for {name or 'any hub'}...")

    try:
        discovered = await find_hub(hub_filter(name), timeout)
    except asyncio.TimeoutError:
        print("Hub not found.", file=sys.stderr)
        sys.exit(1)

    print(f"Connecting to {discovered.kind.name} {discovered.name!r}...")

    return await connect(discovered)


async def scan(timeout: float) -> None:
    """Prints the hubs that are advertising."""
    print(f"Scanning for {timeout} seconds...")

    hubs = await find_hubs(timeout=timeout)

    if not hubs:
        print("No hubs found.")
        return

    for hub in hubs:
        print(f"{hub.address:40}{hub.kind.name:16}{hub.name or ''}")


def format_record(record: PortRecord) -> str:
    """Formats the information about one device as a table."""
    lines = [f"port {record.port}: {record.kind.name}"]

    if isinstance(record, VirtualPortRecord):
        lines[0] += f" (virtual, ports {record.port_a} and {record.port_b})"
    elif record.hw_ver is not None:
        lines[0] += f" hw {record.hw_ver} fw {record.fw_ver}"

    for m, info in sorted(record.modes.items()):
        direction = "".join(
            [
                "I" if m in record.input_modes else "-",
                "O" if m in record.output_modes else "-",
            ]
        )
        fmt = info.value_format
        fmt_text = f"{fmt.datasets} x {fmt.format.name}" if fmt else "?"
        lines.append(
            f"  {m:2} {direction} {info.name or '?':12}{info.symbol or '':6}{fmt_text}"
        )

    if record.combos:
        lines.append(f"  combos: {record.combos}")

    return "\n".join(lines)


async def list_devices(name: Optional[str], timeout: float, wait: float) -> None:
    """Connects to a hub and prints the attached devices."""
    hub = await _connect(name, timeout)

    try:
        # devices are reported right after connecting
        await asyncio.sleep(wait)

        print(f"{hub.properties.name!r} {hub.properties.hub_kind!r}")
        print(
            f"firmware {hub.properties.fw_version} "
            f"hardware {hub.properties.hw_version} "
            f"battery {hub.properties.battery_level}%"
        )

        async with hub.lock:
            for record in hub.devices:
                if not record.ready:
                    logger.warning("port %d is still negotiating", record.port)

                print(format_record(record))
    finally:
        await hub.disconnect()


async def monitor(
    name: Optional[str], timeout: float, port: int, mode: int, delta: int
) -> None:
    """Prints the values of one mode of a device until the hub disconnects."""
    hub = await _connect(name, timeout)

    try:
        device = await hub.wait_for_device(port, timeout)
        info = device.record.mode(mode)

        print(f"Monitoring {info.name} ({info.symbol}) on port {port}...")

        with await device.subscribe_values(mode, delta) as values:
            async for value in values:
                print(*value)
    finally:
        await hub.disconnect()


async def motor_test(name: Optional[str], timeout: float, speed: int) -> None:
    """Sets the status light to green and runs each motor for a moment."""
    hub = await _connect(name, timeout)

    try:
        try:
            light = await hub.wait_for_device(IODeviceKind.HUB_STATUS_LIGHT, timeout)
        except asyncio.TimeoutError:
            print("Hub has no status light.")
        else:
            print("Setting status light...")
            await light.set_color(Color.GREEN)
            await asyncio.sleep(1)

        motors = [
            hub.device(r.port)
            for r in hub.devices
            if not isinstance(r, VirtualPortRecord)
        ]
        motors = [m for m in motors if m.family in _MOTOR_FAMILIES]

        if not motors:
            raise DeviceNotFoundError("no motors are attached")

        for motor in motors:
            print(f"Running {motor.kind.name} on port {motor.port}...")
            await motor.start_speed(speed)
            await asyncio.sleep(2)
            await motor.float()
            await asyncio.sleep(1)

        print("Done!")
    finally:
        await hub.disconnect()
