# SPDX-License-Identifier: MIT
# Copyright (c) 2023 The Pybricks Authors

"""
Records of the I/O devices attached to a hub.

A :class:`PortRecord` is created when a device is attached and is filled in
as the replies to the capability requests arrive, in whatever order the hub
sends them. All setters overwrite, so applying the same reply twice has the
same result as applying it once.
"""

import asyncio
from typing import Dict, Iterator, List, NamedTuple, Optional, Tuple

from .errors import DeviceNotFoundError
from .lwp3.bytecodes import (
    DataFormat,
    IODeviceKind,
    IODeviceMapping,
    ModeCapabilities,
    PortID,
    Version,
)
from .lwp3.messages import (
    AbstractPortModeInfoMessage,
    PortModeInfoCapabilitiesMessage,
    PortModeInfoFormatMessage,
    PortModeInfoMappingMessage,
    PortModeInfoMotorBiasMessage,
    PortModeInfoNameMessage,
    PortModeInfoPercentMessage,
    PortModeInfoRawMessage,
    PortModeInfoSIMessage,
    PortModeInfoSymbolMessage,
)


class ValueFormat(NamedTuple):
    """How the value of a mode is encoded."""

    datasets: int
    """Number of values in each sample."""

    format: DataFormat
    figures: int = 0
    decimals: int = 0

    @property
    def struct_format(self) -> str:
        """:mod:`struct` format string for one sample."""
        return f"<{self.datasets}{self.format.struct_code}"

    @property
    def size(self) -> int:
        """Size of one sample in bytes."""
        return self.datasets * self.format.size


class InputFormat(NamedTuple):
    """Input format acknowledged by the hub for a port."""

    mode: int
    delta: int
    notify: bool


class ModeInfo:
    """Metadata about one mode of a device. Fields are ``None`` until received."""

    def __init__(self, mode: int) -> None:
        self.mode = mode
        self.name: Optional[str] = None
        self.raw: Optional[Tuple[float, float]] = None
        self.pct: Optional[Tuple[float, float]] = None
        self.si: Optional[Tuple[float, float]] = None
        self.symbol: Optional[str] = None
        self.input_mapping: Optional[IODeviceMapping] = None
        self.output_mapping: Optional[IODeviceMapping] = None
        self.motor_bias: Optional[int] = None
        self.capabilities: Optional[int] = None
        self.value_format: Optional[ValueFormat] = None

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ModeInfo):
            return NotImplemented
        return vars(self) == vars(other)

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}({self.mode!r}, name={self.name!r}, "
            f"value_format={self.value_format!r})"
        )


class PortRecord:
    """Everything known about the device attached to one port."""

    def __init__(
        self,
        port: PortID,
        kind: IODeviceKind,
        hw_ver: Optional[Version] = None,
        fw_ver: Optional[Version] = None,
    ) -> None:
        self.port = port
        self.kind = kind
        self.hw_ver = hw_ver
        self.fw_ver = fw_ver
        self.capabilities = ModeCapabilities(0)
        self.num_modes: Optional[int] = None
        """Number of modes, ``None`` until the mode information reply arrives."""
        self.input_modes: List[int] = []
        self.output_modes: List[int] = []
        self.combos: Optional[List[List[int]]] = None
        self.modes: Dict[int, ModeInfo] = {}
        self.input_format: Optional[InputFormat] = None
        self._ready = asyncio.Event()

    @property
    def ready(self) -> bool:
        """
        ``True`` once the number of modes is known and every mode has both
        a name and a value format.
        """
        return self._ready.is_set()

    async def wait_ready(self) -> None:
        """Waits until :attr:`ready` is ``True``."""
        await self._ready.wait()

    def _check_ready(self) -> None:
        if self.num_modes is None:
            return

        for m in range(self.num_modes):
            info = self.modes.get(m)

            if info is None or info.name is None or info.value_format is None:
                return

        self._ready.set()

    def mode(self, mode: int) -> ModeInfo:
        """
        Gets the metadata of ``mode``.

        Raises:
            DeviceNotFoundError: Nothing has been received for ``mode``.
        """
        try:
            return self.modes[mode]
        except KeyError:
            raise DeviceNotFoundError(
                f"no information about mode {mode} of port {self.port}"
            ) from None

    def value_format(self, mode: int) -> ValueFormat:
        """
        Gets the value format of ``mode``.

        Raises:
            DeviceNotFoundError: The value format has not been received yet.
        """
        fmt = self.mode(mode).value_format

        if fmt is None:
            raise DeviceNotFoundError(
                f"value format of mode {mode} of port {self.port} is not known yet"
            )

        return fmt

    def mode_by_name(self, name: str) -> int:
        """
        Finds a mode by its name (case insensitive).

        Raises:
            DeviceNotFoundError: There is no mode with that name.
        """
        for m, info in sorted(self.modes.items()):
            if info.name is not None and info.name.lower() == name.lower():
                return m

        raise DeviceNotFoundError(f"port {self.port} has no mode named {name!r}")

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.port!r}, {self.kind!r})"


class VirtualPortRecord(PortRecord):
    """
    A virtual port that drives two physical ports together.

    The records of the physical ports stay in the registry and are looked up
    with :meth:`IODeviceRegistry.components`.
    """

    def __init__(
        self, port: PortID, kind: IODeviceKind, port_a: PortID, port_b: PortID
    ) -> None:
        super().__init__(port, kind)
        self.port_a = port_a
        self.port_b = port_b

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}({self.port!r}, {self.kind!r}, "
            f"{self.port_a!r}, {self.port_b!r})"
        )


class IODeviceRegistry:
    """
    The attached devices of one hub, keyed by port.

    Iterating yields the records in port order.
    """

    def __init__(self) -> None:
        self._records: Dict[int, PortRecord] = {}

    def __contains__(self, port: int) -> bool:
        return port in self._records

    def __iter__(self) -> Iterator[PortRecord]:
        return iter([self._records[p] for p in sorted(self._records)])

    def __len__(self) -> int:
        return len(self._records)

    def attach(
        self, port: PortID, kind: IODeviceKind, hw_ver: Version, fw_ver: Version
    ) -> PortRecord:
        """
        Creates an empty record for a newly attached device, replacing any
        previous record for ``port``.
        """
        record = PortRecord(port, kind, hw_ver, fw_ver)
        self._records[port] = record
        return record

    def attach_virtual(
        self, port: PortID, kind: IODeviceKind, port_a: PortID, port_b: PortID
    ) -> VirtualPortRecord:
        record = VirtualPortRecord(port, kind, port_a, port_b)
        self._records[port] = record
        return record

    def detach(self, port: PortID) -> Optional[PortRecord]:
        """
        Removes the record for ``port`` and the records of virtual ports that
        are made up of it.

        Returns:
            The removed record or ``None`` if there was none.
        """
        record = self._records.pop(port, None)

        if record is not None:
            for other in list(self._records.values()):
                if isinstance(other, VirtualPortRecord) and port in (
                    other.port_a,
                    other.port_b,
                ):
                    del self._records[other.port]

        return record

    def get(self, port: int) -> PortRecord:
        """
        Raises:
            DeviceNotFoundError: No device is attached to ``port``.
        """
        try:
            return self._records[port]
        except KeyError:
            raise DeviceNotFoundError(f"no device is attached to port {port}") from None

    def find(self, kind: IODeviceKind) -> PortRecord:
        """
        Gets the device of ``kind`` on the lowest numbered port.

        Raises:
            DeviceNotFoundError: No device of ``kind`` is attached.
        """
        for record in self:
            if record.kind == kind:
                return record

        raise DeviceNotFoundError(f"no {kind!r} device is attached")

    def find_all(self, kind: IODeviceKind) -> List[PortRecord]:
        return [r for r in self if r.kind == kind]

    def components(self, port: int) -> Tuple[PortRecord, PortRecord]:
        """
        Gets the records of the two physical ports of a virtual port.

        Raises:
            DeviceNotFoundError: ``port`` is not a virtual port or one of its
                physical ports is no longer attached.
        """
        record = self.get(port)

        if not isinstance(record, VirtualPortRecord):
            raise DeviceNotFoundError(f"port {port} is not a virtual port")

        return self.get(record.port_a), self.get(record.port_b)

    def set_mode_info(
        self,
        port: int,
        capabilities: ModeCapabilities,
        num_modes: int,
        input_modes: List[int],
        output_modes: List[int],
    ) -> PortRecord:
        record = self.get(port)
        record.capabilities = capabilities
        record.num_modes = num_modes
        record.input_modes = list(input_modes)
        record.output_modes = list(output_modes)
        record._check_ready()
        return record

    def set_combos(self, port: int, combos: List[List[int]]) -> PortRecord:
        record = self.get(port)
        record.combos = [list(c) for c in combos]
        return record

    def set_mode_info_reply(self, msg: AbstractPortModeInfoMessage) -> ModeInfo:
        """
        Stores the contents of any of the port mode information replies.
        """
        record = self.get(msg.port)
        info = record.modes.setdefault(msg.mode, ModeInfo(msg.mode))

        if isinstance(msg, PortModeInfoNameMessage):
            info.name = msg.name
        elif isinstance(msg, PortModeInfoRawMessage):
            info.raw = (msg.min, msg.max)
        elif isinstance(msg, PortModeInfoPercentMessage):
            info.pct = (msg.min, msg.max)
        elif isinstance(msg, PortModeInfoSIMessage):
            info.si = (msg.min, msg.max)
        elif isinstance(msg, PortModeInfoSymbolMessage):
            info.symbol = msg.symbol
        elif isinstance(msg, PortModeInfoMappingMessage):
            info.input_mapping = msg.input_mapping
            info.output_mapping = msg.output_mapping
        elif isinstance(msg, PortModeInfoMotorBiasMessage):
            info.motor_bias = msg.bias
        elif isinstance(msg, PortModeInfoCapabilitiesMessage):
            info.capabilities = msg.capabilities
        elif isinstance(msg, PortModeInfoFormatMessage):
            info.value_format = ValueFormat(
                msg.datasets, msg.format, msg.figures, msg.decimals
            )
        else:
            raise TypeError(f"unsupported message type {type(msg)}")

        record._check_ready()
        return info

    def set_input_format(
        self, port: int, mode: int, delta: int, notify: bool
    ) -> PortRecord:
        record = self.get(port)
        record.input_format = InputFormat(mode, delta, notify)
        return record
