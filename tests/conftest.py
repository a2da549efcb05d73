import asyncio
from typing import List

import pytest

from poweredup.hub import Hub, HubConfig
from poweredup.transport import Transport


class FakeTransport(Transport):
    """Transport that records writes and lets tests inject notifications."""

    def __init__(self) -> None:
        super().__init__()
        self.writes: List[bytes] = []

    async def _client_connect(self) -> None:
        pass

    async def _client_start_notify(self) -> None:
        pass

    async def _client_disconnect(self) -> None:
        self._handle_disconnect()

    async def _client_write(self, data: bytes, response: bool) -> None:
        self.writes.append(data)

    def feed(self, msg) -> None:
        """Delivers a message object or raw bytes as if received from the hub."""
        self._handle_notification(bytes(msg))

    def close(self) -> None:
        """Simulates the link being lost."""
        self._handle_disconnect()


async def _settle() -> None:
    for _ in range(10):
        await asyncio.sleep(0)


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def settle():
    """Awaitable that lets the dispatcher task handle everything fed to it."""
    return _settle


@pytest.fixture
def hub(transport: FakeTransport) -> Hub:
    return Hub(transport, HubConfig(request_properties=False))
