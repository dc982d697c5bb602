"""
Shared fixtures.

Two ways to drive the control channel:
  - `link`: patches loop.create_connection with an in-memory transport so a
    test decides exactly how bytes are fragmented;
  - `sim`: a real SimReader on an ephemeral localhost port.
"""

import asyncio
import socket
from typing import List, Optional

import pytest
import pytest_asyncio

from alienbridge.config_loader import ReaderConfig
from alienbridge.tools.sim_reader import SimReader


class FakeTransport:
    def __init__(self):
        self.writes: List[bytes] = []
        self.closed = False

    def write(self, data: bytes) -> None:
        self.writes.append(data)

    def close(self) -> None:
        self.closed = True

    def is_closing(self) -> bool:
        return self.closed

    def get_extra_info(self, key, default=None):
        if key == "sockname":
            return ("192.168.1.50", 51515)
        return default


class FakeLink:
    def __init__(self):
        self.transport = FakeTransport()
        self.protocol: Optional[asyncio.Protocol] = None

    async def create_connection(self, factory):
        self.protocol = factory()
        self.protocol.connection_made(self.transport)
        return self.transport, self.protocol

    def feed(self, *chunks) -> None:
        for chunk in chunks:
            self.protocol.data_received(chunk.encode() if isinstance(chunk, str) else chunk)

    def feed_split(self, text: str, size: int) -> None:
        data = text.encode()
        for i in range(0, len(data), size):
            self.protocol.data_received(data[i:i + size])

    @property
    def written(self) -> List[str]:
        return [w.decode() for w in self.transport.writes]


@pytest.fixture
def link(monkeypatch):
    fake = FakeLink()

    async def fake_create_connection(loop, protocol_factory, host=None, port=None, **kwargs):
        return await fake.create_connection(protocol_factory)

    monkeypatch.setattr(asyncio.BaseEventLoop, "create_connection", fake_create_connection)
    return fake


async def settle(rounds: int = 5) -> None:
    for _ in range(rounds):
        await asyncio.sleep(0)


async def eventually(predicate, timeout: float = 3.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.01)


def free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


@pytest_asyncio.fixture
async def sim():
    reader = SimReader("alien", "password")
    await reader.start()
    yield reader
    await reader.stop()


@pytest.fixture
def sim_cfg(sim) -> ReaderConfig:
    return ReaderConfig(
        address="127.0.0.1",
        port=sim.port,
        name="Dock",
        antennas=("0", "1"),
        notify_port=20001,
        login_timeout_s=5.0,
        command_timeout_s=5.0,
    )
