"""Shared fixtures: an in-process stand-in for aiortc peer connections."""

from __future__ import annotations

import asyncio
import itertools
from collections import defaultdict
from typing import Callable, Dict, List, Optional

import pytest
from aiortc import RTCSessionDescription
from aiortc.exceptions import InvalidStateError

from row3.config import Settings
from row3.directory import InMemorySignalingDirectory
from row3.peer import PeerLink

_ids = itertools.count(1)


class FakeEmitter:
    def __init__(self) -> None:
        self._handlers: Dict[str, List[Callable[..., None]]] = defaultdict(list)

    def on(self, event: str) -> Callable[[Callable[..., None]], Callable[..., None]]:
        def decorator(fn: Callable[..., None]) -> Callable[..., None]:
            self._handlers[event].append(fn)
            return fn

        return decorator

    def emit(self, event: str, *args: object) -> None:
        for fn in list(self._handlers[event]):
            fn(*args)


class FakeChannel(FakeEmitter):
    """Ordered channel; delivery to the peer happens on the next loop turn."""

    def __init__(self, label: str) -> None:
        super().__init__()
        self.label = label
        self.readyState = "connecting"
        self.peer: Optional["FakeChannel"] = None
        self.sent: List[str] = []

    def send(self, data: str) -> None:
        if self.readyState != "open":
            raise InvalidStateError("channel not open")
        self.sent.append(data)
        if self.peer is not None:
            asyncio.get_running_loop().call_soon(self.peer._deliver, data)

    def close(self) -> None:
        if self.readyState == "closed":
            return
        self.readyState = "closed"
        self.emit("close")
        if self.peer is not None:
            asyncio.get_running_loop().call_soon(self.peer._remote_closed)

    def _open(self) -> None:
        self.readyState = "open"
        self.emit("open")

    def _deliver(self, data: str) -> None:
        if self.readyState == "open":
            self.emit("message", data)

    def _remote_closed(self) -> None:
        if self.readyState != "closed":
            self.readyState = "closed"
            self.emit("close")


class FakePeerConnection(FakeEmitter):
    def __init__(self, network: "FakeNetwork") -> None:
        super().__init__()
        self.network = network
        self.id = next(_ids)
        self.connectionState = "new"
        self.localDescription: Optional[RTCSessionDescription] = None
        self.remoteDescription: Optional[RTCSessionDescription] = None
        self.channel: Optional[FakeChannel] = None
        self.remote: Optional["FakePeerConnection"] = None

    def createDataChannel(self, label: str, ordered: bool = True) -> FakeChannel:
        self.channel = FakeChannel(label)
        return self.channel

    async def createOffer(self) -> RTCSessionDescription:
        return RTCSessionDescription(sdp=f"v=0 fake-offer {self.id}", type="offer")

    async def createAnswer(self) -> RTCSessionDescription:
        if self.remoteDescription is None:
            raise InvalidStateError("no remote offer")
        return RTCSessionDescription(sdp=f"v=0 fake-answer {self.id}", type="answer")

    async def setLocalDescription(self, description: RTCSessionDescription) -> None:
        self.localDescription = description
        self.network.descriptions[description.sdp] = self

    async def setRemoteDescription(self, description: RTCSessionDescription) -> None:
        other = self.network.descriptions.get(description.sdp)
        if other is None:
            raise ValueError("unknown session description")
        self.remoteDescription = description
        self.remote = other
        if description.type == "offer":
            self._set_state("connecting")
        else:
            self._set_state("connecting")
            asyncio.get_running_loop().call_soon(self._connect)

    async def close(self) -> None:
        if self.channel is not None:
            self.channel.close()
        self._set_state("closed")

    def fail(self) -> None:
        self._set_state("failed")

    def _connect(self) -> None:
        peer = self.remote
        if self.connectionState == "closed" or peer is None or self.channel is None:
            return
        theirs = FakeChannel(self.channel.label)
        self.channel.peer, theirs.peer = theirs, self.channel
        peer.channel = theirs
        for pc in (self, peer):
            pc._set_state("connected")
        peer.emit("datachannel", theirs)
        self.channel._open()
        theirs._open()

    def _set_state(self, state: str) -> None:
        if self.connectionState == state:
            return
        self.connectionState = state
        self.emit("connectionstatechange")


class FakeNetwork:
    def __init__(self) -> None:
        self.descriptions: Dict[str, FakePeerConnection] = {}
        self.connections: List[FakePeerConnection] = []

    def create_connection(self) -> FakePeerConnection:
        pc = FakePeerConnection(self)
        self.connections.append(pc)
        return pc


@pytest.fixture
def anyio_backend() -> str:
    """aiortc is asyncio-only."""

    return "asyncio"


@pytest.fixture
def network() -> FakeNetwork:
    return FakeNetwork()


@pytest.fixture
def make_link(network: FakeNetwork) -> Callable[[], PeerLink]:
    def factory() -> PeerLink:
        return PeerLink(gather_grace=0.0, connection_factory=network.create_connection)

    return factory


@pytest.fixture
def directory() -> InMemorySignalingDirectory:
    return InMemorySignalingDirectory()


@pytest.fixture
def settings() -> Settings:
    return Settings(
        poll_interval=0.01,
        max_poll_attempts=20,
        ice_gather_grace=0.0,
        client_id="test-client",
    )


@pytest.fixture
def wait_until():
    async def _wait(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not predicate():
            if loop.time() > deadline:
                raise AssertionError("condition not reached in time")
            await asyncio.sleep(0.005)

    return _wait


@pytest.fixture
def settle():
    async def _settle(turns: int = 10) -> None:
        for _ in range(turns):
            await asyncio.sleep(0)

    return _settle
