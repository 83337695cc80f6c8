"""Point-to-point WebRTC link carrying one ordered, reliable data channel."""

from __future__ import annotations

import asyncio
import logging
from enum import StrEnum
from typing import Any, Callable, List, Optional, Sequence

from aiortc import (
    RTCConfiguration,
    RTCIceServer,
    RTCPeerConnection,
    RTCSessionDescription,
)
from aiortc.exceptions import InvalidStateError
from pydantic import BaseModel

from . import protocol
from .config import DEFAULT_ICE_SERVERS, ICE_GATHER_GRACE_SECONDS
from .directory import SessionDescription
from .errors import HandshakeError

logger = logging.getLogger(__name__)

CHANNEL_LABEL = "gameData"
CLOSE_REASON = "peer left"

StateListener = Callable[["LinkState"], None]
MessageListener = Callable[[str], None]


class LinkState(StrEnum):
    NEW = "new"
    NEGOTIATING = "negotiating"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    FAILED = "failed"


# aiortc connection states; "connected" is only reported once the channel opens
_CONNECTION_STATES = {
    "new": LinkState.NEW,
    "connecting": LinkState.NEGOTIATING,
    "disconnected": LinkState.DISCONNECTED,
    "closed": LinkState.DISCONNECTED,
    "failed": LinkState.FAILED,
}


def _to_rtc(description: SessionDescription) -> RTCSessionDescription:
    try:
        return RTCSessionDescription(sdp=description.sdp, type=description.type)
    except ValueError as exc:
        raise HandshakeError(f"Unusable description: {exc}") from exc


class PeerLink:
    """One peer connection plus its ``gameData`` channel.

    State changes are published to subscribers as coarse :class:`LinkState`
    values; inbound channel payloads go to message listeners untouched.
    """

    def __init__(
        self,
        ice_servers: Sequence[str] = DEFAULT_ICE_SERVERS,
        gather_grace: float = ICE_GATHER_GRACE_SECONDS,
        connection_factory: Optional[Callable[[], Any]] = None,
    ) -> None:
        self.ice_servers = tuple(ice_servers)
        self.gather_grace = gather_grace
        self._connection_factory = connection_factory or self._build_connection
        self._pc: Optional[Any] = None
        self._channel: Optional[Any] = None
        self._initiator = False
        self._closed = False
        self._state = LinkState.NEW
        self._state_listeners: List[StateListener] = []
        self._message_listeners: List[MessageListener] = []

    # ---- observation ----

    @property
    def state(self) -> LinkState:
        return self._state

    @property
    def is_open(self) -> bool:
        return self._channel is not None and self._channel.readyState == "open"

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        self._state_listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._state_listeners:
                self._state_listeners.remove(listener)

        return unsubscribe

    def on_message(self, listener: MessageListener) -> Callable[[], None]:
        self._message_listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._message_listeners:
                self._message_listeners.remove(listener)

        return unsubscribe

    # ---- handshake ----

    async def connect_as_initiator(self) -> SessionDescription:
        pc = self._open_connection()
        self._initiator = True
        self._bind_channel(pc.createDataChannel(CHANNEL_LABEL, ordered=True))
        self._set_state(LinkState.NEGOTIATING)

        try:
            await pc.setLocalDescription(await pc.createOffer())
        except Exception as exc:
            raise HandshakeError(f"Error creating peer connection: {exc}") from exc
        # No trickle ICE: give candidate gathering a moment before publishing
        await asyncio.sleep(self.gather_grace)
        return self._local_description()

    async def connect_as_responder(
        self, remote_offer: SessionDescription
    ) -> SessionDescription:
        pc = self._open_connection()
        self._initiator = False

        @pc.on("datachannel")
        def on_datachannel(channel: Any) -> None:
            self._bind_channel(channel)

        self._set_state(LinkState.NEGOTIATING)
        offer = _to_rtc(remote_offer)
        try:
            await pc.setRemoteDescription(offer)
            await pc.setLocalDescription(await pc.createAnswer())
        except Exception as exc:
            # Remote SDP is untrusted; aiortc rejects it with assorted errors
            raise HandshakeError(f"Error joining peer connection: {exc}") from exc
        return self._local_description()

    async def complete_handshake(self, remote_answer: SessionDescription) -> None:
        if self._pc is None or not self._initiator:
            raise HandshakeError("Only the initiating side can complete a handshake")
        if self._closed:
            raise HandshakeError("Link already closed")
        answer = _to_rtc(remote_answer)
        try:
            await self._pc.setRemoteDescription(answer)
        except Exception as exc:
            raise HandshakeError(f"Error completing connection: {exc}") from exc

    # ---- traffic ----

    def send(self, message: BaseModel) -> bool:
        if not self.is_open:
            logger.error(
                "Cannot send %s message, data channel is not open",
                getattr(message, "kind", type(message).__name__),
            )
            return False
        try:
            self._channel.send(protocol.encode(message))
        except InvalidStateError as exc:
            logger.error("Error sending message: %s", exc)
            return False
        return True

    async def close(self) -> None:
        if self._closed:
            return
        if self.is_open:
            self.send(protocol.disconnect(CLOSE_REASON))
        self._closed = True
        self._state_listeners.clear()
        self._message_listeners.clear()
        if self._channel is not None:
            self._channel.close()
        if self._pc is not None:
            await self._pc.close()
        self._state = LinkState.DISCONNECTED

    # ---- internals ----

    def _build_connection(self) -> RTCPeerConnection:
        servers = [RTCIceServer(urls=list(self.ice_servers))] if self.ice_servers else []
        return RTCPeerConnection(RTCConfiguration(iceServers=servers))

    def _open_connection(self) -> Any:
        if self._pc is not None:
            raise HandshakeError("Link already has a connection")
        if self._closed:
            raise HandshakeError("Link already closed")
        pc = self._connection_factory()
        self._pc = pc

        @pc.on("connectionstatechange")
        def on_connectionstatechange() -> None:
            state = _CONNECTION_STATES.get(pc.connectionState)
            if state is not None:
                self._set_state(state)

        return pc

    def _bind_channel(self, channel: Any) -> None:
        self._channel = channel

        @channel.on("open")
        def on_open() -> None:
            logger.info("Data channel is open")
            self._set_state(LinkState.CONNECTED)

        @channel.on("close")
        def on_close() -> None:
            logger.info("Data channel is closed")
            self._set_state(LinkState.DISCONNECTED)

        @channel.on("message")
        def on_message(data: Any) -> None:
            if isinstance(data, bytes):
                data = data.decode("utf-8", errors="replace")
            for listener in list(self._message_listeners):
                listener(data)

        # The responder can be handed a channel that is already open
        if channel.readyState == "open":
            self._set_state(LinkState.CONNECTED)

    def _local_description(self) -> SessionDescription:
        local = self._pc.localDescription if self._pc is not None else None
        if local is None:
            raise HandshakeError("No local description was produced")
        return SessionDescription(type=local.type, sdp=local.sdp)

    def _set_state(self, state: LinkState) -> None:
        if self._closed or state == self._state:
            return
        # A failed link stays failed until closed
        if self._state == LinkState.FAILED:
            return
        logger.debug("Link state %s -> %s", self._state, state)
        self._state = state
        for listener in list(self._state_listeners):
            listener(state)
