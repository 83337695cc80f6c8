"""Session lifecycle for offline and peer-to-peer games.

:class:`PeerSession` owns the game state, the single :class:`PeerLink` of a
multiplayer session and the :class:`SignalingClient` that sets it up. Every
event (user action, link state change, inbound message, signaling outcome)
is handled to completion on the event loop, so no locking is needed.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import StrEnum
from functools import partial
from typing import Callable, List, Optional, Set, Tuple

from pydantic import BaseModel, Field

from . import protocol
from .config import Settings
from .directory import SignalingDirectory
from .errors import HandshakeError, SignalingCancelled, SignalingError
from .game import BOARD_SIZE, FIRST_MARK, GameState, Mark, O, X
from .peer import LinkState, PeerLink
from .signaling import Role, SignalingClient

logger = logging.getLogger(__name__)

LinkFactory = Callable[[], PeerLink]


class GameMode(StrEnum):
    OFFLINE = "offline"
    MULTIPLAYER = "multiplayer"


class SessionStatus(StrEnum):
    WAITING = "waiting"
    CONNECTING = "connecting"
    PLAYING = "playing"
    FINISHED = "finished"


class ConnectionState(StrEnum):
    DISCONNECTED = "disconnected"
    NEGOTIATING = "negotiating"
    CONNECTED = "connected"


class Sender(StrEnum):
    YOU = "You"
    PEER = "Peer"
    SYSTEM = "System"


@dataclass(frozen=True)
class ChatEntry:
    sender: Sender
    text: str


class SessionSnapshot(BaseModel):
    """Persistable part of a session; chat and live connection state are not kept."""

    mode: Optional[GameMode] = None
    role: Role = Role.NONE
    local_mark: Optional[Mark] = None
    status: SessionStatus = SessionStatus.WAITING
    board: List[Optional[Mark]] = Field(
        default_factory=lambda: [None] * BOARD_SIZE,
        min_length=BOARD_SIZE,
        max_length=BOARD_SIZE,
    )
    current_mark: Mark = FIRST_MARK
    winner: Optional[str] = None
    room_code: Optional[str] = None


class PeerSession:
    def __init__(
        self,
        directory: SignalingDirectory,
        settings: Optional[Settings] = None,
        link_factory: Optional[LinkFactory] = None,
    ) -> None:
        self.directory = directory
        self.settings = settings or Settings()
        self._link_factory = link_factory or self._default_link
        self.game = GameState()
        self.mode: Optional[GameMode] = None
        self.role = Role.NONE
        self.local_mark: Optional[Mark] = None
        self.status = SessionStatus.WAITING
        self.connection_state = ConnectionState.DISCONNECTED
        self.room_code: Optional[str] = None
        self.chat_log: List[ChatEntry] = []
        self.link: Optional[PeerLink] = None
        self.signaling: Optional[SignalingClient] = None
        self._unsubscribers: List[Callable[[], None]] = []
        self._pending_teardowns: Set[asyncio.Task[None]] = set()

    # ---- read-only views ----

    @property
    def board(self) -> Tuple[Optional[Mark], ...]:
        return self.game.board

    @property
    def current_mark(self) -> Mark:
        return self.game.current_mark

    @property
    def winner(self) -> Optional[str]:
        return self.game.winner

    @property
    def in_room(self) -> bool:
        return self.link is not None or self.room_code is not None

    # ---- user actions ----

    def select_mode(self, mode: GameMode) -> bool:
        if self.in_room:
            logger.warning("Leave the current room before switching mode")
            return False
        self._reset_state()
        self.mode = mode
        if mode is GameMode.OFFLINE:
            self.status = SessionStatus.PLAYING
        return True

    async def create_room(self, name: str) -> Optional[str]:
        """Host a new room; returns its join code, or None on failure."""

        if not self._can_start_rendezvous():
            return None
        self.role, self.local_mark = Role.HOST, X
        signaling = self._start_link()
        try:
            code = await signaling.host_session(name)
        except SignalingCancelled:
            return None
        except (SignalingError, HandshakeError) as exc:
            if signaling is self.signaling:
                await self._abort(f"Failed to create room: {exc}")
            return None

        if signaling is not self.signaling:
            return None
        self.room_code = code
        self._system(f"Room {code} created. Waiting for a peer to join.")
        return code

    async def join_room(self, join_code: str) -> bool:
        if not self._can_start_rendezvous():
            return False
        self.role, self.local_mark = Role.GUEST, O
        signaling = self._start_link()
        try:
            await signaling.join_session(join_code)
        except SignalingCancelled:
            return False
        except (SignalingError, HandshakeError) as exc:
            if signaling is self.signaling:
                await self._abort(f"Failed to join room: {exc}")
            return False

        if signaling is not self.signaling:
            return False
        self.room_code = signaling.join_code
        if self.status is SessionStatus.CONNECTING:
            self._system(f"Joined room {self.room_code}. Connecting to host...")
        return True

    async def leave_room(self) -> None:
        if not self.in_room:
            return
        await self._teardown()
        self._clear_room()
        self.status = SessionStatus.WAITING
        self._system("You left the room.")

    async def quit(self) -> None:
        if self.in_room:
            await self._teardown()
        if self._pending_teardowns:
            await asyncio.gather(*self._pending_teardowns)
        self._reset_state()

    def make_move(self, cell_index: int) -> bool:
        if self.status is not SessionStatus.PLAYING:
            return False
        if self.mode is GameMode.OFFLINE:
            return self._play(cell_index)
        if self.mode is not GameMode.MULTIPLAYER or self.link is None:
            return False
        if self.connection_state is not ConnectionState.CONNECTED:
            return False
        if self.local_mark != self.game.current_mark:
            logger.debug("Not our turn; %s is to move", self.game.current_mark)
            return False
        if not self._play(cell_index):
            return False
        self.link.send(protocol.move(cell_index))
        return True

    def reset_game(self) -> bool:
        if self.mode is GameMode.OFFLINE:
            self._restart()
            return True
        if (
            self.link is None
            or self.connection_state is not ConnectionState.CONNECTED
            or self.status not in (SessionStatus.PLAYING, SessionStatus.FINISHED)
        ):
            return False
        self._restart()
        self.link.send(protocol.reset())
        self._system("You started a new game.")
        return True

    def send_chat(self, text: str) -> bool:
        if self.link is None or not text.strip():
            return False
        # Appended before the send; there is no acknowledgement
        self.chat_log.append(ChatEntry(Sender.YOU, text))
        return self.link.send(protocol.chat(text))

    # ---- inbound messages (protocol.MessageHandler) ----

    def on_move(self, message: protocol.MoveMessage) -> None:
        if self.status is not SessionStatus.PLAYING:
            logger.debug("Ignoring peer move while %s", self.status)
            return
        if self.game.current_mark == self.local_mark:
            logger.debug("Ignoring peer move played out of turn")
            return
        if not self._play(message.payload.cell_index):
            logger.debug("Ignoring invalid peer move %d", message.payload.cell_index)

    def on_reset(self, message: protocol.ResetMessage) -> None:
        if self.status not in (SessionStatus.PLAYING, SessionStatus.FINISHED):
            logger.debug("Ignoring peer reset while %s", self.status)
            return
        self._restart()
        self._system("Peer started a new game.")

    def on_chat(self, message: protocol.ChatMessage) -> None:
        self.chat_log.append(ChatEntry(Sender.PEER, message.payload.text))

    def on_disconnect(self, message: protocol.DisconnectMessage) -> None:
        if self.connection_state is ConnectionState.DISCONNECTED:
            return
        self.connection_state = ConnectionState.DISCONNECTED
        reason = f" ({message.payload.reason})" if message.payload.reason else ""
        self._system(f"Peer disconnected{reason}.")

    def on_unknown(self, message: protocol.UnknownMessage) -> None:
        logger.warning("Ignoring unknown message kind %r", message.kind)

    # ---- persistence ----

    def snapshot(self) -> SessionSnapshot:
        return SessionSnapshot(
            mode=self.mode,
            role=self.role,
            local_mark=self.local_mark,
            status=self.status,
            board=list(self.game.board),
            current_mark=self.game.current_mark,
            winner=self.game.winner,
            room_code=self.room_code,
        )

    @classmethod
    def restore(
        cls,
        snapshot: SessionSnapshot,
        directory: SignalingDirectory,
        settings: Optional[Settings] = None,
        link_factory: Optional[LinkFactory] = None,
    ) -> "PeerSession":
        session = cls(directory, settings=settings, link_factory=link_factory)
        session.mode = snapshot.mode
        session.role = snapshot.role
        session.local_mark = snapshot.local_mark
        session.status = snapshot.status
        session.game = GameState(
            board=tuple(snapshot.board),
            current_mark=snapshot.current_mark,
            winner=snapshot.winner,
        )
        session.room_code = snapshot.room_code
        return session

    # ---- link and signaling events ----

    def _on_link_state(self, link: PeerLink, state: LinkState) -> None:
        if link is not self.link:
            return
        if state is LinkState.NEGOTIATING:
            self.connection_state = ConnectionState.NEGOTIATING
        elif state is LinkState.CONNECTED:
            self.connection_state = ConnectionState.CONNECTED
            self._system("Connected to peer.")
            if self.status is SessionStatus.CONNECTING:
                self.game.reset()
                self.status = SessionStatus.PLAYING
        elif state in (LinkState.DISCONNECTED, LinkState.FAILED):
            if self.status is SessionStatus.CONNECTING:
                self._handshake_failed("Connection failed before the game started.")
            elif self.connection_state is not ConnectionState.DISCONNECTED:
                self.connection_state = ConnectionState.DISCONNECTED
                if state is LinkState.FAILED:
                    self._system("Connection to peer failed.")
                else:
                    self._system("Connection to peer lost.")

    def _on_link_message(self, link: PeerLink, raw: str) -> None:
        if link is not self.link:
            return
        protocol.dispatch(raw, self)

    def _on_answer(self, link: PeerLink) -> None:
        if link is not self.link:
            return
        self._system("Peer answered. Establishing connection...")

    def _on_signaling_failure(self, link: PeerLink, reason: str) -> None:
        if link is not self.link:
            return
        self._handshake_failed(f"Connection failed: {reason}.")

    # ---- internals ----

    def _default_link(self) -> PeerLink:
        return PeerLink(
            ice_servers=self.settings.ice_servers,
            gather_grace=self.settings.ice_gather_grace,
        )

    def _can_start_rendezvous(self) -> bool:
        if self.mode is not GameMode.MULTIPLAYER:
            logger.warning("Rooms are only available in multiplayer mode")
            return False
        if self.status is not SessionStatus.WAITING or self.in_room:
            logger.warning("Cannot start a new room while %s", self.status)
            return False
        return True

    def _start_link(self) -> SignalingClient:
        link = self._link_factory()
        signaling = SignalingClient(
            self.directory,
            link,
            client_id=self.settings.client_id,
            poll_interval=self.settings.poll_interval,
            max_poll_attempts=self.settings.max_poll_attempts,
            on_answer=partial(self._on_answer, link),
            on_failure=partial(self._on_signaling_failure, link),
        )
        self._unsubscribers = [
            link.subscribe(partial(self._on_link_state, link)),
            link.on_message(partial(self._on_link_message, link)),
        ]
        self.link, self.signaling = link, signaling
        self.status = SessionStatus.CONNECTING
        self.connection_state = ConnectionState.NEGOTIATING
        return signaling

    def _play(self, cell_index: int) -> bool:
        finished = self.status is SessionStatus.FINISHED
        if not self.game.play(cell_index, finished=finished):
            return False
        if self.game.is_over:
            self.status = SessionStatus.FINISHED
        return True

    def _restart(self) -> None:
        self.game.reset()
        self.status = SessionStatus.PLAYING

    def _system(self, text: str) -> None:
        logger.info(text)
        self.chat_log.append(ChatEntry(Sender.SYSTEM, text))

    def _clear_room(self) -> None:
        self.room_code = None
        self.role = Role.NONE
        self.local_mark = None
        self.connection_state = ConnectionState.DISCONNECTED

    def _reset_state(self) -> None:
        self.game = GameState()
        self.mode = None
        self._clear_room()
        self.status = SessionStatus.WAITING
        self.chat_log = []

    def _detach(self) -> Tuple[Optional[PeerLink], Optional[SignalingClient]]:
        link, signaling = self.link, self.signaling
        self.link = self.signaling = None
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []
        return link, signaling

    async def _shutdown(
        self, link: Optional[PeerLink], signaling: Optional[SignalingClient]
    ) -> None:
        if signaling is not None:
            await signaling.leave_session()
        if link is not None:
            await link.close()

    async def _teardown(self) -> None:
        await self._shutdown(*self._detach())

    async def _abort(self, text: str) -> None:
        await self._teardown()
        self._clear_room()
        self.status = SessionStatus.WAITING
        self._system(text)

    def _handshake_failed(self, text: str) -> None:
        # Called from synchronous callbacks; the async teardown runs as a task
        link, signaling = self._detach()
        self._clear_room()
        self.status = SessionStatus.WAITING
        self._system(text)
        task = asyncio.get_running_loop().create_task(self._shutdown(link, signaling))
        self._pending_teardowns.add(task)
        task.add_done_callback(self._pending_teardowns.discard)
