"""Offer/answer rendezvous through the signaling directory.

The host publishes its offer and polls for an answer; the guest reads the
offer, answers once and then waits on its own link. Only the host ever polls
and only the guest ever writes an answer, so a room sees at most one answer.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import suppress
from enum import StrEnum
from typing import Callable, Optional

from .config import MAX_POLL_ATTEMPTS, POLL_INTERVAL_SECONDS
from .directory import SignalingDirectory, SignalingRoom, normalize_code
from .errors import (
    DirectoryError,
    HandshakeError,
    RoomNotFoundError,
    SignalingCancelled,
    SignalingError,
)
from .peer import PeerLink

logger = logging.getLogger(__name__)


class Role(StrEnum):
    HOST = "host"
    GUEST = "guest"
    NONE = "none"


def _ignore_failure(reason: str) -> None:
    pass


def _ignore_answer() -> None:
    pass


class SignalingClient:
    """Drives one rendezvous for one :class:`PeerLink`.

    ``on_answer`` fires when the host has seen the guest's answer and handed
    it to the link. ``on_failure`` fires with a human-readable reason when
    polling gives up or the answer cannot be applied.
    """

    def __init__(
        self,
        directory: SignalingDirectory,
        link: PeerLink,
        client_id: Optional[str] = None,
        poll_interval: float = POLL_INTERVAL_SECONDS,
        max_poll_attempts: int = MAX_POLL_ATTEMPTS,
        on_answer: Callable[[], None] = _ignore_answer,
        on_failure: Callable[[str], None] = _ignore_failure,
    ) -> None:
        self.directory = directory
        self.link = link
        self.client_id = client_id
        self.poll_interval = poll_interval
        self.max_poll_attempts = max_poll_attempts
        self.on_answer = on_answer
        self.on_failure = on_failure
        self.role = Role.NONE
        self.join_code: Optional[str] = None
        self._active = False
        self._answered = False
        self._poll_task: Optional[asyncio.Task[None]] = None

    @property
    def is_polling(self) -> bool:
        return self._poll_task is not None and not self._poll_task.done()

    async def host_session(self, room_name: str) -> str:
        """Publish an offer for ``room_name`` and start polling for the answer."""

        self._active = True
        offer = await self.link.connect_as_initiator()
        self._ensure_active()

        try:
            code = await self.directory.create_room(
                room_name, offer, owner=self.client_id
            )
        except DirectoryError as exc:
            self._active = False
            await self.link.close()
            raise SignalingError("failed to create room") from exc

        if not self._active:
            # Torn down while the write was in flight
            await self._delete_room(code)
            raise SignalingCancelled("session left before the room was published")

        self.role = Role.HOST
        self.join_code = code
        logger.info("Hosting room %s; polling for an answer", code)
        self._poll_task = asyncio.create_task(self._poll_for_answer(code))
        return code

    async def join_session(self, join_code: str) -> None:
        """Answer the offer stored under ``join_code``."""

        code = normalize_code(join_code)
        self._active = True
        try:
            room = await self.directory.find_room(code)
        except DirectoryError as exc:
            self._active = False
            raise SignalingError("failed to look up room") from exc
        self._ensure_active()

        if room is None or room.offer is None:
            self._active = False
            raise RoomNotFoundError("room not found")

        answer = await self.link.connect_as_responder(room.offer)
        self._ensure_active()

        if self._answered:
            raise SignalingError("room already answered by this client")
        self._answered = True
        if not await self.directory.update_answer(code, answer):
            self._active = False
            await self.link.close()
            raise SignalingError("failed to publish answer")
        self._ensure_active()

        self.role = Role.GUEST
        self.join_code = code
        logger.info("Answered room %s; waiting for the data channel", code)

    async def leave_session(self) -> None:
        """Stop polling and, as host, remove the room (best-effort)."""

        self._active = False
        task, self._poll_task = self._poll_task, None
        if task is not None and task is not asyncio.current_task():
            task.cancel()
            with suppress(asyncio.CancelledError):
                await task

        if self.role is Role.HOST and self.join_code:
            await self._delete_room(self.join_code)
        self.role = Role.NONE
        self.join_code = None

    # ---- internals ----

    def _ensure_active(self) -> None:
        if not self._active:
            raise SignalingCancelled("session left during signaling")

    async def _delete_room(self, code: str) -> None:
        try:
            await self.directory.delete_room(code)
        except DirectoryError as exc:
            # The TTL sweep reclaims it eventually
            logger.warning("Error deleting room %s: %s", code, exc)

    async def _poll_for_answer(self, code: str) -> None:
        for attempt in range(1, self.max_poll_attempts + 1):
            await asyncio.sleep(self.poll_interval)
            if not self._active:
                return
            try:
                room: Optional[SignalingRoom] = await self.directory.find_room(code)
            except DirectoryError as exc:
                logger.warning("Poll %d for room %s failed: %s", attempt, code, exc)
                continue
            if not self._active:
                return

            if room is None:
                self._fail(f"room {code} expired or was deleted")
                return
            if room.answer is None:
                continue

            logger.info("Answer for room %s received after %d poll(s)", code, attempt)
            try:
                await self.link.complete_handshake(room.answer)
            except HandshakeError as exc:
                self._fail(f"handshake failed: {exc}")
                return
            if self._active:
                self.on_answer()
            return

        self._fail(f"no answer after {self.max_poll_attempts} attempts")

    def _fail(self, reason: str) -> None:
        logger.warning("Signaling for room %s failed: %s", self.join_code, reason)
        self._active = False
        self.on_failure(reason)
