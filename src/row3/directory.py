"""Signaling directory: the rendezvous store for handshake offers and answers.

Two implementations of :class:`SignalingDirectory` live here. The in-memory
one backs the FastAPI service in :mod:`row3.server` and the tests; the HTTP
one is what clients use to talk to that service.
"""

from __future__ import annotations

import logging
import secrets
import string
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional, Protocol

import httpx
from pydantic import BaseModel, ConfigDict, Field

from .config import ROOM_TTL_SECONDS
from .errors import DirectoryError

logger = logging.getLogger(__name__)

ROOM_CODE_PREFIX = "R3"
ROOM_CODE_SUFFIX_LENGTH = 4
ROOM_CODE_ALPHABET = string.ascii_uppercase + string.digits
MAX_CODE_ATTEMPTS = 10

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def generate_room_code() -> str:
    suffix = "".join(
        secrets.choice(ROOM_CODE_ALPHABET) for _ in range(ROOM_CODE_SUFFIX_LENGTH)
    )
    return ROOM_CODE_PREFIX + suffix


def normalize_code(code: str) -> str:
    return code.strip().upper()


class SessionDescription(BaseModel):
    """Opaque handshake description; only ever transported, never inspected."""

    type: str
    sdp: str


class SignalingRoom(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    code: str
    name: str
    offer: Optional[SessionDescription]
    answer: Optional[SessionDescription] = None
    created_at: datetime = Field(alias="createdAt")
    expires_at: datetime = Field(alias="expiresAt")
    owner: Optional[str] = None

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at


class SignalingDirectory(Protocol):
    async def create_room(
        self, name: str, offer: SessionDescription, owner: Optional[str] = None
    ) -> str:
        """Publish an offer and return the join code allocated for it."""
        ...

    async def find_room(self, code: str) -> Optional[SignalingRoom]:
        """Look up a live room; expired rooms are reported absent."""
        ...

    async def update_answer(self, code: str, answer: SessionDescription) -> bool:
        """Attach the guest's answer to a room."""
        ...

    async def delete_room(self, code: str) -> bool:
        ...

    async def sweep_expired(self) -> int:
        """Delete every expired room and return how many were removed."""
        ...


class InMemorySignalingDirectory:
    """Dict-backed directory with TTL expiry."""

    def __init__(
        self,
        ttl: timedelta = timedelta(seconds=ROOM_TTL_SECONDS),
        clock: Clock = utc_now,
        code_factory: Callable[[], str] = generate_room_code,
    ) -> None:
        self.ttl = ttl
        self.clock = clock
        self.code_factory = code_factory
        self.rooms: Dict[str, SignalingRoom] = {}

    def __len__(self) -> int:
        return len(self.rooms)

    async def create_room(
        self, name: str, offer: SessionDescription, owner: Optional[str] = None
    ) -> str:
        for _ in range(MAX_CODE_ATTEMPTS):
            code = normalize_code(self.code_factory())
            if code not in self.rooms:
                break
        else:
            raise DirectoryError("Unable to allocate room code")

        now = self.clock()
        self.rooms[code] = SignalingRoom(
            code=code,
            name=name,
            offer=offer,
            created_at=now,
            expires_at=now + self.ttl,
            owner=owner,
        )
        logger.info("Created room %s (%s)", code, name)
        return code

    async def find_room(self, code: str) -> Optional[SignalingRoom]:
        code = normalize_code(code)
        room = self.rooms.get(code)
        if room is None:
            return None
        if room.is_expired(self.clock()):
            self.rooms.pop(code, None)
            logger.info("Deleted expired room %s", code)
            return None
        return room.model_copy()

    async def update_answer(self, code: str, answer: SessionDescription) -> bool:
        code = normalize_code(code)
        room = await self.find_room(code)
        if room is None:
            return False
        if room.answer is not None:
            logger.warning("Room %s already has an answer; ignoring second write", code)
            return False
        self.rooms[code] = room.model_copy(update={"answer": answer})
        return True

    async def delete_room(self, code: str) -> bool:
        return self.rooms.pop(normalize_code(code), None) is not None

    async def sweep_expired(self) -> int:
        now = self.clock()
        expired: List[str] = [
            code for code, room in list(self.rooms.items()) if room.is_expired(now)
        ]
        for code in expired:
            self.rooms.pop(code, None)
        if expired:
            logger.info("Swept %d expired room(s)", len(expired))
        return len(expired)


class HTTPSignalingDirectory:
    """Client for the REST directory exposed by :mod:`row3.server`."""

    def __init__(
        self,
        base_url: str,
        client: Optional[httpx.AsyncClient] = None,
        clock: Clock = utc_now,
        timeout: float = 10.0,
    ) -> None:
        self.clock = clock
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def create_room(
        self, name: str, offer: SessionDescription, owner: Optional[str] = None
    ) -> str:
        body = {"name": name, "offer": offer.model_dump(), "owner": owner}
        try:
            response = await self._client.post("/api/rooms", json=body)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise DirectoryError(f"Error creating room: {exc}") from exc
        return _parse_room(response).code

    async def find_room(self, code: str) -> Optional[SignalingRoom]:
        code = normalize_code(code)
        try:
            response = await self._client.get(f"/api/rooms/{code}")
            if response.status_code == 404:
                return None
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise DirectoryError(f"Error finding room: {exc}") from exc

        room = _parse_room(response)
        if room.is_expired(self.clock()):
            # Server sweep may lag behind; clean up on its behalf
            try:
                await self.delete_room(code)
            except DirectoryError as exc:
                logger.warning("Error deleting expired room %s: %s", code, exc)
            return None
        return room

    async def update_answer(self, code: str, answer: SessionDescription) -> bool:
        code = normalize_code(code)
        try:
            response = await self._client.put(
                f"/api/rooms/{code}/answer", json={"answer": answer.model_dump()}
            )
        except httpx.HTTPError as exc:
            logger.warning("Error updating room %s with answer: %s", code, exc)
            return False
        if response.status_code != 200:
            logger.warning(
                "Directory refused answer for room %s (HTTP %s)",
                code,
                response.status_code,
            )
            return False
        return True

    async def delete_room(self, code: str) -> bool:
        code = normalize_code(code)
        try:
            response = await self._client.delete(f"/api/rooms/{code}")
        except httpx.HTTPError as exc:
            raise DirectoryError(f"Error deleting room: {exc}") from exc
        return response.status_code == 204

    async def sweep_expired(self) -> int:
        try:
            response = await self._client.post("/api/rooms/sweep")
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise DirectoryError(f"Error sweeping rooms: {exc}") from exc
        try:
            return int(response.json()["removed"])
        except (ValueError, KeyError, TypeError) as exc:
            raise DirectoryError(f"Malformed sweep response: {exc}") from exc


def _parse_room(response: httpx.Response) -> SignalingRoom:
    # JSONDecodeError and pydantic's ValidationError are both ValueErrors
    try:
        return SignalingRoom.model_validate(response.json())
    except ValueError as exc:
        raise DirectoryError(f"Malformed room in directory response: {exc}") from exc
