"""FastAPI signaling directory used by Row3 peers to swap offers and answers."""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager, suppress
from datetime import timedelta
from typing import AsyncIterator, Dict, Optional

from fastapi import FastAPI, HTTPException, Response
from pydantic import BaseModel, Field

from .config import Settings
from .directory import InMemorySignalingDirectory, SessionDescription, SignalingRoom
from .errors import DirectoryError

logger = logging.getLogger(__name__)

SETTINGS = Settings.from_env()
DIRECTORY = InMemorySignalingDirectory(ttl=timedelta(seconds=SETTINGS.room_ttl_seconds))


async def _sweep_forever(interval: float) -> None:
    """Drop expired rooms independently of any client lifecycle."""

    while True:
        await asyncio.sleep(interval)
        await DIRECTORY.sweep_expired()


@asynccontextmanager
async def lifespan(_: FastAPI) -> AsyncIterator[None]:
    logger.info("Sweeping expired rooms every %.0fs", SETTINGS.sweep_interval)
    task = asyncio.create_task(_sweep_forever(SETTINGS.sweep_interval))
    try:
        yield
    finally:
        task.cancel()
        with suppress(asyncio.CancelledError):
            await task


app = FastAPI(
    title="Row3 signaling",
    description="Rendezvous directory for peer-to-peer tic-tac-toe",
    lifespan=lifespan,
)


class CreateRoomRequest(BaseModel):
    """Host publishes its offer under a display name."""

    name: str = Field(min_length=1, max_length=64)
    offer: SessionDescription
    owner: Optional[str] = Field(default=None, max_length=64)


class AnswerRequest(BaseModel):
    answer: SessionDescription


def _serialize_room(room: SignalingRoom) -> Dict[str, object]:
    return room.model_dump(mode="json", by_alias=True)


async def _get_room(code: str) -> SignalingRoom:
    room = await DIRECTORY.find_room(code)
    if room is None:
        raise HTTPException(status_code=404, detail="Room not found")
    return room


@app.post("/api/rooms", status_code=201)
async def create_room(request: CreateRoomRequest) -> Dict[str, object]:
    try:
        code = await DIRECTORY.create_room(
            request.name, request.offer, owner=request.owner
        )
    except DirectoryError as exc:
        raise HTTPException(status_code=500, detail="Unable to allocate room") from exc
    return _serialize_room(await _get_room(code))


@app.get("/api/rooms/{code}")
async def get_room(code: str) -> Dict[str, object]:
    return _serialize_room(await _get_room(code))


@app.put("/api/rooms/{code}/answer")
async def answer_room(code: str, request: AnswerRequest) -> Dict[str, object]:
    room = await _get_room(code)
    if room.answer is not None:
        raise HTTPException(status_code=409, detail="Room already answered")
    if not await DIRECTORY.update_answer(room.code, request.answer):
        raise HTTPException(status_code=404, detail="Room not found")
    return _serialize_room(await _get_room(room.code))


@app.delete("/api/rooms/{code}", status_code=204)
async def delete_room(code: str) -> Response:
    if not await DIRECTORY.delete_room(code):
        raise HTTPException(status_code=404, detail="Room not found")
    return Response(status_code=204)


@app.post("/api/rooms/sweep")
async def sweep_rooms() -> Dict[str, int]:
    return {"removed": await DIRECTORY.sweep_expired()}


@app.get("/healthz")
def healthz() -> Dict[str, object]:
    return {"status": "ok", "rooms": len(DIRECTORY)}
