"""Wire messages exchanged over the peer data channel.

Every message is a JSON object ``{"kind": ..., "payload": {...}}``. The four
known kinds form a closed union discriminated on ``kind``; anything else
decodes to :class:`UnknownMessage` so newer peers can add kinds without
breaking older ones.
"""

from __future__ import annotations

import json
import logging
from typing import Annotated, Any, Dict, Literal, Protocol, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from .errors import ProtocolError

logger = logging.getLogger(__name__)


class _Payload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class MovePayload(_Payload):
    cell_index: int = Field(alias="cellIndex", ge=0, le=8, strict=True)


class ResetPayload(_Payload):
    pass


class ChatPayload(_Payload):
    text: str


class DisconnectPayload(_Payload):
    reason: str = ""


class MoveMessage(BaseModel):
    kind: Literal["move"] = "move"
    payload: MovePayload


class ResetMessage(BaseModel):
    kind: Literal["reset"] = "reset"
    payload: ResetPayload = Field(default_factory=ResetPayload)


class ChatMessage(BaseModel):
    kind: Literal["chat"] = "chat"
    payload: ChatPayload


class DisconnectMessage(BaseModel):
    kind: Literal["disconnect"] = "disconnect"
    payload: DisconnectPayload = Field(default_factory=DisconnectPayload)


class UnknownMessage(BaseModel):
    """Fallback for kinds this client does not understand."""

    kind: str
    payload: Dict[str, Any] = Field(default_factory=dict)


GameMessage = Annotated[
    Union[MoveMessage, ResetMessage, ChatMessage, DisconnectMessage],
    Field(discriminator="kind"),
]
KNOWN_KINDS = frozenset({"move", "reset", "chat", "disconnect"})

_GAME_MESSAGE = TypeAdapter(GameMessage)


def move(cell_index: int) -> MoveMessage:
    return MoveMessage(payload=MovePayload(cell_index=cell_index))


def reset() -> ResetMessage:
    return ResetMessage()


def chat(text: str) -> ChatMessage:
    return ChatMessage(payload=ChatPayload(text=text))


def disconnect(reason: str = "") -> DisconnectMessage:
    return DisconnectMessage(payload=DisconnectPayload(reason=reason))


def encode(message: BaseModel) -> str:
    return message.model_dump_json(by_alias=True)


def decode(raw: Union[str, bytes]) -> Union[
    MoveMessage, ResetMessage, ChatMessage, DisconnectMessage, UnknownMessage
]:
    """Parse a raw channel payload.

    Raises :class:`ProtocolError` for anything that is not a well-formed
    envelope or whose payload does not match its kind.
    """
    try:
        data = json.loads(raw)
    except (TypeError, ValueError) as exc:
        raise ProtocolError(f"Payload is not JSON: {exc}") from exc

    if not isinstance(data, dict) or not isinstance(data.get("kind"), str):
        raise ProtocolError("Envelope must be an object with a string 'kind'")

    if data["kind"] not in KNOWN_KINDS:
        payload = data.get("payload")
        return UnknownMessage(
            kind=data["kind"], payload=payload if isinstance(payload, dict) else {}
        )

    try:
        return _GAME_MESSAGE.validate_python(data)
    except ValidationError as exc:
        raise ProtocolError(f"Invalid {data['kind']!r} message: {exc}") from exc


class MessageHandler(Protocol):
    def on_move(self, message: MoveMessage) -> None: ...

    def on_reset(self, message: ResetMessage) -> None: ...

    def on_chat(self, message: ChatMessage) -> None: ...

    def on_disconnect(self, message: DisconnectMessage) -> None: ...

    def on_unknown(self, message: UnknownMessage) -> None: ...


def dispatch(raw: Union[str, bytes], handler: MessageHandler) -> bool:
    """Decode ``raw`` and route it to ``handler``.

    Malformed payloads are logged and dropped; returns whether a handler ran.
    """
    try:
        message = decode(raw)
    except ProtocolError as exc:
        logger.debug("Dropping malformed message: %s", exc)
        return False

    if isinstance(message, MoveMessage):
        handler.on_move(message)
    elif isinstance(message, ResetMessage):
        handler.on_reset(message)
    elif isinstance(message, ChatMessage):
        handler.on_chat(message)
    elif isinstance(message, DisconnectMessage):
        handler.on_disconnect(message)
    else:
        handler.on_unknown(message)
    return True
