"""Tests for the data-channel message envelope."""

import json

import pytest

from row3 import protocol
from row3.errors import ProtocolError


class RecordingHandler:
    def __init__(self):
        self.calls = []

    def on_move(self, message):
        self.calls.append(("move", message.payload.cell_index))

    def on_reset(self, message):
        self.calls.append(("reset", None))

    def on_chat(self, message):
        self.calls.append(("chat", message.payload.text))

    def on_disconnect(self, message):
        self.calls.append(("disconnect", message.payload.reason))

    def on_unknown(self, message):
        self.calls.append(("unknown", message.kind))


def test_move_uses_camel_case_on_the_wire():
    wire = json.loads(protocol.encode(protocol.move(4)))
    assert wire == {"kind": "move", "payload": {"cellIndex": 4}}


def test_reset_and_disconnect_payloads():
    assert json.loads(protocol.encode(protocol.reset())) == {
        "kind": "reset",
        "payload": {},
    }
    assert json.loads(protocol.encode(protocol.disconnect("bye"))) == {
        "kind": "disconnect",
        "payload": {"reason": "bye"},
    }


def test_decode_known_kinds():
    move = protocol.decode('{"kind": "move", "payload": {"cellIndex": 8}}')
    assert isinstance(move, protocol.MoveMessage)
    assert move.payload.cell_index == 8

    chat = protocol.decode(b'{"kind": "chat", "payload": {"text": "hi"}}')
    assert isinstance(chat, protocol.ChatMessage)
    assert chat.payload.text == "hi"

    assert isinstance(protocol.decode('{"kind": "reset"}'), protocol.ResetMessage)
    leave = protocol.decode('{"kind": "disconnect", "payload": {}}')
    assert isinstance(leave, protocol.DisconnectMessage)
    assert leave.payload.reason == ""


def test_unknown_kind_decodes_to_fallback():
    message = protocol.decode('{"kind": "emote", "payload": {"face": ":)"}}')
    assert isinstance(message, protocol.UnknownMessage)
    assert message.kind == "emote"
    assert message.payload == {"face": ":)"}


@pytest.mark.parametrize(
    "raw",
    [
        "not json",
        "[1, 2]",
        '{"payload": {}}',
        '{"kind": "move", "payload": {"cellIndex": 9}}',
        '{"kind": "move", "payload": {}}',
        '{"kind": "chat", "payload": {}}',
    ],
)
def test_malformed_payloads_raise(raw):
    with pytest.raises(ProtocolError):
        protocol.decode(raw)


@pytest.mark.parametrize("cell", ['"4"', "4.0", "true"])
def test_move_index_must_be_a_real_integer(cell):
    with pytest.raises(ProtocolError):
        protocol.decode('{"kind": "move", "payload": {"cellIndex": %s}}' % cell)


def test_dispatch_routes_each_kind():
    handler = RecordingHandler()
    for message in (
        protocol.move(1),
        protocol.reset(),
        protocol.chat("gg"),
        protocol.disconnect("peer left"),
    ):
        assert protocol.dispatch(protocol.encode(message), handler)
    protocol.dispatch('{"kind": "future"}', handler)
    assert handler.calls == [
        ("move", 1),
        ("reset", None),
        ("chat", "gg"),
        ("disconnect", "peer left"),
        ("unknown", "future"),
    ]


def test_dispatch_drops_malformed_messages():
    handler = RecordingHandler()
    assert not protocol.dispatch("{", handler)
    assert handler.calls == []
