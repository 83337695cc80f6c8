"""Tests for PeerLink over the in-process fake connection."""

import json

import pytest

from row3 import protocol
from row3.directory import SessionDescription
from row3.errors import HandshakeError
from row3.peer import LinkState, PeerLink


async def _connect(host, guest):
    offer = await host.connect_as_initiator()
    answer = await guest.connect_as_responder(offer)
    await host.complete_handshake(answer)


@pytest.mark.anyio
async def test_initiator_produces_offer(make_link):
    link = make_link()
    offer = await link.connect_as_initiator()
    assert offer.type == "offer"
    assert offer.sdp
    assert link.state is LinkState.NEGOTIATING


@pytest.mark.anyio
async def test_handshake_connects_both_sides(make_link, wait_until):
    host, guest = make_link(), make_link()
    host_states, guest_states = [], []
    host.subscribe(host_states.append)
    guest.subscribe(guest_states.append)

    await _connect(host, guest)
    await wait_until(lambda: host.is_open and guest.is_open)

    assert host.state is LinkState.CONNECTED
    assert guest.state is LinkState.CONNECTED
    assert host_states == [LinkState.NEGOTIATING, LinkState.CONNECTED]
    assert guest_states == [LinkState.NEGOTIATING, LinkState.CONNECTED]


@pytest.mark.anyio
async def test_messages_flow_in_both_directions(make_link, wait_until):
    host, guest = make_link(), make_link()
    to_guest, to_host = [], []
    guest.on_message(to_guest.append)
    host.on_message(to_host.append)
    await _connect(host, guest)
    await wait_until(lambda: host.is_open and guest.is_open)

    assert host.send(protocol.move(4))
    assert guest.send(protocol.chat("hi"))
    await wait_until(lambda: to_guest and to_host)

    assert json.loads(to_guest[0]) == {"kind": "move", "payload": {"cellIndex": 4}}
    assert json.loads(to_host[0])["payload"] == {"text": "hi"}


@pytest.mark.anyio
async def test_send_before_open_is_dropped(make_link):
    link = make_link()
    assert not link.send(protocol.chat("early"))
    await link.connect_as_initiator()
    assert not link.send(protocol.chat("still early"))


@pytest.mark.anyio
async def test_only_initiator_completes_handshake(make_link):
    host, guest = make_link(), make_link()
    offer = await host.connect_as_initiator()
    answer = await guest.connect_as_responder(offer)
    with pytest.raises(HandshakeError):
        await guest.complete_handshake(answer)


@pytest.mark.anyio
async def test_unusable_offer_is_a_handshake_error(make_link):
    guest = make_link()
    with pytest.raises(HandshakeError):
        await guest.connect_as_responder(SessionDescription(type="offer", sdp="bogus"))

    other = make_link()
    with pytest.raises(HandshakeError):
        await other.connect_as_responder(SessionDescription(type="weird", sdp="x"))


@pytest.mark.anyio
async def test_close_notifies_peer_and_is_idempotent(make_link, wait_until):
    host, guest = make_link(), make_link()
    host_states, received = [], []
    host.subscribe(host_states.append)
    guest.on_message(received.append)
    await _connect(host, guest)
    await wait_until(lambda: guest.is_open)

    await host.close()
    await host.close()
    await wait_until(lambda: guest.state is LinkState.DISCONNECTED)

    assert json.loads(received[-1]) == {
        "kind": "disconnect",
        "payload": {"reason": "peer left"},
    }
    assert host.state is LinkState.DISCONNECTED
    # The closing side does not narrate its own teardown
    assert host_states == [LinkState.NEGOTIATING, LinkState.CONNECTED]


@pytest.mark.anyio
async def test_failed_connection_is_reported(make_link, network):
    link = make_link()
    states = []
    link.subscribe(states.append)
    await link.connect_as_initiator()

    network.connections[0].fail()
    network.connections[0]._set_state("closed")

    assert states == [LinkState.NEGOTIATING, LinkState.FAILED]
    assert link.state is LinkState.FAILED


@pytest.mark.anyio
async def test_unsubscribe_stops_notifications(make_link):
    link = make_link()
    states = []
    unsubscribe = link.subscribe(states.append)
    unsubscribe()
    await link.connect_as_initiator()
    assert states == []


@pytest.mark.anyio
async def test_malformed_sdp_from_real_stack_is_a_handshake_error():
    link = PeerLink(ice_servers=(), gather_grace=0.0)
    with pytest.raises(HandshakeError):
        await link.connect_as_responder(
            SessionDescription(type="offer", sdp="v=0\r\nm=bogus")
        )
    await link.close()
    assert link.state is LinkState.DISCONNECTED
