"""Row3: peer-to-peer tic-tac-toe session engine and signaling directory."""

from .directory import (
    HTTPSignalingDirectory,
    InMemorySignalingDirectory,
    SessionDescription,
    SignalingRoom,
)
from .game import GameState, apply_move, check_winner
from .peer import LinkState, PeerLink
from .session import PeerSession, SessionSnapshot
from .signaling import SignalingClient

__all__ = [
    "GameState",
    "HTTPSignalingDirectory",
    "InMemorySignalingDirectory",
    "LinkState",
    "PeerLink",
    "PeerSession",
    "SessionDescription",
    "SessionSnapshot",
    "SignalingClient",
    "SignalingRoom",
    "apply_move",
    "check_winner",
]
