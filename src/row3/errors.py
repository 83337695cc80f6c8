"""Exceptions raised across the Row3 session engine."""


class Row3Error(Exception):
    """Base class for all Row3 errors."""


class DirectoryError(Row3Error):
    """The signaling directory could not be reached or refused a write."""


class SignalingError(Row3Error):
    """The offer/answer rendezvous could not be completed."""


class RoomNotFoundError(SignalingError):
    """No live room (or no offer) exists for the given join code."""


class SignalingCancelled(SignalingError):
    """The session was torn down while a rendezvous was still in flight."""


class HandshakeError(Row3Error):
    """The peer connection rejected a description or was used out of order."""


class ProtocolError(Row3Error):
    """An inbound data-channel payload could not be decoded."""
