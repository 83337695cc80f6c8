"""Runtime settings for Row3 clients and the signaling directory service."""

from __future__ import annotations

import logging
import os
import uuid
from dataclasses import dataclass, field
from typing import Mapping, Optional, Tuple

DEFAULT_DIRECTORY_URL = "http://127.0.0.1:8000"
DEFAULT_ICE_SERVERS: Tuple[str, ...] = (
    "stun:stun1.l.google.com:19302",
    "stun:stun2.l.google.com:19302",
)
POLL_INTERVAL_SECONDS = 2.0
MAX_POLL_ATTEMPTS = 150  # five minutes at the default interval
ICE_GATHER_GRACE_SECONDS = 1.0
ROOM_TTL_SECONDS = 60 * 60  # 1 hour
SWEEP_INTERVAL_SECONDS = 5 * 60

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def _new_client_id() -> str:
    return uuid.uuid4().hex


@dataclass(frozen=True)
class Settings:
    """Tunables shared by the session engine and the directory service."""

    directory_url: str = DEFAULT_DIRECTORY_URL
    poll_interval: float = POLL_INTERVAL_SECONDS
    max_poll_attempts: int = MAX_POLL_ATTEMPTS
    ice_gather_grace: float = ICE_GATHER_GRACE_SECONDS
    ice_servers: Tuple[str, ...] = DEFAULT_ICE_SERVERS
    room_ttl_seconds: int = ROOM_TTL_SECONDS
    sweep_interval: float = SWEEP_INTERVAL_SECONDS
    # Anonymous per-client token used to tag signaling records
    client_id: str = field(default_factory=_new_client_id)
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        env = os.environ if environ is None else environ
        servers = env.get("ROW3_ICE_SERVERS")
        ice_servers = (
            tuple(s.strip() for s in servers.split(",") if s.strip())
            if servers
            else DEFAULT_ICE_SERVERS
        )
        return cls(
            directory_url=env.get("ROW3_DIRECTORY_URL", DEFAULT_DIRECTORY_URL),
            poll_interval=float(
                env.get("ROW3_POLL_INTERVAL", str(POLL_INTERVAL_SECONDS))
            ),
            max_poll_attempts=int(
                env.get("ROW3_MAX_POLL_ATTEMPTS", str(MAX_POLL_ATTEMPTS))
            ),
            ice_gather_grace=float(
                env.get("ROW3_ICE_GATHER_GRACE", str(ICE_GATHER_GRACE_SECONDS))
            ),
            ice_servers=ice_servers,
            room_ttl_seconds=int(env.get("ROW3_ROOM_TTL", str(ROOM_TTL_SECONDS))),
            sweep_interval=float(
                env.get("ROW3_SWEEP_INTERVAL", str(SWEEP_INTERVAL_SECONDS))
            ),
            client_id=env.get("ROW3_CLIENT_ID") or _new_client_id(),
            log_level=env.get("ROW3_LOG_LEVEL", "INFO").upper(),
        )


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), format=LOG_FORMAT)
