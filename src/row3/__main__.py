"""Entry point for running the Row3 signaling directory via ``python -m row3``."""

from __future__ import annotations

import os

import uvicorn

from .config import Settings, configure_logging


def main() -> None:
    """Start the FastAPI-powered signaling directory."""

    settings = Settings.from_env()
    configure_logging(settings.log_level)
    host = os.environ.get("ROW3_HOST", "0.0.0.0")
    port = int(os.environ.get("ROW3_PORT", "8000"))
    uvicorn.run(
        "row3.server:app",
        host=host,
        port=port,
        reload=False,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
