"""CLI commands."""

import os
from pathlib import Path


def default_db_path() -> Path:
    """Database used by the server, from ``DB_PATH``."""
    return Path(os.environ.get("DB_PATH", "data/gateway.db"))


from . import agents, serve, sessions, status  # noqa: E402

__all__ = ["agents", "default_db_path", "serve", "sessions", "status"]
