"""Shared helpers."""

import os
from pathlib import Path

DATA_DIR_ENV = "REMINDSYNC_DATA_DIR"


def get_remindsync_home() -> Path:
    """Data directory: ``$REMINDSYNC_DATA_DIR`` or ``~/.remindsync``."""
    custom = os.environ.get(DATA_DIR_ENV)
    if custom:
        return Path(custom).expanduser()
    return Path.home() / ".remindsync"
