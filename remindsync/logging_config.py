"""Logging setup for remindsync.

Two outputs:
- ``logs/local-YYYY-MM-DD.log``: the ``remindsync`` logger hierarchy
- ``logs/sync-events-YYYY-MM-DD.log``: one line per sync / identity event,
  easy to grep when debugging a device
"""

import logging
from datetime import datetime, timezone
from pathlib import Path

from remindsync.utils import get_remindsync_home

LOGGER_NAME = "remindsync"
LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


def _log_dir() -> Path:
    log_dir = get_remindsync_home() / "logs"
    log_dir.mkdir(parents=True, exist_ok=True)
    return log_dir


def _today() -> str:
    return datetime.now().strftime("%Y-%m-%d")


def setup_remindsync_logging(owner_id: str = "default", level: str = "INFO") -> logging.Logger:
    """Configure the ``remindsync`` logger.

    Adds a dated file handler, plus a console handler at DEBUG. Calling it
    again does not add duplicate handlers.

    Args:
        owner_id: Identity the process runs as (recorded in the first line)
        level: Level name; unknown names fall back to INFO

    Returns:
        The ``remindsync`` logger
    """
    logger = logging.getLogger(LOGGER_NAME)
    log_level = getattr(logging, str(level).upper(), None)
    if not isinstance(log_level, int):
        log_level = logging.INFO
    logger.setLevel(log_level)

    formatter = logging.Formatter(LOG_FORMAT)
    log_file = _log_dir() / f"local-{_today()}.log"

    has_file = any(isinstance(h, logging.FileHandler) for h in logger.handlers)
    if not has_file:
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    if log_level == logging.DEBUG:
        has_console = any(
            isinstance(h, logging.StreamHandler) and not isinstance(h, logging.FileHandler)
            for h in logger.handlers
        )
        if not has_console:
            console = logging.StreamHandler()
            console.setFormatter(formatter)
            logger.addHandler(console)

    if not has_file:
        logger.debug(f"Logging started for {owner_id} at {logging.getLevelName(log_level)}")
    return logger


def log_sync_event(event_type: str, details: str, owner_id: str = "default") -> None:
    """Append one line to the sync event log."""
    timestamp = datetime.now(timezone.utc).isoformat(timespec="seconds")
    line = f"{timestamp} | {event_type} | owner={owner_id} | {details}\n"
    try:
        with open(_log_dir() / f"sync-events-{_today()}.log", "a", encoding="utf-8") as f:
            f.write(line)
    except OSError as e:
        logging.getLogger(__name__).warning(f"Could not write sync event log: {e}")


def log_sync(owner_id: str, direction: str, count: int, errors: int = 0) -> None:
    """Record a queue drain / push / pull."""
    log_sync_event("sync", f"direction={direction}, count={count}, errors={errors}", owner_id)


def log_migration(guest_id: str, account_id: str, moved: int) -> None:
    """Record a guest-to-account migration."""
    log_sync_event("migrate", f"from={guest_id}, records={moved}", account_id)
