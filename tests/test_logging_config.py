"""Tests for remindsync.logging_config module."""

import logging

import pytest

from remindsync.logging_config import (
    log_migration,
    log_sync,
    log_sync_event,
    setup_remindsync_logging,
)


@pytest.fixture(autouse=True)
def clean_remindsync_logger():
    """Remove all handlers from the remindsync logger before/after each test."""
    logger = logging.getLogger("remindsync")
    logger.handlers.clear()
    logger.setLevel(logging.WARNING)
    yield
    for handler in logger.handlers:
        handler.close()
    logger.handlers.clear()
    logger.setLevel(logging.NOTSET)


@pytest.fixture
def log_dir(data_dir):
    return data_dir / "logs"


def console_handlers(logger):
    return [
        h
        for h in logger.handlers
        if isinstance(h, logging.StreamHandler) and not isinstance(h, logging.FileHandler)
    ]


class TestSetupRemindsyncLogging:
    """Tests for setup_remindsync_logging."""

    def test_returns_package_logger(self, log_dir):
        logger = setup_remindsync_logging(owner_id="user-1")
        assert isinstance(logger, logging.Logger)
        assert logger.name == "remindsync"

    def test_creates_dated_log_file(self, log_dir):
        """Should create logs/local-{date}.log."""
        assert not log_dir.exists()
        setup_remindsync_logging(owner_id="user-1")
        log_files = list(log_dir.glob("local-*.log"))
        assert len(log_files) == 1

    def test_levels(self, log_dir):
        assert setup_remindsync_logging(level="warning").level == logging.WARNING

    def test_invalid_level_falls_back_to_info(self, log_dir):
        logger = setup_remindsync_logging(level="INVALID")
        assert logger.level == logging.INFO

    def test_debug_adds_console_handler(self, log_dir):
        logger = setup_remindsync_logging(level="DEBUG")
        assert len(console_handlers(logger)) == 1

    def test_info_no_console_handler(self, log_dir):
        logger = setup_remindsync_logging(level="INFO")
        assert console_handlers(logger) == []

    def test_no_duplicate_handlers(self, log_dir):
        """Calling setup twice should not add duplicate handlers."""
        setup_remindsync_logging(level="DEBUG")
        logger = setup_remindsync_logging(level="DEBUG")
        file_handlers = [h for h in logger.handlers if isinstance(h, logging.FileHandler)]
        assert len(file_handlers) == 1
        assert len(console_handlers(logger)) == 1

    def test_module_loggers_write_to_file(self, log_dir):
        """Child loggers propagate to the file with the expected format."""
        logger = setup_remindsync_logging(level="INFO")
        logging.getLogger("remindsync.sync.engine").info("format check")
        for h in logger.handlers:
            h.flush()
        content = next(log_dir.glob("local-*.log")).read_text()
        assert " | INFO | remindsync.sync.engine | format check" in content


class TestSyncEventLog:
    """Tests for log_sync_event and its helpers."""

    def test_event_line_format(self, log_dir):
        log_sync_event("sync", "direction=push, count=1, errors=0", owner_id="user-1")
        content = next(log_dir.glob("sync-events-*.log")).read_text()
        assert "| sync | owner=user-1 | direction=push, count=1, errors=0" in content

    def test_events_append(self, log_dir):
        log_sync_event("sync", "first")
        log_sync_event("sync", "second")
        event_files = list(log_dir.glob("sync-events-*.log"))
        assert len(event_files) == 1
        lines = [line for line in event_files[0].read_text().splitlines() if line]
        assert len(lines) == 2
        assert "owner=default" in lines[0]

    def test_log_sync(self, log_dir):
        log_sync("user-1", direction="pull", count=5)
        content = next(log_dir.glob("sync-events-*.log")).read_text()
        assert "direction=pull" in content
        assert "count=5" in content
        assert "errors=0" in content

    def test_log_migration(self, log_dir):
        log_migration("guest_1", "user-1", moved=3)
        content = next(log_dir.glob("sync-events-*.log")).read_text()
        assert "migrate | owner=user-1 | from=guest_1, records=3" in content

    def test_engine_records_sync_events(self, log_dir, engine):
        engine.push_all("user-1")
        content = next(log_dir.glob("sync-events-*.log")).read_text()
        assert "direction=push" in content
