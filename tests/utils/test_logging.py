"""Tests for the structlog setup."""

import logging
import logging.handlers
import os

import pytest
import structlog

from wafplane.utils.logging import LOG_FILENAME, setup_logging


@pytest.fixture
def restore_logging():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    for handler in root.handlers:
        handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)
    structlog.reset_defaults()


def _rotating(root):
    return [h for h in root.handlers if isinstance(h, logging.handlers.RotatingFileHandler)]


class TestSetupLogging:
    def test_installs_console_and_rotating_file(self, tmp_path, restore_logging):
        setup_logging(log_dir=str(tmp_path), log_max_bytes=1024, log_backup_count=2)

        root = logging.getLogger()
        files = _rotating(root)
        assert len(files) == 1
        assert files[0].baseFilename == os.path.join(str(tmp_path), LOG_FILENAME)
        assert files[0].maxBytes == 1024
        assert files[0].backupCount == 2
        assert all(isinstance(h.formatter, structlog.stdlib.ProcessorFormatter) for h in root.handlers)
        assert root.level == logging.INFO
        assert logging.getLogger("sqlalchemy.engine").level == logging.WARNING

    def test_debug_lowers_levels(self, tmp_path, restore_logging):
        setup_logging(debug=True, log_dir=str(tmp_path))

        assert logging.getLogger().level == logging.DEBUG
        assert logging.getLogger("sqlalchemy.engine").level == logging.INFO

    def test_repeated_setup_does_not_stack_handlers(self, tmp_path, restore_logging):
        setup_logging(log_dir=str(tmp_path))
        setup_logging(log_dir=str(tmp_path))

        assert len(_rotating(logging.getLogger())) == 1

    def test_unwritable_log_dir_keeps_stdout(self, tmp_path, restore_logging):
        blocker = tmp_path / "not-a-dir"
        blocker.write_text("")

        setup_logging(log_dir=str(blocker / "logs"))

        root = logging.getLogger()
        assert _rotating(root) == []
        assert len(root.handlers) == 1

    def test_library_records_land_in_file_as_json(self, tmp_path, restore_logging):
        setup_logging(log_dir=str(tmp_path))

        logging.getLogger("uvicorn.error").warning("listener restarted")
        for handler in logging.getLogger().handlers:
            handler.flush()

        content = (tmp_path / LOG_FILENAME).read_text()
        assert '"event": "listener restarted"' in content
        assert '"logger": "uvicorn.error"' in content
        assert '"level": "warning"' in content
