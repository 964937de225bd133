"""
Unit tests for hddlib.logger.
"""

import logging
import os
import sys
import tempfile
from pathlib import Path

import pytest

project_root = Path(__file__).resolve().parents[3]
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))

from hddlib.logger import Logger, get_module_logger, get_summary_logger


def flush_all():
    for handler in logging.getLogger().handlers + get_summary_logger().handlers:
        handler.flush()


@pytest.fixture
def log_dir():
    with tempfile.TemporaryDirectory() as tmpdir:
        yield tmpdir
        for handler in logging.getLogger().handlers[:]:
            if isinstance(handler, logging.FileHandler) and handler.baseFilename.startswith(tmpdir):
                handler.close()
                logging.getLogger().removeHandler(handler)
        for handler in get_summary_logger().handlers[:]:
            handler.close()
            get_summary_logger().removeHandler(handler)


class TestLogger:
    """Test suite for Logger setup."""

    def test_same_name_same_logger(self):
        assert get_module_logger('hddlib.x') is get_module_logger('hddlib.x')

    def test_init_creates_log_files(self, log_dir):
        Logger.init_logging(log_dir)
        logger = get_module_logger('hddlib.test')

        logger.info("info line")
        logger.error("error line")
        flush_all()

        with open(os.path.join(log_dir, 'log.txt')) as f:
            text = f.read()
        assert 'info line' in text
        assert '[hddlib.test]' in text
        with open(os.path.join(log_dir, 'log.err')) as f:
            err = f.read()
        assert 'error line' in err
        assert 'info line' not in err
        assert Logger.get_log_dir() == Path(log_dir).resolve()

    def test_init_twice_does_not_duplicate(self, log_dir):
        Logger.init_logging(log_dir)
        Logger.init_logging(log_dir)

        files = [h for h in logging.getLogger().handlers
                 if isinstance(h, logging.FileHandler) and h.baseFilename.endswith('log.txt')]
        assert len(files) == 1

    def test_new_directory_moves_handlers(self, log_dir):
        first = os.path.join(log_dir, 'run1')
        second = os.path.join(log_dir, 'run2')
        Logger.init_logging(first)
        Logger.init_logging(second)

        get_module_logger('hddlib.test').info("second run")
        flush_all()

        with open(os.path.join(second, 'log.txt')) as f:
            assert 'second run' in f.read()
        with open(os.path.join(first, 'log.txt')) as f:
            assert 'second run' not in f.read()

    def test_summary_file_has_bare_messages(self, log_dir):
        Logger.init_logging(log_dir)
        summary_path = os.path.join(log_dir, 'SUMMARY.txt')
        Logger.attach_summary(summary_path)

        get_summary_logger().info("[SCAN RESULT] ZA1B2C3D (/dev/sdb) PASS: all checks passed")
        get_module_logger('hddlib.other').info("not for the summary")
        flush_all()

        with open(summary_path) as f:
            assert f.read() == "[SCAN RESULT] ZA1B2C3D (/dev/sdb) PASS: all checks passed\n"
