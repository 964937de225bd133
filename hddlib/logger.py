"""
Logger Module with OOP Interface

This module provides the logging setup shared by every hddlib component.

Usage:
    from hddlib.logger import get_module_logger
    logger = get_module_logger(__name__)
    logger.info("Information message")

Run setup (done once by the orchestrator):
    from hddlib.logger import Logger
    Logger.init_logging('/var/log/hdd_validate_20240101_120000')
    Logger.attach_summary('/var/log/hdd_validate_20240101_120000/SUMMARY.txt')
"""

import logging
import sys
from pathlib import Path
from typing import Optional, Dict, Union

LOG_FORMAT = '[%(levelname)s %(asctime)s] [%(name)s] %(message)s'
SUMMARY_FORMAT = '%(message)s'
SUMMARY_LOGGER = 'hddlib.summary'


class Logger:
    """
    Object-oriented logger wrapper with centralized configuration.

    This class provides:
    - Centralized logging configuration
    - Module-specific logger instances
    - File and console output management
    - The per-run operator summary file

    Example:
        >>> Logger.init_logging('./log')
        >>> logger = Logger.get_logger(__name__)
        >>> logger.info("Information message")
    """

    _initialized = False
    _log_dir: Optional[Path] = None
    _loggers: Dict[str, logging.Logger] = {}

    @classmethod
    def get_logger(cls, name: str = 'main') -> logging.Logger:
        """
        Get or create a logger instance for the specified name.

        Handlers live on the root logger, so loggers obtained before
        init_logging() start writing to files once it runs.

        Args:
            name: Logger name (typically __name__ for module-specific logging)

        Returns:
            logging.Logger: Logger instance
        """
        if name not in cls._loggers:
            cls._loggers[name] = logging.getLogger(name)
        return cls._loggers[name]

    @classmethod
    def init_logging(cls, log_dir: Union[str, Path, None] = None) -> None:
        """
        Initialize logging configuration (safe to call multiple times).

        Sets up:
        - Log directory creation
        - File handlers for INFO (log.txt) and ERROR (log.err) levels
        - Console handler for INFO level
        - Common formatter with timestamp

        Calling again with a different directory moves the file handlers
        to the new location.

        Args:
            log_dir: Directory for log.txt / log.err (default ./log)
        """
        log_dir = Path(log_dir) if log_dir is not None else Path('./log')
        log_dir.mkdir(parents=True, exist_ok=True)
        log_dir_abs = log_dir.resolve()

        formatter = logging.Formatter(LOG_FORMAT)
        root_logger = logging.getLogger()

        for handler in root_logger.handlers[:]:
            if isinstance(handler, logging.FileHandler):
                handler_dir = Path(handler.baseFilename).resolve().parent
                if handler_dir != log_dir_abs and Path(handler.baseFilename).name in ('log.txt', 'log.err'):
                    handler.close()
                    root_logger.removeHandler(handler)

        def _has_file(name: str) -> bool:
            return any(
                isinstance(h, logging.FileHandler) and Path(h.baseFilename).name == name
                for h in root_logger.handlers
            )

        if not _has_file('log.txt'):
            file_handler = logging.FileHandler(str(log_dir / 'log.txt'), mode='a', encoding='utf-8')
            file_handler.setLevel(logging.INFO)
            file_handler.setFormatter(formatter)
            root_logger.addHandler(file_handler)

        if not _has_file('log.err'):
            err_handler = logging.FileHandler(str(log_dir / 'log.err'), mode='a', encoding='utf-8')
            err_handler.setLevel(logging.ERROR)
            err_handler.setFormatter(formatter)
            root_logger.addHandler(err_handler)

        has_console_handler = any(
            isinstance(h, logging.StreamHandler) and not isinstance(h, logging.FileHandler)
            for h in root_logger.handlers
        )
        if not has_console_handler:
            console_handler = logging.StreamHandler(sys.stdout)
            console_handler.setLevel(logging.INFO)
            console_handler.setFormatter(formatter)
            root_logger.addHandler(console_handler)

        root_logger.setLevel(logging.DEBUG)
        cls._log_dir = log_dir_abs
        cls._initialized = True

    @classmethod
    def attach_summary(cls, summary_path: Union[str, Path]) -> logging.Logger:
        """
        Route the summary logger to a human-readable summary file.

        Records still propagate to the root handlers (console, log.txt).
        Any previously attached summary file is detached.

        Args:
            summary_path: Path of the SUMMARY.txt file

        Returns:
            logging.Logger: The summary logger
        """
        summary_logger = cls.get_logger(SUMMARY_LOGGER)
        for handler in summary_logger.handlers[:]:
            handler.close()
            summary_logger.removeHandler(handler)

        handler = logging.FileHandler(str(summary_path), mode='a', encoding='utf-8')
        handler.setLevel(logging.INFO)
        handler.setFormatter(logging.Formatter(SUMMARY_FORMAT))
        summary_logger.addHandler(handler)
        summary_logger.setLevel(logging.INFO)
        return summary_logger

    @classmethod
    def get_log_dir(cls) -> Optional[Path]:
        return cls._log_dir


def get_module_logger(module_name: str = 'main') -> logging.Logger:
    """
    Get a logger instance for the specified module.

    Example:
        >>> logger = get_module_logger(__name__)
        >>> logger.info("Starting triage...")
    """
    return Logger.get_logger(module_name)


def get_summary_logger() -> logging.Logger:
    """Logger whose records also land in the run's SUMMARY.txt."""
    return Logger.get_logger(SUMMARY_LOGGER)

