"""
Structured logging configuration with aligned, pipe-separated format.

Format:
YYYY-MM-DD HH:MM:SS.mmm | LEVEL    | module          | RUN_ID   | Message | key=value

Example:
2025-11-08 14:23:45.123 | INFO     | automator       | 4adcc17d | Approvals counted | mr_iid=42 count=2

Configuration via environment variables:
- LOG_LEVEL: Logging level (default: INFO)
- LOG_DIR: Directory for a rotating log file (default: unset, console only)
- LOG_MAX_BYTES: Max size per log file (default: 10MB)
- LOG_BACKUP_COUNT: Number of backup files (default: 3)
"""

import datetime
import logging
import logging.handlers
import os
from pathlib import Path

PACKAGE_LOGGER = 'mrautomator'
LOG_FILE_NAME = 'mr-automator.log'


def new_run_id():
    """Run id in the same shape the webhook server used for request ids."""
    return datetime.datetime.now().strftime("%Y%m%d_%H%M%S_%f")


def short_run_id(run_id):
    if not run_id or run_id == 'unknown':
        return 'unknown'
    return run_id.split('_')[-1][:8]


class AlignedPipeFormatter(logging.Formatter):
    """
    Custom formatter with pipe-separated, column-aligned output.

    Features:
    - Millisecond precision timestamps
    - Pipe separators for clean parsing
    - Short module names
    - Correlation id (short run id)
    """

    MODULE_WIDTH = 15

    # Map module names to short, readable names
    MODULE_NAME_MAP = {
        'mrautomator.automator': 'automator',
        'mrautomator.gitlab': 'gitlab-api',
        'mrautomator.review_state': 'review-state',
        'mrautomator.config_loader': 'config-loader',
        'mrautomator.report': 'report',
        'mrautomator.logging_config': 'logging',
    }

    def __init__(self, run_id='unknown'):
        super().__init__(
            fmt='%(asctime)s.%(msecs)03d | %(levelname)-8s | %(module_name)-15s | %(correlation_id)-8s | %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )
        self.correlation_id = short_run_id(run_id)

    def format(self, record):
        record.correlation_id = self.correlation_id

        module_name = self.MODULE_NAME_MAP.get(record.name, record.name)
        if module_name.startswith(PACKAGE_LOGGER + '.'):
            module_name = module_name[len(PACKAGE_LOGGER) + 1:]

        if len(module_name) > self.MODULE_WIDTH:
            record.module_name = module_name[:self.MODULE_WIDTH - 3] + '...'
        else:
            record.module_name = module_name

        return super().format(record)


class StructuredLogger:
    """
    Helper for structured logging with key=value pairs.

    Usage:
        slog = StructuredLogger(logging.getLogger(__name__))
        slog.info("Labels updated", mr_iid=12, labels="backend,double-approved")

    Output:
        ... | Labels updated | mr_iid=12 labels=backend,double-approved
    """

    def __init__(self, logger):
        self.logger = logger

    def _format_message(self, message, **kwargs):
        if kwargs:
            fields = ' '.join(f'{k}={v}' for k, v in kwargs.items())
            return f'{message} | {fields}'
        return message

    def debug(self, message, **kwargs):
        self.logger.debug(self._format_message(message, **kwargs))

    def info(self, message, **kwargs):
        self.logger.info(self._format_message(message, **kwargs))

    def warning(self, message, **kwargs):
        self.logger.warning(self._format_message(message, **kwargs))

    def error(self, message, **kwargs):
        self.logger.error(self._format_message(message, **kwargs))

    def critical(self, message, **kwargs):
        self.logger.critical(self._format_message(message, **kwargs))


def _int_setting(environ, name, default):
    value = environ.get(name, default)
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValueError(f"{name} must be an integer, got {value!r}")


class LogConfig:
    """
    Centralized logging configuration.

    Environment variables:
    - LOG_LEVEL: Logging level (default: INFO)
    - LOG_DIR: Base directory for the log file (default: unset)
    - LOG_MAX_BYTES: Max bytes per file (default: 10MB)
    - LOG_BACKUP_COUNT: Backup files count (default: 3)
    """

    def __init__(self, environ=None):
        environ = os.environ if environ is None else environ
        self.level = environ.get('LOG_LEVEL', 'INFO').upper()
        self.base_dir = environ.get('LOG_DIR') or None
        self.max_bytes = _int_setting(environ, 'LOG_MAX_BYTES', 10 * 1024 * 1024)
        self.backup_count = _int_setting(environ, 'LOG_BACKUP_COUNT', 3)

    @property
    def numeric_level(self):
        level = logging.getLevelName(self.level)
        return level if isinstance(level, int) else logging.INFO

    def get_log_path(self):
        if not self.base_dir:
            return None
        return Path(self.base_dir) / LOG_FILE_NAME


def setup_logging(run_id='unknown', environ=None):
    """
    Configure the package logger with aligned pipe format.

    Args:
        run_id: Correlation id shown on every line
        environ: Mapping with LOG_* variables (default: os.environ)

    Returns:
        tuple: (logging.Logger, StructuredLogger)
    """
    config = LogConfig(environ)
    formatter = AlignedPipeFormatter(run_id)

    logger = logging.getLogger(PACKAGE_LOGGER)
    logger.setLevel(config.numeric_level)
    for handler in logger.handlers:
        handler.close()
    logger.handlers = []

    console_handler = logging.StreamHandler()
    console_handler.setLevel(config.numeric_level)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    log_file_path = config.get_log_path()
    if log_file_path is not None:
        log_file_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            str(log_file_path),
            maxBytes=config.max_bytes,
            backupCount=config.backup_count,
            encoding='utf-8'
        )
        file_handler.setLevel(config.numeric_level)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    # Module loggers propagate up to here, but not to the root logger
    logger.propagate = False

    return logger, StructuredLogger(logger)


def get_logger(module_name):
    """Structured logger for a module of this package."""
    return StructuredLogger(logging.getLogger(module_name))
