"""Structured file logging for collective commands and hooks.

Command and hook activity is written as JSON Lines to rotating files
under the project's log directory, so it never mixes with the text that
Claude Code reads back from hook stdout.

Key Components:
    - CollectiveLogFormatter: JSON Lines formatter reading record extras
    - setup_file_logging: Attach a rotating JSON Lines handler to a logger
    - CommandLogger: Start/complete/error lifecycle events with durations
    - log_command: Decorator that wraps a click command in CommandLogger
    - reset_logging: Drop cached loggers and handlers (for tests)

Log Format (JSON Lines):
    {"timestamp":"2026-03-02T10:30:45.123+00:00","level":"INFO","logger":"collective.commands","message":"Command START","command":"install","status":"start"}
    {"timestamp":"2026-03-02T10:30:46.001+00:00","level":"INFO","logger":"collective.hooks","message":"Hook finished","hook":"routing-executor","status":"complete","duration_ms":12}
"""

from __future__ import annotations

import functools
import json
import logging
import time
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Callable, Optional

import click

from collective.config.settings import get_settings


# =============================================================================
# Constants
# =============================================================================

# Max log file size (10MB)
LOG_MAX_BYTES = 10 * 1024 * 1024

# Number of rotated files to keep
LOG_BACKUP_COUNT = 5

COMMAND_LOGGER_NAME = "collective.commands"
COMMAND_LOG_FILE = "commands.log"

LOG_LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}

OPTIONAL_FIELDS = (
    "command",
    "status",
    "hook",
    "exit_code",
    "duration_ms",
    "error",
    "error_type",
)


# =============================================================================
# Formatter
# =============================================================================


class CollectiveLogFormatter(logging.Formatter):
    """JSON Lines formatter.

    Optional fields are taken from the record's ``extra`` dict:
    command, status, hook, exit_code, duration_ms, error, error_type and
    metadata.

    Example:
        >>> handler = logging.FileHandler("commands.log")
        >>> handler.setFormatter(CollectiveLogFormatter())
        >>> logger.info("Command START", extra={"command": "install", "status": "start"})
    """

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        for field_name in OPTIONAL_FIELDS:
            value = getattr(record, field_name, None)
            if value is not None:
                entry[field_name] = value

        metadata = getattr(record, "metadata", None)
        if metadata:
            entry["metadata"] = metadata

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, separators=(",", ":"), default=str)


# =============================================================================
# Setup Functions
# =============================================================================

_file_loggers: dict[str, logging.Logger] = {}
_command_logger: Optional["CommandLogger"] = None


def setup_file_logging(
    log_path: Path,
    name: str = COMMAND_LOGGER_NAME,
    level: int = logging.INFO,
    max_bytes: int = LOG_MAX_BYTES,
    backup_count: int = LOG_BACKUP_COUNT,
) -> logging.Logger:
    """Configure ``name`` to write JSON Lines to a rotating ``log_path``.

    The logger stops propagating to the root logger, so its records never
    reach the console. Repeated calls with the same name and path return
    the cached logger.

    Args:
        log_path: Destination file; parent directories are created.
        name: Logger name. Child loggers inherit the handler.
        level: Logging level.
        max_bytes: Max size before rotation (default 10MB).
        backup_count: Number of rotated files (default 5).

    Returns:
        The configured logger.
    """
    log_path = Path(log_path)
    cache_key = f"{name}:{log_path}"
    if cache_key in _file_loggers:
        return _file_loggers[cache_key]

    log_path.parent.mkdir(parents=True, exist_ok=True)

    logger = logging.getLogger(name)
    logger.setLevel(level)
    for handler in list(logger.handlers):
        handler.close()
    logger.handlers.clear()

    file_handler = RotatingFileHandler(
        filename=log_path,
        maxBytes=max_bytes,
        backupCount=backup_count,
        encoding="utf-8",
    )
    file_handler.setLevel(level)
    file_handler.setFormatter(CollectiveLogFormatter())
    logger.addHandler(file_handler)
    logger.propagate = False

    _file_loggers[cache_key] = logger
    return logger


def reset_logging() -> None:
    """Close every handler installed by setup_file_logging (for testing)."""
    global _command_logger
    for logger in _file_loggers.values():
        for handler in list(logger.handlers):
            handler.close()
        logger.handlers.clear()
        logger.propagate = True
    _file_loggers.clear()
    _command_logger = None


# =============================================================================
# Command Logger
# =============================================================================


class CommandLogger:
    """Logs CLI command lifecycle events.

    Attributes:
        logger: Underlying logger instance.

    Example:
        >>> command_logger = CommandLogger()
        >>> command_logger.log_command_start("install", {"path": "."})
        >>> command_logger.log_command_complete("install")
    """

    def __init__(self, logger: Optional[logging.Logger] = None) -> None:
        self.logger = logger or logging.getLogger(COMMAND_LOGGER_NAME)
        self._start_times: dict[str, float] = {}

    def _elapsed_ms(self, command: str) -> Optional[int]:
        start = self._start_times.pop(command, None)
        if start is None:
            return None
        return int((time.perf_counter() - start) * 1000)

    def log_command_start(self, command: str, metadata: Optional[dict[str, Any]] = None) -> None:
        self._start_times[command] = time.perf_counter()
        self.logger.info(
            "Command START",
            extra={"command": command, "status": "start", "metadata": metadata or {}},
        )

    def log_command_complete(
        self,
        command: str,
        exit_code: int = 0,
        metadata: Optional[dict[str, Any]] = None,
    ) -> None:
        self.logger.info(
            "Command COMPLETE",
            extra={
                "command": command,
                "status": "complete",
                "exit_code": exit_code,
                "duration_ms": self._elapsed_ms(command),
                "metadata": metadata or {},
            },
        )

    def log_command_error(
        self,
        command: str,
        error: BaseException,
        exit_code: int = 1,
        metadata: Optional[dict[str, Any]] = None,
    ) -> None:
        self.logger.error(
            "Command ERROR",
            extra={
                "command": command,
                "status": "error",
                "exit_code": exit_code,
                "error": str(error),
                "error_type": type(error).__name__,
                "duration_ms": self._elapsed_ms(command),
                "metadata": metadata or {},
            },
        )


def get_command_logger(project_dir: Optional[Path] = None) -> CommandLogger:
    """Return the process-wide CommandLogger.

    Events go to ``<log_dir>/commands.log`` when the project already has
    a collective directory; otherwise the logger has no file handler, so
    running a command never creates project files as a side effect.
    """
    global _command_logger
    if _command_logger is not None:
        return _command_logger

    settings = get_settings()
    project = Path(project_dir or Path.cwd()).resolve()
    if settings.paths.resolve_collective_dir(project).is_dir():
        logger = setup_file_logging(
            settings.paths.resolve_log_dir(project) / COMMAND_LOG_FILE,
            name=COMMAND_LOGGER_NAME,
            level=LOG_LEVELS.get(settings.log_level, logging.INFO),
        )
    else:
        logger = logging.getLogger(COMMAND_LOGGER_NAME)
        logger.propagate = False
        if not logger.handlers:
            logger.addHandler(logging.NullHandler())

    _command_logger = CommandLogger(logger)
    return _command_logger


# =============================================================================
# Command Logging Decorator
# =============================================================================


def log_command(command_name: str) -> Callable:
    """Decorator for automatic command lifecycle logging.

    Place it below the click decorators so the wrapped callback receives
    the parsed parameters, which are recorded as metadata.

    Example:
        >>> @cli.command()
        ... @click.argument("path", default=".")
        ... @log_command("status")
        ... def status(path):
        ...     ...
    """

    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            metadata = {k: v for k, v in kwargs.items() if isinstance(v, (str, int, float, bool))}
            command_logger = get_command_logger()
            command_logger.log_command_start(command_name, metadata)
            try:
                result = func(*args, **kwargs)
            except click.exceptions.Exit as e:
                if e.exit_code:
                    command_logger.log_command_error(command_name, e, exit_code=e.exit_code)
                else:
                    command_logger.log_command_complete(command_name)
                raise
            except SystemExit as e:
                code = e.code if isinstance(e.code, int) else 1
                if code:
                    command_logger.log_command_error(command_name, e, exit_code=code)
                else:
                    command_logger.log_command_complete(command_name)
                raise
            except Exception as e:
                command_logger.log_command_error(command_name, e)
                raise
            command_logger.log_command_complete(command_name)
            return result

        return wrapper

    return decorator


__all__ = [
    "CollectiveLogFormatter",
    "CommandLogger",
    "setup_file_logging",
    "get_command_logger",
    "reset_logging",
    "log_command",
    "LOG_MAX_BYTES",
    "LOG_BACKUP_COUNT",
    "LOG_LEVELS",
    "COMMAND_LOGGER_NAME",
]
