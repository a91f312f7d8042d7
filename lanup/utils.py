#!/usr/bin/env python3
"""
lanup Utilities Module

This module provides shared utility functions including logging setup and the
console output helpers used throughout lanup. It consolidates cross-cutting
concerns so every component logs and prints the same way.

Functions:
    setup_logging: Configure logging with rotation and custom formatting
    get_logger: Retrieve existing logger instances by name
    print_success / print_info / print_warning / print_error: Console messages
    print_section / print_url: Console layout helpers
    init_console: Enable colored output on terminals

License: MIT
"""

import logging
import logging.handlers
import os
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, TextIO

import colorama
from colorama import Fore, Style

# Python has no WARN level name; lanup configuration files use "warn"
LEVEL_ALIASES = {
    'WARN': 'WARNING',
}

VALID_LEVELS = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']


class BracketFormatter(logging.Formatter):
    """
    Log formatter producing structured bracket output.

    Example:
        ``[2025-01-15 10:30:45 UTC] [system] [INFO] [lanup.watcher] Network change detected``
    """

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.fromtimestamp(
            record.created,
            tz=timezone.utc
        ).strftime('%Y-%m-%d %H:%M:%S UTC')

        user = getattr(record, 'user', 'system')

        message = f"[{timestamp}] [{user}] [{record.levelname}] [{record.name}] {record.getMessage()}"
        if record.exc_info:
            message = f"{message}\n{self.formatException(record.exc_info)}"
        return message


def normalize_log_level(log_level: str) -> str:
    """
    Convert a configured level name into a Python logging level name.

    Args:
        log_level (str): Level name, case-insensitive. ``warn`` is accepted.

    Returns:
        str: Upper-case Python level name

    Raises:
        ValueError: If log_level is not a valid level
    """
    level = log_level.upper()
    level = LEVEL_ALIASES.get(level, level)
    if level not in VALID_LEVELS:
        raise ValueError(f"Invalid log level '{log_level}'. Must be one of: {VALID_LEVELS}")
    return level


def setup_logging(log_level: str = "INFO",
                  log_path: Optional[str] = None,
                  console: bool = False,
                  max_bytes: int = 5 * 1024 * 1024,
                  backup_count: int = 5) -> logging.Logger:
    """
    Set up logging with rotation and custom formatting.

    Configures the ``lanup`` logger. Component loggers (``lanup.net``,
    ``lanup.watcher``, ``lanup.env`` ...) propagate to it, so this function
    only needs to be called once, from the CLI entry point.

    **Log Rotation:**
    The file handler rotates at ``max_bytes`` and keeps ``backup_count`` old
    files (``lanup.log.1``, ``lanup.log.2`` ...), so a long running watch
    session cannot fill the disk.

    **Console Output:**
    The CLI prints its own user-facing messages, so the console handler is off
    by default and only enabled for ``--verbose`` runs.

    Args:
        log_level (str): Logging level (DEBUG, INFO, WARN/WARNING, ERROR, CRITICAL).
        log_path (Optional[str]): Log file path. Parent directories are created.
            When None, no file handler is installed.
        console (bool): Also log to stderr.
        max_bytes (int): Rotation size per file.
        backup_count (int): Number of rotated files kept.

    Returns:
        logging.Logger: The configured ``lanup`` logger

    Raises:
        ValueError: If log_level is not a valid logging level

    Example:
        ```python
        logger = setup_logging("info", "~/.lanup/logs/lanup.log")
        logger.info("Starting lanup")
        ```

    Note:
        Existing handlers are cleared, so repeated calls (tests, watch-mode
        restarts) do not duplicate log lines.
    """
    numeric_level = getattr(logging, normalize_log_level(log_level))

    logger = logging.getLogger("lanup")
    logger.setLevel(numeric_level)

    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    if console:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(numeric_level)
        console_handler.setFormatter(BracketFormatter())
        logger.addHandler(console_handler)

    if log_path:
        log_file_path = Path(log_path).expanduser()
        try:
            log_file_path.parent.mkdir(parents=True, exist_ok=True)
            file_handler = logging.handlers.RotatingFileHandler(
                filename=log_file_path,
                maxBytes=max_bytes,
                backupCount=backup_count,
                encoding='utf-8',
                mode='a'
            )
            file_handler.setLevel(numeric_level)
            file_handler.setFormatter(BracketFormatter())
            logger.addHandler(file_handler)
        except OSError as e:
            # Logging is optional for the CLI; report and keep going
            print_warning(f"Failed to initialize log file '{log_file_path}': {e}")

    if not logger.handlers:
        logger.addHandler(logging.NullHandler())

    logger.debug(f"Logging configured: level={logging.getLevelName(numeric_level)}, "
                 f"file={log_path or 'disabled'}, console={console}")
    return logger


def get_logger(name: str = "lanup") -> logging.Logger:
    """
    Get a logger instance by name.

    **Logger Naming Convention:**
    - "lanup" - Main application logger
    - "lanup.net" - Interface scanning and selection
    - "lanup.watcher" - Network change watcher
    - "lanup.env" - Env file reading, merging and writing
    - "lanup.providers" - Docker / Supabase detection
    - "lanup.config" - Configuration loading

    Args:
        name (str): Logger name to retrieve. Defaults to main application logger.

    Returns:
        logging.Logger: Logger instance
    """
    return logging.getLogger(name)


# ==================== CONSOLE OUTPUT ====================

def _colors_disabled() -> bool:
    return os.environ.get('NO_COLOR', '').lower() in ('1', 'true', 'yes')


def _use_color(stream: TextIO) -> bool:
    if _colors_disabled():
        return False
    return bool(getattr(stream, "isatty", lambda: False)())


def init_console() -> bool:
    """
    Prepare the terminal for colored output.

    Colors are used only when stdout is a TTY and ``NO_COLOR`` is not set;
    otherwise every message is printed with a plain ``[TAG]`` prefix.

    Returns:
        bool: True if colored output is enabled.
    """
    if not _use_color(sys.stdout):
        return False
    # Enables ANSI processing on Windows consoles, no-op elsewhere
    colorama.just_fix_windows_console()
    return True


def _emit(icon: str, tag: str, color: str, message: str, stream: Optional[TextIO] = None) -> None:
    stream = stream or sys.stdout
    if _use_color(stream):
        stream.write(f"{color}{Style.BRIGHT}{icon} {message}{Style.RESET_ALL}\n")
    else:
        stream.write(f"[{tag}] {message}\n")
    stream.flush()


def print_success(message: str, stream: Optional[TextIO] = None) -> None:
    """Print a green success line."""
    _emit("✅", "SUCCESS", Fore.GREEN, message, stream)


def print_info(message: str, stream: Optional[TextIO] = None) -> None:
    """Print a blue informational line."""
    _emit("ℹ️ ", "INFO", Fore.BLUE, message, stream)


def print_warning(message: str, stream: Optional[TextIO] = None) -> None:
    """Print a yellow warning line."""
    _emit("⚠️ ", "WARNING", Fore.YELLOW, message, stream)


def print_error(message: str, stream: Optional[TextIO] = None) -> None:
    """Print a red error line to stderr."""
    _emit("❌", "ERROR", Fore.RED, message, stream or sys.stderr)


def print_section(title: str, stream: Optional[TextIO] = None) -> None:
    """Print a section heading followed by an underline."""
    stream = stream or sys.stdout
    if _use_color(stream):
        stream.write(f"{Fore.CYAN}{Style.BRIGHT}{title}{Style.RESET_ALL}\n")
    else:
        stream.write(f"{title}\n")
    stream.write("=" * len(title) + "\n")
    stream.flush()


def print_url(name: str, url: str, stream: Optional[TextIO] = None) -> None:
    """Print a named URL, highlighted on a terminal."""
    stream = stream or sys.stdout
    if _use_color(stream):
        stream.write(f"  {Fore.CYAN}{name}{Style.RESET_ALL}: {Style.BRIGHT}{url}{Style.RESET_ALL}\n")
    else:
        stream.write(f"  {name}: {url}\n")
    stream.flush()
