"""
Centralized logging for CampusLink.

Every component logs through ``get_logger(area)``. Console lines are
colored and prefixed by area (``[CAMPUSLINK.vault] 14:32:15 INFO ...``);
``setup_logging()`` adds one timestamped file per process run, with
``latest.log`` pointing at it. Loggers created before ``setup_logging()``
is called (module-level loggers) are attached to the file retroactively.

Credentials must never be passed to a logger. Usernames go through
``mask_identifier()``; a redaction filter is a last line for anything
shaped like ``password=...``.
"""

import logging
import os
import re
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional

LOGGER_NAMESPACE = "campuslink"

_RESET = "\033[0m"
_DIM = "\033[2m"

# Area → (ANSI color, prefix)
AREAS = {
    "main": ("\033[96m", "CAMPUSLINK.main"),
    "database": ("\033[94m", "CAMPUSLINK.database"),
    "migrations": ("\033[34m", "CAMPUSLINK.migrations"),
    "api": ("\033[92m", "CAMPUSLINK.api"),
    "api.linking": ("\033[32m", "CAMPUSLINK.api.linking"),
    "vault": ("\033[95m", "CAMPUSLINK.vault"),
    "automation": ("\033[93m", "CAMPUSLINK.automation"),
    "registry": ("\033[33m", "CAMPUSLINK.registry"),
    "linking": ("\033[35m", "CAMPUSLINK.linking"),
}
_UNKNOWN_AREA = ("\033[37m", "CAMPUSLINK")

LEVEL_COLORS = {
    logging.DEBUG: _DIM,
    logging.WARNING: "\033[33m",
    logging.ERROR: "\033[31m",
    logging.CRITICAL: "\033[91m\033[1m",
}

_SECRET_PATTERN = re.compile(r"(?i)\b(password|passwd|pwd|secret)(\s*[=:]\s*)(\S+)")


def _area_of(record: logging.LogRecord) -> str:
    name = record.name
    if name.startswith(LOGGER_NAMESPACE + "."):
        return name[len(LOGGER_NAMESPACE) + 1:]
    return "main"


class RedactingFilter(logging.Filter):
    """Replace ``password=value`` style fragments with a placeholder."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        redacted = _SECRET_PATTERN.sub(r"\1\2[REDACTED]", message)
        if redacted != message:
            record.msg = redacted
            record.args = None
        return True


class ConsoleFormatter(logging.Formatter):
    """``[CAMPUSLINK.area] HH:MM:SS LEVEL    message`` with ANSI colors."""

    def format(self, record: logging.LogRecord) -> str:
        color, prefix = AREAS.get(_area_of(record), _UNKNOWN_AREA)
        level_color = LEVEL_COLORS.get(record.levelno, _RESET)
        clock = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        line = (
            f"{color}[{prefix}]{_RESET} {_DIM}{clock}{_RESET} "
            f"{level_color}{record.levelname:<8}{_RESET} {record.getMessage()}"
        )
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


class FileFormatter(logging.Formatter):
    """Plain lines for the log file, with optional session/user context."""

    def format(self, record: logging.LogRecord) -> str:
        _, prefix = AREAS.get(_area_of(record), _UNKNOWN_AREA)
        stamp = datetime.fromtimestamp(record.created).strftime("%Y-%m-%d %H:%M:%S.%f")[:-3]
        context = "".join(
            f" {key}={getattr(record, key)}"
            for key in ("session_id", "user_id")
            if hasattr(record, key)
        )
        line = f"{stamp} [{prefix}] {record.levelname}: {record.getMessage()}{context}"
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


_log_dir: Optional[Path] = None
_file_handler: Optional[logging.FileHandler] = None


def _console_level() -> int:
    level = logging.getLevelName(os.getenv("CAMPUSLINK_LOG_LEVEL", "INFO").upper())
    return level if isinstance(level, int) else logging.INFO


def _configured_loggers() -> list[logging.Logger]:
    return [
        logger
        for name, logger in logging.Logger.manager.loggerDict.items()
        if isinstance(logger, logging.Logger) and name.startswith(LOGGER_NAMESPACE + ".")
    ]


def setup_logging(
    log_dir: Optional[str] = None,
    file_level: int = logging.DEBUG,
) -> Path:
    """
    Start writing logs to a file in *log_dir* (default ``backend/logs``).

    Returns:
        The log directory
    """
    global _log_dir, _file_handler

    _log_dir = Path(log_dir) if log_dir else Path(__file__).resolve().parent.parent / "logs"
    _log_dir.mkdir(parents=True, exist_ok=True)

    filename = datetime.now().strftime("campuslink_%Y%m%d_%H%M%S.log")
    latest = _log_dir / "latest.log"
    try:
        if latest.is_symlink() or latest.exists():
            latest.unlink()
        latest.symlink_to(filename)
    except OSError:
        pass  # No symlinks on this filesystem

    if _file_handler is not None:
        for logger in _configured_loggers():
            logger.removeHandler(_file_handler)
        _file_handler.close()

    _file_handler = logging.FileHandler(_log_dir / filename, encoding="utf-8")
    _file_handler.setLevel(file_level)
    _file_handler.setFormatter(FileFormatter())
    _file_handler.addFilter(RedactingFilter())

    for logger in _configured_loggers():
        logger.addHandler(_file_handler)

    get_logger("main").info(f"Logging to {_log_dir / filename}")
    return _log_dir


def get_logger(area: str = "main") -> logging.Logger:
    """
    Logger for one application area, e.g. ``get_logger("registry")``.

    Output: ``[CAMPUSLINK.registry] 14:32:15 INFO     Session registered``
    """
    logger = logging.getLogger(f"{LOGGER_NAMESPACE}.{area}")
    if logger.handlers:
        return logger

    logger.setLevel(logging.DEBUG)
    console = logging.StreamHandler(sys.stdout)
    console.setLevel(_console_level())
    console.setFormatter(ConsoleFormatter())
    console.addFilter(RedactingFilter())
    logger.addHandler(console)

    if _file_handler is not None:
        logger.addHandler(_file_handler)

    # Handlers live on each area logger; the root would print twice
    logger.propagate = False
    return logger


def mask_identifier(value: Optional[str]) -> str:
    """Mask a third-party username for log output (``ab***@psu.edu``)."""
    if not value:
        return "<empty>"
    local, sep, domain = value.partition("@")
    visible = local[:2] if len(local) > 2 else local[:1]
    return f"{visible}***{sep}{domain}"


def get_log_dir() -> Optional[Path]:
    return _log_dir


def get_recent_logs(lines: int = 100) -> list[str]:
    """Last *lines* lines of the current log file (oldest first)."""
    if _file_handler is None:
        return []
    try:
        with open(_file_handler.baseFilename, "r", encoding="utf-8") as f:
            return f.readlines()[-lines:]
    except OSError:
        return []
