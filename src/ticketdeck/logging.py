"""Logging setup for ticketdeck.

All components log through the ``ticketdeck`` logger hierarchy into one
rotating file, so the interactive view is never disturbed by log output.
Every record passes through ``RedactingFilter`` first: the jira command line
and its error output can carry API tokens, and those never reach the file.
"""

from __future__ import annotations

import logging
import os
import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from logging.handlers import RotatingFileHandler
from pathlib import Path

DEFAULT_LOG_DIR = "~/.config/ticketdeck/logs"
LOG_FILE = "ticketdeck.log"
DEFAULT_MAX_BYTES = 10 * 1024 * 1024  # 10MB
DEFAULT_BACKUP_COUNT = 5

LOG_DIR_ENV_VAR = "TICKETDECK_LOG_DIR"
LOG_LEVEL_ENV_VAR = "TICKETDECK_LOG_LEVEL"

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_SENSITIVE_PATTERNS = [
    (re.compile(r"Bearer [a-zA-Z0-9._-]+"), "Bearer [REDACTED]"),
    (re.compile(r"Basic [a-zA-Z0-9+/=]+"), "Basic [REDACTED]"),
    (re.compile(r"(JIRA_API_TOKEN=)\S+"), r"\1[REDACTED]"),
    (re.compile(r"ATATT[a-zA-Z0-9_=-]{20,}"), "[ATLASSIAN_TOKEN]"),
    (re.compile(r"token=[a-zA-Z0-9._-]+"), "token=[REDACTED]"),
    (re.compile(r"(--token[ =])\S+"), r"\1[REDACTED]"),
]


@dataclass(frozen=True)
class LogSettings:
    """Where ticketdeck logs and how much.

    Attributes:
        log_dir: Directory holding the rotating log file.
        level: Threshold for the ``ticketdeck`` logger and its handlers.
        console: Also log to stderr (the one-shot CLI commands' --verbose).
        max_bytes: Size at which the file rotates.
        backup_count: Rotated files kept.
    """

    log_dir: Path = field(default_factory=lambda: Path(DEFAULT_LOG_DIR).expanduser())
    level: int = logging.INFO
    console: bool = False
    max_bytes: int = DEFAULT_MAX_BYTES
    backup_count: int = DEFAULT_BACKUP_COUNT

    @classmethod
    def from_env(
        cls, console: bool = False, environ: Mapping[str, str] | None = None
    ) -> LogSettings:
        """Settings from TICKETDECK_LOG_DIR and TICKETDECK_LOG_LEVEL.

        An unknown level name falls back to INFO.
        """
        env = os.environ if environ is None else environ
        level = logging.getLevelName(env.get(LOG_LEVEL_ENV_VAR, "INFO").upper())
        return cls(
            log_dir=Path(env.get(LOG_DIR_ENV_VAR, DEFAULT_LOG_DIR)).expanduser(),
            level=level if isinstance(level, int) else logging.INFO,
            console=console,
        )

    @property
    def log_path(self) -> Path:
        return self.log_dir / LOG_FILE


class RedactingFilter(logging.Filter):
    """Scrubs credentials from each record's rendered message."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        cleaned = sanitize_for_log(message)
        if cleaned != message:
            record.msg = cleaned
            record.args = None
        return True


def setup_logging(settings: LogSettings | None = None) -> logging.Logger:
    """Route the ``ticketdeck`` logger hierarchy to a rotating file.

    Calling it again replaces the handlers of the previous call.

    Args:
        settings: Log settings; read from the environment when omitted.

    Returns:
        The root ticketdeck logger.
    """
    settings = settings or LogSettings.from_env()
    settings.log_dir.mkdir(parents=True, exist_ok=True)

    logger = logging.getLogger("ticketdeck")
    logger.setLevel(settings.level)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    handlers: list[logging.Handler] = [
        RotatingFileHandler(
            settings.log_path,
            maxBytes=settings.max_bytes,
            backupCount=settings.backup_count,
            encoding="utf-8",
        )
    ]
    if settings.console:
        handlers.append(logging.StreamHandler())

    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)
    redactor = RedactingFilter()
    for handler in handlers:
        handler.setLevel(settings.level)
        handler.setFormatter(formatter)
        handler.addFilter(redactor)
        logger.addHandler(handler)

    logger.info(
        "ticketdeck logging initialized (level=%s, file=%s)",
        logging.getLevelName(settings.level),
        settings.log_path,
    )
    return logger


def truncate_output(output: str, max_length: int = 5000) -> str:
    """Truncate long command output for logging."""
    if len(output) <= max_length:
        return output
    return output[:max_length] + f"\n... [truncated, {len(output) - max_length} more chars]"


def sanitize_for_log(text: str) -> str:
    """Remove credentials from a command line or error text.

    Args:
        text: Text that may contain sensitive data.

    Returns:
        Sanitized text safe for logging.
    """
    result = text
    for pattern, replacement in _SENSITIVE_PATTERNS:
        result = pattern.sub(replacement, result)
    return result
