"""
Logging configuration — diagnostics for the CLI, separate from the run log.

``setup_logging`` is called once by main.py; modules log through
``logging.getLogger(__name__)``. Level precedence:

    --debug / --verbose / --quiet  >  HOSTPROV_LOG_LEVEL  >  WARNING

HOSTPROV_LOG_FILE adds a full-detail file handler (its own level via
HOSTPROV_LOG_FILE_LEVEL).

Every handler installed here carries the process-wide
:class:`SecretRedactionFilter`. Once secrets are collected the provision
use case registers them, and any record that would carry one is masked
before it is emitted.
"""

from __future__ import annotations

import logging
import sys

from hostprov.core.models.secret import MASK, SecretValue

# ── Formats per console level ───────────────────────────────────

_CONSOLE_FORMATS: dict[int, tuple[str, str | None]] = {
    logging.DEBUG: ("%(asctime)s %(levelname)-5s %(name)s:%(lineno)d | %(message)s", "%H:%M:%S"),
    logging.INFO: ("%(asctime)s %(message)s", "%H:%M:%S"),
    logging.WARNING: ("%(levelname)s: %(message)s", None),
}

_FILE_FORMAT = "%(asctime)s %(levelname)-5s %(name)s:%(lineno)d | %(message)s"
_FILE_DATEFMT = "%Y-%m-%d %H:%M:%S"

# Loggers outside hostprov that only matter when debugging
_NOISY_LOGGERS = ("urllib3", "asyncio")


class SecretRedactionFilter(logging.Filter):
    """Masks registered secret values in formatted log messages."""

    def __init__(self) -> None:
        super().__init__()
        self._values: set[str] = set()

    def register(self, secrets: list[SecretValue]) -> None:
        self._values.update(s.reveal() for s in secrets if s.sensitive and s.reveal())

    def clear(self) -> None:
        self._values.clear()

    def filter(self, record: logging.LogRecord) -> bool:
        if not self._values:
            return True
        message = record.getMessage()
        masked = message
        for raw in sorted(self._values, key=len, reverse=True):
            masked = masked.replace(raw, MASK)
        if masked != message:
            record.msg, record.args = masked, None
        return True


_redactor = SecretRedactionFilter()


def redact_secrets_in_logs(secrets: list[SecretValue]) -> None:
    """Mask these values in every log line from now on."""
    _redactor.register(secrets)


def setup_logging(
    level: str = "WARNING",
    log_file: str | None = None,
    log_file_level: str | None = None,
    quiet_third_party: bool = True,
) -> None:
    """Configure the root logger for the whole process.

    Args:
        level: Console level name.
        log_file: Optional path for a full-detail log file.
        log_file_level: Level for the file; defaults to ``level``.
        quiet_third_party: Pin noisy third-party loggers at WARNING
            unless the console is at DEBUG.
    """
    console_level = _parse_level(level)
    fmt, datefmt = _console_format(console_level)

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(console_level)
    console.setFormatter(logging.Formatter(fmt, datefmt=datefmt))
    console.addFilter(_redactor)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(console)
    root_level = console_level

    if log_file:
        file_level = _parse_level(log_file_level) if log_file_level else console_level
        handler = logging.FileHandler(log_file, encoding="utf-8")
        handler.setLevel(file_level)
        handler.setFormatter(logging.Formatter(_FILE_FORMAT, datefmt=_FILE_DATEFMT))
        handler.addFilter(_redactor)
        root.addHandler(handler)
        root_level = min(root_level, file_level)

    root.setLevel(root_level)

    if quiet_third_party and console_level > logging.DEBUG:
        for name in _NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)

    # a closed stderr (CliRunner, daemonised parents) must not crash a run
    logging.raiseExceptions = False


def _console_format(level: int) -> tuple[str, str | None]:
    for threshold in (logging.DEBUG, logging.INFO):
        if level <= threshold:
            return _CONSOLE_FORMATS[threshold]
    return _CONSOLE_FORMATS[logging.WARNING]


def _parse_level(level: str | None) -> int:
    """Level name to its numeric value; anything unknown is WARNING."""
    if not level:
        return logging.WARNING
    numeric = getattr(logging, level.upper(), None)
    return numeric if isinstance(numeric, int) else logging.WARNING
