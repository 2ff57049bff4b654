"""
Structured JSON Logging.

Every service logs through an injected :class:`StructuredLogger`, which
writes one JSON object per line to stdout and, unless disabled, to a
size-rotated log file.  Caller context passed via ``extra=`` lands under
an ``"extra"`` key.

Auth flows handle bearer secrets (session handles, wallet auth tokens,
registration temp tokens).  Any ``extra`` field whose name marks it as
one of those is masked before the line is written.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Optional, TextIO

# Attributes every LogRecord carries; anything else came from ``extra=``.
_RECORD_ATTRS: frozenset[str] = frozenset(
    vars(logging.makeLogRecord({})).keys()
) | {"message", "asctime", "taskName"}

_SECRET_FIELDS: frozenset[str] = frozenset({
    "session_id",
    "sessionid",
    "auth_token",
    "authtoken",
    "temp_token",
    "temptoken",
    "authorization",
})


def mask_secret(value: object) -> str:
    """``abcdef123456`` -> ``abcd...(12)``; short values are fully hidden."""
    text = str(value)
    if len(text) <= 8:
        return "***"
    return f"{text[:4]}...({len(text)})"


class JSONFormatter(logging.Formatter):
    """One JSON object per record: timestamp, level, logger, message,
    optional ``extra`` and ``exception``."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger_name": record.name,
            "message": record.getMessage(),
        }

        context = {
            key: mask_secret(value) if key.lower() in _SECRET_FIELDS else str(value)
            for key, value in vars(record).items()
            if key not in _RECORD_ATTRS
        }
        if context:
            payload["extra"] = context

        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        elif record.exc_text:
            payload["exception"] = record.exc_text

        return json.dumps(payload, ensure_ascii=False)


class StructuredLogger:
    """Injectable JSON logger.

    Loggers are keyed by *name*; handlers are attached only the first
    time a name is seen, so constructing several ``StructuredLogger``
    objects for the same component never duplicates output.

    Parameters
    ----------
    name:
        Component name, e.g. ``"wallet_auth"``.
    level:
        Minimum level emitted.
    stream:
        Console stream; defaults to ``sys.stdout``.  Tests pass a
        ``StringIO``.
    log_file, max_bytes, backup_count:
        Rotating file settings; unset values come from ``AppConfig``.
    to_file:
        Set ``False`` to log to the stream only.
    """

    def __init__(
        self,
        name: str = "thaicraft",
        level: int = logging.INFO,
        stream: Optional[TextIO] = None,
        log_file: Optional[str] = None,
        max_bytes: Optional[int] = None,
        backup_count: Optional[int] = None,
        to_file: bool = True,
    ) -> None:
        self._logger: logging.Logger = logging.getLogger(name)
        self._logger.setLevel(level)
        if self._logger.handlers:
            return

        formatter = JSONFormatter()
        console = logging.StreamHandler(stream or sys.stdout)
        console.setFormatter(formatter)
        self._logger.addHandler(console)

        if to_file:
            handler = _rotating_handler(log_file, max_bytes, backup_count)
            if handler is None:
                self._logger.warning(
                    "Log file unavailable; continuing with console logging only.",
                )
            else:
                handler.setFormatter(formatter)
                self._logger.addHandler(handler)

    @property
    def logger(self) -> logging.Logger:
        """The underlying ``logging.Logger``."""
        return self._logger

    def debug(self, msg: str, *args: object, **kwargs: Any) -> None:
        self._logger.debug(msg, *args, **kwargs)

    def info(self, msg: str, *args: object, **kwargs: Any) -> None:
        self._logger.info(msg, *args, **kwargs)

    def warning(self, msg: str, *args: object, **kwargs: Any) -> None:
        self._logger.warning(msg, *args, **kwargs)

    def error(self, msg: str, *args: object, **kwargs: Any) -> None:
        self._logger.error(msg, *args, **kwargs)

    def critical(self, msg: str, *args: object, **kwargs: Any) -> None:
        self._logger.critical(msg, *args, **kwargs)


def _rotating_handler(
    log_file: Optional[str],
    max_bytes: Optional[int],
    backup_count: Optional[int],
) -> Optional[RotatingFileHandler]:
    """Build the file handler, or ``None`` when the path is not writable."""
    # Deferred so thaicraft.config is only loaded for file logging.
    from thaicraft.config import get_config

    config = get_config()
    path = Path(log_file or config.LOG_FILE)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        return RotatingFileHandler(
            filename=str(path),
            maxBytes=config.LOG_MAX_BYTES if max_bytes is None else max_bytes,
            backupCount=config.LOG_BACKUP_COUNT if backup_count is None else backup_count,
            encoding="utf-8",
        )
    except OSError:
        return None


def get_logger(name: str = "thaicraft") -> StructuredLogger:
    """Shorthand for ``StructuredLogger(name=name)``."""
    return StructuredLogger(name=name)
