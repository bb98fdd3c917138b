"""
Structured JSON Logging.

One JSON object per line, on stdout and (optionally) in a rotating file,
so a rebuild or a failed lookup can be followed record by record and
fed to any log shipper without parsing free text.

Loggers are injected: services receive a :class:`StructuredLogger` through
their constructor and never call ``logging.getLogger`` themselves.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Optional, TextIO


class JSONFormatter(logging.Formatter):
    """Render a ``LogRecord`` as a single JSON line.

    Keys: ``timestamp`` (UTC, ISO-8601), ``level``, ``logger_name``,
    ``message``, plus ``extra`` for caller-supplied fields and
    ``exception`` when a traceback is attached.
    """

    _RESERVED: frozenset[str] = frozenset(
        vars(logging.makeLogRecord({})).keys()
    ) | {"message", "asctime"}

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger_name": record.name,
            "message": record.getMessage(),
        }

        extra = {
            key: str(value)
            for key, value in vars(record).items()
            if key not in self._RESERVED
        }
        if extra:
            entry["extra"] = extra

        if record.exc_info and not record.exc_text:
            record.exc_text = self.formatException(record.exc_info)
        if record.exc_text:
            entry["exception"] = record.exc_text

        return json.dumps(entry, ensure_ascii=False)


def _resolve_level(level: Optional[int], configured: str) -> int:
    if level is not None:
        return level
    named = logging.getLevelName(configured.upper())
    return named if isinstance(named, int) else logging.INFO


def _file_handler(path: str, max_bytes: int, backup_count: int) -> RotatingFileHandler:
    log_path = Path(path)
    log_path.parent.mkdir(parents=True, exist_ok=True)
    return RotatingFileHandler(
        filename=str(log_path),
        maxBytes=max_bytes,
        backupCount=backup_count,
        encoding="utf-8",
    )


class StructuredLogger:
    """Injectable wrapper around a JSON-configured ``logging.Logger``.

    Usage::

        log = StructuredLogger(name="user_indexer")
        log.info("Indexed batch", extra={"size": 500})

    Arguments left as ``None`` are read from :class:`~usersearch.config.AppConfig`
    (``LOG_LEVEL``, ``LOG_FILE``, ``LOG_MAX_BYTES``, ``LOG_BACKUP_COUNT``).
    ``log_file=""`` keeps output on the stream only.

    Handlers are attached once per logger name; building a second
    ``StructuredLogger`` with the same name reuses them.
    """

    def __init__(
        self,
        name: str = "usersearch",
        level: Optional[int] = None,
        stream: Optional[TextIO] = None,
        log_file: Optional[str] = None,
        max_bytes: Optional[int] = None,
        backup_count: Optional[int] = None,
    ) -> None:
        # Imported here: config logs through the stdlib logger at import time.
        from usersearch.config import get_config
        cfg = get_config()

        resolved_level = _resolve_level(level, cfg.LOG_LEVEL)
        self._logger: logging.Logger = logging.getLogger(name)
        self._logger.setLevel(resolved_level)

        if self._logger.handlers:
            return

        formatter = JSONFormatter()
        handlers: list[logging.Handler] = [logging.StreamHandler(stream or sys.stdout)]

        path = log_file if log_file is not None else cfg.LOG_FILE
        file_error: Optional[OSError] = None
        if path:
            try:
                handlers.append(_file_handler(
                    path,
                    max_bytes if max_bytes is not None else cfg.LOG_MAX_BYTES,
                    backup_count if backup_count is not None else cfg.LOG_BACKUP_COUNT,
                ))
            except OSError as exc:
                file_error = exc

        for handler in handlers:
            handler.setLevel(resolved_level)
            handler.setFormatter(formatter)
            self._logger.addHandler(handler)

        if file_error is not None:
            self._logger.warning(
                "Could not open log file '%s' (%s); logging to the console only.",
                path, file_error,
            )

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

    def is_enabled_for(self, level: int) -> bool:
        return self._logger.isEnabledFor(level)


def get_logger(name: str = "usersearch") -> StructuredLogger:
    """Return a :class:`StructuredLogger` for *name*, configured from ``AppConfig``."""
    return StructuredLogger(name=name)
