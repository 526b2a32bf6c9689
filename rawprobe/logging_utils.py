"""Structured logging helpers for RawProbe."""

from __future__ import annotations

import json
import logging
import os
import re
from datetime import datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Iterable, Optional

from rich.logging import RichHandler

DEFAULT_MAX_BYTES = int(os.environ.get("LOG_MAX_BYTES", str(10 * 1024 * 1024)))
DEFAULT_BACKUP_COUNT = int(os.environ.get("LOG_BACKUP_COUNT", "5"))

SENSITIVE_HEADERS = {"cookie", "set-cookie", "authorization", "proxy-authorization"}

TRANSCRIPT_LOGGER = "rawprobe.transcript"


class JsonFormatter(logging.Formatter):
    """Emit logs as structured JSON objects."""

    def format(self, record: logging.LogRecord) -> str:  # pragma: no cover - straightforward structure
        payload = {
            "level": record.levelname,
            "message": record.getMessage(),
            "logger": record.name,
            "timestamp": self.formatTime(record, datefmt="%Y-%m-%dT%H:%M:%S%z"),
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, sort_keys=True)


_SENSITIVE_LINE = re.compile(
    r"(?im)^([ \t]*(?:%s)[ \t]*:)[^\r\n]*" % "|".join(re.escape(name) for name in sorted(SENSITIVE_HEADERS))
)


def redact_header_lines(text: str) -> str:
    """Blank the values of cookie and authorization lines inside raw HTTP text."""

    return _SENSITIVE_LINE.sub(r"\1 [redacted]", text)


class SensitiveDataFilter(logging.Filter):
    """Redact sensitive header values in structured arguments and raw request text."""

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.args, dict):
            sanitized = {}
            for key, value in record.args.items():
                if isinstance(key, str) and key.lower() in SENSITIVE_HEADERS:
                    sanitized[key] = "[redacted]"
                elif isinstance(value, str):
                    sanitized[key] = redact_header_lines(value)
                else:
                    sanitized[key] = value
            record.args = sanitized
        elif isinstance(record.args, tuple):
            record.args = tuple(
                redact_header_lines(value) if isinstance(value, str) else value for value in record.args
            )
        if isinstance(record.msg, str) and not record.args:
            record.msg = redact_header_lines(record.msg)
        return True


def _rich_handler(level: int) -> logging.Handler:
    return RichHandler(
        rich_tracebacks=True,
        markup=False,
        show_path=False,
        level=level,
    )


def configure_logging(
    level: int = logging.INFO,
    *,
    json_logs: bool = False,
    logfile: Optional[Path | str] = None,
    suppress: Optional[Iterable[str]] = None,
) -> None:
    """Configure root logging with rotation and optional JSON output."""

    handlers: list[logging.Handler] = []

    console_handler = _rich_handler(level)
    console_handler.addFilter(SensitiveDataFilter())
    handlers.append(console_handler)

    if logfile:
        path = Path(logfile)
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            path,
            maxBytes=DEFAULT_MAX_BYTES,
            backupCount=DEFAULT_BACKUP_COUNT,
            encoding="utf-8",
        )
        file_handler.addFilter(SensitiveDataFilter())
        if json_logs:
            file_handler.setFormatter(JsonFormatter())
        else:
            file_handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
        handlers.append(file_handler)

    logging.basicConfig(level=level, handlers=handlers, force=True)

    for name in suppress or ("asyncio",):
        logging.getLogger(name).setLevel(max(level, logging.WARNING))


def open_transcript(path: Optional[Path | str], *, redact: bool = True) -> Optional[logging.Logger]:
    """Return a logger appending raw transaction text to ``path``.

    The transcript is a plain append-only file holding request text, timing
    and certificate decisions.  ``None`` disables it.  With ``redact`` the
    values of cookie and authorization header lines are replaced by
    ``[redacted]`` before they reach the file.  Write failures are
    reported by :meth:`logging.Handler.handleError` and never reach the
    caller, so the exchange itself is unaffected.
    """

    if not path:
        return None
    resolved = Path(path).expanduser().resolve()
    logger = logging.getLogger(f"{TRANSCRIPT_LOGGER}.{resolved}")
    logger.setLevel(logging.INFO)
    logger.propagate = False
    handler = next(
        (
            existing
            for existing in logger.handlers
            if isinstance(existing, logging.FileHandler) and Path(existing.baseFilename) == resolved
        ),
        None,
    )
    if handler is None:
        handler = logging.FileHandler(resolved, mode="a", encoding="utf-8", delay=True)
        handler.setFormatter(logging.Formatter("%(message)s"))
        logger.addHandler(handler)
    for existing_filter in list(handler.filters):
        handler.removeFilter(existing_filter)
    if redact:
        handler.addFilter(SensitiveDataFilter())
    return logger


def transcript_timestamp() -> str:
    return datetime.now().strftime("%Y-%m-%d %H:%M:%S")


__all__ = [
    "configure_logging",
    "JsonFormatter",
    "SensitiveDataFilter",
    "TRANSCRIPT_LOGGER",
    "open_transcript",
    "redact_header_lines",
    "transcript_timestamp",
]
