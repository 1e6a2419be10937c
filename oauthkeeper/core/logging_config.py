"""
Logging for OAuthKeeper.

Every handler installed by :func:`setup_logging` scrubs credentials (bearer
and basic credentials, passwords, client secrets, access and refresh tokens,
authorization codes) from messages, arguments and tracebacks. Records are
rendered as JSON lines or plain text, both tagged with the correlation ID of
the request being served.
"""

import json
import logging
import logging.handlers
import re
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, Optional

if TYPE_CHECKING:
    from .config_manager import LoggingConfig

# Set by CorrelationMiddleware for the duration of a request
correlation_id: ContextVar[Optional[str]] = ContextVar('correlation_id', default=None)

REDACTED = "***REDACTED***"

_SIZE_RE = re.compile(r'^\s*(\d+(?:\.\d+)?)\s*([KMG]?B)?\s*$', re.IGNORECASE)
_SIZE_UNITS = {"B": 1, "KB": 1024, "MB": 1024 ** 2, "GB": 1024 ** 3}


class SensitiveDataFilter(logging.Filter):
    """Scrub OAuth credentials from a record before it is formatted."""

    PATTERNS = [
        (re.compile(r'(Authorization:?\s+)(?:Bearer\s+|Basic\s+)?\S+', re.IGNORECASE), rf'\1{REDACTED}'),
        (re.compile(r'(Bearer\s+)[A-Za-z0-9\-._~+/]+=*', re.IGNORECASE), rf'\1{REDACTED}'),
        (re.compile(r'(password["\']?\s*[:=]\s*["\']?)[^\s&,"\']+', re.IGNORECASE), rf'\1{REDACTED}'),
        (re.compile(r'(client_?secret["\']?\s*[:=]\s*["\']?)[^\s&,"\']+', re.IGNORECASE), rf'\1{REDACTED}'),
        (re.compile(r'((?:access|refresh)_?token["\']?\s*[:=]\s*["\']?)[^\s&,"\']+', re.IGNORECASE), rf'\1{REDACTED}'),
        (re.compile(r'(\bcode=)[^\s&]+', re.IGNORECASE), rf'\1{REDACTED}'),
    ]

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.msg, str):
            record.msg = self.redact(record.msg)
        if isinstance(record.args, tuple):
            record.args = tuple(
                self.redact(arg) if isinstance(arg, str) else arg
                for arg in record.args
            )
        return True

    @classmethod
    def redact(cls, text: str) -> str:
        """Apply every redaction pattern to a string."""
        for pattern, replacement in cls.PATTERNS:
            text = pattern.sub(replacement, text)
        return text


class JSONFormatter(logging.Formatter):
    """One JSON object per record."""

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "module": record.name,
            "message": record.getMessage(),
        }
        request_id = correlation_id.get()
        if request_id:
            entry["correlation_id"] = request_id
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        context = getattr(record, "context", None)
        if context:
            entry["context"] = context
        return json.dumps(entry, default=str)

    def formatException(self, ei) -> str:
        return SensitiveDataFilter.redact(super().formatException(ei))


class TextFormatter(logging.Formatter):
    """``time [LEVEL] logger (correlation-id): message``"""

    def __init__(self):
        super().__init__(
            fmt="%(asctime)s [%(levelname)s] %(name)s%(request_tag)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

    def format(self, record: logging.LogRecord) -> str:
        request_id = correlation_id.get()
        record.request_tag = f" ({request_id})" if request_id else ""
        return super().format(record)

    def formatException(self, ei) -> str:
        return SensitiveDataFilter.redact(super().formatException(ei))


def _install(root: logging.Logger, handler: logging.Handler, formatter: logging.Formatter) -> None:
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(formatter)
    handler.addFilter(SensitiveDataFilter())
    root.addHandler(handler)


def setup_logging(
    level: str = "INFO",
    format_type: str = "json",
    log_file: Optional[str] = None,
    rotation_size: str = "10MB",
    rotation_count: int = 5,
    module_levels: Optional[Dict[str, str]] = None
) -> None:
    """
    Replace the root logger's handlers with redacting console and file handlers.

    Args:
        level: Default log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        format_type: "json" or "text"
        log_file: Optional file path; the file rotates at ``rotation_size``
        rotation_size: Size limit for log rotation (e.g., "10MB")
        rotation_count: Number of rotated log files to keep
        module_levels: Per-logger overrides, e.g. {"oauthkeeper.oauth.grants": "DEBUG"}
    """
    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper()))
    root.handlers.clear()

    formatter = JSONFormatter() if format_type == "json" else TextFormatter()
    _install(root, logging.StreamHandler(sys.stdout), formatter)

    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        _install(
            root,
            logging.handlers.RotatingFileHandler(
                filename=log_file,
                maxBytes=_parse_size(rotation_size),
                backupCount=rotation_count,
                encoding='utf-8',
            ),
            formatter,
        )
        root.info(f"Logging to file: {log_file} (rotation: {rotation_size}, count: {rotation_count})")

    for module_name, module_level in (module_levels or {}).items():
        logging.getLogger(module_name).setLevel(getattr(logging, module_level.upper()))

    root.info(f"Logging configured: level={level}, format={format_type}")


def configure_logging(settings: "LoggingConfig") -> None:
    """Apply the ``logging`` section of the server configuration."""
    setup_logging(
        level=settings.level,
        format_type=settings.format,
        log_file=settings.file,
        rotation_size=settings.rotation_size,
        rotation_count=settings.rotation_count,
        module_levels=settings.module_levels,
    )


def _parse_size(size_str: str) -> int:
    """Bytes for a size such as ``"10MB"``; a bare number is taken as bytes."""
    match = _SIZE_RE.match(size_str)
    if match is None:
        raise ValueError(f"Invalid size: {size_str!r}")
    number, unit = match.groups()
    return int(float(number) * _SIZE_UNITS[(unit or "B").upper()])


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


def set_correlation_id(corr_id: str) -> None:
    correlation_id.set(corr_id)


def get_correlation_id() -> Optional[str]:
    return correlation_id.get()


def clear_correlation_id() -> None:
    correlation_id.set(None)


def log_with_context(logger: logging.Logger, level: int, message: str, **context: Any) -> None:
    """Log ``message`` with keyword arguments attached as the record's ``context``."""
    logger.log(level, message, extra={"context": context} if context else {})
