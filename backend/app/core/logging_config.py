"""
Structured JSON Logging Configuration

All backend modules log through the standard ``logging`` tree; this module
wires the root logger to JSON output (python-json-logger) with:
- request id correlation via contextvars
- CR/LF scrubbing so device-supplied strings cannot forge log lines
- RTSP credential redaction in messages, args and extra fields
- size-rotated app.log and error.log under the log directory
"""
import contextvars
import logging
import logging.handlers
import os
import re
from datetime import datetime, timezone
from typing import Any, Optional

from pythonjsonlogger import jsonlogger

from app.core.config import settings

request_id_var: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    'request_id', default=None
)

SERVICE_NAME = "camera-streaming"
APP_VERSION = "1.0.0"

# backend/data/logs unless LOG_DIR is set
DEFAULT_LOG_DIR = os.path.join(os.path.dirname(os.path.dirname(os.path.dirname(__file__))), 'data', 'logs')

APP_LOG_MAX_BYTES = 100 * 1024 * 1024
APP_LOG_BACKUPS = 7
ERROR_LOG_MAX_BYTES = 50 * 1024 * 1024
ERROR_LOG_BACKUPS = 5

# Third-party loggers that are chatty at INFO
QUIET_LOGGERS = ('uvicorn.access', 'zeep', 'zeep.transports', 'urllib3', 'httpx')

# user:password@ in the authority of an rtsp:// or rtsps:// URL
RTSP_CREDENTIALS_PATTERN = re.compile(r'(rtsps?://[^:@/\s]+):([^@/\s]+)@', re.IGNORECASE)
# Seetong layouts repeat the password in the path
PATH_PASSWORD_PATTERN = re.compile(r'([/&]password=)([^&\s]*)', re.IGNORECASE)
LINE_BREAKS = re.compile(r'\r\n|\r|\n')

# LogRecord attributes that are never redacted (set by logging itself)
_RESERVED_ATTRS = frozenset(vars(logging.LogRecord('', 0, '', 0, '', (), None)).keys()) | {'message', 'asctime'}


def redact_rtsp_credentials(value: str) -> str:
    """Replace every RTSP URL password in ``value`` (authority and path form) with ***."""
    value = RTSP_CREDENTIALS_PATTERN.sub(r'\1:***@', value)
    return PATH_PASSWORD_PATTERN.sub(r'\1***', value)


class RequestIdFilter(logging.Filter):
    """Stamp each record with the id of the HTTP request that produced it, or "-"."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = request_id_var.get() or "-"
        return True


class SanitizingFilter(logging.Filter):
    """
    Scrub records before any handler formats them.

    Line breaks collapse to a single space. Passwords embedded in RTSP URLs
    are masked wherever they appear: the message, its %-args and any string
    passed through ``extra``.
    """

    def _clean(self, value: Any) -> Any:
        if not isinstance(value, str):
            return value
        return redact_rtsp_credentials(LINE_BREAKS.sub(' ', value))

    def filter(self, record: logging.LogRecord) -> bool:
        record.msg = self._clean(record.msg)

        if isinstance(record.args, tuple):
            record.args = tuple(self._clean(arg) for arg in record.args)
        elif isinstance(record.args, dict):
            record.args = {key: self._clean(arg) for key, arg in record.args.items()}

        for key, value in list(vars(record).items()):
            if key not in _RESERVED_ATTRS and isinstance(value, str):
                setattr(record, key, self._clean(value))

        return True


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """
    JSON formatter adding the fields every log consumer relies on.

    Example entry:
    {
        "timestamp": "2025-11-23T10:30:00.000000+00:00",
        "level": "INFO",
        "message": "MediaMTX config deployed via ssh",
        "logger": "app.services.mediamtx_deploy",
        "module": "mediamtx_deploy",
        "service": "camera-streaming",
        "version": "1.0.0",
        "request_id": "3f0c...",
        "event_type": "mediamtx_deploy_completed",
        ...extra fields...
    }
    """

    def add_fields(self, log_record: dict, record: logging.LogRecord, message_dict: dict) -> None:
        super().add_fields(log_record, record, message_dict)

        if not log_record.get('timestamp'):
            log_record['timestamp'] = datetime.now(timezone.utc).isoformat()
        if 'message' not in log_record:
            log_record['message'] = record.getMessage()
        log_record['level'] = record.levelname
        log_record['logger'] = record.name
        log_record['module'] = record.module
        log_record['service'] = SERVICE_NAME
        log_record['version'] = APP_VERSION
        log_record['request_id'] = getattr(record, 'request_id', '-')


def _rotating_handler(path: str, max_bytes: int, backups: int, level: int) -> logging.Handler:
    handler = logging.handlers.RotatingFileHandler(
        path, maxBytes=max_bytes, backupCount=backups, encoding='utf-8'
    )
    handler.setLevel(level)
    return handler


def setup_logging(
    log_level: Optional[str] = None,
    log_dir: Optional[str] = None,
    app_version: Optional[str] = None
) -> logging.Logger:
    """
    Configure the root logger for JSON output to console and rotating files.

    Safe to call more than once; existing root handlers are replaced.

    Args:
        log_level: Level name, defaults to settings.LOG_LEVEL
        log_dir: Directory for app.log/error.log, defaults to settings.LOG_DIR
            and then backend/data/logs
        app_version: Version string stamped on every entry

    Returns:
        The configured root logger
    """
    global APP_VERSION

    level = getattr(logging, (log_level or settings.LOG_LEVEL).upper(), logging.INFO)
    directory = log_dir or settings.LOG_DIR or DEFAULT_LOG_DIR
    if app_version:
        APP_VERSION = app_version

    os.makedirs(directory, exist_ok=True)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)
    handlers = [
        console_handler,
        _rotating_handler(os.path.join(directory, 'app.log'), APP_LOG_MAX_BYTES, APP_LOG_BACKUPS, level),
        _rotating_handler(os.path.join(directory, 'error.log'), ERROR_LOG_MAX_BYTES, ERROR_LOG_BACKUPS, logging.ERROR),
    ]

    formatter = CustomJsonFormatter('%(timestamp)s %(level)s %(name)s %(message)s')
    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers.clear()
    for handler in handlers:
        handler.setFormatter(formatter)
        handler.addFilter(RequestIdFilter())
        handler.addFilter(SanitizingFilter())
        root_logger.addHandler(handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    return root_logger


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


def set_request_id(request_id: Optional[str]) -> contextvars.Token:
    """Bind ``request_id`` to the current context; pass the token to clear_request_id."""
    return request_id_var.set(request_id)


def get_request_id() -> Optional[str]:
    return request_id_var.get()


def clear_request_id(token: contextvars.Token) -> None:
    request_id_var.reset(token)
