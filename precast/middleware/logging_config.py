"""
Logging setup for the precast API.

Every record passes through ``RequestContextFilter``, which stamps the
request id and the session user when a request is active, so a transition
can be followed from the HTTP line through the engine and the
notification channels.

LOG_FORMAT picks the output: ``json`` for log shipping, ``text`` for a
terminal. Unset, production gets JSON and everything else gets text.
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone

from flask import g, has_request_context

# ``extra=`` keys promoted to top-level JSON fields.
_CONTEXT_FIELDS = (
    "request_id",
    "user_id",
    "method",
    "path",
    "status",
    "duration_ms",
    "project_id",
    "activity_id",
    "stage_id",
)

_QUIET_LOGGERS = ("urllib3", "werkzeug", "sqlalchemy.engine", "alembic.runtime.migration")


class RequestContextFilter(logging.Filter):
    """Copy ``g.request_id`` and the session user id onto the record."""

    def filter(self, record: logging.LogRecord) -> bool:
        if has_request_context():
            if getattr(record, "request_id", None) is None:
                record.request_id = getattr(g, "request_id", None)
            if getattr(record, "user_id", None) is None:
                user = getattr(g, "current_user", None)
                record.user_id = user.user_id if user is not None else None
        return True


class JSONFormatter(logging.Formatter):
    """One JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "where": f"{record.module}:{record.lineno}",
        }
        entry.update({
            key: getattr(record, key)
            for key in _CONTEXT_FIELDS
            if getattr(record, key, None) is not None
        })
        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


class ReadableFormatter(logging.Formatter):
    """Colored single-line output with the request id as a prefix."""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, "")
        stamp = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        request_id = getattr(record, "request_id", None)
        user_id = getattr(record, "user_id", None)
        scope = ""
        if request_id:
            scope = f" [{request_id[:8]}" + (f" u{user_id}" if user_id is not None else "") + "]"
        line = f"{color}{stamp} {record.levelname:<8}{self.RESET}{scope} {record.name}: {record.getMessage()}"
        if record.exc_info and record.exc_info[0] is not None:
            line += "\n" + self.formatException(record.exc_info)
        return line


def _wants_json(app) -> bool:
    fmt = (app.config.get("LOG_FORMAT") or os.getenv("LOG_FORMAT") or "").lower()
    if fmt in ("json", "text"):
        return fmt == "json"
    return not app.config.get("DEBUG", False) and not app.config.get("TESTING", False)


def configure_logging(app):
    """Install a single stderr handler on the root logger."""
    testing = app.config.get("TESTING", False)
    default_level = "WARNING" if testing else ("DEBUG" if app.config.get("DEBUG") else "INFO")
    level_name = (app.config.get("LOG_LEVEL") or os.getenv("LOG_LEVEL") or default_level).upper()
    level = getattr(logging, level_name, logging.INFO)
    as_json = _wants_json(app)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JSONFormatter() if as_json else ReadableFormatter())
    handler.addFilter(RequestContextFilter())

    root = logging.getLogger()
    # create_app runs once per test session and again in some tests
    root.handlers = [handler]
    root.setLevel(level)
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    app.logger.setLevel(level)

    if not testing:
        app.logger.info("Logging ready: level=%s format=%s", level_name, "json" if as_json else "text")
    return handler
