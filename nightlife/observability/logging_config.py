"""
Log output for the web process.

Structured mode writes one JSON document per line to stdout. Plain mode keeps
a single readable line. Both are stamped with the request id, route and the
signed-in staff member so a door scan or webhook can be traced end to end.
"""
from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict
from uuid import uuid4

from flask import Flask, g, has_request_context, request, session

from nightlife.config import Config

PLAIN_FORMAT = "%(asctime)s %(levelname)-7s [%(request_id)s] %(name)s: %(message)s"

CONTEXT_FIELDS = ("request_id", "path", "method", "user_id", "staff_role")

# Attributes every LogRecord carries; anything else came in through ``extra=``
_BUILTIN_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {"message", "asctime"}


def _request_context() -> Dict[str, Any]:
    if not has_request_context():
        return dict.fromkeys(CONTEXT_FIELDS)
    staff = g.get("current_user")
    return {
        "request_id": g.get("request_id"),
        "path": request.path,
        "method": request.method,
        "user_id": session.get("user_id"),
        "staff_role": getattr(staff, "role", None),
    }


class RequestContextFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:  # type: ignore[override]
        for name, value in _request_context().items():
            setattr(record, name, value)
        return True


class JsonFormatter(logging.Formatter):
    """Serialize a record, its request context and any ``extra=`` fields."""

    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        document: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        document.update((name, getattr(record, name, None)) for name in CONTEXT_FIELDS)
        document.update(
            (key, value)
            for key, value in vars(record).items()
            if key not in _BUILTIN_ATTRS and key not in document
        )
        if record.exc_info:
            document["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(document, default=str)


def configure_logging(app: Flask) -> None:
    stdout = logging.StreamHandler(sys.stdout)
    stdout.addFilter(RequestContextFilter())
    stdout.setFormatter(JsonFormatter() if Config.STRUCTURED_LOGS_ENABLED else logging.Formatter(PLAIN_FORMAT))

    root = logging.getLogger()
    root.setLevel(Config.LOG_LEVEL)
    root.handlers = [stdout]

    # Flask's own handler would print every line twice
    app.logger.handlers.clear()
    app.logger.setLevel(Config.LOG_LEVEL)
    app.logger.debug(
        "Logging configured for %s (%s)",
        Config.APP_NAME,
        "json" if Config.STRUCTURED_LOGS_ENABLED else "plain",
    )


def ensure_request_id() -> str:
    """Request id for this request: the caller's header if sent, a fresh hex uuid otherwise."""
    if not g.get("request_id"):
        g.request_id = request.headers.get(Config.REQUEST_ID_HEADER) or uuid4().hex
    return g.request_id
