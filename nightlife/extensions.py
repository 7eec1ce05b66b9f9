"""Per-application singletons kept in ``app.extensions``."""
from __future__ import annotations

import logging
from typing import Optional

from flask import Flask, current_app, g

from nightlife.config import Config
from nightlife.models import User
from nightlife.services.qr_codec import QRCodec
from nightlife.services.sse import EXTENSION_KEY as SSE_KEY, ConnectionRegistry

CODEC_KEY = "qr_codec"

logger = logging.getLogger(__name__)


def init_extensions(app: Flask) -> None:
    app.extensions[SSE_KEY] = ConnectionRegistry()
    try:
        app.extensions[CODEC_KEY] = QRCodec(app.config.get("QR_ENCRYPTION_KEY", Config.QR_ENCRYPTION_KEY))
    except ValueError as exc:
        # QR endpoints answer 503 until a valid key is configured
        logger.error("QR codec disabled: %s", exc)
        app.extensions[CODEC_KEY] = None


def get_codec() -> Optional[QRCodec]:
    return current_app.extensions.get(CODEC_KEY)


def get_registry() -> ConnectionRegistry:
    return current_app.extensions[SSE_KEY]


def current_user() -> Optional[User]:
    return getattr(g, "current_user", None)
