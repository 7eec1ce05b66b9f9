from __future__ import annotations

from typing import Dict

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from nightlife.config import Config
from nightlife.database import engine


def check_database_health() -> Dict[str, str]:
    """Round-trip a trivial query through the pool."""
    try:
        with engine.connect() as connection:
            connection.execute(text("SELECT 1"))
        return {"status": "UP"}
    except SQLAlchemyError as exc:
        return {"status": "DOWN", "detail": str(exc)}


def check_qr_key() -> Dict[str, str]:
    from nightlife.services.qr_codec import KEY_LENGTH

    if len(Config.QR_ENCRYPTION_KEY.encode("utf-8")) != KEY_LENGTH:
        return {"status": "DOWN", "detail": "QR_ENCRYPTION_KEY must be exactly 32 characters"}
    return {"status": "UP"}
