"""Engine, session factory and the per-request session kept on ``flask.g``."""
from typing import Any, Dict, Optional

from flask import g, has_app_context
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from nightlife.config import Config


def _engine_options(url: str) -> Dict[str, Any]:
    options: Dict[str, Any] = {"echo": Config.SQL_ECHO, "future": True, "pool_pre_ping": True}
    if url.startswith("sqlite"):
        # SSE streams are consumed on a different thread than the one that opened them
        options["connect_args"] = {"check_same_thread": False}
    else:
        options.update(pool_size=Config.DB_POOL_SIZE, max_overflow=Config.DB_MAX_OVERFLOW)
    return options


engine = create_engine(Config.DATABASE_URL, **_engine_options(Config.DATABASE_URL))
SessionLocal = sessionmaker(bind=engine, autoflush=False, future=True)

Base = declarative_base()


def create_tables() -> None:
    Base.metadata.create_all(bind=engine)


def get_db() -> Session:
    """Session for the current app context, opened on first use."""
    if "db_session" not in g:
        g.db_session = SessionLocal()
    return g.db_session


def close_db(exc: Optional[BaseException] = None) -> None:
    if not has_app_context():
        return
    session = g.pop("db_session", None)
    if session is None:
        return
    if exc is not None:
        session.rollback()
    session.close()
