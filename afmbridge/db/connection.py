"""SQLAlchemy engine for the query audit log.

Single shared engine, created lazily from ``query_log_url``.  The default is
a SQLite file next to the catalog snapshots; any SQLAlchemy URL works.
"""
from __future__ import annotations

from pathlib import Path

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine, make_url

from afmbridge.core.config import get_settings
from afmbridge.core.logging import get_logger

logger = get_logger(__name__)

_engine: Engine | None = None


def build_engine(url: str) -> Engine:
    parsed = make_url(url)
    if parsed.get_backend_name() == "sqlite":
        if parsed.database and parsed.database != ":memory:":
            Path(parsed.database).expanduser().parent.mkdir(parents=True, exist_ok=True)
        return create_engine(url, echo=False)
    return create_engine(url, pool_pre_ping=True, pool_size=5, max_overflow=10, echo=False)


def get_engine() -> Engine:
    """Return the shared SQLAlchemy engine (lazy-created, cached)."""
    global _engine
    if _engine is None:
        settings = get_settings()
        _engine = build_engine(settings.query_log_url)
        logger.info("Query log engine created  dialect=%s", _engine.dialect.name)
    return _engine


def reset_engine() -> None:
    """Dispose the shared engine (tests switch URLs between runs)."""
    global _engine
    if _engine is not None:
        _engine.dispose()
    _engine = None
