"""
Engine and session factory for the miner's relational store.

One engine per process, built lazily from DATABASE_URL. SQLite URLs (used
for local runs and tests) get no pool sizing; server databases get a small
pool with pre-ping so a long-idle miner survives dropped connections.
"""

import logging
from typing import Optional

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from energy_miner.config.settings import get_settings
from energy_miner.db.models import Base

logger = logging.getLogger(__name__)

_engine: Engine | None = None
_session_factory: sessionmaker | None = None


def get_engine(database_url: Optional[str] = None) -> Engine:
    """Process-wide engine; the first call decides the URL."""
    global _engine
    if _engine is None:
        settings = get_settings()
        url = database_url or settings.database_url
        options = {"pool_pre_ping": True, "echo": settings.log_level.upper() == "DEBUG"}
        if not url.startswith("sqlite"):
            options.update(pool_size=5, max_overflow=10)
        _engine = create_engine(url, **options)
        logger.info(f"Using database {_engine.url.render_as_string(hide_password=True)}")
    return _engine


def get_session_factory() -> sessionmaker:
    """Session factory bound to the process engine."""
    global _session_factory
    if _session_factory is None:
        _session_factory = sessionmaker(bind=get_engine(), autoflush=False, expire_on_commit=False)
    return _session_factory


def init_db(engine: Optional[Engine] = None) -> None:
    """Create the region, point and call-ledger tables if missing."""
    engine = engine or get_engine()
    Base.metadata.create_all(engine)
    logger.info(f"Ensured tables: {', '.join(sorted(Base.metadata.tables))}")


def check_connection(engine: Optional[Engine] = None) -> bool:
    """Round-trip a trivial query. Logs and returns False when the store is unreachable."""
    engine = engine or get_engine()
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        logger.error(f"Database unreachable: {e}")
        return False
    return True


def dispose_engine() -> None:
    """Release pooled connections and forget the process engine."""
    global _engine, _session_factory
    if _engine is not None:
        _engine.dispose()
        _engine = None
        _session_factory = None
        logger.info("Database engine disposed")
