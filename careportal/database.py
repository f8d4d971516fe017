"""Engine, session factory and the request-scoped session dependency"""

import logging
import time

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker

from . import config

logger = logging.getLogger(__name__)


def engine_options(url: str) -> dict:
    if url.startswith("sqlite"):
        return {"connect_args": {"check_same_thread": False}}
    return {
        "pool_pre_ping": True,
        "pool_recycle": config.DB_POOL_RECYCLE,
        "pool_size": config.DB_POOL_SIZE,
        "max_overflow": config.DB_MAX_OVERFLOW,
        "pool_timeout": config.DB_POOL_TIMEOUT,
    }


def log_slow_queries(bind: Engine, threshold: float) -> None:
    """Warn about any statement that runs longer than threshold seconds"""

    @event.listens_for(bind, "before_cursor_execute")
    def _start_timer(conn, _cursor, _statement, _parameters, _context, _executemany):
        conn.info.setdefault("careportal_query_start", []).append(time.perf_counter())

    @event.listens_for(bind, "after_cursor_execute")
    def _check_elapsed(conn, _cursor, statement, _parameters, _context, _executemany):
        elapsed = time.perf_counter() - conn.info["careportal_query_start"].pop()
        if elapsed > threshold:
            logger.warning(f"🐌 Slow query ({elapsed:.2f}s): {statement[:200]}")


def build_engine(url: str) -> Engine:
    bind = create_engine(url, echo=False, **engine_options(url))
    if config.DB_SLOW_QUERY_SECONDS > 0:
        log_slow_queries(bind, config.DB_SLOW_QUERY_SECONDS)
    logger.info(f"✅ Database engine ready ({bind.url.get_backend_name()})")
    return bind


engine = build_engine(config.DATABASE_URL)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
