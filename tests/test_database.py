import logging

from sqlalchemy import create_engine, text

from careportal.database import engine_options, log_slow_queries


def test_sqlite_skips_pool_settings():
    assert engine_options("sqlite:///./careportal.db") == {"connect_args": {"check_same_thread": False}}
    assert engine_options("postgresql://db/careportal")["pool_pre_ping"] is True


def test_slow_queries_are_logged(caplog):
    engine = create_engine("sqlite://")
    log_slow_queries(engine, threshold=-1)

    with caplog.at_level(logging.WARNING, logger="careportal.database"):
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))

    assert "Slow query" in caplog.text
    assert "SELECT 1" in caplog.text


def test_fast_queries_are_not_logged(caplog):
    engine = create_engine("sqlite://")
    log_slow_queries(engine, threshold=60)

    with caplog.at_level(logging.WARNING, logger="careportal.database"):
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))

    assert "Slow query" not in caplog.text
