import logging

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base
from flask import g, has_app_context

from warranty_admin.config import Config

engine_kwargs = {
    "echo": Config.SQL_ECHO,
    "future": True,
    "pool_pre_ping": True,
}

if not Config.DATABASE_URL.startswith("sqlite"):
    engine_kwargs["pool_size"] = Config.DB_POOL_SIZE
    engine_kwargs["max_overflow"] = Config.DB_MAX_OVERFLOW

engine = create_engine(Config.DATABASE_URL, **engine_kwargs)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine, future=True)

Base = declarative_base()

logger = logging.getLogger(__name__)


def get_db():
    """Return the request-scoped session, opening one on first use."""
    if "db" not in g:
        g.db = SessionLocal()
    return g.db


def close_db(e=None):
    """Teardown hook. A request that failed has its unfinished writes discarded."""
    # Test teardown can run after the app context is gone.
    if not has_app_context():
        return
    db = g.pop("db", None)
    if db is None:
        return
    if e is not None and db.in_transaction():
        logger.warning("Discarding uncommitted changes after failed request", extra={"error": repr(e)})
        db.rollback()
    db.close()


def create_tables():
    """Create missing tables. Schema migrations are handled outside the app."""
    # Registers every table on Base.metadata.
    from warranty_admin import models  # noqa: F401

    Base.metadata.create_all(bind=engine)
