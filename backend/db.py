# db.py
from contextlib import contextmanager

from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker, declarative_base

from config import DATABASE_URL, DB_STATEMENT_TIMEOUT_MS

Base = declarative_base()


def _connect_args(url: str) -> dict:
    if url.startswith("sqlite"):
        return {"check_same_thread": False, "timeout": DB_STATEMENT_TIMEOUT_MS / 1000}
    if url.startswith("postgresql"):
        return {"options": f"-c statement_timeout={DB_STATEMENT_TIMEOUT_MS}"}
    return {}


def enable_sqlite_foreign_keys(engine) -> None:
    if engine.dialect.name != "sqlite":
        return

    @event.listens_for(engine, "connect")
    def _set_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


def make_engine(url: str = DATABASE_URL, **kwargs):
    engine = create_engine(url, pool_pre_ping=True, connect_args=_connect_args(url), **kwargs)
    enable_sqlite_foreign_keys(engine)
    return engine


engine = make_engine()

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_db(bind=None) -> None:
    import models  # noqa: F401  registers tables on Base.metadata

    Base.metadata.create_all(bind=bind or engine)


@contextmanager
def get_session(factory=None):
    db = (factory or SessionLocal)()
    try:
        yield db
    finally:
        db.close()
