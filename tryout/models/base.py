"""
Database base configuration for SQLAlchemy models.

The engine is synchronous: controller operations run in FastAPI's threadpool
and the expiry watcher moves its sweeps into worker threads with
``asyncio.to_thread``.
"""

from typing import Generator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from tryout.core.config import settings

DATABASE_URL = settings.DATABASE_URL


def create_db_engine(url: str) -> Engine:
    """
    Build an engine for ``url``.

    SQLite gets ``check_same_thread=False`` (sessions cross threadpool
    workers) and foreign keys switched on; other backends get a sized
    connection pool.
    """
    if url.startswith("sqlite"):
        db_engine = create_engine(
            url,
            connect_args={"check_same_thread": False},
        )

        @event.listens_for(db_engine, "connect")
        def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        return db_engine

    return create_engine(
        url,
        pool_size=settings.DB_POOL_SIZE,
        max_overflow=settings.DB_POOL_MAX_OVERFLOW,
        pool_recycle=settings.DB_POOL_RECYCLE,
        pool_pre_ping=True,  # Verify connections are alive before using them
    )


engine = create_db_engine(DATABASE_URL)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


class Base(DeclarativeBase):
    """
    SQLAlchemy 2.0 declarative base class.
    """

    pass


def get_db() -> Generator[Session, None, None]:
    """
    Dependency function to get database session.

    Yields a database session and ensures proper cleanup.
    """
    db = SessionLocal()
    try:
        yield db
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
