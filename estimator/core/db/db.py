"""Database connection and session management."""

import logging
import time
from contextlib import contextmanager
from typing import Iterator, Optional

from sqlalchemy import create_engine, event, text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from .models import Base

logger = logging.getLogger(__name__)


class DatabaseManager:
    """Owns the SQLAlchemy engine and hands out transactional sessions."""

    def __init__(self, database_url: str, pool_size: int = 5, max_overflow: int = 10, echo: bool = False):
        self.database_url = database_url

        if database_url.startswith("sqlite"):
            kwargs = {"connect_args": {"check_same_thread": False}}
            if database_url in ("sqlite://", "sqlite:///:memory:"):
                kwargs["poolclass"] = StaticPool
            self.engine = create_engine(database_url, echo=echo, **kwargs)
            event.listen(self.engine, "connect", _enable_sqlite_foreign_keys)
        else:
            self.engine = create_engine(
                database_url,
                echo=echo,
                pool_size=pool_size,
                max_overflow=max_overflow,
                pool_pre_ping=True,
            )

        self.SessionLocal = sessionmaker(bind=self.engine, expire_on_commit=False)
        logger.info(f"DatabaseManager initialized ({self.engine.dialect.name})")

    @contextmanager
    def get_session(self) -> Iterator[Session]:
        """Session scope: commits on success, rolls back on error."""
        session = self.SessionLocal()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def create_tables(self) -> None:
        """Create all tables (development and tests; production uses alembic)."""
        Base.metadata.create_all(bind=self.engine)
        logger.info("Database tables created")

    def ping(self) -> bool:
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            return True
        except OperationalError:
            return False

    def dispose(self) -> None:
        self.engine.dispose()


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def get_database_manager(database_url: Optional[str] = None) -> DatabaseManager:
    """Build a DatabaseManager from settings when no URL is given."""
    if database_url is None:
        from ...setting import get_settings
        settings = get_settings()
        return DatabaseManager(
            settings.database.url,
            pool_size=settings.database.pool_size,
            max_overflow=settings.database.max_overflow,
        )
    return DatabaseManager(database_url)


def wait_for_db(db_manager: DatabaseManager, retries: int = 10, delay: float = 2.0) -> bool:
    """Block until the database answers or retries are exhausted."""
    for attempt in range(1, retries + 1):
        if db_manager.ping():
            logger.info("Database is available")
            return True
        logger.warning(f"Database not ready (attempt {attempt}/{retries}), retrying in {delay}s")
        time.sleep(delay)
    logger.error("Database did not become available")
    return False
