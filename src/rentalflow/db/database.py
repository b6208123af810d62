"""Database engine and session management for RentalFlow."""

from __future__ import annotations

from contextlib import contextmanager
from typing import Generator, Iterable
from uuid import UUID

import structlog
from sqlalchemy import create_engine, event, select, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from rentalflow.config import get_settings
from rentalflow.db.schemas import Asset, Base

logger = structlog.get_logger()


def _enable_sqlite_locking(engine: Engine) -> None:
    """Make every SQLite transaction take the write lock up front.

    pysqlite's implicit BEGIN is disabled so that the "begin" event can
    issue BEGIN IMMEDIATE, which serializes writers the way row locks do
    on PostgreSQL.
    """

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


class Database:
    """SQLAlchemy engine plus a transactional session factory."""

    def __init__(self, url: str | None = None, echo: bool | None = None):
        """Initialize database client.

        Args:
            url: SQLAlchemy URL. If None, uses DatabaseSettings.
            echo: Log emitted SQL. If None, uses DatabaseSettings.
        """
        settings = get_settings().database
        self.url = url or settings.connection_string
        echo = settings.echo if echo is None else echo

        if self.url.startswith("sqlite"):
            self.engine = create_engine(
                self.url,
                echo=echo,
                connect_args={"check_same_thread": False, "timeout": 30},
            )
            _enable_sqlite_locking(self.engine)
        else:
            self.engine = create_engine(
                self.url,
                echo=echo,
                pool_size=settings.pool_size,
                pool_pre_ping=True,
            )

        self._session_factory = sessionmaker(bind=self.engine, expire_on_commit=False)
        logger.info("database_initialized", dialect=self.engine.dialect.name)

    @contextmanager
    def session(self) -> Generator[Session, None, None]:
        """Get a session context manager that commits on success."""
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def create_all(self) -> None:
        """Create all tables that do not exist yet."""
        Base.metadata.create_all(self.engine)
        logger.info("database_schema_created", tables=len(Base.metadata.tables))

    def drop_all(self) -> None:
        Base.metadata.drop_all(self.engine)

    def health_check(self) -> bool:
        """Check database connectivity."""
        try:
            with self.session() as session:
                session.execute(text("SELECT 1"))
            return True
        except Exception as e:
            logger.error("database_health_check_failed", error=str(e))
            return False

    def dispose(self) -> None:
        self.engine.dispose()


def lock_assets(session: Session, asset_ids: Iterable[UUID]) -> dict[UUID, Asset]:
    """Load assets with row locks held until the transaction ends.

    Rows are locked in ascending id order so concurrent callers touching
    overlapping asset sets cannot deadlock. SQLite ignores FOR UPDATE and
    relies on BEGIN IMMEDIATE instead.
    """
    ids = sorted(set(asset_ids))
    if not ids:
        return {}
    stmt = (
        select(Asset)
        .where(Asset.asset_id.in_(ids))
        .order_by(Asset.asset_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return {asset.asset_id: asset for asset in session.scalars(stmt)}


# Global database instance
_db: Database | None = None


def get_db() -> Database:
    """Get the global database instance."""
    global _db
    if _db is None:
        _db = Database()
    return _db
