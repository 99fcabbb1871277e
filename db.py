"""
Database Module (Production)
=============================
Explicitly owned data-access handle for the order engine.

- One Database instance per process, created by the entry point and
  injected into the engine (no import-time global client)
- unit_of_work(): scoped session that commits on success and rolls back
  on every error exit
- SQLite runs write transactions as BEGIN IMMEDIATE so concurrent writers
  serialize at transaction start and SAVEPOINTs behave; read_session()
  uses a plain deferred BEGIN and does not take the write lock
"""

import logging
import threading
from contextlib import contextmanager
from typing import Any, Dict, Iterator, Optional

from prometheus_client import Counter
from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from config import DatabaseConfig
from models import Base


logger = logging.getLogger(__name__)


# Configuration
SQLITE_BUSY_TIMEOUT = 30  # seconds

# Execution option selecting the SQLite BEGIN mode; writers default to IMMEDIATE
SQLITE_BEGIN_OPTION = "sqlite_begin"
READ_ONLY_OPTIONS = {SQLITE_BEGIN_OPTION: "DEFERRED"}


# ============================================================================
# METRICS
# ============================================================================

uow_commits = Counter(
    'order_uow_commits_total',
    'Units of work committed'
)
uow_rollbacks = Counter(
    'order_uow_rollbacks_total',
    'Units of work rolled back',
    ['error_type']
)


class Database:
    """
    Engine plus session factory with an explicit lifecycle.

    Opened by the process entry point, passed to OrderTransactionEngine,
    closed with dispose() on shutdown.
    """

    def __init__(self, url: str, echo: bool = False, pool_size: int = 10):
        self.url = url
        self.engine: Engine = self._create_engine(url, echo, pool_size)
        self.session_factory = sessionmaker(
            bind=self.engine,
            expire_on_commit=False
        )

        # Stats
        self._stats_lock = threading.Lock()
        self.commit_count = 0
        self.rollback_count = 0

        logger.info(f"Database initialized ({self.engine.dialect.name})")

    @classmethod
    def from_config(cls, config: DatabaseConfig) -> "Database":
        return cls(config.url, echo=config.echo, pool_size=config.pool_size)

    @staticmethod
    def _create_engine(url: str, echo: bool, pool_size: int) -> Engine:
        """Create engine; SQLite gets pysqlite transaction handling fixed up."""
        if not url.startswith("sqlite"):
            return create_engine(
                url,
                echo=echo,
                pool_size=pool_size,
                pool_pre_ping=True
            )

        engine = create_engine(
            url,
            echo=echo,
            connect_args={
                "check_same_thread": False,
                "timeout": SQLITE_BUSY_TIMEOUT
            }
        )

        @event.listens_for(engine, "connect")
        def _on_connect(dbapi_connection, connection_record):
            # Take transaction control away from pysqlite
            dbapi_connection.isolation_level = None
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        @event.listens_for(engine, "begin")
        def _on_begin(conn):
            mode = conn.get_execution_options().get(SQLITE_BEGIN_OPTION, "IMMEDIATE")
            conn.exec_driver_sql(f"BEGIN {mode}")

        return engine

    # ========================================================================
    # LIFECYCLE
    # ========================================================================

    def create_schema(self):
        """Create all tables (idempotent)."""
        Base.metadata.create_all(self.engine)
        logger.info("Database schema ensured")

    def dispose(self):
        """Close every pooled connection."""
        self.engine.dispose()
        logger.info("Database connections disposed")

    # ========================================================================
    # SCOPES
    # ========================================================================

    @contextmanager
    def unit_of_work(self) -> Iterator[Session]:
        """
        Atomic scope for a group of mutations.

        Yields:
            Session bound to one transaction

        The transaction commits when the block exits normally and rolls
        back when it raises; the exception always propagates.
        """
        session = self.session_factory()
        try:
            yield session
            session.commit()
        except BaseException as e:
            session.rollback()
            with self._stats_lock:
                self.rollback_count += 1
            uow_rollbacks.labels(error_type=type(e).__name__).inc()
            logger.debug(f"Unit of work rolled back: {type(e).__name__}")
            raise
        else:
            with self._stats_lock:
                self.commit_count += 1
            uow_commits.inc()
        finally:
            session.close()

    @contextmanager
    def read_session(self) -> Iterator[Session]:
        """Session for pure reads; never commits and takes no write lock."""
        session = self.session_factory()
        try:
            session.connection(execution_options=READ_ONLY_OPTIONS)
            yield session
        finally:
            session.rollback()
            session.close()

    # ========================================================================
    # STATS & MONITORING
    # ========================================================================

    def is_healthy(self) -> bool:
        """Check if database answers a trivial query."""
        try:
            with self.engine.connect() as conn:
                conn.execution_options(**READ_ONLY_OPTIONS)
                conn.execute(text("SELECT 1"))
            return True
        except SQLAlchemyError as e:
            logger.error(f"Database health check failed: {str(e)}")
            return False

    def get_stats(self) -> Dict[str, Any]:
        """Get database statistics."""
        pool_status: Optional[str] = None
        status = getattr(self.engine.pool, "status", None)
        if callable(status):
            pool_status = status()

        with self._stats_lock:
            return {
                "dialect": self.engine.dialect.name,
                "commits": self.commit_count,
                "rollbacks": self.rollback_count,
                "pool": pool_status
            }
