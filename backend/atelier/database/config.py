"""
Engine and session handling for the SQL row store.

The row store only needs two tables (see ``models``), so this module keeps
to one engine per URL and a commit-or-rollback session scope. SQLite is the
default; any SQLAlchemy URL works, with pool sizing taken from DB_POOL_*.
"""

import os
import logging
from contextlib import contextmanager
from typing import Optional, Dict, Any, Iterator

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool

from .models import create_all_tables

logger = logging.getLogger(__name__)

DEFAULT_DATABASE_URL = "sqlite:///atelier.db"


def _pool_settings() -> Dict[str, Any]:
    return {
        'pool_size': int(os.getenv('DB_POOL_SIZE', '10')),
        'max_overflow': int(os.getenv('DB_MAX_OVERFLOW', '20')),
        'pool_timeout': int(os.getenv('DB_POOL_TIMEOUT', '30')),
        'pool_recycle': int(os.getenv('DB_POOL_RECYCLE', '3600')),
        'pool_pre_ping': True,
    }


class DatabaseConfig:
    """
    Lazily created engine plus session factory for one database URL.

    SQLite runs on a single shared connection, so ``sqlite://`` keeps its
    in-memory sheets for as long as this object lives.
    """

    def __init__(self, database_url: Optional[str] = None, echo: bool = False):
        self.database_url = database_url or os.getenv('DATABASE_URL') or DEFAULT_DATABASE_URL
        self.echo = echo
        self.engine: Optional[Engine] = None
        self._sessions: Optional[sessionmaker] = None

        self.backend = make_url(self.database_url).get_backend_name()
        logger.info(f"Row store database: {self.backend}")

    @property
    def is_sqlite(self) -> bool:
        return self.backend == 'sqlite'

    def _engine_kwargs(self) -> Dict[str, Any]:
        if self.is_sqlite:
            return {
                'echo': self.echo,
                'poolclass': StaticPool,
                'connect_args': {'check_same_thread': False, 'timeout': 30},
            }
        return {'echo': self.echo, **_pool_settings()}

    def initialize(self) -> None:
        """
        Create the engine and check that it answers.

        Raises:
            SQLAlchemyError: If the database cannot be reached
        """
        if self.engine is not None:
            return

        engine = create_engine(self.database_url, **self._engine_kwargs())
        if self.is_sqlite:
            event.listen(engine, "connect", _enable_sqlite_foreign_keys)

        try:
            with engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except SQLAlchemyError as e:
            engine.dispose()
            logger.error(f"Row store database unreachable: {e}")
            raise

        self.engine = engine
        self._sessions = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)

    def create_tables(self) -> None:
        """Create the sheet tables when missing."""
        self.initialize()
        create_all_tables(self.engine)
        logger.info("Row store tables ready")

    def get_session(self) -> Session:
        self.initialize()
        return self._sessions()

    @contextmanager
    def get_session_context(self) -> Iterator[Session]:
        """
        Session scope: commit when the block finishes, roll back if it raises.

        Usage:
            with db_config.get_session_context() as session:
                session.add(row)
        """
        session = self.get_session()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def test_connection(self) -> bool:
        try:
            self.initialize()
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except SQLAlchemyError as e:
            logger.error(f"Row store connection test failed: {e}")
            return False
        return True

    def get_connection_info(self) -> Dict[str, Any]:
        return {
            'database_type': self.backend,
            'database_url': make_url(self.database_url).render_as_string(hide_password=True),
            'is_initialized': self.engine is not None,
        }

    def close(self) -> None:
        if self.engine is None:
            return
        self.engine.dispose()
        self.engine = None
        self._sessions = None
        logger.info("Row store connections closed")


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


_db_config: Optional[DatabaseConfig] = None


def get_database_config(database_url: Optional[str] = None, echo: bool = False) -> DatabaseConfig:
    """Process-wide configuration, created on first call."""
    global _db_config
    if _db_config is None:
        _db_config = DatabaseConfig(database_url=database_url, echo=echo)
    return _db_config


def initialize_database(database_url: Optional[str] = None, echo: bool = False, create_tables: bool = True) -> DatabaseConfig:
    db_config = get_database_config(database_url=database_url, echo=echo)
    if create_tables:
        db_config.create_tables()
    else:
        db_config.initialize()
    return db_config


@contextmanager
def get_db_session_context() -> Iterator[Session]:
    with get_database_config().get_session_context() as session:
        yield session


__all__ = [
    'DatabaseConfig',
    'get_database_config',
    'initialize_database',
    'get_db_session_context',
]
