"""
Warehouse Connection Module
Engine, table handles and session management for the analytical warehouse.
"""

import os
from contextlib import contextmanager
from typing import Generator, Optional

from sqlalchemy import MetaData, create_engine, func, select, text
from sqlalchemy.engine import URL, Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.schema import CreateSchema

from jsm_sync.database.models import Base, build_ticket_tables
from jsm_sync.utils.logger import get_logger

logger = get_logger(__name__)


class Warehouse:
    """
    Warehouse handle: one engine plus the target, staging and run tables.
    
    ``schema`` is applied to every table through the engine's schema
    translation map; pass None for backends without schemas (SQLite).
    """
    
    def __init__(
        self,
        engine: Engine,
        schema: Optional[str] = None,
        target_table: str = 'jsm_tickets',
        staging_table: str = 'jsm_tickets_staging'
    ):
        self.schema = schema
        if schema:
            engine = engine.execution_options(schema_translate_map={None: schema})
        self._engine = engine
        
        self.metadata = MetaData()
        self.target, self.staging = build_ticket_tables(self.metadata, target_table, staging_table)
        
        self._session_factory = sessionmaker(bind=self._engine)
    
    @classmethod
    def from_settings(cls, settings) -> 'Warehouse':
        """Create the engine described by SyncSettings."""
        options = dict(settings.warehouse_options)
        db_url = settings.warehouse_url or cls._build_connection_url(settings.project, options)
        
        engine_kwargs = {
            'pool_pre_ping': True,  # Enable connection health checks
            'echo': os.getenv('SQL_ECHO', 'false').lower() == 'true',
        }
        if not str(db_url).startswith('sqlite'):
            engine_kwargs.update(
                pool_size=int(options.get('pool_size', 5)),
                max_overflow=int(options.get('max_overflow', 10)),
                pool_timeout=int(options.get('pool_timeout', 30)),
            )
        
        engine = create_engine(db_url, **engine_kwargs)
        schema = None if engine.dialect.name == 'sqlite' else settings.dataset
        
        logger.info(
            f"Warehouse engine initialized: dialect={engine.dialect.name} "
            f"schema={schema} location={settings.location}"
        )
        
        return cls(
            engine,
            schema=schema,
            target_table=settings.target_table,
            staging_table=settings.staging_table,
        )
    
    @staticmethod
    def _build_connection_url(database: str, options: dict) -> URL:
        """Build a PostgreSQL connection URL; the project names the database."""
        return URL.create(
            'postgresql+psycopg2',
            username=options.get('user', 'jsm_sync'),
            password=options.get('password') or None,
            host=options.get('host', 'localhost'),
            port=int(options.get('port', 5432)),
            database=database,
        )
    
    @property
    def engine(self) -> Engine:
        """Get the SQLAlchemy engine (schema translation applied)."""
        return self._engine
    
    def get_session(self) -> Session:
        """Create a new ORM session."""
        return self._session_factory()
    
    @contextmanager
    def session_scope(self) -> Generator[Session, None, None]:
        """
        Provide a transactional scope around a series of operations.
        
        Usage:
            with warehouse.session_scope() as session:
                session.query(...)
        """
        session = self.get_session()
        try:
            yield session
            session.commit()
        except Exception as e:
            session.rollback()
            logger.error(f"Warehouse session error: {e}")
            raise
        finally:
            session.close()
    
    def create_tables(self) -> None:
        """Create schema, ticket tables and run log if missing (local setup and tests)."""
        with self._engine.begin() as conn:
            if self.schema:
                conn.execute(CreateSchema(self.schema, if_not_exists=True))
            self.metadata.create_all(conn)
            Base.metadata.create_all(conn)
        logger.info(f"Warehouse tables ready: {self.target.name}, {self.staging.name}")
    
    def count_rows(self, table) -> int:
        """Row count of a table."""
        with self._engine.connect() as conn:
            return conn.execute(select(func.count()).select_from(table)).scalar_one()
    
    def check_connection(self) -> bool:
        """
        Check if the warehouse connection is healthy.
        
        Returns:
            bool: True if connection is healthy, False otherwise.
        """
        try:
            with self._engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            logger.debug("Warehouse connection health check passed")
            return True
        except Exception as e:
            logger.error(f"Warehouse connection health check failed: {e}")
            return False
    
    def dispose(self) -> None:
        """Dispose of the connection pool."""
        self._engine.dispose()
        logger.info("Warehouse connection pool disposed")
