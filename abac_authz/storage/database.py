"""
Database management for ABAC storage.
"""
import logging
from contextlib import contextmanager
from typing import Generator, Optional

from sqlalchemy import MetaData, create_engine, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from ..config import ABACConfig
from ..exceptions import ConfigurationError
from .models import Base

DEFAULT_DATABASE_URL = "sqlite:///./abac.db"


class DatabaseManager:
    """Engine, session factory and schema management."""

    def __init__(self, database_url: Optional[str] = None, echo: bool = False):
        """
        Initialize the database manager.

        Args:
            database_url: Database connection URL (default: local SQLite file)
            echo: Whether to echo SQL statements
        """
        self.logger = logging.getLogger(__name__)
        self.database_url = database_url or DEFAULT_DATABASE_URL
        self.echo = echo
        self.engine = None
        self.SessionLocal = None
        self._initialized = False

    @classmethod
    def from_config(cls, config: ABACConfig, echo: bool = False) -> "DatabaseManager":
        """Create a manager for ``config.database_url``."""
        return cls(config.database_url, echo=echo)

    @property
    def initialized(self) -> bool:
        return self._initialized

    @property
    def single_connection(self) -> bool:
        """SQLite engines share one ``StaticPool`` connection."""
        return self.database_url.startswith("sqlite")

    def initialize(self, create_tables: bool = True) -> "DatabaseManager":
        """
        Create the engine and session factory, and optionally the tables.

        Raises:
            ConfigurationError: If the database cannot be set up
        """
        try:
            if self.database_url.startswith("sqlite"):
                self.engine = create_engine(
                    self.database_url,
                    echo=self.echo,
                    connect_args={"check_same_thread": False},
                    poolclass=StaticPool
                )
            else:
                self.engine = create_engine(self.database_url, echo=self.echo)

            self.SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=self.engine)

            if create_tables:
                Base.metadata.create_all(bind=self.engine)
        except SQLAlchemyError as e:
            self.logger.error(f"Failed to initialize database: {e}")
            raise ConfigurationError(
                f"Failed to initialize database: {e}", config_key="database_url", cause=e
            ) from e

        self._initialized = True
        self.logger.info(f"Database initialized: {self.engine.url.render_as_string(hide_password=True)}")
        return self

    def get_session(self) -> Session:
        """
        Get a database session.

        Raises:
            ConfigurationError: If database not initialized
        """
        if not self._initialized or not self.SessionLocal:
            raise ConfigurationError("Database not initialized. Call initialize() first.")
        return self.SessionLocal()

    @contextmanager
    def session_scope(self) -> Generator[Session, None, None]:
        """Provide a transactional scope around a series of operations."""
        session = self.get_session()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def create_tables(self) -> bool:
        try:
            if not self.engine:
                raise ConfigurationError("Database engine not initialized")
            Base.metadata.create_all(bind=self.engine)
            self.logger.info("Database tables created successfully")
            return True
        except SQLAlchemyError as e:
            self.logger.error(f"Failed to create database tables: {e}")
            return False

    def drop_tables(self) -> bool:
        try:
            if not self.engine:
                raise ConfigurationError("Database engine not initialized")
            Base.metadata.drop_all(bind=self.engine)
            self.logger.info("Database tables dropped successfully")
            return True
        except SQLAlchemyError as e:
            self.logger.error(f"Failed to drop database tables: {e}")
            return False

    def check_connection(self) -> bool:
        """Check if database connection is working."""
        if not self.engine:
            return False
        try:
            with self.engine.connect() as connection:
                connection.execute(text("SELECT 1"))
            return True
        except SQLAlchemyError as e:
            self.logger.error(f"Database connection check failed: {e}")
            return False

    def get_database_info(self) -> dict:
        """Get database information."""
        info = {
            "database_url": self.engine.url.render_as_string(hide_password=True) if self.engine else self.database_url,
            "initialized": self._initialized,
            "connection_working": False,
            "tables": []
        }

        if self._initialized and self.engine:
            info["connection_working"] = self.check_connection()
            try:
                metadata = MetaData()
                metadata.reflect(bind=self.engine)
                info["tables"] = sorted(metadata.tables.keys())
            except SQLAlchemyError as e:
                self.logger.error(f"Failed to get table information: {e}")

        return info

    def close(self) -> None:
        """Close database connections."""
        if self.engine:
            self.engine.dispose()
            self.logger.info("Database connections closed")
