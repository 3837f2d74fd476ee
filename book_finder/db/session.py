from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker, Session, declarative_base
from contextlib import contextmanager
from typing import Any, Dict, Generator, Optional
import logging

logger = logging.getLogger(__name__)

# Create declarative base for models
Base = declarative_base()


class Database:
    """
    Store adapter owning the SQLAlchemy engine and session factory.
    Opened on application startup and closed on shutdown.
    """

    def __init__(self, database_url: str, timeout_seconds: int = 10, **engine_kwargs: Any):
        self.database_url = database_url
        self.timeout_seconds = timeout_seconds
        self.engine_kwargs = engine_kwargs
        self.engine: Optional[Engine] = None
        self._session_factory: Optional[sessionmaker] = None

    @property
    def is_open(self) -> bool:
        return self.engine is not None

    def _engine_options(self) -> Dict[str, Any]:
        options: Dict[str, Any] = {"pool_pre_ping": True}  # Enable connection health checks
        if self.database_url.startswith("postgresql"):
            options.update(
                pool_size=5,  # Set connection pool size
                max_overflow=10,  # Allow additional connections beyond pool_size
                pool_timeout=self.timeout_seconds,
                connect_args={
                    "connect_timeout": self.timeout_seconds,
                    "options": f"-c statement_timeout={self.timeout_seconds * 1000}",
                },
            )
        options.update(self.engine_kwargs)
        return options

    def open(self, create_tables: bool = True) -> None:
        """
        Create the engine and session factory.
        Creates missing tables unless create_tables is False.
        """
        if self.is_open:
            return
        # Import models so they are registered on Base.metadata
        from . import models  # noqa: F401

        self.engine = create_engine(self.database_url, **self._engine_options())
        self._session_factory = sessionmaker(
            autocommit=False,
            autoflush=False,
            bind=self.engine
        )
        if create_tables:
            Base.metadata.create_all(bind=self.engine)
        logger.info(f"Database opened ({self.engine.url.render_as_string(hide_password=True)})")

    def close(self) -> None:
        """Dispose of the engine and its pooled connections."""
        if not self.is_open:
            return
        self.engine.dispose()
        self.engine = None
        self._session_factory = None
        logger.info("Database closed")

    @contextmanager
    def session(self) -> Generator[Session, None, None]:
        """
        Yield a database session.
        Ensures the session is properly closed after use.
        """
        if self._session_factory is None:
            raise RuntimeError("Database is not open")
        db = self._session_factory()
        try:
            yield db
        finally:
            db.close()

    def ping(self) -> bool:
        """Return True if a trivial query succeeds."""
        if not self.is_open:
            return False
        try:
            with self.session() as db:
                db.execute(text("SELECT 1"))
            return True
        except SQLAlchemyError as e:
            logger.warning(f"Database ping failed: {e}")
            return False
