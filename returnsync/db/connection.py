"""
Database connection management for the local store.

One DatabaseConnection is constructed at process start and passed to
everything that needs it.
"""

from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import Session, sessionmaker

from returnsync import config
from returnsync.db.tables import metadata


class DatabaseConnection:
    """
    Owns the SQLAlchemy engine and session factory.

    Usage:
        db = DatabaseConnection("sqlite:///returnsync.db")
        db.initialize()

        with UnitOfWork(db) as uow:
            items = uow.items.load_all()

        db.close()
    """

    def __init__(self, url: str | None = None, echo: bool = False):
        self.url = url or config.DATABASE_URL
        self.echo = echo
        self._engine: Engine | None = None
        self._session_factory: sessionmaker | None = None

    def initialize(self) -> None:
        """Create the engine and make sure all tables exist."""
        if self._engine is not None:
            return

        connect_args = {}
        if self.url.startswith("sqlite"):
            # Sessions are opened from worker threads as well as the event loop
            connect_args["check_same_thread"] = False

        self._engine = create_engine(
            self.url,
            echo=self.echo,
            connect_args=connect_args,
            pool_pre_ping=True,
        )
        metadata.create_all(self._engine)
        self._session_factory = sessionmaker(bind=self._engine)

    def get_session(self) -> Session:
        """
        Get a new database session.

        The caller is responsible for committing/rolling back and closing the session.
        """
        if self._session_factory is None:
            raise RuntimeError(
                "Database not initialized. Call DatabaseConnection.initialize() first."
            )
        return self._session_factory()

    def close(self) -> None:
        """Dispose of the connection pool."""
        if self._engine is not None:
            self._engine.dispose()
        self._engine = None
        self._session_factory = None
