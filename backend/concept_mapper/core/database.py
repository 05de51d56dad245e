"""Database configuration and session management."""

import logging
from collections.abc import Generator
from datetime import datetime
from uuid import uuid4

from rapidfuzz.distance import JaroWinkler
from sqlalchemy import DateTime, Engine, create_engine, event, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column, sessionmaker

from concept_mapper.core.config import settings

logger = logging.getLogger(__name__)

# Lazily initialized engine and session factory
_engine: Engine | None = None
_session_factory: sessionmaker[Session] | None = None


def _sqlite_jaro_winkler(left: str | None, right: str | None) -> float | None:
    """Jaro-Winkler similarity exposed to SQLite as a scalar SQL function."""
    if left is None or right is None:
        return None
    return JaroWinkler.similarity(left, right)


def _on_sqlite_connect(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()
    dbapi_connection.create_function(
        "jaro_winkler_similarity", 2, _sqlite_jaro_winkler, deterministic=True
    )


def register_sqlite_functions(engine: Engine) -> None:
    """Enable foreign keys and register similarity functions on SQLite connections.

    PostgreSQL and DuckDB provide Jaro-Winkler natively (pg_similarity /
    built-in), SQLite needs it registered per connection.
    """
    if engine.dialect.name == "sqlite":
        event.listen(engine, "connect", _on_sqlite_connect)


def get_engine() -> Engine:
    """Get or create the application engine."""
    global _engine
    if _engine is None:
        _engine = create_engine(
            settings.database_url,
            echo=settings.debug,
            future=True,
        )
        register_sqlite_functions(_engine)
    return _engine


def get_session_factory() -> sessionmaker[Session]:
    """Get or create the session factory bound to the application engine."""
    global _session_factory
    if _session_factory is None:
        _session_factory = sessionmaker(
            bind=get_engine(),
            expire_on_commit=False,
            autocommit=False,
            autoflush=False,
        )
    return _session_factory


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models.

    Provides common columns and configuration for all models:
    - id: UUID primary key (auto-generated)
    - created_at: Timestamp when record was created
    """

    id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        primary_key=True,
        default=lambda: str(uuid4()),
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )


def get_db() -> Generator[Session, None, None]:
    """Dependency to get database session.

    Usage in FastAPI:
        @app.get("/items")
        def get_items(db: Session = Depends(get_db)):
            ...
    """
    session = get_session_factory()()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def init_db() -> None:
    """Initialize database tables.

    For development only - use Alembic migrations in production.
    """
    import concept_mapper.models  # noqa: F401  (registers all tables)

    Base.metadata.create_all(bind=get_engine())


def close_db() -> None:
    """Close database connections."""
    global _engine, _session_factory
    if _engine is not None:
        _engine.dispose()
    _engine = None
    _session_factory = None
