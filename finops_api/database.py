"""
Database Configuration and Session Management

SQLAlchemy setup with connection pooling. PostgreSQL in production,
SQLite for local development and tests.

NOTE: Tenant scoping is enforced by the middleware and the query filters
in each endpoint, not here. This module just provides raw sessions.
"""
from sqlalchemy import create_engine, event
from sqlalchemy.orm import declarative_base, sessionmaker, Session
from sqlalchemy.pool import QueuePool, StaticPool
from finops_api.config import get_settings
import logging

logger = logging.getLogger(__name__)

settings = get_settings()


def _engine_options(url: str) -> dict:
    if url.startswith("sqlite"):
        options = {"connect_args": {"check_same_thread": False}}
        # In-memory databases live as long as their single connection
        if url in ("sqlite://", "sqlite:///:memory:"):
            options["poolclass"] = StaticPool
        return options
    return {
        "poolclass": QueuePool,
        "pool_size": settings.DATABASE_POOL_SIZE,
        "max_overflow": settings.DATABASE_MAX_OVERFLOW,
        "pool_pre_ping": True,
    }


engine = create_engine(
    settings.DATABASE_URL,
    echo=settings.DEBUG,  # Log SQL in debug mode
    **_engine_options(settings.DATABASE_URL),
)

# expire_on_commit=False lets handlers read attributes after commit
# without another round trip. Objects can go stale, refresh when needed.
SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
    expire_on_commit=False
)

# Base class for all models
Base = declarative_base()


@event.listens_for(engine, "connect")
def configure_connection(dbapi_connection, connection_record):
    """Set connection-level configuration on new connections."""
    cursor = dbapi_connection.cursor()
    if settings.DATABASE_URL.startswith("postgresql"):
        cursor.execute("SET TIME ZONE 'UTC'")
    elif settings.DATABASE_URL.startswith("sqlite"):
        # SQLite ignores ON DELETE CASCADE unless foreign keys are enabled
        cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()
    logger.debug("New database connection established")


def get_db() -> Session:
    """
    Dependency function that provides a database session.

    The session is closed after the request completes.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db():
    """
    Create all tables.

    Used for development and tests. Production schemas are managed
    by migrations.
    """
    # Import models so they register on Base.metadata
    import finops_api.models  # noqa: F401

    logger.warning("init_db() called - creating tables directly")
    Base.metadata.create_all(bind=engine)
