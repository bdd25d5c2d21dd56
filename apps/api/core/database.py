"""
Database connection management with connection pooling.

Also hosts the transaction runner used by every subscription and class
mutation: optimistic version checks plus a bounded retry loop, so two
staff consoles racing on the same row never both win.
"""
from typing import Callable, TypeVar

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import make_url
from sqlalchemy.orm import declarative_base
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.orm.exc import StaleDataError
from sqlalchemy.pool import QueuePool
from core.config import settings
import logging

logger = logging.getLogger(__name__)

T = TypeVar("T")

DATABASE_URL = settings.database_url
IS_SQLITE = make_url(DATABASE_URL).get_backend_name() == "sqlite"

if IS_SQLITE:
    # Test/dev backend. Each thread gets its own connection; the busy timeout
    # makes concurrent writers queue instead of failing with "database is locked".
    engine = create_engine(
        DATABASE_URL,
        connect_args={
            "check_same_thread": False,
            "timeout": settings.SQLITE_BUSY_TIMEOUT_S,
        },
        echo=settings.DEBUG,
    )
else:
    engine = create_engine(
        DATABASE_URL,
        poolclass=QueuePool,
        pool_size=settings.DB_POOL_SIZE,  # Number of connections to maintain
        max_overflow=settings.DB_MAX_OVERFLOW,  # Additional connections beyond pool_size
        pool_timeout=settings.DB_POOL_TIMEOUT,  # Seconds to wait for connection
        pool_recycle=settings.DB_POOL_RECYCLE,  # Recycle connections after this many seconds
        pool_pre_ping=True,  # Verify connections before using
        echo=settings.DEBUG,  # Log SQL queries in debug mode
    )

# Session factory
SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
    expire_on_commit=False,  # Prevent lazy loading issues
)

Base = declarative_base()


@event.listens_for(engine, "connect")
def set_sqlite_pragma(dbapi_conn, connection_record):
    """Set connection-level settings."""
    if IS_SQLITE:
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()
    logger.debug("New database connection established")


@event.listens_for(engine, "checkout")
def receive_checkout(dbapi_conn, connection_record, connection_proxy):
    """Log when connection is checked out from pool."""
    logger.debug("Connection checked out from pool")


@event.listens_for(engine, "checkin")
def receive_checkin(dbapi_conn, connection_record):
    """Log when connection is returned to pool."""
    logger.debug("Connection returned to pool")


def get_db() -> Session:
    """
    Dependency for FastAPI to get database session.

    Commits on success and rolls back on any exception. Services that
    need retry semantics commit inside run_in_transaction; the commit
    here then has nothing left to flush.
    """
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception as e:
        db.rollback()
        # Only log actual database errors, not HTTP exceptions
        from fastapi import HTTPException
        if not isinstance(e, HTTPException):
            logger.error(f"Database transaction error: {e}")
        raise
    finally:
        db.close()


def get_db_sync() -> Session:
    """
    Synchronous database session getter for use in scripts and background tasks.

    Note: This does NOT auto-commit or auto-rollback.
    Caller must manage transactions explicitly.
    """
    return SessionLocal()


def run_in_transaction(db: Session, operation: Callable[[], T], *, label: str) -> T:
    """
    Run ``operation`` and commit, retrying when a versioned row went stale.

    ``operation`` must (re)load everything it touches from ``db``; after a
    rollback all previously loaded instances are expired, so each attempt
    sees the rows as another transaction left them. Any other exception
    rolls back and propagates unchanged, leaving persisted state untouched.

    Raises:
        ConflictError: the retry budget ran out.
    """
    from core.exceptions import ConflictError

    attempts = settings.TRANSACTION_MAX_ATTEMPTS
    for attempt in range(1, attempts + 1):
        try:
            result = operation()
            db.commit()
            return result
        except StaleDataError:
            db.rollback()
            logger.info(
                "Concurrent update detected, retrying",
                extra={"extra_fields": {"operation": label, "attempt": attempt}},
            )
        except Exception:
            db.rollback()
            raise

    logger.warning(
        "Transaction retry budget exhausted",
        extra={"extra_fields": {"operation": label, "attempts": attempts}},
    )
    raise ConflictError(f"{label} was modified concurrently, please retry")


def check_db_connection() -> bool:
    """
    Check if database connection is healthy.

    Returns:
        True if connection is healthy, False otherwise
    """
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.error(f"Database connection check failed: {e}")
        return False
