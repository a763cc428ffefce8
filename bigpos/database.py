"""
Database configuration with fail-safe features:
- pool_pre_ping=True
- SSL enforced for Supabase
- Retry on OperationalError (max 2 times)
- Local SQLite fallback when DATABASE_URL points at a file
"""
from sqlalchemy import create_engine, text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import sessionmaker, declarative_base, Session
from sqlalchemy.pool import QueuePool
from contextlib import contextmanager
from typing import Generator, Iterator
import logging
import time

from bigpos.config import settings

logger = logging.getLogger(__name__)

Base = declarative_base()


def build_engine(database_url: str, **kwargs):
    """Create an engine tuned for the target backend."""
    if database_url.startswith("sqlite"):
        kwargs.setdefault("connect_args", {"check_same_thread": False})
        return create_engine(database_url, **kwargs)

    # psycopg3 driver
    for prefix in ("postgres://", "postgresql://"):
        if database_url.startswith(prefix):
            database_url = "postgresql+psycopg://" + database_url[len(prefix):]
            break

    # Add SSL mode for Supabase if not present
    if "supabase" in database_url and "sslmode" not in database_url:
        database_url += "?sslmode=require"
        logger.info("Added sslmode=require to DATABASE_URL")

    return create_engine(
        database_url,
        poolclass=QueuePool,
        pool_pre_ping=True,
        pool_size=5,
        max_overflow=10,
        pool_recycle=300,
        pool_timeout=30,
        echo=False,
        connect_args={
            "connect_timeout": 10,
            "keepalives": 1,
            "keepalives_idle": 30,
        },
        **kwargs,
    )


engine = build_engine(settings.DATABASE_URL)
logger.info("Database connection configured")

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db() -> Generator[Session, None, None]:
    """FastAPI dependency yielding one session per request."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def atomic(db: Session) -> Iterator[Session]:
    """
    Run a block of ledger writes as one transaction.

    Commits when the block finishes, rolls everything back when it raises,
    so a failed payment never leaves a partial debit behind.
    """
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise


def test_connection(max_retries: int = 2) -> tuple[bool, str]:
    """Preflight connection test, retrying on OperationalError."""
    for attempt in range(max_retries + 1):
        try:
            with engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            return True, "Database connection successful"
        except OperationalError as e:
            if attempt == max_retries:
                return False, f"Database connection failed: {str(e)}"
            logger.warning(f"Database connection attempt {attempt + 1} failed, retrying...")
            time.sleep(1)
    return False, "Database connection test failed"
