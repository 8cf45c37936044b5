from contextlib import contextmanager
from sqlalchemy import create_engine, text
from sqlalchemy.ext.declarative import declarative_base
from sqlalchemy.orm import sessionmaker, Session
from perpsim.core.config import settings
import os
import logging

logger = logging.getLogger(__name__)

# Priority: 1) DATABASE_URL env var, 2) settings.DATABASE_URL
database_url = os.getenv("DATABASE_URL", settings.DATABASE_URL)

if database_url.startswith("sqlite"):
    engine = create_engine(
        database_url,
        connect_args={"check_same_thread": False},  # Required for SQLite with FastAPI
        pool_pre_ping=True,
        echo=False
    )
    logger.info("Database engine configured for SQLite")
else:
    engine = create_engine(
        database_url,
        pool_size=10,
        max_overflow=20,
        pool_timeout=30,
        pool_recycle=3600,
        pool_pre_ping=True,    # Verify connections before use
        connect_args={"connect_timeout": 10},
    )
    logger.info(f"Using PostgreSQL database: {database_url.split('@')[-1] if '@' in database_url else database_url}")

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def check_database_connection() -> tuple[bool, str]:
    """
    Test database connection and return (success, message).
    Used by the health endpoint.
    """
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True, "Database connection successful"
    except Exception as e:
        return False, f"Database connection failed: {e}"


def init_db(db_engine=None) -> None:
    """Create all tables registered on Base."""
    # Register models on Base.metadata before create_all
    import perpsim.models  # noqa: F401
    Base.metadata.create_all(bind=db_engine or engine)


@contextmanager
def atomic(db: Session):
    """Run one logical ledger operation as a single transaction.

    Commits when the block completes, rolls back if it raises.
    """
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise


def get_db():
    """Dependency for getting database session

    The session is always closed, which rolls back anything the handler did not commit.
    """
    db = SessionLocal()
    try:
        yield db
    except Exception as e:
        logger.error(f"Database session error: {e}", exc_info=True)
        try:
            db.rollback()
        except Exception as rollback_err:
            logger.warning(f"Error rolling back database session: {rollback_err}")
        raise
    finally:
        db.close()
