"""
Database configuration and connection management.

This module provides:
- SQLAlchemy engine and session management
- Connection pooling with sane defaults
- Test database support
- Ledger table definitions (profiles, usage periods, usage events,
  course tokens, generation records)
"""
from typing import Optional
from contextlib import contextmanager
import logging
import os

from sqlalchemy import create_engine, MetaData, Table, Column, Integer, String, DateTime, Boolean, JSON, Text, Index, ForeignKey, UniqueConstraint, false, text
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.pool import QueuePool
from sqlalchemy.orm import sessionmaker
from sqlalchemy.sql import func

from tiergate.core.config import settings
from tiergate.core.errors import StorageError


logger = logging.getLogger(__name__)

# SQLAlchemy metadata for table definitions
metadata = MetaData()

# Connection pooling configuration
POOL_SIZE = 10
MAX_OVERFLOW = 20
POOL_TIMEOUT = 30
POOL_RECYCLE = 3600  # Recycle connections after 1 hour

# Global engine and session factory
_engine = None
_SessionLocal = None


def get_database_url() -> Optional[str]:
    """
    Get the database URL from settings or environment.

    For testing, use TEST_DATABASE_URL if available.
    """
    test_url = os.getenv("TEST_DATABASE_URL")
    if test_url:
        return test_url

    return settings.DATABASE_URL


def init_engine(database_url: Optional[str] = None):
    """
    Initialize the SQLAlchemy engine.

    Args:
        database_url: Optional override for DATABASE_URL
    """
    global _engine, _SessionLocal

    url = database_url or get_database_url()

    if not url:
        raise ValueError(
            "DATABASE_URL is not configured. "
            "Set DATABASE_URL in environment or .env file."
        )

    if _engine is not None:
        _engine.dispose()

    if url.startswith("sqlite"):
        # File-backed SQLite is shared across request threads in dev and tests
        _engine = create_engine(
            url,
            connect_args={"check_same_thread": False, "timeout": 30},
            echo=False,
        )
    else:
        # Create engine with connection pooling
        _engine = create_engine(
            url,
            poolclass=QueuePool,
            pool_size=POOL_SIZE,
            max_overflow=MAX_OVERFLOW,
            pool_timeout=POOL_TIMEOUT,
            pool_recycle=POOL_RECYCLE,
            echo=False,  # Set to True for SQL query logging
        )

    # Create session factory
    _SessionLocal = sessionmaker(
        autocommit=False,
        autoflush=False,
        bind=_engine
    )

    return _engine


def get_engine():
    """Get the current SQLAlchemy engine."""
    global _engine
    if _engine is None:
        init_engine()
    return _engine


def get_session_factory():
    """Get the session factory."""
    global _SessionLocal
    if _SessionLocal is None:
        init_engine()
    return _SessionLocal


@contextmanager
def get_db_session():
    """
    Context manager for a single ledger transaction.

    Commits on exit and rolls back on any error. Uniqueness violations are
    re-raised untouched so callers can treat them as "someone else won";
    every other SQLAlchemy failure surfaces as StorageError.

    Usage:
        with get_db_session() as session:
            session.execute(...)
    """
    SessionLocal = get_session_factory()
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except IntegrityError:
        session.rollback()
        raise
    except SQLAlchemyError as exc:
        session.rollback()
        raise StorageError(f"Ledger storage failure: {exc.__class__.__name__}") from exc
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def create_all_tables():
    """
    Create all tables defined in metadata.

    This is idempotent - tables that already exist will not be recreated.
    """
    engine = get_engine()
    metadata.create_all(bind=engine)


def drop_all_tables():
    """
    Drop all tables defined in metadata.

    WARNING: This is destructive! Only use in tests or development.
    """
    engine = get_engine()
    metadata.drop_all(bind=engine)


def check_connection() -> bool:
    """
    Check if database connection is available.

    Returns:
        True if connection successful, False otherwise
    """
    try:
        engine = get_engine()
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except (SQLAlchemyError, ValueError) as e:
        logger.warning("Database connection check failed", extra={"error": str(e)})
        return False


# Per-user quota state and tier (one row per user)
profiles = Table(
    'profiles',
    metadata,
    Column('user_id', String(100), primary_key=True),
    Column('tier', String(20), nullable=False, server_default='starter'),
    Column('subscription_status', String(50), nullable=True),
    Column('trial_started_at', DateTime(timezone=True), nullable=True),
    Column('trial_ends_at', DateTime(timezone=True), nullable=True),
    Column('starter_credits_remaining', Integer, nullable=False, server_default='10'),
    Column('starter_credits_reset_at', DateTime(timezone=True), nullable=True),
    Column('starter_app_assist_sample_used', Boolean, nullable=False, server_default=false()),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Column('updated_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Index('idx_profiles_tier', 'tier'),
)

# Monthly usage counters (one row per user per calendar month)
usage_periods = Table(
    'usage_periods',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('user_id', String(100), ForeignKey('profiles.user_id'), nullable=False),
    Column('period_start', DateTime(timezone=True), nullable=False),
    Column('period_end', DateTime(timezone=True), nullable=False),
    Column('lifeplan_regens_count', Integer, nullable=False, server_default='0'),
    Column('resume_generations_count', Integer, nullable=False, server_default='0'),
    Column('application_assists_count', Integer, nullable=False, server_default='0'),
    Column('interview_preps_count', Integer, nullable=False, server_default='0'),
    Column('ai_messages_count', Integer, nullable=False, server_default='0'),
    Column('cover_letters_count', Integer, nullable=False, server_default='0'),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Column('updated_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    # At most one period per user per month, enforced by storage
    UniqueConstraint('user_id', 'period_start', name='uq_usage_periods_user_start'),
    UniqueConstraint('user_id', 'period_end', name='uq_usage_periods_user_end'),
    Index('idx_usage_periods_user_end', 'user_id', 'period_end'),
)

# Append-only audit trail; also the counter for trial-scoped features
usage_events = Table(
    'usage_events',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('user_id', String(100), ForeignKey('profiles.user_id'), nullable=False),
    Column('event_type', String(100), nullable=False),
    Column('metadata', JSON, nullable=True),
    Column('occurred_at', DateTime(timezone=True), nullable=False),
    # Composite index for "count since" queries: (user_id, event_type, occurred_at)
    Index('idx_usage_events_user_type_occurred', 'user_id', 'event_type', 'occurred_at'),
    Index('idx_usage_events_occurred_at', 'occurred_at'),
)

# Course-bundled unlocks, consumed oldest first and never deleted
course_tokens = Table(
    'course_tokens',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('user_id', String(100), ForeignKey('profiles.user_id'), nullable=False),
    Column('token_type', String(50), nullable=False),
    Column('course_purchase_id', String(100), nullable=True),
    Column('used', Boolean, nullable=False, server_default=false()),
    Column('used_at', DateTime(timezone=True), nullable=True),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    # FIFO lookup of unused tokens per type
    Index('idx_course_tokens_user_type_used', 'user_id', 'token_type', 'used', 'created_at'),
)

# Plan generation attempts (dedup guard)
generation_records = Table(
    'generation_records',
    metadata,
    Column('id', String(36), primary_key=True),
    Column('user_id', String(100), ForeignKey('profiles.user_id'), nullable=False),
    Column('idempotency_key', String(255), nullable=True),
    Column('status', String(20), nullable=False),
    Column('result_ref', String(255), nullable=True),
    Column('result', JSON, nullable=True),
    Column('error', Text, nullable=True),
    Column('created_at', DateTime(timezone=True), nullable=False),
    Column('updated_at', DateTime(timezone=True), nullable=False),
    UniqueConstraint('user_id', 'idempotency_key', name='uq_generation_records_user_key'),
    Index('idx_generation_records_user_created', 'user_id', 'created_at'),
)
