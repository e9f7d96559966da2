"""
Database configuration and connection management.

This module provides:
- SQLAlchemy engine and session management
- Connection pooling with sane defaults
- Test database support (SQLite in-memory via StaticPool)
- Table definitions for challenges, entries, completions and the email queue
"""
from typing import Optional
from contextlib import contextmanager
from sqlalchemy import create_engine, MetaData, Table, Column, Integer, String, Date, DateTime, Boolean, JSON, Text, Index, ForeignKey, UniqueConstraint
from sqlalchemy.pool import QueuePool, StaticPool
from sqlalchemy.orm import sessionmaker
from sqlalchemy.sql import func
import logging
import os

from gritful.core.config import settings


logger = logging.getLogger("gritful")

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

    if url.startswith("postgres://"):
        url = url.replace("postgres://", "postgresql://", 1)

    if url.startswith("sqlite"):
        # Single shared connection so in-memory databases survive across sessions
        _engine = create_engine(
            url,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
            echo=False,
        )
    else:
        _engine = create_engine(
            url,
            poolclass=QueuePool,
            pool_size=POOL_SIZE,
            max_overflow=MAX_OVERFLOW,
            pool_timeout=POOL_TIMEOUT,
            pool_recycle=POOL_RECYCLE,
            pool_pre_ping=True,
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
    Context manager for database sessions.

    Usage:
        with get_db_session() as session:
            session.execute(...)
    """
    SessionLocal = get_session_factory()
    session = SessionLocal()
    try:
        yield session
        session.commit()
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


def reset_database():
    """
    Reset the database by dropping and recreating all tables.

    WARNING: This is destructive! Only use in tests.
    """
    drop_all_tables()
    create_all_tables()


challenges = Table(
    'challenges',
    metadata,
    Column('id', String(36), primary_key=True),
    Column('creator_id', String(100), nullable=False, index=True),
    Column('name', String(100), nullable=False),
    Column('description', Text, nullable=True),
    Column('starts_at', Date, nullable=False),
    Column('ends_at', Date, nullable=True),  # NULL = ongoing
    Column('ended_at', DateTime(timezone=True), nullable=True),  # manual termination
    Column('duration_days', Integer, nullable=True),
    Column('grace_period_days', Integer, nullable=False, server_default='7'),
    Column('metrics', JSON, nullable=False),
    Column('is_public', Boolean, nullable=False, server_default='1'),
    Column('lock_entries_after_day', Boolean, nullable=False, server_default='0'),
    Column('enable_streak_bonus', Boolean, nullable=False, server_default='0'),
    Column('streak_bonus_points', Integer, nullable=False, server_default='5'),
    Column('enable_perfect_day_bonus', Boolean, nullable=False, server_default='0'),
    Column('perfect_day_bonus_points', Integer, nullable=False, server_default='10'),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Index('idx_challenges_creator_created', 'creator_id', 'created_at'),
)

challenge_participants = Table(
    'challenge_participants',
    metadata,
    Column('id', String(36), primary_key=True),
    Column('challenge_id', String(36), ForeignKey('challenges.id', ondelete='CASCADE'), nullable=False, index=True),
    Column('user_id', String(100), nullable=False, index=True),
    Column('email', String(254), nullable=True),
    Column('display_name', String(120), nullable=True),
    # Advisory copies; recomputed after every mutation
    Column('current_streak', Integer, nullable=False, server_default='0'),
    Column('longest_streak', Integer, nullable=False, server_default='0'),
    Column('total_points', Integer, nullable=False, server_default='0'),
    Column('status', String(20), nullable=False, server_default='active'),
    Column('joined_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    UniqueConstraint('challenge_id', 'user_id', name='uq_participants_challenge_user'),
)

daily_entries = Table(
    'daily_entries',
    metadata,
    Column('id', String(36), primary_key=True),
    Column('participant_id', String(36), ForeignKey('challenge_participants.id', ondelete='CASCADE'), nullable=False),
    Column('entry_date', Date, nullable=False),
    Column('metric_data', JSON, nullable=False),
    Column('is_completed', Boolean, nullable=False, server_default='0'),
    Column('notes', Text, nullable=True),
    Column('is_locked', Boolean, nullable=False, server_default='0'),
    Column('points_earned', Integer, nullable=False, server_default='0'),
    Column('bonus_points', Integer, nullable=False, server_default='0'),
    Column('submitted_at', DateTime(timezone=True), nullable=False),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    UniqueConstraint('participant_id', 'entry_date', name='uq_daily_entries_participant_date'),
    Index('idx_daily_entries_participant_date', 'participant_id', 'entry_date'),
)

periodic_task_completions = Table(
    'periodic_task_completions',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('participant_id', String(36), ForeignKey('challenge_participants.id', ondelete='CASCADE'), nullable=False),
    Column('task_id', String(100), nullable=False),
    Column('frequency', String(10), nullable=False),  # 'weekly' | 'monthly'
    Column('period_start', Date, nullable=False),
    Column('period_end', Date, nullable=False),
    Column('value', JSON, nullable=True),
    Column('points_earned', Integer, nullable=False, server_default='0'),
    Column('completed_at', DateTime(timezone=True), nullable=False),
    # At most one completion per task per period
    UniqueConstraint('participant_id', 'task_id', 'period_start', name='uq_periodic_participant_task_period'),
)

onetime_task_completions = Table(
    'onetime_task_completions',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('participant_id', String(36), ForeignKey('challenge_participants.id', ondelete='CASCADE'), nullable=False),
    Column('task_id', String(100), nullable=False),
    Column('value', JSON, nullable=True),
    Column('points_earned', Integer, nullable=False, server_default='0'),
    Column('completed_at', DateTime(timezone=True), nullable=False),
    UniqueConstraint('participant_id', 'task_id', name='uq_onetime_participant_task'),
)

participant_achievements = Table(
    'participant_achievements',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('participant_id', String(36), ForeignKey('challenge_participants.id', ondelete='CASCADE'), nullable=False),
    Column('achievement_id', String(50), nullable=False),
    Column('earned_at', DateTime(timezone=True), nullable=False),
    Column('notified', Boolean, nullable=False, server_default='0'),
    UniqueConstraint('participant_id', 'achievement_id', name='uq_participant_achievement'),
)

activity_feed = Table(
    'activity_feed',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('challenge_id', String(36), ForeignKey('challenges.id', ondelete='CASCADE'), nullable=False),
    Column('user_id', String(100), nullable=False),
    Column('activity_type', String(50), nullable=False),
    Column('message', Text, nullable=False),
    Column('metadata', JSON, nullable=True),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Index('idx_activity_feed_challenge_created', 'challenge_id', 'created_at'),
)

email_queue = Table(
    'email_queue',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('user_id', String(100), nullable=False),
    Column('email_type', String(50), nullable=False),
    Column('recipient_email', String(254), nullable=False),
    Column('subject', String(255), nullable=False),
    Column('template_name', String(50), nullable=False),
    Column('template_data', JSON, nullable=False),
    Column('status', String(20), nullable=False, server_default='pending'),
    Column('retry_count', Integer, nullable=False, server_default='0'),
    Column('max_retries', Integer, nullable=False, server_default='3'),
    Column('scheduled_for', DateTime(timezone=True), nullable=False),
    Column('sent_at', DateTime(timezone=True), nullable=True),
    Column('failed_at', DateTime(timezone=True), nullable=True),
    Column('error_message', Text, nullable=True),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    # Drain pattern: status = 'pending' AND scheduled_for <= now ORDER BY created_at
    Index('idx_email_queue_status_scheduled', 'status', 'scheduled_for'),
)
