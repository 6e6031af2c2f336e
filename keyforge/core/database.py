"""
Database configuration and connection management.

This module provides:
- SQLAlchemy engine and session management
- Connection pooling with sane defaults
- Test database support (SQLite file via TEST_DATABASE_URL)
- Table definitions for the application's own data

License keys themselves never live here; they stay in the MongoDB
databases users connect as integrations (see features/collections/external.py).
"""
from datetime import datetime, timezone
from typing import Optional
from contextlib import contextmanager
from sqlalchemy import create_engine, MetaData, Table, Column, Integer, String, DateTime, JSON, Text, Index, UniqueConstraint
from sqlalchemy.pool import QueuePool
from sqlalchemy.orm import sessionmaker
from sqlalchemy.sql import func
import logging
import os

from keyforge.core.config import settings

logger = logging.getLogger("keyforge")

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

    if url.startswith("sqlite"):
        # SQLite connections are shared with FastAPI's threadpool in tests
        _engine = create_engine(
            url,
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

    Commits on clean exit, rolls back on any exception.
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


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite drops tzinfo on the way back; treat naive values as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


# Users (accounts, plan state, MongoDB integrations)
users = Table(
    'users',
    metadata,
    Column('id', String(36), primary_key=True),
    Column('name', Text, nullable=False),
    Column('email', String(320), nullable=False, unique=True),
    Column('password_hash', String(100), nullable=False),
    Column('image', Text, nullable=True),
    Column('plan', String(20), nullable=False, server_default='none'),
    Column('plan_paid_at', DateTime(timezone=True), nullable=True),
    Column('plan_expires_at', DateTime(timezone=True), nullable=True),
    Column('plan_last_transaction_hash', String(255), nullable=True),
    Column('plan_external_id', String(255), nullable=True),
    Column('integrations', JSON, nullable=False, default=list),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Column('updated_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Index('idx_users_email', 'email'),
)

# Login sessions (one per successful login, revocable from settings)
user_sessions = Table(
    'user_sessions',
    metadata,
    Column('id', String(36), primary_key=True),
    Column('user_id', String(36), nullable=False, index=True),
    Column('device', String(255), nullable=False, server_default='Desconhecido'),
    Column('location', String(255), nullable=False, server_default='Desconhecido'),
    Column('ip', String(64), nullable=True),
    Column('token_hash', String(64), nullable=False, unique=True),
    Column('last_active', DateTime(timezone=True), nullable=False),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
)

# Projects (owned by an empresarial user)
projects = Table(
    'projects',
    metadata,
    Column('id', String(36), primary_key=True),
    Column('name', Text, nullable=False),
    Column('slug', String(255), nullable=False, unique=True),
    Column('status', String(20), nullable=False, server_default='active'),
    Column('owner_id', String(36), nullable=False, index=True),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Column('updated_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
)

# Client accounts linked to a project by email
project_clients = Table(
    'project_clients',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('project_id', String(36), nullable=False, index=True),
    Column('email', String(320), nullable=False, index=True),
    Column('name', Text, nullable=True),
    Column('user_id', String(36), nullable=True),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    UniqueConstraint('project_id', 'email', name='uq_project_clients_project_email'),
)

# External collection -> project assignment (per owning user)
collection_links = Table(
    'collection_links',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('user_id', String(36), nullable=False, index=True),
    Column('collection_id', Text, nullable=False),
    Column('project_id', String(36), nullable=False, index=True),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Column('updated_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    UniqueConstraint('user_id', 'collection_id', name='uq_collection_links_user_collection'),
)

# HWID reset log (dashboard "resets today")
hwid_resets = Table(
    'hwid_resets',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('user_id', String(36), nullable=False),
    Column('project_id', String(36), nullable=True, index=True),
    Column('collection_id', Text, nullable=False),
    Column('created_at', DateTime(timezone=True), nullable=False),
    Index('idx_hwid_resets_created_at', 'created_at'),
)

# Web push subscriptions (one per user)
notification_subscriptions = Table(
    'notification_subscriptions',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('user_id', String(36), nullable=False, unique=True),
    Column('endpoint', Text, nullable=False),
    Column('p256dh', Text, nullable=False),
    Column('auth', Text, nullable=False),
    Column('statuses', JSON, nullable=False),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Column('updated_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
)
