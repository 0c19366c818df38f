"""
Database configuration and connection management.

This module provides:
- SQLAlchemy engine construction with sane pool defaults
- SQLite write serialization (BEGIN IMMEDIATE) for local/test databases
- Table definitions for the content store and feature flags
"""
from sqlalchemy import (
    create_engine,
    event,
    MetaData,
    Table,
    Column,
    Integer,
    String,
    DateTime,
    Boolean,
    Text,
    Index,
    ForeignKey,
    UniqueConstraint,
    CheckConstraint,
    text,
)
from sqlalchemy.engine import Engine
import logging

logger = logging.getLogger("ideaboard.database")

# SQLAlchemy metadata for table definitions
metadata = MetaData()

# Connection pooling configuration
POOL_SIZE = 10
MAX_OVERFLOW = 20
POOL_TIMEOUT = 30
POOL_RECYCLE = 3600  # Recycle connections after 1 hour
SQLITE_BUSY_TIMEOUT = 30


def _serialize_sqlite_writes(engine: Engine) -> None:
    """Make every SQLite transaction take the write lock up front.

    pysqlite's deferred transactions can fail with "database is locked" when
    two read transactions both try to upgrade to a write. BEGIN IMMEDIATE
    queues writers on the busy timeout instead.
    """

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def make_engine(database_url: str, *, echo: bool = False) -> Engine:
    """Build an engine for the given URL with the pool settings used everywhere."""
    if database_url.startswith("sqlite"):
        engine = create_engine(
            database_url,
            echo=echo,
            connect_args={"check_same_thread": False, "timeout": SQLITE_BUSY_TIMEOUT},
        )
        _serialize_sqlite_writes(engine)
        return engine

    return create_engine(
        database_url,
        pool_size=POOL_SIZE,
        max_overflow=MAX_OVERFLOW,
        pool_timeout=POOL_TIMEOUT,
        pool_recycle=POOL_RECYCLE,
        pool_pre_ping=True,
        echo=echo,
    )


def create_all_tables(engine: Engine):
    """
    Create all tables defined in metadata.

    This is idempotent - tables that already exist will not be recreated.
    """
    metadata.create_all(bind=engine)


def drop_all_tables(engine: Engine):
    """
    Drop all tables defined in metadata.

    WARNING: This is destructive! Only use in tests or development.
    """
    metadata.drop_all(bind=engine)


def check_connection(engine: Engine) -> bool:
    """
    Check if database connection is available.

    Returns:
        True if connection successful, False otherwise
    """
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.warning(f"Database connection check failed: {e}")
        return False


# Gate and reward state per identity ("session:<token>" / "user:<id>")
actor_states = Table(
    'actor_states',
    metadata,
    Column('identity_key', String(200), primary_key=True),
    Column('has_submitted', Boolean, nullable=False, server_default='0'),
    Column('upvotes_given', Integer, nullable=False, server_default='0'),
    Column('shared_access', Boolean, nullable=False, server_default='0'),
    Column('created_at', DateTime(timezone=True), nullable=False),
    Column('last_activity_at', DateTime(timezone=True), nullable=False),
    Index('idx_actor_states_created_at', 'created_at'),
)

ideas = Table(
    'ideas',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('user_id', String(100), nullable=True),
    Column('session_id', String(128), nullable=True),
    Column('title', Text, nullable=True),
    Column('body', Text, nullable=False),
    Column('category', String(100), nullable=True),
    Column('tools', String(200), nullable=True),
    Column('link_url', Text, nullable=True),
    Column('votes', Integer, nullable=False, server_default='0'),
    Column('ai_grade', String(10), nullable=True),
    Column('is_test', Boolean, nullable=False, server_default='0'),
    Column('submitted_at', DateTime(timezone=True), nullable=False),
    CheckConstraint(
        '(user_id IS NULL AND session_id IS NOT NULL) OR (user_id IS NOT NULL AND session_id IS NULL)',
        name='ck_ideas_single_owner',
    ),
    # Feed orderings
    Index('idx_ideas_votes_id', 'votes', 'id'),
    Index('idx_ideas_submitted_at', 'submitted_at'),
    # Reward lookups by owner
    Index('idx_ideas_session_id', 'session_id'),
    Index('idx_ideas_user_id', 'user_id'),
)

# One effective vote per (voter, idea)
votes = Table(
    'votes',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('voter_key', String(200), nullable=False),
    Column('idea_id', Integer, ForeignKey('ideas.id'), nullable=False),
    Column('vote_type', String(4), nullable=False),
    Column('ip_address', String(64), nullable=False),
    Column('created_at', DateTime(timezone=True), nullable=False),
    Column('cast_at', DateTime(timezone=True), nullable=False),
    UniqueConstraint('voter_key', 'idea_id', name='uq_votes_voter_idea'),
    Index('idx_votes_voter_key', 'voter_key'),
    Index('idx_votes_idea_id', 'idea_id'),
)

# Append-only history of accepted tally changes. A flip rewrites the single
# row in `votes`, so rate-limit windows count these rows instead.
vote_events = Table(
    'vote_events',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('voter_key', String(200), nullable=False),
    Column('idea_id', Integer, nullable=False),
    Column('vote_type', String(4), nullable=False),
    Column('ip_address', String(64), nullable=False),
    Column('cast_at', DateTime(timezone=True), nullable=False),
    Index('idx_vote_events_voter_cast', 'voter_key', 'cast_at'),
    Index('idx_vote_events_ip_cast', 'ip_address', 'cast_at'),
)

comments = Table(
    'comments',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('idea_id', Integer, ForeignKey('ideas.id'), nullable=False),
    Column('parent_id', Integer, ForeignKey('comments.id'), nullable=True),
    Column('user_id', String(100), nullable=True),
    Column('session_id', String(128), nullable=True),
    Column('body', Text, nullable=False),
    Column('votes', Integer, nullable=False, server_default='0'),
    Column('created_at', DateTime(timezone=True), nullable=False),
    CheckConstraint(
        '(user_id IS NULL AND session_id IS NOT NULL) OR (user_id IS NOT NULL AND session_id IS NULL)',
        name='ck_comments_single_owner',
    ),
    Index('idx_comments_idea_created', 'idea_id', 'created_at'),
    Index('idx_comments_parent_id', 'parent_id'),
)

comment_votes = Table(
    'comment_votes',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('voter_key', String(200), nullable=False),
    Column('comment_id', Integer, ForeignKey('comments.id'), nullable=False),
    Column('vote_type', String(4), nullable=False),
    Column('ip_address', String(64), nullable=False),
    Column('created_at', DateTime(timezone=True), nullable=False),
    UniqueConstraint('voter_key', 'comment_id', name='uq_comment_votes_voter_comment'),
    Index('idx_comment_votes_voter_created', 'voter_key', 'created_at'),
    Index('idx_comment_votes_ip_created', 'ip_address', 'created_at'),
)

subscriptions = Table(
    'subscriptions',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('email', String(320), nullable=False, unique=True),
    Column('source', String(50), nullable=False, server_default='homepage'),
    Column('session_id', String(128), nullable=True, index=True),
    Column('subscribed_at', DateTime(timezone=True), nullable=False),
)

# Process-external feature flags (paywall)
feature_flags = Table(
    'feature_flags',
    metadata,
    Column('key', String(100), primary_key=True),
    Column('enabled', Boolean, nullable=False),
    Column('updated_at', DateTime(timezone=True), nullable=False),
)
