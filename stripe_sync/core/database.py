"""
Database configuration and connection management.

This module provides:
- SQLAlchemy engine and session management
- Connection pooling with sane defaults
- Test database support
- Table definitions for the local mirror of provider billing state
"""
from typing import Optional
from contextlib import contextmanager
from sqlalchemy import create_engine, select, MetaData, Table, Column, Integer, BigInteger, String, DateTime, Boolean, JSON, Text, Index, false
from sqlalchemy.pool import QueuePool, StaticPool
from sqlalchemy.orm import sessionmaker
from sqlalchemy.sql import func
import logging
import os

from stripe_sync.core.config import settings


logger = logging.getLogger("stripe_sync.database")

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
    test_url = os.getenv("TEST_DATABASE_URL") or settings.TEST_DATABASE_URL
    if test_url:
        return test_url
    
    return os.getenv("DATABASE_URL") or settings.DATABASE_URL


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
        # In-memory SQLite must share one connection across sessions
        _engine = create_engine(
            url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
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
            echo=False,  # Set to True for SQL query logging
        )
    
    # Create session factory
    _SessionLocal = sessionmaker(
        autocommit=False,
        autoflush=False,
        bind=_engine
    )
    
    return _engine


def dispose_engine() -> None:
    """Drop the cached engine so the next call re-reads the database URL."""
    global _engine, _SessionLocal
    if _engine is not None:
        _engine.dispose()
    _engine = None
    _SessionLocal = None


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

    One session is one transaction: it commits when the block exits cleanly
    and rolls back if anything inside raises.
    
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


def check_connection() -> bool:
    """
    Check if database connection is available.
    
    Returns:
        True if connection successful, False otherwise
    """
    try:
        engine = get_engine()
        with engine.connect() as conn:
            conn.execute(select(func.now()))
        return True
    except Exception:
        logger.warning("Database connection check failed", exc_info=True)
        return False


def _timestamps():
    return (
        Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
        Column('updated_at', DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False),
    )


# Products
stripe_products = Table(
    'stripe_products',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('stripe_product_id', String(255), nullable=False, unique=True),
    Column('name', Text, nullable=False),
    Column('description', Text, nullable=True),
    Column('active', Boolean, nullable=False, server_default=false()),
    Column('type', String(50), nullable=True),  # service | good
    Column('default_price_id', String(255), nullable=True),
    Column('metadata', JSON, nullable=True),
    Column('images', JSON, nullable=True),
    # created timestamp of the last provider event merged into this row
    Column('last_event_at', BigInteger, nullable=True),
    *_timestamps(),
    Index('idx_stripe_products_active', 'active'),
)

# Prices
stripe_prices = Table(
    'stripe_prices',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('stripe_price_id', String(255), nullable=False, unique=True),
    # Not a foreign key: the product may not have arrived yet
    Column('stripe_product_id', String(255), nullable=False),
    Column('active', Boolean, nullable=False, server_default=false()),
    Column('currency', String(10), nullable=False),
    Column('type', String(20), nullable=False),  # one_time | recurring
    Column('unit_amount', BigInteger, nullable=True),  # minor currency units
    Column('description', Text, nullable=True),
    Column('lookup_key', String(255), nullable=True),
    Column('recurring_interval', String(10), nullable=True),  # day | week | month | year
    Column('recurring_interval_count', Integer, nullable=True),
    Column('trial_period_days', Integer, nullable=True),
    Column('usage_type', String(20), nullable=True),  # licensed | metered
    Column('billing_scheme', String(20), nullable=True),  # per_unit | tiered
    Column('tiers_mode', String(20), nullable=True),  # graduated | volume
    Column('tiers', JSON, nullable=True),
    Column('metadata', JSON, nullable=True),
    Column('last_event_at', BigInteger, nullable=True),
    *_timestamps(),
    Index('idx_stripe_prices_product', 'stripe_product_id'),
    Index('idx_stripe_prices_active', 'active'),
    Index('idx_stripe_prices_lookup_key', 'lookup_key'),
)

# Customers
stripe_customers = Table(
    'stripe_customers',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('stripe_customer_id', String(255), nullable=False, unique=True),
    Column('email', String(320), nullable=True),
    Column('name', Text, nullable=True),
    Column('metadata', JSON, nullable=True),
    Column('last_event_at', BigInteger, nullable=True),
    *_timestamps(),
    Index('idx_stripe_customers_email', 'email'),
)

# Subscriptions
stripe_subscriptions = Table(
    'stripe_subscriptions',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('stripe_subscription_id', String(255), nullable=False, unique=True),
    Column('stripe_customer_id', String(255), nullable=False),
    Column('status', String(50), nullable=False),
    Column('current_period_end', BigInteger, nullable=True),
    Column('cancel_at_period_end', Boolean, nullable=False, server_default=false()),
    Column('cancel_at', BigInteger, nullable=True),
    Column('quantity', Integer, nullable=True),
    Column('price_id', String(255), nullable=False),
    Column('metadata', JSON, nullable=True),
    # Application-owned; never written by webhook merges
    Column('org_id', String(255), nullable=True),
    Column('user_id', String(255), nullable=True),
    Column('last_event_at', BigInteger, nullable=True),
    *_timestamps(),
    Index('idx_stripe_subscriptions_customer', 'stripe_customer_id'),
    Index('idx_stripe_subscriptions_org_id', 'org_id'),
    Index('idx_stripe_subscriptions_user_id', 'user_id'),
)

# Checkout sessions
stripe_checkout_sessions = Table(
    'stripe_checkout_sessions',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('stripe_checkout_session_id', String(255), nullable=False, unique=True),
    Column('stripe_customer_id', String(255), nullable=True),
    Column('status', String(50), nullable=False),
    Column('mode', String(20), nullable=False),  # payment | subscription | setup
    Column('metadata', JSON, nullable=True),
    Column('last_event_at', BigInteger, nullable=True),
    *_timestamps(),
)

# Payments (payment intents)
stripe_payments = Table(
    'stripe_payments',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('stripe_payment_intent_id', String(255), nullable=False, unique=True),
    Column('stripe_customer_id', String(255), nullable=True),
    Column('amount', BigInteger, nullable=False),
    Column('currency', String(10), nullable=False),
    Column('status', String(50), nullable=False),
    Column('created', BigInteger, nullable=False),
    Column('metadata', JSON, nullable=True),
    Column('org_id', String(255), nullable=True),
    Column('user_id', String(255), nullable=True),
    Column('last_event_at', BigInteger, nullable=True),
    *_timestamps(),
    Index('idx_stripe_payments_customer', 'stripe_customer_id'),
    Index('idx_stripe_payments_org_id', 'org_id'),
    Index('idx_stripe_payments_user_id', 'user_id'),
)

# Invoices
stripe_invoices = Table(
    'stripe_invoices',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('stripe_invoice_id', String(255), nullable=False, unique=True),
    Column('stripe_customer_id', String(255), nullable=False),
    Column('stripe_subscription_id', String(255), nullable=True),
    Column('status', String(50), nullable=False),
    Column('amount_due', BigInteger, nullable=False),
    Column('amount_paid', BigInteger, nullable=False),
    Column('created', BigInteger, nullable=False),
    Column('org_id', String(255), nullable=True),
    Column('user_id', String(255), nullable=True),
    Column('last_event_at', BigInteger, nullable=True),
    *_timestamps(),
    Index('idx_stripe_invoices_customer', 'stripe_customer_id'),
    Index('idx_stripe_invoices_subscription', 'stripe_subscription_id'),
    Index('idx_stripe_invoices_org_id', 'org_id'),
    Index('idx_stripe_invoices_user_id', 'user_id'),
)

# Webhook deliveries (idempotency set + failure ledger)
stripe_webhook_events = Table(
    'stripe_webhook_events',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('stripe_event_id', String(255), nullable=False, unique=True),
    Column('event_type', String(100), nullable=False),
    Column('status', String(20), nullable=False),  # applied | failed
    Column('payload_hash', String(64), nullable=True),  # SHA256 of raw body
    Column('payload_json', JSON, nullable=True),  # verified payload, kept for replay
    Column('error', Text, nullable=True),
    Column('attempts', Integer, nullable=False, server_default='0'),
    Column('received_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Column('applied_at', DateTime(timezone=True), nullable=True),
    Index('idx_stripe_webhook_events_status', 'status'),
    Index('idx_stripe_webhook_events_type', 'event_type'),
)
