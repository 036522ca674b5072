"""
Pytest configuration and shared fixtures for the booking engine tests.

Pure tests run everywhere. Tests marked `db` need a disposable PostgreSQL
database (btree_gist is required for the no-overlap constraint) given by
TEST_DATABASE_URL; they are skipped when it is not set.
"""
import os
import uuid
from datetime import datetime, time, timezone

import pytest
from cryptography.fernet import Fernet

# Settings are cached on first import, so test configuration goes in first
os.environ.setdefault("CALENDAR_ENCRYPTION_KEY", Fernet.generate_key().decode())
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key-for-testing-only")
os.environ.setdefault("TELEGRAM_BOT_TOKEN", "")
os.environ.setdefault("GOOGLE_CLIENT_ID", "test-client-id")
os.environ.setdefault("GOOGLE_CLIENT_SECRET", "test-client-secret")
os.environ.setdefault("GOOGLE_REDIRECT_URI", "http://localhost:8000/api/v1/dashboard/calendar/callback")

from sqlalchemy import create_engine, text  # noqa: E402
from sqlalchemy.orm import Session, sessionmaker  # noqa: E402

from masterbook.core.events import event_bus  # noqa: E402
from masterbook.models import (  # noqa: E402
    AvailabilityRule,
    Base,
    Master,
    MasterSettings,
    Service,
    User,
)

TEST_DATABASE_URL = os.environ.get("TEST_DATABASE_URL")


def is_safe_test_database(db_uri: str) -> bool:
    """
    Check if the database URI is safe for testing.
    Returns False if it appears to be a production database.
    """
    if not db_uri:
        return False

    dangerous_patterns = ["amazonaws.com", "azure.com", "googlecloud", "prod", "production", "live"]
    safe_patterns = ["test", "testing", "localhost", "127.0.0.1", "dev"]

    db_uri_lower = db_uri.lower()
    if any(pattern in db_uri_lower for pattern in dangerous_patterns):
        return False
    return any(pattern in db_uri_lower for pattern in safe_patterns)


def pytest_collection_modifyitems(config, items):
    if TEST_DATABASE_URL:
        return
    skip_db = pytest.mark.skip(reason="TEST_DATABASE_URL is not set")
    for item in items:
        if "db" in item.keywords:
            item.add_marker(skip_db)


@pytest.fixture(autouse=True)
def isolated_event_bus():
    """No subscriber leaks between tests; nothing reaches Celery by accident"""
    event_bus.clear()
    yield event_bus
    event_bus.clear()


# ============================================================================
# Database
# ============================================================================

@pytest.fixture(scope="session")
def engine():
    if not is_safe_test_database(TEST_DATABASE_URL):
        pytest.exit(f"DANGER: TEST_DATABASE_URL does not look like a test database: {TEST_DATABASE_URL}")

    engine = create_engine(TEST_DATABASE_URL, pool_pre_ping=True)
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def db_session(engine):
    """
    Session whose commits become savepoints of one outer transaction that is
    rolled back after the test.
    """
    connection = engine.connect()
    transaction = connection.begin()
    session = Session(bind=connection, join_transaction_mode="create_savepoint")

    yield session

    session.close()
    transaction.rollback()
    connection.close()


@pytest.fixture
def committed_sessions(engine):
    """Real, independently committing sessions (for concurrency tests); tables are emptied afterwards"""
    factory = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    yield factory

    table_names = ", ".join(table.name for table in Base.metadata.sorted_tables)
    with engine.begin() as connection:
        connection.execute(text(f"TRUNCATE {table_names} CASCADE"))


# ============================================================================
# Factories
# ============================================================================

# Monday 2030-01-07, far enough in the future for every notice rule
MONDAY = datetime(2030, 1, 7, tzinfo=timezone.utc).date()
NOW = datetime(2030, 1, 1, 12, 0, tzinfo=timezone.utc)


def make_user(db, name=None, chat_id=None) -> User:
    user = User(username=name or f"user-{uuid.uuid4().hex[:8]}", display_name=name, telegram_chat_id=chat_id)
    db.add(user)
    db.commit()
    return user


def make_master(db, timezone_name="UTC", cancel_policy_hours=24, discount=0, notice=60) -> Master:
    """Master working Monday 09:00-12:00 local time, 10-minute steps"""
    owner = make_user(db, name=f"master-{uuid.uuid4().hex[:6]}")
    master = Master(
        user_id=owner.id,
        display_name="Anna",
        booking_slug=f"anna-{uuid.uuid4().hex[:8]}",
        timezone=timezone_name,
        cancel_policy_hours=cancel_policy_hours,
    )
    db.add(master)
    db.flush()
    db.add(MasterSettings(
        master_id=master.id,
        reminder_hours=[24, 2],
        first_visit_discount_percent=discount,
        min_booking_notice_minutes=notice,
    ))
    db.add(AvailabilityRule(
        master_id=master.id,
        day_of_week=1,
        start_time=time(9, 0),
        end_time=time(12, 0),
        slot_granularity_minutes=10,
    ))
    db.commit()
    return master


def make_service(db, master, duration=60, before=0, after=0, price=None, name="Haircut") -> Service:
    service = Service(
        master_id=master.id,
        name=name,
        duration_minutes=duration,
        buffer_before_minutes=before,
        buffer_after_minutes=after,
        price=price,
        is_active=True,
    )
    db.add(service)
    db.commit()
    return service
