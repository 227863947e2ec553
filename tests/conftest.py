"""
Shared fixtures for the marketplace ledger test suite.

Every test runs against one in-memory SQLite database. Each test gets a
session whose commits and rollbacks only move SAVEPOINTs inside an outer
connection transaction, which is rolled back when the test ends.
"""

import os

# Must be set before anything imports marketplace.core.config
os.environ.setdefault("CI", "1")
os.environ["DATABASE_URL"] = "sqlite:///:memory:"
os.environ["PLATFORM_FEE_PERCENTAGE"] = "15"
os.environ["MINIMUM_PLATFORM_FEE"] = "100"
os.environ["PLATFORM_TIMEZONE"] = "Africa/Lagos"

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from marketplace.database import Base

# Import models so Base.metadata is populated for create_all.
import marketplace.models  # noqa: F401
from tests.factories.ledger_builders import (
    create_booking,
    create_service,
    create_slot,
    create_user,
)


@pytest.fixture(scope="session")
def _engine():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        future=True,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    # pysqlite's own transaction handling breaks SAVEPOINT; let SQLAlchemy emit BEGIN
    @event.listens_for(engine, "connect")
    def _disable_pysqlite_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")

    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture(scope="function")
def db(_engine) -> Session:
    """
    Provide a transactional session bound to the shared in-memory engine.

    Service code may commit or roll back freely; nothing outlives the test.
    """
    connection = _engine.connect()
    transaction = connection.begin()
    TestingSessionLocal = sessionmaker(
        bind=connection,
        expire_on_commit=False,
        join_transaction_mode="create_savepoint",
    )
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        transaction.rollback()
        connection.close()


@pytest.fixture
def provider(db):
    return create_user(db, role="PROVIDER", name="Ada Provider")


@pytest.fixture
def student(db):
    return create_user(db, role="STUDENT", name="Sam Student")


@pytest.fixture
def service(db, provider):
    return create_service(db, provider, price="1000.00")


@pytest.fixture
def slot(db, provider, service):
    return create_slot(db, provider, service)


@pytest.fixture
def completed_booking(db, student, service):
    return create_booking(db, student, service, status="COMPLETED")
