"""
Test configuration and shared fixtures for the object manager test suite.
Provides database setup, managers, finders and sample data.
"""

import pytest
from typing import List
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from object_manager.core.database import Base
from object_manager.manager import ObjectManager
from tests.models import Company, Membership, Order, User, UserFinder


# ===== DATABASE SETUP =====

@pytest.fixture(scope="session")
def engine():
    """Create in-memory SQLite engine"""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    return engine


@pytest.fixture(scope="function")
def db_session(engine):
    """Create a database session, emptying every table afterwards"""
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()
        Base.metadata.drop_all(bind=engine)
        Base.metadata.create_all(bind=engine)


@pytest.fixture
def manager(db_session) -> ObjectManager:
    """Object manager over the test session"""
    return ObjectManager(db_session)


@pytest.fixture
def user_finder(db_session) -> UserFinder:
    """User finder aliased as 'u'"""
    return UserFinder(db_session, User, "u")


# ===== SAMPLE DATA FIXTURES =====

@pytest.fixture
def sample_companies(db_session) -> List[Company]:
    """Create sample companies for testing"""
    companies = [Company(name="Acme"), Company(name="Globex")]
    db_session.add_all(companies)
    db_session.commit()
    return companies


@pytest.fixture
def sample_users(db_session, sample_companies) -> List[User]:
    """Create sample users for testing"""
    acme, globex = sample_companies
    users = [
        User(email="alice@acme.test", full_name="Alice", status="active", age=31, company=acme),
        User(email="bob@acme.test", full_name="Bob", status="active", age=45, company=acme),
        User(email="carol@globex.test", full_name="Carol", status="inactive", age=28, company=globex),
        User(email="dave@globex.test", full_name="Dave", status="active", age=52, company=globex),
        User(email="erin@example.test", full_name="Erin", status="banned", age=19, company=None),
    ]
    db_session.add_all(users)
    db_session.commit()
    return users


@pytest.fixture
def sample_orders(db_session, sample_users) -> List[Order]:
    """Create sample orders: three for Alice, one for Carol"""
    alice, _, carol = sample_users[:3]
    orders = [
        Order(reference="A-1", amount=100, user=alice),
        Order(reference="A-2", amount=250, user=alice),
        Order(reference="A-3", amount=40, user=alice),
        Order(reference="C-1", amount=75, user=carol),
    ]
    db_session.add_all(orders)
    db_session.commit()
    return orders


@pytest.fixture
def sample_memberships(db_session) -> List[Membership]:
    """Create sample memberships with composite identifiers"""
    memberships = [
        Membership(user_id=1, group_code="admins", role="owner"),
        Membership(user_id=1, group_code="staff"),
        Membership(user_id=2, group_code="staff"),
    ]
    db_session.add_all(memberships)
    db_session.commit()
    return memberships


@pytest.fixture
def bulk_users(db_session) -> int:
    """Create 250 users for paging tests, returns the row count"""
    db_session.add_all(
        User(email=f"user{index:03d}@bulk.test", status="active", age=20 + index % 50) for index in range(250)
    )
    db_session.commit()
    db_session.expunge_all()
    return 250
