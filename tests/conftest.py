"""Shared test fixtures for all test modules."""

import contextlib
import uuid

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

import rolodex.models  # noqa: F401
from rolodex.core import cache as cache_module
from rolodex.core import database as db_module
from rolodex.core import storage as storage_module
from rolodex.core.cache import CacheService, MemoryCacheStore
from rolodex.core.database import Base, get_db
from rolodex.core.storage import LocalStorage
from rolodex.models.user import User
from rolodex.schemas.customer import CustomerCreate
from rolodex.services.customer_service import CustomerService

# Create an in-memory SQLite engine with StaticPool so all connections
# share the same database state and there are no file-locking issues.
_test_engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
_TestSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=_test_engine)

# Well-known users seeded for every test
USER_ID = uuid.UUID("00000000-0000-0000-0000-000000000001")
OTHER_USER_ID = uuid.UUID("00000000-0000-0000-0000-000000000002")


def _seed_users(session: Session) -> None:
    """Insert the two tenants used across the suite."""
    for user_id, first_name, email in (
        (USER_ID, "Ada", "ada@example.com"),
        (OTHER_USER_ID, "Grace", "grace@example.com"),
    ):
        if session.get(User, user_id) is None:
            session.add(User(id=user_id, first_name=first_name, last_name="Tester", email=email))
    session.commit()


@pytest.fixture(autouse=True)
def setup_database():
    """Create tables before each test and truncate all data after.

    Patches the module-level engine and SessionLocal so all application code
    uses the in-memory test database. Clears data after each test.
    """
    original_engine = db_module.engine
    original_session = db_module.SessionLocal
    db_module.engine = _test_engine
    db_module.SessionLocal = _TestSessionLocal

    Base.metadata.create_all(bind=_test_engine)

    session = _TestSessionLocal()
    try:
        _seed_users(session)
    finally:
        session.close()

    yield
    with _test_engine.connect() as conn:
        conn.execute(text("PRAGMA foreign_keys = OFF"))
        for table in reversed(Base.metadata.sorted_tables):
            with contextlib.suppress(OperationalError):
                conn.execute(table.delete())
        conn.execute(text("PRAGMA foreign_keys = ON"))
        conn.commit()

    db_module.engine = original_engine
    db_module.SessionLocal = original_session


@pytest.fixture(autouse=True)
def cache():
    """Process-wide in-memory cache, replaced for every test."""
    original = cache_module._cache
    service = CacheService(MemoryCacheStore())
    cache_module.set_cache(service)
    yield service
    cache_module.set_cache(original)


@pytest.fixture(autouse=True)
def storage(tmp_path):
    """Process-wide local storage rooted in a per-test directory."""
    original = storage_module._storage
    local = LocalStorage(tmp_path / "storage")
    storage_module.set_storage(local)
    yield local
    storage_module.set_storage(original)


@pytest.fixture
def db_session():
    """Create a database session for testing."""
    gen = get_db()
    db = next(gen)
    try:
        yield db
    finally:
        for _ in gen:
            pass


@pytest.fixture
def client():
    """Create test client."""
    from rolodex.main import app

    return TestClient(app)


@pytest.fixture
def user_id():
    return USER_ID


@pytest.fixture
def auth_headers():
    return {"X-User-Id": str(USER_ID)}


@pytest.fixture
def other_auth_headers():
    return {"X-User-Id": str(OTHER_USER_ID)}


def make_customer(db, user_id=USER_ID, **fields):
    """Create a customer through the service so its audit activity is recorded."""
    data = {
        "first_name": "Ann",
        "last_name": "Lee",
        "email": f"{uuid.uuid4().hex[:10]}@example.com",
        **fields,
    }
    return CustomerService(db).create_customer(user_id, CustomerCreate(**data))
