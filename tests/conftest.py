"""
Shared test fixtures — SQLite database, test client, rule catalogs, fixed clock.
"""

import os
from datetime import datetime, timezone

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

# Configure before importing app modules
os.environ["DATABASE_URL"] = "sqlite:///./test.db"
os.environ["SEED_DEFAULT_RULES"] = "false"

from backend.database import Base, get_db
from backend.main import app
from backend.pricing.catalog import InMemoryRuleCatalog, default_rules, seed_default_rules
from backend.pricing.engine import RuleEngine
from backend.pricing.inference import InferenceEngine


TEST_DATABASE_URL = "sqlite:///./test.db"
engine = create_engine(TEST_DATABASE_URL, connect_args={"check_same_thread": False})
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

FIXED_NOW = datetime(2024, 3, 12, 9, 30, tzinfo=timezone.utc)


def override_get_db():
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


app.dependency_overrides[get_db] = override_get_db


@pytest.fixture(autouse=True)
def setup_database():
    """Create all tables before each test, drop after."""
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def client():
    """FastAPI test client."""
    return TestClient(app)


@pytest.fixture
def db():
    """Direct database session for test setup/assertions."""
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def seeded_db(db):
    """Database session with the default rule catalog."""
    seed_default_rules(db)
    return db


@pytest.fixture
def fixed_clock():
    return lambda: FIXED_NOW


@pytest.fixture
def rule_engine(fixed_clock):
    """RuleEngine with a fixed clock so results are byte-identical between runs."""
    return RuleEngine(inference=InferenceEngine(clock=fixed_clock))


@pytest.fixture
def default_catalog():
    return InMemoryRuleCatalog(default_rules())
