"""
Pytest configuration and fixtures for testing.
Provides test database, message store, gateway, test client and token fixtures.
"""
import os
import time
import pytest
from typing import Callable, Generator
from sqlalchemy import create_engine

# File-backed so the threadpool store calls and the request session see the same data
TEST_DATABASE_URL = "sqlite:///./test_ultimateapp.db"
os.environ.setdefault("DATABASE_URL", TEST_DATABASE_URL)

from sqlalchemy.orm import sessionmaker, Session
from fastapi.testclient import TestClient
from db.database import Base
from db.message_store import MessageStore
from db.models import User
from db.repository import Repository
from core.config import Settings
from core.security import hash_password, create_access_token, credential_verifier
from api.messaging_gateway import MessagingGateway
from api.websocket_manager import ConnectionRegistry
from main import app
from api.dependencies import get_db, get_message_store, get_gateway


test_engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False}
)
TestSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)


def _wait_until(predicate: Callable[[], bool], timeout: float = 2.0, interval: float = 0.01) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return bool(predicate())


@pytest.fixture(scope="function")
def test_db() -> Generator[Session, None, None]:
    """
    Create a fresh database for each test.
    Automatically creates and destroys tables.
    """
    Base.metadata.create_all(bind=test_engine)

    db = TestSessionLocal()

    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=test_engine)


@pytest.fixture(scope="function")
def test_store(test_db: Session) -> MessageStore:
    """Message store bound to the test database."""
    return MessageStore(TestSessionLocal)


@pytest.fixture(scope="function")
def test_registry() -> ConnectionRegistry:
    """Empty registry per test, so connections never leak between tests."""
    return ConnectionRegistry()


@pytest.fixture(scope="function")
def make_gateway(test_registry: ConnectionRegistry, test_store: MessageStore):
    """
    Factory for gateways over the test registry and store.

    Keyword arguments override settings, e.g. make_gateway(ws_require_auth=True).
    """
    def _make(**overrides) -> MessagingGateway:
        return MessagingGateway(test_registry, credential_verifier, test_store, Settings(**overrides))
    return _make


@pytest.fixture(scope="function")
def test_client(test_db: Session, test_store: MessageStore, make_gateway) -> TestClient:
    """
    Create a test client with database, store and gateway overrides.
    """
    def override_get_db():
        try:
            yield test_db
        finally:
            pass

    gateway = make_gateway()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_message_store] = lambda: test_store
    app.dependency_overrides[get_gateway] = lambda: gateway

    client = TestClient(app)
    yield client

    app.dependency_overrides.clear()


@pytest.fixture(scope="function")
def use_gateway():
    """Swap the gateway the /ws route uses for the rest of the test."""
    def _use(gateway: MessagingGateway) -> MessagingGateway:
        app.dependency_overrides[get_gateway] = lambda: gateway
        return gateway
    return _use


@pytest.fixture(scope="function")
def seed_test_users(test_db: Session) -> list[User]:
    """
    Seed test database with 3 test users (user1..user3, password123).
    Returns list of created users.
    """
    repository = Repository(test_db)
    users = []

    for i in range(1, 4):
        user = repository.create_user(
            username=f"user{i}",
            password_hash=hash_password("password123"),
            full_name=f"Test User {i}"
        )
        users.append(user)

    return users


@pytest.fixture
def token_for() -> Callable[[User], str]:
    """Issue an access token for a user without going through /login."""
    def _token(user: User) -> str:
        return create_access_token(user_id=user.id, username=user.username)["token"]
    return _token


@pytest.fixture
def auth_headers(token_for) -> Callable[[User], dict]:
    """Authorization header for a user."""
    def _headers(user: User) -> dict:
        return {"Authorization": f"Bearer {token_for(user)}"}
    return _headers


@pytest.fixture
def wait_until():
    """Poll a predicate until it holds; for state changed by the app's event loop thread."""
    return _wait_until
