"""
Pytest configuration and fixtures for the backend tests.
"""
import os
import tempfile

# Settings are read at import time, so the environment must be ready first.
os.environ.setdefault("ACCESS_TOKEN_SECRET", "test-access-secret")
os.environ.setdefault("REFRESH_TOKEN_SECRET", "test-refresh-secret")
os.environ.setdefault("LOG_DIR", tempfile.mkdtemp(prefix="tube-accounts-logs-"))
os.environ.setdefault("LOG_LEVEL", "WARNING")

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional
from unittest.mock import AsyncMock

import pytest
from bson import ObjectId
from faker import Faker
from fastapi.testclient import TestClient
from passlib.context import CryptContext

from api.dependencies import get_user_store
from core.errors import AuthError, Outcome
from core.security import PasswordVerifier, TokenCodec, get_password_verifier, get_token_codec
from db.user_store import UserStore, normalize_identity
from main import app
from schemas.user_schema import UserInDB
from services.auth_service import AuthGate, SessionManager
from services.media_service import MediaUploader, get_media_uploader

fake = Faker()

TEST_PASSWORD = "correct-pw"


class InMemoryUserStore(UserStore):
    """UserStore double keeping documents in a dict.

    Reads yield to the event loop so concurrent callers interleave the way
    they would against a real database.
    """

    def __init__(self):
        self.docs: Dict[str, Dict[str, Any]] = {}

    async def find_by_identity(self, identity: str) -> Optional[UserInDB]:
        await asyncio.sleep(0)
        value = normalize_identity(identity)
        for doc in self.docs.values():
            if value and value in (doc["username"], doc["email"]):
                return UserInDB.from_document(doc)
        return None

    async def find_by_id(self, user_id: str) -> Optional[UserInDB]:
        await asyncio.sleep(0)
        doc = self.docs.get(user_id)
        return UserInDB.from_document(doc) if doc else None

    async def create(self, document: Dict[str, Any]) -> Outcome[UserInDB]:
        doc = dict(document)
        doc["username"] = normalize_identity(doc["username"])
        doc["email"] = normalize_identity(doc["email"])
        for existing in self.docs.values():
            if existing["username"] == doc["username"] or existing["email"] == doc["email"]:
                return Outcome.failure(AuthError.CONFLICT)
        doc["_id"] = ObjectId()
        doc.setdefault("refresh_token", None)
        doc.setdefault("created_at", datetime.now(timezone.utc))
        self.docs[str(doc["_id"])] = doc
        return Outcome.success(UserInDB.from_document(doc))

    async def set_refresh_token(self, user_id: str, token: Optional[str]) -> bool:
        doc = self.docs.get(user_id)
        if doc is None:
            return False
        doc["refresh_token"] = token
        return True

    async def swap_refresh_token(self, user_id: str, expected: str, new: str) -> bool:
        doc = self.docs.get(user_id)
        if doc is None or doc["refresh_token"] != expected:
            return False
        doc["refresh_token"] = new
        return True

    def stored_token(self, user_id: str) -> Optional[str]:
        return self.docs[user_id]["refresh_token"]


class FrozenClock:
    def __init__(self, now: Optional[datetime] = None):
        self.now = now or datetime.now(timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def passwords() -> PasswordVerifier:
    # Minimum bcrypt cost keeps the suite fast
    return PasswordVerifier(CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=4))


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def codec(clock: FrozenClock) -> TokenCodec:
    return TokenCodec(
        access_secret="unit-access-secret",
        refresh_secret="unit-refresh-secret",
        access_ttl=timedelta(minutes=15),
        refresh_ttl=timedelta(days=10),
        clock=clock,
    )


@pytest.fixture
def store() -> InMemoryUserStore:
    return InMemoryUserStore()


@pytest.fixture
def sessions(store, codec, passwords) -> SessionManager:
    return SessionManager(store, codec, passwords)


@pytest.fixture
def gate(store, codec) -> AuthGate:
    return AuthGate(store, codec)


@pytest.fixture
def sample_user_data():
    """Sample registration data."""
    return {
        "username": "Alice",
        "email": "alice@example.com",
        "full_name": fake.name(),
        "password": TEST_PASSWORD,
    }


@pytest.fixture
def alice(store: InMemoryUserStore, passwords: PasswordVerifier, sample_user_data) -> UserInDB:
    """A registered user with no active session."""
    doc = {
        "_id": ObjectId(),
        "username": normalize_identity(sample_user_data["username"]),
        "email": sample_user_data["email"],
        "full_name": sample_user_data["full_name"],
        "hashed_password": passwords.hash(sample_user_data["password"]),
        "avatar_url": "https://media.example.com/alice.png",
        "cover_image_url": "",
        "refresh_token": None,
        "created_at": datetime.now(timezone.utc),
    }
    store.docs[str(doc["_id"])] = doc
    return UserInDB.from_document(doc)


@pytest.fixture
def mock_uploader() -> MediaUploader:
    uploader = MediaUploader(cloud_name="demo", api_key="key", api_secret="secret")
    uploader.upload = AsyncMock(return_value="https://media.example.com/avatar.png")
    return uploader


@pytest.fixture
def client(store, passwords, mock_uploader):
    """Test client wired to the in-memory store and a stubbed media host."""
    app.dependency_overrides[get_user_store] = lambda: store
    app.dependency_overrides[get_password_verifier] = lambda: passwords
    app.dependency_overrides[get_media_uploader] = lambda: mock_uploader

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()


@pytest.fixture
def app_codec() -> TokenCodec:
    """The codec the running app signs with."""
    return get_token_codec()
