"""
Shared fixtures for the chat test-suite.

Provides fixtures for:
- A throwaway SQLite database, rebuilt for every test
- A private change feed, relay and query client per test
- Seeded profiles with follow relations and chats between them
"""

import os
import tempfile
import uuid

import pytest

_TEST_ROOT = tempfile.mkdtemp(prefix="devconnect-tests-")
DB_PATH = os.path.join(_TEST_ROOT, "test.db")

# Must be set before devconnect.config is imported
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{DB_PATH}"
os.environ["UPLOAD_DIR"] = os.path.join(_TEST_ROOT, "uploads")
os.environ["BASE_URL"] = "http://testserver"

from sqlalchemy import create_engine  # noqa: E402

from devconnect import models  # noqa: E402,F401
from devconnect.database import AsyncSessionLocal, Base  # noqa: E402
from devconnect.models.user import Follow, Profile  # noqa: E402
from devconnect.schemas.message import SenderInfo  # noqa: E402
from devconnect.services.backend import LocalBackend  # noqa: E402
from devconnect.services.realtime import RealtimeHub  # noqa: E402
from devconnect.services.storage_service import StorageService  # noqa: E402
from devconnect.services.websocket_manager import WebSocketManager  # noqa: E402

sync_engine = create_engine(f"sqlite:///{DB_PATH}")


# =============================================================================
# Database Fixtures
# =============================================================================


@pytest.fixture(autouse=True)
def reset_database():
    """Start every test from empty tables."""
    Base.metadata.drop_all(sync_engine)
    Base.metadata.create_all(sync_engine)
    yield


@pytest.fixture
def anyio_backend():
    return "asyncio"


# =============================================================================
# Service Fixtures
# =============================================================================


@pytest.fixture
def hub() -> RealtimeHub:
    """A change feed no other test publishes to."""
    return RealtimeHub()


@pytest.fixture
def storage(tmp_path) -> StorageService:
    return StorageService(upload_dir=str(tmp_path / "uploads"), base_url="http://testserver")


@pytest.fixture
def backend(hub, storage) -> LocalBackend:
    return LocalBackend(hub=hub, storage=storage)


@pytest.fixture
def relay() -> WebSocketManager:
    """Relay checking room membership against the test database."""
    return WebSocketManager()


# =============================================================================
# Profile Fixtures
# =============================================================================


async def create_profile(username: str, full_name: str = None) -> SenderInfo:
    async with AsyncSessionLocal() as db:
        profile = Profile(
            id=str(uuid.uuid4()),
            username=username,
            email=f"{username}@example.com",
            full_name=full_name,
            password_hash="not-a-real-hash",
        )
        db.add(profile)
        await db.commit()
        return SenderInfo.model_validate(profile)


async def create_follow(follower: SenderInfo, following: SenderInfo):
    async with AsyncSessionLocal() as db:
        db.add(Follow(follower_id=follower.id, following_id=following.id))
        await db.commit()


@pytest.fixture
async def alice(anyio_backend) -> SenderInfo:
    return await create_profile("alice", "Alice Liddell")


@pytest.fixture
async def bob(anyio_backend) -> SenderInfo:
    return await create_profile("bob", "Bob Builder")


@pytest.fixture
async def carol(anyio_backend) -> SenderInfo:
    """A user nobody follows."""
    return await create_profile("carol")


@pytest.fixture
async def alice_follows_bob(alice, bob):
    await create_follow(alice, bob)


@pytest.fixture
async def direct_chat(backend, alice, bob, alice_follows_bob):
    """Direct chat between alice and bob, created by alice."""
    return await backend.create_direct_chat(alice.id, bob.id)


@pytest.fixture
async def group_chat(backend, alice, bob, carol):
    """Group of alice (creator), bob and carol."""
    return await backend.create_group_chat(alice.id, "Core Team", [bob.id, carol.id])
