import os
import tempfile
from pathlib import Path
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, AsyncEngine, AsyncSession, async_sessionmaker

from main import app
from config import settings
from models.database import Base, get_db
from models.track import Track, AudioQuality
from engine.job_store import JobStore
from engine.job_queue import JobQueue
from engine.retry import RetryPolicy
from helpers import FakeEncoder
from services.transcode_service import TranscodeService, get_transcode_service

# --- Database Setup ---
# File-backed SQLite per test so every session gets its own connection
@pytest_asyncio.fixture(scope="function")
async def test_engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        connect_args={"timeout": 30, "check_same_thread": False},
    )
    yield engine
    await engine.dispose()

@pytest.fixture
def session_factory(test_engine) -> async_sessionmaker:
    return async_sessionmaker(expire_on_commit=False, bind=test_engine)

@pytest_asyncio.fixture(scope="function", autouse=True)
async def init_db(test_engine):
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

@pytest_asyncio.fixture(scope="function")
async def db_session(init_db, session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session

# --- Dependency Override ---
@pytest.fixture(scope="function", autouse=True)
def override_get_db(session_factory):
    async def _get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = _get_db
    yield
    app.dependency_overrides.pop(get_db, None)

# --- File System ---
@pytest.fixture(scope="function", autouse=True)
def temp_dirs():
    # Keep uploads and encoder output out of the project tree
    original = (settings.upload_dir, settings.output_dir)
    with tempfile.TemporaryDirectory() as temp_dir:
        settings.upload_dir = Path(temp_dir) / "uploads"
        settings.output_dir = Path(temp_dir) / "transcoded"
        os.makedirs(settings.upload_dir)
        os.makedirs(settings.output_dir)
        yield Path(temp_dir)
    settings.upload_dir, settings.output_dir = original

# --- Engine Setup ---
@pytest.fixture
def store(session_factory) -> JobStore:
    return JobStore(session_factory=session_factory)

@pytest.fixture
def retry_policy() -> RetryPolicy:
    return RetryPolicy(max_attempts=3, backoff_base_seconds=0.01)

@pytest_asyncio.fixture
async def queue(store, retry_policy) -> AsyncGenerator[JobQueue, None]:
    q = JobQueue(store=store, concurrency=2, retry_policy=retry_policy, max_size=10)
    yield q
    await q.stop_workers(wait_for_current=False)

@pytest.fixture
def service(store, queue) -> TranscodeService:
    svc = TranscodeService(store, queue)
    app.dependency_overrides[get_transcode_service] = lambda: svc
    yield svc
    app.dependency_overrides.pop(get_transcode_service, None)

# --- Client Setup ---
@pytest_asyncio.fixture(scope="function")
async def client(service) -> AsyncGenerator[AsyncClient, None]:
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c

# --- Helpers ---
@pytest_asyncio.fixture
async def make_track(db_session, temp_dirs):
    """Factory creating a track row backed by a real (dummy) file."""
    async def _make(title: str = "Test Track", user_id: str = "user-1", create_file: bool = True) -> Track:
        source = temp_dirs / "uploads" / f"{title.replace(' ', '_')}.wav"
        if create_file:
            source.write_bytes(b"RIFF fake audio")
        track = Track(
            title=title,
            artist="Test Artist",
            duration=10.0,
            file_path=str(source),
            quality=AudioQuality.HIGH,
            size=15,
            mime_type="audio/wav",
            user_id=user_id,
        )
        db_session.add(track)
        await db_session.commit()
        await db_session.refresh(track)
        return track
    return _make


@pytest.fixture
def fake_encoder() -> FakeEncoder:
    return FakeEncoder()
