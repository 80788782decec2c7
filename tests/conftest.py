"""
Pytest configuration and fixtures for CivicFeed tests.
"""
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from unittest.mock import MagicMock

from civicfeed.database import Base, get_db
from civicfeed.main import app
from civicfeed.models import User, Video
from civicfeed.auth import create_access_token
from civicfeed.worker.blob_store import LocalBlobStore
from civicfeed.worker.encoding_queue import EncodingJobQueue
from civicfeed.worker.encoding_worker import EncodingWorker, EncodingWorkerConfig
from civicfeed.worker.moderation import ModerationResult
from civicfeed.worker.transcoder import EncodeOutput, Tier, TIER_PRESETS, encoded_prefix
from civicfeed.worker.video_store import SqlVideoStore

# Use in-memory SQLite for tests with shared connection
SQLALCHEMY_DATABASE_URL = "sqlite:///:memory:"

engine = create_engine(
    SQLALCHEMY_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Global session for sharing across requests
_test_session = None


def get_test_db():
    """Get the shared test database session."""
    yield _test_session


@pytest.fixture(scope="function")
def db():
    """Create a fresh database for each test."""
    global _test_session

    Base.metadata.create_all(bind=engine)
    _test_session = TestingSessionLocal()
    app.dependency_overrides[get_db] = get_test_db

    yield _test_session

    app.dependency_overrides.clear()
    _test_session.close()
    _test_session = None
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def video_store(db):
    """Durable video store over the test database."""
    return SqlVideoStore(TestingSessionLocal)


@pytest.fixture(scope="function")
def blob_store(tmp_path):
    store = LocalBlobStore(tmp_path / "blobs", "/media")
    store.put_text("raw/upload.mp4", "not really a video")
    return store


def _fake_encode(video_id, input_location, tier):
    """Transcoder stand-in that reports the locations ffmpeg would write"""
    preset = TIER_PRESETS[tier][-1]
    prefix = f"{encoded_prefix(video_id)}/{preset.name}"
    return EncodeOutput(
        tier=tier,
        output_location=f"{prefix}/video.mp4",
        manifest_location=f"{prefix}/playlist.m3u8",
        preset=preset,
    )


@pytest.fixture(scope="function")
def transcoder():
    """Mock transcoder: available, every encode succeeds."""
    mock = MagicMock()
    mock.is_available.return_value = True
    mock.encode.side_effect = _fake_encode
    mock.existing_output.side_effect = lambda video_id, tier: _fake_encode(video_id, "", tier)
    mock.write_master_manifest.side_effect = lambda video_id, variants: f"{encoded_prefix(video_id)}/manifest.m3u8"
    return mock


@pytest.fixture(scope="function")
def moderation():
    """Mock moderation: approves everything."""
    mock = MagicMock()
    mock.evaluate.return_value = ModerationResult(approved=True)
    return mock


@pytest.fixture(scope="function")
def queue():
    return EncodingJobQueue(max_concurrent=2, max_attempts=3, retry_backoff_base=0.0, retry_backoff_max=0.0)


@pytest.fixture(scope="function")
def worker(queue, video_store, transcoder, moderation, blob_store):
    """Worker that has not been started; process_next_job runs inline."""
    config = EncodingWorkerConfig(
        poll_interval=0.05,
        stats_interval=60,
        cleanup_interval=60,
        shutdown_timeout=5,
        mode="two_phase",
    )
    return EncodingWorker(queue, video_store, transcoder, moderation, blob_store, config=config)


@pytest.fixture(scope="function")
def make_video(db):
    """Insert a durable video record."""
    def _make(video_id="vid-1", raw_blob_name="raw/upload.mp4", **fields):
        video = Video(id=video_id, raw_blob_name=raw_blob_name, **fields)
        db.add(video)
        db.commit()
        return video
    return _make


@pytest.fixture(scope="function")
def client(db, worker):
    """Create a test client. The lifespan is skipped; the worker is injected."""
    app.state.encoding_worker = worker
    yield TestClient(app)
    app.state.encoding_worker = None


@pytest.fixture(scope="function")
def test_user(db):
    """Create a test user."""
    user = User(
        username="tester",
        display_name="Test User",
        is_active=True,
        reputation=60,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture(scope="function")
def auth_token(test_user):
    """Get an auth token for the test user."""
    return create_access_token({"sub": str(test_user.id)})


@pytest.fixture(scope="function")
def auth_headers(auth_token):
    """Get auth headers for the test user."""
    return {"Authorization": f"Bearer {auth_token}"}


@pytest.fixture(scope="function")
def fake_encode():
    """The transcoder stand-in, for tests that wrap or replay it."""
    return _fake_encode
