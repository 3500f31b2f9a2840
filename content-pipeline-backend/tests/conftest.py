# content-pipeline-backend/tests/conftest.py

import os
import sys
import shutil
import tempfile

import pytest

# Add the parent directory to the Python path so we can import from it
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

# Config is read at import time, so point it at throwaway locations first
TEST_MEDIA_DIR = tempfile.mkdtemp(prefix="content-pipeline-tests-")
os.environ["MEDIA_DIR"] = TEST_MEDIA_DIR
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["MAX_UPLOAD_BYTES"] = "4096"
os.environ["UPLOAD_CHUNK_SIZE"] = "512"
os.environ["WEBHOOK_URL"] = ""

from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import tasks
from database import Base, get_db
from main import app
from models import ContentItem, Derivative
from routers import content
from status import ContentStatus
from tracker import StatusTracker
from services import derivatives_dir_for
from config import UPLOAD_DIR


def pytest_sessionfinish(session, exitstatus):
    shutil.rmtree(TEST_MEDIA_DIR, ignore_errors=True)


@pytest.fixture
def db_engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(db_engine, monkeypatch):
    factory = sessionmaker(autocommit=False, autoflush=False, bind=db_engine)
    monkeypatch.setattr(tasks, "SessionLocal", factory)
    return factory


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def client(session_factory):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


class FakeTask:
    """Stands in for a Celery task and records what was queued."""

    def __init__(self, fail=False):
        self.calls = []
        self.fail = fail

    def delay(self, *args):
        if self.fail:
            raise ConnectionError("broker unavailable")
        self.calls.append(args)


@pytest.fixture
def queue(monkeypatch):
    fakes = {"process": FakeTask(), "fetch": FakeTask()}
    monkeypatch.setattr(content, "process_content_task", fakes["process"])
    monkeypatch.setattr(content, "fetch_remote_content_task", fakes["fetch"])
    monkeypatch.setattr(tasks, "process_content_task", fakes["process"])
    return fakes


class FakeProcessor:
    """MediaProcessor double that writes a small optimized file instead of calling ffmpeg."""

    probe_error = None
    optimize_error = None

    def __init__(self, path, kind):
        self.path = path
        self.kind = kind

    def probe(self):
        if self.probe_error:
            raise self.probe_error
        return {"format": "mov,mp4,m4a", "duration": 4.0, "codec": "h264", "width": 640, "height": 360, "bit_rate": 800000, "has_audio": True}

    def optimize(self, output_dir):
        if self.optimize_error:
            raise self.optimize_error
        os.makedirs(output_dir, exist_ok=True)
        path = os.path.join(output_dir, "optimized.mp4")
        with open(path, "wb") as f:
            f.write(b"optimized-bytes")
        return path, "video/mp4"


class FakeGenerator:
    def __init__(self, source_path, kind, output_dir, media_info=None):
        self.output_dir = output_dir

    def run(self):
        path = os.path.join(self.output_dir, "thumbnail.jpg")
        with open(path, "wb") as f:
            f.write(b"jpeg")
        return [("thumbnail", path, "image/jpeg")]


@pytest.fixture
def fake_media(monkeypatch):
    FakeProcessor.probe_error = None
    FakeProcessor.optimize_error = None
    monkeypatch.setattr(tasks, "MediaProcessor", FakeProcessor)
    monkeypatch.setattr(tasks, "DerivativeGenerator", FakeGenerator)
    return FakeProcessor


# Transitions taken from a fresh item to reach each status
PATHS = {
    ContentStatus.UPLOADING: [],
    ContentStatus.UPLOADED: [ContentStatus.UPLOADED],
    ContentStatus.PROCESSING: [ContentStatus.UPLOADED, ContentStatus.PROCESSING],
    ContentStatus.COMPLETED: [ContentStatus.UPLOADED, ContentStatus.PROCESSING, ContentStatus.COMPLETED],
    ContentStatus.FAILED: [ContentStatus.UPLOADED, ContentStatus.PROCESSING, ContentStatus.FAILED],
}


def create_item(db, status=ContentStatus.UPLOADED, with_file=True, filename="clip.mp4", kind="video"):
    """Creates a content item and walks it through the tracker to `status`."""
    item = ContentItem(filename=filename, kind=kind, content_type="video/mp4")
    tracker = StatusTracker(db)
    tracker.start(item)
    db.commit()

    if with_file:
        item.storage_path = os.path.join(UPLOAD_DIR, f"{item.id}_{filename}")
        with open(item.storage_path, "wb") as f:
            f.write(b"original-bytes")
        item.size_bytes = len(b"original-bytes")

    for target in PATHS[status]:
        tracker.transition(item, target, error="boom" if target == ContentStatus.FAILED else None)

    if status == ContentStatus.COMPLETED:
        output_dir = derivatives_dir_for(item.id)
        os.makedirs(output_dir, exist_ok=True)
        path = os.path.join(output_dir, "thumbnail.jpg")
        with open(path, "wb") as f:
            f.write(b"thumbnail-bytes")
        item.derivatives.append(Derivative(kind="thumbnail", path=path, mime_type="image/jpeg", size_bytes=15))

    db.commit()
    return item


@pytest.fixture
def make_item(db):
    def _make(status=ContentStatus.UPLOADED, **kwargs):
        return create_item(db, status, **kwargs)
    return _make
