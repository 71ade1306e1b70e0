import pytest
import os
import time
import uuid
import json
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# Set env before importing app components
os.environ["APP_ENV"] = "testing"
os.environ["DATABASE_URL"] = "sqlite:///:memory:"
os.environ["RATE_LIMIT_ENABLED"] = "false"

from app.core.config import IngestionSettings
from app.core.security import create_access_token
from app.database import Base
from app.main import app
from app.models.kv_entry import KVEntry  # noqa: F401
from app.routers.resume import get_session_registry
from app.services.rasterizer import RasterizedImage
from app.services.review_session import ReviewSession, SessionRegistry
from app.stores.blob_store import BlobStore, LocalBlobStore
from app.stores.kv_store import KeyValueStore, SqlKeyValueStore
from fastapi.testclient import TestClient

# SQLite in-memory database configuration
SQLALCHEMY_DATABASE_URL = "sqlite:///:memory:"

engine = create_engine(
    SQLALCHEMY_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

PDF_BYTES = b"%PDF-1.4\n1 0 obj << /Type /Catalog >> endobj\ntrailer << /Root 1 0 R >>\n%%EOF"
PNG_BYTES = b"\x89PNG\r\n\x1a\nfake-preview"

FEEDBACK = {
    "overallScore": 82,
    "ATS": {"score": 75, "tips": [{"type": "improve", "tip": "Add more keywords"}]},
    "tips": ["Quantify impact"],
}


# --- in-memory collaborators ---

class MemoryBlobStore(BlobStore):
    def __init__(self):
        self.blobs = {}
        self.uploads = []
        self.deleted = []
        self.fail_upload_at = None  # 1-based upload call that raises
        self.upload_delay = 0.0
        self.delay_upload_at = None  # 1-based upload call that sleeps; None delays every call
        self.read_failures = set()
        self.delete_failures = set()

    def upload(self, data, filename, content_type="application/octet-stream"):
        self.uploads.append(filename)
        if self.fail_upload_at == len(self.uploads):
            raise RuntimeError("blob service unavailable")
        if self.upload_delay and self.delay_upload_at in (None, len(self.uploads)):
            time.sleep(self.upload_delay)
        path = f"blobs/{uuid.uuid4().hex}-{filename}"
        self.blobs[path] = data
        return path

    def read(self, path):
        if path in self.read_failures:
            raise RuntimeError("read failed")
        return self.blobs.get(path)

    def delete(self, path):
        if path in self.delete_failures:
            raise RuntimeError("delete failed")
        self.deleted.append(path)
        self.blobs.pop(path, None)


class MemoryKeyValueStore(KeyValueStore):
    def __init__(self):
        self.data = {}
        self.writes = []
        self.fail_set_at = None  # 1-based set call that raises
        self.extra_listed = []
        self.get_failures = set()
        self.fail_list = False

    def get(self, key):
        if key in self.get_failures:
            raise RuntimeError("get failed")
        return self.data.get(key)

    def set(self, key, value):
        self.writes.append((key, value))
        if self.fail_set_at == len(self.writes):
            raise RuntimeError("kv write rejected")
        self.data[key] = value

    def list(self, prefix):
        if self.fail_list:
            raise RuntimeError("list failed")
        stem = prefix.rstrip("*")
        keys = [key for key in self.data if key.startswith(stem)]
        return keys + list(self.extra_listed)

    def delete(self, key):
        self.data.pop(key, None)


class FakeAnalysisClient:
    def __init__(self, response=None, error=None, delay=0.0):
        self.response = response if response is not None else {"message": {"content": json.dumps(FEEDBACK)}}
        self.error = error
        self.delay = delay
        self.calls = []

    def analyze(self, document_path, instructions):
        self.calls.append((document_path, instructions))
        if self.delay:
            time.sleep(self.delay)
        if self.error:
            raise self.error
        return self.response


def fake_rasterizer(data, filename):
    return RasterizedImage(data=PNG_BYTES, filename="preview.png")


def record_payload(record_id, feedback="", image_path=None, **fields):
    payload = {
        "id": record_id,
        "resumePath": fields.get("resume_path"),
        "imagePath": image_path,
        "companyName": fields.get("company_name", "Acme"),
        "jobTitle": fields.get("job_title", "Engineer"),
        "jobDescription": fields.get("job_description", "Build things"),
        "feedback": feedback,
        "createdAt": fields.get("created_at", 1700000000000),
    }
    return json.dumps(payload)


@pytest.fixture
def blob_store():
    return MemoryBlobStore()


@pytest.fixture
def kv_store():
    return MemoryKeyValueStore()


@pytest.fixture
def ingestion_settings():
    return IngestionSettings(upload_timeout_seconds=2, analysis_timeout_seconds=2)


# --- database / HTTP fixtures ---

@pytest.fixture(scope="session", autouse=True)
def setup_database():
    """Create tables once for the whole test session."""
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def db_session_factory():
    """Session factory bound to the shared in-memory engine, emptied after each test."""
    yield TestingSessionLocal
    with TestingSessionLocal() as db:
        db.query(KVEntry).delete()
        db.commit()


@pytest.fixture(scope="function")
def analysis_client():
    return FakeAnalysisClient()


@pytest.fixture(scope="function")
def session_registry(tmp_path, db_session_factory, analysis_client):
    def _factory(owner):
        return ReviewSession(
            owner,
            LocalBlobStore(str(tmp_path / "blobs"), owner),
            SqlKeyValueStore(db_session_factory, owner),
            analysis_client,
            fake_rasterizer,
            IngestionSettings(upload_timeout_seconds=5, analysis_timeout_seconds=5),
        )
    registry = SessionRegistry(_factory)
    yield registry
    registry.close_all()


@pytest.fixture(scope="function")
def client(session_registry):
    """Get a TestClient whose review sessions use the test stores."""
    app.dependency_overrides[get_session_registry] = lambda: session_registry
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture(scope="function")
def get_token():
    """Helper fixture to create access tokens for a subject."""
    def _get_token(subject="user-123"):
        return create_access_token(data={"sub": subject, "type": "access"})
    return _get_token


@pytest.fixture(scope="function")
def auth_headers(get_token):
    return {"Authorization": f"Bearer {get_token()}"}
