"""Shared fixtures: a throwaway SQLite metadata store and an API client.

Settings are read at import time, so the environment is prepared before any
``indexer`` module is imported.
"""

import os
import tempfile

_TMP_DIR = tempfile.mkdtemp(prefix="indexer-tests-")

os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_TMP_DIR, 'metadata.db')}"
os.environ["ENCRYPTION_KEY"] = "0123456789abcdef0123456789abcdef"
os.environ["WEBHOOK_AUTH_HEADER"] = "test-webhook-secret"
os.environ["JWT_SECRET"] = "test-jwt-secret"
os.environ["WEBHOOK_BASE_URL"] = "https://indexer.example.com"
os.environ["REDIS_URL"] = "redis://127.0.0.1:1/0"

from types import SimpleNamespace  # noqa: E402

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402

import indexer.models  # noqa: E402,F401
from indexer.api.deps import get_dispatch_queue, get_provisioner  # noqa: E402
from indexer.connectors.postgres import PostgresConnector  # noqa: E402
from indexer.core.security import create_access_token  # noqa: E402
from indexer.db.base import Base  # noqa: E402
from indexer.db.session import SessionLocal, engine, get_db  # noqa: E402
from indexer.main import app  # noqa: E402
from indexer.services.connection_service import ConnectionService  # noqa: E402


WEBHOOK_SECRET = "test-webhook-secret"


class RecordingDispatch:
    """Stands in for the dispatch queue and remembers what was enqueued."""

    def __init__(self):
        self.setup = []
        self.events = []
        self.fail_with = None

    def enqueue_setup(self, job_id):
        if self.fail_with is not None:
            raise self.fail_with
        self.setup.append(job_id)
        return f"setup-{job_id}"

    def enqueue_event(self, job_type, job_id, payload):
        self.events.append((job_type, job_id, payload))
        return f"event-{job_id}-{len(self.events)}"


class FakeProvisioner:
    """Provider-free provisioner; ``fail`` makes every call raise."""

    def __init__(self, webhook_id="wh-123", fail=None):
        self.webhook_id = webhook_id
        self.fail = fail
        self.created = []
        self.deleted = []

    def create_subscription(self, job):
        if self.fail is not None:
            raise self.fail
        self.created.append(job.id)
        return self.webhook_id

    def delete_subscription(self, webhook_id):
        if self.fail is not None:
            raise self.fail
        self.deleted.append(webhook_id)


class SqliteConnector(PostgresConnector):
    """Postgres connector whose tenant pool points at a local SQLite file."""

    def __init__(self, path):
        super().__init__()
        self.path = path

    def _create_engine(self, url, ssl):
        return create_engine(f"sqlite:///{self.path}")


@pytest.fixture(autouse=True)
def _reset_metadata():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def dispatch():
    return RecordingDispatch()


@pytest.fixture
def provisioner():
    return FakeProvisioner()


@pytest.fixture
def tenant_path(tmp_path):
    return str(tmp_path / "tenant.db")


@pytest.fixture
def tenant_factory(tenant_path):
    """Connector factory handing processors a SQLite-backed tenant database."""
    return lambda connector_type="postgres": SqliteConnector(tenant_path)


@pytest.fixture
def tenant_engine(tenant_path):
    eng = create_engine(f"sqlite:///{tenant_path}")
    yield eng
    eng.dispose()


@pytest.fixture
def connection_ok(monkeypatch):
    """Make every tenant liveness test pass; returns the configs it saw."""
    seen = []

    def fake_test(config):
        seen.append(dict(config))
        return True

    monkeypatch.setattr(ConnectionService, "test_connection", staticmethod(fake_test))
    return seen


@pytest.fixture
def client(dispatch, provisioner):
    def override_get_db():
        session = SessionLocal()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_dispatch_queue] = lambda: dispatch
    app.dependency_overrides[get_provisioner] = lambda: provisioner
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


def auth_headers(owner_id: int = 1) -> dict:
    return {"Authorization": f"Bearer {create_access_token({'sub': str(owner_id)})}"}


@pytest.fixture
def owner_headers():
    return auth_headers(1)


@pytest.fixture
def other_headers():
    return auth_headers(2)


CONNECTION_BODY = {
    "name": "analytics",
    "host": "db.tenant.example",
    "port": 5432,
    "username": "indexer",
    "password": "p@ss:w0rd/with#chars",
    "database_name": "chain",
    "ssl": True,
}


@pytest.fixture
def make_connection(client, owner_headers, connection_ok):
    def _make(headers=None, **overrides):
        body = {**CONNECTION_BODY, **overrides}
        resp = client.post("/api/db-connections/", json=body, headers=headers or owner_headers)
        assert resp.status_code == 201, resp.text
        return resp.json()
    return _make


@pytest.fixture
def make_job(client, owner_headers, make_connection):
    def _make(job_type="nft_bids", configuration=None, target_table="events", headers=None):
        connection = make_connection(headers=headers)
        body = {
            "db_connection_id": connection["id"],
            "job_type": job_type,
            "configuration": configuration or {},
            "target_table": target_table,
        }
        resp = client.post("/api/indexing-jobs/", json=body, headers=headers or owner_headers)
        assert resp.status_code == 201, resp.text
        return resp.json()
    return _make


def job_stub(**kwargs):
    defaults = {"id": 1, "configuration": {}, "target_table": "events"}
    defaults.update(kwargs)
    return SimpleNamespace(**defaults)
