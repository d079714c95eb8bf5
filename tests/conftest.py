"""
Pytest configuration and fixtures for Script Render Backend tests.
"""

import os
import shutil
import tempfile
from datetime import datetime, timezone
from pathlib import Path

import fakeredis
import pytest
from fastapi.testclient import TestClient

# Set test environment variables before importing the app
_ENV_ROOT = Path(tempfile.mkdtemp(prefix="script_render_test_"))
os.environ["REDIS_URL"] = "redis://127.0.0.1:1/0"
os.environ["ARTIFACT_DIR"] = str(_ENV_ROOT / "pdfs")
os.environ["UPLOADS_DIR"] = str(_ENV_ROOT / "uploads")
os.environ["CATALOG_DB_PATH"] = str(_ENV_ROOT / "catalog.db")

from script_render_backend.bootstrap import build_services
from script_render_backend.configuration import make_runtime_config
from script_render_backend.database import CatalogDatabase
from script_render_backend.job_queue import JobQueueClient
from script_render_backend.main import create_app
from script_render_backend.models import Client, Owner, Project, ScriptType
from script_render_backend.storage import LocalArtifactStore

SAMPLE_SCRIPT = (
    "[0s - 5s]:\n"
    "Narration: Opening shot of the city at dawn.\n"
    "Scene: Wide aerial view over the river.\n"
    "\n"
    "[5s - 20s]:\n"
    "Narration: Meet the people behind the bakery.\n"
    "\n"
    "[20s - 30s]:\n"
    "Narration: Fresh bread every morning. Visit us today.\n"
)

FIXED_TIME = datetime(2024, 5, 12, 9, 30, tzinfo=timezone.utc)


class RecordingChannel:
    """Notification channel that keeps every published notification."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.published = []

    def publish(self, user_id, notification):
        if self.fail:
            raise RuntimeError("session gateway offline")
        self.published.append((user_id, notification))


@pytest.fixture(scope="session", autouse=True)
def env_root():
    """Remove the directories created for the environment-configured app."""
    yield _ENV_ROOT
    shutil.rmtree(_ENV_ROOT, ignore_errors=True)


@pytest.fixture
def config(tmp_path):
    return make_runtime_config(
        {
            "worker": {"backoff_base_seconds": 0.0, "poll_interval_seconds": 0.05},
            "degraded": {"timeout_seconds": 30.0},
            "render": {"uploads_dir": str(tmp_path / "uploads")},
            "storage": {"local_dir": str(tmp_path / "pdfs")},
            "catalog": {"db_path": str(tmp_path / "catalog.db")},
        }
    )


@pytest.fixture
def redis_server():
    return fakeredis.FakeServer()


@pytest.fixture
def redis_client(redis_server):
    return fakeredis.FakeRedis(server=redis_server, decode_responses=True)


@pytest.fixture
def queue(redis_client):
    return JobQueueClient(client=redis_client)


@pytest.fixture
def down_queue():
    """Queue client pointed at a port nothing listens on."""
    client = JobQueueClient(url="redis://127.0.0.1:1/0", probe_timeout=1.0)
    yield client
    client.close()


@pytest.fixture
def catalog(tmp_path):
    return CatalogDatabase(tmp_path / "catalog.db")


@pytest.fixture
def seeded(catalog):
    """Owner, client, project and one script version."""
    owner = Owner(id="owner-1", name="Nimbus Studio", email="studio@example.com")
    client = catalog.save_client(Client(id="client-1", name="Corner Bakery"))
    project = catalog.save_project(
        Project(
            id="project-1",
            title="Spring Campaign",
            script_type=ScriptType.SOCIAL_MEDIA,
            client_id=client.id,
            owner=owner,
        )
    )
    version = catalog.add_version(project.id, SAMPLE_SCRIPT)
    return {"owner": owner, "client": client, "project": project, "version": version}


@pytest.fixture
def store(tmp_path):
    return LocalArtifactStore(tmp_path / "pdfs")


@pytest.fixture
def channel():
    return RecordingChannel()


@pytest.fixture
def services(config, queue, catalog, store, channel):
    built = build_services(config, queue=queue, catalog=catalog, store=store, notifier=channel)
    yield built
    built.worker.stop(wait=True)
    built.degraded.shutdown(wait=True)


@pytest.fixture
def degraded_services(config, down_queue, catalog, store, channel):
    built = build_services(config, queue=down_queue, catalog=catalog, store=store, notifier=channel)
    yield built
    built.degraded.shutdown(wait=True)


@pytest.fixture
def client(services):
    """Create a test client for the FastAPI app with a reachable broker."""
    return TestClient(create_app(services))


@pytest.fixture
def degraded_client(degraded_services):
    """Create a test client whose broker is unreachable."""
    return TestClient(create_app(degraded_services))


@pytest.fixture
def pdf_engine():
    """Skip the test when WeasyPrint or its native libraries are missing."""
    try:
        import weasyprint
    except (ImportError, OSError) as exc:
        pytest.skip(f"WeasyPrint is not available: {exc}")
    return weasyprint
