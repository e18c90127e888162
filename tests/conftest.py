"""Shared fixtures: temporary blob store, scripted provider, recorded sleep."""

import pytest

from helpers import FakeProvider, FakeSleep
from researchoo.analysis.pipeline import AnalysisPipeline
from researchoo.project.session import ProjectSession
from researchoo.storage.blob_store import BlobStore


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "test.db"


@pytest.fixture
def store(db_path):
    """Per-test BlobStore with its table created."""
    s = BlobStore(db_path)
    s.init_db()
    yield s
    s.close()


@pytest.fixture
def fake_sleep():
    return FakeSleep()


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def transcript_file(tmp_path):
    path = tmp_path / "interview.txt"
    path.write_text("Interviewer: Why?\nParticipant: Because.\n")
    return path


@pytest.fixture
def session(store, provider, fake_sleep):
    """ProjectSession whose pipelines run against the scripted provider."""
    return ProjectSession(
        store,
        pipeline_factory=lambda: AnalysisPipeline(provider=provider, sleep=fake_sleep),
    )
