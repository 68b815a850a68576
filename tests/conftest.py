"""Common test fixtures for mnote."""

import logging

import pytest

from mnote.config import config
from mnote.config_store import ConfigStore
from mnote.observability import metrics
from mnote.services.lock_manager import LockManager
from mnote.services.sync_service import SyncOrchestrator
from mnote.storage.note_store import NoteStore
from mnote.storage.search_index import SearchIndex
from tests.fakes import FakeVersionControlClient


@pytest.fixture
def notes_root(tmp_path):
    """An empty notes root."""
    root = tmp_path / "notes"
    root.mkdir()
    return root


@pytest.fixture
def test_config(notes_root, tmp_path, monkeypatch):
    """Point the global config at a temporary root (auto-restored)."""
    monkeypatch.setattr(config, "root", notes_root)
    monkeypatch.setattr(config, "location_source", "standard location")
    monkeypatch.setattr(config, "log_dir", tmp_path / "logs")
    monkeypatch.setattr(config, "log_level", "WARNING")
    monkeypatch.setattr(config, "sync_lock_timeout", 1.0)
    monkeypatch.delenv("EDITOR", raising=False)
    yield config


@pytest.fixture
def search_index(notes_root):
    index = SearchIndex(notes_root)
    yield index
    index.close()


@pytest.fixture
def note_store(notes_root, search_index):
    """A note store with its own index under the temporary root."""
    return NoteStore(notes_root, index=search_index)


@pytest.fixture
def config_store(notes_root):
    return ConfigStore(notes_root / "config.json")


@pytest.fixture
def lock_manager(notes_root):
    return LockManager(notes_root, poll_interval=0.05)


@pytest.fixture
def fake_git():
    return FakeVersionControlClient()


@pytest.fixture
def orchestrator(notes_root, fake_git, config_store, lock_manager):
    return SyncOrchestrator(notes_root, fake_git, config_store, lock_manager, lock_timeout=0.2)


@pytest.fixture(autouse=True)
def _reset_metrics():
    metrics.reset()
    yield


@pytest.fixture
def git_identity(tmp_path, monkeypatch):
    """Commit identity for real git repositories created in tests."""
    for var, value in {
        "GIT_AUTHOR_NAME": "mnote tests",
        "GIT_AUTHOR_EMAIL": "tests@example.com",
        "GIT_COMMITTER_NAME": "mnote tests",
        "GIT_COMMITTER_EMAIL": "tests@example.com",
        "GIT_CONFIG_NOSYSTEM": "1",
    }.items():
        monkeypatch.setenv(var, value)
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))


@pytest.fixture
def clean_logging():
    """Remove handlers that configure_logging attached to the mnote logger."""
    yield
    logger = logging.getLogger("mnote")
    for handler in list(logger.handlers):
        if getattr(handler, "_mnote_handler", False):
            logger.removeHandler(handler)
            handler.close()
    logger.setLevel(logging.NOTSET)
