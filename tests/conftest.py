"""Common test fixtures for notevault."""

import tempfile
from pathlib import Path

import pytest
from sqlalchemy import event

from notevault.backup import BackupManager
from notevault.config import config
from notevault.models.db_models import get_session_factory, init_db
from notevault.storage import (
    FolderRepository,
    IdMappingRepository,
    ImageStorage,
    NoteRepository,
    ReminderRepository,
    TagRepository,
)
from notevault.sync import FolderSyncManager

_WRITE_PREFIXES = ("INSERT", "UPDATE", "DELETE", "REPLACE")


class RecordingScheduler:
    """ReminderScheduler that remembers what it was asked to schedule."""

    def __init__(self):
        self.scheduled = []

    def schedule(self, reminder_id, note_id, date):
        self.scheduled.append((reminder_id, note_id, date))


class RecordingProgress:
    """ProgressHandler that remembers every callback."""

    def __init__(self):
        self.progress = []
        self.completed = False
        self.error = None

    def on_progress_changed(self, current, total):
        self.progress.append((current, total))

    def on_completion(self):
        self.completed = True

    def on_failure(self, error):
        self.error = error


@pytest.fixture
def temp_dirs():
    """Create temporary directories for the notes tree and app data."""
    with tempfile.TemporaryDirectory() as notes_dir:
        with tempfile.TemporaryDirectory() as data_dir:
            yield Path(notes_dir), Path(data_dir)


@pytest.fixture
def notes_root(temp_dirs):
    """The mirrored notes tree."""
    return temp_dirs[0]


@pytest.fixture
def test_config(temp_dirs, monkeypatch):
    """Configure with test paths (auto-restored even on crash)."""
    notes_dir, data_dir = temp_dirs
    monkeypatch.setattr(config, "notes_root", notes_dir)
    monkeypatch.setattr(config, "database_path", data_dir / "db" / "test_notevault.db")
    monkeypatch.setattr(config, "images_dir", data_dir / "images")
    monkeypatch.setattr(config, "media_dir", data_dir / "media")
    monkeypatch.setattr(config, "log_dir", data_dir / "logs")
    yield config


@pytest.fixture
def engine(test_config):
    """Fresh SQLite database with the full schema."""
    engine = init_db(test_config.get_db_url())
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return get_session_factory(engine)


@pytest.fixture
def write_counter(engine):
    """Collect every data-modifying SQL statement run against the engine."""
    statements = []

    def _record(conn, cursor, statement, parameters, context, executemany):
        if statement.lstrip().upper().startswith(_WRITE_PREFIXES):
            statements.append(statement)

    event.listen(engine, "before_cursor_execute", _record)
    yield statements
    event.remove(engine, "before_cursor_execute", _record)


@pytest.fixture
def folder_repository(session_factory):
    return FolderRepository(session_factory)


@pytest.fixture
def note_repository(session_factory):
    return NoteRepository(session_factory)


@pytest.fixture
def tag_repository(session_factory):
    return TagRepository(session_factory)


@pytest.fixture
def reminder_repository(session_factory):
    return ReminderRepository(session_factory)


@pytest.fixture
def id_mapping_repository(session_factory):
    return IdMappingRepository(session_factory)


@pytest.fixture
def image_storage(test_config):
    return ImageStorage(test_config.images_dir, test_config.media_dir)


@pytest.fixture
def sync_manager(folder_repository, note_repository):
    """Create a test FolderSyncManager."""
    return FolderSyncManager(folder_repository, note_repository)


@pytest.fixture
def reminder_scheduler():
    return RecordingScheduler()


@pytest.fixture
def backup_manager(
    note_repository,
    folder_repository,
    tag_repository,
    reminder_repository,
    id_mapping_repository,
    image_storage,
    reminder_scheduler,
):
    """Create a test BackupManager with a recording reminder scheduler."""
    return BackupManager(
        note_repository=note_repository,
        folder_repository=folder_repository,
        tag_repository=tag_repository,
        reminder_repository=reminder_repository,
        id_mapping_repository=id_mapping_repository,
        image_storage=image_storage,
        reminder_scheduler=reminder_scheduler,
    )


@pytest.fixture
def progress():
    return RecordingProgress()
