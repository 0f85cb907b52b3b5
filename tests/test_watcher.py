"""Tests for FileWatcher scheduling and lifecycle."""
import threading
from unittest.mock import MagicMock

import pytest
from watchdog.events import DirCreatedEvent, DirModifiedEvent, FileDeletedEvent

from notevault.sync.watcher import FileWatcher, _TreeChangeHandler


@pytest.fixture
def sync_manager_mock():
    return MagicMock()


@pytest.fixture
def watcher(sync_manager_mock):
    watcher = FileWatcher(sync_manager_mock)
    yield watcher
    watcher.shutdown()


class TestRequestSync:
    """Tests for queuing and coalescing syncs."""

    def test_ignored_when_not_watching(self, watcher, sync_manager_mock):
        assert watcher.request_sync() is None
        sync_manager_mock.sync_from_filesystem.assert_not_called()

    def test_runs_sync_of_root(self, watcher, sync_manager_mock, tmp_path):
        watcher.root = str(tmp_path)

        watcher.request_sync().result(timeout=5)

        sync_manager_mock.sync_from_filesystem.assert_called_once_with(str(tmp_path))

    def test_queued_requests_are_coalesced(self, watcher, sync_manager_mock, tmp_path):
        watcher.root = str(tmp_path)
        gate = threading.Event()
        # Occupy the single worker so the next sync stays queued
        blocker = watcher._executor.submit(gate.wait, 5)

        queued = watcher.request_sync()
        assert queued is not None
        assert watcher.request_sync() is None
        assert watcher.request_sync() is None

        gate.set()
        blocker.result(timeout=5)
        queued.result(timeout=5)
        assert sync_manager_mock.sync_from_filesystem.call_count == 1

    def test_new_request_after_sync_started(self, watcher, sync_manager_mock, tmp_path):
        watcher.root = str(tmp_path)

        watcher.request_sync().result(timeout=5)
        watcher.request_sync().result(timeout=5)

        assert sync_manager_mock.sync_from_filesystem.call_count == 2

    def test_failed_sync_does_not_block_later_ones(self, watcher, sync_manager_mock, tmp_path):
        watcher.root = str(tmp_path)
        sync_manager_mock.sync_from_filesystem.side_effect = [RuntimeError("boom"), None]

        watcher.request_sync().result(timeout=5)
        watcher.request_sync().result(timeout=5)

        assert sync_manager_mock.sync_from_filesystem.call_count == 2


class TestEventHandler:
    """Tests for which filesystem events trigger a sync."""

    def test_structural_events_request_sync(self):
        watcher = MagicMock()
        handler = _TreeChangeHandler(watcher)

        handler.on_created(DirCreatedEvent("/r/new"))
        handler.on_deleted(FileDeletedEvent("/r/old.md"))

        assert watcher.request_sync.call_count == 2

    def test_directory_modification_is_ignored(self):
        watcher = MagicMock()
        handler = _TreeChangeHandler(watcher)

        handler.on_modified(DirModifiedEvent("/r"))

        watcher.request_sync.assert_not_called()


class TestLifecycle:
    """Tests for start/stop."""

    def test_start_and_stop(self, watcher, tmp_path):
        watcher.start(str(tmp_path))
        assert watcher.is_watching
        assert watcher.root == str(tmp_path)

        watcher.stop()
        assert not watcher.is_watching

    def test_start_same_root_is_no_op(self, watcher, tmp_path):
        watcher.start(str(tmp_path))
        observer = watcher.observer

        watcher.start(str(tmp_path))

        assert watcher.observer is observer

    def test_start_other_root_restarts(self, watcher, tmp_path):
        first = tmp_path / "one"
        second = tmp_path / "two"
        first.mkdir()
        second.mkdir()
        watcher.start(str(first))
        observer = watcher.observer

        watcher.start(str(second))

        assert watcher.observer is not observer
        assert watcher.root == str(second)
