"""Filesystem to database synchronization."""

from notevault.sync.folder_sync import FolderSyncManager, SyncResult
from notevault.sync.watcher import FileWatcher

__all__ = ["FolderSyncManager", "SyncResult", "FileWatcher"]
