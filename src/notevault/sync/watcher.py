"""Re-runs the folder sync whenever the watched tree changes."""

import logging
import os
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Optional

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from notevault.sync.folder_sync import FolderSyncManager

logger = logging.getLogger(__name__)


class _TreeChangeHandler(FileSystemEventHandler):
    """Forwards every change event under the root to the watcher."""

    def __init__(self, watcher: "FileWatcher"):
        super().__init__()
        self.watcher = watcher

    def on_created(self, event: FileSystemEvent):
        self.watcher.request_sync(event)

    def on_deleted(self, event: FileSystemEvent):
        self.watcher.request_sync(event)

    def on_moved(self, event: FileSystemEvent):
        self.watcher.request_sync(event)

    def on_modified(self, event: FileSystemEvent):
        # Directory mtime changes accompany every create/delete inside it
        if not event.is_directory:
            self.watcher.request_sync(event)


class FileWatcher:
    """Watches a notes root recursively and keeps the database in step.

    Syncs run one at a time on a private single-worker executor. While a
    sync is queued but not yet started, further events are folded into it.
    """

    def __init__(self, sync_manager: FolderSyncManager):
        self.sync_manager = sync_manager
        self.root: Optional[str] = None
        self.observer: Optional[Observer] = None
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="notevault-sync")
        self._lock = threading.Lock()
        self._pending = False

    @property
    def is_watching(self) -> bool:
        return self.observer is not None

    def start(self, root_path: str) -> None:
        """Begin watching ``root_path``; a no-op if it is already watched."""
        root = os.path.abspath(os.fspath(root_path))
        if self.observer is not None:
            if root == self.root:
                return
            self.stop()

        self.root = root
        self.observer = Observer()
        self.observer.schedule(_TreeChangeHandler(self), root, recursive=True)
        self.observer.start()
        logger.info(f"Watching {root} for changes")

    def stop(self) -> None:
        """Stop watching. Syncs already queued still run."""
        if self.observer is None:
            return
        self.observer.stop()
        self.observer.join(timeout=5)
        self.observer = None
        logger.info(f"Stopped watching {self.root}")

    def shutdown(self) -> None:
        """Stop watching and wait for any queued sync to finish."""
        self.stop()
        self._executor.shutdown(wait=True)

    def request_sync(self, event: Optional[FileSystemEvent] = None) -> Optional[Future]:
        """Queue a sync of the watched root unless one is already queued.

        Returns:
            The queued future, or None if the request was coalesced.
        """
        if self.root is None:
            return None
        with self._lock:
            if self._pending:
                return None
            self._pending = True
        if event is not None:
            logger.debug(f"Change detected ({event.event_type}): {event.src_path}")
        return self._executor.submit(self._run_sync, self.root)

    def _run_sync(self, root: str) -> None:
        with self._lock:
            self._pending = False
        try:
            self.sync_manager.sync_from_filesystem(root)
        except Exception as e:
            logger.error(f"Background sync of {root} failed: {e}", exc_info=True)
