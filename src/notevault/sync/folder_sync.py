"""Keeps the folder and note tables in step with a directory tree on disk.

Every operation here is a blocking call meant to run off the caller's main
thread. Nothing is locked: the full sync compares before every write, so
two overlapping runs on the same root converge instead of corrupting state.

Filesystem and database changes are not transactional together. Rename and
delete touch the disk first; a failure there leaves the database untouched,
while a crash between the two steps leaves them disagreeing until the next
sync.
"""

import logging
import os
import shutil
from dataclasses import asdict, dataclass
from typing import Dict, Optional, Set, Tuple

from notevault.exceptions import ErrorCode, StorageError
from notevault.models.schema import Folder, Note, utc_now
from notevault.observability import timed_operation
from notevault.storage.folder_repository import FolderRepository
from notevault.storage.note_repository import NoteRepository
from notevault.utils import is_under, replace_path_prefix

logger = logging.getLogger(__name__)

NOTE_EXTENSION = ".md"


@dataclass
class SyncResult:
    """Counts of the writes made by one filesystem sync."""

    folders_created: int = 0
    folders_updated: int = 0
    folders_removed: int = 0
    notes_created: int = 0
    notes_moved: int = 0
    notes_binned: int = 0

    @property
    def total_writes(self) -> int:
        return sum(asdict(self).values())


class FolderSyncManager:
    """Mirrors a directory tree into the folder/note repositories.

    Args:
        folder_repository: Store for folder rows.
        note_repository: Store for note rows. All writes made here pass
            ``sync=False`` so filesystem-driven changes are not pushed to a
            sync provider.
    """

    def __init__(
        self,
        folder_repository: FolderRepository,
        note_repository: NoteRepository,
    ) -> None:
        self.folder_repository = folder_repository
        self.note_repository = note_repository

    # ------------------------------------------------------------------
    # Filesystem -> DB sync
    # ------------------------------------------------------------------

    def sync_from_filesystem(self, root_path: str) -> SyncResult:
        """Reconcile the repositories with the tree under ``root_path``.

        Sub-directories become folders and ``.md`` files become notes.
        Folders whose directory vanished are deleted (cascading to their
        subtree); notes whose file vanished are moved to the bin. Running it
        twice on an unchanged tree makes no writes the second time.

        Returns:
            What was written. Empty if ``root_path`` is not a directory.
        """
        root = os.path.abspath(os.fspath(root_path))
        result = SyncResult()
        if not os.path.isdir(root):
            logger.warning(f"sync_from_filesystem: root does not exist or is not a directory: {root}")
            return result

        with timed_operation("sync_from_filesystem", root=root) as op:
            live_dirs, live_files, unreadable = self._scan(root)
            now = utc_now()

            # Folders, parents before children
            folders_by_path: Dict[str, Folder] = {
                f.absolute_path: f for f in self.folder_repository.get_all()
            }
            for dir_path in sorted(live_dirs, key=len):
                name = os.path.basename(dir_path)
                parent_path = os.path.dirname(dir_path)
                parent = folders_by_path.get(parent_path) if parent_path != root else None
                parent_id = parent.id if parent else None

                existing = folders_by_path.get(dir_path)
                if existing is None:
                    folder = Folder(
                        name=name,
                        parent_id=parent_id,
                        absolute_path=dir_path,
                        created_at=now,
                        modified_at=now,
                    )
                    folder_id = self.folder_repository.upsert(folder)
                    folders_by_path[dir_path] = folder.model_copy(update={"id": folder_id})
                    result.folders_created += 1
                elif existing.name != name or existing.parent_id != parent_id:
                    # Renamed on disk, or re-parented by a restore
                    updated = existing.model_copy(
                        update={"name": name, "parent_id": parent_id, "modified_at": now}
                    )
                    self.folder_repository.update(updated)
                    folders_by_path[dir_path] = updated
                    result.folders_updated += 1

            # Notes
            notes_by_path: Dict[str, Note] = {
                n.file_path: n for n in self.note_repository.get_all() if n.file_path
            }
            for file_path in sorted(live_files):
                folder = folders_by_path.get(os.path.dirname(file_path))
                folder_id = folder.id if folder else None

                existing = notes_by_path.get(file_path)
                if existing is None:
                    self._insert_note_from_file(file_path, folder_id, now)
                    result.notes_created += 1
                elif existing.folder_id != folder_id:
                    # Moved between directories outside the app
                    self.note_repository.update(
                        existing.model_copy(update={"folder_id": folder_id}), sync=False
                    )
                    result.notes_moved += 1

            # Orphaned folders; ancestors first so descendants go by cascade.
            # Contents of unreadable directories are unknown and kept.
            for folder in sorted(self.folder_repository.get_all(), key=lambda f: len(f.absolute_path)):
                path = folder.absolute_path
                if path in live_dirs or self._under_any(path, unreadable):
                    continue
                logger.debug(f"sync_from_filesystem: removing orphaned folder '{path}'")
                if self.folder_repository.delete(folder):
                    result.folders_removed += 1

            # Orphaned notes go to the bin; re-read because cascades nulled folder_id
            for note in self.note_repository.get_all():
                path = note.file_path
                if not path or path in live_files:
                    continue
                parent_path = os.path.dirname(path)
                if not is_under(parent_path, root) or self._under_any(parent_path, unreadable):
                    continue
                logger.debug(f"sync_from_filesystem: moving orphaned note '{path}' to the bin")
                self.note_repository.move_to_bin(note, sync=False)
                result.notes_binned += 1

            op.update(asdict(result))

        logger.info(
            f"sync_from_filesystem: done. folders={len(live_dirs)}, notes={len(live_files)}, "
            f"writes={result.total_writes}"
        )
        return result

    # ------------------------------------------------------------------
    # Create / rename / delete folder
    # ------------------------------------------------------------------

    def create_folder(self, name: str, parent_id: Optional[int], parent_path: str) -> Folder:
        """Create a directory under ``parent_path`` and its folder row.

        Both steps are idempotent: an existing directory is reused and an
        existing row at the same path is returned as is.

        Raises:
            StorageError: If the directory cannot be created.
        """
        new_dir = os.path.join(os.path.abspath(os.fspath(parent_path)), name)
        try:
            os.makedirs(new_dir, exist_ok=True)
        except OSError as e:
            raise StorageError(
                f"Failed to create folder '{name}'",
                operation="create_folder",
                path=new_dir,
                code=ErrorCode.STORAGE_WRITE_FAILED,
                original_error=e,
            ) from e

        existing = self.folder_repository.get_by_path(new_dir)
        if existing is not None:
            return existing

        now = utc_now()
        folder = Folder(
            name=name,
            parent_id=parent_id,
            absolute_path=new_dir,
            created_at=now,
            modified_at=now,
        )
        folder_id = self.folder_repository.insert(folder)
        logger.info(f"Created folder {folder_id}: {new_dir}")
        return folder.model_copy(update={"id": folder_id})

    def rename_folder(self, folder: Folder, new_name: str) -> Optional[Folder]:
        """Rename a folder's directory, then its row and every path beneath it.

        Returns:
            The renamed folder, or None if the directory could not be renamed
            (nothing in the database changes in that case).
        """
        if new_name == folder.name:
            return folder

        old_path = folder.absolute_path
        new_path = os.path.join(os.path.dirname(old_path), new_name)
        if os.path.exists(new_path):
            logger.error(f"rename_folder: target already exists: '{new_path}'")
            return None
        try:
            os.rename(old_path, new_path)
        except OSError as e:
            logger.error(f"rename_folder: failed to rename '{old_path}' -> '{new_path}': {e}")
            return None

        with timed_operation("rename_folder", folder_id=folder.id):
            now = utc_now()
            renamed = folder.model_copy(
                update={"name": new_name, "absolute_path": new_path, "modified_at": now}
            )
            self.folder_repository.update(renamed)
            self._update_child_paths(old_path, new_path, now)
        return renamed

    def delete_folder(self, folder: Folder) -> bool:
        """Delete a folder's directory tree, then its row.

        The database cascade removes descendant folder rows and detaches
        notes (their ``folder_id`` becomes None).

        Returns:
            False if the directory could not be deleted; the database is
            then left untouched.
        """
        try:
            shutil.rmtree(folder.absolute_path)
        except FileNotFoundError:
            logger.debug(f"delete_folder: '{folder.absolute_path}' already gone from disk")
        except OSError as e:
            logger.error(f"delete_folder: failed to delete '{folder.absolute_path}': {e}")
            return False

        self.folder_repository.delete(folder)
        logger.info(f"Deleted folder {folder.id}: {folder.absolute_path}")
        return True

    # ------------------------------------------------------------------
    # Move note
    # ------------------------------------------------------------------

    def move_note(
        self,
        note: Note,
        target_folder_id: Optional[int],
        target_path: Optional[str],
    ) -> Optional[Note]:
        """Move a note into another folder, carrying its backing file along.

        - A note without a backing file on disk only gets its ``folder_id``
          changed (and any stale ``file_path`` cleared).
        - Without ``target_path`` only ``folder_id`` changes.
        - Otherwise the file is renamed into ``target_path`` and ``folder_id``
          and ``file_path`` are updated together.

        Returns:
            The updated note, or None if the file could not be moved (the
            database is left untouched).
        """
        source = note.file_path
        if not source or not os.path.isfile(source):
            updated = note.model_copy(update={"folder_id": target_folder_id, "file_path": None})
            return self.note_repository.update(updated, sync=False)

        if target_path is None:
            logger.warning(f"move_note: no target path for note {note.id}, only updating DB")
            updated = note.model_copy(update={"folder_id": target_folder_id})
            return self.note_repository.update(updated, sync=False)

        dest_dir = os.path.abspath(os.fspath(target_path))
        dest = os.path.join(dest_dir, os.path.basename(source))
        if dest != source:
            try:
                os.makedirs(dest_dir, exist_ok=True)
                if os.path.exists(dest):
                    raise FileExistsError(f"'{dest}' already exists")
                os.rename(source, dest)
            except OSError as e:
                logger.error(f"move_note: failed to move '{source}' -> '{dest}': {e}")
                return None

        updated = note.model_copy(update={"folder_id": target_folder_id, "file_path": dest})
        return self.note_repository.update(updated, sync=False)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _scan(root: str) -> Tuple[Set[str], Set[str], Set[str]]:
        """Walk ``root`` and return (directories, note files, unreadable dirs).

        Unreadable directories are still reported as live directories but
        their contents are unknown, so nothing beneath them counts as orphaned.
        """
        live_dirs: Set[str] = set()
        live_files: Set[str] = set()
        unreadable: Set[str] = set()

        def _on_error(err: OSError) -> None:
            logger.warning(f"sync_from_filesystem: skipping unreadable entry '{err.filename}': {err}")
            if err.filename:
                unreadable.add(os.path.abspath(err.filename))

        for dirpath, dirnames, filenames in os.walk(root, onerror=_on_error):
            # Do not treat symlinked directories as part of the tree
            dirnames[:] = [d for d in dirnames if not os.path.islink(os.path.join(dirpath, d))]
            for dirname in dirnames:
                live_dirs.add(os.path.join(dirpath, dirname))
            for filename in filenames:
                if filename.lower().endswith(NOTE_EXTENSION):
                    live_files.add(os.path.join(dirpath, filename))

        return live_dirs, live_files, unreadable

    @staticmethod
    def _under_any(path: str, roots: Set[str]) -> bool:
        return any(is_under(path, r) for r in roots)

    def _insert_note_from_file(self, file_path: str, folder_id: Optional[int], now) -> int:
        """Create a local-only note from a markdown file found on disk."""
        title = os.path.splitext(os.path.basename(file_path))[0]
        try:
            with open(file_path, "r", encoding="utf-8", errors="replace") as f:
                content = f.read()
        except OSError as e:
            logger.warning(f"Cannot read note file '{file_path}': {e}")
            content = ""

        note = Note(
            title=title,
            content=content,
            folder_id=folder_id,
            file_path=file_path,
            creation_date=now,
            modified_date=now,
            is_local_only=True,
        )
        return self.note_repository.insert(note, sync=False)

    def _update_child_paths(self, old_parent: str, new_parent: str, now) -> None:
        """Rewrite the path prefix of every folder and note beneath a renamed folder."""
        for child in self.folder_repository.get_all():
            if child.absolute_path != old_parent and is_under(child.absolute_path, old_parent):
                new_path = replace_path_prefix(child.absolute_path, old_parent, new_parent)
                self.folder_repository.update(
                    child.model_copy(update={"absolute_path": new_path, "modified_at": now})
                )

        for note in self.note_repository.get_all():
            if note.file_path and is_under(note.file_path, old_parent):
                new_path = replace_path_prefix(note.file_path, old_parent, new_parent)
                self.note_repository.update(
                    note.model_copy(update={"file_path": new_path}), sync=False
                )
