"""Snapshots of the note graph and their zip archive form.

An archive holds ``backup.json`` (the serialized snapshot), inline images
under ``images/`` and, for exports that embed attachment files, a ``media/``
directory of legacy attachments.
"""

import logging
import os
import re
import shutil
import zipfile
from dataclasses import asdict, dataclass
from typing import Dict, Iterable, List, Optional, Tuple

from pydantic import ValidationError as PydanticValidationError

from notevault.backup.handlers import (
    AttachmentHandler,
    IncludeFiles,
    MigrationHandler,
    ProgressHandler,
    ReferenceOnly,
    ReminderScheduler,
)
from notevault.config import config
from notevault.exceptions import BackupReadError, ErrorCode, MigrationError
from notevault.models.schema import (
    CURRENT_SCHEMA_VERSION,
    Backup,
    Folder,
    IdMapping,
    Note,
    NoteTagJoin,
    Reminder,
    Tag,
    utc_now,
)
from notevault.observability import timed_operation
from notevault.storage.folder_repository import FolderRepository
from notevault.storage.image_storage import IMAGES_FOLDER, MEDIA_FOLDER, ImageStorage
from notevault.storage.note_repository import NoteRepository
from notevault.storage.reminder_repository import IdMappingRepository, ReminderRepository
from notevault.storage.tag_repository import TagRepository
from notevault.utils import list_names, unique_filename

logger = logging.getLogger(__name__)

SNAPSHOT_ENTRY = "backup.json"


@dataclass
class RestoreResult:
    """What a restore inserted, reused and dropped."""

    folders_inserted: int = 0
    folders_reused: int = 0
    tags_inserted: int = 0
    tags_reused: int = 0
    notes_inserted: int = 0
    id_mappings_inserted: int = 0
    joins_inserted: int = 0
    reminders_inserted: int = 0
    dropped: int = 0


class BackupManager:
    """Creates snapshots, restores them, and reads/writes backup archives."""

    def __init__(
        self,
        note_repository: NoteRepository,
        folder_repository: FolderRepository,
        tag_repository: TagRepository,
        reminder_repository: ReminderRepository,
        id_mapping_repository: IdMappingRepository,
        image_storage: ImageStorage,
        reminder_scheduler: Optional[ReminderScheduler] = None,
        current_version: int = CURRENT_SCHEMA_VERSION,
        buffer_size: Optional[int] = None,
    ) -> None:
        self.note_repository = note_repository
        self.folder_repository = folder_repository
        self.tag_repository = tag_repository
        self.reminder_repository = reminder_repository
        self.id_mapping_repository = id_mapping_repository
        self.image_storage = image_storage
        self.reminder_scheduler = reminder_scheduler
        self.current_version = current_version
        self.buffer_size = buffer_size or config.copy_buffer_size

    # ------------------------------------------------------------------
    # Snapshot
    # ------------------------------------------------------------------

    def create_backup(
        self,
        notes: Optional[Iterable[Note]] = None,
        attachment_handler: Optional[AttachmentHandler] = None,
    ) -> Backup:
        """Build a snapshot of ``notes``, or of every live note if None.

        Each note brings along its folder, reminders, tags, tag joins and id
        mappings. Attachments are passed through ``attachment_handler``
        (``ReferenceOnly`` if not given).
        """
        handler = attachment_handler or ReferenceOnly()
        if notes is None:
            notes = self.note_repository.get_all()

        snapshot_notes: Dict[int, Note] = {}
        folders: Dict[str, Folder] = {}
        reminders: Dict[int, Reminder] = {}
        tags: Dict[str, Tag] = {}
        joins: Dict[Tuple[int, int], NoteTagJoin] = {}
        mappings: Dict[int, IdMapping] = {}

        with timed_operation("create_backup") as op:
            for note in notes:
                if note.id is None or note.id in snapshot_notes:
                    continue

                if note.folder_id is not None:
                    folder = self.folder_repository.get_by_id(note.folder_id)
                    if folder is not None:
                        folders.setdefault(folder.absolute_path, folder)

                for reminder in self.reminder_repository.get_by_note_id(note.id):
                    reminders.setdefault(reminder.id, reminder)

                for tag in self.tag_repository.get_by_note_id(note.id):
                    tags.setdefault(tag.name, tag)
                    joins.setdefault((tag.id, note.id), NoteTagJoin(tag_id=tag.id, note_id=note.id))

                for mapping in self.id_mapping_repository.get_all_by_local_id(note.id):
                    mappings.setdefault(mapping.mapping_id, mapping)

                attachments = [
                    new for new in (handler.handle(old) for old in note.attachments)
                    if new is not None
                ]
                snapshot_notes[note.id] = note.model_copy(update={"attachments": attachments})

            op["notes"] = len(snapshot_notes)

        return Backup(
            schema_version=self.current_version,
            notes=tuple(snapshot_notes.values()),
            folders=tuple(folders.values()),
            reminders=tuple(reminders.values()),
            tags=tuple(tags.values()),
            tag_note_joins=tuple(joins.values()),
            id_mappings=tuple(mappings.values()),
        )

    # ------------------------------------------------------------------
    # Restore
    # ------------------------------------------------------------------

    def restore_notes_from_backup(self, backup: Backup) -> RestoreResult:
        """Insert the contents of ``backup`` into the live store.

        Folders are matched by path and tags by name, so restoring the same
        snapshot twice does not duplicate them. Notes are always inserted as
        new rows. Rows that depend on an id that could not be remapped are
        dropped.
        """
        result = RestoreResult()
        folder_map: Dict[int, int] = {}
        tag_map: Dict[int, int] = {}
        note_map: Dict[int, int] = {}

        with timed_operation("restore_notes_from_backup", notes=len(backup.notes)) as op:
            # Parents before children so parent ids are already remapped
            for folder in sorted(backup.folders, key=lambda f: len(f.absolute_path)):
                existing = self.folder_repository.get_by_path(folder.absolute_path)
                if existing is not None:
                    new_id = existing.id
                    result.folders_reused += 1
                else:
                    new_id = self.folder_repository.insert(
                        folder.model_copy(
                            update={"id": None, "parent_id": self._restored_parent_id(folder, folder_map)}
                        )
                    )
                    result.folders_inserted += 1
                if folder.id is not None:
                    folder_map[folder.id] = new_id

            for tag in backup.tags:
                existing_tag = self.tag_repository.get_by_name(tag.name)
                if existing_tag is not None:
                    new_id = existing_tag.id
                    result.tags_reused += 1
                else:
                    new_id = self.tag_repository.insert(tag.model_copy(update={"id": None}))
                    result.tags_inserted += 1
                if tag.id is not None:
                    tag_map[tag.id] = new_id

            taken_paths = {
                n.file_path for n in self.note_repository.get_all(include_deleted=True) if n.file_path
            }
            for note in backup.notes:
                file_path = note.file_path
                if file_path and file_path in taken_paths:
                    logger.debug(f"Restored note '{note.title}' loses file path {file_path}: already in use")
                    file_path = None
                elif file_path:
                    taken_paths.add(file_path)

                attachments = [
                    a.model_copy(update={"path": self.image_storage.attachment_path(a.file_name), "file_name": ""})
                    if a.file_name else a
                    for a in note.attachments
                ]
                new_note = note.model_copy(
                    update={
                        "id": None,
                        "folder_id": folder_map.get(note.folder_id) if note.folder_id is not None else None,
                        "file_path": file_path,
                        "attachments": attachments,
                        "tags": [],
                    }
                )
                new_id = self.note_repository.insert(new_note)
                result.notes_inserted += 1
                if note.id is not None:
                    note_map[note.id] = new_id

            for mapping in backup.id_mappings:
                local_id = note_map.get(mapping.local_note_id)
                if local_id is None:
                    logger.debug(f"Dropping id mapping {mapping.mapping_id}: note {mapping.local_note_id} not restored")
                    result.dropped += 1
                    continue
                self.id_mapping_repository.assign_provider_to_note(
                    mapping.model_copy(update={"mapping_id": None, "local_note_id": local_id})
                )
                result.id_mappings_inserted += 1

            for join in backup.tag_note_joins:
                tag_id = tag_map.get(join.tag_id)
                note_id = note_map.get(join.note_id)
                if tag_id is None or note_id is None:
                    logger.debug(f"Dropping tag join {join.tag_id}->{join.note_id}: id not restored")
                    result.dropped += 1
                    continue
                self.tag_repository.add_tag_to_note(tag_id, note_id)
                result.joins_inserted += 1

            now = utc_now()
            for reminder in backup.reminders:
                if reminder.has_expired(now):
                    result.dropped += 1
                    continue
                note_id = note_map.get(reminder.note_id)
                if note_id is None:
                    logger.debug(f"Dropping reminder {reminder.id}: note {reminder.note_id} not restored")
                    result.dropped += 1
                    continue
                reminder_id = self.reminder_repository.insert(
                    reminder.model_copy(update={"id": None, "note_id": note_id})
                )
                result.reminders_inserted += 1
                if self.reminder_scheduler is not None:
                    self.reminder_scheduler.schedule(reminder_id, note_id, reminder.date)

            op.update(asdict(result))

        logger.info(
            f"Restored {result.notes_inserted} notes "
            f"({result.folders_inserted} new folders, {result.tags_inserted} new tags, "
            f"{result.dropped} dropped rows)"
        )
        return result

    def _restored_parent_id(self, folder: Folder, folder_map: Dict[int, int]) -> Optional[int]:
        """Parent id for a restored folder: remapped, else the folder at its parent path."""
        if folder.parent_id is not None and folder.parent_id in folder_map:
            return folder_map[folder.parent_id]
        parent = self.folder_repository.get_by_path(os.path.dirname(folder.absolute_path))
        return parent.id if parent else None

    # ------------------------------------------------------------------
    # Archive read
    # ------------------------------------------------------------------

    def backup_from_zip_file(self, archive_path: str, migration_handler: MigrationHandler) -> Backup:
        """Read a backup archive, extracting its images and media files.

        Files whose names collide with files already in local storage are
        renamed; the snapshot is rewritten to refer to the new names.

        Raises:
            BackupReadError: If the archive is unreadable or its snapshot is
                missing, unparsable or cannot be migrated.
        """
        archive_path = os.fspath(archive_path)
        try:
            zf = zipfile.ZipFile(archive_path)
        except (zipfile.BadZipFile, OSError) as e:
            raise BackupReadError(
                f"Cannot open backup archive: {e}", path=archive_path, original_error=e
            ) from e

        if SNAPSHOT_ENTRY not in zf.namelist():
            zf.close()
            raise BackupReadError(
                f"Archive has no {SNAPSHOT_ENTRY}", path=archive_path, code=ErrorCode.SNAPSHOT_MISSING
            )

        snapshot_text: Optional[str] = None
        media_names: Dict[str, str] = {}
        image_names: Dict[str, str] = {}

        with timed_operation("backup_from_zip_file"), zf:
            for info in zf.infolist():
                name = info.filename
                if name == SNAPSHOT_ENTRY:
                    snapshot_text = self._read_snapshot_entry(zf, info, archive_path)
                elif name == f"{MEDIA_FOLDER}/" or info.is_dir():
                    continue
                elif name.startswith(f"{IMAGES_FOLDER}/"):
                    self._extract_renamed(zf, info, str(self.image_storage.images_dir), image_names)
                else:
                    self._extract_renamed(zf, info, str(self.image_storage.media_dir), media_names)

        try:
            backup = Backup.from_string(migration_handler.migrate(snapshot_text))
        except MigrationError as e:
            raise BackupReadError(
                f"Cannot migrate snapshot: {e.message}",
                path=archive_path,
                code=ErrorCode.MIGRATION_FAILED,
                original_error=e,
            ) from e
        except (PydanticValidationError, ValueError) as e:
            raise BackupReadError(
                "Snapshot is not valid", path=archive_path, code=ErrorCode.SNAPSHOT_INVALID, original_error=e
            ) from e

        return self._apply_renames(backup, media_names, image_names)

    def _read_snapshot_entry(self, zf: zipfile.ZipFile, info: zipfile.ZipInfo, archive_path: str) -> str:
        try:
            return zf.read(info).decode("utf-8")
        except (zipfile.BadZipFile, OSError, UnicodeDecodeError) as e:
            raise BackupReadError(
                f"Cannot read {SNAPSHOT_ENTRY}: {e}",
                path=archive_path,
                code=ErrorCode.SNAPSHOT_INVALID,
                original_error=e,
            ) from e

    def _extract_renamed(
        self,
        zf: zipfile.ZipFile,
        info: zipfile.ZipInfo,
        target_dir: str,
        renamed: Dict[str, str],
    ) -> None:
        """Stream one entry into ``target_dir`` under a free name.

        Only the last path component of the entry is used. Failures are
        logged and the entry skipped.
        """
        original = info.filename.rsplit("/", 1)[-1]
        if not original or original in (".", ".."):
            return
        file_name = unique_filename(list_names(target_dir), original)
        dest = os.path.join(target_dir, file_name)
        try:
            with zf.open(info) as src, open(dest, "wb") as dst:
                shutil.copyfileobj(src, dst, self.buffer_size)
        except (zipfile.BadZipFile, OSError) as e:
            logger.error(f"Failed to extract '{info.filename}': {e}")
            if os.path.exists(dest):
                os.remove(dest)
            return
        if file_name != original:
            logger.debug(f"Extracted '{info.filename}' as '{file_name}'")
            renamed[original] = file_name

    @staticmethod
    def _apply_renames(backup: Backup, media_names: Dict[str, str], image_names: Dict[str, str]) -> Backup:
        """Point the snapshot at files renamed during extraction."""
        if not media_names and not image_names:
            return backup

        token = None
        if image_names:
            # Longest first so a name never matches inside a longer one
            token = re.compile(
                "|".join(re.escape(n) for n in sorted(image_names, key=len, reverse=True))
            )

        notes: List[Note] = []
        for note in backup.notes:
            update = {}
            if media_names:
                update["attachments"] = [
                    a.model_copy(update={"file_name": media_names.get(a.file_name, a.file_name)})
                    for a in note.attachments
                ]
            if token is not None:
                update["content"] = token.sub(lambda m: image_names[m.group(0)], note.content)
            notes.append(note.model_copy(update=update))
        return backup.model_copy(update={"notes": tuple(notes)})

    # ------------------------------------------------------------------
    # Archive write
    # ------------------------------------------------------------------

    def create_backup_zip_file(
        self,
        snapshot_text: str,
        attachment_handler: AttachmentHandler,
        destination: str,
        progress_handler: ProgressHandler,
        inline_image_paths: Iterable[str] = (),
    ) -> None:
        """Write a backup archive to ``destination``.

        Progress is reported once per file written. Errors are reported to
        ``progress_handler.on_failure`` and never raised; a partially written
        archive is removed.
        """
        destination = os.fspath(destination)
        attachments = (
            attachment_handler.attachments_map if isinstance(attachment_handler, IncludeFiles) else {}
        )
        images = [p for p in inline_image_paths if os.path.isfile(p)]
        total = len(attachments) + len(images) + 1
        current = 0
        created = False

        try:
            with timed_operation("create_backup_zip_file", files=total), \
                    zipfile.ZipFile(destination, "w", compression=zipfile.ZIP_DEFLATED) as zf:
                created = True
                if attachments:
                    zf.writestr(f"{MEDIA_FOLDER}/", b"")
                for file_name, source in attachments.items():
                    current += 1
                    progress_handler.on_progress_changed(current, total)
                    self._write_file(zf, f"{MEDIA_FOLDER}/{file_name}", source)

                if images:
                    zf.writestr(f"{IMAGES_FOLDER}/", b"")
                written = set()
                for path in images:
                    current += 1
                    progress_handler.on_progress_changed(current, total)
                    name = os.path.basename(path)
                    if name in written:
                        logger.warning(f"Skipping image {path}: another image named '{name}' was already exported")
                        continue
                    written.add(name)
                    self._write_file(zf, f"{IMAGES_FOLDER}/{name}", path)

                current += 1
                progress_handler.on_progress_changed(current, total)
                zf.writestr(SNAPSHOT_ENTRY, snapshot_text.encode("utf-8"))
        except Exception as e:
            logger.error(f"Failed to write backup archive {destination}: {e}", exc_info=True)
            # Only an archive this call opened is ours to remove
            if created:
                try:
                    os.remove(destination)
                except OSError as cleanup_error:
                    logger.warning(f"Could not remove partial archive {destination}: {cleanup_error}")
            progress_handler.on_failure(e)
            return

        logger.info(f"Wrote backup archive {destination} ({total} files)")
        progress_handler.on_completion()

    def _write_file(self, zf: zipfile.ZipFile, arcname: str, source: str) -> None:
        with open(source, "rb") as src, zf.open(arcname, "w") as dst:
            shutil.copyfileobj(src, dst, self.buffer_size)
