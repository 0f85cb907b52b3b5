"""Collaborators plugged into the backup engine.

Attachment handlers decide what happens to attachment files when a snapshot
is taken, the migration handler upgrades old snapshot text, and the
progress/reminder protocols let callers observe an export and schedule
restored reminders.
"""

import datetime
import json
import logging
import os
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Optional, Protocol

from notevault.exceptions import ErrorCode, MigrationError
from notevault.models.schema import CURRENT_SCHEMA_VERSION, Attachment
from notevault.utils import unique_filename

logger = logging.getLogger(__name__)

# Oldest snapshot layout that can still be upgraded
MIN_SUPPORTED_SCHEMA_VERSION = 5


class AttachmentHandler(ABC):
    """Rewrites a note's attachment while a snapshot is being built."""

    @abstractmethod
    def handle(self, attachment: Attachment) -> Optional[Attachment]:
        """Return the attachment to store in the snapshot, or None to drop it."""


class ReferenceOnly(AttachmentHandler):
    """Keeps attachments as plain references; no files go into the archive."""

    def handle(self, attachment: Attachment) -> Optional[Attachment]:
        if attachment.file_name:
            return attachment.model_copy(update={"file_name": ""})
        return attachment


class IncludeFiles(AttachmentHandler):
    """Embeds attachment files in the archive under ``media/``.

    Each local attachment is given an archive file name unique within the
    export. ``attachments_map`` maps those names to the source files and is
    consumed by ``BackupManager.create_backup_zip_file``.
    """

    def __init__(self) -> None:
        self.attachments_map: Dict[str, str] = {}

    def handle(self, attachment: Attachment) -> Optional[Attachment]:
        source = _local_path(attachment.path)
        if source is None or not os.path.isfile(source):
            logger.debug(f"Attachment '{attachment.path}' is not a local file, keeping reference")
            return attachment.model_copy(update={"file_name": ""})

        file_name = unique_filename(self.attachments_map, os.path.basename(source))
        self.attachments_map[file_name] = source
        return attachment.model_copy(update={"file_name": file_name})


def _local_path(path: str) -> Optional[str]:
    """Turn an attachment location into a filesystem path, if it is one."""
    if not path:
        return None
    if path.startswith("file://"):
        return path[len("file://"):]
    if os.path.isabs(path):
        return path
    return None


class ProgressHandler(Protocol):
    """Receives progress of an archive export."""

    def on_progress_changed(self, current: int, total: int) -> None: ...

    def on_completion(self) -> None: ...

    def on_failure(self, error: Exception) -> None: ...


class ReminderScheduler(Protocol):
    """Schedules delivery of a restored reminder."""

    def schedule(self, reminder_id: int, note_id: int, date: datetime.datetime) -> None: ...


class MigrationHandler(ABC):
    """Upgrades snapshot text to the current schema before it is parsed."""

    @abstractmethod
    def migrate(self, text: str) -> str:
        """Return ``text`` rewritten to the current schema version.

        Raises:
            MigrationError: If the text cannot be upgraded.
        """


def _migrate_5_to_6(data: Dict[str, Any]) -> Dict[str, Any]:
    # Notebooks were replaced by folders mirrored from disk
    data.pop("notebooks", None)
    data.setdefault("folders", [])
    for note in data.get("notes", []):
        note.pop("notebookId", None)
    return data


def _migrate_6_to_7(data: Dict[str, Any]) -> Dict[str, Any]:
    data.setdefault("idMappings", [])
    for note in data.get("notes", []):
        note.setdefault("folderId", None)
        note.setdefault("filePath", None)
        note.setdefault("isDeleted", False)
        note.setdefault("deletionDate", None)
        note.setdefault("attachments", [])
    return data


class SnapshotMigrationHandler(MigrationHandler):
    """Applies the registered upgrade steps one version at a time.

    Args:
        current_version: Version to upgrade to.
        steps: ``{from_version: step}``; each step takes the parsed snapshot
            at ``from_version`` and returns it at ``from_version + 1``.
    """

    DEFAULT_STEPS: Dict[int, Callable[[Dict[str, Any]], Dict[str, Any]]] = {
        5: _migrate_5_to_6,
        6: _migrate_6_to_7,
    }

    def __init__(
        self,
        current_version: int = CURRENT_SCHEMA_VERSION,
        steps: Optional[Dict[int, Callable[[Dict[str, Any]], Dict[str, Any]]]] = None,
    ) -> None:
        self.current_version = current_version
        self.steps = dict(self.DEFAULT_STEPS if steps is None else steps)

    def migrate(self, text: str) -> str:
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise MigrationError(f"Snapshot is not valid JSON: {e}") from e
        if not isinstance(data, dict):
            raise MigrationError("Snapshot must be a JSON object")

        version = data.get("schemaVersion")
        if not isinstance(version, int) or isinstance(version, bool):
            raise MigrationError(
                "Snapshot has no schema version", code=ErrorCode.UNSUPPORTED_SCHEMA_VERSION
            )
        if version > self.current_version or version < MIN_SUPPORTED_SCHEMA_VERSION:
            raise MigrationError(
                f"Unsupported snapshot schema version {version}",
                from_version=version,
                code=ErrorCode.UNSUPPORTED_SCHEMA_VERSION,
            )
        if version == self.current_version:
            return text

        start = version
        while version < self.current_version:
            step = self.steps.get(version)
            if step is None:
                raise MigrationError(
                    f"No migration step from schema version {version}",
                    from_version=start,
                )
            data = step(data)
            version += 1
            data["schemaVersion"] = version

        logger.info(f"Migrated snapshot from schema version {start} to {version}")
        return json.dumps(data)
