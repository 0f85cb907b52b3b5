"""Backup and restore of the note graph."""

from notevault.backup.handlers import (
    AttachmentHandler,
    IncludeFiles,
    MigrationHandler,
    ProgressHandler,
    ReferenceOnly,
    ReminderScheduler,
    SnapshotMigrationHandler,
)
from notevault.backup.manager import SNAPSHOT_ENTRY, BackupManager, RestoreResult

__all__ = [
    "AttachmentHandler",
    "IncludeFiles",
    "ReferenceOnly",
    "MigrationHandler",
    "SnapshotMigrationHandler",
    "ProgressHandler",
    "ReminderScheduler",
    "BackupManager",
    "RestoreResult",
    "SNAPSHOT_ENTRY",
]
