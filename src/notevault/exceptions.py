"""Errors raised by the notevault sync and backup engines.

Every error carries an ``ErrorCode`` so callers (and the CLI exit path) can
tell a path conflict from a broken archive without parsing messages.
"""
import os
from enum import Enum
from typing import Any, Optional


class ErrorCode(Enum):
    """Machine-readable failure kinds, grouped by the part that raises them."""

    # Notes (1xxx)
    NOTE_NOT_FOUND = 1001

    # Folders (2xxx)
    FOLDER_NOT_FOUND = 2001
    FOLDER_PATH_CONFLICT = 2002

    # Filesystem (4xxx)
    STORAGE_READ_FAILED = 4001
    STORAGE_WRITE_FAILED = 4002

    # Backup archives and snapshots (5xxx)
    ARCHIVE_READ_FAILED = 5001
    SNAPSHOT_MISSING = 5002
    SNAPSHOT_INVALID = 5003
    MIGRATION_FAILED = 5004
    UNSUPPORTED_SCHEMA_VERSION = 5005

    # Bad input (7xxx)
    VALIDATION_FAILED = 7001


class NoteVaultError(Exception):
    """Base class for notevault errors.

    Subclasses set a default ``code``; a caller may pass a more specific one.
    Keyword context that is not None ends up in ``details``.
    """

    code = ErrorCode.VALIDATION_FAILED

    def __init__(self, message: str, code: Optional[ErrorCode] = None, **details: Any):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        self.details = {k: v for k, v in details.items() if v is not None}

    def __str__(self) -> str:
        text = f"[{self.code.name}] {self.message}"
        if self.details:
            text += " (" + ", ".join(f"{k}={v}" for k, v in self.details.items()) + ")"
        return text


class NoteNotFoundError(NoteVaultError):
    """No stored note has the given ID."""

    code = ErrorCode.NOTE_NOT_FOUND

    def __init__(self, note_id: int):
        super().__init__(f"Note {note_id} not found", note_id=note_id)
        self.note_id = note_id


class ValidationError(NoteVaultError):
    """A folder or note write was rejected, e.g. a duplicate folder path."""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        value: Optional[Any] = None,
        code: Optional[ErrorCode] = None,
    ):
        super().__init__(
            message, code, field=field, value=None if value is None else str(value)[:100]
        )
        self.field = field
        self.value = value


class StorageError(NoteVaultError):
    """A directory or file under the notes root could not be read or written."""

    code = ErrorCode.STORAGE_READ_FAILED

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        path: Optional[str] = None,
        code: Optional[ErrorCode] = None,
        original_error: Optional[Exception] = None,
    ):
        # Only the last component is reported; full paths stay in the log
        super().__init__(
            message,
            code,
            operation=operation,
            file=os.path.basename(path.rstrip("/")) if path else None,
            cause=str(original_error)[:200] if original_error else None,
        )
        self.operation = operation
        self.path = path
        self.original_error = original_error


class BackupReadError(StorageError):
    """A backup archive could not be turned into a snapshot.

    Raised for files that are not zip archives, archives without a
    ``backup.json`` entry, and snapshots that fail to parse or migrate.
    """

    code = ErrorCode.ARCHIVE_READ_FAILED

    def __init__(
        self,
        message: str,
        path: Optional[str] = None,
        code: Optional[ErrorCode] = None,
        original_error: Optional[Exception] = None,
    ):
        super().__init__(
            message, operation="backup_read", path=path, code=code, original_error=original_error
        )


class MigrationError(NoteVaultError):
    """Snapshot text cannot be upgraded to the current schema version."""

    code = ErrorCode.MIGRATION_FAILED

    def __init__(
        self,
        message: str,
        from_version: Optional[int] = None,
        code: Optional[ErrorCode] = None,
    ):
        super().__init__(message, code, from_version=from_version)
        self.from_version = from_version
