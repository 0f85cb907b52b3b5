"""Data models for notevault."""

import datetime
from datetime import timezone
from enum import Enum
from typing import List, Optional, Tuple

from pydantic import BaseModel, Field, field_validator
from pydantic.alias_generators import to_camel

# Version written into every snapshot produced by create_backup().
# Older snapshots are upgraded by the migration handler before parsing.
CURRENT_SCHEMA_VERSION = 7

# Snapshot records are exchanged as camelCase JSON
_RECORD_CONFIG = {
    "alias_generator": to_camel,
    "populate_by_name": True,
    "validate_assignment": True,
    "extra": "ignore",
}


def utc_now() -> datetime.datetime:
    """Get current UTC time as timezone-aware datetime.

    Returns:
        Current time with UTC timezone info attached.
    """
    return datetime.datetime.now(timezone.utc)


def ensure_timezone_aware(dt_value: Optional[datetime.datetime]) -> datetime.datetime:
    """Ensure a datetime is timezone-aware, treating naive datetimes as UTC.

    SQLite hands back naive datetimes, which are assumed to be UTC.

    Args:
        dt_value: A datetime that may or may not have timezone info.

    Returns:
        The same datetime with UTC timezone if it was naive, otherwise unchanged.
    """
    if dt_value is None:
        return utc_now()
    if dt_value.tzinfo is None:
        return dt_value.replace(tzinfo=timezone.utc)
    return dt_value


class Folder(BaseModel):
    """A directory of the mirrored tree."""

    id: Optional[int] = Field(default=None, description="Database ID (None until inserted)")
    name: str = Field(..., description="Directory name on disk")
    parent_id: Optional[int] = Field(
        default=None, description="Parent folder ID, None for folders at the root"
    )
    absolute_path: str = Field(..., description="Absolute directory path, globally unique")
    created_at: datetime.datetime = Field(default_factory=utc_now)
    modified_at: datetime.datetime = Field(default_factory=utc_now)

    model_config = _RECORD_CONFIG

    @field_validator("absolute_path")
    @classmethod
    def validate_absolute_path(cls, v: str) -> str:
        """Validate that the folder path is not empty."""
        if not v.strip():
            raise ValueError("Folder path cannot be empty")
        return v


class AttachmentType(str, Enum):
    """Kinds of files that can be attached to a note."""

    AUDIO = "AUDIO"
    IMAGE = "IMAGE"
    VIDEO = "VIDEO"
    GENERIC = "GENERIC"


class Attachment(BaseModel):
    """A file attached to a note.

    ``file_name`` is only set inside a snapshot whose attachment files were
    embedded in the archive; it names the archive entry holding the bytes.
    """

    type: AttachmentType = Field(default=AttachmentType.GENERIC)
    path: str = Field(default="", description="Location of the attachment in live storage")
    description: str = Field(default="")
    file_name: str = Field(default="", description="Embedded archive file name, if any")

    model_config = {**_RECORD_CONFIG, "frozen": True}


class Tag(BaseModel):
    """A tag for categorizing notes."""

    id: Optional[int] = Field(default=None)
    name: str = Field(..., description="Tag name (unique)")

    model_config = _RECORD_CONFIG

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        """Validate that the tag name is not empty."""
        if not v.strip():
            raise ValueError("Tag name cannot be empty")
        return v

    def __str__(self) -> str:
        """Return string representation of tag."""
        return self.name


class NoteTagJoin(BaseModel):
    """Association between a tag and a note."""

    tag_id: int
    note_id: int

    model_config = {**_RECORD_CONFIG, "frozen": True}


class Reminder(BaseModel):
    """A dated reminder attached to a note."""

    id: Optional[int] = Field(default=None)
    note_id: int
    name: str = Field(default="")
    date: datetime.datetime

    model_config = _RECORD_CONFIG

    def has_expired(self, now: Optional[datetime.datetime] = None) -> bool:
        """Return True if the reminder date is not in the future."""
        now = now or utc_now()
        return ensure_timezone_aware(self.date) <= now


class IdMapping(BaseModel):
    """Links a local note to its identity at an external sync provider."""

    mapping_id: Optional[int] = Field(default=None)
    local_note_id: int
    provider_id: Optional[str] = Field(
        default=None, description="Identifier of the note at the provider"
    )
    provider: Optional[str] = Field(default=None, description="Provider name")
    is_deleted_locally: bool = Field(default=False)

    model_config = _RECORD_CONFIG


class Note(BaseModel):
    """A note, optionally backed by a markdown file inside the mirrored tree."""

    id: Optional[int] = Field(default=None)
    title: str = Field(default="")
    content: str = Field(default="")
    folder_id: Optional[int] = Field(default=None)
    file_path: Optional[str] = Field(default=None, description="Backing .md file, if any")
    creation_date: datetime.datetime = Field(default_factory=utc_now)
    modified_date: datetime.datetime = Field(default_factory=utc_now)
    is_local_only: bool = Field(default=False)
    attachments: List[Attachment] = Field(default_factory=list)
    # Loaded from the join table; snapshots carry tags as NoteTagJoin records
    tags: List[Tag] = Field(default_factory=list, exclude=True)
    is_deleted: bool = Field(default=False, description="True while the note is in the bin")
    deletion_date: Optional[datetime.datetime] = Field(default=None)

    model_config = _RECORD_CONFIG


class Backup(BaseModel):
    """Immutable snapshot of a note graph."""

    schema_version: int = Field(default=CURRENT_SCHEMA_VERSION)
    notes: Tuple[Note, ...] = Field(default=())
    folders: Tuple[Folder, ...] = Field(default=())
    reminders: Tuple[Reminder, ...] = Field(default=())
    tags: Tuple[Tag, ...] = Field(default=())
    tag_note_joins: Tuple[NoteTagJoin, ...] = Field(default=())
    id_mappings: Tuple[IdMapping, ...] = Field(default=())

    model_config = {**_RECORD_CONFIG, "frozen": True}

    def serialize(self) -> str:
        """Serialize the snapshot to its JSON text form."""
        return self.model_dump_json(by_alias=True)

    @classmethod
    def from_string(cls, text: str) -> "Backup":
        """Parse snapshot JSON text (already migrated to the current schema).

        Raises:
            pydantic.ValidationError: If the text is not a valid snapshot.
        """
        return cls.model_validate_json(text)
