"""Storage layer for notevault."""

from notevault.storage.base import Repository
from notevault.storage.folder_repository import FolderRepository
from notevault.storage.image_storage import ImageStorage
from notevault.storage.note_repository import NoteRepository
from notevault.storage.reminder_repository import IdMappingRepository, ReminderRepository
from notevault.storage.tag_repository import TagRepository

__all__ = [
    "Repository",
    "FolderRepository",
    "NoteRepository",
    "TagRepository",
    "ReminderRepository",
    "IdMappingRepository",
    "ImageStorage",
]
