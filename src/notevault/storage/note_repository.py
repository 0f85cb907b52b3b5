"""Repository for note storage and retrieval."""

import json
import logging
from typing import Callable, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import selectinload, sessionmaker

from notevault.exceptions import NoteNotFoundError, ValidationError
from notevault.models.db_models import DBNote
from notevault.models.schema import (
    Attachment,
    Note,
    Tag,
    ensure_timezone_aware,
    utc_now,
)
from notevault.storage.base import Repository, to_db_datetime

logger = logging.getLogger(__name__)

# Called as sync_hook(action, note) after a write made with sync=True.
# action is one of "insert", "update", "bin".
SyncHook = Callable[[str, Note], None]


class NoteRepository(Repository[Note]):
    """Repository for notes.

    Writes accept a ``sync`` flag. When True (the default) the optional
    ``sync_hook`` collaborator is told about the change so it can propagate
    it to a sync provider; the filesystem sync engine passes ``sync=False``
    so that changes it discovered on disk are not echoed back out.
    """

    def __init__(self, session_factory: sessionmaker, sync_hook: Optional[SyncHook] = None):
        """Initialize the repository.

        Args:
            session_factory: SQLAlchemy session factory for database operations.
            sync_hook: Optional provider-sync collaborator.
        """
        super().__init__(session_factory)
        self.sync_hook = sync_hook

    def get(self, note_id: int) -> Optional[Note]:
        """Get a note by ID, including notes in the bin."""
        with self.session_factory() as session:
            db_note = session.scalar(
                select(DBNote)
                .options(selectinload(DBNote.tags))
                .where(DBNote.id == note_id)
            )
            return self._db_note_to_model(db_note) if db_note else None

    def get_all(self, include_deleted: bool = False) -> List[Note]:
        """Get all notes.

        Args:
            include_deleted: Also return notes that are in the bin.
        """
        with self.session_factory() as session:
            query = select(DBNote).options(selectinload(DBNote.tags)).order_by(DBNote.id)
            if not include_deleted:
                query = query.where(DBNote.is_deleted.is_(False))
            return [self._db_note_to_model(db) for db in session.scalars(query).all()]

    def insert(self, note: Note, sync: bool = True) -> int:
        """Insert a note and return its generated ID.

        Any ``id`` already set on ``note`` is ignored; ``note.tags`` is not
        written (tags are attached through TagRepository).
        """
        with self.session_factory() as session:
            db_note = DBNote(
                title=note.title,
                content=note.content,
                folder_id=note.folder_id,
                file_path=note.file_path,
                creation_date=to_db_datetime(note.creation_date),
                modified_date=to_db_datetime(note.modified_date),
                is_local_only=note.is_local_only,
                attachments_json=self._attachments_to_json(note.attachments),
                is_deleted=note.is_deleted,
                deletion_date=to_db_datetime(note.deletion_date),
            )
            session.add(db_note)
            session.commit()
            note_id = db_note.id

        if sync:
            self._notify("insert", note.model_copy(update={"id": note_id}))
        return note_id

    def update(self, note: Note, sync: bool = True) -> Note:
        """Write every stored field of ``note`` to its existing row.

        Raises:
            ValidationError: If the note has no ID.
            NoteNotFoundError: If no row exists for the note's ID.
        """
        if note.id is None:
            raise ValidationError("Cannot update a note without an ID", field="id")
        with self.session_factory() as session:
            db_note = session.get(DBNote, note.id)
            if not db_note:
                raise NoteNotFoundError(note.id)
            db_note.title = note.title
            db_note.content = note.content
            db_note.folder_id = note.folder_id
            db_note.file_path = note.file_path
            db_note.modified_date = to_db_datetime(note.modified_date)
            db_note.is_local_only = note.is_local_only
            db_note.attachments_json = self._attachments_to_json(note.attachments)
            db_note.is_deleted = note.is_deleted
            db_note.deletion_date = to_db_datetime(note.deletion_date)
            session.commit()

        if sync:
            self._notify("update", note)
        return note

    def move_to_bin(self, note: Note, sync: bool = True) -> Note:
        """Soft-delete a note. The row and its relations are kept.

        Returns:
            The note as stored in the bin.
        """
        binned = note.model_copy(update={"is_deleted": True, "deletion_date": utc_now()})
        self.update(binned, sync=False)
        logger.debug(f"Moved note {note.id} to the bin")
        if sync:
            self._notify("bin", binned)
        return binned

    def _notify(self, action: str, note: Note) -> None:
        """Hand a change to the sync hook, if one is installed."""
        if self.sync_hook is None:
            return
        self.sync_hook(action, note)

    @staticmethod
    def _attachments_to_json(attachments: List[Attachment]) -> str:
        return json.dumps([a.model_dump(mode="json") for a in attachments])

    @staticmethod
    def _db_note_to_model(db_note: DBNote) -> Note:
        """Convert a SQLAlchemy DBNote to a domain Note."""
        attachments = [
            Attachment.model_validate(item)
            for item in json.loads(db_note.attachments_json or "[]")
        ]
        return Note(
            id=db_note.id,
            title=db_note.title,
            content=db_note.content,
            folder_id=db_note.folder_id,
            file_path=db_note.file_path,
            creation_date=ensure_timezone_aware(db_note.creation_date),
            modified_date=ensure_timezone_aware(db_note.modified_date),
            is_local_only=db_note.is_local_only,
            attachments=attachments,
            tags=[Tag(id=t.id, name=t.name) for t in (db_note.tags or [])],
            is_deleted=db_note.is_deleted,
            deletion_date=(
                ensure_timezone_aware(db_note.deletion_date)
                if db_note.deletion_date
                else None
            ),
        )
