"""Repository for folder storage and retrieval."""
import logging
from typing import List, Optional

from sqlalchemy import delete, select
from sqlalchemy.dialects.sqlite import insert as sqlite_insert

from notevault.exceptions import ErrorCode, ValidationError
from notevault.models.db_models import DBFolder
from notevault.models.schema import Folder, ensure_timezone_aware
from notevault.storage.base import Repository, to_db_datetime

logger = logging.getLogger(__name__)


class FolderRepository(Repository[Folder]):
    """Repository for the folder tree.

    Folders are keyed by database id but identified on disk by their
    ``absolute_path``, which is unique. Deleting a folder relies on the
    database's ``ON DELETE CASCADE`` to remove its subtree and on
    ``ON DELETE SET NULL`` to detach notes.
    """

    def get_by_parent(self, parent_id: Optional[int]) -> List[Folder]:
        """Get the direct children of a folder, ordered by name.

        Args:
            parent_id: Parent folder ID, or None for root-level folders.
        """
        with self.session_factory() as session:
            query = select(DBFolder).order_by(DBFolder.name)
            if parent_id is None:
                query = query.where(DBFolder.parent_id.is_(None))
            else:
                query = query.where(DBFolder.parent_id == parent_id)
            return [self._db_to_model(db) for db in session.scalars(query).all()]

    def get_by_id(self, folder_id: int) -> Optional[Folder]:
        """Get a folder by ID."""
        with self.session_factory() as session:
            db_folder = session.get(DBFolder, folder_id)
            return self._db_to_model(db_folder) if db_folder else None

    def get_by_path(self, path: str) -> Optional[Folder]:
        """Look up a folder by its absolute filesystem path."""
        with self.session_factory() as session:
            db_folder = session.scalar(
                select(DBFolder).where(DBFolder.absolute_path == path)
            )
            return self._db_to_model(db_folder) if db_folder else None

    def get_all(self) -> List[Folder]:
        """Get all folders ordered by name."""
        with self.session_factory() as session:
            result = session.scalars(select(DBFolder).order_by(DBFolder.name))
            return [self._db_to_model(db) for db in result.all()]

    def insert(self, folder: Folder) -> int:
        """Insert a new folder and return its generated ID.

        Any ``id`` already set on ``folder`` is ignored.

        Raises:
            ValidationError: If a folder already exists at the same path.
        """
        with self.session_factory() as session:
            existing = session.scalar(
                select(DBFolder.id).where(DBFolder.absolute_path == folder.absolute_path)
            )
            if existing is not None:
                raise ValidationError(
                    f"Folder already exists at '{folder.absolute_path}'",
                    field="absolute_path",
                    value=folder.absolute_path,
                    code=ErrorCode.FOLDER_PATH_CONFLICT,
                )
            db_folder = DBFolder(
                name=folder.name,
                parent_id=folder.parent_id,
                absolute_path=folder.absolute_path,
                created_at=to_db_datetime(folder.created_at),
                modified_at=to_db_datetime(folder.modified_at),
            )
            session.add(db_folder)
            session.commit()
            logger.debug(f"Inserted folder {db_folder.id}: {folder.absolute_path}")
            return db_folder.id

    def upsert(self, folder: Folder) -> int:
        """Insert a folder, replacing any row that holds the same path.

        Returns:
            The ID of the stored row.
        """
        values = {
            "name": folder.name,
            "parent_id": folder.parent_id,
            "absolute_path": folder.absolute_path,
            "created_at": to_db_datetime(folder.created_at),
            "modified_at": to_db_datetime(folder.modified_at),
        }
        if folder.id is not None:
            values["id"] = folder.id
        stmt = sqlite_insert(DBFolder).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=[DBFolder.absolute_path],
            set_={
                "name": stmt.excluded.name,
                "parent_id": stmt.excluded.parent_id,
                "modified_at": stmt.excluded.modified_at,
            },
        )
        with self.session_factory() as session:
            session.execute(stmt)
            session.commit()
            return session.scalar(
                select(DBFolder.id).where(DBFolder.absolute_path == folder.absolute_path)
            )

    def update(self, folder: Folder) -> Folder:
        """Write every field of ``folder`` to its existing row.

        Raises:
            ValidationError: If the folder has no ID or no longer exists.
        """
        if folder.id is None:
            raise ValidationError("Cannot update a folder without an ID", field="id")
        with self.session_factory() as session:
            db_folder = session.get(DBFolder, folder.id)
            if not db_folder:
                raise ValidationError(
                    f"Folder {folder.id} not found",
                    field="id",
                    value=folder.id,
                    code=ErrorCode.FOLDER_NOT_FOUND,
                )
            db_folder.name = folder.name
            db_folder.parent_id = folder.parent_id
            db_folder.absolute_path = folder.absolute_path
            db_folder.modified_at = to_db_datetime(folder.modified_at)
            session.commit()
            return folder

    def delete(self, folder: Folder) -> bool:
        """Delete a folder row; the database cascades to its descendants.

        Returns:
            True if a row was deleted, False if it was already gone.
        """
        with self.session_factory() as session:
            result = session.execute(delete(DBFolder).where(DBFolder.id == folder.id))
            session.commit()
            return result.rowcount > 0

    @staticmethod
    def _db_to_model(db_folder: DBFolder) -> Folder:
        """Convert a DBFolder row to a domain Folder."""
        return Folder(
            id=db_folder.id,
            name=db_folder.name,
            parent_id=db_folder.parent_id,
            absolute_path=db_folder.absolute_path,
            created_at=ensure_timezone_aware(db_folder.created_at),
            modified_at=ensure_timezone_aware(db_folder.modified_at),
        )
