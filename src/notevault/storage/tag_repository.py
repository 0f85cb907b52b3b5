"""Repository for tag storage and retrieval."""
import logging
from typing import List, Optional

from sqlalchemy import select, text

from notevault.models.db_models import DBTag, note_tags
from notevault.models.schema import Tag
from notevault.storage.base import Repository

logger = logging.getLogger(__name__)


class TagRepository(Repository[Tag]):
    """Repository for managing tags and their links to notes."""

    def get_by_name(self, tag_name: str) -> Optional[Tag]:
        """Get a tag by name.

        Args:
            tag_name: The name of the tag.

        Returns:
            The Tag object if found, None otherwise.
        """
        with self.session_factory() as session:
            db_tag = session.scalar(
                select(DBTag).where(DBTag.name == tag_name)
            )
            if not db_tag:
                return None

            return Tag(id=db_tag.id, name=db_tag.name)

    def get_all(self) -> List[Tag]:
        """Get all tags in the system.

        Returns:
            List of all Tag objects.
        """
        with self.session_factory() as session:
            db_tags = session.scalars(select(DBTag).order_by(DBTag.name)).all()

            return [Tag(id=tag.id, name=tag.name) for tag in db_tags]

    def get_by_note_id(self, note_id: int) -> List[Tag]:
        """Get all tags for a specific note.

        Args:
            note_id: The note ID.

        Returns:
            List of Tag objects.
        """
        with self.session_factory() as session:
            result = session.execute(
                select(DBTag.id, DBTag.name)
                .select_from(DBTag)
                .join(note_tags, DBTag.id == note_tags.c.tag_id)
                .where(note_tags.c.note_id == note_id)
                .order_by(DBTag.name)
            ).all()

            return [Tag(id=row[0], name=row[1]) for row in result]

    def insert(self, tag: Tag) -> int:
        """Insert a tag and return its ID.

        Any ``id`` already set on ``tag`` is ignored. If a tag with the same
        name appeared concurrently, that tag's ID is returned.
        """
        with self.session_factory() as session:
            # INSERT OR IGNORE handles the concurrent creation race
            session.execute(
                text("INSERT OR IGNORE INTO tags (name) VALUES (:name)"),
                {"name": tag.name}
            )
            session.commit()
            return session.scalar(select(DBTag.id).where(DBTag.name == tag.name))

    def add_tag_to_note(self, tag_id: int, note_id: int) -> None:
        """Attach a tag to a note (no-op if already attached).

        Args:
            tag_id: The tag ID.
            note_id: The note ID.
        """
        with self.session_factory() as session:
            session.execute(
                text(
                    "INSERT OR IGNORE INTO note_tags (note_id, tag_id) "
                    "VALUES (:note_id, :tag_id)"
                ),
                {"note_id": note_id, "tag_id": tag_id}
            )
            session.commit()
