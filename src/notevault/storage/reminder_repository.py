"""Repositories for reminders and sync-provider id mappings."""
import logging
from typing import List

from sqlalchemy import select

from notevault.models.db_models import DBIdMapping, DBReminder
from notevault.models.schema import IdMapping, Reminder, ensure_timezone_aware
from notevault.storage.base import Repository, to_db_datetime

logger = logging.getLogger(__name__)


class ReminderRepository(Repository[Reminder]):
    """Repository for note reminders.

    Delivering the reminder is not this class's job; callers hand the
    inserted reminder to a ReminderScheduler.
    """

    def get_by_note_id(self, note_id: int) -> List[Reminder]:
        """Get the reminders of a note, earliest first."""
        with self.session_factory() as session:
            result = session.scalars(
                select(DBReminder)
                .where(DBReminder.note_id == note_id)
                .order_by(DBReminder.date)
            )
            return [self._db_to_model(db) for db in result.all()]

    def get_all(self) -> List[Reminder]:
        """Get every reminder, earliest first."""
        with self.session_factory() as session:
            result = session.scalars(select(DBReminder).order_by(DBReminder.date))
            return [self._db_to_model(db) for db in result.all()]

    def insert(self, reminder: Reminder) -> int:
        """Insert a reminder and return its generated ID."""
        with self.session_factory() as session:
            db_reminder = DBReminder(
                note_id=reminder.note_id,
                name=reminder.name,
                date=to_db_datetime(reminder.date),
            )
            session.add(db_reminder)
            session.commit()
            return db_reminder.id

    @staticmethod
    def _db_to_model(db_reminder: DBReminder) -> Reminder:
        return Reminder(
            id=db_reminder.id,
            note_id=db_reminder.note_id,
            name=db_reminder.name,
            date=ensure_timezone_aware(db_reminder.date),
        )


class IdMappingRepository(Repository[IdMapping]):
    """Repository for links between local notes and sync-provider identities."""

    def get_all_by_local_id(self, local_note_id: int) -> List[IdMapping]:
        """Get every provider mapping of a local note."""
        with self.session_factory() as session:
            result = session.scalars(
                select(DBIdMapping)
                .where(DBIdMapping.local_note_id == local_note_id)
                .order_by(DBIdMapping.mapping_id)
            )
            return [self._db_to_model(db) for db in result.all()]

    def get_all(self) -> List[IdMapping]:
        """Get every stored mapping."""
        with self.session_factory() as session:
            result = session.scalars(select(DBIdMapping).order_by(DBIdMapping.mapping_id))
            return [self._db_to_model(db) for db in result.all()]

    def assign_provider_to_note(self, mapping: IdMapping) -> int:
        """Store a new mapping and return its generated ID.

        Any ``mapping_id`` already set on ``mapping`` is ignored.
        """
        with self.session_factory() as session:
            db_mapping = DBIdMapping(
                local_note_id=mapping.local_note_id,
                provider_id=mapping.provider_id,
                provider=mapping.provider,
                is_deleted_locally=mapping.is_deleted_locally,
            )
            session.add(db_mapping)
            session.commit()
            logger.debug(
                f"Assigned provider '{mapping.provider}' to note {mapping.local_note_id}"
            )
            return db_mapping.mapping_id

    @staticmethod
    def _db_to_model(db_mapping: DBIdMapping) -> IdMapping:
        return IdMapping(
            mapping_id=db_mapping.mapping_id,
            local_note_id=db_mapping.local_note_id,
            provider_id=db_mapping.provider_id,
            provider=db_mapping.provider,
            is_deleted_locally=db_mapping.is_deleted_locally,
        )
