"""SQLAlchemy database models for notevault."""
import datetime
from typing import Optional

from sqlalchemy import (Boolean, Column, DateTime, ForeignKey, Integer, String,
                        Table, Text, create_engine, event)
from sqlalchemy.orm import declarative_base, relationship, sessionmaker
from sqlalchemy.pool import QueuePool

from notevault.config import config

# Create base class for SQLAlchemy models
Base = declarative_base()


def _utcnow() -> datetime.datetime:
    """Column default; SQLite stores naive UTC timestamps."""
    return datetime.datetime.now(datetime.timezone.utc).replace(tzinfo=None)

# Association table for tags and notes
note_tags = Table(
    "note_tags",
    Base.metadata,
    Column("note_id", Integer, ForeignKey("notes.id", ondelete="CASCADE"), primary_key=True),
    Column("tag_id", Integer, ForeignKey("tags.id", ondelete="CASCADE"), primary_key=True),
)


class DBFolder(Base):
    """Database model for a folder (one directory of the mirrored tree)."""
    __tablename__ = "folders"
    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False)
    # Deleting a folder removes its whole subtree
    parent_id = Column(
        Integer, ForeignKey("folders.id", ondelete="CASCADE"), nullable=True, index=True
    )
    absolute_path = Column(Text, nullable=False, unique=True)
    created_at = Column(DateTime, default=_utcnow, nullable=False)
    modified_at = Column(DateTime, default=_utcnow, nullable=False)

    def __repr__(self) -> str:
        """Return string representation of folder."""
        return f"<Folder(id={self.id}, path='{self.absolute_path}')>"


class DBNote(Base):
    """Database model for a note."""
    __tablename__ = "notes"
    id = Column(Integer, primary_key=True, autoincrement=True)
    title = Column(String(255), nullable=False, index=True)
    content = Column(Text, nullable=False, default="")
    # Notes survive the deletion of their folder
    folder_id = Column(
        Integer, ForeignKey("folders.id", ondelete="SET NULL"), nullable=True, index=True
    )
    file_path = Column(Text, nullable=True, index=True)
    creation_date = Column(DateTime, default=_utcnow, nullable=False)
    modified_date = Column(DateTime, default=_utcnow, nullable=False)
    is_local_only = Column(Boolean, default=False, nullable=False)
    attachments_json = Column(Text, nullable=False, default="[]")
    is_deleted = Column(Boolean, default=False, nullable=False, index=True)
    deletion_date = Column(DateTime, nullable=True)

    # Relationships
    tags = relationship(
        "DBTag", secondary=note_tags, back_populates="notes"
    )

    def __repr__(self) -> str:
        """Return string representation of note."""
        return f"<Note(id={self.id}, title='{self.title}')>"


class DBTag(Base):
    """Database model for a tag."""
    __tablename__ = "tags"
    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), unique=True, nullable=False)

    # Relationships
    notes = relationship(
        "DBNote", secondary=note_tags, back_populates="tags"
    )

    def __repr__(self) -> str:
        """Return string representation of tag."""
        return f"<Tag(id={self.id}, name='{self.name}')>"


class DBReminder(Base):
    """Database model for a reminder."""
    __tablename__ = "reminders"
    id = Column(Integer, primary_key=True, autoincrement=True)
    note_id = Column(
        Integer, ForeignKey("notes.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name = Column(String(255), nullable=False, default="")
    date = Column(DateTime, nullable=False)

    def __repr__(self) -> str:
        """Return string representation of reminder."""
        return f"<Reminder(id={self.id}, note_id={self.note_id}, date={self.date})>"


class DBIdMapping(Base):
    """Database model linking a local note to a sync provider identity."""
    __tablename__ = "id_mappings"
    mapping_id = Column(Integer, primary_key=True, autoincrement=True)
    # Mappings live only as long as their note
    local_note_id = Column(
        Integer, ForeignKey("notes.id", ondelete="CASCADE"), nullable=False, index=True
    )
    provider_id = Column(String(255), nullable=True)
    provider = Column(String(50), nullable=True)
    is_deleted_locally = Column(Boolean, default=False, nullable=False)

    def __repr__(self) -> str:
        """Return string representation of id mapping."""
        return (
            f"<IdMapping(id={self.mapping_id}, note={self.local_note_id}, "
            f"provider='{self.provider}')>"
        )


def init_db(db_url: Optional[str] = None):
    """Initialize the database and return its engine.

    Applies the SQLite settings the sync and restore code rely on:
    - foreign_keys=ON so folder deletes cascade and notes lose their folder_id
    - WAL (Write-Ahead Logging) mode for atomic writes
    - NORMAL synchronous mode
    - QueuePool with pre-ping for connection reuse

    Args:
        db_url: SQLAlchemy URL. Defaults to the configured database path.
    """
    engine = create_engine(
        db_url or config.get_db_url(),
        poolclass=QueuePool,
        pool_size=5,
        max_overflow=10,
        pool_timeout=30,
        pool_pre_ping=True,
    )

    # Apply PRAGMA settings on every connection
    @event.listens_for(engine, "connect")
    def set_sqlite_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        # Cascades and SET NULL are only honoured with foreign keys enabled
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA synchronous=NORMAL")
        cursor.close()

    Base.metadata.create_all(engine)
    return engine


def get_session_factory(engine=None):
    """Get a session factory for the database."""
    if engine is None:
        engine = init_db()
    return sessionmaker(bind=engine, expire_on_commit=False)
