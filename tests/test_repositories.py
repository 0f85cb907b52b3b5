"""Tests for the SQLAlchemy repositories."""
from datetime import timedelta

import pytest

from notevault.exceptions import ErrorCode, NoteNotFoundError, ValidationError
from notevault.models.schema import Attachment, AttachmentType, Folder, IdMapping, Note, Reminder, Tag, utc_now
from notevault.storage import NoteRepository


class TestFolderRepository:
    """Tests for FolderRepository."""

    def test_get_by_parent_is_ordered_by_name(self, folder_repository):
        root = folder_repository.insert(Folder(name="root", absolute_path="/r"))
        folder_repository.insert(Folder(name="b", parent_id=root, absolute_path="/r/b"))
        folder_repository.insert(Folder(name="a", parent_id=root, absolute_path="/r/a"))

        assert [f.name for f in folder_repository.get_by_parent(root)] == ["a", "b"]
        assert [f.name for f in folder_repository.get_by_parent(None)] == ["root"]

    def test_insert_rejects_duplicate_path(self, folder_repository):
        folder_repository.insert(Folder(name="a", absolute_path="/r/a"))

        with pytest.raises(ValidationError) as exc_info:
            folder_repository.insert(Folder(name="a", absolute_path="/r/a"))
        assert exc_info.value.code == ErrorCode.FOLDER_PATH_CONFLICT

    def test_upsert_replaces_row_at_same_path(self, folder_repository):
        first = folder_repository.upsert(Folder(name="old", absolute_path="/r/a"))
        second = folder_repository.upsert(Folder(name="new", absolute_path="/r/a"))

        assert first == second
        assert folder_repository.get_by_id(first).name == "new"
        assert len(folder_repository.get_all()) == 1

    def test_update_missing_folder_raises(self, folder_repository):
        with pytest.raises(ValidationError) as exc_info:
            folder_repository.update(Folder(id=42, name="x", absolute_path="/x"))
        assert exc_info.value.code == ErrorCode.FOLDER_NOT_FOUND

    def test_delete_cascades_to_subtree_and_detaches_notes(self, folder_repository, note_repository):
        a = folder_repository.insert(Folder(name="a", absolute_path="/r/a"))
        b = folder_repository.insert(Folder(name="b", parent_id=a, absolute_path="/r/a/b"))
        note_id = note_repository.insert(Note(title="n", folder_id=b), sync=False)

        assert folder_repository.delete(folder_repository.get_by_id(a)) is True

        assert folder_repository.get_all() == []
        assert note_repository.get(note_id).folder_id is None

    def test_delete_missing_folder_returns_false(self, folder_repository):
        assert folder_repository.delete(Folder(id=7, name="x", absolute_path="/x")) is False

    def test_empty_path_is_rejected(self):
        with pytest.raises(ValueError):
            Folder(name="x", absolute_path="  ")


class TestNoteRepository:
    """Tests for NoteRepository."""

    def test_insert_and_get(self, note_repository):
        note_id = note_repository.insert(
            Note(
                title="t",
                content="body",
                attachments=[Attachment(type=AttachmentType.IMAGE, path="/p.png", description="pic")],
            ),
            sync=False,
        )

        note = note_repository.get(note_id)
        assert note.title == "t"
        assert note.attachments[0].type == AttachmentType.IMAGE
        assert note.attachments[0].description == "pic"
        assert note.creation_date.tzinfo is not None

    def test_update_missing_note_raises(self, note_repository):
        with pytest.raises(NoteNotFoundError):
            note_repository.update(Note(id=99, title="ghost"))

    def test_update_without_id_raises(self, note_repository):
        with pytest.raises(ValidationError):
            note_repository.update(Note(title="new"))

    def test_move_to_bin_hides_note(self, note_repository):
        note_id = note_repository.insert(Note(title="t"), sync=False)

        binned = note_repository.move_to_bin(note_repository.get(note_id), sync=False)

        assert binned.is_deleted
        assert note_repository.get_all() == []
        assert [n.id for n in note_repository.get_all(include_deleted=True)] == [note_id]

    def test_sync_flag_controls_hook(self, session_factory):
        calls = []
        repo = NoteRepository(session_factory, sync_hook=lambda action, note: calls.append(action))

        note_id = repo.insert(Note(title="a"))
        note = repo.get(note_id)
        repo.update(note, sync=False)
        repo.update(note)
        repo.move_to_bin(note)
        repo.insert(Note(title="quiet"), sync=False)

        assert calls == ["insert", "update", "bin"]

    def test_tags_are_loaded(self, note_repository, tag_repository):
        note_id = note_repository.insert(Note(title="t"), sync=False)
        tag_repository.add_tag_to_note(tag_repository.insert(Tag(name="x")), note_id)

        assert [t.name for t in note_repository.get(note_id).tags] == ["x"]


class TestTagRepository:
    """Tests for TagRepository."""

    def test_insert_same_name_returns_same_id(self, tag_repository):
        assert tag_repository.insert(Tag(name="work")) == tag_repository.insert(Tag(name="work"))
        assert len(tag_repository.get_all()) == 1

    def test_add_tag_to_note_is_idempotent(self, tag_repository, note_repository):
        note_id = note_repository.insert(Note(title="t"), sync=False)
        tag_id = tag_repository.insert(Tag(name="work"))

        tag_repository.add_tag_to_note(tag_id, note_id)
        tag_repository.add_tag_to_note(tag_id, note_id)

        assert [t.name for t in tag_repository.get_by_note_id(note_id)] == ["work"]

    def test_get_by_name_missing(self, tag_repository):
        assert tag_repository.get_by_name("nope") is None


class TestReminderAndMappingRepositories:
    """Tests for ReminderRepository and IdMappingRepository."""

    def test_reminders_by_note(self, reminder_repository, note_repository):
        note_id = note_repository.insert(Note(title="t"), sync=False)
        later = utc_now() + timedelta(days=2)
        sooner = utc_now() + timedelta(days=1)
        reminder_repository.insert(Reminder(note_id=note_id, name="later", date=later))
        reminder_repository.insert(Reminder(note_id=note_id, name="sooner", date=sooner))

        reminders = reminder_repository.get_by_note_id(note_id)

        assert [r.name for r in reminders] == ["sooner", "later"]
        assert not reminders[0].has_expired()

    def test_mapping_ignores_given_id(self, id_mapping_repository, note_repository):
        note_id = note_repository.insert(Note(title="t"), sync=False)

        new_id = id_mapping_repository.assign_provider_to_note(
            IdMapping(mapping_id=500, local_note_id=note_id, provider="nextcloud", provider_id="r1")
        )

        mappings = id_mapping_repository.get_all_by_local_id(note_id)
        assert [m.mapping_id for m in mappings] == [new_id]
        assert mappings[0].provider == "nextcloud"
