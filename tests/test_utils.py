"""Tests for path and file name helpers."""
import pytest

from notevault.models.schema import Note
from notevault.storage.image_storage import ImageStorage
from notevault.utils import is_under, list_names, replace_path_prefix, unique_filename


class TestUniqueFilename:
    """Tests for unique_filename."""

    @pytest.mark.parametrize(
        "existing, desired, expected",
        [
            ([], "cat.png", "cat.png"),
            (["cat.png"], "cat.png", "cat_1.png"),
            (["cat.png", "cat_1.png"], "cat.png", "cat_2.png"),
            (["cat.png", "cat_2.png"], "cat.png", "cat_1.png"),
            (["README"], "README", "README_1"),
            ([".env"], ".env", ".env_1"),
            (["a.tar.gz"], "a.tar.gz", "a.tar_1.gz"),
        ],
    )
    def test_names(self, existing, desired, expected):
        assert unique_filename(existing, desired) == expected


class TestPaths:
    """Tests for path containment helpers."""

    def test_is_under(self):
        assert is_under("/notes/a/b.md", "/notes")
        assert is_under("/notes", "/notes")
        assert is_under("/notes/a", "/notes/")
        assert not is_under("/notes-old/a.md", "/notes")
        assert not is_under("/other", "/notes")

    def test_replace_path_prefix(self):
        assert replace_path_prefix("/r/A/B/n.md", "/r/A", "/r/Z") == "/r/Z/B/n.md"

    def test_list_names_of_missing_directory(self, tmp_path):
        assert list_names(str(tmp_path / "nope")) == []


class TestImageStorage:
    """Tests for ImageStorage."""

    def test_parse_image_paths(self):
        content = "a ![x](file:///img/a.png) b ![](file:///img/b.jpg) ![web](https://e.com/c.png)"

        assert ImageStorage.parse_image_paths(content) == ["/img/a.png", "/img/b.jpg"]

    def test_collect_deduplicates(self, image_storage):
        notes = [
            Note(content="![a](file:///i/a.png) ![b](file:///i/b.png)"),
            Note(content="![a](file:///i/a.png)"),
        ]

        assert image_storage.collect_inline_image_paths(notes) == ["/i/a.png", "/i/b.png"]

    def test_directories_are_created_on_access(self, tmp_path):
        storage = ImageStorage(tmp_path / "imgs", tmp_path / "media")
        assert not (tmp_path / "imgs").exists()

        assert storage.images_dir.is_dir()
        assert storage.attachment_path("x.m4a") == str(tmp_path / "media" / "x.m4a")

    def test_copy_image_to_storage_avoids_collisions(self, image_storage, tmp_path):
        source = tmp_path / "photo.PNG"
        source.write_bytes(b"png")
        (image_storage.images_dir / "cat.png").write_bytes(b"old")

        stored = image_storage.copy_image_to_storage(source, suggested_name="cat")

        assert stored == str(image_storage.images_dir / "cat_1.png")
        assert (image_storage.images_dir / "cat_1.png").read_bytes() == b"png"
        assert (image_storage.images_dir / "cat.png").read_bytes() == b"old"

    def test_copy_image_without_name_or_extension(self, image_storage, tmp_path):
        source = tmp_path / "blob"
        source.write_bytes(b"raw")

        stored = image_storage.copy_image_to_storage(source, suggested_name="  ")

        name = stored.rsplit("/", 1)[-1]
        assert name.startswith("img_")
        assert name.endswith(".jpg")

    def test_copy_missing_image_returns_none(self, image_storage, tmp_path):
        assert image_storage.copy_image_to_storage(tmp_path / "gone.png", "gone") is None
        assert list(image_storage.images_dir.iterdir()) == []

    def test_copy_image_for_note_uses_assets(self, image_storage, tmp_path):
        source = tmp_path / "pic.gif"
        source.write_bytes(b"gif")
        note_dir = tmp_path / "notes" / "Travel"
        note_dir.mkdir(parents=True)

        first = image_storage.copy_image_for_note(source, note_dir, "pic")
        second = image_storage.copy_image_for_note(source, note_dir, "pic")

        assert (first, second) == ("assets/pic.gif", "assets/pic_1.gif")
        assert (note_dir / "assets" / "pic_1.gif").read_bytes() == b"gif"

    def test_copy_image_for_note_without_directory(self, image_storage, tmp_path):
        source = tmp_path / "pic.gif"
        source.write_bytes(b"gif")

        link = image_storage.copy_image_for_note(source, suggested_name="pic")

        assert link == f"file://{image_storage.images_dir / 'pic.gif'}"

    def test_parse_relative_image_paths(self):
        content = "![a](assets/a.png) ![b](file:///i/b.png) ![c](other/c.png)"

        assert ImageStorage.parse_relative_image_paths(content) == ["assets/a.png"]

    def test_delete_images_referenced_in(self, image_storage, tmp_path):
        stored = image_storage.images_dir / "a.png"
        stored.write_bytes(b"a")
        note_dir = tmp_path / "notes"
        (note_dir / "assets").mkdir(parents=True)
        (note_dir / "assets" / "b.png").write_bytes(b"b")
        outside = tmp_path / "secret.png"
        outside.write_bytes(b"s")
        content = (
            f"![a](file://{stored}) ![b](assets/b.png) "
            f"![gone](file://{tmp_path / 'gone.png'}) ![x](assets/../../secret.png)"
        )

        deleted = image_storage.delete_images_referenced_in(content, note_dir)

        assert deleted == 2
        assert not stored.exists()
        assert not (note_dir / "assets" / "b.png").exists()
        assert outside.exists()

    def test_relative_images_kept_without_note_directory(self, image_storage, tmp_path):
        note_dir = tmp_path / "notes"
        (note_dir / "assets").mkdir(parents=True)
        (note_dir / "assets" / "b.png").write_bytes(b"b")

        assert image_storage.delete_images_referenced_in("![b](assets/b.png)") == 0
        assert (note_dir / "assets" / "b.png").exists()
