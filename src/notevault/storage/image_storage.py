"""Local storage for inline images and legacy attachment files."""
import logging
import os
import re
import shutil
import uuid
from pathlib import Path
from typing import Iterable, List, Optional, Union

from notevault.models.schema import Note
from notevault.utils import is_under, list_names, unique_filename

logger = logging.getLogger(__name__)

# Archive directory names; also the directory names used in local storage
IMAGES_FOLDER = "images"
MEDIA_FOLDER = "media"
# Per-note image directory, next to the note's markdown file
ASSETS_FOLDER = "assets"

# Matches ![alt](file:///absolute/path) and captures /absolute/path
IMAGE_REGEX = re.compile(r"!\[.*?]\(file://(/[^)]*)\)")
# Matches ![alt](assets/name.png) and captures assets/name.png
RELATIVE_IMAGE_REGEX = re.compile(r"!\[.*?]\((assets/[^)]*)\)")

DEFAULT_IMAGE_EXTENSION = "jpg"

PathLike = Union[str, Path]


class ImageStorage:
    """Owns the local images and media directories.

    Both directories are created on first access.

    Args:
        images_dir: Where inline images referenced from note content live.
        media_dir: Where legacy attachment files live.
    """

    def __init__(self, images_dir: Path, media_dir: Path) -> None:
        self._images_dir = Path(images_dir)
        self._media_dir = Path(media_dir)

    @property
    def images_dir(self) -> Path:
        self._images_dir.mkdir(parents=True, exist_ok=True)
        return self._images_dir

    @property
    def media_dir(self) -> Path:
        self._media_dir.mkdir(parents=True, exist_ok=True)
        return self._media_dir

    def attachment_path(self, file_name: str) -> str:
        """Resolve a legacy attachment file name to its location in media storage."""
        return str(self.media_dir / file_name)

    def copy_image_to_storage(self, source: PathLike, suggested_name: Optional[str] = None) -> Optional[str]:
        """Copy an image file into the images directory.

        The stored name is ``suggested_name`` (or a random ``img_<uuid>``)
        plus the source's extension, made unique with ``base_N.ext``.

        Returns:
            Absolute path of the stored copy, or None if the copy failed.
        """
        dest = self._copy_into(source, self.images_dir, suggested_name)
        return str(dest) if dest else None

    def copy_image_for_note(
        self,
        source: PathLike,
        note_directory: Optional[PathLike] = None,
        suggested_name: Optional[str] = None,
    ) -> Optional[str]:
        """Copy an image for embedding in a note and return the link target.

        With ``note_directory`` the image goes to its ``assets/`` subdirectory
        and the result is ``assets/<name>``; otherwise it goes to the images
        directory and the result is a ``file://`` URI. None if the copy failed.
        """
        if note_directory is None:
            dest = self._copy_into(source, self.images_dir, suggested_name)
            return f"file://{dest}" if dest else None

        assets_dir = Path(note_directory) / ASSETS_FOLDER
        try:
            assets_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            logger.error(f"Cannot create assets directory {assets_dir}: {e}")
            return None
        dest = self._copy_into(source, assets_dir, suggested_name)
        return f"{ASSETS_FOLDER}/{dest.name}" if dest else None

    @staticmethod
    def _copy_into(source: PathLike, target_dir: Path, suggested_name: Optional[str]) -> Optional[Path]:
        extension = Path(source).suffix.lstrip(".").lower() or DEFAULT_IMAGE_EXTENSION
        base = suggested_name if suggested_name and suggested_name.strip() else f"img_{uuid.uuid4()}"
        dest = target_dir / unique_filename(list_names(str(target_dir)), f"{base}.{extension}")
        try:
            shutil.copyfile(source, dest)
        except OSError as e:
            logger.error(f"Failed to copy image {source} to {dest}: {e}")
            if dest.exists():
                dest.unlink()
            return None
        logger.debug(f"Stored image {source} as {dest}")
        return dest

    @staticmethod
    def parse_image_paths(content: str) -> List[str]:
        """Extract absolute paths of ``![...](file:///path)`` image tags in ``content``."""
        return IMAGE_REGEX.findall(content)

    @staticmethod
    def parse_relative_image_paths(content: str) -> List[str]:
        """Extract ``assets/...`` paths of relative image tags in ``content``."""
        return RELATIVE_IMAGE_REGEX.findall(content)

    def delete_images_referenced_in(self, content: str, note_directory: Optional[PathLike] = None) -> int:
        """Delete the image files that ``content`` links to.

        ``file://`` images are always removed. Relative ``assets/`` images are
        removed only when ``note_directory`` is given, and never outside it.
        Failures are logged and skipped.

        Returns:
            Number of files deleted.
        """
        targets = list(self.parse_image_paths(content))
        if note_directory is not None:
            base = os.path.abspath(os.fspath(note_directory))
            for rel_path in self.parse_relative_image_paths(content):
                path = os.path.normpath(os.path.join(base, rel_path))
                if is_under(path, os.path.join(base, ASSETS_FOLDER)):
                    targets.append(path)
                else:
                    logger.warning(f"Ignoring image link outside {base}: {rel_path}")

        deleted = 0
        for path in targets:
            try:
                os.remove(path)
                deleted += 1
            except FileNotFoundError:
                continue
            except OSError as e:
                logger.warning(f"Could not delete image {path}: {e}")
        return deleted

    def collect_inline_image_paths(self, notes: Iterable[Note]) -> List[str]:
        """Gather the inline image paths of several notes, first occurrence wins."""
        seen = {}
        for note in notes:
            for path in self.parse_image_paths(note.content):
                seen.setdefault(path, None)
        logger.debug(f"Collected {len(seen)} inline image paths")
        return list(seen)
