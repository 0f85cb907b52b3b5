"""Configuration module for notevault."""

import logging
import os
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, Field, model_validator

# Load environment variables from the project root .env file.
# Anchored to __file__ so it works regardless of the process CWD.
_PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
load_dotenv(_PROJECT_ROOT / ".env")

# User-level config lives alongside the default data directory
_USER_ENV = Path.home() / ".notevault" / ".env"
load_dotenv(_USER_ENV)


logger = logging.getLogger(__name__)

# Smallest copy buffer accepted for archive streaming (bytes)
_MIN_COPY_BUFFER = 512


class NoteVaultConfig(BaseModel):
    """Configuration for notevault."""

    # Base directory that relative paths are resolved against
    base_dir: Path = Field(
        default_factory=lambda: Path(os.getenv("NOTEVAULT_BASE_DIR", "."))
    )
    # Directory tree mirrored into the folder/note tables
    notes_root: Path = Field(
        default_factory=lambda: Path(os.getenv("NOTEVAULT_NOTES_ROOT", "data/notes"))
    )
    # Database configuration
    database_path: Path = Field(
        default_factory=lambda: Path(
            os.getenv("NOTEVAULT_DATABASE_PATH", "data/db/notevault.db")
        )
    )
    # Local storage for inline images restored from archives
    images_dir: Path = Field(
        default_factory=lambda: Path(os.getenv("NOTEVAULT_IMAGES_DIR", "data/images"))
    )
    # Legacy attachment storage ("media" entries of older archives)
    media_dir: Path = Field(
        default_factory=lambda: Path(os.getenv("NOTEVAULT_MEDIA_DIR", "data/media"))
    )
    log_dir: Path = Field(
        default_factory=lambda: Path(
            os.getenv("NOTEVAULT_LOG_DIR", str(Path.home() / ".notevault" / "logs"))
        )
    )
    # Chunk size used when streaming archive entries
    copy_buffer_size: int = Field(
        default_factory=lambda: int(os.getenv("NOTEVAULT_COPY_BUFFER_SIZE", "2048"))
    )

    @model_validator(mode="after")
    def _validate_buffer(self) -> "NoteVaultConfig":
        """Reject copy buffers too small to stream archives sensibly."""
        if self.copy_buffer_size < _MIN_COPY_BUFFER:
            raise ValueError(f"copy_buffer_size must be >= {_MIN_COPY_BUFFER}")
        return self

    def get_absolute_path(self, path: Path) -> Path:
        """Convert a relative path to an absolute path based on base_dir."""
        if path.is_absolute():
            return path
        return self.base_dir / path

    def get_db_url(self) -> str:
        """Get the database URL for SQLite."""
        db_path = self.get_absolute_path(self.database_path)
        db_path.parent.mkdir(parents=True, exist_ok=True)
        return f"sqlite:///{db_path}"


# Create a global config instance
config = NoteVaultConfig()
