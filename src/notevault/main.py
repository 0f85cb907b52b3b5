#!/usr/bin/env python
"""Command line entry point for notevault."""
import argparse
import atexit
import logging
import os
import sys
import time
from pathlib import Path

from notevault import __version__
from notevault.backup import BackupManager, IncludeFiles, ReferenceOnly, SnapshotMigrationHandler
from notevault.config import config
from notevault.exceptions import NoteVaultError
from notevault.models.db_models import get_session_factory, init_db
from notevault.observability import configure_logging, metrics
from notevault.storage import (
    FolderRepository,
    IdMappingRepository,
    ImageStorage,
    NoteRepository,
    ReminderRepository,
    TagRepository,
)
from notevault.sync import FileWatcher, FolderSyncManager

logger = logging.getLogger(__name__)


def parse_args(argv=None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(description="Mirror a notes directory into SQLite and back it up")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "--notes-root",
        help="Directory tree mirrored into the database",
        type=str,
        default=os.environ.get("NOTEVAULT_NOTES_ROOT")
    )
    parser.add_argument(
        "--database-path",
        help="SQLite database file path",
        type=str,
        default=os.environ.get("NOTEVAULT_DATABASE_PATH")
    )
    parser.add_argument(
        "--log-level",
        help="Logging level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=os.environ.get("NOTEVAULT_LOG_LEVEL", "INFO")
    )

    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("sync", help="Sync the notes root into the database once")
    sub.add_parser("watch", help="Sync, then keep syncing on every change until interrupted")

    export = sub.add_parser("export", help="Write a backup archive of all live notes")
    export.add_argument("destination", help="Archive file to write")
    export.add_argument(
        "--include-files",
        action="store_true",
        help="Embed attachment files in the archive instead of referencing them"
    )

    restore = sub.add_parser("import", help="Restore notes from a backup archive")
    restore.add_argument("archive", help="Archive file to read")
    return parser.parse_args(argv)


def update_config(args):
    """Update the global config with command line arguments."""
    if args.notes_root:
        config.notes_root = Path(args.notes_root)
    if args.database_path:
        config.database_path = Path(args.database_path)


def _save_metrics_on_exit():
    """Save metrics to disk on exit."""
    try:
        if metrics.save_metrics():
            logger.info("Metrics saved to disk on exit")
    except OSError as e:
        logger.warning(f"Failed to save metrics on exit: {e}")


class _LoggingProgress:
    """Reports archive export progress through the log."""

    def __init__(self):
        self.failed = False

    def on_progress_changed(self, current, total):
        logger.info(f"Export progress: {current}/{total}")

    def on_completion(self):
        logger.info("Export complete")

    def on_failure(self, error):
        self.failed = True
        logger.error(f"Export failed: {error}")


def build_engines(engine):
    """Wire repositories to a database engine and return the two engines."""
    session_factory = get_session_factory(engine)
    notes = NoteRepository(session_factory)
    folders = FolderRepository(session_factory)
    sync_manager = FolderSyncManager(folders, notes)
    backup_manager = BackupManager(
        note_repository=notes,
        folder_repository=folders,
        tag_repository=TagRepository(session_factory),
        reminder_repository=ReminderRepository(session_factory),
        id_mapping_repository=IdMappingRepository(session_factory),
        image_storage=ImageStorage(
            config.get_absolute_path(config.images_dir),
            config.get_absolute_path(config.media_dir),
        ),
    )
    return sync_manager, backup_manager


def run_command(args, sync_manager, backup_manager) -> int:
    """Execute one sub-command and return the process exit code."""
    notes_root = config.get_absolute_path(config.notes_root)

    if args.command == "sync":
        result = sync_manager.sync_from_filesystem(str(notes_root))
        logger.info(f"Sync finished: {result}")
        return 0

    if args.command == "watch":
        sync_manager.sync_from_filesystem(str(notes_root))
        watcher = FileWatcher(sync_manager)
        watcher.start(str(notes_root))
        try:
            while True:
                time.sleep(1)
        except KeyboardInterrupt:
            logger.info("Interrupted, stopping watcher")
        finally:
            watcher.shutdown()
        return 0

    if args.command == "export":
        handler = IncludeFiles() if args.include_files else ReferenceOnly()
        backup = backup_manager.create_backup(attachment_handler=handler)
        progress = _LoggingProgress()
        backup_manager.create_backup_zip_file(
            backup.serialize(),
            handler,
            args.destination,
            progress,
            inline_image_paths=backup_manager.image_storage.collect_inline_image_paths(backup.notes),
        )
        return 1 if progress.failed else 0

    if args.command == "import":
        backup = backup_manager.backup_from_zip_file(args.archive, SnapshotMigrationHandler())
        result = backup_manager.restore_notes_from_backup(backup)
        logger.info(f"Import finished: {result}")
        return 0

    return 2


def main(argv=None):
    """Run the notevault command line."""
    args = parse_args(argv)
    update_config(args)

    # Configure logging (console + persistent file logging with rotation)
    log_level = getattr(logging, args.log_level.upper(), logging.INFO)
    try:
        configure_logging(config.log_dir, level=log_level, console=True)
    except OSError as e:
        # Fall back to basic console logging if file logging fails
        logging.basicConfig(level=log_level)
        logger.warning(f"Failed to configure file logging: {e}")

    atexit.register(_save_metrics_on_exit)

    config.get_absolute_path(config.notes_root).mkdir(parents=True, exist_ok=True)

    try:
        logger.info(f"Using SQLite database: {config.get_db_url()}")
        engine = init_db()
    except Exception as e:
        logger.error(f"Failed to initialize database: {e}")
        sys.exit(1)

    sync_manager, backup_manager = build_engines(engine)
    try:
        code = run_command(args, sync_manager, backup_manager)
    except NoteVaultError as e:
        logger.error(str(e))
        code = 1
    sys.exit(code)


if __name__ == "__main__":
    main()
