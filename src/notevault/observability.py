"""Logging setup and run metrics for notevault.

Log records of every ``notevault.*`` module go to a rotating file in the
configured log directory. Sync, restore and archive operations are timed
through ``timed_operation``, which also sums the counts each run reports
(folders created, notes binned, notes restored and so on) so a saved metrics
file shows what the engines actually did.
"""
import json
import logging
import os
import time
from collections import defaultdict
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from threading import Lock
from typing import Any, Dict, Optional, Union

logger = logging.getLogger(__name__)

DEFAULT_METRICS_FILE = Path.home() / ".notevault" / "metrics.json"
LOG_FILE_NAME = "notevault.log"

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s - %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%dT%H:%M:%S%z"


def configure_logging(
    log_dir: Union[str, Path],
    level: int = logging.INFO,
    max_bytes: int = 10 * 1024 * 1024,  # 10 MB per file
    backup_count: int = 5,
    console: bool = True,
) -> Path:
    """Attach a rotating log file (and optionally stderr) to the ``notevault`` logger.

    Calling this again for the same directory only updates the level; it
    never attaches a second handler for the same file.

    Args:
        log_dir: Directory for ``notevault.log`` and its rotations.
        level: Logging level for the package logger and its handlers.
        max_bytes: Size at which the log file is rotated.
        backup_count: Number of rotated files to keep.
        console: Also log to stderr.

    Returns:
        The log directory.
    """
    log_path = Path(log_dir)
    log_path.mkdir(parents=True, exist_ok=True)
    log_file = os.path.abspath(log_path / LOG_FILE_NAME)

    package_logger = logging.getLogger("notevault")
    package_logger.setLevel(level)
    formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)

    file_handler = next(
        (
            h for h in package_logger.handlers
            if isinstance(h, RotatingFileHandler) and h.baseFilename == log_file
        ),
        None,
    )
    if file_handler is None:
        file_handler = RotatingFileHandler(
            log_file, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8"
        )
        file_handler.setFormatter(formatter)
        package_logger.addHandler(file_handler)
    file_handler.setLevel(level)

    if console and not any(
        type(h) is logging.StreamHandler for h in package_logger.handlers
    ):
        console_handler = logging.StreamHandler()
        console_handler.setLevel(level)
        console_handler.setFormatter(formatter)
        package_logger.addHandler(console_handler)

    package_logger.info(f"Logging to {log_file}")
    return log_path


@dataclass
class OperationStats:
    """Accumulated runs of one engine operation."""
    runs: int = 0
    failures: int = 0
    total_ms: float = 0.0
    slowest_ms: float = 0.0
    last_error: Optional[str] = None
    # Summed integer results, e.g. {"notes_created": 12, "folders_removed": 1}
    counts: Dict[str, int] = field(default_factory=dict)


class MetricsCollector:
    """Thread-safe totals for sync, restore and archive runs.

    The watcher runs syncs on its own thread, so every update takes the lock.
    """

    def __init__(self, metrics_file: Optional[Union[str, Path]] = None):
        self._stats: Dict[str, OperationStats] = defaultdict(OperationStats)
        self._lock = Lock()
        self._started_at = datetime.now(timezone.utc)
        self._metrics_file = Path(metrics_file) if metrics_file else DEFAULT_METRICS_FILE

    def record_operation(
        self,
        operation: str,
        duration_ms: float,
        success: bool,
        error: Optional[str] = None,
        counts: Optional[Dict[str, int]] = None,
    ) -> None:
        """Add one run of ``operation`` and the counts it reported."""
        with self._lock:
            stats = self._stats[operation]
            stats.runs += 1
            stats.total_ms += duration_ms
            stats.slowest_ms = max(stats.slowest_ms, duration_ms)
            if not success:
                stats.failures += 1
                stats.last_error = error
            for key, value in (counts or {}).items():
                stats.counts[key] = stats.counts.get(key, 0) + value

    def snapshot(self) -> Dict[str, Dict[str, Any]]:
        """Per-operation totals as plain JSON-ready dicts."""
        with self._lock:
            return {
                name: {
                    "runs": s.runs,
                    "failures": s.failures,
                    "avg_ms": round(s.total_ms / s.runs, 2) if s.runs else 0.0,
                    "slowest_ms": round(s.slowest_ms, 2),
                    "last_error": s.last_error,
                    "counts": dict(s.counts),
                }
                for name, s in self._stats.items()
            }

    def save_metrics(self) -> bool:
        """Write the totals to the metrics file.

        Returns:
            True if saved successfully, False otherwise.
        """
        data = {
            "started_at": self._started_at.isoformat(),
            "saved_at": datetime.now(timezone.utc).isoformat(),
            "operations": self.snapshot(),
        }
        try:
            self._metrics_file.parent.mkdir(parents=True, exist_ok=True)
            # Atomic write via temp file
            temp_file = self._metrics_file.with_suffix(".tmp")
            with open(temp_file, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2)
            temp_file.replace(self._metrics_file)
            return True
        except (OSError, TypeError) as e:
            logger.error(f"Failed to save metrics to {self._metrics_file}: {e}")
            return False


# Process-wide collector, saved by the CLI on exit
metrics = MetricsCollector()


@contextmanager
def timed_operation(operation: str, **context):
    """Time an engine operation and record it in ``metrics``.

    Yields a dict the caller fills with results. Integer entries are summed
    into the operation's counts; everything else is only logged.

    Example:
        with timed_operation("sync_from_filesystem", root=root) as op:
            op["notes_created"] = created
    """
    started = time.perf_counter()
    result_info: Dict[str, Any] = {}
    if context:
        logger.debug(f"{operation} started ({', '.join(f'{k}={v}' for k, v in context.items())})")

    error = None
    try:
        yield result_info
    except Exception as e:
        error = str(e)
        raise
    finally:
        duration_ms = (time.perf_counter() - started) * 1000
        counts = {
            k: v for k, v in result_info.items() if isinstance(v, int) and not isinstance(v, bool)
        }
        metrics.record_operation(operation, duration_ms, error is None, error, counts)
        outcome = "ok" if error is None else f"failed: {error}"
        summary = " ".join(f"{k}={v}" for k, v in result_info.items())
        logger.debug(f"{operation} {outcome} in {duration_ms:.1f}ms {summary}".rstrip())
