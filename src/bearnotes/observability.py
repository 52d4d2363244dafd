"""Logging setup and per-operation metrics for the note store.

``configure_logging`` attaches a rotating log file (and optionally stderr)
to the ``bearnotes`` logger. ``timed_operation`` wraps a tool call, tags
its log lines with a short correlation ID and feeds the shared
``metrics`` collector, which keeps counts and durations per operation
name in a JSON file between runs.
"""
import json
import logging
import time
import uuid
from collections import defaultdict
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from threading import Lock
from typing import Any, Dict, Optional, Union

logger = logging.getLogger(__name__)

DEFAULT_LOG_DIR = Path.home() / ".bearnotes" / "logs"
DEFAULT_METRICS_FILE = Path.home() / ".bearnotes" / "metrics.json"
LOG_FILE_NAME = "bearnotes.log"

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s - %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%dT%H:%M:%S%z"


def _has_file_handler(target: logging.Logger, log_file: Path) -> bool:
    return any(
        isinstance(h, RotatingFileHandler) and Path(h.baseFilename) == log_file.resolve()
        for h in target.handlers
    )


def _has_console_handler(target: logging.Logger) -> bool:
    return any(
        type(h) is logging.StreamHandler for h in target.handlers
    )


def configure_logging(
    log_dir: Optional[Union[str, Path]] = None,
    level: int = logging.INFO,
    max_bytes: int = 10 * 1024 * 1024,
    backup_count: int = 5,
    console: bool = True,
) -> Path:
    """Send ``bearnotes.*`` log records to a rotating file under ``log_dir``.

    Calling it again with the same directory does not add a second
    handler, so the server entry point and tests can both call it.

    Args:
        log_dir: Where ``bearnotes.log`` lives; ``~/.bearnotes/logs`` if omitted
        level: Level applied to the package logger and its handlers
        max_bytes: Size at which the log file is rotated
        backup_count: Rotated files kept next to the live one
        console: Also write to stderr

    Returns:
        The log directory, created if missing.
    """
    log_path = Path(log_dir).expanduser() if log_dir else DEFAULT_LOG_DIR
    log_path.mkdir(parents=True, exist_ok=True)
    log_file = log_path / LOG_FILE_NAME

    package_logger = logging.getLogger("bearnotes")
    package_logger.setLevel(level)
    formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)

    new_handlers = []
    if not _has_file_handler(package_logger, log_file):
        new_handlers.append(
            RotatingFileHandler(
                log_file, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8"
            )
        )
    if console and not _has_console_handler(package_logger):
        # stderr: stdout carries the MCP stdio transport
        new_handlers.append(logging.StreamHandler())
    for handler in new_handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
        package_logger.addHandler(handler)

    package_logger.info(f"Writing logs to {log_file} (rotating at {max_bytes} bytes)")
    return log_path


def _parse_time(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


@dataclass
class OperationMetrics:
    """Running totals for one operation name."""
    count: int = 0
    success_count: int = 0
    error_count: int = 0
    total_duration_ms: float = 0.0
    min_duration_ms: Optional[float] = None
    max_duration_ms: float = 0.0
    last_error: Optional[str] = None
    last_error_time: Optional[datetime] = None

    def add(self, duration_ms: float, success: bool, error: Optional[str]) -> None:
        self.count += 1
        self.total_duration_ms += duration_ms
        if self.min_duration_ms is None or duration_ms < self.min_duration_ms:
            self.min_duration_ms = duration_ms
        self.max_duration_ms = max(self.max_duration_ms, duration_ms)
        if success:
            self.success_count += 1
        else:
            self.error_count += 1
            self.last_error = error
            self.last_error_time = datetime.now(timezone.utc)

    def to_record(self) -> Dict[str, Any]:
        """Raw totals, as stored in the metrics file."""
        return {
            "count": self.count,
            "success_count": self.success_count,
            "error_count": self.error_count,
            "total_duration_ms": self.total_duration_ms,
            "min_duration_ms": self.min_duration_ms,
            "max_duration_ms": self.max_duration_ms,
            "last_error": self.last_error,
            "last_error_time": self.last_error_time.isoformat() if self.last_error_time else None,
        }

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "OperationMetrics":
        return cls(
            count=record.get("count", 0),
            success_count=record.get("success_count", 0),
            error_count=record.get("error_count", 0),
            total_duration_ms=record.get("total_duration_ms", 0.0),
            min_duration_ms=record.get("min_duration_ms"),
            max_duration_ms=record.get("max_duration_ms", 0.0),
            last_error=record.get("last_error"),
            last_error_time=_parse_time(record.get("last_error_time")),
        )

    def snapshot(self) -> Dict[str, Any]:
        """Rounded view with average and success rate, for reports."""
        view = self.to_record()
        del view["total_duration_ms"]
        view.update(
            success_rate=self.success_count / self.count if self.count else 0,
            avg_duration_ms=round(self.total_duration_ms / self.count, 2) if self.count else 0,
            min_duration_ms=round(self.min_duration_ms or 0, 2),
            max_duration_ms=round(self.max_duration_ms, 2),
        )
        return view


class MetricsCollector:
    """Counts and timings of store operations, shared across threads.

    Totals are written to ``metrics_file`` every ``auto_save_interval``
    recorded operations (never when it is 0) and on ``save_metrics``, and
    read back when a collector is created, so numbers survive restarts.
    """

    def __init__(
        self,
        metrics_file: Optional[Union[str, Path]] = None,
        auto_save_interval: int = 100,
    ):
        self._metrics: Dict[str, OperationMetrics] = defaultdict(OperationMetrics)
        self._lock = Lock()
        self._start_time = datetime.now(timezone.utc)
        self._metrics_file = Path(metrics_file) if metrics_file else DEFAULT_METRICS_FILE
        self._auto_save_interval = auto_save_interval
        self._unsaved = 0
        self._load_metrics()

    def record_operation(
        self,
        operation: str,
        duration_ms: float,
        success: bool,
        error: Optional[str] = None
    ) -> None:
        """Add one run of ``operation`` to its totals."""
        with self._lock:
            self._metrics[operation].add(duration_ms, success, error)
            self._unsaved += 1
            if self._auto_save_interval > 0 and self._unsaved >= self._auto_save_interval:
                self._save_metrics_unlocked()

    def get_metrics(self) -> Dict[str, Dict[str, Any]]:
        """Per-operation snapshot, keyed by operation name."""
        with self._lock:
            return {name: m.snapshot() for name, m in self._metrics.items()}

    def get_summary(self) -> Dict[str, Any]:
        """Totals across every operation, as shown by ``bn_status``."""
        with self._lock:
            total = sum(m.count for m in self._metrics.values())
            succeeded = sum(m.success_count for m in self._metrics.values())
            return {
                "uptime_seconds": (datetime.now(timezone.utc) - self._start_time).total_seconds(),
                "total_operations": total,
                "total_success": succeeded,
                "total_errors": sum(m.error_count for m in self._metrics.values()),
                "overall_success_rate": succeeded / total if total else 1.0,
                "operations_tracked": sorted(self._metrics),
            }

    def reset(self) -> None:
        with self._lock:
            self._metrics.clear()
            self._start_time = datetime.now(timezone.utc)
            self._unsaved = 0

    def _load_metrics(self) -> None:
        if not self._metrics_file.exists():
            return
        try:
            data = json.loads(self._metrics_file.read_text(encoding="utf-8"))
            start_time = _parse_time(data.get("start_time"))
            loaded = {
                name: OperationMetrics.from_record(record)
                for name, record in data.get("operations", {}).items()
            }
        except (OSError, json.JSONDecodeError, ValueError, AttributeError) as e:
            # A damaged file only costs the history
            logger.warning(f"Ignoring metrics file {self._metrics_file}: {e}")
            return
        if start_time:
            self._start_time = start_time
        self._metrics.update(loaded)
        logger.debug(f"Loaded metrics for {len(loaded)} operations from {self._metrics_file}")

    def _save_metrics_unlocked(self) -> bool:
        """Write totals to the metrics file; the caller holds the lock."""
        data = {
            "start_time": self._start_time.isoformat(),
            "saved_at": datetime.now(timezone.utc).isoformat(),
            "operations": {name: m.to_record() for name, m in self._metrics.items()},
        }
        temp_file = self._metrics_file.with_suffix(".tmp")
        try:
            self._metrics_file.parent.mkdir(parents=True, exist_ok=True)
            temp_file.write_text(json.dumps(data, indent=2), encoding="utf-8")
            temp_file.replace(self._metrics_file)
        except OSError as e:
            logger.error(f"Failed to save metrics to {self._metrics_file}: {e}")
            return False
        self._unsaved = 0
        return True

    def save_metrics(self) -> bool:
        """Write totals now. Returns False if the file could not be written."""
        with self._lock:
            return self._save_metrics_unlocked()


metrics = MetricsCollector()


@contextmanager
def timed_operation(operation: str, **context):
    """Time a block and record it under ``operation`` in ``metrics``.

    Keyword arguments are logged with the start line. The yielded dict
    carries the correlation ID; anything the block adds to it is logged
    with the end line. Exceptions are recorded as failures and re-raised.

    Example:
        with timed_operation("bn_search", query="milk") as op:
            page = search_service.full_text_search("milk")
            op["result_count"] = len(page.results)
    """
    correlation_id = uuid.uuid4().hex[:8]
    details: Dict[str, Any] = {"correlation_id": correlation_id}
    described = ", ".join(f"{k}={v}" for k, v in context.items())
    logger.debug(f"[{correlation_id}] {operation} started ({described})")

    started = time.perf_counter()
    error: Optional[str] = None
    try:
        yield details
    except Exception as e:
        error = str(e)
        raise
    finally:
        elapsed_ms = (time.perf_counter() - started) * 1000
        metrics.record_operation(operation, elapsed_ms, error is None, error)
        outcome = ", ".join(f"{k}={v}" for k, v in details.items() if k != "correlation_id")
        logger.debug(
            f"[{correlation_id}] {operation} "
            f"{'failed: ' + error if error is not None else 'done'} "
            f"in {elapsed_ms:.2f}ms {outcome}".rstrip()
        )
