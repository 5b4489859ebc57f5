"""
Structured logging for serverscout.

Provides centralized logging with console and file outputs plus counters
for monitoring discovery health (probe outcomes, pass results, cache writes).
"""

import json
import logging
import sys
import threading
from datetime import datetime
from pathlib import Path
from typing import Optional


CONSOLE_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
# Probes log from worker threads, so the file keeps the thread name
FILE_FORMAT = "%(asctime)s | %(levelname)-8s | %(threadName)s | %(name)s:%(lineno)d | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


class StructuredLogger:
    """
    Logger writing ``message | Context: {json}`` lines to stderr and a daily file.

    Also counts probe outcomes and discovery pass results so a session can end
    with a summary of how discovery went.
    """

    def __init__(
        self,
        name: str = "serverscout",
        level: str = "INFO",
        log_dir: Optional[Path] = None,
        enable_file: bool = True,
        enable_console: bool = True,
    ):
        """
        Args:
            name: Name of the underlying ``logging`` logger
            level: Console threshold (DEBUG, INFO, WARNING, ERROR, CRITICAL)
            log_dir: Where the daily log file goes (default: logs/)
            enable_file: Also write every record, DEBUG included, to a file
            enable_console: Also write records at ``level`` and above to stderr
        """
        self.logger = logging.getLogger(name)
        self.logger.setLevel(logging.DEBUG)
        self.logger.handlers.clear()
        self.logger.propagate = False

        self._lock = threading.Lock()
        self.metrics = {
            "probes_attempted": 0,
            "probes_reachable": 0,
            "errors_by_kind": {},
            "passes_started": 0,
            "passes_succeeded": 0,
            "passes_empty": 0,
            "passes_discarded": 0,
            "cache_writes": 0,
        }

        if enable_console:
            self._attach(logging.StreamHandler(sys.stderr), getattr(logging, level.upper()), CONSOLE_FORMAT)

        if enable_file:
            log_dir = Path(log_dir or "logs")
            log_dir.mkdir(parents=True, exist_ok=True)
            log_file = log_dir / f"serverscout_{datetime.now().strftime('%Y%m%d')}.log"
            self._attach(logging.FileHandler(log_file, encoding="utf-8"), logging.DEBUG, FILE_FORMAT)

        if not self.logger.handlers:
            self.logger.addHandler(logging.NullHandler())

    def _attach(self, handler: logging.Handler, level: int, fmt: str) -> None:
        handler.setLevel(level)
        handler.setFormatter(logging.Formatter(fmt=fmt, datefmt=DATE_FORMAT))
        self.logger.addHandler(handler)

    def debug(self, message: str, **context):
        self._emit(logging.DEBUG, message, context)

    def info(self, message: str, **context):
        self._emit(logging.INFO, message, context)

    def warning(self, message: str, **context):
        self._emit(logging.WARNING, message, context)

    def error(self, message: str, **context):
        self._emit(logging.ERROR, message, context)

    def _emit(self, level: int, message: str, context: dict):
        if context:
            message = f"{message} | Context: {json.dumps(context, default=str)}"
        self.logger.log(level, message)

    # Discovery metrics

    def record_probe(self, reachable: bool, error_kind: Optional[str] = None):
        """Record the outcome of one health check."""
        with self._lock:
            self.metrics["probes_attempted"] += 1
            if reachable:
                self.metrics["probes_reachable"] += 1
            elif error_kind:
                by_kind = self.metrics["errors_by_kind"]
                by_kind[error_kind] = by_kind.get(error_kind, 0) + 1

    def record_pass(self, outcome: str):
        """Record a discovery pass: started, succeeded, empty or discarded."""
        key = f"passes_{outcome}"
        with self._lock:
            if key not in self.metrics:
                raise KeyError(f"Unknown pass outcome: {outcome}")
            self.metrics[key] += 1

    def record_cache_write(self):
        with self._lock:
            self.metrics["cache_writes"] += 1

    def get_metrics(self) -> dict:
        """Return a snapshot of current metrics."""
        with self._lock:
            snapshot = dict(self.metrics)
            snapshot["errors_by_kind"] = dict(self.metrics["errors_by_kind"])
        attempted = snapshot["probes_attempted"]
        snapshot["reachable_rate"] = (
            round(snapshot["probes_reachable"] / attempted, 3) if attempted else 0.0
        )
        return snapshot

    def log_metrics_summary(self):
        """Write the discovery metrics as a few INFO lines."""
        metrics = self.get_metrics()

        self.info("=== Discovery Session Metrics ===")
        self.info(
            f"Probes: {metrics['probes_reachable']}/{metrics['probes_attempted']} reachable "
            f"({metrics['reachable_rate'] * 100:.1f}%)"
        )
        self.info(
            f"Passes: {metrics['passes_started']} started, {metrics['passes_succeeded']} succeeded, "
            f"{metrics['passes_empty']} empty, {metrics['passes_discarded']} discarded"
        )
        self.info(f"Cache writes: {metrics['cache_writes']}")

        if metrics["errors_by_kind"]:
            self.info("Probe errors:")
            for kind, count in sorted(metrics["errors_by_kind"].items()):
                self.info(f"  {kind}: {count}")


# Shared by every module; replaced only through reset_logger()
_global_logger: Optional[StructuredLogger] = None


def get_logger(
    name: str = "serverscout",
    level: str = "INFO",
    **kwargs
) -> StructuredLogger:
    """Return the process-wide logger, creating it on first use.

    Arguments only take effect on that first call; later calls return the
    existing instance unchanged.
    """
    global _global_logger

    if _global_logger is None:
        _global_logger = StructuredLogger(name=name, level=level, **kwargs)

    return _global_logger


def reset_logger():
    """Forget the process-wide logger so the next get_logger() builds a new one."""
    global _global_logger
    _global_logger = None
