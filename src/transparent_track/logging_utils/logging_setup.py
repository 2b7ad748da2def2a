# logging_setup.py
"""
Package logging.

- Library modules only call get_logger(__name__); they never configure handlers.
- An application may call start_logging() once from its main process. Records are
  then shipped through a QueueHandler to a non-daemon writer process that owns a
  RotatingFileHandler and fsyncs every record.
- Worker processes of a fitting pool do not start a writer; their records go to
  whatever handlers they have (none by default).
"""

from __future__ import annotations
import atexit
import logging
import os
from datetime import datetime
from pathlib import Path
from multiprocessing import Process, Queue, current_process
from logging.handlers import RotatingFileHandler, QueueHandler

# ------------------------- Paths & constants -------------------------

DEFAULT_LOG_DIR = Path.home() / "TransparentTrackLogs"

# Root logger name of the package
LOGGER_NAME = "transparent_track"

logging_fmt_file = logging.Formatter("%(asctime)s [%(levelname)s] %(name)s %(message)s")

_STOP = "__STOP__"

# ------------------------- Module-level state -------------------------

_queue: Queue | None = None
_writer_proc: Process | None = None
_log_path: Path | None = None


# ------------------------- Writer process target -------------------------

class _FsyncRotatingFileHandler(RotatingFileHandler):
    def emit(self, record: logging.LogRecord) -> None:
        super().emit(record)
        self.flush()
        if self.stream and hasattr(self.stream, "fileno"):
            os.fsync(self.stream.fileno())


def _writer_main(queue: Queue, log_path: str):
    """
    Runs in a separate process. Receives LogRecord objects from the queue and
    writes them to disk until the stop sentinel arrives.
    """
    log = logging.getLogger(f"{LOGGER_NAME}.writer")
    log.setLevel(logging.DEBUG)
    log.propagate = False

    fh = _FsyncRotatingFileHandler(log_path, maxBytes=5_000_000, backupCount=5)
    fh.setFormatter(logging_fmt_file)
    log.addHandler(fh)

    try:
        while True:
            rec = queue.get()
            if rec == _STOP:
                break
            log.handle(rec)
    finally:
        fh.flush()
        fh.close()


# ------------------------- Public API -------------------------

def start_logging(log_dir: Path | None = None, level: int = logging.INFO) -> Path | None:
    """
    Start the writer process and install a QueueHandler on the package logger.
    Returns the log file path, or None when called from a non-main process.
    Calling it twice is a no-op.
    """
    global _queue, _writer_proc, _log_path

    if _queue is not None:
        return _log_path

    if current_process().name != "MainProcess":
        return None

    log_dir = Path(log_dir) if log_dir is not None else DEFAULT_LOG_DIR
    log_dir.mkdir(parents=True, exist_ok=True)
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    _log_path = log_dir / f"transparent_track_{timestamp}.log"

    _queue = Queue()
    _writer_proc = Process(
        target=_writer_main,
        args=(_queue, str(_log_path)),
        name="LogWriter",
    )
    _writer_proc.daemon = False
    _writer_proc.start()

    _install_queue_handler(level)
    atexit.register(shutdown_logging)
    return _log_path


def get_logger(name: str | None = None) -> logging.Logger:
    """
    Return the package logger or a child of it.
    Module names that already start with the package name are used as is.
    """
    if not name or name == LOGGER_NAME:
        return logging.getLogger(LOGGER_NAME)
    if name.startswith(LOGGER_NAME + "."):
        return logging.getLogger(name)
    return logging.getLogger(f"{LOGGER_NAME}.{name}")


def shutdown_logging(timeout: float = 2.0) -> None:
    """Stop the writer process. Safe to call multiple times."""
    global _queue, _writer_proc

    _remove_queue_handlers()

    if _queue is not None:
        _queue.put(_STOP)

    if _writer_proc is not None:
        _writer_proc.join(timeout)
        if _writer_proc.is_alive():
            _writer_proc.terminate()

    _writer_proc = None
    _queue = None


# ------------------------- Internal helpers -------------------------

def _install_queue_handler(level: int) -> None:
    if _queue is None:
        return
    lg = logging.getLogger(LOGGER_NAME)
    lg.setLevel(level)
    if not any(isinstance(h, QueueHandler) for h in lg.handlers):
        lg.addHandler(QueueHandler(_queue))


def _remove_queue_handlers() -> None:
    lg = logging.getLogger(LOGGER_NAME)
    for h in list(lg.handlers):
        if isinstance(h, QueueHandler):
            lg.removeHandler(h)
            h.close()
