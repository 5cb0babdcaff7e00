"""Structured logging utilities and the per-run logging context."""

from __future__ import annotations

import logging
import queue
import subprocess
import sys
import threading
from datetime import datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Dict, Optional, TextIO

import orjson

from candletrader.core.config import LoggingConfig
from candletrader.core.csv_sinks import CsvBarsSink, CsvTradeSink

_RESERVED = set(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {"message", "asctime", "thread_tag"}


def record_extras(record: logging.LogRecord) -> Dict[str, Any]:
    return {k: v for k, v in record.__dict__.items() if k not in _RESERVED and not k.startswith("_")}


class JsonFormatter(logging.Formatter):
    """Render log records as JSON."""

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "time": self.formatTime(record, "%Y-%m-%dT%H:%M:%S%z"),
            "level": record.levelname,
            "name": record.name,
            "thread": getattr(record, "thread_tag", record.threadName),
            "message": record.getMessage(),
        }
        payload.update(record_extras(record))
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return orjson.dumps(payload, default=str).decode()


class TextLineFormatter(logging.Formatter):
    """``YYYY-MM-DD HH:MM:SS [TAG] message key=value ...``"""

    def format(self, record: logging.LogRecord) -> str:
        stamp = datetime.fromtimestamp(record.created).strftime("%Y-%m-%d %H:%M:%S")
        tag = getattr(record, "thread_tag", None) or record.threadName
        message = record.getMessage()
        extras = record_extras(record)
        if extras:
            message += " " + " ".join(f"{k}={v}" for k, v in extras.items())
        if record.levelno >= logging.WARNING:
            message = f"{record.levelname}: {message}"
        line = f"{stamp} [{tag}] {message}"
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


class _TagFilter(logging.Filter):
    def __init__(self, context: "LoggingContext") -> None:
        super().__init__()
        self._context = context

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "thread_tag"):
            record.thread_tag = self._context.tag_for(record.thread)
        return True


class QueueLineHandler(logging.Handler):
    """Formats records on the calling thread and hands lines to the log worker."""

    def __init__(self, context: "LoggingContext") -> None:
        super().__init__()
        self._context = context
        self.setFormatter(TextLineFormatter())

    def emit(self, record: logging.LogRecord) -> None:
        try:
            self._context.enqueue(self.format(record))
        except Exception:  # noqa: BLE001 - logging must never raise into callers
            self.handleError(record)


def git_short_hash(cwd: Path | None = None) -> str:
    try:
        result = subprocess.run(
            ["git", "rev-parse", "--short", "HEAD"],
            cwd=cwd,
            capture_output=True,
            text=True,
            timeout=2,
            check=False,
        )
    except (OSError, subprocess.SubprocessError):
        return "nogit"
    value = result.stdout.strip()
    return value if result.returncode == 0 and value else "nogit"


def create_run_directory(base: Path | str, *, now: datetime | None = None, git_hash: str | None = None) -> Path:
    """Create ``<base>/run_<DD-HH-MM>_<git_hash>`` and return it."""

    now = now or datetime.now()
    git_hash = git_hash or git_short_hash()
    path = Path(base) / f"run_{now.strftime('%d-%H-%M')}_{git_hash}"
    path.mkdir(parents=True, exist_ok=True)
    return path


class LoggingContext:
    """Owns every logging resource of one run: queue, sinks, console lock, thread tags."""

    def __init__(
        self,
        config: LoggingConfig,
        run_dir: Path,
        *,
        console: Optional[TextIO] = None,
    ) -> None:
        self.config = config
        self.run_dir = Path(run_dir)
        self.run_dir.mkdir(parents=True, exist_ok=True)
        self.console = console if console is not None else sys.stdout
        self.console_lock = threading.Lock()
        self.text_log_path = self.run_dir / config.log_file
        self.events_path = self.run_dir / config.events_file
        self.bars = CsvBarsSink(self.run_dir / "bars.csv")
        self.trades = CsvTradeSink(self.run_dir / "trades.csv")
        self._queue: "queue.Queue[str]" = queue.Queue(maxsize=config.queue_size)
        self._tags: Dict[int, str] = {}
        self._tags_lock = threading.Lock()
        self._inline_active = False
        self._dropped = 0
        self._handlers: list[logging.Handler] = []
        self._text_file: Optional[TextIO] = None

    @classmethod
    def for_run(cls, config: LoggingConfig, **kwargs: Any) -> "LoggingContext":
        return cls(config, create_run_directory(config.runtime_logs_dir), **kwargs)

    # ------------------------------------------------------------------
    # Thread tags
    # ------------------------------------------------------------------
    def set_thread_tag(self, tag: str) -> None:
        with self._tags_lock:
            self._tags[threading.get_ident()] = tag

    def tag_for(self, ident: Optional[int]) -> str:
        with self._tags_lock:
            if ident is not None and ident in self._tags:
                return self._tags[ident]
        return "MAIN"

    # ------------------------------------------------------------------
    # Handler wiring
    # ------------------------------------------------------------------
    def install(self, root: Optional[logging.Logger] = None) -> None:
        """Attach the queue handler and the rotating JSON event log to ``root``."""

        root = root or logging.getLogger()
        tag_filter = _TagFilter(self)

        line_handler = QueueLineHandler(self)
        line_handler.setLevel(getattr(logging, self.config.console_log_level))
        line_handler.addFilter(tag_filter)

        json_handler = RotatingFileHandler(
            self.events_path,
            maxBytes=int(self.config.max_log_file_size_mb * 1024 * 1024),
            backupCount=self.config.log_backup_count,
            encoding="utf-8",
        )
        json_handler.setLevel(getattr(logging, self.config.file_log_level))
        json_handler.setFormatter(JsonFormatter())
        json_handler.addFilter(tag_filter)

        lowest = min(line_handler.level, json_handler.level)
        root.setLevel(lowest)
        for handler in (line_handler, json_handler):
            root.addHandler(handler)
            self._handlers.append(handler)

    def uninstall(self, root: Optional[logging.Logger] = None) -> None:
        root = root or logging.getLogger()
        for handler in self._handlers:
            root.removeHandler(handler)
            handler.close()
        self._handlers.clear()

    # ------------------------------------------------------------------
    # Queue and console
    # ------------------------------------------------------------------
    def enqueue(self, line: str) -> None:
        try:
            self._queue.put_nowait(line)
        except queue.Full:
            self._dropped += 1

    @property
    def dropped_lines(self) -> int:
        return self._dropped

    def drain(self, timeout: float) -> int:
        """Write queued lines to console and the text log; blocks up to ``timeout`` for the first one."""

        written = 0
        try:
            line = self._queue.get(timeout=timeout)
        except queue.Empty:
            return 0
        while True:
            self._output(line)
            written += 1
            try:
                line = self._queue.get_nowait()
            except queue.Empty:
                break
        return written

    def flush(self) -> int:
        written = 0
        while True:
            try:
                line = self._queue.get_nowait()
            except queue.Empty:
                return written
            self._output(line)
            written += 1

    def _output(self, line: str) -> None:
        with self.console_lock:
            if self._inline_active:
                self.console.write("\n")
                self._inline_active = False
            self.console.write(line + "\n")
            self.console.flush()
        if self._text_file is None:
            self._text_file = self.text_log_path.open("a", encoding="utf-8")
        self._text_file.write(line + "\n")
        self._text_file.flush()

    def inline_status(self, text: str) -> None:
        """Overwrite the current console line, used by countdowns."""

        with self.console_lock:
            self.console.write("\r" + text)
            self.console.flush()
            self._inline_active = True

    def end_inline(self) -> None:
        with self.console_lock:
            if self._inline_active:
                self.console.write("\n")
                self.console.flush()
                self._inline_active = False

    def close(self) -> None:
        self.flush()
        self.end_inline()
        if self._text_file is not None:
            self._text_file.close()
            self._text_file = None
        self.uninstall()


__all__ = [
    "JsonFormatter",
    "LoggingContext",
    "QueueLineHandler",
    "TextLineFormatter",
    "create_run_directory",
    "git_short_hash",
    "record_extras",
]
