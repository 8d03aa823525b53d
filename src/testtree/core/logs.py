"""Log capture during test execution.

A :class:`LogCollector` attaches to the ambient logging sinks for the duration
of one test: a handler on an injected :class:`logging.Logger` (the root logger
by default) and tees of ``sys.stdout``/``sys.stderr``. Intercepted output is
bucketed as *ambient* and still delivered to the original sinks. The engine
and test authors add *framework* and *domain* entries programmatically.
"""

import json
import logging
import sys
import time
from collections import deque
from contextlib import ExitStack, redirect_stderr, redirect_stdout
from dataclasses import dataclass, field
from typing import Any, Optional, TextIO

AMBIENT = "ambient"
FRAMEWORK = "framework"
DOMAIN = "domain"

BUCKETS = (AMBIENT, FRAMEWORK, DOMAIN)

# Records from the engine's own loggers are never collected.
ENGINE_LOGGER_PREFIX = "testtree"


@dataclass
class LogEntry:
    """A captured log line with its epoch timestamp (seconds)."""

    message: str
    timestamp: float
    kind: str = AMBIENT

    def to_dict(self) -> dict:
        return {"message": self.message, "timestamp": self.timestamp}


@dataclass
class CapturedLogs:
    """The three log buckets of one test."""

    ambient: list[LogEntry] = field(default_factory=list)
    framework: list[LogEntry] = field(default_factory=list)
    domain: list[LogEntry] = field(default_factory=list)

    def count(self) -> int:
        return len(self.ambient) + len(self.framework) + len(self.domain)

    def merged(self) -> list[LogEntry]:
        """All entries in chronological order."""
        entries = [*self.ambient, *self.framework, *self.domain]
        return sorted(entries, key=lambda entry: entry.timestamp)

    def to_dict(self) -> dict:
        return {bucket: [e.to_dict() for e in getattr(self, bucket)] for bucket in BUCKETS}


def _level_prefix(levelno: int) -> str:
    if levelno >= logging.ERROR:
        return "ERROR: "
    if levelno >= logging.WARNING:
        return "WARN: "
    return ""


class _CollectingHandler(logging.Handler):
    """Logging handler feeding records into a collector."""

    def __init__(self, collector: "LogCollector"):
        super().__init__(level=logging.NOTSET)
        self.collector = collector

    def filter(self, record: logging.LogRecord) -> bool:
        return not record.name.startswith(ENGINE_LOGGER_PREFIX)

    def emit(self, record: logging.LogRecord) -> None:
        try:
            message = record.getMessage()
        except Exception:
            self.handleError(record)
            return
        self.collector._add(AMBIENT, f"{_level_prefix(record.levelno)}{message}")


class _StreamTee:
    """File-like wrapper that records complete lines and forwards writes."""

    def __init__(self, collector: "LogCollector", target: TextIO, prefix: str = ""):
        self.collector = collector
        self.target = target
        self.prefix = prefix
        self._buffer = ""

    def write(self, text: str) -> int:
        self._buffer += text
        while "\n" in self._buffer:
            line, self._buffer = self._buffer.split("\n", 1)
            self.collector._add(AMBIENT, f"{self.prefix}{line}")
        return self.target.write(text)

    def flush(self) -> None:
        self.target.flush()

    def close_buffer(self) -> None:
        if self._buffer:
            self.collector._add(AMBIENT, f"{self.prefix}{self._buffer}")
            self._buffer = ""

    def __getattr__(self, name: str) -> Any:
        return getattr(self.target, name)


class LogCollector:
    """Collects logs during test execution for enhanced error reporting."""

    def __init__(
        self,
        logger: Optional[logging.Logger] = None,
        max_entries: int = 100,
        capture_streams: bool = True,
        level: int = logging.INFO,
    ):
        """Initialize the collector.

        Args:
            logger: Logger to intercept (root logger when omitted)
            max_entries: Maximum entries kept; the oldest are dropped first
            capture_streams: Also tee ``sys.stdout`` and ``sys.stderr``
            level: Lowest record level captured; the logger is lowered to it
                while collecting when its own threshold is higher
        """
        self.logger = logger if logger is not None else logging.getLogger()
        self.max_entries = max_entries
        self.capture_streams = capture_streams
        self.level = level
        self._entries: deque[LogEntry] = deque(maxlen=max_entries if max_entries > 0 else None)
        self._stack: Optional[ExitStack] = None
        self._tees: list[_StreamTee] = []

    @property
    def is_collecting(self) -> bool:
        return self._stack is not None

    def start(self) -> None:
        """Start collecting, discarding anything from a previous test."""
        if self._stack is not None:
            self.end()
        self._entries.clear()

        stack = ExitStack()
        handler = _CollectingHandler(self)
        handler.setLevel(self.level)
        self.logger.addHandler(handler)
        stack.callback(self.logger.removeHandler, handler)
        if self.logger.getEffectiveLevel() > self.level:
            stack.callback(self.logger.setLevel, self.logger.level)
            self.logger.setLevel(self.level)

        if self.capture_streams:
            out_tee = _StreamTee(self, sys.stdout)
            err_tee = _StreamTee(self, sys.stderr, prefix="ERROR: ")
            self._tees = [out_tee, err_tee]
            stack.enter_context(redirect_stdout(out_tee))
            stack.enter_context(redirect_stderr(err_tee))
        self._stack = stack

    def end(self) -> None:
        """Stop collecting and restore the original sinks."""
        if self._stack is None:
            return
        stack, self._stack = self._stack, None
        try:
            for tee in self._tees:
                tee.close_buffer()
        finally:
            self._tees = []
            stack.close()

    def __enter__(self) -> "LogCollector":
        self.start()
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.end()

    def _add(self, kind: str, message: str) -> None:
        self._entries.append(LogEntry(message=message, timestamp=time.time(), kind=kind))

    def add_framework_log(self, message: str) -> None:
        if self.is_collecting:
            self._add(FRAMEWORK, message)

    def add_domain_log(self, message: str) -> None:
        if self.is_collecting:
            self._add(DOMAIN, message)

    def get_logs(self) -> CapturedLogs:
        """Return a copy of the collected logs split into buckets."""
        logs = CapturedLogs()
        for entry in self._entries:
            getattr(logs, entry.kind).append(entry)
        return logs

    def count(self) -> int:
        return len(self._entries)

    def has_logs(self) -> bool:
        return bool(self._entries)

    def recent(self, count: int = 10) -> list[LogEntry]:
        """Return the latest ``count`` entries across buckets, oldest first."""
        if count <= 0:
            return []
        entries = sorted(self._entries, key=lambda entry: entry.timestamp)
        return entries[-count:]

    def clear(self) -> None:
        self._entries.clear()


_current_collector: Optional[LogCollector] = None


def get_current_collector() -> Optional[LogCollector]:
    """Get the collector of the currently running test, if any."""
    return _current_collector


def set_current_collector(collector: Optional[LogCollector]) -> None:
    """Set the globally active collector (used by the runner)."""
    global _current_collector
    _current_collector = collector


def _with_data(label: str, data: Any) -> str:
    if data is None:
        return label
    try:
        return f"{label} {json.dumps(data, default=str)}"
    except (TypeError, ValueError):
        return f"{label} {data!r}"


class _TestLogger:
    """Helpers for test authors to annotate the active test's context."""

    __test__ = False

    def log_domain_event(self, event: str, data: Any = None) -> None:
        collector = get_current_collector()
        if collector is not None:
            collector.add_domain_log(_with_data(f"DOMAIN_EVENT: {event}", data))

    def log_milestone(self, milestone: str, data: Any = None) -> None:
        collector = get_current_collector()
        if collector is not None:
            collector.add_framework_log(_with_data(f"TEST_MILESTONE: {milestone}", data))


test_logger = _TestLogger()
