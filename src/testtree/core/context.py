"""Execution context attached to failures for richer debugging."""

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

from testtree.core.errors import ErrorDescriptor
from testtree.core.logs import BUCKETS, CapturedLogs, LogEntry


@dataclass
class TimingWindow:
    """Start/end epoch timestamps (seconds) and duration (ms)."""

    start: float
    end: Optional[float] = None
    duration: Optional[float] = None

    def to_dict(self) -> dict:
        return {"start": self.start, "end": self.end, "duration": self.duration}


@dataclass
class TestPath:
    __test__ = False

    suite: str
    test: str
    file: Optional[str] = None
    line: Optional[int] = None

    def to_dict(self) -> dict:
        data: dict[str, Any] = {"suite": self.suite, "test": self.test}
        if self.file is not None:
            data["file"] = self.file
        if self.line is not None:
            data["line"] = self.line
        return data


@dataclass
class ExecutionContext:
    """Captured logs, timing and identity of the test that failed."""

    logs: CapturedLogs = field(default_factory=CapturedLogs)
    timing: Optional[TimingWindow] = None
    test_path: Optional[TestPath] = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def recent_logs(self, count: int = 10) -> list[LogEntry]:
        return self.logs.merged()[-count:] if count > 0 else []

    def to_dict(self) -> dict:
        data: dict[str, Any] = {"logs": self.logs.to_dict()}
        if self.timing is not None:
            data["timing"] = self.timing.to_dict()
        if self.test_path is not None:
            data["test_path"] = self.test_path.to_dict()
        if self.metadata:
            data["metadata"] = dict(self.metadata)
        return data


def enhance(
    descriptor: ErrorDescriptor,
    context: ExecutionContext,
    original_error: Any = None,
) -> ErrorDescriptor:
    """Attach an execution context to a normalized error.

    The remapped location and stack of ``descriptor`` are kept as-is.
    """
    return descriptor.with_context(context, original_error)


def _clock(timestamp: float) -> str:
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).strftime("%H:%M:%S.%f")[:-3]


def _iso(timestamp: float) -> str:
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).isoformat()


# How many entries of each bucket the text report shows.
_BUCKET_LIMITS = {"ambient": 5, "domain": 3, "framework": 3}
_BUCKET_TITLES = {"ambient": "Console Logs", "domain": "Domain Events", "framework": "Framework Logs"}


def format_report(error: ErrorDescriptor) -> str:
    """Render a multi-section text report for a failure."""
    parts = [f"{error.name or 'Error'}: {error.message}", ""]
    context = error.context
    if context is None:
        if error.stack:
            parts.extend(["=== Stack Trace ===", *error.stack, ""])
        return "\n".join(parts)

    metadata = context.metadata or {}
    if context.test_path:
        parts.append("=== Test Information ===")
        parts.append(f"Suite: {context.test_path.suite}")
        parts.append(f"Test: {context.test_path.test}")
        if context.test_path.file:
            location = f":{context.test_path.line}" if context.test_path.line else ""
            parts.append(f"File: {context.test_path.file}{location}")
        if metadata.get("tags"):
            parts.append(f"Tags: {', '.join(metadata['tags'])}")
        parts.append("")

    if context.timing:
        parts.append("=== Timing Information ===")
        if context.timing.duration is not None:
            parts.append(f"Test Duration: {context.timing.duration:.2f}ms")
        parts.append(f"Started: {_iso(context.timing.start)}")
        if context.timing.end is not None:
            parts.append(f"Ended: {_iso(context.timing.end)}")
        parts.append("")

    if context.logs.count():
        parts.append("=== Recent Logs (last 10) ===")
        for entry in context.recent_logs(10):
            parts.append(f"[{_clock(entry.timestamp)}] [{entry.kind.upper()}] {entry.message}")
        parts.append("")

        for bucket in BUCKETS:
            entries = getattr(context.logs, bucket)
            if not entries:
                continue
            limit = _BUCKET_LIMITS[bucket]
            title = _BUCKET_TITLES[bucket]
            parts.append(f"=== {title} ({len(entries)} total) ===")
            for entry in entries[-limit:]:
                parts.append(f"[{_clock(entry.timestamp)}] {entry.message}")
            if len(entries) > limit:
                parts.append(f"... and {len(entries) - limit} more")
            parts.append("")

    if error.stack:
        parts.extend(["=== Stack Trace ===", *error.stack, ""])

    extra = {k: v for k, v in metadata.items() if k != "tags"}
    if extra:
        parts.append("=== Additional Context ===")
        for key, value in extra.items():
            parts.append(f"{key}: {json.dumps(value, default=str)}")
        parts.append("")

    return "\n".join(parts)


def compact_summary(error: ErrorDescriptor) -> str:
    """One-line summary: message, test path, duration and log count."""
    summary = error.message
    context = error.context
    if context is None:
        return summary
    if context.test_path:
        summary += f" ({context.test_path.suite} > {context.test_path.test})"
    if context.timing and context.timing.duration:
        summary += f" [{context.timing.duration:.0f}ms]"
    if context.logs.count():
        summary += f" [{context.logs.count()} logs]"
    return summary
