"""Error taxonomy and normalization of raised values into descriptors.

Anything a test or hook raises is turned into an :class:`ErrorDescriptor`, a
plain serializable record. Stack frames are passed through an injectable
remapper (identity by default) so a plugin can translate generated locations
back to original sources, and the first frame that belongs to a test file is
reported as the failure location.

:func:`normalize` never raises.
"""

import re
import traceback
from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Any, Callable, Optional

if TYPE_CHECKING:
    from testtree.core.context import ExecutionContext


class EngineError(Exception):
    """Base class for errors raised by the engine itself."""


class UsageError(EngineError, TypeError):
    """Raised synchronously when an entry point receives invalid arguments."""


class DiscoveryError(EngineError):
    """A declaration module could not be found or imported."""


class HookFailure(EngineError):
    """A setup or teardown hook raised.

    The original exception is kept as ``__cause__``.
    """

    def __init__(self, hook_type: str, context: str, cause: BaseException):
        super().__init__(f"{hook_type} hook failed for {context}: {cause}")
        self.hook_type = hook_type
        self.context = context
        self.__cause__ = cause


@dataclass
class Frame:
    """A single stack frame position."""

    source: str
    line: int
    column: Optional[int] = None
    name: Optional[str] = None


Remapper = Callable[[Frame], Frame]

# at fn (file:line:col)  |  at file:line:col
STACK_LINE_PATTERN = re.compile(r"^\s*at\s+(?:(.*?)\s+\()?(.+?):(\d+):(\d+)\)?$")

TEST_FILE_PATTERN = re.compile(
    r"(?:^|[\\/])test_[^\\/]*\.py$|_test\.py$|\.test\.[jt]sx?$"
)


def _identity(frame: Frame) -> Frame:
    return frame


_remapper: Remapper = _identity


def set_error_remapper(remapper: Remapper) -> None:
    """Register a frame remapper, e.g. one backed by source maps."""
    global _remapper
    _remapper = remapper


def unset_error_remapper() -> None:
    global _remapper
    _remapper = _identity


def get_error_remapper() -> Remapper:
    return _remapper


def is_test_file(path: str) -> bool:
    return bool(TEST_FILE_PATTERN.search(path))


@dataclass
class ErrorDescriptor:
    """Normalized, serializable representation of a raised value."""

    message: str
    name: Optional[str] = None
    file: Optional[str] = None
    line: Optional[int] = None
    column: Optional[int] = None
    stack: Optional[list[str]] = None
    context: Optional["ExecutionContext"] = None
    original_error: Any = field(default=None, repr=False, compare=False)

    def minimal(self) -> "ErrorDescriptor":
        """Projection with message, name and remapped location only."""
        return ErrorDescriptor(
            message=self.message or "Unknown error",
            name=self.name,
            file=self.file,
            line=self.line,
            column=self.column,
        )

    def with_context(self, context: "ExecutionContext", original_error: Any = None) -> "ErrorDescriptor":
        return replace(
            self,
            context=context,
            original_error=original_error if original_error is not None else self.original_error,
        )

    def to_dict(self) -> dict:
        """Convert to the wire shape, omitting absent fields."""
        data: dict[str, Any] = {"message": self.message}
        for key in ("name", "file", "line", "column"):
            value = getattr(self, key)
            if value is not None:
                data[key] = value
        if self.stack is not None:
            data["stack"] = list(self.stack)
        if self.context is not None:
            data["context"] = self.context.to_dict()
        if self.original_error is not None:
            data["original_error"] = _summarize_original(self.original_error)
        return data

    def format_report(self) -> str:
        from testtree.core.context import format_report

        return format_report(self)

    def compact_summary(self) -> str:
        from testtree.core.context import compact_summary

        return compact_summary(self)

    def __str__(self) -> str:
        if self.name:
            return f"{self.name}: {self.message}"
        return self.message


def _summarize_original(value: Any) -> dict:
    if isinstance(value, BaseException):
        return {"name": type(value).__name__, "message": _safe_str(value)}
    return {"message": _safe_str(value)}


def _safe_str(value: Any) -> str:
    try:
        return str(value)
    except Exception:
        try:
            return repr(value)
        except Exception:
            return object.__repr__(value)


def _remap(frame: Frame) -> Frame:
    try:
        remapped = _remapper(frame)
    except Exception:
        return frame
    return remapped if isinstance(remapped, Frame) else frame


def _frames_from_traceback(exc: BaseException) -> list[Frame]:
    frames = []
    # innermost frame first
    for summary in reversed(traceback.extract_tb(exc.__traceback__)):
        colno = getattr(summary, "colno", None)
        frames.append(
            Frame(
                source=summary.filename,
                line=summary.lineno or 0,
                column=colno + 1 if colno is not None else None,
                name=summary.name,
            )
        )
    return frames


def _format_python_stack(exc: BaseException, frames: list[Frame]) -> list[str]:
    lines = ["Traceback (most recent call last):"]
    for frame in reversed(frames):
        lines.append(f'  File "{frame.source}", line {frame.line}, in {frame.name}')
    lines.extend(traceback.format_exception_only(type(exc), exc)[-1:])
    return [line.rstrip("\n") for line in lines]


def _parse_stack_string(stack: str) -> tuple[list[Frame], list[str]]:
    frames = []
    formatted = []
    for raw_line in stack.split("\n"):
        line = raw_line.strip()
        match = STACK_LINE_PATTERN.match(line)
        if not match:
            formatted.append(line)
            continue
        fn_name, source, line_no, col_no = match.groups()
        frame = _remap(Frame(source=source, line=int(line_no), column=int(col_no), name=fn_name))
        frames.append(frame)
        formatted.append(
            f"    at {frame.name or fn_name or '<anonymous>'} ({frame.source}:{frame.line}:{frame.column})"
        )
    return frames, formatted


def _pick_location(frames: list[Frame]) -> Optional[Frame]:
    for frame in frames:
        if is_test_file(frame.source):
            return frame
    return frames[0] if frames else None


def _describe(name: Optional[str], message: str, frames: list[Frame], stack: list[str]) -> ErrorDescriptor:
    best = _pick_location(frames)
    descriptor = ErrorDescriptor(message=message, name=name, stack=stack or None)
    if best is not None:
        descriptor.file = best.source
        descriptor.line = best.line
        descriptor.column = best.column
    return descriptor


def _error_like_field(value: Any, key: str) -> Any:
    if isinstance(value, Mapping):
        return value.get(key)
    return getattr(value, key, None)


def _is_error_like(value: Any) -> bool:
    if isinstance(value, Mapping):
        return isinstance(value.get("message"), str)
    return isinstance(getattr(value, "message", None), str) and isinstance(
        getattr(value, "stack", None), str
    )


def normalize(thrown: Any) -> ErrorDescriptor:
    """Convert any raised value into an :class:`ErrorDescriptor`.

    Exceptions contribute their traceback frames; error-like payloads relayed
    from other runtimes (mappings or objects with ``message`` and a ``stack``
    string) are parsed with the ``at fn (file:line:col)`` grammar. Any other
    value is coerced to a string message. Never raises.
    """
    try:
        if isinstance(thrown, BaseException):
            name = type(thrown).__name__
            message = str(thrown) or name
            frames = [_remap(frame) for frame in _frames_from_traceback(thrown)]
            descriptor = _describe(name, message, frames, _format_python_stack(thrown, frames))
            descriptor.original_error = thrown
            return descriptor

        if _is_error_like(thrown):
            name = _error_like_field(thrown, "name")
            message = _error_like_field(thrown, "message")
            stack = _error_like_field(thrown, "stack")
            frames, formatted = _parse_stack_string(stack) if isinstance(stack, str) else ([], [])
            return _describe(
                name if isinstance(name, str) else None, message, frames, formatted
            )

        return ErrorDescriptor(message=str(thrown))
    except Exception:
        return ErrorDescriptor(message=f"Unknown error ({_safe_str(thrown)})")
