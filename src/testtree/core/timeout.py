"""Timeout guard for test bodies and hooks.

Timeouts are cooperative: when the deadline passes the guard stops waiting and
raises, but the pending work is not pre-empted. Its eventual result or error is
discarded. Test code that wants to stop early can poll :func:`current_token`.
"""

import asyncio
import inspect
from contextvars import ContextVar
from typing import Any, Awaitable, Callable, Optional, Union

Operation = Callable[[], Union[Any, Awaitable[Any]]]


class TimeoutExceeded(TimeoutError):
    """An operation did not settle within its time limit."""

    def __init__(self, label: str, duration_ms: float):
        super().__init__(f"{label} exceeded timeout of {format_ms(duration_ms)}ms")
        self.label = label
        self.duration_ms = duration_ms


class CancellationToken:
    """Cooperative cancellation signal handed to running tests."""

    def __init__(self) -> None:
        self._cancelled = False
        self._reason: Optional[str] = None
        self._callbacks: list[Callable[[], Any]] = []

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def reason(self) -> Optional[str]:
        return self._reason

    def cancel(self, reason: Optional[str] = None) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        self._reason = reason
        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            callback()

    def on_cancel(self, callback: Callable[[], Any]) -> None:
        """Register a callback; runs immediately if already cancelled."""
        if self._cancelled:
            callback()
        else:
            self._callbacks.append(callback)

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise asyncio.CancelledError(self._reason)


_current_token: ContextVar[Optional[CancellationToken]] = ContextVar(
    "testtree_cancellation_token", default=None
)


def current_token() -> Optional[CancellationToken]:
    """Return the cancellation token of the running test, if any."""
    return _current_token.get()


def bind_token(token: Optional[CancellationToken]):
    """Make ``token`` visible to :func:`current_token`; returns a reset handle."""
    return _current_token.set(token)


def unbind_token(handle) -> None:
    _current_token.reset(handle)


def format_ms(value: float) -> str:
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _discard_settlement(task: "asyncio.Future[Any]") -> None:
    # Retrieve the late result so asyncio does not warn about it.
    if not task.cancelled():
        task.exception()


async def guard(
    operation: Operation,
    duration_ms: Optional[float],
    label: str = "Operation",
    token: Optional[CancellationToken] = None,
) -> Any:
    """Run ``operation`` and race its awaitable result against a deadline.

    Args:
        operation: Zero-argument callable, plain or returning an awaitable
        duration_ms: Time limit; ``None`` or non-positive disables the guard
        label: Name used in the timeout message
        token: Signalled when the deadline passes

    Raises:
        TimeoutExceeded: If the awaitable does not settle in time
    """
    result = operation()
    if not inspect.isawaitable(result):
        return result
    if not duration_ms or duration_ms <= 0:
        return await result

    task = asyncio.ensure_future(result)
    done, _ = await asyncio.wait({task}, timeout=duration_ms / 1000)
    if task in done:
        return task.result()

    task.add_done_callback(_discard_settlement)
    error = TimeoutExceeded(label, duration_ms)
    if token is not None:
        token.cancel(str(error))
    raise error
