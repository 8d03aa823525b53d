"""Conditions for ``skip_if`` / ``run_if`` and platform-specific tests."""

import os
import sys
from typing import TYPE_CHECKING, Any, Callable, Union

if TYPE_CHECKING:
    from testtree.core.registry import ItAPI

Condition = Union[bool, Callable[[], bool]]


def resolve_condition(condition: Condition) -> bool:
    """Evaluate a condition given as a value or a zero-argument callable."""
    if callable(condition):
        return bool(condition())
    return bool(condition)


def is_windows() -> bool:
    return sys.platform == "win32"


def is_mac() -> bool:
    return sys.platform == "darwin"


def is_linux() -> bool:
    return sys.platform.startswith("linux")


def is_ci() -> bool:
    return bool(os.environ.get("CI"))


class Platform:
    """Tests that only run on a given platform or environment.

    Each attribute is an ``it`` that becomes ``it.skip`` elsewhere::

        platform.linux("reads /proc", check_proc)
    """

    def __init__(self, it: "ItAPI"):
        self._it = it

    @property
    def windows(self) -> Callable[..., Any]:
        return self._it.run_if(is_windows)

    @property
    def mac(self) -> Callable[..., Any]:
        return self._it.run_if(is_mac)

    @property
    def linux(self) -> Callable[..., Any]:
        return self._it.run_if(is_linux)

    @property
    def unix(self) -> Callable[..., Any]:
        return self._it.run_if(lambda: not is_windows())

    @property
    def ci(self) -> Callable[..., Any]:
        return self._it.run_if(is_ci)

    @property
    def local(self) -> Callable[..., Any]:
        return self._it.run_if(lambda: not is_ci())
