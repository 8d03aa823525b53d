"""Suite/test registry and the declaration DSL.

Declarations are synchronous. ``describe`` bodies run immediately so that the
tests and hooks they declare land in the right suite::

    with_db = Registry()

    @with_db.describe("Users @db")
    def _():
        @with_db.before_each
        def connect(): ...

        with_db.it("creates a user", create_user)

A module-level default registry backs :func:`describe`, :func:`it` and
friends.
"""

import inspect
from contextlib import contextmanager
from typing import Any, Callable, Iterator, Optional

from testtree.core.conditional import Condition, Platform, resolve_condition
from testtree.core.errors import UsageError
from testtree.core.filters import extract_tags, merge_tags
from testtree.core.models import HookFn, ROOT_NAME, SuiteNode, TestFn, TestUnit
from testtree.core.parameterized import EachBuilder, TableData


def _check_timeout(timeout: Optional[float], entry: str) -> Optional[float]:
    if timeout is None:
        return None
    if isinstance(timeout, bool) or not isinstance(timeout, (int, float)):
        raise UsageError(f"{entry}() timeout must be a number of milliseconds, got {type(timeout).__name__}")
    return timeout


def _missing_cases() -> None:
    raise ValueError("No test cases provided to it.each()")


class Registry:
    """Owns the suite tree and the current declaration scope."""

    def __init__(self) -> None:
        self.root = SuiteNode(name=ROOT_NAME)
        self._current = self.root
        self.describe = DescribeAPI(self)
        self.it = ItAPI(self)
        self.test = self.it
        self.platform = Platform(self.it)

    @property
    def current(self) -> SuiteNode:
        return self._current

    @contextmanager
    def scope(self, node: SuiteNode) -> Iterator[SuiteNode]:
        """Make ``node`` the current scope, restoring the previous one on exit."""
        previous = self._current
        self._current = node
        try:
            yield node
        finally:
            self._current = previous

    def add_suite(
        self,
        name: str,
        body: Callable[[], Any],
        skip: bool = False,
        only: bool = False,
        timeout: Optional[float] = None,
    ) -> SuiteNode:
        clean, tags = extract_tags(name)
        parent = self._current
        node = SuiteNode(
            name=clean,
            parent=parent,
            tags=tags,
            skip=skip,
            only=only,
            timeout_ms=_check_timeout(timeout, "describe"),
        )
        parent.children.append(node)

        with self.scope(node):
            result = body()
            if inspect.isawaitable(result):
                if inspect.iscoroutine(result):
                    result.close()
                raise UsageError(f"describe() body for '{clean}' must be synchronous")
        return node

    def add_test(
        self,
        name: str,
        fn: TestFn,
        skip: bool = False,
        only: bool = False,
        timeout: Optional[float] = None,
    ) -> TestUnit:
        suite = self._current
        if suite.is_root:
            raise UsageError(f"Cannot declare test '{name}' outside of a describe() block")
        if not callable(fn):
            raise UsageError(f"it() expects a callable test body, got {type(fn).__name__}")
        clean, own_tags = extract_tags(name)
        tags = merge_tags(own_tags, *(node.tags for node in suite.ancestors()))
        unit = TestUnit(
            name=clean,
            fn=fn,
            suite=suite,
            tags=tags,
            skip=skip,
            only=only,
            timeout_ms=_check_timeout(timeout, "it"),
        )
        suite.tests.append(unit)
        return unit

    def add_hook(self, hook_type: str, fn: HookFn) -> HookFn:
        if not callable(fn):
            raise UsageError(f"{hook_type}() expects a callable, got {type(fn).__name__}")
        self._current.hooks(hook_type).append(fn)
        return fn

    def before_all(self, fn: HookFn) -> HookFn:
        return self.add_hook("before_all", fn)

    def before_each(self, fn: HookFn) -> HookFn:
        return self.add_hook("before_each", fn)

    def after_each(self, fn: HookFn) -> HookFn:
        return self.add_hook("after_each", fn)

    def after_all(self, fn: HookFn) -> HookFn:
        return self.add_hook("after_all", fn)

    def iter_tests(self) -> Iterator[TestUnit]:
        """Yield every declared test in traversal order."""
        for node in self.root.walk():
            yield from node.tests

    def reset(self) -> None:
        """Drop every declaration, keeping the same root object."""
        self.root.clear()
        self._current = self.root


class DescribeAPI:
    """``describe(name, body)`` and its variants."""

    def __init__(self, registry: Registry):
        self._registry = registry

    def _declare(
        self,
        name: str,
        body: Optional[Callable[[], Any]] = None,
        skip: bool = False,
        only: bool = False,
        timeout: Optional[float] = None,
    ) -> Any:
        if body is None:

            def decorator(func: Callable[[], Any]) -> Callable[[], Any]:
                self._registry.add_suite(name, func, skip, only, timeout)
                return func

            return decorator
        self._registry.add_suite(name, body, skip, only, timeout)
        return None

    def __call__(self, name: str, body: Optional[Callable[[], Any]] = None, timeout: Optional[float] = None):
        return self._declare(name, body, timeout=timeout)

    def skip(self, name: str, body: Optional[Callable[[], Any]] = None, timeout: Optional[float] = None):
        return self._declare(name, body, skip=True, timeout=timeout)

    def only(self, name: str, body: Optional[Callable[[], Any]] = None, timeout: Optional[float] = None):
        return self._declare(name, body, only=True, timeout=timeout)

    def each(self, table: TableData) -> EachBuilder:
        return EachBuilder(table, self._declare)

    def skip_if(self, condition: Condition) -> Callable[..., Any]:
        return self.skip if resolve_condition(condition) else self

    def run_if(self, condition: Condition) -> Callable[..., Any]:
        return self if resolve_condition(condition) else self.skip

    def todo(self, name: str, body: Optional[Callable[[], Any]] = None) -> None:
        self._declare(f"[TODO] {name}", lambda: None, skip=True)


class ItAPI:
    """``it(name, fn)`` and its variants. Also exposed as ``test``."""

    def __init__(self, registry: Registry):
        self._registry = registry

    def _declare(
        self,
        name: str,
        fn: Optional[TestFn] = None,
        skip: bool = False,
        only: bool = False,
        timeout: Optional[float] = None,
    ) -> Any:
        if fn is None:

            def decorator(func: TestFn) -> TestFn:
                self._registry.add_test(name, func, skip, only, timeout)
                return func

            return decorator
        self._registry.add_test(name, fn, skip, only, timeout)
        return None

    def __call__(self, name: str, fn: Optional[TestFn] = None, timeout: Optional[float] = None):
        return self._declare(name, fn, timeout=timeout)

    def skip(self, name: str, fn: Optional[TestFn] = None, timeout: Optional[float] = None):
        return self._declare(name, fn, skip=True, timeout=timeout)

    def only(self, name: str, fn: Optional[TestFn] = None, timeout: Optional[float] = None):
        return self._declare(name, fn, only=True, timeout=timeout)

    def each(self, table: TableData) -> EachBuilder:
        return EachBuilder(table, self._declare, placeholder=_missing_cases)

    def skip_if(self, condition: Condition) -> Callable[..., Any]:
        return self.skip if resolve_condition(condition) else self

    def run_if(self, condition: Condition) -> Callable[..., Any]:
        return self if resolve_condition(condition) else self.skip

    def todo(self, name: str, fn: Optional[TestFn] = None) -> None:
        self._declare(f"[TODO] {name}", lambda: None, skip=True)

    def failing(self, name: str, fn: Optional[TestFn] = None, timeout: Optional[float] = None):
        """Declare a test that passes only when ``fn`` raises."""
        if fn is None:

            def decorator(func: TestFn) -> TestFn:
                self.failing(name, func, timeout)
                return func

            return decorator

        async def expect_failure() -> None:
            try:
                result = fn()
                if inspect.isawaitable(result):
                    await result
            except Exception:
                return
            raise AssertionError("Expected test to fail but it passed")

        self._declare(f"[FAILING] {name}", expect_failure, timeout=timeout)
        return None


_default_registry = Registry()


def get_registry() -> Registry:
    """Return the registry behind the module-level DSL."""
    return _default_registry


describe = _default_registry.describe
it = _default_registry.it
test = _default_registry.test
platform = _default_registry.platform

before_all = _default_registry.before_all
before_each = _default_registry.before_each
after_each = _default_registry.after_each
after_all = _default_registry.after_all

xit = it.skip
xtest = it.skip
fit = it.only
xdescribe = describe.skip
fdescribe = describe.only


def reset() -> None:
    """Clear the default registry."""
    _default_registry.reset()
