"""Data models for the suite tree, test outcomes and run results."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Iterator, Optional, Union

from testtree.core.errors import ErrorDescriptor

HookFn = Callable[[], Union[None, Awaitable[None]]]
TestFn = Callable[[], Union[None, Awaitable[None]]]

SUITE_SEPARATOR = " > "
ROOT_NAME = "Root"

HOOK_TYPES = ("before_all", "before_each", "after_each", "after_all")


class TestStatus(str, Enum):
    """Status of a test execution."""

    __test__ = False

    PASSED = "passed"
    FAILED = "failed"
    SKIPPED = "skipped"


class SkipReason(str, Enum):
    """Why a test was reported as skipped."""

    EXPLICIT = "explicitly skipped"
    NOT_FOCUSED = "not focused"


@dataclass(eq=False)
class SuiteNode:
    """A declared group of tests and nested groups (a ``describe`` block).

    Children and tests are owned; ``parent`` is a back-reference only. The
    ``setup_ran``, ``entered`` and ``setup_failed`` fields are transient
    execution state reset at the start of every run.
    """

    name: str
    parent: Optional["SuiteNode"] = field(default=None, repr=False)
    children: list["SuiteNode"] = field(default_factory=list, repr=False)
    tests: list["TestUnit"] = field(default_factory=list, repr=False)
    tags: list[str] = field(default_factory=list)
    before_all: list[HookFn] = field(default_factory=list, repr=False)
    before_each: list[HookFn] = field(default_factory=list, repr=False)
    after_each: list[HookFn] = field(default_factory=list, repr=False)
    after_all: list[HookFn] = field(default_factory=list, repr=False)
    skip: bool = False
    only: bool = False
    timeout_ms: Optional[float] = None
    setup_ran: bool = field(default=False, repr=False)
    entered: bool = field(default=False, repr=False)
    setup_failed: bool = field(default=False, repr=False)

    @property
    def is_root(self) -> bool:
        return self.parent is None

    @property
    def path(self) -> str:
        """Full suite path for reporting, e.g. ``"Outer > Inner"``."""
        names = [node.name for node in self.lineage() if not node.is_root]
        return SUITE_SEPARATOR.join(names)

    def ancestors(self) -> Iterator["SuiteNode"]:
        """Yield this node and every ancestor, innermost first."""
        current: Optional[SuiteNode] = self
        while current is not None:
            yield current
            current = current.parent

    def lineage(self) -> list["SuiteNode"]:
        """Return the chain from the root down to this node."""
        return list(reversed(list(self.ancestors())))

    def walk(self) -> Iterator["SuiteNode"]:
        """Yield this node and all descendants in declaration (pre-)order."""
        yield self
        for child in self.children:
            yield from child.walk()

    def hooks(self, hook_type: str) -> list[HookFn]:
        if hook_type not in HOOK_TYPES:
            raise ValueError(f"Unknown hook type: {hook_type}")
        return getattr(self, hook_type)

    def has_only(self) -> bool:
        """Check whether this node or anything below it is focused."""
        if self.only or any(test.only for test in self.tests):
            return True
        return any(child.has_only() for child in self.children)

    def is_skipped(self) -> bool:
        return any(node.skip for node in self.ancestors())

    def is_focused(self) -> bool:
        return any(node.only for node in self.ancestors())

    def reset_state(self) -> None:
        for node in self.walk():
            node.setup_ran = False
            node.entered = False
            node.setup_failed = False

    def clear(self) -> None:
        """Drop all declared content while keeping this node's identity."""
        self.children = []
        self.tests = []
        self.tags = []
        for hook_type in HOOK_TYPES:
            setattr(self, hook_type, [])
        self.skip = False
        self.only = False
        self.timeout_ms = None
        self.reset_state()


@dataclass(eq=False)
class TestUnit:
    """A single declared, runnable test case."""

    __test__ = False

    name: str
    fn: TestFn = field(repr=False)
    suite: SuiteNode = field(repr=False)
    tags: list[str] = field(default_factory=list)
    skip: bool = False
    only: bool = False
    timeout_ms: Optional[float] = None

    @property
    def suite_path(self) -> str:
        return self.suite.path

    @property
    def full_name(self) -> str:
        return f"{self.suite.path}{SUITE_SEPARATOR}{self.name}"

    def is_focused(self) -> bool:
        return self.only or self.suite.is_focused()


@dataclass
class TestMeta:
    """Listing entry for a registered test."""

    __test__ = False

    suite: str
    test: str
    tags: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {"suite": self.suite, "test": self.test, "tags": list(self.tags)}


@dataclass
class TestOutcome:
    """The result of a single test (or a synthetic hook pseudo-test)."""

    __test__ = False

    suite: str
    test: str
    status: TestStatus
    duration: float = 0.0
    error: Optional[ErrorDescriptor] = None
    reason: Optional[str] = None

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "suite": self.suite,
            "test": self.test,
            "status": self.status.value,
            "duration": self.duration,
            "error": self.error.to_dict() if self.error else None,
            "reason": self.reason,
        }


@dataclass
class RunSummary:
    """Aggregate counts for a run."""

    total: int = 0
    passed: int = 0
    failed: int = 0
    skipped: int = 0
    duration: float = 0.0
    success: bool = True

    @classmethod
    def from_outcomes(cls, outcomes: list[TestOutcome]) -> "RunSummary":
        failed = sum(1 for o in outcomes if o.status == TestStatus.FAILED)
        return cls(
            total=len(outcomes),
            passed=sum(1 for o in outcomes if o.status == TestStatus.PASSED),
            failed=failed,
            skipped=sum(1 for o in outcomes if o.status == TestStatus.SKIPPED),
            duration=sum(o.duration for o in outcomes),
            success=failed == 0,
        )

    @property
    def pass_rate(self) -> float:
        """Percentage of executed (non-skipped) tests that passed."""
        executed = self.total - self.skipped
        if executed <= 0:
            return 0.0
        return self.passed / executed * 100

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "total": self.total,
            "passed": self.passed,
            "failed": self.failed,
            "skipped": self.skipped,
            "duration": self.duration,
            "success": self.success,
        }


@dataclass
class FailureRecord:
    """A failed test as exposed in the run result."""

    suite: str
    test: str
    error: ErrorDescriptor
    duration: float = 0.0

    def to_dict(self) -> dict:
        return {
            "suite": self.suite,
            "test": self.test,
            "error": self.error.to_dict(),
            "duration": self.duration,
        }


@dataclass
class RunResult:
    """Test execution results with summary and categorized tests."""

    summary: RunSummary
    failures: list[FailureRecord] = field(default_factory=list)
    passed: Optional[list[dict[str, Any]]] = None
    skipped: Optional[list[dict[str, Any]]] = None
    outcomes: list[TestOutcome] = field(default_factory=list, repr=False)

    @property
    def success(self) -> bool:
        return self.summary.success

    def to_dict(self) -> dict:
        """Convert to dictionary format."""
        data: dict[str, Any] = {
            "summary": self.summary.to_dict(),
            "failures": [f.to_dict() for f in self.failures],
        }
        if self.passed is not None:
            data["passed"] = list(self.passed)
        if self.skipped is not None:
            data["skipped"] = list(self.skipped)
        return data


# --- Lifecycle events ---


@dataclass
class StartEvent:
    suite: str
    test: str
    type: str = field(default="start", init=False)


@dataclass
class PassEvent:
    suite: str
    test: str
    duration: float
    type: str = field(default="pass", init=False)


@dataclass
class FailEvent:
    suite: str
    test: str
    duration: float
    error: ErrorDescriptor
    type: str = field(default="fail", init=False)


@dataclass
class SkipEvent:
    suite: str
    test: str
    reason: Optional[str] = None
    type: str = field(default="skip", init=False)


@dataclass
class CompleteEvent:
    results: list[TestOutcome]
    type: str = field(default="complete", init=False)


TestEvent = Union[StartEvent, PassEvent, FailEvent, SkipEvent, CompleteEvent]
