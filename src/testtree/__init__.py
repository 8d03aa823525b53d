"""
testtree - hierarchical test suites for Python.

This package provides:
- A describe/it declaration DSL with hooks, tags and table-driven tests
- Filtering by suite, name pattern and tag, shared by listing and running
- An asyncio runner with timeouts, skip/only focus and bail
- Failure reports enriched with captured logs and timing
"""

from testtree.config import get_config, reset_config, set_config
from testtree.core.conditional import resolve_condition
from testtree.core.context import ExecutionContext, compact_summary, format_report
from testtree.core.discovery import list_tests
from testtree.core.errors import (
    EngineError,
    ErrorDescriptor,
    HookFailure,
    UsageError,
    get_error_remapper,
    normalize,
    set_error_remapper,
    unset_error_remapper,
)
from testtree.core.filters import strip_tags
from testtree.core.logs import LogCollector, test_logger
from testtree.core.models import RunResult, TestOutcome, TestStatus
from testtree.core.options import FilterCriteria, OnlySelector, RunOptions
from testtree.core.registry import (
    Registry,
    after_all,
    after_each,
    before_all,
    before_each,
    describe,
    fdescribe,
    fit,
    get_registry,
    it,
    platform,
    reset,
    test,
    xdescribe,
    xit,
    xtest,
)
from testtree.core.runner import Runner, run_tests, run_tests_sync
from testtree.core.timeout import CancellationToken, TimeoutExceeded, current_token

__version__ = "0.1.0"
__author__ = "testtree Team"

__all__ = [
    "CancellationToken",
    "EngineError",
    "ErrorDescriptor",
    "ExecutionContext",
    "FilterCriteria",
    "HookFailure",
    "LogCollector",
    "OnlySelector",
    "Registry",
    "RunOptions",
    "RunResult",
    "Runner",
    "TestOutcome",
    "TestStatus",
    "TimeoutExceeded",
    "UsageError",
    "after_all",
    "after_each",
    "before_all",
    "before_each",
    "compact_summary",
    "current_token",
    "describe",
    "fdescribe",
    "fit",
    "format_report",
    "get_config",
    "get_error_remapper",
    "get_registry",
    "it",
    "list_tests",
    "normalize",
    "platform",
    "reset",
    "reset_config",
    "resolve_condition",
    "run_tests",
    "run_tests_sync",
    "set_config",
    "set_error_remapper",
    "strip_tags",
    "test",
    "test_logger",
    "unset_error_remapper",
    "xdescribe",
    "xit",
    "xtest",
]
