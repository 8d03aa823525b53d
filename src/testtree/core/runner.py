"""Test execution orchestration.

The runner walks the suite tree depth-first (own tests before child suites,
declaration order), resolving filters, skip and focus flags, running hooks
around each test and collecting one outcome per visible test.
"""

import asyncio
import logging
import time
from typing import Any, Coroutine, Optional

from testtree.config import EngineConfig, get_config
from testtree.core.context import ExecutionContext, TestPath, TimingWindow, enhance
from testtree.core.discovery import list_tests
from testtree.core.errors import ErrorDescriptor, HookFailure, normalize
from testtree.core.filters import matches_filter
from testtree.core.logs import LogCollector, set_current_collector
from testtree.core.models import (
    ROOT_NAME,
    SUITE_SEPARATOR,
    CompleteEvent,
    FailEvent,
    FailureRecord,
    HookFn,
    PassEvent,
    RunResult,
    RunSummary,
    SkipEvent,
    SkipReason,
    StartEvent,
    SuiteNode,
    TestEvent,
    TestMeta,
    TestOutcome,
    TestStatus,
    TestUnit,
)
from testtree.core.options import _MISSING, RunOptions, coerce_options
from testtree.core.registry import Registry, get_registry
from testtree.core.timeout import CancellationToken, bind_token, format_ms, guard, unbind_token

logger = logging.getLogger(__name__)

BEFORE_ALL = "beforeAll"
BEFORE_EACH = "beforeEach"
AFTER_EACH = "afterEach"
AFTER_ALL = "afterAll"


def _elapsed_ms(start: float) -> float:
    return (time.perf_counter() - start) * 1000


class _RunSession:
    """State of a single run: outcomes, bail flag and focus mode."""

    def __init__(self, root: SuiteNode, options: RunOptions, config: EngineConfig):
        self.root = root
        self.options = options
        self.config = config
        self.outcomes: list[TestOutcome] = []
        self.bail = False
        self.only_mode = root.has_only()

    # --- events and outcomes ---

    def _emit(self, event: TestEvent) -> None:
        if self.options.on_event is not None:
            self.options.on_event(event)

    def _record_skip(self, unit: TestUnit, reason: SkipReason) -> None:
        self.outcomes.append(
            TestOutcome(suite=unit.suite_path, test=unit.name, status=TestStatus.SKIPPED, reason=reason.value)
        )
        self._emit(SkipEvent(suite=unit.suite_path, test=unit.name, reason=reason.value))

    def _record_hook_failure(self, node: SuiteNode, label: str, error: ErrorDescriptor) -> None:
        test = f"({label} hook)"
        self.outcomes.append(
            TestOutcome(suite=node.path, test=test, status=TestStatus.FAILED, error=error)
        )
        self._emit(FailEvent(suite=node.path, test=test, duration=0.0, error=error))

    # --- filtering ---

    def _matches(self, unit: TestUnit) -> bool:
        return matches_filter(unit.suite_path, unit.name, unit.tags, self.options)

    def _has_visible_tests(self, node: SuiteNode) -> bool:
        return any(self._matches(unit) for suite in node.walk() for unit in suite.tests)

    def _skip_subtree(self, node: SuiteNode, reason: SkipReason) -> None:
        if node.skip:
            reason = SkipReason.EXPLICIT
        for unit in node.tests:
            if self._matches(unit):
                self._record_skip(unit, SkipReason.EXPLICIT if unit.skip else reason)
        for child in node.children:
            self._skip_subtree(child, reason)

    # --- hooks ---

    async def _run_hooks(self, hooks: list[HookFn], label: str, context: str) -> Optional[ErrorDescriptor]:
        """Run ``hooks`` in order, stopping at the first failure."""
        for hook in hooks:
            try:
                await guard(hook, self.config.hook_timeout_ms, f"{label} hook")
            except Exception as e:
                failure = HookFailure(label, context, e)
                logger.debug("%s", failure)
                descriptor = normalize(e)
                descriptor.original_error = failure
                return descriptor
        return None

    async def _run_lineage_setup(self, node: SuiteNode) -> bool:
        """Run ``before_all`` of every not-yet-set-up suite from the root down."""
        lineage = node.lineage()
        if any(current.setup_failed for current in lineage):
            node.setup_failed = True
            return False

        pending = [current for current in lineage if not current.setup_ran]
        for index, current in enumerate(pending):
            current.setup_ran = True
            if not current.before_all:
                continue
            error = await self._run_hooks(current.before_all, BEFORE_ALL, f"{current.path or ROOT_NAME} ({BEFORE_ALL})")
            if error is not None:
                self._record_hook_failure(current, BEFORE_ALL, error)
                for remaining in pending[index:]:
                    remaining.setup_failed = True
                if self.options.bail:
                    self.bail = True
                return False
        return True

    async def _run_after_all(self, node: SuiteNode) -> bool:
        if not node.after_all:
            return True
        error = await self._run_hooks(node.after_all, AFTER_ALL, f"{node.path or ROOT_NAME} ({AFTER_ALL})")
        if error is None:
            return True
        self._record_hook_failure(node, AFTER_ALL, error)
        if self.options.bail:
            self.bail = True
            return False
        return True

    # --- tests ---

    def _effective_timeout(self, unit: TestUnit) -> float:
        if unit.timeout_ms is not None:
            return unit.timeout_ms
        if unit.suite.timeout_ms is not None:
            return unit.suite.timeout_ms
        return self.config.default_timeout_ms

    def _context(
        self,
        unit: TestUnit,
        collector: LogCollector,
        started_at: float,
        start: float,
        test_name: str,
    ) -> ExecutionContext:
        timing = None
        if self.options.enhanced_errors.timing:
            timing = TimingWindow(start=started_at, end=time.time(), duration=_elapsed_ms(start))
        return ExecutionContext(
            logs=collector.get_logs(),
            timing=timing,
            test_path=TestPath(suite=unit.suite_path, test=test_name),
            metadata={"tags": list(unit.tags)} if unit.tags else {},
        )

    async def _run_test(self, unit: TestUnit) -> None:
        suite_path = unit.suite_path
        full_name = f"{suite_path}{SUITE_SEPARATOR}{unit.name}"
        self._emit(StartEvent(suite=suite_path, test=unit.name))

        collector: Optional[LogCollector] = None
        if self.options.enhanced_errors.log_capture:
            collector = LogCollector(max_entries=self.options.enhanced_errors.max_logs)
            set_current_collector(collector)
            collector.start()
            collector.add_framework_log(f"Starting test: {full_name}")

        started_at = time.time()
        start = time.perf_counter()
        error: Optional[ErrorDescriptor] = None
        try:
            before = await self._run_hooks(
                [hook for node in unit.suite.lineage() for hook in node.before_each],
                BEFORE_EACH,
                f"{full_name} ({BEFORE_EACH})",
            )
            if before is not None:
                error = before
                if collector is not None:
                    context = self._context(unit, collector, started_at, start, f"{unit.name} ({BEFORE_EACH} hook)")
                    error = enhance(before, context)
            else:
                timeout = self._effective_timeout(unit)
                if collector is not None:
                    collector.add_framework_log(f"Executing test function with {format_ms(timeout)}ms timeout")
                token = CancellationToken()
                handle = bind_token(token)
                try:
                    await guard(unit.fn, timeout, f'Test "{unit.name}"', token)
                    if collector is not None:
                        collector.add_framework_log("Test function completed successfully")
                except Exception as e:
                    error = normalize(e)
                    if collector is not None:
                        context = self._context(unit, collector, started_at, start, unit.name)
                        error = enhance(error, context, e)
                finally:
                    unbind_token(handle)
            duration = _elapsed_ms(start)

            after = await self._run_hooks(
                [hook for node in unit.suite.ancestors() for hook in node.after_each],
                AFTER_EACH,
                f"{full_name} ({AFTER_EACH})",
            )
            if after is not None and error is None:
                error = after
                if collector is not None:
                    context = self._context(unit, collector, started_at, start, f"{unit.name} ({AFTER_EACH} hook)")
                    error = enhance(after, context)
        finally:
            if collector is not None:
                collector.add_framework_log(f"Test completed: {'PASSED' if error is None else 'FAILED'}")
                collector.end()
                set_current_collector(None)

        if error is None:
            self.outcomes.append(
                TestOutcome(suite=suite_path, test=unit.name, status=TestStatus.PASSED, duration=duration)
            )
            self._emit(PassEvent(suite=suite_path, test=unit.name, duration=duration))
            return

        self.outcomes.append(
            TestOutcome(suite=suite_path, test=unit.name, status=TestStatus.FAILED, duration=duration, error=error)
        )
        self._emit(FailEvent(suite=suite_path, test=unit.name, duration=duration, error=error))
        if self.options.bail:
            self.bail = True

    async def _run_tests(self, node: SuiteNode) -> None:
        for unit in node.tests:
            if self.bail:
                break
            if not self._matches(unit):
                continue
            if unit.skip:
                self._record_skip(unit, SkipReason.EXPLICIT)
                continue
            if self.only_mode and not unit.is_focused():
                self._record_skip(unit, SkipReason.NOT_FOCUSED)
                continue
            await self._run_test(unit)

    # --- traversal ---

    async def _run_suite(self, node: SuiteNode) -> bool:
        """Run one suite; returns ``False`` when the run must stop."""
        if not self._has_visible_tests(node):
            return True
        node.entered = True

        if node.is_skipped():
            self._skip_subtree(node, SkipReason.EXPLICIT)
            return True
        if self.only_mode and not (node.is_focused() or node.has_only()):
            self._skip_subtree(node, SkipReason.NOT_FOCUSED)
            return True

        setup_ok = await self._run_lineage_setup(node)

        if setup_ok and not self.bail:
            await self._run_tests(node)

        if setup_ok and not self.bail:
            for child in node.children:
                if self.bail:
                    break
                if not await self._run_suite(child):
                    self.bail = True
                    break

        if setup_ok and not await self._run_after_all(node):
            return False

        return not self.bail

    def _build_result(self) -> RunResult:
        summary = RunSummary.from_outcomes(self.outcomes)
        failures = []
        for outcome in self.outcomes:
            if outcome.status != TestStatus.FAILED:
                continue
            error = outcome.error or ErrorDescriptor(message="Unknown error")
            failures.append(
                FailureRecord(
                    suite=outcome.suite,
                    test=outcome.test,
                    error=error if self.options.verbose_errors else error.minimal(),
                    duration=outcome.duration,
                )
            )

        passed = None
        if self.options.include_passed:
            passed = [
                {"suite": o.suite, "test": o.test, "duration": o.duration}
                for o in self.outcomes
                if o.status == TestStatus.PASSED
            ]

        skipped = None
        if self.options.include_skipped:
            skipped = [
                {"suite": o.suite, "test": o.test}
                for o in self.outcomes
                if o.status == TestStatus.SKIPPED
            ]

        return RunResult(
            summary=summary,
            failures=failures,
            passed=passed,
            skipped=skipped,
            outcomes=list(self.outcomes),
        )

    async def execute(self) -> RunResult:
        self.root.reset_state()
        logger.debug("Starting run (only mode: %s, bail: %s)", self.only_mode, self.options.bail)

        for suite in self.root.children:
            await self._run_suite(suite)
            if self.bail:
                break

        if self.root.setup_ran and not self.root.setup_failed:
            await self._run_after_all(self.root)

        self._emit(CompleteEvent(results=list(self.outcomes)))
        result = self._build_result()
        logger.debug(
            "Run finished: %d passed, %d failed, %d skipped",
            result.summary.passed,
            result.summary.failed,
            result.summary.skipped,
        )
        return result


class Runner:
    """Runs the tests of a registry."""

    def __init__(self, registry: Optional[Registry] = None, config: Optional[EngineConfig] = None):
        """Initialize the runner.

        Args:
            registry: Registry to run (the default registry when omitted)
            config: Engine defaults (the process-wide config when omitted)
        """
        self.registry = registry if registry is not None else get_registry()
        self.config = config

    def list(self, criteria: Any = _MISSING) -> list[TestMeta]:
        return list_tests(criteria, self.registry)

    def run(self, options: Any = _MISSING) -> Coroutine[Any, Any, RunResult]:
        """Validate ``options`` now and return the run as a coroutine.

        Raises:
            UsageError: Immediately, if ``options`` is invalid
        """
        run_options = coerce_options(options, RunOptions, "run_tests")
        session = _RunSession(self.registry.root, run_options, self.config or get_config())
        return session.execute()

    def run_sync(self, options: Any = _MISSING) -> RunResult:
        """Run to completion on a fresh event loop."""
        return asyncio.run(self.run(options))


def run_tests(options: Any = _MISSING) -> Coroutine[Any, Any, RunResult]:
    """Run the default registry's tests (awaitable)."""
    return Runner().run(options)


def run_tests_sync(options: Any = _MISSING) -> RunResult:
    return Runner().run_sync(options)
