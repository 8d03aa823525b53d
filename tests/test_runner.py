"""Tests for the runner."""

import asyncio
import logging
import re

import pytest

from testtree.config import EngineConfig, reset_config, set_config
from testtree.core.errors import HookFailure, UsageError
from testtree.core.logs import test_logger as author_logger
from testtree.core.options import FilterCriteria
from testtree.core.registry import Registry
from testtree.core.runner import Runner
from testtree.core.timeout import current_token


@pytest.fixture
def registry():
    return Registry()


@pytest.fixture(autouse=True)
def clean_config():
    yield
    reset_config()


def _noop():
    pass


def _fail(message):
    def body():
        raise AssertionError(message)

    return body


def _names(result, status=None):
    return [
        (o.suite, o.test)
        for o in result.outcomes
        if status is None or o.status.value == status
    ]


def run(registry, options=None, config=None):
    runner = Runner(registry, config=config)
    return runner.run_sync(options if options is not None else {})


class TestBasicRun:
    """Tests for pass/fail reporting."""

    def test_pass_and_fail(self, registry):
        def body():
            registry.it("passes", _noop)
            registry.it("fails", _fail("nope"))

        registry.describe("Suite", body)
        result = run(registry)

        assert result.summary.total == 2
        assert result.summary.passed == 1
        assert result.summary.failed == 1
        assert not result.success
        [failure] = result.failures
        assert (failure.suite, failure.test) == ("Suite", "fails")
        assert failure.error.message == "nope"
        assert failure.error.name == "AssertionError"
        assert failure.error.file.endswith("test_runner.py")
        assert failure.error.stack is None
        assert failure.error.context is None

    def test_empty_registry(self, registry):
        result = run(registry)
        assert result.summary.total == 0
        assert result.success

    def test_default_options(self, registry):
        registry.describe("Suite", lambda: registry.it("t", _noop))
        assert Runner(registry).run_sync().summary.passed == 1

    def test_async_tests_and_hooks(self, registry):
        calls = []

        def body():
            @registry.before_each
            async def setup():
                await asyncio.sleep(0)
                calls.append("setup")

            @registry.it("async test")
            async def check():
                await asyncio.sleep(0)
                calls.append("test")

        registry.describe("Async", body)
        result = run(registry)
        assert result.summary.passed == 1
        assert calls == ["setup", "test"]

    def test_run_is_awaitable(self, registry):
        registry.describe("Suite", lambda: registry.it("t", _noop))
        result = asyncio.run(Runner(registry).run({}))
        assert result.summary.passed == 1

    def test_traversal_order(self, registry):
        """Test own tests run before child suites, in declaration order."""
        order = []

        def outer():
            registry.it("outer 1", lambda: order.append("outer 1"))
            registry.describe("Inner", lambda: registry.it("inner 1", lambda: order.append("inner 1")))
            registry.it("outer 2", lambda: order.append("outer 2"))

        registry.describe("Outer", outer)
        registry.describe("Second", lambda: registry.it("second 1", lambda: order.append("second 1")))
        run(registry)

        assert order == ["outer 1", "outer 2", "inner 1", "second 1"]

    def test_repeated_runs_reset_state(self, registry):
        setups = []

        def body():
            registry.before_all(lambda: setups.append(1))
            registry.it("t", _noop)

        registry.describe("Suite", body)
        runner = Runner(registry)
        first = runner.run_sync({})
        second = runner.run_sync({})
        assert first.summary.passed == second.summary.passed == 1
        assert setups == [1, 1]

    def test_cancellation_token_bound_during_test(self, registry):
        seen = []
        registry.describe("Suite", lambda: registry.it("t", lambda: seen.append(current_token())))
        run(registry)
        assert seen[0] is not None
        assert not seen[0].cancelled
        assert current_token() is None


class TestHooks:
    """Tests for hook ordering and failures."""

    def test_hook_order(self, registry):
        log = []
        registry.before_all(lambda: log.append("root beforeAll"))
        registry.after_all(lambda: log.append("root afterAll"))

        def inner():
            registry.before_each(lambda: log.append("inner beforeEach"))
            registry.after_each(lambda: log.append("inner afterEach"))
            registry.it("t", lambda: log.append("test"))

        def outer():
            registry.before_all(lambda: log.append("outer beforeAll"))
            registry.before_each(lambda: log.append("outer beforeEach"))
            registry.after_each(lambda: log.append("outer afterEach"))
            registry.after_all(lambda: log.append("outer afterAll"))
            registry.describe("Inner", inner)

        registry.describe("Outer", outer)
        result = run(registry)

        assert result.success
        assert log == [
            "root beforeAll",
            "outer beforeAll",
            "outer beforeEach",
            "inner beforeEach",
            "test",
            "inner afterEach",
            "outer afterEach",
            "outer afterAll",
            "root afterAll",
        ]

    def test_root_hooks_run_once(self, registry):
        log = []
        registry.before_all(lambda: log.append("before"))
        registry.after_all(lambda: log.append("after"))
        registry.describe("A", lambda: registry.it("a", lambda: log.append("a")))
        registry.describe("B", lambda: registry.it("b", lambda: log.append("b")))
        run(registry)
        assert log == ["before", "a", "b", "after"]

    def test_hooks_skipped_for_suites_without_visible_tests(self, registry):
        log = []

        def body():
            registry.before_all(lambda: log.append("before"))
            registry.it("hidden", _noop)

        registry.describe("Suite", body)
        result = run(registry, {"grep": "nothing matches"})
        assert log == []
        assert result.summary.total == 0

    def test_before_all_failure(self, registry):
        """Test a failing beforeAll reports once and blocks its subtree."""
        ran = []

        def broken():
            def explode():
                raise RuntimeError("db down")

            registry.before_all(explode)
            registry.after_all(lambda: ran.append("afterAll"))
            registry.it("t1", lambda: ran.append("t1"))
            registry.describe("Child", lambda: registry.it("t2", lambda: ran.append("t2")))

        registry.describe("Broken", broken)
        registry.describe("Healthy", lambda: registry.it("t3", lambda: ran.append("t3")))
        result = run(registry, {"verbose_errors": True})

        assert ran == ["t3"]
        assert _names(result) == [("Broken", "(beforeAll hook)"), ("Healthy", "t3")]
        [failure] = result.failures
        assert failure.error.message == "db down"
        assert isinstance(failure.error.original_error, HookFailure)
        assert failure.error.original_error.hook_type == "beforeAll"

    def test_root_before_all_failure(self, registry):
        def explode():
            raise RuntimeError("no server")

        registry.before_all(explode)
        registry.describe("A", lambda: registry.it("a", _noop))
        registry.describe("B", lambda: registry.it("b", _noop))
        result = run(registry)
        assert _names(result) == [("", "(beforeAll hook)")]

    def test_before_all_failure_bails(self, registry):
        def broken():
            registry.before_all(_fail("setup"))
            registry.it("t1", _noop)

        registry.describe("Broken", broken)
        registry.describe("Next", lambda: registry.it("t2", _noop))
        result = run(registry, {"bail": True})
        assert _names(result) == [("Broken", "(beforeAll hook)")]

    def test_before_each_failure(self, registry):
        ran = []

        def body():
            registry.before_each(_fail("setup broke"))
            registry.after_each(lambda: ran.append("afterEach"))
            registry.it("t", lambda: ran.append("test"))

        registry.describe("Suite", body)
        result = run(registry, {"verbose_errors": True})

        [failure] = result.failures
        assert failure.test == "t"
        assert failure.error.message == "setup broke"
        assert failure.error.context.test_path.test == "t (beforeEach hook)"
        assert ran == ["afterEach"]

    def test_test_error_wins_over_after_each(self, registry):
        def body():
            registry.after_each(_fail("cleanup error"))
            registry.it("t", _fail("test error"))

        registry.describe("Suite", body)
        [failure] = run(registry).failures
        assert failure.error.message == "test error"

    def test_after_each_failure_fails_passing_test(self, registry):
        def body():
            registry.after_each(_fail("cleanup error"))
            registry.it("t", _noop)

        registry.describe("Suite", body)
        result = run(registry)
        [failure] = result.failures
        assert failure.test == "t"
        assert failure.error.message == "cleanup error"
        assert result.summary.total == 1

    def test_after_all_failure(self, registry):
        def body():
            registry.after_all(_fail("teardown"))
            registry.it("t", _noop)

        registry.describe("Suite", body)
        result = run(registry)
        assert result.summary.passed == 1
        assert result.summary.failed == 1
        assert result.failures[0].test == "(afterAll hook)"

    def test_first_failing_hook_stops_the_rest(self, registry):
        calls = []

        def body():
            registry.before_each(_fail("first"))
            registry.before_each(lambda: calls.append("second"))
            registry.it("t", _noop)

        registry.describe("Suite", body)
        run(registry)
        assert calls == []


class TestSkipAndOnly:
    """Tests for skip and focus resolution."""

    def test_skip_reasons(self, registry):
        def focused_suite():
            registry.it("a1", _noop)
            registry.it.only("a2", _noop)

        registry.describe("A", focused_suite)
        registry.describe("B", lambda: registry.it("b1", _noop))
        registry.describe.only("C", lambda: registry.it("c1", _noop))
        registry.describe.skip("D", lambda: registry.it("d1", _noop))

        result = run(registry)
        statuses = {o.test: (o.status.value, o.reason) for o in result.outcomes}
        assert statuses == {
            "a1": ("skipped", "not focused"),
            "a2": ("passed", None),
            "b1": ("skipped", "not focused"),
            "c1": ("passed", None),
            "d1": ("skipped", "explicitly skipped"),
        }

    def test_explicit_skip_without_focus(self, registry):
        def body():
            registry.it.skip("later", _noop)
            registry.it("now", _noop)

        registry.describe("Suite", body)
        result = run(registry)
        assert result.summary.skipped == 1
        assert result.outcomes[0].reason == "explicitly skipped"

    def test_skipped_tests_respect_filters(self, registry):
        def body():
            registry.it("keep @smoke", _noop)
            registry.it("drop", _noop)

        registry.describe.skip("Suite", body)
        result = run(registry, {"tags": ["smoke"]})
        assert _names(result) == [("Suite", "keep")]

    def test_empty_each_only_is_focused(self, registry):
        """Test an empty focused table still turns on focus mode and fails."""

        def body():
            registry.it.each([]).only("cases %s", _noop)
            registry.it("other", _noop)

        registry.describe("Suite", body)
        result = run(registry)

        statuses = {o.test: (o.status.value, o.reason) for o in result.outcomes}
        assert statuses == {
            "cases %s (no test cases)": ("failed", None),
            "other": ("skipped", "not focused"),
        }
        assert result.failures[0].error.message == "No test cases provided to it.each()"

    def test_failing_modifier(self, registry):
        def body():
            registry.it.failing("known bug", _fail("still broken"))
            registry.it.failing("fixed bug", _noop)

        registry.describe("Suite", body)
        result = run(registry)
        assert result.summary.passed == 1
        [failure] = result.failures
        assert failure.test == "[FAILING] fixed bug"
        assert failure.error.message == "Expected test to fail but it passed"


class TestFiltering:
    """Tests for criteria applied during a run."""

    @pytest.fixture
    def tagged(self, registry):
        def auth():
            registry.it("login @smoke", _noop)
            registry.it("logout", _noop)
            registry.it.skip("reset password @smoke @slow", _noop)

        registry.describe("Auth", auth)
        registry.describe("Cart @slow", lambda: registry.it("checkout @smoke", _noop))
        return registry

    @pytest.mark.parametrize(
        "criteria",
        [
            {},
            {"tags": ["smoke"]},
            {"exclude_tags": ["slow"]},
            {"grep": "Auth > log"},
            {"grep_invert": "out"},
            {"only": {"suite": "Cart"}},
            {"only": {"tests": ["logout", "checkout"]}},
        ],
    )
    def test_listing_matches_run(self, tagged, criteria):
        """Test listing shows exactly the tests a run reports."""
        runner = Runner(tagged)
        listed = [(meta.suite, meta.test) for meta in runner.list(dict(criteria))]
        assert listed == _names(runner.run_sync(dict(criteria)))

    def test_filtered_tests_are_invisible(self, tagged):
        result = run(tagged, {"exclude_tags": ["slow"]})
        assert _names(result) == [("Auth", "login"), ("Auth", "logout")]
        assert result.summary.total == 2

    def test_custom_predicate(self, tagged):
        result = run(tagged, {"filter": lambda suite, test: suite == "Cart"})
        assert _names(result) == [("Cart", "checkout")]

    def test_criteria_object_keeps_pattern_flags(self, registry):
        """Test a FilterCriteria instance filters the same way when listed and run."""
        registry.describe("Auth", lambda: registry.it("Login works", _noop))
        criteria = FilterCriteria(grep=re.compile("login", re.IGNORECASE))
        runner = Runner(registry)

        listed = [(meta.suite, meta.test) for meta in runner.list(criteria)]
        assert listed == [("Auth", "Login works")]
        assert _names(runner.run_sync(criteria)) == listed

    def test_only_nested_suite_path(self, registry):
        """Test selecting "A > B" runs B and its descendants only."""

        def suite_b():
            registry.it("b1", _noop)
            registry.describe("C", lambda: registry.it("c1", _noop))

        def suite_a():
            registry.it("a1", _noop)
            registry.describe("B", suite_b)

        registry.describe("A", suite_a)
        registry.describe("Sibling", lambda: registry.it("s1", _noop))

        result = run(registry, {"only": {"suite": "A > B"}})
        assert _names(result) == [("A > B", "b1"), ("A > B > C", "c1")]
        assert result.success


class TestBail:
    """Tests for stopping after the first failure."""

    def test_bail_stops_run(self, registry):
        def first():
            registry.it("t1", _fail("boom"))
            registry.it("t2", _noop)

        registry.describe("First", first)
        registry.describe("Second", lambda: registry.it("t3", _noop))

        assert _names(run(registry, {"bail": True})) == [("First", "t1")]
        assert len(run(registry, {"bail": False}).outcomes) == 3

    def test_after_all_failure_bails_upward(self, registry):
        """Test a nested afterAll failure halts siblings but unwinds every afterAll."""
        log = []

        def first_child():
            def teardown():
                log.append("first afterAll")
                raise RuntimeError("teardown broke")

            registry.after_all(teardown)
            registry.it("t1", lambda: log.append("t1"))

        def outer():
            registry.after_all(lambda: log.append("outer afterAll"))
            registry.describe("First", first_child)
            registry.describe("Second", lambda: registry.it("t2", lambda: log.append("t2")))

        registry.after_all(lambda: log.append("root afterAll"))
        registry.describe("Outer", outer)
        registry.describe("Sibling", lambda: registry.it("t3", lambda: log.append("t3")))

        result = run(registry, {"bail": True})

        assert log == ["t1", "first afterAll", "outer afterAll", "root afterAll"]
        assert _names(result) == [("Outer > First", "t1"), ("Outer > First", "(afterAll hook)")]
        assert result.failures[0].error.message == "teardown broke"

    def test_bail_still_runs_after_all(self, registry):
        log = []

        def body():
            registry.after_all(lambda: log.append("afterAll"))
            registry.it("t1", _fail("boom"))

        registry.describe("Suite", body)
        run(registry, {"bail": True})
        assert log == ["afterAll"]


class TestTimeouts:
    """Tests for per-test and per-hook timeouts."""

    def _slow(self, seconds):
        async def body():
            await asyncio.sleep(seconds)

        return body

    def test_default_timeout(self, registry):
        registry.describe("Suite", lambda: registry.it("slow", self._slow(1)))
        result = run(registry, config=EngineConfig(default_timeout_ms=20))
        [failure] = result.failures
        assert failure.error.message == 'Test "slow" exceeded timeout of 20ms'
        assert failure.error.name == "TimeoutExceeded"

    def test_process_config(self, registry):
        set_config(default_timeout_ms=20)
        registry.describe("Suite", lambda: registry.it("slow", self._slow(1)))
        assert run(registry).summary.failed == 1

    def test_suite_timeout_and_test_override(self, registry):
        def body():
            registry.it("inherits", self._slow(1))
            registry.it("overrides", self._slow(0.05), timeout=2000)

        registry.describe("Suite", body, timeout=20)
        result = run(registry)
        assert _names(result, "failed") == [("Suite", "inherits")]
        assert _names(result, "passed") == [("Suite", "overrides")]

    def test_zero_disables_timeout(self, registry):
        registry.describe("Suite", lambda: registry.it("unbounded", self._slow(0.05), timeout=0))
        result = run(registry, config=EngineConfig(default_timeout_ms=10))
        assert result.success

    def test_hook_timeout(self, registry):
        def body():
            registry.before_each(self._slow(1))
            registry.it("t", _noop)

        registry.describe("Suite", body)
        result = run(registry, config=EngineConfig(hook_timeout_ms=20))
        [failure] = result.failures
        assert failure.error.message == "beforeEach hook exceeded timeout of 20ms"


class TestFailureContext:
    """Tests for log capture and enhanced errors."""

    def test_context_captured(self, registry):
        def body():
            def noisy():
                print("hello from test")
                logging.getLogger("app.orders").warning("careful")
                author_logger.log_domain_event("order_created", {"id": 1})
                raise ValueError("bad order")

            registry.it("places order @orders", noisy)

        registry.describe("Checkout", body)
        result = run(registry, {"verbose_errors": True})

        error = result.failures[0].error
        context = error.context
        assert error.stack is not None
        assert context.test_path.suite == "Checkout"
        assert context.test_path.test == "places order"
        assert context.metadata == {"tags": ["orders"]}
        assert context.timing.duration is not None
        assert [e.message for e in context.logs.ambient] == ["hello from test", "WARN: careful"]
        assert context.logs.domain[0].message == 'DOMAIN_EVENT: order_created {"id": 1}'
        assert context.logs.framework[0].message == "Starting test: Checkout > places order"
        assert error.compact_summary().startswith("bad order (Checkout > places order)")

    def test_log_capture_disabled(self, registry):
        registry.describe("Suite", lambda: registry.it("t", _fail("x")))
        result = run(registry, {"verbose_errors": True, "enhanced_errors": {"log_capture": False}})
        assert result.failures[0].error.context is None

    def test_timing_disabled(self, registry):
        registry.describe("Suite", lambda: registry.it("t", _fail("x")))
        result = run(registry, {"verbose_errors": True, "enhanced_errors": {"timing": False}})
        assert result.failures[0].error.context.timing is None


class TestResultShape:
    """Tests for optional result sections and events."""

    @pytest.fixture
    def mixed(self, registry):
        def body():
            registry.it("ok", _noop)
            registry.it("bad", _fail("x"))
            registry.it.skip("later", _noop)

        registry.describe("Suite", body)
        return registry

    def test_optional_lists(self, mixed):
        default = run(mixed)
        assert default.passed is None
        assert default.skipped is None
        assert "passed" not in default.to_dict()

        full = run(mixed, {"include_passed": True, "include_skipped": True})
        assert [p["test"] for p in full.passed] == ["ok"]
        assert full.skipped == [{"suite": "Suite", "test": "later"}]
        assert full.to_dict()["summary"]["total"] == 3

    def test_event_order(self, mixed):
        events = []
        run(mixed, {"on_event": events.append})
        assert [e.type for e in events] == ["start", "pass", "start", "fail", "skip", "complete"]
        assert len(events[-1].results) == 3

    def test_pass_rate(self, mixed):
        assert run(mixed).summary.pass_rate == 50.0


class TestUsageErrors:
    """Tests for synchronous option validation."""

    @pytest.mark.parametrize(
        "options",
        [None, "Suite", 42, {"unknown": 1}, {"bail": "yes"}, {"grep": "(unclosed"}],
    )
    def test_invalid_options(self, registry, options):
        runner = Runner(registry)
        with pytest.raises(UsageError) as exc_info:
            runner.run(options)
        assert "run_tests() expects an options object" in str(exc_info.value)

    def test_list_rejects_none(self, registry):
        with pytest.raises(UsageError, match="list_tests"):
            Runner(registry).list(None)
