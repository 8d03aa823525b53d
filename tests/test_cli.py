"""Tests for the command-line interface."""

import json
import textwrap

import pytest
from click.testing import CliRunner

from testtree import cli
from testtree.config import get_config, reset_config
from testtree.core.registry import get_registry

PASSING_MODULE = textwrap.dedent(
    """
    from testtree import describe, it

    @describe("Cart @shop")
    def _cart():
        it("adds item", lambda: None)
        it("[TODO-ish] removes item @slow", lambda: None)
    """
)

FAILING_MODULE = textwrap.dedent(
    """
    from testtree import describe, it

    def _broken():
        raise AssertionError("total mismatch")

    describe("Checkout", lambda: it("computes total", _broken))
    """
)


@pytest.fixture(autouse=True)
def isolated(monkeypatch):
    monkeypatch.setattr(cli, "setup_logging", lambda level: None)
    get_registry().reset()
    yield
    get_registry().reset()
    reset_config()


@pytest.fixture
def project(tmp_path, monkeypatch):
    tests_dir = tmp_path / "tests"
    tests_dir.mkdir()
    (tests_dir / "test_cart.py").write_text(PASSING_MODULE)
    monkeypatch.chdir(tmp_path)
    return tmp_path


@pytest.fixture
def runner():
    return CliRunner()


class TestInit:
    """Tests for the init command."""

    def test_creates_config(self, runner, tmp_path):
        output = tmp_path / "testtree.json"
        result = runner.invoke(cli.main, ["init", "--output", str(output)])
        assert result.exit_code == 0
        data = json.loads(output.read_text())
        assert data["project"]["name"] == "my-project"
        assert data["engine"]["default_timeout_ms"] == 5000

    def test_refuses_to_overwrite(self, runner, tmp_path):
        output = tmp_path / "testtree.json"
        output.write_text("{}")
        result = runner.invoke(cli.main, ["init", "--output", str(output)])
        assert result.exit_code == 1
        assert "already exists" in result.output


class TestList:
    """Tests for the list command."""

    def test_json_listing(self, runner, project):
        result = runner.invoke(cli.main, ["list", "--json"])
        assert result.exit_code == 0
        assert json.loads(result.output) == [
            {"suite": "Cart", "test": "adds item", "tags": ["shop"]},
            {"suite": "Cart", "test": "[TODO-ish] removes item", "tags": ["slow", "shop"]},
        ]

    def test_filter_flags(self, runner, project):
        result = runner.invoke(cli.main, ["list", "--json", "--exclude-tag", "slow"])
        assert [entry["test"] for entry in json.loads(result.output)] == ["adds item"]

    def test_table_listing(self, runner, project):
        result = runner.invoke(cli.main, ["list", "--grep", "adds"])
        assert result.exit_code == 0
        assert "Tests (1)" in result.output
        assert "adds item" in result.output

    def test_missing_path(self, runner, project):
        result = runner.invoke(cli.main, ["list", "missing_dir"])
        assert result.exit_code == 1
        assert "Test path not found" in result.output


class TestRun:
    """Tests for the run command."""

    def test_passing_run(self, runner, project):
        result = runner.invoke(cli.main, ["run"])
        assert result.exit_code == 0
        assert "All tests passed!" in result.output
        assert "Cart > adds item" in result.output

    def test_failing_run_exits_nonzero(self, runner, project):
        (project / "tests" / "test_checkout.py").write_text(FAILING_MODULE)
        result = runner.invoke(cli.main, ["run"])
        assert result.exit_code == 1
        assert "Some tests failed!" in result.output
        assert "total mismatch" in result.output

    def test_json_report(self, runner, project):
        report = project / "out" / "report.json"
        result = runner.invoke(cli.main, ["run", "--tag", "slow", "--json-report", str(report)])
        assert result.exit_code == 0
        data = json.loads(report.read_text())
        assert data["summary"]["total"] == 1
        assert data["failures"] == []

    def test_engine_config_applied(self, runner, project):
        (project / "testtree.json").write_text(json.dumps({"engine": {"default_timeout_ms": 250}}))
        result = runner.invoke(cli.main, ["run"])
        assert result.exit_code == 0
        assert get_config().default_timeout_ms == 250

    def test_invalid_config(self, runner, project):
        (project / "testtree.json").write_text(json.dumps({"engine": {"unknown": 1}}))
        result = runner.invoke(cli.main, ["run"])
        assert result.exit_code == 1
        assert "Invalid configuration" in result.output
