"""Command-line interface for testtree."""

import json
import logging
import sys
from pathlib import Path
from typing import Any, Callable, Optional

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from testtree import __version__
from testtree.config import TestTreeConfig, create_example_config, get_default_config, set_config


console = Console()


def print_banner() -> None:
    """Print the testtree banner."""
    console.print(
        Panel.fit(
            "[bold blue]testtree[/bold blue] - hierarchical test runner",
            subtitle=f"v{__version__}",
        )
    )


def setup_logging(level: str) -> None:
    # Bound to the real stderr so records are not re-captured while tests run.
    handler = RichHandler(console=Console(file=sys.stderr), show_path=False)
    logging.basicConfig(level=level.upper(), format="%(message)s", datefmt="[%X]", handlers=[handler], force=True)


def filter_options(func: Callable[..., Any]) -> Callable[..., Any]:
    """Attach the filter flags shared by ``list`` and ``run``."""
    options = [
        click.option("--grep", "-g", help="Only tests whose 'suite > test' name matches this pattern"),
        click.option("--grep-invert", help="Hide tests whose 'suite > test' name matches this pattern"),
        click.option("--tag", "-t", "tags", multiple=True, help="Only tests carrying this tag (repeatable)"),
        click.option("--exclude-tag", "exclude_tags", multiple=True, help="Hide tests carrying this tag"),
        click.option("--suite", "suites", multiple=True, help="Only tests in this suite path (repeatable)"),
        click.option("--test", "tests", multiple=True, help="Only tests with this exact name (repeatable)"),
        click.argument("paths", nargs=-1, type=click.Path(exists=False)),
    ]
    for option in reversed(options):
        func = option(func)
    return func


def _criteria(
    settings: dict[str, Any],
    grep: Optional[str],
    grep_invert: Optional[str],
    tags: tuple[str, ...],
    exclude_tags: tuple[str, ...],
    suites: tuple[str, ...],
    tests: tuple[str, ...],
) -> dict[str, Any]:
    """Merge command-line filter flags over the configured run settings."""
    criteria = dict(settings)
    if grep:
        criteria["grep"] = grep
    if grep_invert:
        criteria["grep_invert"] = grep_invert
    if tags:
        criteria["tags"] = list(tags)
    if exclude_tags:
        criteria["exclude_tags"] = list(exclude_tags)
    if suites or tests:
        criteria["only"] = {"suites": list(suites) or None, "tests": list(tests) or None}
    return criteria


def _load_config(ctx: click.Context) -> tuple[TestTreeConfig, Path]:
    config_path = ctx.obj.get("config_path")
    try:
        if config_path:
            config = TestTreeConfig.from_file(config_path)
            return config, Path(config_path).resolve().parent
        try:
            config = TestTreeConfig.find_and_load()
        except FileNotFoundError:
            if ctx.obj.get("verbose"):
                console.print("[dim]No configuration file found, using defaults[/dim]")
            return get_default_config(), Path.cwd()
        return config, Path.cwd()
    except FileNotFoundError as e:
        console.print(f"[red]Error:[/red] {e}")
        console.print("Run [bold]testtree init[/bold] to create a configuration file")
        sys.exit(1)
    except ValueError as e:
        console.print(f"[red]Invalid configuration:[/red] {e}")
        sys.exit(1)


def _configured_options(config: TestTreeConfig, **overrides: Any) -> Any:
    try:
        return config.run.to_run_options(**overrides)
    except ValueError as e:
        console.print(f"[red]Invalid run settings:[/red] {e}")
        sys.exit(1)


def _load_tests(config: TestTreeConfig, base_dir: Path, paths: tuple[str, ...], verbose: bool) -> None:
    """Import declaration modules into the default registry."""
    from testtree.core.discovery import TestDiscovery
    from testtree.core.errors import DiscoveryError
    from testtree.core.registry import get_registry

    get_registry().reset()
    discovery = TestDiscovery(config, base_dir)
    result = discovery.discover(list(paths) or None)
    try:
        modules = discovery.load(result)
    except DiscoveryError as e:
        console.print(f"[red]Error loading tests:[/red] {e}")
        sys.exit(1)
    if verbose:
        console.print(f"[dim]Loaded {len(modules)} test module(s)[/dim]")


@click.group()
@click.version_option(version=__version__, prog_name="testtree")
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=False),
    help="Path to configuration file (default: testtree.json)",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output")
@click.option(
    "--log-level",
    type=click.Choice(["debug", "info", "warning", "error"], case_sensitive=False),
    default="warning",
    help="Logging level for engine diagnostics",
)
@click.pass_context
def main(ctx: click.Context, config: Optional[str], verbose: bool, log_level: str) -> None:
    """testtree - hierarchical test suites with rich failure context.

    Declares suites with describe/it, filters them by name, pattern and tag,
    and runs them with hooks, timeouts and captured logs.
    """
    setup_logging(log_level)
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["config_path"] = config


@main.command()
@click.option(
    "--output",
    "-o",
    type=click.Path(),
    default="testtree.json",
    help="Output path for configuration file",
)
@click.option("--force", "-f", is_flag=True, help="Overwrite existing configuration")
@click.pass_context
def init(ctx: click.Context, output: str, force: bool) -> None:
    """Initialize a new testtree configuration file."""
    print_banner()

    output_path = Path(output)
    if output_path.exists() and not force:
        console.print(
            f"[yellow]Configuration file already exists:[/yellow] {output_path}"
        )
        console.print("Use --force to overwrite")
        sys.exit(1)

    try:
        create_example_config(output_path)
        console.print(f"[green]Created configuration file:[/green] {output_path}")
        console.print("\nNext steps:")
        console.print("  1. Edit the configuration file for your project")
        console.print("  2. Add test modules (test_*.py) to the test directory")
        console.print("  3. Run [bold]testtree run[/bold] to execute tests")
    except OSError as e:
        console.print(f"[red]Error creating configuration:[/red] {e}")
        sys.exit(1)


@main.command(name="list")
@filter_options
@click.option("--json", "as_json", is_flag=True, help="Print the listing as JSON")
@click.pass_context
def list_command(
    ctx: click.Context,
    paths: tuple[str, ...],
    grep: Optional[str],
    grep_invert: Optional[str],
    tags: tuple[str, ...],
    exclude_tags: tuple[str, ...],
    suites: tuple[str, ...],
    tests: tuple[str, ...],
    as_json: bool,
) -> None:
    """List the tests selected by the filters."""
    from testtree.core.discovery import list_tests
    from testtree.core.errors import UsageError

    verbose = ctx.obj.get("verbose", False)
    config, base_dir = _load_config(ctx)
    _load_tests(config, base_dir, paths, verbose)

    settings = _configured_options(config).criteria().model_dump(exclude_none=True)
    try:
        listing = list_tests(_criteria(settings, grep, grep_invert, tags, exclude_tags, suites, tests))
    except UsageError as e:
        console.print(f"[red]Invalid filter:[/red] {e}")
        sys.exit(1)

    if as_json:
        click.echo(json.dumps([meta.to_dict() for meta in listing], indent=2))
        return

    table = Table(title=f"Tests ({len(listing)})")
    table.add_column("Suite", style="cyan")
    table.add_column("Test")
    table.add_column("Tags", style="dim")
    for meta in listing:
        table.add_row(escape(meta.suite), escape(meta.test), ", ".join(meta.tags))
    console.print(table)


@main.command()
@filter_options
@click.option("--bail", is_flag=True, help="Stop after the first failure")
@click.option("--verbose-errors", is_flag=True, help="Keep stack and context in failures")
@click.option(
    "--json-report",
    type=click.Path(dir_okay=False),
    help="Write the run result as JSON to this file",
)
@click.pass_context
def run(
    ctx: click.Context,
    paths: tuple[str, ...],
    grep: Optional[str],
    grep_invert: Optional[str],
    tags: tuple[str, ...],
    exclude_tags: tuple[str, ...],
    suites: tuple[str, ...],
    tests: tuple[str, ...],
    bail: bool,
    verbose_errors: bool,
    json_report: Optional[str],
) -> None:
    """Execute tests and report failures."""
    from testtree.core.errors import UsageError
    from testtree.core.runner import Runner

    print_banner()

    verbose = ctx.obj.get("verbose", False)
    config, base_dir = _load_config(ctx)
    set_config(**config.engine.model_dump())
    _load_tests(config, base_dir, paths, verbose)

    configured = _configured_options(config, bail=bail or None, verbose_errors=verbose_errors or None)
    options = configured.model_dump(exclude_none=True)
    options = _criteria(options, grep, grep_invert, tags, exclude_tags, suites, tests)
    options["on_event"] = _event_printer(verbose)

    try:
        result = Runner().run_sync(options)
    except UsageError as e:
        console.print(f"[red]Invalid options:[/red] {e}")
        sys.exit(1)

    _display_results_summary(result, verbose)

    if json_report:
        report_path = Path(json_report)
        report_path.parent.mkdir(parents=True, exist_ok=True)
        with open(report_path, "w") as f:
            json.dump(result.to_dict(), f, indent=2, default=str)
        console.print(f"[green]Report written:[/green] {report_path}")

    if not result.success:
        sys.exit(1)


def _event_printer(verbose: bool) -> Callable[[Any], None]:
    """Build an ``on_event`` callback printing one line per test."""

    def on_event(event: Any) -> None:
        name = escape(f"{event.suite} > {event.test}" if event.suite else event.test)
        if event.type == "start" and verbose:
            console.print(f"  [dim]… {name}[/dim]")
        elif event.type == "pass":
            console.print(f"  [green]✓[/green] {name} [dim]({event.duration:.0f}ms)[/dim]")
        elif event.type == "fail":
            console.print(f"  [red]✗[/red] {name} [dim]({event.duration:.0f}ms)[/dim]")
        elif event.type == "skip":
            console.print(f"  [yellow]○[/yellow] {name} [dim]({event.reason})[/dim]")

    return on_event


def _display_results_summary(result: Any, verbose: bool) -> None:
    """Display a summary of test results."""
    summary = result.summary

    console.print("\n" + "=" * 50)
    console.print("[bold]Test Results Summary[/bold]")
    console.print("=" * 50)

    table = Table(show_header=False, box=None)
    table.add_column("Metric", style="bold")
    table.add_column("Value", justify="right")

    table.add_row("Total Tests", str(summary.total))
    table.add_row("Passed", f"[green]{summary.passed}[/green]")
    table.add_row("Failed", f"[red]{summary.failed}[/red]")
    table.add_row("Skipped", f"[yellow]{summary.skipped}[/yellow]")
    table.add_row("Duration", f"{summary.duration:.0f}ms")

    if summary.total - summary.skipped > 0:
        table.add_row("Pass Rate", f"{summary.pass_rate:.1f}%")

    console.print(table)

    failed = [outcome for outcome in result.outcomes if outcome.status.value == "failed"]
    if not failed:
        console.print("\n[green]All tests passed![/green]")
        return

    console.print("\n[red]Some tests failed![/red]")
    console.print("\nFailed tests:")
    for outcome in failed[:10]:
        if outcome.error is None:
            console.print(f"  [red]✗[/red] {escape(outcome.suite)} > {escape(outcome.test)}")
        elif verbose:
            console.print(
                Panel(
                    escape(outcome.error.format_report()),
                    title=escape(f"{outcome.suite} > {outcome.test}"),
                    border_style="red",
                )
            )
        else:
            console.print(f"  [red]✗[/red] {escape(outcome.error.compact_summary())}")
            if outcome.error.file:
                console.print(f"    [dim]at {outcome.error.file}:{outcome.error.line}[/dim]")
    if len(failed) > 10:
        console.print(f"  ... and {len(failed) - 10} more")


if __name__ == "__main__":
    main()
