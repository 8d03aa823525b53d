"""Configuration management for testtree."""

import json
from pathlib import Path
from typing import TYPE_CHECKING, Any, Optional

from pydantic import BaseModel, ConfigDict, Field, StrictBool, field_validator

if TYPE_CHECKING:
    from testtree.core.options import RunOptions


class EngineConfig(BaseModel):
    """Process-wide execution defaults."""

    model_config = ConfigDict(extra="forbid")

    default_timeout_ms: float = Field(default=5000, description="Timeout for tests without an override")
    hook_timeout_ms: float = Field(default=5000, description="Timeout for each setup/teardown hook")

    @field_validator("default_timeout_ms", "hook_timeout_ms")
    @classmethod
    def validate_timeout(cls, v: float) -> float:
        if v < 0:
            raise ValueError("Timeout cannot be negative (use 0 to disable)")
        return v


class EnhancedErrorsConfig(BaseModel):
    """Failure context capture settings."""

    model_config = ConfigDict(extra="forbid")

    log_capture: StrictBool = Field(default=True, description="Capture logs while each test runs")
    max_logs: int = Field(default=100, description="Maximum log entries kept per test")
    timing: StrictBool = Field(default=True, description="Attach timing information to failures")

    @field_validator("max_logs")
    @classmethod
    def validate_max_logs(cls, v: int) -> int:
        if v < 1:
            raise ValueError("max_logs must be at least 1")
        return v


class RunSettings(BaseModel):
    """Default run options stored in the configuration file."""

    grep: Optional[str] = Field(default=None, description="Only run tests whose full name matches")
    grep_invert: Optional[str] = Field(default=None, description="Skip tests whose full name matches")
    tags: list[str] = Field(default_factory=list, description="Run tests carrying any of these tags")
    exclude_tags: list[str] = Field(default_factory=list, description="Never run tests carrying these tags")
    suites: list[str] = Field(default_factory=list, description="Restrict the run to these suite paths")
    tests: list[str] = Field(default_factory=list, description="Restrict the run to these test names")
    bail: bool = Field(default=False, description="Stop after the first failure")
    include_passed: bool = Field(default=False, description="List passed tests in the result")
    include_skipped: bool = Field(default=False, description="List skipped tests in the result")
    verbose_errors: bool = Field(default=False, description="Keep stack and context on failures")
    enhanced_errors: EnhancedErrorsConfig = Field(default_factory=EnhancedErrorsConfig)

    def to_run_options(self, **overrides: Any) -> "RunOptions":
        """Build :class:`RunOptions`, letting ``overrides`` win over stored values."""
        from testtree.core.options import RunOptions

        data: dict[str, Any] = {
            "grep": self.grep,
            "grep_invert": self.grep_invert,
            "tags": self.tags or None,
            "exclude_tags": self.exclude_tags or None,
            "bail": self.bail,
            "include_passed": self.include_passed,
            "include_skipped": self.include_skipped,
            "verbose_errors": self.verbose_errors,
            "enhanced_errors": self.enhanced_errors.model_dump(),
        }
        if self.suites or self.tests:
            data["only"] = {"suites": self.suites or None, "tests": self.tests or None}
        data.update({k: v for k, v in overrides.items() if v is not None})
        return RunOptions.model_validate(data)


class DiscoveryConfig(BaseModel):
    """Where declaration modules are looked up."""

    test_directory: str = Field(default="tests", description="Directory searched for test modules")
    patterns: list[str] = Field(
        default_factory=lambda: ["test_*.py", "*_test.py"],
        description="Glob patterns of test module file names",
    )

    @field_validator("patterns")
    @classmethod
    def validate_patterns(cls, v: list[str]) -> list[str]:
        if not v or not all(p.strip() for p in v):
            raise ValueError("At least one non-empty file pattern is required")
        return v


class ProjectConfig(BaseModel):
    """Project identification and metadata."""

    name: str = Field(default="", description="Project name for identification")
    description: str = Field(default="", description="Brief description shown in reports")


class TestTreeConfig(BaseModel):
    """Main configuration for testtree."""

    __test__ = False

    project: ProjectConfig = Field(default_factory=ProjectConfig)
    engine: EngineConfig = Field(default_factory=EngineConfig)
    discovery: DiscoveryConfig = Field(default_factory=DiscoveryConfig)
    run: RunSettings = Field(default_factory=RunSettings)

    @classmethod
    def from_file(cls, path: Path | str) -> "TestTreeConfig":
        """Load configuration from a JSON file."""
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Configuration file not found: {path}")

        with open(path, "r") as f:
            data = json.load(f)

        return cls.model_validate(data)

    @classmethod
    def find_and_load(cls, start_dir: Path | str | None = None) -> "TestTreeConfig":
        """Find and load configuration file, searching up the directory tree."""
        if start_dir is None:
            start_dir = Path.cwd()
        else:
            start_dir = Path(start_dir)

        config_names = ["testtree.json", ".testtree.json"]

        current = start_dir.resolve()
        while True:
            for name in config_names:
                config_path = current / name
                if config_path.exists():
                    return cls.from_file(config_path)
            if current == current.parent:
                break
            current = current.parent

        raise FileNotFoundError(
            "No configuration file found. Create testtree.json or run 'testtree init'"
        )

    def to_file(self, path: Path | str) -> None:
        """Save configuration to a JSON file."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)

        with open(path, "w") as f:
            json.dump(self.model_dump(), f, indent=2)

    def test_directory(self, base_dir: Path | str | None = None) -> Path:
        """Absolute path of the configured test directory."""
        base = Path.cwd() if base_dir is None else Path(base_dir)
        return (base / self.discovery.test_directory).resolve()


def get_default_config() -> TestTreeConfig:
    """Return a default configuration."""
    return TestTreeConfig(
        project=ProjectConfig(name="my-project"),
        engine=EngineConfig(default_timeout_ms=5000, hook_timeout_ms=5000),
        discovery=DiscoveryConfig(test_directory="tests"),
    )


def create_example_config(output_path: Path | str) -> Path:
    """Create an example configuration file."""
    output_path = Path(output_path)
    config = get_default_config()
    config.project.description = "Brief description of your project"
    config.to_file(output_path)
    return output_path


_engine_config = EngineConfig()


def get_config() -> EngineConfig:
    """Return a copy of the process-wide engine configuration."""
    return _engine_config.model_copy()


def set_config(**changes: Any) -> EngineConfig:
    """Update the process-wide engine configuration.

    Raises:
        pydantic.ValidationError: If a key is unknown or a value is invalid
    """
    global _engine_config
    _engine_config = EngineConfig.model_validate({**_engine_config.model_dump(), **changes})
    return get_config()


def reset_config() -> None:
    global _engine_config
    _engine_config = EngineConfig()
