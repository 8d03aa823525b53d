"""Test listing and discovery of declaration modules."""

import importlib.util
import logging
import sys
from dataclasses import dataclass, field
from pathlib import Path
from types import ModuleType
from typing import Any, Optional

from testtree.config import TestTreeConfig
from testtree.core.errors import DiscoveryError
from testtree.core.filters import matches_filter
from testtree.core.models import TestMeta
from testtree.core.options import _MISSING, FilterCriteria, coerce_options
from testtree.core.registry import Registry, get_registry

logger = logging.getLogger(__name__)


def list_tests(criteria: Any = _MISSING, registry: Optional[Registry] = None) -> list[TestMeta]:
    """List registered tests visible under ``criteria``.

    Skip and only flags are ignored: a test is listed exactly when a run with
    the same criteria would not filter it out.

    Raises:
        UsageError: If ``criteria`` is not a valid filter object
    """
    criteria = coerce_options(criteria, FilterCriteria, "list_tests")
    registry = registry if registry is not None else get_registry()
    return [
        TestMeta(suite=unit.suite_path, test=unit.name, tags=list(unit.tags))
        for unit in registry.iter_tests()
        if matches_filter(unit.suite_path, unit.name, unit.tags, criteria)
    ]


@dataclass
class DiscoveryResult:
    """Result of test module discovery."""

    files: list[Path] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def total_count(self) -> int:
        return len(self.files)

    @property
    def success(self) -> bool:
        """Check if discovery was successful."""
        return self.error is None


class TestDiscovery:
    """Finds declaration modules and imports them into the registry."""

    __test__ = False

    def __init__(self, config: TestTreeConfig, base_dir: Path):
        """Initialize test discovery."""
        self.config = config
        self.base_dir = base_dir
        self.test_dir = config.test_directory(base_dir)

    def discover(self, paths: Optional[list[Path | str]] = None) -> DiscoveryResult:
        """Collect test module files from ``paths`` (files or directories).

        Defaults to the configured test directory.
        """
        targets = [Path(p) for p in paths] if paths else [self.test_dir]
        files: list[Path] = []

        for target in targets:
            if not target.is_absolute():
                target = self.base_dir / target
            if not target.exists():
                return DiscoveryResult(error=f"Test path not found: {target}")
            if target.is_file():
                files.append(target.resolve())
                continue
            for pattern in self.config.discovery.patterns:
                files.extend(p.resolve() for p in target.rglob(pattern) if p.is_file())

        unique = sorted(dict.fromkeys(files))
        logger.debug("Discovered %d test module(s)", len(unique))
        return DiscoveryResult(files=unique)

    def _module_name(self, path: Path) -> str:
        try:
            relative = path.relative_to(self.base_dir.resolve())
        except ValueError:
            relative = Path(path.name)
        parts = [part.replace("-", "_").replace(".", "_") for part in relative.with_suffix("").parts]
        return "_testtree_" + "__".join(parts)

    def load_file(self, path: Path) -> ModuleType:
        """Import one declaration module, registering its suites."""
        name = self._module_name(path)
        spec = importlib.util.spec_from_file_location(name, path)
        if spec is None or spec.loader is None:
            raise DiscoveryError(f"Cannot import test module: {path}")

        module = importlib.util.module_from_spec(spec)
        sys.modules[name] = module
        try:
            spec.loader.exec_module(module)
        except Exception as e:
            sys.modules.pop(name, None)
            raise DiscoveryError(f"Failed to load {path}: {e}") from e

        logger.debug("Loaded test module %s", path)
        return module

    def load(self, result: DiscoveryResult) -> list[ModuleType]:
        """Import every discovered module in order."""
        if not result.success:
            raise DiscoveryError(result.error)
        return [self.load_file(path) for path in result.files]
