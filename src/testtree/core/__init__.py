"""Core test execution functionality."""

from testtree.core.discovery import TestDiscovery, list_tests
from testtree.core.registry import Registry, get_registry
from testtree.core.runner import Runner, run_tests, run_tests_sync

__all__ = [
    "Registry",
    "Runner",
    "TestDiscovery",
    "get_registry",
    "list_tests",
    "run_tests",
    "run_tests_sync",
]
