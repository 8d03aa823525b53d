"""Tag parsing and the filter predicate shared by listing and running."""

import re
from typing import TYPE_CHECKING, Iterable, Optional

from testtree.core.models import SUITE_SEPARATOR

if TYPE_CHECKING:
    from testtree.core.options import FilterCriteria

TAG_PATTERN = re.compile(r"@[\w\-.:]+")


def extract_tags(name: str) -> tuple[str, list[str]]:
    """Split ``name`` into its clean form and the ``@tag`` tokens it carries."""
    tags = []

    def _collect(match: re.Match) -> str:
        tags.append(match.group(0)[1:])
        return ""

    clean = TAG_PATTERN.sub(_collect, name).strip()
    return clean, tags


def strip_tags(name: str) -> str:
    return TAG_PATTERN.sub("", name).strip()


def merge_tags(*groups: Iterable[str]) -> list[str]:
    """Concatenate tag groups, dropping duplicates but keeping first-seen order."""
    return list(dict.fromkeys(tag for group in groups for tag in group))


def _selects_suite(suite_path: str, suites: list[str]) -> bool:
    return any(
        suite_path == suite or suite_path.startswith(suite + SUITE_SEPARATOR)
        for suite in (strip_tags(s) for s in suites)
    )


def matches_filter(
    suite_path: str,
    test_name: str,
    tags: Optional[list[str]] = None,
    criteria: Optional["FilterCriteria"] = None,
) -> bool:
    """Decide whether a test is visible under ``criteria``.

    Checks run in a fixed order and short-circuit on the first rejection:
    custom predicate, only-selector, grep, inverted grep, tag inclusion (any
    of), tag exclusion (none of).
    """
    if criteria is None:
        return True

    if criteria.filter is not None and not criteria.filter(suite_path, test_name):
        return False

    if criteria.only is not None:
        suites = criteria.only.suite_names()
        if suites is not None and not _selects_suite(suite_path, suites):
            return False
        tests = criteria.only.test_names()
        if tests is not None and test_name not in [strip_tags(t) for t in tests]:
            return False

    full_name = f"{suite_path}{SUITE_SEPARATOR}{test_name}"
    if criteria.grep is not None and not criteria.grep.search(full_name):
        return False
    if criteria.grep_invert is not None and criteria.grep_invert.search(full_name):
        return False

    test_tags = tags or []
    if criteria.tags and not any(tag in test_tags for tag in criteria.tags):
        return False
    if criteria.exclude_tags and any(tag in test_tags for tag in criteria.exclude_tags):
        return False

    return True
