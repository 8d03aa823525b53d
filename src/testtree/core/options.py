"""Validated option objects for listing and running tests."""

import re
from typing import Any, Callable, Optional, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    StrictBool,
    ValidationError,
    field_serializer,
    field_validator,
)

from testtree.config import EnhancedErrorsConfig
from testtree.core.errors import UsageError

Predicate = Callable[[str, str], bool]
EventHandler = Callable[[Any], Any]


def _as_list(value: Union[str, list[str], None]) -> Optional[list[str]]:
    if value is None:
        return None
    if isinstance(value, str):
        return [value]
    return list(value)


class OnlySelector(BaseModel):
    """Restrict a run to named suites and/or tests.

    The plural fields take precedence over the singular ones.
    """

    model_config = ConfigDict(extra="forbid")

    suite: Optional[Union[str, list[str]]] = None
    suites: Optional[list[str]] = None
    test: Optional[Union[str, list[str]]] = None
    tests: Optional[list[str]] = None

    def suite_names(self) -> Optional[list[str]]:
        return list(self.suites) if self.suites is not None else _as_list(self.suite)

    def test_names(self) -> Optional[list[str]]:
        return list(self.tests) if self.tests is not None else _as_list(self.test)


class FilterCriteria(BaseModel):
    """Criteria deciding which tests are visible to a listing or a run."""

    model_config = ConfigDict(extra="forbid", arbitrary_types_allowed=True)

    filter: Optional[Predicate] = Field(default=None, exclude=True)
    only: Optional[OnlySelector] = None
    grep: Any = Field(default=None, description="Pattern searched in '<suite> > <test>'")
    grep_invert: Any = Field(default=None, description="Pattern that hides matching tests")
    tags: Optional[list[str]] = None
    exclude_tags: Optional[list[str]] = None

    @field_validator("grep", "grep_invert", mode="before")
    @classmethod
    def compile_pattern(cls, v: Any) -> Optional[re.Pattern]:
        if v is None or isinstance(v, re.Pattern):
            return v
        if isinstance(v, str):
            try:
                return re.compile(v)
            except re.error as e:
                raise ValueError(f"Invalid regular expression {v!r}: {e}") from e
        raise ValueError("Expected a string or a compiled regular expression")

    @field_serializer("grep", "grep_invert")
    def serialize_pattern(self, v: Optional[re.Pattern]) -> Optional[str]:
        return v.pattern if v is not None else None


class RunOptions(FilterCriteria):
    """Options accepted by a run."""

    bail: StrictBool = False
    on_event: Optional[EventHandler] = Field(default=None, exclude=True)
    enhanced_errors: EnhancedErrorsConfig = Field(default_factory=EnhancedErrorsConfig)
    include_passed: StrictBool = False
    include_skipped: StrictBool = False
    verbose_errors: StrictBool = False

    def criteria(self) -> FilterCriteria:
        """The filtering subset of these options."""
        return FilterCriteria(
            filter=self.filter,
            only=self.only,
            grep=self.grep,
            grep_invert=self.grep_invert,
            tags=self.tags,
            exclude_tags=self.exclude_tags,
        )


_MISSING = object()


def _usage_message(entry: str, options: Any) -> str:
    received = "None" if options is None else type(options).__name__
    return (
        f"{entry}() expects an options object, but received {received}. "
        f"Example: {entry}({{'only': {{'suite': 'MySuite'}}}}) or {entry}({{'grep': 'pattern'}})"
    )


def coerce_options(options: Any, model: type[FilterCriteria], entry: str) -> Any:
    """Validate ``options`` into ``model`` or raise :class:`UsageError`.

    Accepts an instance of ``model``, a mapping of its fields, or nothing at
    all (``_MISSING``). Explicit ``None`` is rejected.
    """
    if options is _MISSING:
        return model()
    if isinstance(options, model):
        return options
    if isinstance(options, FilterCriteria) and model is RunOptions:
        # Field values, not a dump: compiled patterns must keep their flags.
        return model.model_validate({name: getattr(options, name) for name in FilterCriteria.model_fields})
    if not isinstance(options, dict):
        raise UsageError(_usage_message(entry, options))
    try:
        return model.model_validate(options)
    except ValidationError as e:
        raise UsageError(f"{_usage_message(entry, options)}\n{e}") from e
