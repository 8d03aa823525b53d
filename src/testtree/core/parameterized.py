"""Table-driven declarations (``it.each`` / ``describe.each``).

A table is one of:

* a list of lists or tuples, each row spread as positional arguments;
* a list of mappings, each row passed as a single mapping argument;
* a list of scalars, each passed as the only argument;
* a pipe-delimited template string whose first row is the header, every
  other row becoming a mapping keyed by the header cells.
"""

import functools
import json
import math
import re
from collections.abc import Mapping
from typing import Any, Callable, Optional, Protocol, Sequence, Union

TableData = Union[str, Sequence[Any]]

PRINTF_PATTERN = re.compile(r"%[sdojp%]")
_POSITIONAL_PATTERN = re.compile(r"\$(\d+)")
_PROPERTY_PATTERN = re.compile(r"\$(\w+)")
_INT_CELL = re.compile(r"^-?\d+$")
_FLOAT_CELL = re.compile(r"^-?\d*\.\d+$")


class Declare(Protocol):
    def __call__(
        self,
        name: str,
        fn: Callable[[], Any],
        skip: bool = False,
        only: bool = False,
        timeout: Optional[float] = None,
    ) -> Any: ...


def _to_number(value: Any) -> Union[int, float]:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0
    if math.isnan(number):
        return 0
    if number.is_integer():
        return int(number)
    return number


def _to_json(value: Any) -> str:
    try:
        return json.dumps(value, separators=(",", ":"))
    except (TypeError, ValueError):
        return str(value)


def format_test_name(template: str, args: Sequence[Any]) -> str:
    """Substitute printf-style tokens in ``template`` with ``args``.

    ``%s`` string, ``%d`` number, ``%o``/``%j`` JSON, ``%p`` repr, ``%%`` a
    literal percent sign. Any other ``%`` sequence is left as written.
    Missing arguments format as ``None``.
    """
    remaining = iter(args)

    def _replace(match: re.Match) -> str:
        token = match.group(0)
        if token == "%%":
            return "%"
        value = next(remaining, None)
        if token == "%s":
            return "" if value is None else str(value)
        if token == "%d":
            return str(_to_number(value))
        if token in ("%o", "%j"):
            return _to_json(value)
        return repr(value)

    return PRINTF_PATTERN.sub(_replace, template)


def _parse_cell(cell: str) -> Any:
    text = cell.strip()
    if _INT_CELL.match(text):
        return int(text)
    if _FLOAT_CELL.match(text):
        return float(text)
    if text == "true":
        return True
    if text == "false":
        return False
    if text in ("null", "undefined", "None"):
        return None
    if (text.startswith("{") and text.endswith("}")) or (text.startswith("[") and text.endswith("]")):
        try:
            return json.loads(text)
        except ValueError:
            pass
    if len(text) >= 2 and text[0] == text[-1] and text[0] in ("'", '"'):
        return text[1:-1]
    return text


def parse_template_table(template: str) -> list[list[Any]]:
    """Parse a pipe-delimited table into rows of typed cells, header included."""
    lines = [line.strip() for line in template.strip().split("\n")]
    return [[_parse_cell(cell) for cell in line.split("|")] for line in lines if line]


def normalize_table(table: TableData) -> list[list[Any]]:
    """Turn any supported table into a list of positional argument lists."""
    if isinstance(table, str):
        rows = parse_template_table(table)
        if not rows:
            return []
        header = [str(cell) for cell in rows[0]]
        return [[dict(zip(header, row))] for row in rows[1:]]

    normalized = []
    for row in table:
        if isinstance(row, (list, tuple)):
            normalized.append(list(row))
        else:
            normalized.append([row])
    return normalized


def _describe_arg(arg: Any) -> str:
    if isinstance(arg, str):
        return f'"{arg}"'
    if isinstance(arg, (Mapping, list, tuple)):
        return _to_json(arg)
    return str(arg)


def generate_test_name(template: str, args: Sequence[Any], case_index: int) -> str:
    """Build the name of one table row.

    Precedence: printf tokens, then ``$#`` (1-based row index), then ``$N``
    (N-th argument), then ``$prop`` (property of a single mapping argument),
    else ``"<template> [n] (args)"``.
    """
    if PRINTF_PATTERN.search(template):
        return format_test_name(template, args)

    if "$#" in template:
        return template.replace("$#", str(case_index + 1))

    if _POSITIONAL_PATTERN.search(template):

        def _positional(match: re.Match) -> str:
            index = int(match.group(1)) - 1
            return str(args[index]) if 0 <= index < len(args) else match.group(0)

        return _POSITIONAL_PATTERN.sub(_positional, template)

    if _PROPERTY_PATTERN.search(template) and len(args) == 1 and isinstance(args[0], Mapping):
        row = args[0]

        def _property(match: re.Match) -> str:
            key = match.group(1)
            return str(row[key]) if key in row else match.group(0)

        return _PROPERTY_PATTERN.sub(_property, template)

    described = ", ".join(_describe_arg(arg) for arg in args)
    return f"{template} [{case_index + 1}] ({described})"


def _no_cases() -> None:
    """Placeholder body of an empty table."""


class EachBuilder:
    """Declares one test (or suite) per table row.

    Call it as ``builder(name, fn)`` or use it as a decorator with
    ``@builder(name)``; ``.skip`` and ``.only`` flag every generated entry.
    """

    def __init__(self, table: TableData, declare: Declare, placeholder: Callable[[], Any] = _no_cases):
        """Initialize the builder.

        Args:
            table: Rows to declare
            declare: Declaration function receiving name, body and flags
            placeholder: Body of the entry declared for an empty table
                under ``.only``; every other empty-table entry is skipped
        """
        self.table = table
        self.rows = normalize_table(table)
        self._declare = declare
        self._placeholder = placeholder

    def _register(self, name: str, fn: Optional[Callable[..., Any]], skip: bool, only: bool, timeout: Optional[float]):
        if fn is None:

            def decorator(func: Callable[..., Any]) -> Callable[..., Any]:
                self._register(name, func, skip, only, timeout)
                return func

            return decorator

        if not self.rows:
            placeholder = f"{name} (no test cases)"
            if only:
                self._declare(placeholder, self._placeholder, skip=False, only=True, timeout=timeout)
            else:
                self._declare(placeholder, _no_cases, skip=True, only=False, timeout=timeout)
            return None

        for index, args in enumerate(self.rows):
            self._declare(
                generate_test_name(name, args, index),
                functools.partial(fn, *args),
                skip=skip,
                only=only,
                timeout=timeout,
            )
        return None

    def __call__(self, name: str, fn: Optional[Callable[..., Any]] = None, timeout: Optional[float] = None):
        return self._register(name, fn, False, False, timeout)

    def skip(self, name: str, fn: Optional[Callable[..., Any]] = None, timeout: Optional[float] = None):
        return self._register(name, fn, True, False, timeout)

    def only(self, name: str, fn: Optional[Callable[..., Any]] = None, timeout: Optional[float] = None):
        return self._register(name, fn, False, True, timeout)
