#!/usr/bin/env python3
"""RewriteCond evaluation.

This module provides the guard side of the rewrite engine:
- ``%{NAME}`` / ``%{ENV:NAME}`` variable resolution against a request context
- Regex, lexicographic, integer and file tests
- NC (case-insensitive) and OR (or-next) condition flags
- Left-to-right, short-circuit evaluation of a condition list

Conditions are pure predicates: every filesystem question goes through the
FileProbe carried by the RewriteContext.

Example:
    >>> cond = Condition.build("%{DOCUMENT_ROOT}%{REQUEST_URI}", "!-f")
    >>> ctx = RewriteContext({"DOCUMENT_ROOT": "/srv", "REQUEST_URI": "/a"}, probe)
    >>> cond.holds(ctx)
    True
"""

import re
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Dict, Iterable, Mapping, Optional, Sequence

from sthub.rewrite.patterns import RewritePattern
from sthub.rewrite.probe import FileProbe

_VARIABLE_RE = re.compile(r"%\{([A-Za-z0-9_:\-]+)\}")
_BARE_DASH_WORD_RE = re.compile(r"^-[A-Za-z]+$")

ENV_VARIABLE_PREFIX = "ENV:"


class ConditionKind(Enum):
    """Kind of test a condition performs."""

    REGEX = "regex"
    STRING = "string"
    INTEGER = "integer"
    FILE = "file"


FILE_TESTS = {
    "-f": "is_file",
    "-d": "is_dir",
    "-s": "is_nonempty_file",
    "-l": "is_symlink",
    "-h": "is_symlink",
    "-x": "is_executable",
}

INTEGER_TESTS = {
    "-eq": lambda a, b: a == b,
    "-ne": lambda a, b: a != b,
    "-lt": lambda a, b: a < b,
    "-le": lambda a, b: a <= b,
    "-gt": lambda a, b: a > b,
    "-ge": lambda a, b: a >= b,
}

# Longest operators first so "<=" is not read as "<"
STRING_TESTS = {
    "<=": lambda a, b: a <= b,
    ">=": lambda a, b: a >= b,
    "=": lambda a, b: a == b,
    "<": lambda a, b: a < b,
    ">": lambda a, b: a > b,
}

CONDITION_FLAGS = {
    "nc": "nocase",
    "nocase": "nocase",
    "or": "ornext",
    "ornext": "ornext",
}


@dataclass(frozen=True)
class RewriteContext:
    """Per-request snapshot the conditions are evaluated against.

    Attributes:
        variables: Server/request variables (DOCUMENT_ROOT, REQUEST_URI, ...)
        probe: Filesystem probe capability
        environ: Environment snapshot used by ``%{ENV:NAME}``
    """

    variables: Mapping[str, str]
    probe: FileProbe
    environ: Mapping[str, str] = field(default_factory=dict)

    def lookup(self, name: str) -> str:
        """Return the value of one variable; unknown names resolve to ""."""
        if name.startswith(ENV_VARIABLE_PREFIX):
            return str(self.environ.get(name[len(ENV_VARIABLE_PREFIX):], ""))
        return str(self.variables.get(name, ""))

    def resolve(self, template: str) -> str:
        """Replace every ``%{NAME}`` token in ``template``."""
        return _VARIABLE_RE.sub(lambda m: self.lookup(m.group(1)), template)


def time_variables(now: Optional[datetime] = None) -> Dict[str, str]:
    """Build the TIME_* variables for ``now`` (local time by default)."""
    now = now or datetime.now()
    return {
        "TIME": now.strftime("%Y%m%d%H%M%S"),
        "TIME_YEAR": now.strftime("%Y"),
        "TIME_MON": now.strftime("%m"),
        "TIME_DAY": now.strftime("%d"),
        "TIME_HOUR": now.strftime("%H"),
        "TIME_MIN": now.strftime("%M"),
        "TIME_SEC": now.strftime("%S"),
        "TIME_WDAY": str((now.weekday() + 1) % 7),
    }


@dataclass(frozen=True)
class Condition:
    """One compiled RewriteCond guard."""

    test_string: str
    kind: ConditionKind
    operator: str = ""
    operand: str = ""
    pattern: Optional[RewritePattern] = None
    negate: bool = False
    nocase: bool = False
    ornext: bool = False

    @classmethod
    def build(
        cls,
        test_string: str,
        cond_pattern: str,
        operand: Optional[str] = None,
        flags: Iterable[str] = (),
    ) -> "Condition":
        """Build a condition from its directive arguments.

        Args:
            test_string: Variable template to resolve per request
            cond_pattern: Test, optionally prefixed with ``!``
            operand: Right-hand side of an integer comparison
            flags: Condition flag tokens (without brackets)

        Raises:
            ValueError: If the test or a flag is not recognized
            re.error: If a regex test does not compile
        """
        options = {"nocase": False, "ornext": False}
        for token in flags:
            option = CONDITION_FLAGS.get(token.strip().lower())
            if option is None:
                raise ValueError(f"unknown condition flag {token!r}")
            options[option] = True

        negate = cond_pattern.startswith("!")
        test = cond_pattern[1:] if negate else cond_pattern

        if operand is not None:
            if test not in INTEGER_TESTS:
                raise ValueError(f"unknown comparison {test!r}")
            return cls(test_string, ConditionKind.INTEGER, test, operand, negate=negate, **options)

        if test in FILE_TESTS:
            return cls(test_string, ConditionKind.FILE, test, negate=negate, **options)

        if test in INTEGER_TESTS:
            raise ValueError(f"comparison {test!r} needs an operand")

        if _BARE_DASH_WORD_RE.match(test):
            raise ValueError(f"unknown file test {test!r}")

        for operator in STRING_TESTS:
            if test.startswith(operator):
                return cls(
                    test_string,
                    ConditionKind.STRING,
                    operator,
                    test[len(operator):],
                    negate=negate,
                    **options,
                )

        if not test:
            raise ValueError("empty condition pattern")

        pattern = RewritePattern.compile(test, nocase=options["nocase"])
        # Condition regexes test the resolved string by substring, like Apache
        pattern = replace(pattern, anchored=True)
        return cls(test_string, ConditionKind.REGEX, pattern=pattern, negate=negate, **options)

    def holds(self, ctx: RewriteContext) -> bool:
        """Evaluate the condition, negation included."""
        return self._test(ctx) != self.negate

    def _test(self, ctx: RewriteContext) -> bool:
        value = ctx.resolve(self.test_string)

        if self.kind == ConditionKind.FILE:
            return bool(getattr(ctx.probe, FILE_TESTS[self.operator])(value))

        if self.kind == ConditionKind.REGEX:
            return self.pattern.match(value) is not None

        if self.kind == ConditionKind.INTEGER:
            try:
                left = int(value.strip())
                right = int(ctx.resolve(self.operand).strip())
            except ValueError:
                return False
            return INTEGER_TESTS[self.operator](left, right)

        operand = ctx.resolve(self.operand)
        if self.nocase:
            value, operand = value.lower(), operand.lower()
        return STRING_TESTS[self.operator](value, operand)


def conditions_hold(conditions: Sequence[Condition], ctx: RewriteContext) -> bool:
    """Evaluate a condition list left to right with short-circuiting.

    Conditions are AND-ed, except that a run of conditions joined with the
    OR flag is satisfied by its first true member. No condition is resolved
    or probed once the outcome is decided.

    Args:
        conditions: Conditions in source order
        ctx: Request context

    Returns:
        True if the list holds (an empty list always holds)
    """
    index = 0
    count = len(conditions)
    while index < count:
        satisfied = False
        while True:
            condition = conditions[index]
            if not satisfied and condition.holds(ctx):
                satisfied = True
            index += 1
            if not condition.ornext or index >= count:
                break
        if not satisfied:
            return False
    return True
