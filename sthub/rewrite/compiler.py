#!/usr/bin/env python3
"""Directive compiler for rewrite rule blocks.

This module turns a ``rewrite_rules`` text block into an immutable RuleSet:
- Line-oriented parsing of RewriteEngine / RewriteCond / RewriteRule
- Quote-aware argument tokenizing
- Rule and condition flag parsing
- Pattern compilation inside the supported regex subset

Compilation is all-or-nothing: the first bad directive raises a
RewriteCompileError carrying its line number and text.

Example:
    >>> rule_set = compile_rules('''
    ... RewriteEngine On
    ... RewriteRule ^/old/(.*) /new/$1 [R=301]
    ... ''')
    >>> len(rule_set)
    1
"""

import re
from dataclasses import dataclass
from typing import Iterator, List, Optional, Tuple

from sthub.core.constants import Directive, Limits
from sthub.rewrite.conditions import Condition
from sthub.rewrite.errors import (
    DanglingCondition,
    InvalidCondition,
    InvalidFlag,
    InvalidPattern,
    MalformedRule,
    MissingEngineDirective,
    UnsupportedDirective,
    UnsupportedRegexFeature,
)
from sthub.rewrite.patterns import RewritePattern, UnsupportedFeature

ENGINE_STATES = {"on": True, "off": False}


@dataclass(frozen=True)
class Flags:
    """Control annotations of one rule."""

    last: bool = False
    redirect: Optional[int] = None
    forbidden: bool = False
    chain: bool = False
    nocase: bool = False
    escape_backreferences: bool = False
    end: bool = False
    skip: int = 0
    restart: bool = False

    @property
    def terminal(self) -> bool:
        """True if a firing rule with these flags ends evaluation."""
        return self.last or self.end or self.forbidden or self.redirect is not None


@dataclass(frozen=True)
class Rule:
    """One compiled RewriteRule."""

    pattern: RewritePattern
    target: str
    flags: Flags
    line: int
    directive: str


@dataclass(frozen=True)
class RuleGroup:
    """A rule plus the conditions guarding it."""

    conditions: Tuple[Condition, ...]
    rule: Rule
    enabled: bool = True


@dataclass(frozen=True)
class RuleSet:
    """Ordered, immutable sequence of rule groups.

    Attributes:
        groups: Groups in source order
        engine_on: State given by the leading RewriteEngine directive
    """

    groups: Tuple[RuleGroup, ...] = ()
    engine_on: bool = True

    def __len__(self) -> int:
        return len(self.groups)

    def __iter__(self) -> Iterator[RuleGroup]:
        return iter(self.groups)

    @property
    def active_groups(self) -> Tuple[RuleGroup, ...]:
        """Groups compiled while the engine was switched on."""
        return tuple(group for group in self.groups if group.enabled)


def tokenize(text: str) -> List[str]:
    """Split directive arguments on whitespace.

    A token may be wrapped in single or double quotes to carry spaces, and a
    backslash-escaped space joins two words outside quotes. Other
    backslashes are kept so regex escapes survive.

    Raises:
        ValueError: On an unclosed quote or text glued to a closing quote
    """
    tokens: List[str] = []
    i = 0
    n = len(text)
    while i < n:
        char = text[i]
        if char.isspace():
            i += 1
            continue

        if char in ("'", '"'):
            end = _closing_quote(text, i + 1, char)
            tokens.append(text[i + 1 : end].replace("\\" + char, char))
            i = end + 1
            if i < n and not text[i].isspace():
                raise ValueError(f"unexpected text after closing quote: {text[i:]!r}")
            continue

        token = []
        while i < n and not text[i].isspace():
            if text[i] == "\\" and i + 1 < n and text[i + 1] == " ":
                token.append(" ")
                i += 2
                continue
            token.append(text[i])
            i += 1
        tokens.append("".join(token))

    return tokens


def _closing_quote(text: str, start: int, quote: str) -> int:
    backslashes = 0
    for i in range(start, len(text)):
        char = text[i]
        if char == quote and backslashes % 2 == 0:
            return i
        backslashes = backslashes + 1 if char == "\\" else 0
    raise ValueError(f"unclosed quote: {text[start - 1:]}")


def _merge_flag_tokens(tokens: List[str]) -> List[str]:
    """Re-join a bracketed flag list that contained spaces (``[L, R=301]``)."""
    for index, token in enumerate(tokens):
        if token.startswith("[") and not token.endswith("]"):
            rest = tokens[index:]
            for end, candidate in enumerate(rest):
                if candidate.endswith("]"):
                    merged = " ".join(rest[: end + 1])
                    return tokens[:index] + [merged] + rest[end + 1 :]
            break
    return tokens


def split_flag_list(token: str) -> List[str]:
    """Split ``[A,B=c]`` into its flag tokens.

    Raises:
        ValueError: If the brackets are missing or the list is empty
    """
    if not (token.startswith("[") and token.endswith("]")):
        raise ValueError(f"flags must be enclosed in brackets: {token}")
    items = [item.strip() for item in token[1:-1].split(",") if item.strip()]
    if not items:
        raise ValueError("empty flag list")
    return items


def parse_rule_flags(token: str, line: int, directive: str) -> Flags:
    """Parse a rule's trailing flag list.

    Raises:
        InvalidFlag: Unknown token, bad redirect code, or conflicting flags
    """
    try:
        items = split_flag_list(token)
    except ValueError:
        raise InvalidFlag(line, directive, token)

    values = {}
    for item in items:
        name, has_value, value = item.partition("=")
        key = name.strip().lower()
        value = value.strip()

        if key in ("r", "redirect"):
            code = Limits.DEFAULT_REDIRECT_STATUS
            if has_value:
                if not value.isdigit():
                    raise InvalidFlag(line, directive, item)
                code = int(value)
                if not Limits.MIN_REDIRECT_STATUS <= code <= Limits.MAX_REDIRECT_STATUS:
                    raise InvalidFlag(line, directive, item)
            values["redirect"] = code
            continue

        if key in ("s", "skip"):
            count = 1
            if has_value:
                if not value.isdigit() or int(value) < 1:
                    raise InvalidFlag(line, directive, item)
                count = int(value)
            values["skip"] = count
            continue

        if has_value:
            raise InvalidFlag(line, directive, item)

        if key in ("l", "last"):
            values["last"] = True
        elif key in ("f", "forbidden"):
            values["forbidden"] = True
        elif key in ("e", "end"):
            values["end"] = True
        elif key in ("n", "next"):
            values["restart"] = True
        elif key in ("c", "chain"):
            values["chain"] = True
        elif key in ("nc", "nocase"):
            values["nocase"] = True
        elif key == "b":
            values["escape_backreferences"] = True
        else:
            raise InvalidFlag(line, directive, item)

    if values.get("forbidden") and "redirect" in values:
        raise InvalidFlag(line, directive, token)

    # At most one of L, END, N and S; N and S need the rule to keep going
    flow = [name for name in ("last", "end", "restart", "skip") if name in values]
    if len(flow) > 1:
        raise InvalidFlag(line, directive, token)
    if flow and flow[0] in ("restart", "skip"):
        if values.get("forbidden") or "redirect" in values:
            raise InvalidFlag(line, directive, token)

    return Flags(**values)


def compile_pattern(source: str, nocase: bool, line: int, directive: str) -> RewritePattern:
    """Compile a rule pattern, mapping regex failures onto compile errors."""
    try:
        return RewritePattern.compile(source, nocase=nocase)
    except UnsupportedFeature as e:
        raise UnsupportedRegexFeature(line, directive, e.feature)
    except re.error as e:
        raise InvalidPattern(line, directive, str(e))


def parse_rule(arguments: str, line: int, directive: str) -> Rule:
    """Parse the arguments of a RewriteRule directive."""
    try:
        tokens = _merge_flag_tokens(tokenize(arguments))
    except ValueError as e:
        raise MalformedRule(line, directive, str(e))

    if len(tokens) < 2:
        raise MalformedRule(line, directive, "expected a pattern and a substitution")
    if len(tokens) > 3:
        raise MalformedRule(line, directive, f"unexpected argument {tokens[3]!r}")

    flags = Flags()
    if len(tokens) == 3:
        flags = parse_rule_flags(tokens[2], line, directive)

    pattern = compile_pattern(tokens[0], flags.nocase, line, directive)
    return Rule(pattern=pattern, target=tokens[1], flags=flags, line=line, directive=directive)


def parse_condition(arguments: str, line: int, directive: str) -> Condition:
    """Parse the arguments of a RewriteCond directive."""
    try:
        tokens = _merge_flag_tokens(tokenize(arguments))
    except ValueError as e:
        raise InvalidCondition(line, directive, str(e))

    flags: List[str] = []
    if len(tokens) > 2 and tokens[-1].startswith("["):
        try:
            flags = split_flag_list(tokens.pop())
        except ValueError as e:
            raise InvalidCondition(line, directive, str(e))

    if len(tokens) < 2:
        raise InvalidCondition(line, directive, "expected a test string and a condition pattern")
    if len(tokens) > 3:
        raise InvalidCondition(line, directive, f"unexpected argument {tokens[3]!r}")

    operand = tokens[2] if len(tokens) == 3 else None
    try:
        return Condition.build(tokens[0], tokens[1], operand, flags)
    except UnsupportedFeature as e:
        raise UnsupportedRegexFeature(line, directive, e.feature)
    except re.error as e:
        raise InvalidPattern(line, directive, str(e))
    except ValueError as e:
        raise InvalidCondition(line, directive, str(e))


def compile_rules(text: str) -> RuleSet:
    """Compile a directive block into a RuleSet.

    Args:
        text: The ``rewrite_rules`` block

    Returns:
        Immutable rule set

    Raises:
        RewriteCompileError: On the first invalid directive
    """
    groups: List[RuleGroup] = []
    pending: List[Condition] = []
    pending_start: Optional[Tuple[int, str]] = None
    engine_on: Optional[bool] = None
    enabled = True

    for number, raw in enumerate(text.splitlines(), start=1):
        directive = raw.strip()
        if not directive:
            continue

        parts = directive.split(None, 1)
        keyword = parts[0]
        arguments = parts[1].strip() if len(parts) > 1 else ""

        if engine_on is None:
            state = None
            if keyword == Directive.ENGINE.value:
                state = ENGINE_STATES.get(arguments.lower())
            if state is None:
                raise MissingEngineDirective(number, directive)
            engine_on = enabled = state
            continue

        if len(directive) > Limits.MAX_DIRECTIVE_LENGTH:
            raise MalformedRule(number, directive[:80], "directive too long")

        if keyword == Directive.ENGINE.value:
            if pending_start:
                raise DanglingCondition(*pending_start)
            state = ENGINE_STATES.get(arguments.lower())
            if state is None:
                raise UnsupportedDirective(number, directive, "RewriteEngine expects On or Off")
            enabled = state

        elif keyword == Directive.CONDITION.value:
            pending.append(parse_condition(arguments, number, directive))
            if pending_start is None:
                pending_start = (number, directive)

        elif keyword == Directive.RULE.value:
            rule = parse_rule(arguments, number, directive)
            groups.append(RuleGroup(conditions=tuple(pending), rule=rule, enabled=enabled))
            pending = []
            pending_start = None

        else:
            raise UnsupportedDirective(number, directive)

    if engine_on is None:
        raise MissingEngineDirective()
    if pending_start:
        raise DanglingCondition(*pending_start)

    return RuleSet(groups=tuple(groups), engine_on=engine_on)
