#!/usr/bin/env python3
r"""Rule pattern matching and target substitution.

This module provides the regex side of the rewrite engine:
- Supported-subset checking (no lookaround, inline flags or backreferences)
- Anchored matching against the working path
- ``$N`` backreference substitution in targets
- Validation of the substituted target

Example:
    >>> pattern = RewritePattern.compile(r"^/(.*)\.js$")
    >>> match = pattern.match("/app.js")
    >>> substitute("/scripts/$1.js", match)
    '/scripts/app.js'
"""

import re
from dataclasses import dataclass
from typing import Match, Optional, Pattern
from urllib.parse import quote, urlsplit

from sthub.core.constants import Limits

# Target that leaves the working path untouched
PASSTHROUGH_TARGET = "-"

_BACKREFERENCE_RE = re.compile(r"\$([0-9])")

# "(?" openers that stay inside the supported subset
_ALLOWED_GROUP_OPENERS = ("(?:", "(?P<")

_LOOKAROUND_OPENERS = {
    "(?=": "lookahead",
    "(?!": "negative lookahead",
    "(?<=": "lookbehind",
    "(?<!": "negative lookbehind",
}


def find_unsupported_feature(pattern: str) -> Optional[str]:
    """Return a description of the first unsupported regex construct, if any.

    Args:
        pattern: Raw regular expression source

    Returns:
        Feature name, or None when the pattern stays inside the subset
    """
    in_class = False
    i = 0
    while i < len(pattern):
        char = pattern[i]

        if char == "\\":
            following = pattern[i + 1 : i + 2]
            if not in_class and following.isdigit() and following != "0":
                return f"backreference \\{following}"
            i += 2
            continue

        if in_class:
            if char == "]":
                in_class = False
            i += 1
            continue

        if char == "[":
            in_class = True
            # A leading "]" (or "^]") is literal inside a class
            if pattern[i + 1 : i + 2] == "^":
                i += 1
            if pattern[i + 1 : i + 2] == "]":
                i += 1
            i += 1
            continue

        if char == "(" and pattern[i + 1 : i + 2] == "?":
            for opener, name in _LOOKAROUND_OPENERS.items():
                if pattern.startswith(opener, i):
                    return name
            if not pattern.startswith(_ALLOWED_GROUP_OPENERS, i):
                return f"group extension {pattern[i:i + 4]!r}"

        i += 1

    return None


def has_explicit_anchor(pattern: str) -> bool:
    """Return True if the pattern starts with ``^`` or ends with an unescaped ``$``."""
    if pattern.startswith("^"):
        return True
    if not pattern.endswith("$"):
        return False
    backslashes = len(pattern) - len(pattern[:-1].rstrip("\\")) - 1
    return backslashes % 2 == 0


class UnsupportedFeature(ValueError):
    """Raised by RewritePattern.compile for constructs outside the subset."""

    def __init__(self, feature: str):
        self.feature = feature
        super().__init__(feature)


@dataclass(frozen=True)
class RewritePattern:
    """A compiled rule (or condition) pattern.

    Patterns that carry their own anchors are searched; anything else must
    match the whole working path.
    """

    source: str
    regex: Pattern
    anchored: bool
    nocase: bool = False

    @classmethod
    def compile(cls, source: str, nocase: bool = False) -> "RewritePattern":
        """Compile ``source`` inside the supported regex subset.

        Raises:
            ValueError: If the pattern uses an unsupported feature; the
                message names the feature
            re.error: If the pattern is not a valid regular expression
        """
        feature = find_unsupported_feature(source)
        if feature:
            raise UnsupportedFeature(feature)
        regex = re.compile(source, re.IGNORECASE if nocase else 0)
        return cls(source=source, regex=regex, anchored=has_explicit_anchor(source), nocase=nocase)

    def match(self, path: str) -> Optional[Match]:
        """Match ``path``; returns the match object or None."""
        if self.anchored:
            return self.regex.search(path)
        return self.regex.fullmatch(path)

    @property
    def groups(self) -> int:
        return self.regex.groups


def substitute(target: str, match: Match, escape_backreferences: bool = False) -> str:
    """Replace every ``$N`` in ``target`` with the matching capture group.

    Groups that did not participate, or that the pattern does not have,
    resolve to an empty string. ``$0`` is the whole match.

    Args:
        target: Target template
        match: Successful pattern match
        escape_backreferences: Percent-encode substituted text (``B`` flag)
    """

    def replace(m: Match) -> str:
        index = int(m.group(1))
        if index > match.re.groups:
            return ""
        value = match.group(index) or ""
        if escape_backreferences:
            value = quote(value, safe="")
        return value

    return _BACKREFERENCE_RE.sub(replace, target)


def is_absolute_uri(target: str) -> bool:
    """Return True if ``target`` is an http(s) URI with a host."""
    parts = urlsplit(target)
    return parts.scheme in ("http", "https") and bool(parts.netloc)


def is_valid_target(target: str, redirect: bool) -> bool:
    """Check the shape of a substituted target.

    Args:
        target: Substituted target
        redirect: Whether the rule issues a redirect

    Returns:
        True for an absolute path (any rule) or an absolute URI (redirects)
    """
    if not target or len(target) > Limits.MAX_PATH_LENGTH:
        return False
    if any(ord(c) < 0x20 or ord(c) == 0x7F for c in target):
        return False
    if target.startswith("/"):
        # "//host" in a Location header is a network-path reference
        return not (redirect and target.startswith("//"))
    return redirect and is_absolute_uri(target)
