"""Routing decisions produced by the rewrite engine and the try-files policy.

A decision is one of four immutable variants. The HTTP shell turns it into a
response: Serve -> 200 with the file, RedirectTo -> 3xx with Location,
Forbidden -> 403, NoMatch -> 404.
"""

from dataclasses import dataclass
from typing import Union


@dataclass(frozen=True)
class Serve:
    """Serve the file at ``path`` (relative to the mount prefix)."""

    path: str


@dataclass(frozen=True)
class RedirectTo:
    """Redirect the client to ``location`` with status ``code``."""

    code: int
    location: str


@dataclass(frozen=True)
class Forbidden:
    """Refuse the request."""


@dataclass(frozen=True)
class NoMatch:
    """No rule fired; the caller falls back to try-files or not-found."""


Decision = Union[Serve, RedirectTo, Forbidden, NoMatch]

FORBIDDEN = Forbidden()
NO_MATCH = NoMatch()


def describe(decision: Decision) -> str:
    """Short human readable form used in log lines."""
    if isinstance(decision, Serve):
        return f"serve {decision.path}"
    if isinstance(decision, RedirectTo):
        return f"redirect {decision.code} {decision.location}"
    if isinstance(decision, Forbidden):
        return "forbidden"
    return "no-match"
