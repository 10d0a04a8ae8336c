"""Rewrite engine error taxonomy.

Compile-time errors reject a directive block as a whole and always carry the
1-based line number and text of the offending directive. Run-time errors are
raised per request and never invalidate the compiled rule set.
"""

from typing import Optional

from sthub.core.constants import ErrorCode


class RewriteError(Exception):
    """Base class for all rewrite engine errors."""

    def __init__(self, message: str, error_code: ErrorCode = ErrorCode.INVALID_INPUT):
        self.message = message
        self.error_code = error_code
        super().__init__(message)


class RewriteCompileError(RewriteError):
    """A directive block could not be compiled into a rule set."""

    reason = "invalid rewrite directive"

    def __init__(
        self,
        line: Optional[int] = None,
        directive: Optional[str] = None,
        detail: Optional[str] = None,
    ):
        self.line = line
        self.directive = directive
        self.detail = detail
        super().__init__(self._format())

    def _format(self) -> str:
        parts = []
        if self.line is not None:
            parts.append(f"line {self.line}")
        reason = self.reason
        if self.detail:
            reason = f"{reason} ({self.detail})"
        parts.append(reason)
        if self.directive:
            parts.append(self.directive)
        return ": ".join(parts)


class MissingEngineDirective(RewriteCompileError):
    reason = "first directive must be 'RewriteEngine On' or 'RewriteEngine Off'"


class UnsupportedDirective(RewriteCompileError):
    reason = "unsupported directive"


class InvalidPattern(RewriteCompileError):
    reason = "invalid pattern"


class UnsupportedRegexFeature(RewriteCompileError):
    reason = "unsupported regex feature"


class InvalidFlag(RewriteCompileError):
    """Unknown, malformed or conflicting flag token."""

    reason = "invalid flag"

    def __init__(
        self, line: Optional[int] = None, directive: Optional[str] = None, token: str = ""
    ):
        self.token = token
        super().__init__(line, directive, repr(token) if token else None)


class InvalidCondition(RewriteCompileError):
    reason = "invalid condition"


class MalformedRule(RewriteCompileError):
    reason = "malformed rule"


class DanglingCondition(RewriteCompileError):
    reason = "condition is not followed by a rule"


class InvalidRewriteTarget(RewriteError):
    """A fired rule produced a target that is neither an absolute path nor an absolute URI."""

    def __init__(self, target: str, line: Optional[int] = None):
        self.target = target
        self.line = line
        location = f" (rule at line {line})" if line is not None else ""
        super().__init__(
            f"Rewrite generated an invalid uri{location}: {target!r}", ErrorCode.INTERNAL_ERROR
        )


class RewriteLoopError(RewriteError):
    """N-flagged rules kept restarting evaluation past the pass limit."""

    def __init__(self, passes: int, line: Optional[int] = None):
        self.passes = passes
        self.line = line
        location = f" (rule at line {line})" if line is not None else ""
        super().__init__(
            f"Rewrite did not settle after {passes} passes{location}", ErrorCode.INTERNAL_ERROR
        )
