"""STHub Rewrite Engine.

This package implements the mod_rewrite style routing of the static hub:
- compile_rules: directive block to immutable RuleSet
- evaluate: RuleSet + working path + context to a Decision
- RewriteEngine: rule set holder with atomic reload and try-files mode

Usage:
    from sthub.rewrite import RewriteEngine, TryFiles, OsFileProbe

    engine = RewriteEngine(TryFiles("/var/www/html", OsFileProbe()), rules_text)
"""

from sthub.rewrite.compiler import Flags, Rule, RuleGroup, RuleSet, compile_rules
from sthub.rewrite.conditions import Condition, RewriteContext
from sthub.rewrite.decision import Decision, Forbidden, NoMatch, RedirectTo, Serve
from sthub.rewrite.engine import RewriteEngine, evaluate
from sthub.rewrite.errors import (
    InvalidRewriteTarget,
    RewriteCompileError,
    RewriteError,
    RewriteLoopError,
)
from sthub.rewrite.fallback import TryFiles
from sthub.rewrite.probe import CachingFileProbe, FileProbe, OsFileProbe

__all__ = [
    "CachingFileProbe",
    "Condition",
    "Decision",
    "FileProbe",
    "Flags",
    "Forbidden",
    "InvalidRewriteTarget",
    "NoMatch",
    "OsFileProbe",
    "RedirectTo",
    "RewriteCompileError",
    "RewriteContext",
    "RewriteEngine",
    "RewriteError",
    "RewriteLoopError",
    "Rule",
    "RuleGroup",
    "RuleSet",
    "Serve",
    "TryFiles",
    "compile_rules",
    "evaluate",
]
