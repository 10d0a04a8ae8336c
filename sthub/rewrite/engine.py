#!/usr/bin/env python3
"""Routing driver for the static hub.

This module turns a compiled RuleSet and a working path into one Decision:
- Ordered, sequential rule evaluation (earlier rewrites feed later rules)
- L / END / R / F short-circuiting
- Atomic chains (C flag)
- Pass restarts (N flag, bounded) and skips (S=n flag)
- A RewriteEngine holder that publishes rule sets by reference swap

Example:
    >>> engine = RewriteEngine(TryFiles("/var/www/html", OsFileProbe()))
    >>> engine.load(rules_text)
    >>> engine.decide("/old/page", ctx)
    RedirectTo(code=301, location='/new/page')
"""

import threading
from typing import Optional, Sequence

from sthub.core.constants import Limits
from sthub.core.logging import get_logger
from sthub.rewrite.compiler import RuleGroup, RuleSet, compile_rules
from sthub.rewrite.conditions import RewriteContext, conditions_hold
from sthub.rewrite.decision import (
    FORBIDDEN,
    NO_MATCH,
    Decision,
    NoMatch,
    RedirectTo,
    Serve,
    describe,
)
from sthub.rewrite.errors import InvalidRewriteTarget, RewriteCompileError, RewriteLoopError
from sthub.rewrite.fallback import TryFiles
from sthub.rewrite.patterns import PASSTHROUGH_TARGET, is_valid_target, substitute


def _chain_end(groups: Sequence[RuleGroup], start: int) -> int:
    """Index just past the atomic unit at ``start``; a C-flagged group links to the next one."""
    end = start
    while end < len(groups) - 1 and groups[end].rule.flags.chain:
        end += 1
    return end + 1


def evaluate(
    rule_set: RuleSet,
    working_path: str,
    context: RewriteContext,
    max_passes: int = Limits.MAX_REWRITE_PASSES,
) -> Decision:
    """Evaluate ``rule_set`` against ``working_path``.

    Pure function of its inputs: all filesystem questions go through
    ``context.probe``. A firing rule with N starts a new pass from the first
    group with the rewritten path; S=n jumps over the next n groups.

    Args:
        rule_set: Compiled rule set
        working_path: Request path with the mount prefix stripped
        context: Request variables and probe
        max_passes: Passes allowed before N-flagged rules count as a loop

    Returns:
        Forbidden or RedirectTo from the first rule that fires with F or R,
        Serve with the final working path if any rule fired, else NoMatch

    Raises:
        InvalidRewriteTarget: If a fired rule produced a malformed target
        RewriteLoopError: If N-flagged rules need more than ``max_passes`` passes
    """
    groups = rule_set.active_groups
    path = working_path
    rewritten = False
    passes = 1
    index = 0

    while index < len(groups):
        end = _chain_end(groups, index)
        saved_path, saved_rewritten = path, rewritten
        next_index = end

        for position in range(index, end):
            group = groups[position]
            rule = group.rule
            flags = rule.flags
            match = None
            if conditions_hold(group.conditions, context):
                match = rule.pattern.match(path)

            if match is None:
                path, rewritten = saved_path, saved_rewritten
                break

            if flags.forbidden:
                return FORBIDDEN

            target = path
            if rule.target != PASSTHROUGH_TARGET:
                target = substitute(rule.target, match, flags.escape_backreferences)
                if not is_valid_target(target, redirect=flags.redirect is not None):
                    raise InvalidRewriteTarget(target, rule.line)

            if flags.redirect is not None:
                return RedirectTo(flags.redirect, target)

            path = target
            rewritten = True
            if flags.last or flags.end:
                return Serve(path)

            # N and S end the chain at this member
            if flags.restart:
                passes += 1
                if passes > max_passes:
                    raise RewriteLoopError(max_passes, rule.line)
                next_index = 0
                break
            if flags.skip:
                next_index = position + 1 + flags.skip
                break

        index = next_index

    return Serve(path) if rewritten else NO_MATCH


class RewriteEngine:
    """Holder for the current rule set snapshot.

    ``load()`` compiles a block fully before publishing it, so requests in
    flight keep evaluating the snapshot they started with. Without a rule
    set the engine runs in try-files mode.
    """

    def __init__(self, try_files: TryFiles, rules: Optional[str] = None):
        """Initialize rewrite engine.

        Args:
            try_files: Fallback policy for try-files mode and unmatched requests
            rules: Optional directive block to compile immediately

        Raises:
            RewriteCompileError: If ``rules`` does not compile
        """
        self.try_files = try_files
        self._rule_set: Optional[RuleSet] = None
        self._lock = threading.Lock()
        self._logger = get_logger("sthub.rewrite")

        if rules is not None:
            self.load(rules)

    @property
    def rule_set(self) -> Optional[RuleSet]:
        return self._rule_set

    @property
    def mode(self) -> str:
        return "try-files" if self._rule_set is None else "rules"

    def load(self, rules: Optional[str]) -> Optional[RuleSet]:
        """Compile ``rules`` and publish the result.

        A missing or blank block selects try-files mode. On a compile error
        the previous snapshot stays published.

        Returns:
            The published rule set (None in try-files mode)

        Raises:
            RewriteCompileError: If the block does not compile
        """
        rule_set = None
        if rules is not None and rules.strip():
            try:
                rule_set = compile_rules(rules)
            except RewriteCompileError as e:
                self._logger.error("Rewrite rules rejected", error=e.message)
                raise

        with self._lock:
            self._rule_set = rule_set

        if rule_set is None:
            self._logger.info("Rewrite engine in try-files mode")
        else:
            self._logger.info(
                "Rewrite rules loaded",
                groups=len(rule_set),
                active=len(rule_set.active_groups),
                engine_on=rule_set.engine_on,
            )
        return rule_set

    def decide(self, path: str, context: RewriteContext) -> Decision:
        """Route one request path.

        Args:
            path: Request path with the mount prefix stripped
            context: Request variables and probe

        Returns:
            The routing decision

        Raises:
            InvalidRewriteTarget: If a fired rule produced a malformed target
            RewriteLoopError: If N-flagged rules do not settle
        """
        with self._lock:
            rule_set = self._rule_set

        if rule_set is None:
            decision = self.try_files.decide(path)
        else:
            decision = evaluate(rule_set, path, context)
            if isinstance(decision, NoMatch):
                # Untouched requests still reach existing files and directory indexes
                decision = self.try_files.decide(path, root_default=False)

        self._logger.debug(
            "Rewrite evaluated", path=path, mode=self.mode, decision=describe(decision)
        )
        return decision
