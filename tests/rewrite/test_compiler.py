"""Tests for the rewrite directive compiler.

This module tests:
- The leading RewriteEngine requirement and engine toggling
- Rule flag parsing and flag errors
- The supported regex subset
- Condition parsing
- Quote-aware tokenizing
- Error line numbers and messages
"""

import pytest

from sthub.rewrite.compiler import Flags, compile_rules, split_flag_list, tokenize
from sthub.rewrite.conditions import ConditionKind
from sthub.rewrite.errors import (
    DanglingCondition,
    InvalidCondition,
    InvalidFlag,
    InvalidPattern,
    MalformedRule,
    MissingEngineDirective,
    RewriteCompileError,
    UnsupportedDirective,
    UnsupportedRegexFeature,
)


def block(*lines: str) -> str:
    return "\n".join(("RewriteEngine On",) + lines)


class TestEngineDirective:
    """Tests for the RewriteEngine directive."""

    def test_simple_block(self):
        """Compiles one redirect rule."""
        rule_set = compile_rules(block("RewriteRule ^/old/(.*) /new/$1 [R=301]"))

        assert len(rule_set) == 1
        assert rule_set.engine_on
        rule = rule_set.groups[0].rule
        assert rule.target == "/new/$1"
        assert rule.flags.redirect == 301
        assert rule.line == 2
        assert rule.directive == "RewriteRule ^/old/(.*) /new/$1 [R=301]"

    def test_missing_engine_directive(self):
        """First directive must be RewriteEngine."""
        with pytest.raises(MissingEngineDirective) as exc_info:
            compile_rules("RewriteRule ^ /index.html")

        assert exc_info.value.line == 1

    def test_comment_as_first_line(self):
        """A comment is not a valid first line."""
        with pytest.raises(MissingEngineDirective):
            compile_rules("# routing\nRewriteEngine On")

    def test_comment_after_engine(self):
        """Comments are not part of the directive language."""
        with pytest.raises(UnsupportedDirective) as exc_info:
            compile_rules(block("# routing"))

        assert exc_info.value.line == 2

    def test_empty_block(self):
        """An empty block has no engine directive."""
        with pytest.raises(MissingEngineDirective) as exc_info:
            compile_rules("")

        assert exc_info.value.line is None

    def test_keyword_is_case_sensitive(self):
        """Keywords must be spelled exactly."""
        with pytest.raises(MissingEngineDirective):
            compile_rules("rewriteengine On")

        with pytest.raises(UnsupportedDirective):
            compile_rules(block("rewriterule ^ /x"))

    def test_engine_argument_is_case_insensitive(self):
        """On/Off are accepted in any case."""
        assert compile_rules("RewriteEngine on").engine_on
        assert not compile_rules("RewriteEngine OFF").engine_on

    def test_bad_engine_argument(self):
        """Only On and Off are valid engine states."""
        with pytest.raises(MissingEngineDirective):
            compile_rules("RewriteEngine Maybe")

        with pytest.raises(UnsupportedDirective):
            compile_rules(block("RewriteEngine Maybe"))

    def test_engine_off(self):
        """RewriteEngine Off compiles rules but disables them."""
        rule_set = compile_rules("RewriteEngine Off\nRewriteRule ^ /index.html")

        assert not rule_set.engine_on
        assert len(rule_set) == 1
        assert rule_set.active_groups == ()

    def test_engine_toggle(self):
        """Later engine directives toggle the groups that follow."""
        rule_set = compile_rules(
            block(
                "RewriteRule ^/a$ /1",
                "RewriteEngine Off",
                "RewriteRule ^/b$ /2",
                "RewriteEngine On",
                "RewriteRule ^/c$ /3",
            )
        )

        assert len(rule_set) == 3
        assert [g.rule.target for g in rule_set.active_groups] == ["/1", "/3"]

    def test_blank_lines_count_for_line_numbers(self):
        """Line numbers are 1-based over the raw block."""
        with pytest.raises(UnsupportedDirective) as exc_info:
            compile_rules("\nRewriteEngine On\n\nBogus directive")

        assert exc_info.value.line == 4
        assert str(exc_info.value) == "line 4: unsupported directive: Bogus directive"


class TestRuleFlags:
    """Tests for rule flag parsing."""

    def test_no_flags(self):
        flags = compile_rules(block("RewriteRule ^/a$ /b")).groups[0].rule.flags
        assert flags == Flags()
        assert not flags.terminal

    def test_last_and_nocase(self):
        flags = compile_rules(block("RewriteRule ^/a$ /b [L,NC]")).groups[0].rule.flags
        assert flags.last
        assert flags.nocase
        assert flags.terminal

    def test_long_names(self):
        flags = compile_rules(block("RewriteRule ^/a$ /b [last,nocase,chain]")).groups[0].rule.flags
        assert flags.last
        assert flags.nocase
        assert flags.chain

    def test_flags_are_case_insensitive(self):
        flags = compile_rules(block("RewriteRule ^/a$ /b [l,nc,b]")).groups[0].rule.flags
        assert flags.last
        assert flags.nocase
        assert flags.escape_backreferences

    def test_spaces_inside_flag_list(self):
        """A flag list containing spaces is one argument."""
        flags = compile_rules(block("RewriteRule ^/a$ /b [L, R=301]")).groups[0].rule.flags
        assert flags.last
        assert flags.redirect == 301

    def test_default_redirect_code(self):
        flags = compile_rules(block("RewriteRule ^/a$ /b [R]")).groups[0].rule.flags
        assert flags.redirect == 302

    def test_redirect_long_name(self):
        flags = compile_rules(block("RewriteRule ^/a$ /b [redirect=307]")).groups[0].rule.flags
        assert flags.redirect == 307

    def test_forbidden(self):
        flags = compile_rules(block("RewriteRule ^/secret - [F]")).groups[0].rule.flags
        assert flags.forbidden
        assert flags.terminal

    def test_end(self):
        flags = compile_rules(block("RewriteRule ^/a$ /b [END]")).groups[0].rule.flags
        assert flags.end
        assert flags.terminal

    @pytest.mark.parametrize("flags,count", [("[S]", 1), ("[S=3]", 3), ("[skip=2]", 2)])
    def test_skip(self, flags, count):
        parsed = compile_rules(block(f"RewriteRule ^/a$ /b {flags}")).groups[0].rule.flags
        assert parsed.skip == count
        assert not parsed.terminal

    def test_next(self):
        flags = compile_rules(block("RewriteRule ^/a(.*)$ /b$1 [next,NC]")).groups[0].rule.flags
        assert flags.restart
        assert flags.nocase
        assert not flags.terminal

    @pytest.mark.parametrize(
        "flags,token",
        [
            ("[R=200]", "R=200"),
            ("[R=abc]", "R=abc"),
            ("[X]", "X"),
            ("[L=1]", "L=1"),
            ("[S=abc]", "S=abc"),
            ("[S=0]", "S=0"),
            ("[N=2]", "N=2"),
            ("[END=1]", "END=1"),
            ("[]", "[]"),
            ("L", "L"),
        ],
    )
    def test_invalid_flags(self, flags, token):
        """Unknown tokens, bad codes and missing brackets are rejected."""
        with pytest.raises(InvalidFlag) as exc_info:
            compile_rules(block(f"RewriteRule ^/a$ /b {flags}"))

        assert exc_info.value.token == token
        assert exc_info.value.line == 2

    def test_forbidden_with_redirect(self):
        """F and R cannot be combined."""
        with pytest.raises(InvalidFlag):
            compile_rules(block("RewriteRule ^/a$ /b [F,R=301]"))

    @pytest.mark.parametrize(
        "flags", ["[L,END]", "[N,S=2]", "[N,L]", "[END,N]", "[S,R=301]", "[N,F]"]
    )
    def test_conflicting_flow_flags(self, flags):
        """Only one of L, END, N and S; N and S cannot end in a redirect or F."""
        with pytest.raises(InvalidFlag) as exc_info:
            compile_rules(block(f"RewriteRule ^/a$ /b {flags}"))

        assert exc_info.value.token == flags

    def test_split_flag_list(self):
        assert split_flag_list("[L, NC]") == ["L", "NC"]
        with pytest.raises(ValueError):
            split_flag_list("[ ]")


class TestRulePatterns:
    """Tests for pattern compilation."""

    @pytest.mark.parametrize(
        "pattern",
        [r"^(?=a)", r"^/(?!admin)", r"(?<=x)y", r"(?<!x)y", r"^(a)\1$", r"(?i)^/a"],
    )
    def test_unsupported_features(self, pattern):
        with pytest.raises(UnsupportedRegexFeature):
            compile_rules(block(f"RewriteRule {pattern} /x"))

    @pytest.mark.parametrize("pattern", [r"^/(?P<name>[a-z]+)$", r"^/(?:a|b)$", r"^/[(?=]$"])
    def test_supported_groups(self, pattern):
        compile_rules(block(f"RewriteRule {pattern} /x"))

    def test_invalid_regex(self):
        with pytest.raises(InvalidPattern) as exc_info:
            compile_rules(block("RewriteRule ^/(a /x"))

        assert exc_info.value.line == 2

    def test_nocase_flag_compiles_case_insensitive(self):
        rule = compile_rules(block("RewriteRule ^/About$ /about.html [NC]")).groups[0].rule
        assert rule.pattern.match("/ABOUT") is not None


class TestMalformedRules:
    """Tests for rule argument errors."""

    def test_missing_substitution(self):
        with pytest.raises(MalformedRule):
            compile_rules(block("RewriteRule ^/a$"))

    def test_trailing_garbage(self):
        with pytest.raises(MalformedRule):
            compile_rules(block("RewriteRule ^/a$ /b [L] extra"))

    def test_unclosed_quote(self):
        with pytest.raises(MalformedRule):
            compile_rules(block('RewriteRule "^/a$ /b'))

    def test_errors_share_base_class(self):
        with pytest.raises(RewriteCompileError):
            compile_rules(block("RewriteRule"))


class TestConditions:
    """Tests for RewriteCond parsing."""

    def test_conditions_attach_to_next_rule(self):
        rule_set = compile_rules(
            block(
                "RewriteCond %{REQUEST_FILENAME} !-f",
                "RewriteCond %{REQUEST_FILENAME} !-d",
                "RewriteRule ^ /index.html [L]",
                "RewriteRule ^/other$ /x",
            )
        )

        assert len(rule_set.groups[0].conditions) == 2
        assert rule_set.groups[1].conditions == ()

    def test_file_test(self):
        rule_set = compile_rules(block("RewriteCond %{X} !-f", "RewriteRule ^ /x"))
        cond = rule_set.groups[0].conditions[0]
        assert cond.kind == ConditionKind.FILE
        assert cond.operator == "-f"
        assert cond.negate

    def test_condition_flags(self):
        cond = compile_rules(
            block(r"RewriteCond %{HTTP_HOST} ^www\. [NC,OR]", "RewriteRule ^ /x")
        ).groups[0].conditions[0]
        assert cond.kind == ConditionKind.REGEX
        assert cond.nocase
        assert cond.ornext

    def test_integer_comparison(self):
        cond = compile_rules(block("RewriteCond %{SERVER_PORT} -eq 4000", "RewriteRule ^ /x"))
        cond = cond.groups[0].conditions[0]
        assert cond.kind == ConditionKind.INTEGER
        assert cond.operator == "-eq"
        assert cond.operand == "4000"

    def test_quoted_string_test(self):
        cond = compile_rules(block('RewriteCond %{X} "=hello world"', "RewriteRule ^ /x"))
        cond = cond.groups[0].conditions[0]
        assert cond.kind == ConditionKind.STRING
        assert cond.operator == "="
        assert cond.operand == "hello world"

    @pytest.mark.parametrize(
        "directive",
        [
            "RewriteCond %{X} -zz",
            "RewriteCond %{X} -eq",
            "RewriteCond %{X} a [XX]",
            "RewriteCond %{X}",
            "RewriteCond %{X} -eq 1 2",
            "RewriteCond %{X} 'a",
        ],
    )
    def test_invalid_conditions(self, directive):
        with pytest.raises(InvalidCondition) as exc_info:
            compile_rules(block(directive, "RewriteRule ^ /x"))

        assert exc_info.value.line == 2

    def test_condition_regex_subset(self):
        with pytest.raises(UnsupportedRegexFeature):
            compile_rules(block("RewriteCond %{X} (?=a)", "RewriteRule ^ /x"))

    def test_dangling_condition_at_end(self):
        with pytest.raises(DanglingCondition) as exc_info:
            compile_rules(block("RewriteRule ^/a$ /b", "RewriteCond %{X} a"))

        assert exc_info.value.line == 3

    def test_dangling_condition_before_engine_line(self):
        with pytest.raises(DanglingCondition) as exc_info:
            compile_rules(block("RewriteCond %{X} a", "RewriteEngine Off", "RewriteRule ^ /x"))

        assert exc_info.value.line == 2


class TestTokenize:
    """Tests for the argument tokenizer."""

    def test_whitespace(self):
        assert tokenize("a  b\tc") == ["a", "b", "c"]

    def test_quotes(self):
        assert tokenize("a \"b c\" 'd e'") == ["a", "b c", "d e"]

    def test_escaped_space(self):
        assert tokenize(r"^/a\ b$ /x") == ["^/a b$", "/x"]

    def test_regex_escapes_survive(self):
        assert tokenize(r"^/app\.js$") == [r"^/app\.js$"]

    def test_text_after_closing_quote(self):
        with pytest.raises(ValueError):
            tokenize('"a"b')

    def test_quoted_rule_arguments(self):
        rule = compile_rules(block('RewriteRule "^/a b$" "/c d"')).groups[0].rule
        assert rule.pattern.source == "^/a b$"
        assert rule.target == "/c d"
