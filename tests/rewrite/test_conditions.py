"""Tests for RewriteCond evaluation."""

from datetime import datetime

import pytest

from sthub.rewrite.conditions import (
    Condition,
    ConditionKind,
    RewriteContext,
    conditions_hold,
    time_variables,
)


class TestRewriteContext:
    """Tests for variable resolution."""

    def test_resolve_variables(self, context_factory):
        ctx = context_factory(document_root="/srv", request_uri="/app.js")
        assert ctx.resolve("%{DOCUMENT_ROOT}%{REQUEST_URI}") == "/srv/app.js"

    def test_unknown_variable_is_empty(self, context_factory):
        ctx = context_factory()
        assert ctx.resolve("[%{NOPE}]") == "[]"

    def test_env_variables(self, context_factory):
        ctx = context_factory(environ={"STAGE": "prod"})
        assert ctx.resolve("%{ENV:STAGE}") == "prod"
        assert ctx.resolve("%{ENV:MISSING}") == ""

    def test_text_without_variables(self, probe):
        ctx = RewriteContext(variables={}, probe=probe)
        assert ctx.resolve("/plain/text") == "/plain/text"

    def test_time_variables(self):
        values = time_variables(datetime(2024, 3, 5, 7, 8, 9))

        assert values["TIME"] == "20240305070809"
        assert values["TIME_YEAR"] == "2024"
        assert values["TIME_MON"] == "03"
        assert values["TIME_DAY"] == "05"
        assert values["TIME_HOUR"] == "07"
        assert values["TIME_MIN"] == "08"
        assert values["TIME_SEC"] == "09"
        # Tuesday, with Sunday as 0
        assert values["TIME_WDAY"] == "2"


class TestFileTests:
    """Tests for -f, -d, -s, -l/-h and -x."""

    def test_is_file(self, probe_factory, context_factory):
        probe = probe_factory(files=["/srv/app.js"])
        ctx = context_factory(probe=probe, request_uri="/app.js")

        cond = Condition.build("%{DOCUMENT_ROOT}%{REQUEST_URI}", "-f")

        assert cond.kind == ConditionKind.FILE
        assert cond.holds(ctx)
        assert probe.calls == [("is_file", "/srv/app.js")]

    def test_negated_file_test(self, probe_factory, context_factory):
        probe = probe_factory(files=["/srv/app.js"])
        cond = Condition.build("%{DOCUMENT_ROOT}%{REQUEST_URI}", "!-f")

        assert not cond.holds(context_factory(probe=probe, request_uri="/app.js"))
        assert cond.holds(context_factory(probe=probe, request_uri="/missing"))

    def test_is_dir(self, probe_factory, context_factory):
        probe = probe_factory(dirs=["/srv/docs"])
        cond = Condition.build("%{DOCUMENT_ROOT}%{REQUEST_URI}", "-d")

        assert cond.holds(context_factory(probe=probe, request_uri="/docs"))
        assert probe.calls == [("is_dir", "/srv/docs")]

    def test_nonempty_file(self, probe_factory, context_factory):
        probe = probe_factory(files=["/srv/a", "/srv/b"], empty=["/srv/b"])
        cond = Condition.build("%{DOCUMENT_ROOT}%{REQUEST_URI}", "-s")

        assert cond.holds(context_factory(probe=probe, request_uri="/a"))
        assert not cond.holds(context_factory(probe=probe, request_uri="/b"))

    @pytest.mark.parametrize("test", ["-l", "-h"])
    def test_symlink(self, test, probe_factory, context_factory):
        probe = probe_factory(symlinks=["/srv/link"])
        cond = Condition.build("%{DOCUMENT_ROOT}%{REQUEST_URI}", test)

        assert cond.holds(context_factory(probe=probe, request_uri="/link"))

    def test_executable(self, probe_factory, context_factory):
        probe = probe_factory(executables=["/srv/run.sh"])
        cond = Condition.build("%{DOCUMENT_ROOT}%{REQUEST_URI}", "-x")

        assert cond.holds(context_factory(probe=probe, request_uri="/run.sh"))
        assert not cond.holds(context_factory(probe=probe, request_uri="/other"))


class TestRegexTests:
    """Tests for regex conditions."""

    def test_anchored_match(self, context_factory):
        cond = Condition.build("%{HTTP_HOST}", r"^www\.")

        assert cond.holds(context_factory(HTTP_HOST="www.example.com"))
        assert not cond.holds(context_factory(HTTP_HOST="example.com"))

    def test_unanchored_pattern_matches_substring(self, context_factory):
        cond = Condition.build("%{HTTP_USER_AGENT}", "Mobile")

        assert cond.kind == ConditionKind.REGEX
        assert cond.holds(context_factory(HTTP_USER_AGENT="Foo Mobile Safari"))

    def test_negated_regex(self, context_factory):
        cond = Condition.build("%{REQUEST_URI}", "!^/api/")

        assert cond.holds(context_factory(request_uri="/index.html"))
        assert not cond.holds(context_factory(request_uri="/api/users"))

    def test_nocase(self, context_factory):
        cond = Condition.build("%{HTTP_HOST}", "^WWW", flags=["NC"])

        assert cond.nocase
        assert cond.holds(context_factory(HTTP_HOST="www.example.com"))

    def test_unknown_flag(self):
        with pytest.raises(ValueError):
            Condition.build("%{HTTP_HOST}", "^www", flags=["QSA"])


class TestComparisons:
    """Tests for integer and string tests."""

    def test_integer_equal(self, context_factory):
        cond = Condition.build("%{SERVER_PORT}", "-eq", "4000")

        assert cond.holds(context_factory(SERVER_PORT="4000"))
        assert not cond.holds(context_factory(SERVER_PORT="8080"))

    @pytest.mark.parametrize(
        "operator,expected",
        [("-ne", True), ("-lt", True), ("-le", True), ("-gt", False), ("-ge", False)],
    )
    def test_integer_operators(self, operator, expected, context_factory):
        cond = Condition.build("%{A}", operator, "%{B}")
        assert cond.holds(context_factory(A="3", B="10")) is expected

    def test_integer_with_non_number(self, context_factory):
        cond = Condition.build("%{A}", "-eq", "1")
        assert not cond.holds(context_factory(A="one"))

    def test_string_equal_empty(self, context_factory):
        cond = Condition.build("%{QUERY_STRING}", "=")

        assert cond.kind == ConditionKind.STRING
        assert cond.holds(context_factory(QUERY_STRING=""))
        assert not cond.holds(context_factory(QUERY_STRING="a=1"))

    def test_string_lexicographic(self, context_factory):
        ctx = context_factory(A="abc")

        assert Condition.build("%{A}", "<abd").holds(ctx)
        assert Condition.build("%{A}", "<=abc").holds(ctx)
        assert Condition.build("%{A}", ">ab").holds(ctx)
        assert Condition.build("%{A}", ">=abc").holds(ctx)
        assert not Condition.build("%{A}", ">abc").holds(ctx)

    def test_string_nocase(self, context_factory):
        cond = Condition.build("%{REQUEST_METHOD}", "=get", flags=["nocase"])
        assert cond.holds(context_factory(REQUEST_METHOD="GET"))

    def test_negated_string(self, context_factory):
        cond = Condition.build("%{REQUEST_METHOD}", "!=GET")
        assert cond.holds(context_factory(REQUEST_METHOD="HEAD"))


class TestConditionsHold:
    """Tests for list evaluation and short-circuiting."""

    def test_empty_list_holds(self, context_factory):
        assert conditions_hold([], context_factory())

    def test_and_stops_at_first_failure(self, probe_factory, context_factory):
        probe = probe_factory()
        ctx = context_factory(probe=probe, request_uri="/a")
        conditions = [
            Condition.build("%{DOCUMENT_ROOT}%{REQUEST_URI}", "-f"),
            Condition.build("%{DOCUMENT_ROOT}%{REQUEST_URI}", "-d"),
        ]

        assert not conditions_hold(conditions, ctx)
        assert probe.calls == [("is_file", "/srv/a")]

    def test_or_stops_at_first_success(self, probe_factory, context_factory):
        probe = probe_factory(files=["/srv/a"])
        ctx = context_factory(probe=probe, request_uri="/a")
        conditions = [
            Condition.build("%{DOCUMENT_ROOT}%{REQUEST_URI}", "-f", flags=["OR"]),
            Condition.build("%{DOCUMENT_ROOT}%{REQUEST_URI}", "-d"),
        ]

        assert conditions_hold(conditions, ctx)
        assert probe.calls == [("is_file", "/srv/a")]

    def test_or_falls_through_to_next(self, probe_factory, context_factory):
        probe = probe_factory(dirs=["/srv/a"])
        ctx = context_factory(probe=probe, request_uri="/a")
        conditions = [
            Condition.build("%{DOCUMENT_ROOT}%{REQUEST_URI}", "-f", flags=["ornext"]),
            Condition.build("%{DOCUMENT_ROOT}%{REQUEST_URI}", "-d"),
        ]

        assert conditions_hold(conditions, ctx)
        assert probe.calls == [("is_file", "/srv/a"), ("is_dir", "/srv/a")]

    def test_failed_or_run_skips_rest(self, probe_factory, context_factory):
        probe = probe_factory()
        ctx = context_factory(probe=probe, request_uri="/a")
        conditions = [
            Condition.build("%{DOCUMENT_ROOT}%{REQUEST_URI}", "-f", flags=["OR"]),
            Condition.build("%{DOCUMENT_ROOT}%{REQUEST_URI}", "-d"),
            Condition.build("%{DOCUMENT_ROOT}%{REQUEST_URI}", "-s"),
        ]

        assert not conditions_hold(conditions, ctx)
        assert ("is_nonempty_file", "/srv/a") not in probe.calls

    def test_or_run_then_and(self, context_factory):
        conditions = [
            Condition.build("%{A}", "=x", flags=["OR"]),
            Condition.build("%{A}", "=y"),
            Condition.build("%{B}", "=z"),
        ]

        assert conditions_hold(conditions, context_factory(A="y", B="z"))
        assert not conditions_hold(conditions, context_factory(A="y", B="q"))
        assert not conditions_hold(conditions, context_factory(A="q", B="z"))
