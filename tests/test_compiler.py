"""Tests for cohort rule compilation."""

import random

import pytest

from src.cohorts.compiler import (
    ALWAYS_TRUE,
    Condition,
    compile,
    compile_rules,
    escape_like,
    quote_literal,
)
from src.cohorts.fields import CohortField, ValueType
from src.cohorts.rules import Cohort, NumberValue, Rule, TextValue, as_number, to_rule_value
from tests.conftest import make_event


def _rule(field, operator, value, value2=None):
    rule = {"field": field, "operator": operator, "value": value}
    if value2 is not None:
        rule["value2"] = value2
    return rule


class TestFieldWhitelist:
    def test_country_filters_on_language_column(self):
        assert CohortField.lookup("country").store_column == "user_language"

    def test_rage_clicks_is_boolean(self):
        field = CohortField.lookup("has_rage_clicks")
        assert field.store_column == "is_dead_click"
        assert field.value_type is ValueType.BOOLEAN

    def test_unknown_field(self):
        assert CohortField.lookup("password") is None


class TestRuleValues:
    def test_bool_becomes_text(self):
        assert to_rule_value(True) == TextValue("true")

    def test_number(self):
        assert to_rule_value(3) == NumberValue(3.0)

    def test_numeric_text_parses(self):
        assert as_number(TextValue(" 42.5 ")) == 42.5

    @pytest.mark.parametrize("raw", ["abc", "nan", "inf", "-inf", ""])
    def test_non_finite_or_garbage_rejected(self, raw):
        assert as_number(TextValue(raw)) is None


class TestCompile:
    def test_empty_rules_always_true(self):
        result = compile_rules([])
        assert result.predicate is not None
        assert result.predicate.is_always_true
        assert result.predicate.to_sql() == ("1=1", [])
        assert result.warnings == []

    def test_none_rules_always_true(self):
        assert compile(None) == ALWAYS_TRUE

    def test_string_equals(self):
        sql, params = compile([_rule("device_type", "equals", "mobile")]).to_sql()
        assert sql == "device_type = ?"
        assert params == ["mobile"]

    def test_string_contains_escapes_wildcards(self):
        sql, params = compile([_rule("page_path", "contains", "50%_off")]).to_sql()
        assert sql == "page_path LIKE ? ESCAPE '\\'"
        assert params == ["%50\\%\\_off%"]

    def test_boolean_true(self):
        pred = compile([_rule("has_rage_clicks", "equals", "TRUE")])
        assert pred.conditions == (Condition("is_dead_click", "=", (1,)),)

    def test_boolean_anything_else_is_false(self):
        pred = compile([_rule("has_rage_clicks", "equals", "yes")])
        assert pred.conditions[0].params == (0,)

    def test_boolean_json_true(self):
        pred = compile([_rule("has_rage_clicks", "equals", True)])
        assert pred.conditions[0].params == (1,)

    def test_numeric_comparison(self):
        sql, params = compile([_rule("viewport_width", "greater_than", "768")]).to_sql()
        assert sql == "viewport_width > ?"
        assert params == [768.0]

    def test_numeric_equals(self):
        pred = compile([_rule("scroll_depth", "equals", 50)])
        assert pred.conditions == (Condition("scroll_depth", "=", (50.0,)),)

    def test_between(self):
        sql, params = compile([_rule("load_time", "between", 1, 3)]).to_sql()
        assert sql == "load_time BETWEEN ? AND ?"
        assert params == [1.0, 3.0]

    def test_between_reversed_bounds_swapped(self):
        pred = compile([_rule("load_time", "between", 9, "2")])
        assert pred.conditions[0].params == (2.0, 9.0)

    def test_rules_joined_with_and_in_order(self):
        sql, params = compile([
            _rule("device_type", "equals", "mobile"),
            _rule("scroll_depth", "less_than", 25),
        ]).to_sql()
        assert sql == "device_type = ? AND scroll_depth < ?"
        assert params == ["mobile", 25.0]

    def test_accepts_rule_models(self):
        rule = Rule(field="referrer", operator="contains", value="google")
        assert compile([rule]).columns == ["referrer"]


class TestDegradation:
    @pytest.mark.parametrize(
        "rule",
        [
            _rule("password", "equals", "x"),
            _rule("device_type", "matches", "mobile"),
            _rule("viewport_width", "greater_than", "wide"),
            _rule("viewport_width", "greater_than", "nan"),
            _rule("viewport_width", "contains", "10"),
            _rule("device_type", "greater_than", "a"),
            _rule("load_time", "between", 1),
            _rule("load_time", "between", 1, "slow"),
            {"field": "device_type", "operator": "equals"},
            {"operator": "equals", "value": "x"},
            {"field": "device_type", "operator": "equals", "value": {"nested": 1}},
        ],
    )
    def test_bad_rule_skipped_with_warning(self, rule):
        result = compile_rules([rule, _rule("device_type", "equals", "tablet")])
        assert result.predicate.columns == ["device_type"]
        assert result.predicate.conditions[0].params == ("tablet",)
        assert len(result.warnings) == 1
        assert result.warnings[0].rule_index == 0

    def test_all_rules_bad_degrades_to_all_sessions(self):
        result = compile_rules([
            _rule("password", "equals", "x"),
            _rule("device_type", "regex", ".*"),
        ])
        assert result.predicate.is_always_true
        assert len(result.warnings) == 2

    def test_warning_is_logged(self, caplog):
        with caplog.at_level("WARNING", logger="src.cohorts.compiler"):
            compile([_rule("password", "equals", "x")])
        assert "unsupported field 'password'" in caplog.text

    def test_compile_is_deterministic(self):
        rules = [_rule("device_type", "equals", "mobile"), _rule("load_time", "between", 3, 1)]
        assert compile(rules) == compile(rules)


class TestLiterals:
    def test_quote_doubles_single_quotes(self):
        assert quote_literal("it's") == "'it''s'"

    def test_numbers_unquoted(self):
        assert quote_literal(2.5) == "2.5"

    def test_escape_like_escapes_escape_char_first(self):
        assert escape_like("a\\%") == "a\\\\\\%"

    def test_render_inline(self):
        pred = compile([
            _rule("referrer", "equals", "o'reilly"),
            _rule("load_time", "between", 1, 2),
        ])
        assert pred.render_inline() == "referrer = 'o''reilly' AND load_time BETWEEN 1.0 AND 2.0"


class TestCohortHash:
    def test_same_rules_same_hash(self):
        rules = (Rule(field="device_type", operator="equals", value="mobile"),)
        a = Cohort(id="c1", site_id="s", name="A", rules=rules)
        b = Cohort(id="c2", site_id="s", name="B", rules=rules)
        assert a.rules_hash == b.rules_hash

    def test_changed_rules_change_hash(self):
        a = Cohort(id="c", site_id="s", name="A", rules=(Rule(field="device_type", operator="equals", value="mobile"),))
        b = Cohort(id="c", site_id="s", name="A", rules=(Rule(field="device_type", operator="equals", value="tablet"),))
        assert a.rules_hash != b.rules_hash


PAYLOAD_PARTS = ["'", "\\", ";", "--", "%", "_", " ", "x", '"', "OR 1=1", "DROP TABLE events"]


def _payloads(seed: int, count: int) -> list[str]:
    rng = random.Random(seed)
    return [
        "".join(rng.choice(PAYLOAD_PARTS) for _ in range(rng.randint(1, 8)))
        for _ in range(count)
    ]


class TestInjectionSafety:
    """Hostile rule values must only ever match themselves."""

    @pytest.mark.parametrize("payload", _payloads(seed=7, count=40))
    def test_values_never_reach_sql_text(self, payload):
        sql, params = compile([_rule("referrer", "equals", payload)]).to_sql()
        assert sql == "referrer = ?"
        assert params == [payload]

    @pytest.mark.parametrize("payload", _payloads(seed=11, count=25))
    def test_bound_equals_matches_exactly(self, payload, load, store):
        load([
            make_event("s_hit", referrer=payload),
            make_event("s_miss", referrer="decoy"),
        ])
        sql, params = compile([_rule("referrer", "equals", payload)]).to_sql()
        rows = store.execute(f"SELECT session_id FROM events WHERE {sql}", params)
        assert [r["session_id"] for r in rows] == ["s_hit"]

    @pytest.mark.parametrize("payload", _payloads(seed=13, count=25))
    def test_bound_contains_matches_literally(self, payload, load, store):
        load([
            make_event("s_hit", page_path=f"/a{payload}b"),
            make_event("s_miss", page_path="/decoy"),
        ])
        sql, params = compile([_rule("page_path", "contains", payload)]).to_sql()
        rows = store.execute(f"SELECT session_id FROM events WHERE {sql}", params)
        assert [r["session_id"] for r in rows] == ["s_hit"]

    @pytest.mark.parametrize("payload", _payloads(seed=17, count=25))
    def test_inline_rendering_is_equivalent(self, payload, load, store):
        load([
            make_event("s_hit", referrer=payload, page_path=f"/{payload}"),
            make_event("s_miss", referrer="decoy", page_path="/decoy"),
        ])
        pred = compile([
            _rule("referrer", "equals", payload),
            _rule("page_path", "contains", payload),
        ])
        rows = store.execute(f"SELECT session_id FROM events WHERE {pred.render_inline()}", [])
        assert [r["session_id"] for r in rows] == ["s_hit"]
        # The table survived whatever the payload said
        assert store.execute("SELECT COUNT(*) AS n FROM events", [])[0]["n"] == 2
