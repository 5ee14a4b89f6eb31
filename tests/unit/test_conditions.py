"""
Unit Tests for Conditions and Variables

Tests for the condition expression evaluator and run variable templates.
"""

import pytest

from autoflow_core.conditions import ConditionDiagnostic, ConditionEvaluator
from autoflow_core.variables import VariableStore


@pytest.fixture
def evaluator():
    return ConditionEvaluator(max_length=200, max_depth=4)


# =============================================================================
# Variable Store Tests
# =============================================================================


class TestVariableStore:
    """Tests for VariableStore."""

    def test_unset_variable_reads_empty(self):
        store = VariableStore()

        assert store.get("missing") == ""
        assert store.lookup("missing") is None

    def test_values_must_be_strings(self):
        store = VariableStore()

        with pytest.raises(TypeError):
            store.set("count", 3)

    def test_resolve_template(self):
        store = VariableStore({"name": "Ana", "service": "Haircut"})

        text = store.resolve_template("Hi {name}, your {service} is booked")

        assert text == "Hi Ana, your Haircut is booked"

    def test_unknown_placeholder_left_verbatim(self):
        store = VariableStore({"name": "Ana"})

        assert store.resolve_template("Hi {nmae}") == "Hi {nmae}"

    def test_variables_win_over_fallback(self):
        store = VariableStore({"name": "Ana"})

        text = store.resolve_template("{name} via {channelId}", {"name": "Bob", "channelId": "ch_1"})

        assert text == "Ana via ch_1"

    def test_braces_that_are_not_placeholders(self):
        store = VariableStore({"x": "1"})

        assert store.resolve_template("{ x } {1abc} {}") == "{ x } {1abc} {}"

    def test_unresolved(self):
        store = VariableStore({"name": "Ana"})

        assert store.unresolved("{name} {date} {time}", {"time": "10:00"}) == ["date"]

    def test_snapshot_is_a_copy(self):
        store = VariableStore({"a": "1"})
        snapshot = store.snapshot()
        snapshot["a"] = "2"

        assert store.get("a") == "1"


# =============================================================================
# Condition Evaluator Tests
# =============================================================================


class TestConditionEvaluator:
    """Tests for ConditionEvaluator."""

    @pytest.mark.parametrize(
        "expression,expected",
        [
            ("{rating} >= 4", True),
            ("{rating} > 4", False),
            ("{rating} == 4.0", True),
            ("{rating} != 4", False),
            ("{plan} == \"gold\"", True),
            ("{plan} = gold", True),
            ("{plan} == \"Gold\"", False),
            ("{text} contains \"REFUND\"", True),
            ("{text} not contains \"refund\"", False),
            ("{text} startswith \"i want\"", True),
            ("{text} endswith \"please\"", True),
            ("{rating} >= 4 and {plan} == gold", True),
            ("{rating} < 4 or {plan} == gold", True),
            ("{rating} < 4 || ({plan} == gold && {vip})", True),
            ("not {rating} >= 4", False),
            ("!{optedOut}", True),
            ("{vip}", True),
            ("{optedOut}", False),
        ],
    )
    def test_expressions(self, evaluator, expression, expected):
        variables = {
            "rating": "4",
            "plan": "gold",
            "text": "I want a refund please",
            "vip": "yes",
            "optedOut": "false",
        }

        assert evaluator.evaluate(expression, variables) is expected

    def test_event_fields_used_after_variables(self, evaluator):
        assert evaluator.evaluate("{status} == CONFIRMED", {}, {"status": "CONFIRMED"})
        assert not evaluator.evaluate("{status} == CONFIRMED", {"status": "CANCELLED"}, {"status": "CONFIRMED"})

    def test_bare_word_resolves_to_variable_or_itself(self, evaluator):
        assert evaluator.evaluate("status == confirmed", {"status": "confirmed"})
        assert evaluator.evaluate("{tier} == premium", {"tier": "premium"})

    def test_accepts_variable_store(self, evaluator):
        assert evaluator.evaluate("{a} == 1", VariableStore({"a": "1"}))

    @pytest.mark.parametrize(
        "expression",
        [
            "",
            "   ",
            "{rating} >=",
            "({rating} > 1",
            "{rating} > 1 )",
            "{rating} ** 2",
            "__import__('os')",
        ],
    )
    def test_malformed_expressions_are_false(self, evaluator, expression):
        diagnostics = []

        assert evaluator.evaluate(expression, {"rating": "4"}, diagnostics=diagnostics) is False
        assert len(diagnostics) == 1
        assert isinstance(diagnostics[0], ConditionDiagnostic)

    def test_unknown_placeholder_is_false(self, evaluator):
        diagnostics = []

        assert evaluator.evaluate("{missing} == \"\"", {}, diagnostics=diagnostics) is False
        assert "missing" in diagnostics[0].message

    def test_ordering_needs_numbers(self, evaluator):
        diagnostics = []

        assert evaluator.evaluate("{plan} > 3", {"plan": "gold"}, diagnostics=diagnostics) is False
        assert diagnostics

    def test_too_long_expression(self):
        evaluator = ConditionEvaluator(max_length=10)

        assert evaluator.evaluate("{a} == 1 and {b} == 2", {"a": "1", "b": "2"}) is False

    def test_nesting_limit(self, evaluator):
        expression = "(" * 10 + "{a}" + ")" * 10

        assert evaluator.evaluate(expression, {"a": "yes"}) is False
        assert evaluator.evaluate("(({a}))", {"a": "yes"}) is True

    def test_check_reports_syntax_problem(self, evaluator):
        assert evaluator.check("{a} == 1") is None
        assert evaluator.check("{a} ==") is not None
