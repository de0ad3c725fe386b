"""Tests for condition evaluation and event filters."""
import pytest

from storeflow.errors import ExpressionError
from storeflow.workflows.conditions import OPERATORS, evaluate_condition, get_path, matches_filter
from storeflow.workflows.models import Condition


NAMESPACE = {
    "input": {"total": 120, "email": "ada@example.com", "tags": ["vip"], "status": "paid"},
    "threshold": 100,
}


def test_get_path():
    data = {"order": {"items": [{"sku": "A"}, {"sku": "B"}]}}

    assert get_path(data, "order.items.1.sku") == "B"
    assert get_path(data, "order.items.-1.sku") == "B"
    assert get_path(data, "order.missing", "default") == "default"
    assert get_path(data, "order.items.9.sku") is None


class TestOperators:
    """Test the operator table."""

    @pytest.mark.parametrize(
        "operator,actual,expected,result",
        [
            ("eq", 1, 1, True),
            ("neq", 1, 2, True),
            ("gt", "10", 9, True),
            ("gte", 5, 5, True),
            ("lt", None, 5, False),
            ("lte", 4, "4.0", True),
            ("gt", "abc", 1, False),
            ("contains", "hello world", "world", True),
            ("contains", ["a", "b"], "b", True),
            ("contains", 42, 4, False),
            ("startsWith", "order-1", "order", True),
            ("endsWith", "file.csv", ".csv", True),
            ("in", "paid", ["paid", "shipped"], True),
            ("notIn", "draft", ["paid"], True),
            ("exists", 0, None, True),
            ("exists", None, None, False),
        ],
    )
    def test_operator(self, operator, actual, expected, result):
        assert OPERATORS[operator](actual, expected) is result


class TestEvaluateCondition:
    """Test evaluate_condition."""

    def test_expression_string(self):
        assert evaluate_condition("input.total > threshold", NAMESPACE) is True

    def test_simple(self):
        condition = Condition(type="simple", field="input.total", operator="gte", value=100)

        assert evaluate_condition(condition, NAMESPACE) is True

    def test_default_operator_is_eq(self):
        condition = Condition(field="input.status", value="paid")

        assert evaluate_condition(condition, NAMESPACE) is True

    def test_compound(self):
        condition = Condition.model_validate(
            {
                "type": "all",
                "conditions": [
                    {"field": "input.status", "operator": "eq", "value": "paid"},
                    {
                        "type": "any",
                        "conditions": [
                            {"field": "input.tags", "operator": "contains", "value": "vip"},
                            {"type": "expression", "expression": "input.total > 1000"},
                        ],
                    },
                    {"type": "none", "conditions": [{"field": "input.email", "operator": "endsWith", "value": ".test"}]},
                ],
            }
        )

        assert evaluate_condition(condition, NAMESPACE) is True

    def test_simple_needs_field(self):
        with pytest.raises(ExpressionError):
            evaluate_condition(Condition(type="simple", value=1), NAMESPACE)

    def test_bad_expression(self):
        with pytest.raises(ExpressionError):
            evaluate_condition("input.total >", NAMESPACE)


class TestMatchesFilter:
    """Test event filters."""

    EVENT = {"order": {"total": 75, "currency": "USD", "channel": "web"}}

    def test_empty_filter_matches(self):
        assert matches_filter(self.EVENT, None)
        assert matches_filter(self.EVENT, {})

    def test_plain_equality(self):
        assert matches_filter(self.EVENT, {"order.currency": "USD"})
        assert not matches_filter(self.EVENT, {"order.currency": "EUR"})

    def test_operators(self):
        assert matches_filter(self.EVENT, {"order.total": {"$gt": 50, "$lte": 75}})
        assert matches_filter(self.EVENT, {"order.channel": {"$in": ["web", "pos"]}})
        assert matches_filter(self.EVENT, {"order.channel": {"$nin": ["pos"]}})
        assert matches_filter(self.EVENT, {"order.currency": {"$ne": "EUR"}})
        assert not matches_filter(self.EVENT, {"order.total": {"$lt": 50}})

    def test_unknown_operator_never_matches(self):
        assert not matches_filter(self.EVENT, {"order.total": {"$regex": "7"}})
