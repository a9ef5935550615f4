"""Tests for target conditions on event attributes."""

import pytest
from pydantic import ValidationError

from allthewebhooks.webhooks.rules import evaluate, validate_conditions

from conftest import make_target


class TestConditions:
    """Tests for condition evaluation."""

    def test_no_conditions_always_pass(self):
        """Test that an empty condition set matches everything."""
        assert evaluate({}, {"a": 1})

    def test_equality_is_case_insensitive(self):
        """Test bare values compare case-insensitively."""
        assert evaluate({"block.type": "diamond_ore"}, {"block.type": "DIAMOND_ORE"})
        assert not evaluate({"block.type": "stone"}, {"block.type": "DIAMOND_ORE"})

    def test_list_means_any_of(self):
        """Test list values match any element."""
        conditions = {"block.type": ["DIAMOND_ORE", "EMERALD_ORE"]}

        assert evaluate(conditions, {"block.type": "EMERALD_ORE"})
        assert not evaluate(conditions, {"block.type": "STONE"})

    def test_not_operator(self):
        """Test negated equality."""
        assert evaluate({"world.name": {"not": "lobby"}}, {"world.name": "survival"})
        assert not evaluate({"world.name": {"not": "lobby"}}, {"world.name": "Lobby"})

    def test_numeric_operators(self):
        """Test numeric comparisons."""
        attributes = {"damage.amount": "7.5"}

        assert evaluate({"damage.amount": {"greater-than": 5}}, attributes)
        assert evaluate({"damage.amount": {"less-than-or-equal": 7.5}}, attributes)
        assert not evaluate({"damage.amount": {"less-than": 5}}, attributes)
        assert evaluate({"damage.amount": {"greater-than-or-equal": 5, "less-than": 10}}, attributes)

    def test_unparseable_numbers_are_zero(self):
        """Test that non-numeric values compare as 0."""
        assert evaluate({"damage.amount": {"less-than": 1}}, {"damage.amount": "lots"})

    def test_missing_attribute(self):
        """Test that a missing attribute fails an equality check."""
        assert not evaluate({"world.name": "survival"}, {})

    def test_boolean_values(self):
        """Test boolean attributes compare against their text form."""
        assert evaluate({"player.op": "true"}, {"player.op": True})

    def test_unknown_operator_rejected(self):
        """Test validation of operator names."""
        with pytest.raises(ValueError):
            validate_conditions({"a": {"roughly": 3}})

    def test_unknown_operator_rejected_by_target(self):
        """Test that targets validate their conditions."""
        with pytest.raises(ValidationError):
            make_target(conditions={"a": {"roughly": 3}})
