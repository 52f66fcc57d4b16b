"""Unit tests for FieldEquivalenceEvaluator.

Test Strategy:
1. Test exact equality short-circuits before any rule
2. Test equivalence, tolerance, transformation and ignore semantics
3. Test symmetry for equivalence, tolerance and ignore rules
4. Test the tolerance boundary (difference == tolerance fires, anything above does not)
5. Test first decisive rule wins
6. Test unparseable values do not fire numeric rules
7. Test usage counters are buffered and flushed

Each test follows the pattern:
- Given: Mapping rules in the store
- When: evaluate() is called with two raw values
- Then: The expected EquivalenceResult and fired rule
"""
import sys
from pathlib import Path

import pytest
from sqlalchemy.orm import Session

sys.path.insert(0, str(Path(__file__).parent.parent))
from conftest import create_rule

from sportsrecon.models import MappingRule
from sportsrecon.services.mapping.evaluator import EquivalenceResult, FieldEquivalenceEvaluator
from sportsrecon.services.mapping.scope import ScopeContext
from sportsrecon.services.mapping.transforms import apply_transform
from sportsrecon.core.exceptions import ParseError

TEAM = ScopeContext(league="NCAA", sport="football", team_id="t1")


def tolerance_rule(db, tolerance, tolerance_type="absolute", field_type="weight", **kwargs):
    return create_rule(
        db, mapping_type="tolerance", field_type=field_type,
        rules={"tolerance": tolerance, "tolerance_type": tolerance_type}, **kwargs,
    )


class TestExactAndEquivalence:

    def test_identical_values_are_equal_exact(self, db_session: Session):
        evaluation = FieldEquivalenceEvaluator(db_session).evaluate("  QB ", "QB", "position")
        assert evaluation.result == EquivalenceResult.EQUAL_EXACT
        assert evaluation.rule is None

    def test_different_values_without_rules_are_unequal(self, db_session: Session):
        evaluation = FieldEquivalenceEvaluator(db_session).evaluate("QB", "WR", "position")
        assert evaluation.result == EquivalenceResult.UNEQUAL

    def test_equivalence_rule_is_symmetric(self, db_session: Session):
        rule = create_rule(
            db_session, mapping_type="equivalence", field_type="position",
            rules={"primary_value": "Quarterback", "equivalents": ["QB"]},
        )
        evaluator = FieldEquivalenceEvaluator(db_session)

        forward = evaluator.evaluate("QB", "quarterback", "position", TEAM)
        backward = evaluator.evaluate("quarterback", "QB", "position", TEAM)

        assert forward.result == backward.result == EquivalenceResult.EQUAL_BY_RULE
        assert forward.rule.id == rule.id

    def test_case_sensitive_equivalence(self, db_session: Session):
        create_rule(
            db_session, mapping_type="equivalence", field_type="tv",
            rules={"primary_value": "ESPN+", "equivalents": ["ESPN Plus"], "case_sensitive": True},
        )
        evaluator = FieldEquivalenceEvaluator(db_session)

        assert evaluator.evaluate("ESPN Plus", "ESPN+", "tv").result == EquivalenceResult.EQUAL_BY_RULE
        assert evaluator.evaluate("espn plus", "ESPN+", "tv").result == EquivalenceResult.UNEQUAL

    def test_values_outside_equivalence_set_do_not_fire(self, db_session: Session):
        create_rule(
            db_session, mapping_type="equivalence", field_type="position",
            rules={"primary_value": "Quarterback", "equivalents": ["QB"]},
        )
        result = FieldEquivalenceEvaluator(db_session).evaluate("QB", "RB", "position").result
        assert result == EquivalenceResult.UNEQUAL


class TestTolerance:

    def test_weight_within_tolerance_is_equal_by_rule(self, db_session: Session):
        """205 vs 208 with an absolute tolerance of 5 fires."""
        tolerance_rule(db_session, 5)
        result = FieldEquivalenceEvaluator(db_session).evaluate(205, 208, "weight", TEAM).result
        assert result == EquivalenceResult.EQUAL_BY_RULE

    def test_weight_outside_tolerance_is_unequal(self, db_session: Session):
        tolerance_rule(db_session, 2)
        result = FieldEquivalenceEvaluator(db_session).evaluate(205, 208, "weight", TEAM).result
        assert result == EquivalenceResult.UNEQUAL

    def test_difference_equal_to_tolerance_fires(self, db_session: Session):
        tolerance_rule(db_session, 3)
        evaluator = FieldEquivalenceEvaluator(db_session)

        assert evaluator.evaluate("205 lbs", "208", "weight").result == EquivalenceResult.EQUAL_BY_RULE
        assert evaluator.evaluate("208", "205 lbs", "weight").result == EquivalenceResult.EQUAL_BY_RULE

    def test_difference_just_over_tolerance_is_unequal(self, db_session: Session):
        tolerance_rule(db_session, 3)
        evaluator = FieldEquivalenceEvaluator(db_session)

        assert evaluator.evaluate(205, 208.0000000005, "weight").result == EquivalenceResult.UNEQUAL
        assert evaluator.evaluate(205, 208.001, "weight").result == EquivalenceResult.UNEQUAL

    def test_float_noise_at_the_boundary_still_fires(self, db_session: Session):
        tolerance_rule(db_session, 0.3)
        result = FieldEquivalenceEvaluator(db_session).evaluate(0.1, 0.4, "weight").result
        # 0.4 - 0.1 == 0.30000000000000004
        assert result == EquivalenceResult.EQUAL_BY_RULE

    def test_percentage_tolerance(self, db_session: Session):
        tolerance_rule(db_session, 2, tolerance_type="percentage")
        evaluator = FieldEquivalenceEvaluator(db_session)

        assert evaluator.evaluate(200, 204, "weight").result == EquivalenceResult.EQUAL_BY_RULE
        assert evaluator.evaluate(200, 210, "weight").result == EquivalenceResult.UNEQUAL

    def test_percentage_tolerance_with_both_zero(self, db_session: Session):
        tolerance_rule(db_session, 10, tolerance_type="percentage", field_type="age")
        evaluator = FieldEquivalenceEvaluator(db_session)

        assert evaluator.evaluate(0, "0.0", "age").result == EquivalenceResult.EQUAL_BY_RULE

    def test_non_numeric_values_do_not_fire(self, db_session: Session):
        tolerance_rule(db_session, 100)
        result = FieldEquivalenceEvaluator(db_session).evaluate("heavy", "208", "weight").result
        assert result == EquivalenceResult.UNEQUAL


class TestTransformation:

    def test_height_notation_transformation(self, db_session: Session):
        create_rule(
            db_session, mapping_type="transformation", field_type="height",
            rules={"transform_function": "inchesToFeetInches"},
        )
        evaluator = FieldEquivalenceEvaluator(db_session)

        assert evaluator.evaluate("74", "6-2", "height").result == EquivalenceResult.EQUAL_BY_RULE
        assert evaluator.evaluate("6-2", "74", "height").result == EquivalenceResult.EQUAL_BY_RULE
        assert evaluator.evaluate("75", "6-2", "height").result == EquivalenceResult.UNEQUAL

    def test_unit_conversion_with_tolerance(self, db_session: Session):
        create_rule(
            db_session, mapping_type="transformation", field_type="weight",
            rules={"transform_function": "kgToLbs", "transform_params": {"tolerance": 1}},
        )
        result = FieldEquivalenceEvaluator(db_session).evaluate("100", "221", "weight").result
        assert result == EquivalenceResult.EQUAL_BY_RULE

    def test_date_format_normalizes_both_sides(self, db_session: Session):
        create_rule(
            db_session, mapping_type="transformation", field_type="birthDate",
            rules={"transform_function": "dateFormat"},
        )
        result = FieldEquivalenceEvaluator(db_session).evaluate("03/15/2003", "Mar 15, 2003", "birthDate").result
        assert result == EquivalenceResult.EQUAL_BY_RULE

    def test_custom_map_transform(self):
        params = {"map": {"Fr.": "Freshman", "So.": "Sophomore"}}
        assert apply_transform("custom", "fr.", params) == "Freshman"
        assert apply_transform("custom", "Jr.", params) == "Jr."

    def test_unknown_transform_raises_parse_error(self):
        with pytest.raises(ParseError):
            apply_transform("toRomanNumerals", "12")


class TestIgnore:

    def test_ignore_rule_matches_either_side(self, db_session: Session):
        rule = create_rule(
            db_session, mapping_type="ignore", field_type="tv",
            rules={"primary_value": "ESPN3", "ignore_reason": "Streaming only"},
        )
        evaluator = FieldEquivalenceEvaluator(db_session)

        forward = evaluator.evaluate("ESPN3", "ABC", "tv")
        backward = evaluator.evaluate("ABC", "espn3", "tv")

        assert forward.result == backward.result == EquivalenceResult.IGNORED
        assert evaluator.check_ignored("ESPN3", "tv").id == rule.id
        assert evaluator.check_ignored("ABC", "tv") is None


class TestRuleOrdering:

    def test_first_decisive_rule_wins(self, db_session: Session):
        """A higher-priority tolerance rule decides even if an equivalence would also fire."""
        tolerance = tolerance_rule(db_session, 5, priority=10)
        create_rule(
            db_session, mapping_type="equivalence", field_type="weight",
            rules={"primary_value": "205", "equivalents": ["208"]},
        )

        evaluation = FieldEquivalenceEvaluator(db_session).evaluate("205", "208", "weight")

        assert evaluation.rule.id == tolerance.id

    def test_non_firing_rule_falls_through_to_next(self, db_session: Session):
        create_rule(
            db_session, mapping_type="equivalence", field_type="weight", priority=10,
            rules={"primary_value": "190", "equivalents": ["191"]},
        )
        tolerance = tolerance_rule(db_session, 5)

        evaluation = FieldEquivalenceEvaluator(db_session).evaluate("205", "208", "weight")

        assert evaluation.result == EquivalenceResult.EQUAL_BY_RULE
        assert evaluation.rule.id == tolerance.id


class TestUsageCounters:

    def test_usage_is_buffered_until_flush(self, db_session: Session):
        rule = tolerance_rule(db_session, 5)
        evaluator = FieldEquivalenceEvaluator(db_session)

        evaluator.evaluate(205, 208, "weight")
        evaluator.evaluate(210, 208, "weight")
        db_session.refresh(rule)
        assert rule.times_used == 0

        assert evaluator.flush_usage() == 1
        db_session.refresh(rule)
        assert rule.times_used == 2
        assert rule.successful_matches == 2
        assert rule.last_used is not None

    def test_flush_without_usage_is_noop(self, db_session: Session):
        assert FieldEquivalenceEvaluator(db_session).flush_usage() == 0

    def test_rule_lists_are_cached_per_context(self, db_session: Session):
        evaluator = FieldEquivalenceEvaluator(db_session)
        first = evaluator.rules_for("weight", TEAM)
        tolerance_rule(db_session, 5)

        # Same unit, same context: the cached (empty) list is reused
        assert evaluator.rules_for("weight", TEAM) is first
        assert db_session.query(MappingRule).count() == 1
