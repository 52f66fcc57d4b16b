"""Field Equivalence Evaluator.

Decides whether two raw values for one field should be treated as equal,
given the mapping rules that apply in the comparison's scope.

Outcomes:
- equal-exact: identical after whitespace normalization, no rule consulted
- equal-by-rule: an equivalence, tolerance or transformation rule fired
- ignored: an ignore rule covers one of the values
- unequal: no rule fired

Rules are applied in resolver order and the first decisive rule wins, even
if a later rule would also have fired. Values a tolerance or transformation
rule cannot parse simply make that rule not fire.
"""
import logging
import math
from collections import Counter
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from sportsrecon.core import metrics
from sportsrecon.core.exceptions import ParseError
from sportsrecon.models import MappingRule
from sportsrecon.repositories.mapping_rules import MappingRuleRepository
from sportsrecon.services.mapping.resolver import RuleResolver
from sportsrecon.services.mapping.scope import ScopeContext
from sportsrecon.services.mapping.transforms import apply_transform
from sportsrecon.services.reconciliation.utils.name_normalizer import (
    normalize_text, normalize_whitespace, parse_number,
)

logger = logging.getLogger(__name__)

# Relative float noise absorbed at the tolerance boundary; anything larger is outside
_BOUNDARY_REL_TOL = 1e-12

# Transforms that canonicalise a value rather than convert units; both sides may be rewritten
NORMALIZING_TRANSFORMS = {"dateFormat", "custom"}


class EquivalenceResult(str, Enum):
    EQUAL_EXACT = "equal-exact"
    EQUAL_BY_RULE = "equal-by-rule"
    UNEQUAL = "unequal"
    IGNORED = "ignored"


@dataclass(frozen=True)
class Evaluation:
    """Outcome of one field comparison and the rule that decided it."""
    result: EquivalenceResult
    rule: Optional[MappingRule] = None

    @property
    def is_equal(self) -> bool:
        return self.result in (EquivalenceResult.EQUAL_EXACT, EquivalenceResult.EQUAL_BY_RULE)

    @property
    def is_mapped(self) -> bool:
        """Resolved by a rule rather than by identical values."""
        return self.result in (EquivalenceResult.EQUAL_BY_RULE, EquivalenceResult.IGNORED)

    def to_dict(self) -> Dict[str, Any]:
        fired = None
        if self.rule is not None:
            fired = {
                "id": self.rule.id,
                "mapping_type": self.rule.mapping_type,
                "scope_level": self.rule.scope_level,
                "priority": self.rule.priority,
                "display_name": self.rule.display_name,
            }
        return {"result": self.result.value, "fired_rule": fired}


class FieldEquivalenceEvaluator:
    """
    Evaluate field equality under mapping rules.

    One evaluator is meant to serve a single reconciliation unit: rule lists
    are cached for its lifetime and usage counters are buffered until
    flush_usage() is called.
    """

    def __init__(
        self,
        db: Session,
        source_type: Optional[str] = None,
        resolver: Optional[RuleResolver] = None,
    ):
        """
        Args:
            db: SQLAlchemy database session
            source_type: Authoritative source pairing (oracle, api, baseline)
            resolver: Rule resolver (defaults to a caching resolver on db)
        """
        self.db = db
        self.source_type = source_type
        self.resolver = resolver or RuleResolver(db, cache_candidates=True)
        self._rules: Dict[Tuple, List[MappingRule]] = {}
        self._usage: Counter = Counter()

    # ─────────────────────────────────────────────────────────────
    # Public API
    # ─────────────────────────────────────────────────────────────

    def evaluate(
        self,
        value1: Any,
        value2: Any,
        field_type: str,
        context: Optional[ScopeContext] = None,
        custom_field: Optional[str] = None,
    ) -> Evaluation:
        """
        Compare two raw values for a field.

        Args:
            value1: Scraped value
            value2: Source value
            field_type: Field being compared
            context: League/sport/team/player of the comparison
            custom_field: Field name when field_type is 'custom'

        Returns:
            Evaluation with the result and the rule that fired, if any
        """
        if normalize_whitespace(value1) == normalize_whitespace(value2):
            return Evaluation(EquivalenceResult.EQUAL_EXACT)

        for rule in self.rules_for(field_type, context, custom_field):
            try:
                outcome = self._apply_rule(rule, value1, value2)
            except ParseError as e:
                logger.debug(f"Rule {rule.id} skipped for {field_type}: {e.message}")
                continue
            if outcome is not None:
                self._record_usage(rule, field_type)
                return Evaluation(outcome, rule)

        return Evaluation(EquivalenceResult.UNEQUAL)

    def check_ignored(
        self,
        value: Any,
        field_type: str,
        context: Optional[ScopeContext] = None,
        custom_field: Optional[str] = None,
    ) -> Optional[MappingRule]:
        """Return the first ignore rule covering a single value, if any."""
        if not normalize_whitespace(value):
            return None
        for rule in self.rules_for(field_type, context, custom_field):
            if rule.mapping_type == "ignore" and self._ignore_matches(rule, value):
                self._record_usage(rule, field_type)
                return rule
        return None

    def rules_for(
        self,
        field_type: str,
        context: Optional[ScopeContext] = None,
        custom_field: Optional[str] = None,
    ) -> List[MappingRule]:
        """Resolved rules for a field, cached per context."""
        key = (field_type, custom_field, context)
        if key not in self._rules:
            self._rules[key] = self.resolver.resolve(
                field_type,
                context,
                source_type=self.source_type,
                custom_field=custom_field,
            )
        return self._rules[key]

    def flush_usage(self) -> int:
        """
        Persist buffered usage counters.

        Best effort: failures are logged and the buffer is dropped.

        Returns:
            Number of rules whose counters were written
        """
        if not self._usage:
            return 0
        pending, self._usage = self._usage, Counter()
        repository = MappingRuleRepository(self.db)
        try:
            for rule_id, hits in pending.items():
                repository.increment_usage(rule_id, hits=hits)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.warning(f"Failed to record mapping rule usage for {len(pending)} rules: {e}")
            return 0
        return len(pending)

    # ─────────────────────────────────────────────────────────────
    # Rule semantics
    # ─────────────────────────────────────────────────────────────

    def _apply_rule(self, rule: MappingRule, value1: Any, value2: Any) -> Optional[EquivalenceResult]:
        if rule.mapping_type == "ignore":
            if self._ignore_matches(rule, value1) or self._ignore_matches(rule, value2):
                return EquivalenceResult.IGNORED
        elif rule.mapping_type == "equivalence":
            if self._equivalence_matches(rule, value1, value2):
                return EquivalenceResult.EQUAL_BY_RULE
        elif rule.mapping_type == "tolerance":
            if self._tolerance_matches(rule, value1, value2):
                return EquivalenceResult.EQUAL_BY_RULE
        elif rule.mapping_type == "transformation":
            if self._transformation_matches(rule, value1, value2):
                return EquivalenceResult.EQUAL_BY_RULE
        return None

    @staticmethod
    def _ignore_matches(rule: MappingRule, value: Any) -> bool:
        rules = rule.rules or {}
        primary = rules.get("primary_value")
        if primary is None:
            return False
        case_sensitive = bool(rules.get("case_sensitive", False))
        return normalize_text(value, case_sensitive) == normalize_text(primary, case_sensitive)

    @staticmethod
    def _equivalence_matches(rule: MappingRule, value1: Any, value2: Any) -> bool:
        rules = rule.rules or {}
        case_sensitive = bool(rules.get("case_sensitive", False))
        members = {
            normalize_text(v, case_sensitive)
            for v in [rules.get("primary_value"), *rules.get("equivalents", [])]
            if v is not None
        }
        return (
            normalize_text(value1, case_sensitive) in members
            and normalize_text(value2, case_sensitive) in members
        )

    @staticmethod
    def _tolerance_matches(rule: MappingRule, value1: Any, value2: Any) -> bool:
        rules = rule.rules or {}
        number1 = parse_number(value1)
        number2 = parse_number(value2)
        if number1 is None:
            raise ParseError(value1, "number")
        if number2 is None:
            raise ParseError(value2, "number")

        tolerance = float(rules.get("tolerance", 0) or 0)
        difference = abs(number1 - number2)
        if rules.get("tolerance_type") == "percentage":
            denominator = max(abs(number1), abs(number2))
            if denominator == 0:
                return difference == 0
            difference = difference / denominator * 100
        return _within(difference, tolerance)

    @staticmethod
    def _transformation_matches(rule: MappingRule, value1: Any, value2: Any) -> bool:
        rules = rule.rules or {}
        name = rules.get("transform_function")
        params = rules.get("transform_params") or {}
        tolerance = float(params.get("tolerance", 0) or 0)

        converted1 = converted2 = None
        try:
            converted1 = apply_transform(name, value1, params)
        except ParseError:
            pass
        try:
            converted2 = apply_transform(name, value2, params)
        except ParseError:
            pass
        if converted1 is None and converted2 is None:
            raise ParseError(f"{value1!r}/{value2!r}", f"input for {name}")

        pairs = []
        if converted1 is not None:
            pairs.append((converted1, value2))
        if converted2 is not None:
            pairs.append((value1, converted2))
        if converted1 is not None and converted2 is not None and name in NORMALIZING_TRANSFORMS:
            pairs.append((converted1, converted2))
        return any(_values_equal(a, b, tolerance) for a, b in pairs)

    def _record_usage(self, rule: MappingRule, field_type: str) -> None:
        self._usage[rule.id] += 1
        metrics.record_rule_fired(rule.mapping_type, field_type)


def _values_equal(a: Any, b: Any, tolerance: float = 0.0) -> bool:
    number_a = parse_number(a)
    number_b = parse_number(b)
    if number_a is not None and number_b is not None:
        return _within(abs(number_a - number_b), tolerance)
    return normalize_text(a) == normalize_text(b)


def _within(difference: float, tolerance: float) -> bool:
    return difference <= tolerance or math.isclose(
        difference, tolerance, rel_tol=_BOUNDARY_REL_TOL, abs_tol=_BOUNDARY_REL_TOL,
    )
