"""Mapping rule management: CRUD, equivalence testing and the expiry sweep."""
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Union

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.orm import Session

from sportsrecon.core import metrics
from sportsrecon.core.exceptions import NotFoundError, ValidationError
from sportsrecon.models import MappingRule
from sportsrecon.repositories.mapping_rules import MappingRuleRepository
from sportsrecon.schemas.mapping import (
    EquivalenceCheckRequest, MappingRuleCreate, MappingRuleUpdate,
)
from sportsrecon.services.mapping.evaluator import FieldEquivalenceEvaluator
from sportsrecon.services.mapping.resolver import RuleResolver
from sportsrecon.services.mapping.scope import ScopeContext

logger = logging.getLogger(__name__)


def _validation_error(error: PydanticValidationError, what: str) -> ValidationError:
    invalid = {
        ".".join(str(part) for part in err["loc"]) or "__root__": err["msg"]
        for err in error.errors()
    }
    return ValidationError(f"Invalid {what}", invalid_fields=invalid)


class MappingService:
    """Entry point for everything the admin surface does with mapping rules."""

    def __init__(self, db: Session):
        """
        Initialize the mapping service.

        Args:
            db: SQLAlchemy database session
        """
        self.db = db
        self.repository = MappingRuleRepository(db)

    # ─────────────────────────────────────────────────────────────
    # CRUD
    # ─────────────────────────────────────────────────────────────

    def create_rule(self, data: Union[MappingRuleCreate, Dict[str, Any]]) -> MappingRule:
        """
        Create and persist a mapping rule.

        Args:
            data: Validated request model or raw payload dict

        Returns:
            The created rule

        Raises:
            ValidationError: If a raw payload fails validation
        """
        if not isinstance(data, MappingRuleCreate):
            try:
                data = MappingRuleCreate.model_validate(data)
            except PydanticValidationError as e:
                raise _validation_error(e, "mapping rule") from e

        rule = self.repository.create_rule(data)
        self.db.commit()
        self.db.refresh(rule)

        logger.info(
            f"Created {rule.mapping_type} rule {rule.id} for {rule.field_type} "
            f"at {rule.scope_level} scope ({rule.display_name})"
        )
        return rule

    def get_rule(self, rule_id: str) -> MappingRule:
        rule = self.repository.find_by_id(rule_id)
        if rule is None:
            raise NotFoundError("Mapping rule", rule_id)
        return rule

    def list_rules(self, **filters) -> List[MappingRule]:
        """List rules; accepts the filters of MappingRuleRepository.list_rules."""
        return self.repository.list_rules(**filters)

    def rules_for_player(self, player_id: str, include_inactive: bool = False) -> List[MappingRule]:
        return self.repository.find_for_player(player_id, include_inactive=include_inactive)

    def update_rule(self, rule_id: str, data: Union[MappingRuleUpdate, Dict[str, Any]]) -> MappingRule:
        """
        Update a rule and append a history entry.

        Raises:
            NotFoundError: Unknown rule id
            ValidationError: Payload invalid for the rule's mapping type
        """
        if not isinstance(data, MappingRuleUpdate):
            try:
                data = MappingRuleUpdate.model_validate(data)
            except PydanticValidationError as e:
                raise _validation_error(e, "mapping rule update") from e

        rule = self.get_rule(rule_id)
        try:
            changes = self.repository.update_rule(rule, data)
        except PydanticValidationError as e:
            self.db.rollback()
            raise _validation_error(e, f"{rule.mapping_type} rules") from e
        except ValueError as e:
            self.db.rollback()
            raise ValidationError(str(e)) from e

        self.db.commit()
        self.db.refresh(rule)
        logger.info(f"Updated rule {rule_id}: {', '.join(changes) or 'no changes'}")
        return rule

    def delete_rule(self, rule_id: str, user: Optional[str] = None) -> MappingRule:
        """Soft delete: deactivate the rule and record who did it."""
        rule = self.get_rule(rule_id)
        if self.repository.deactivate(rule, user=user, reason="deleted"):
            self.db.commit()
            self.db.refresh(rule)
            logger.info(f"Deactivated rule {rule_id}")
        return rule

    # ─────────────────────────────────────────────────────────────
    # Evaluation helpers
    # ─────────────────────────────────────────────────────────────

    def test_equivalence(self, request: EquivalenceCheckRequest) -> Dict[str, Any]:
        """
        Evaluate two values the same way a comparison would.

        Returns:
            Dict with the evaluation result, the fired rule and the rules considered
        """
        context = ScopeContext(
            league=request.league,
            sport=request.sport,
            team_id=request.team_id,
            player_id=request.player_id,
        )
        evaluator = FieldEquivalenceEvaluator(
            self.db,
            source_type=request.source_type,
            resolver=RuleResolver(self.db),
        )
        evaluation = evaluator.evaluate(
            request.value1,
            request.value2,
            request.field_type,
            context,
            custom_field=request.custom_field,
        )
        considered = evaluator.rules_for(request.field_type, context, request.custom_field)
        evaluator.flush_usage()

        return {
            "value1": request.value1,
            "value2": request.value2,
            "field_type": request.field_type,
            **evaluation.to_dict(),
            "is_equal": evaluation.is_equal,
            "rules_considered": [
                {"id": r.id, "mapping_type": r.mapping_type, "scope_level": r.scope_level,
                 "priority": r.priority, "display_name": r.display_name}
                for r in considered
            ],
        }

    # ─────────────────────────────────────────────────────────────
    # Maintenance
    # ─────────────────────────────────────────────────────────────

    def expire_rules(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        """
        Deactivate every active rule whose expires_at has passed.

        Resolution already ignores expired rules; this sweep makes the state
        visible in the store and in each rule's history.

        Returns:
            Dict with the number and ids of rules deactivated
        """
        now = now or datetime.utcnow()
        expired = self.repository.find_expired(now)
        for rule in expired:
            # History is stamped with the wall clock; `now` only selects rules
            self.repository.deactivate(rule, user="system", reason="expired")
        if expired:
            self.db.commit()
            metrics.mapping_rules_expired_total.inc(len(expired))
            logger.info(f"Expiry sweep deactivated {len(expired)} mapping rules")

        return {
            "success": True,
            "expired": len(expired),
            "rule_ids": [rule.id for rule in expired],
            "swept_at": now.isoformat(),
        }
