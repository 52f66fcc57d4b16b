"""Rule Resolver: which mapping rules apply to a field in a given context, in what order."""
import logging
from datetime import datetime
from typing import Dict, List, Optional

from sqlalchemy.orm import Session

from sportsrecon.models import MappingRule
from sportsrecon.repositories.mapping_rules import MappingRuleRepository
from sportsrecon.services.mapping.scope import SPECIFICITY, ScopeContext, scope_applies

logger = logging.getLogger(__name__)


def rule_sort_key(rule: MappingRule):
    """Priority, then scope specificity, then creation time; all descending."""
    return (
        rule.priority or 0,
        SPECIFICITY.get(rule.scope_level, 0),
        rule.created_at or datetime.min,
    )


class RuleResolver:
    """
    Resolve the ordered list of rules for a field comparison.

    Global rules always apply. League, sport, team and player rules apply
    when their scope predicate matches the context. An empty context yields
    only global rules and no matching rules yields an empty list, which
    callers treat as "compare exactly".
    """

    def __init__(
        self,
        db: Session,
        repository: Optional[MappingRuleRepository] = None,
        cache_candidates: bool = False,
    ):
        """
        Args:
            db: SQLAlchemy database session
            repository: Rule store (defaults to one bound to db)
            cache_candidates: Load each field's rules once per resolver; used for
                the lifetime of a single reconciliation unit
        """
        self.db = db
        self.repository = repository or MappingRuleRepository(db)
        self.cache_candidates = cache_candidates
        self._candidates: Dict[tuple, List[MappingRule]] = {}

    def resolve(
        self,
        field_type: str,
        context: Optional[ScopeContext] = None,
        include_inactive: bool = False,
        source_type: Optional[str] = None,
        custom_field: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> List[MappingRule]:
        """
        Get applicable rules for a field, most decisive first.

        Args:
            field_type: Field being compared (name, weight, ...)
            context: League/sport/team/player of the comparison
            include_inactive: Also return inactive rules
            source_type: Authoritative source pairing (oracle, api, baseline)
            custom_field: Field name when field_type is 'custom'
            now: Reference instant for expiry

        Returns:
            Rules sorted by priority, specificity and recency (descending)
        """
        context = context or ScopeContext()
        candidates = self._load_candidates(field_type, custom_field, include_inactive, source_type, now)
        applicable = [rule for rule in candidates if scope_applies(rule, context)]
        applicable.sort(key=rule_sort_key, reverse=True)

        logger.debug(
            f"Resolved {len(applicable)}/{len(candidates)} {field_type} rules "
            f"for league={context.league} sport={context.sport} team={context.team_id} "
            f"player={context.player_id}"
        )
        return applicable

    def _load_candidates(
        self,
        field_type: str,
        custom_field: Optional[str],
        include_inactive: bool,
        source_type: Optional[str],
        now: Optional[datetime],
    ) -> List[MappingRule]:
        key = (field_type, custom_field, include_inactive, source_type)
        if self.cache_candidates and key in self._candidates:
            return self._candidates[key]
        candidates = self.repository.find_candidates(
            field_type,
            custom_field=custom_field,
            include_inactive=include_inactive,
            source_type=source_type,
            now=now,
        )
        if self.cache_candidates:
            self._candidates[key] = candidates
        return candidates
