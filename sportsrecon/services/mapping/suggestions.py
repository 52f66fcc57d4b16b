"""
Mapping suggestions.

Field mismatches seen during comparisons are recorded as candidate rules.
Repeated sightings raise the suggestion's confidence; an operator can then
accept one (which creates an auto-discovered mapping rule) or reject it.
"""
import logging
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from rapidfuzz import fuzz, process
from sqlalchemy.orm import Session

from sportsrecon.core import metrics
from sportsrecon.core.config import settings
from sportsrecon.core.exceptions import NotFoundError, ValidationError
from sportsrecon.models import MappingRule, MappingSuggestion
from sportsrecon.repositories.mapping_rules import MappingRuleRepository
from sportsrecon.schemas.mapping import (
    GlobalScope, MappingRuleCreate, SuggestionReview, TeamScope,
)
from sportsrecon.services.mapping.scope import ScopeContext
from sportsrecon.services.reconciliation.utils.name_normalizer import (
    normalize, normalize_whitespace, parse_number,
)

logger = logging.getLogger(__name__)

MAX_CONFIDENCE = 0.95
CONFIDENCE_STEP = 0.1

# Numeric fields where a mismatch is better expressed as a tolerance
TOLERANCE_FIELDS = {"weight", "height"}


def confidence_for(occurrences: int) -> float:
    return min(MAX_CONFIDENCE, round(occurrences * CONFIDENCE_STEP, 4))


class MappingSuggestionService:
    """Record, list and review mapping suggestions."""

    def __init__(self, db: Session):
        self.db = db

    # ─────────────────────────────────────────────────────────────
    # Recording
    # ─────────────────────────────────────────────────────────────

    def record_potential_mapping(
        self,
        field_type: str,
        scraped_value: Any,
        source_value: Any,
        context: Optional[ScopeContext] = None,
        example: Optional[Dict[str, Any]] = None,
        now: Optional[datetime] = None,
    ) -> Optional[MappingSuggestion]:
        """
        Record one observed mismatch.

        The caller owns the transaction; nothing is committed here.

        Args:
            field_type: Field the mismatch was seen on
            scraped_value: Value from the scraped site
            source_value: Value from the authoritative source
            context: Scope of the comparison (team id is part of the key)
            example: Small dict describing where the mismatch was seen
            now: Timestamp to record

        Returns:
            The created or updated suggestion, or None when the values are equal
        """
        scraped = normalize_whitespace(scraped_value)
        source = normalize_whitespace(source_value)
        if not scraped or not source or scraped == source:
            return None

        now = now or datetime.utcnow()
        context = context or ScopeContext()
        suggestion = self.db.query(MappingSuggestion).filter(
            MappingSuggestion.field_type == field_type,
            MappingSuggestion.scraped_value == scraped,
            MappingSuggestion.source_value == source,
            MappingSuggestion.team_id.is_(None) if context.team_id is None
            else MappingSuggestion.team_id == context.team_id,
        ).first()

        if suggestion is not None:
            suggestion.occurrences += 1
            suggestion.last_seen = now
            suggestion.confidence = confidence_for(suggestion.occurrences)
            if example:
                suggestion.examples = _append_example(suggestion.examples, example)
            self.db.flush()
            logger.debug(
                f"Suggestion {suggestion.id} for {field_type} seen "
                f"{suggestion.occurrences} times (confidence {suggestion.confidence})"
            )
            return suggestion

        suggested_type, suggested_rules = self._suggest_rule(field_type, scraped, source)
        suggestion = MappingSuggestion(
            id=str(uuid.uuid4()),
            field_type=field_type,
            scraped_value=scraped,
            source_value=source,
            league=context.league,
            sport=context.sport,
            team_id=context.team_id,
            suggested_type=suggested_type,
            suggested_rules=suggested_rules,
            confidence=confidence_for(1),
            occurrences=1,
            examples=[example] if example else [],
            status="pending",
            first_seen=now,
            last_seen=now,
        )
        self.db.add(suggestion)
        # Later lookups in the same unit must see this row
        self.db.flush()
        metrics.mapping_suggestions_recorded_total.labels(field_type=field_type).inc()
        return suggestion

    def record_name_candidates(
        self,
        unmatched_scraped: Sequence[str],
        unmatched_source: Sequence[str],
        context: Optional[ScopeContext] = None,
        field_type: str = "name",
        threshold: Optional[int] = None,
    ) -> int:
        """
        Suggest name equivalences for entities left unmatched on both sides.

        Each unmatched scraped name is paired with its closest unmatched source
        name when the rapidfuzz WRatio score reaches the threshold.

        Returns:
            Number of suggestions recorded
        """
        threshold = threshold if threshold is not None else settings.SUGGESTION_FUZZY_THRESHOLD
        choices = {name: normalize(name) for name in unmatched_source if name}
        if not choices:
            return 0

        recorded = 0
        for scraped_name in unmatched_scraped:
            if not scraped_name:
                continue
            best = process.extractOne(
                normalize(scraped_name),
                choices,
                scorer=fuzz.WRatio,
                score_cutoff=threshold,
            )
            if best is None:
                continue
            _, score, source_name = best
            suggestion = self.record_potential_mapping(
                field_type,
                scraped_name,
                source_name,
                context,
                example={"scraped": scraped_name, "source": source_name, "score": round(score, 1)},
            )
            if suggestion is not None:
                recorded += 1
        return recorded

    @staticmethod
    def _suggest_rule(field_type: str, scraped: str, source: str):
        if field_type in TOLERANCE_FIELDS:
            number1 = parse_number(scraped)
            number2 = parse_number(source)
            if number1 is not None and number2 is not None:
                return "tolerance", {
                    "tolerance": abs(number1 - number2),
                    "tolerance_type": "absolute",
                }
        return "equivalence", {
            "primary_value": source,
            "equivalents": [scraped],
            "case_sensitive": False,
        }

    # ─────────────────────────────────────────────────────────────
    # Review
    # ─────────────────────────────────────────────────────────────

    def list_suggestions(
        self,
        status: Optional[str] = "pending",
        team_id: Optional[str] = None,
        field_type: Optional[str] = None,
        min_confidence: float = 0.0,
        limit: int = 100,
    ) -> List[MappingSuggestion]:
        """Suggestions ordered by confidence, then by how recently they were seen."""
        query = self.db.query(MappingSuggestion)
        if status:
            query = query.filter(MappingSuggestion.status == status)
        if team_id:
            query = query.filter(MappingSuggestion.team_id == team_id)
        if field_type:
            query = query.filter(MappingSuggestion.field_type == field_type)
        if min_confidence:
            query = query.filter(MappingSuggestion.confidence >= min_confidence)
        return query.order_by(
            MappingSuggestion.confidence.desc(),
            MappingSuggestion.last_seen.desc(),
        ).limit(limit).all()

    def get_suggestion(self, suggestion_id: str) -> MappingSuggestion:
        suggestion = self.db.get(MappingSuggestion, suggestion_id)
        if suggestion is None:
            raise NotFoundError("Mapping suggestion", suggestion_id)
        return suggestion

    def accept(
        self,
        suggestion_id: str,
        review: Optional[SuggestionReview] = None,
        now: Optional[datetime] = None,
    ) -> MappingRule:
        """
        Turn a pending suggestion into an auto-discovered mapping rule.

        Scope defaults to the suggestion's team when it has one, otherwise global.

        Raises:
            NotFoundError: Unknown suggestion id
            ValidationError: Suggestion already reviewed
        """
        review = review or SuggestionReview()
        now = now or datetime.utcnow()
        suggestion = self._pending(suggestion_id)

        scope = review.scope
        if scope is None:
            scope = TeamScope(team_id=suggestion.team_id) if suggestion.team_id else GlobalScope()

        data = MappingRuleCreate(
            mapping_type=suggestion.suggested_type,
            field_type=suggestion.field_type,
            scope=scope,
            priority=review.priority,
            rules=dict(suggestion.suggested_rules or {}),
            source="auto-discovered",
            notes=review.notes,
            created_by=review.user,
            discovery_metadata={
                "is_auto_discovered": True,
                "suggestion_id": suggestion.id,
                "confidence": suggestion.confidence,
                "occurrences": suggestion.occurrences,
                "first_seen": suggestion.first_seen.isoformat(),
                "last_seen": suggestion.last_seen.isoformat(),
                "confirmed_by": review.user,
            },
        )
        rule = MappingRuleRepository(self.db).create_rule(data, now=now)

        suggestion.status = "accepted"
        suggestion.reviewed_by = review.user
        suggestion.reviewed_at = now
        suggestion.created_mapping_id = rule.id
        self.db.commit()
        self.db.refresh(rule)

        logger.info(
            f"Accepted suggestion {suggestion.id} as {rule.mapping_type} rule {rule.id} "
            f"({suggestion.scraped_value!r} ~ {suggestion.source_value!r})"
        )
        return rule

    def reject(
        self,
        suggestion_id: str,
        review: Optional[SuggestionReview] = None,
        now: Optional[datetime] = None,
    ) -> MappingSuggestion:
        review = review or SuggestionReview()
        suggestion = self._pending(suggestion_id)
        suggestion.status = "rejected"
        suggestion.reviewed_by = review.user
        suggestion.reviewed_at = now or datetime.utcnow()
        self.db.commit()
        logger.info(f"Rejected suggestion {suggestion.id}")
        return suggestion

    def _pending(self, suggestion_id: str) -> MappingSuggestion:
        suggestion = self.get_suggestion(suggestion_id)
        if suggestion.status != "pending":
            raise ValidationError(
                f"Suggestion {suggestion_id} was already {suggestion.status}",
                context={"suggestion_id": suggestion_id, "status": suggestion.status},
            )
        return suggestion


def _append_example(examples: Optional[List[Dict[str, Any]]], example: Dict[str, Any]) -> List[Dict[str, Any]]:
    # Reassign rather than mutate so the JSON column is flagged dirty
    updated = list(examples or [])
    if len(updated) < settings.SUGGESTION_MAX_EXAMPLES:
        updated.append(example)
    return updated
