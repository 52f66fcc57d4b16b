"""Mapping rule API routes.

Provides endpoints for:
- Rule CRUD (delete is a soft delete)
- Player-level rule lookup
- Ad-hoc equivalence checks
- The expiry sweep
- Reviewing auto-discovered mapping suggestions
"""
import logging
from typing import Dict, List, Optional

from fastapi import APIRouter, Body, Depends, Query
from sqlalchemy.orm import Session

from sportsrecon.core.database import get_db
from sportsrecon.schemas.mapping import (
    EquivalenceCheckRequest,
    MappingRuleCreate,
    MappingRuleResponse,
    MappingRuleUpdate,
    MappingSuggestionResponse,
    SuggestionReview,
)
from sportsrecon.services.mapping.mapping_service import MappingService
from sportsrecon.services.mapping.suggestions import MappingSuggestionService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/mappings", tags=["mappings"])


def get_mapping_service(db: Session = Depends(get_db)) -> MappingService:
    """Dependency to get mapping service instance."""
    return MappingService(db)


def get_suggestion_service(db: Session = Depends(get_db)) -> MappingSuggestionService:
    """Dependency to get suggestion service instance."""
    return MappingSuggestionService(db)


@router.post("/", response_model=MappingRuleResponse, status_code=201)
async def create_mapping(
    data: MappingRuleCreate,
    service: MappingService = Depends(get_mapping_service),
):
    """Create a mapping rule. A 'created' history entry is recorded."""
    return service.create_rule(data)


@router.get("/", response_model=List[MappingRuleResponse])
async def list_mappings(
    field_type: Optional[str] = Query(None),
    mapping_type: Optional[str] = Query(None),
    level: Optional[str] = Query(None, description="Scope level"),
    league: Optional[str] = Query(None),
    sport: Optional[str] = Query(None),
    team_id: Optional[str] = Query(None),
    active: Optional[bool] = Query(None),
    source: Optional[str] = Query(None),
    tag: Optional[str] = Query(None),
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    service: MappingService = Depends(get_mapping_service),
):
    """List mapping rules, highest priority first."""
    return service.list_rules(
        field_type=field_type,
        mapping_type=mapping_type,
        level=level,
        league=league,
        sport=sport,
        team_id=team_id,
        active=active,
        source=source,
        tag=tag,
        limit=limit,
        offset=offset,
    )


@router.get("/player/{player_id}", response_model=List[MappingRuleResponse])
async def get_player_mappings(
    player_id: str,
    include_inactive: bool = Query(False),
    service: MappingService = Depends(get_mapping_service),
):
    """Player-level rules for one player."""
    return service.rules_for_player(player_id, include_inactive=include_inactive)


@router.post("/test-equivalence")
async def test_equivalence(
    request: EquivalenceCheckRequest,
    service: MappingService = Depends(get_mapping_service),
) -> Dict:
    """
    Evaluate two values in a scope.

    Returns the evaluation result, the rule that decided it (if any) and
    every candidate rule in resolution order.
    """
    return service.test_equivalence(request)


@router.post("/maintenance/expire")
async def expire_mappings(service: MappingService = Depends(get_mapping_service)) -> Dict:
    """Deactivate every active rule whose expiry has passed."""
    return service.expire_rules()


# ─────────────────────────────────────────────────────────────
# Suggestions
# ─────────────────────────────────────────────────────────────

@router.get("/suggestions", response_model=List[MappingSuggestionResponse])
async def list_suggestions(
    status: Optional[str] = Query("pending", description="pending, accepted or rejected"),
    team_id: Optional[str] = Query(None),
    field_type: Optional[str] = Query(None),
    min_confidence: float = Query(0.0, ge=0.0, le=1.0),
    limit: int = Query(100, ge=1, le=1000),
    service: MappingSuggestionService = Depends(get_suggestion_service),
):
    """Pending suggestions, most confident first."""
    return service.list_suggestions(
        status=status,
        team_id=team_id,
        field_type=field_type,
        min_confidence=min_confidence,
        limit=limit,
    )


@router.post("/suggestions/{suggestion_id}/accept", response_model=MappingRuleResponse, status_code=201)
async def accept_suggestion(
    suggestion_id: str,
    review: Optional[SuggestionReview] = Body(None),
    service: MappingSuggestionService = Depends(get_suggestion_service),
):
    """Create an auto-discovered mapping rule from a suggestion."""
    return service.accept(suggestion_id, review)


@router.post("/suggestions/{suggestion_id}/reject", response_model=MappingSuggestionResponse)
async def reject_suggestion(
    suggestion_id: str,
    review: Optional[SuggestionReview] = Body(None),
    service: MappingSuggestionService = Depends(get_suggestion_service),
):
    return service.reject(suggestion_id, review)


# ─────────────────────────────────────────────────────────────
# Single rule
# ─────────────────────────────────────────────────────────────

@router.get("/{rule_id}", response_model=MappingRuleResponse)
async def get_mapping(rule_id: str, service: MappingService = Depends(get_mapping_service)):
    return service.get_rule(rule_id)


@router.put("/{rule_id}", response_model=MappingRuleResponse)
async def update_mapping(
    rule_id: str,
    data: MappingRuleUpdate,
    service: MappingService = Depends(get_mapping_service),
):
    """Update a rule. Changed fields are recorded in its history."""
    return service.update_rule(rule_id, data)


@router.delete("/{rule_id}", response_model=MappingRuleResponse)
async def delete_mapping(
    rule_id: str,
    user: Optional[str] = Query(None, description="User performing the delete"),
    service: MappingService = Depends(get_mapping_service),
):
    """Soft delete: the rule is deactivated and kept with its history."""
    return service.delete_rule(rule_id, user=user)
