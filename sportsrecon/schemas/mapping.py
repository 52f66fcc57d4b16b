"""
Pydantic request/response models for mapping rules.

Scope is a tagged union keyed on ``level``; each variant only accepts the
fields that are meaningful at that level, so an invalid combination (e.g. a
league-level rule carrying a team id) is rejected at construction.
"""
from datetime import datetime
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator

MappingType = Literal["equivalence", "tolerance", "transformation", "ignore"]

FieldType = Literal[
    "name", "position", "weight", "height", "year", "eligibility", "hometown",
    "jersey", "highSchool", "previousSchool", "birthDate", "age", "opponent",
    "venue", "tv", "locationIndicator", "isConferenceGame", "time", "location",
    "custom",
]

Sport = Literal[
    "football", "mensBasketball", "womensBasketball", "baseball", "softball", "nba",
]

ScopeLevel = Literal["global", "league", "sport", "team", "player"]

TransformFunction = Literal[
    "inchesToFeetInches", "feetInchesToInches", "cmToInches", "lbsToKg",
    "kgToLbs", "dateFormat", "custom",
]

RuleSource = Literal["manual", "auto-discovered", "imported", "system-default"]

SourceType = Literal["oracle", "api", "baseline"]


class BaseSchema(BaseModel):
    """Base schema for ORM-backed responses."""
    model_config = ConfigDict(from_attributes=True)


# =============================================================================
# SCOPE VARIANTS
# =============================================================================

class _ScopeBase(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)


class GlobalScope(_ScopeBase):
    level: Literal["global"] = "global"


class LeagueScope(_ScopeBase):
    level: Literal["league"] = "league"
    league: str = Field(..., min_length=1)


class SportScope(_ScopeBase):
    level: Literal["sport"] = "sport"
    sport: Sport
    league: Optional[str] = None


class TeamScope(_ScopeBase):
    level: Literal["team"] = "team"
    team_id: str = Field(..., min_length=1)
    sport: Optional[Sport] = None
    league: Optional[str] = None


class PlayerScope(_ScopeBase):
    level: Literal["player"] = "player"
    player_id: Optional[str] = None
    player_name: Optional[str] = None
    team_id: Optional[str] = None
    sport: Optional[Sport] = None
    league: Optional[str] = None

    @model_validator(mode="after")
    def _requires_player(self):
        if not self.player_id and not self.player_name:
            raise ValueError("player scope requires player_id or player_name")
        return self


RuleScope = Annotated[
    Union[GlobalScope, LeagueScope, SportScope, TeamScope, PlayerScope],
    Field(discriminator="level"),
]


# =============================================================================
# RULE PAYLOADS
# =============================================================================

class EquivalenceRules(BaseModel):
    model_config = ConfigDict(extra="ignore")

    primary_value: str = Field(..., min_length=1)
    equivalents: List[str] = Field(..., min_length=1)
    case_sensitive: bool = False


class ToleranceRules(BaseModel):
    model_config = ConfigDict(extra="ignore")

    tolerance: float = Field(0, ge=0)
    tolerance_type: Literal["absolute", "percentage"] = "absolute"


class TransformationRules(BaseModel):
    model_config = ConfigDict(extra="ignore")

    transform_function: TransformFunction
    transform_params: Dict[str, Any] = Field(default_factory=dict)


class IgnoreRules(BaseModel):
    model_config = ConfigDict(extra="ignore")

    primary_value: str = Field(..., min_length=1)
    ignore_reason: Optional[str] = None
    case_sensitive: bool = False


RULE_PAYLOADS = {
    "equivalence": EquivalenceRules,
    "tolerance": ToleranceRules,
    "transformation": TransformationRules,
    "ignore": IgnoreRules,
}


def validate_rules_payload(mapping_type: str, rules: Dict[str, Any]) -> Dict[str, Any]:
    """Validate a rules payload against its mapping type and return the normalized dict."""
    payload_model = RULE_PAYLOADS.get(mapping_type)
    if payload_model is None:
        raise ValueError(f"Unknown mapping type: {mapping_type}")
    return payload_model.model_validate(rules or {}).model_dump()


class AppliesTo(BaseModel):
    scraped: bool = True
    api: bool = True
    oracle: bool = True


# =============================================================================
# REQUESTS
# =============================================================================

class MappingRuleCreate(BaseModel):
    """Create mapping rule request."""
    mapping_type: MappingType
    field_type: FieldType
    custom_field: Optional[str] = None
    scope: RuleScope = Field(default_factory=GlobalScope)
    priority: int = 0
    rules: Dict[str, Any]
    applies_to: AppliesTo = Field(default_factory=AppliesTo)
    active: bool = True
    source: RuleSource = "manual"
    notes: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    expires_at: Optional[datetime] = None
    created_by: Optional[str] = None
    discovery_metadata: Optional[Dict[str, Any]] = None

    @model_validator(mode="after")
    def _check_payload(self):
        if self.field_type == "custom" and not self.custom_field:
            raise ValueError("custom_field is required when field_type is 'custom'")
        try:
            self.rules = validate_rules_payload(self.mapping_type, self.rules)
        except ValueError as e:
            raise ValueError(f"Invalid {self.mapping_type} rules: {e}") from e
        return self


class MappingRuleUpdate(BaseModel):
    """Update mapping rule request. Rules are re-validated against the stored mapping type."""
    custom_field: Optional[str] = None
    scope: Optional[RuleScope] = None
    priority: Optional[int] = None
    rules: Optional[Dict[str, Any]] = None
    applies_to: Optional[AppliesTo] = None
    active: Optional[bool] = None
    notes: Optional[str] = None
    tags: Optional[List[str]] = None
    expires_at: Optional[datetime] = None
    modified_by: Optional[str] = None


class EquivalenceCheckRequest(BaseModel):
    """Ask the evaluator how two values compare in a given scope."""
    value1: Any
    value2: Any
    field_type: FieldType
    custom_field: Optional[str] = None
    league: Optional[str] = None
    sport: Optional[Sport] = None
    team_id: Optional[str] = None
    player_id: Optional[str] = None
    source_type: Optional[SourceType] = None


class SuggestionReview(BaseModel):
    """Accept or reject a mapping suggestion."""
    user: Optional[str] = None
    scope: Optional[RuleScope] = None
    priority: int = 0
    notes: Optional[str] = None


# =============================================================================
# RESPONSES
# =============================================================================

class HistoryEntryResponse(BaseSchema):
    action: str
    user: Optional[str]
    changes: Optional[Dict[str, Any]]
    timestamp: datetime


class MappingRuleResponse(BaseSchema):
    id: str
    mapping_type: str
    field_type: str
    custom_field: Optional[str]
    scope: Dict[str, Any]
    priority: int
    rules: Dict[str, Any]
    applies_to: Dict[str, bool]
    active: bool
    source: str
    display_name: str
    discovery_metadata: Optional[Dict[str, Any]]
    tags: List[str]
    notes: Optional[str]
    times_used: int
    successful_matches: int
    last_used: Optional[datetime]
    expires_at: Optional[datetime]
    created_by: Optional[str]
    modified_by: Optional[str]
    created_at: datetime
    updated_at: datetime
    history: List[HistoryEntryResponse] = Field(default_factory=list)


class MappingSuggestionResponse(BaseSchema):
    id: str
    field_type: str
    scraped_value: str
    source_value: str
    league: Optional[str]
    sport: Optional[str]
    team_id: Optional[str]
    suggested_type: str
    suggested_rules: Dict[str, Any]
    confidence: float
    occurrences: int
    examples: List[Dict[str, Any]]
    status: str
    reviewed_by: Optional[str]
    reviewed_at: Optional[datetime]
    created_mapping_id: Optional[str]
    first_seen: datetime
    last_seen: datetime
