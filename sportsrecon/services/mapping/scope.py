"""Scope context and per-level applicability predicates for mapping rules.

Each scope level has one predicate deciding whether a stored rule applies to
a concrete comparison context. ``scope_applies`` composes them by dispatching
on the rule's level; there is no query fragment building.
"""
from dataclasses import dataclass, replace
from typing import Callable, Dict, Optional

from sportsrecon.models import MappingRule
from sportsrecon.services.reconciliation.utils.name_normalizer import normalize

# Higher is narrower
SPECIFICITY: Dict[str, int] = {
    "global": 0,
    "league": 1,
    "sport": 2,
    "team": 3,
    "player": 4,
}


@dataclass(frozen=True)
class ScopeContext:
    """The concrete league/sport/team/player a comparison is happening in."""
    league: Optional[str] = None
    sport: Optional[str] = None
    team_id: Optional[str] = None
    player_id: Optional[str] = None
    player_name: Optional[str] = None

    def for_player(self, player_id: Optional[str], player_name: Optional[str] = None) -> "ScopeContext":
        """Copy of this context narrowed to one player."""
        return replace(
            self,
            player_id=str(player_id) if player_id is not None else None,
            player_name=player_name,
        )

    def without_player(self) -> "ScopeContext":
        return replace(self, player_id=None, player_name=None)


def _same(expected: Optional[str], actual: Optional[str]) -> bool:
    if expected is None or actual is None:
        return False
    return str(expected).strip().lower() == str(actual).strip().lower()


def _optional_matches(expected: Optional[str], actual: Optional[str]) -> bool:
    """An optional qualifier on a rule only constrains when it is set."""
    if expected is None:
        return True
    return _same(expected, actual)


def applies_global(rule: MappingRule, context: ScopeContext) -> bool:
    return True


def applies_league(rule: MappingRule, context: ScopeContext) -> bool:
    return _same(rule.scope_league, context.league)


def applies_sport(rule: MappingRule, context: ScopeContext) -> bool:
    return _same(rule.scope_sport, context.sport) and _optional_matches(rule.scope_league, context.league)


def applies_team(rule: MappingRule, context: ScopeContext) -> bool:
    return (
        _same(rule.scope_team_id, context.team_id)
        and _optional_matches(rule.scope_sport, context.sport)
        and _optional_matches(rule.scope_league, context.league)
    )


def applies_player(rule: MappingRule, context: ScopeContext) -> bool:
    if rule.scope_player_id is not None:
        matched = _same(rule.scope_player_id, context.player_id)
    else:
        matched = bool(context.player_name) and normalize(rule.scope_player_name or "") == normalize(context.player_name)
    return (
        matched
        and _optional_matches(rule.scope_team_id, context.team_id)
        and _optional_matches(rule.scope_sport, context.sport)
        and _optional_matches(rule.scope_league, context.league)
    )


SCOPE_PREDICATES: Dict[str, Callable[[MappingRule, ScopeContext], bool]] = {
    "global": applies_global,
    "league": applies_league,
    "sport": applies_sport,
    "team": applies_team,
    "player": applies_player,
}


def scope_applies(rule: MappingRule, context: ScopeContext) -> bool:
    """Check whether a rule's scope covers the given context."""
    predicate = SCOPE_PREDICATES.get(rule.scope_level)
    if predicate is None:
        return False
    return predicate(rule, context)
