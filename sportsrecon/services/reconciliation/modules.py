"""
Module registry.

A module is one kind of scraped data set for one sport (a roster or a
schedule). The registry knows each module's sport, entity kind and the
leagues and team identifiers it needs, which decides whether a team can
run it at all.

Team.source_ids layout:
    {
        "scraper": {"football": "12"},      # site-specific roster/schedule ids
        "oracle": {"football": "1234"},     # analytics database team ids
        "stats_api": {"football": "55"},    # paid stats API team ids
        "espn": "333"                       # scalar ids apply to every sport
    }
"""
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

from sportsrecon.core.exceptions import NotFoundError
from sportsrecon.models import Team

ROSTER = "roster"
SCHEDULE = "schedule"

# Weight is not published consistently for these sports
WOMENS_SPORTS = {"womensBasketball", "softball"}


@dataclass(frozen=True)
class ModuleSpec:
    module_id: str
    sport: str
    kind: str
    leagues: Tuple[str, ...]
    required_ids: Tuple[str, ...] = ()

    @property
    def is_roster(self) -> bool:
        return self.kind == ROSTER

    @property
    def is_schedule(self) -> bool:
        return self.kind == SCHEDULE

    @property
    def is_womens(self) -> bool:
        return self.sport in WOMENS_SPORTS


_NCAA = ("NCAA",)
_PRO_BASEBALL = ("MLB", "MILB")

MODULES: Dict[str, ModuleSpec] = {
    spec.module_id: spec
    for spec in (
        ModuleSpec("ncaa_football_roster", "football", ROSTER, _NCAA, ("scraper",)),
        ModuleSpec("ncaa_mensBasketball_roster", "mensBasketball", ROSTER, _NCAA, ("scraper",)),
        ModuleSpec("ncaa_womensBasketball_roster", "womensBasketball", ROSTER, _NCAA, ("scraper",)),
        ModuleSpec("ncaa_football_schedule", "football", SCHEDULE, _NCAA, ("scraper",)),
        ModuleSpec("ncaa_mensBasketball_schedule", "mensBasketball", SCHEDULE, _NCAA, ("scraper",)),
        ModuleSpec("ncaa_womensBasketball_schedule", "womensBasketball", SCHEDULE, _NCAA, ("scraper",)),
        ModuleSpec("ncaa_baseball_schedule", "baseball", SCHEDULE, _NCAA, ("scraper",)),
        ModuleSpec("ncaa_softball_schedule", "softball", SCHEDULE, _NCAA, ("scraper",)),
        ModuleSpec("espn_ncaa_cfb_schedule", "football", SCHEDULE, _NCAA, ("espn", "oracle")),
        ModuleSpec("espn_ncaa_mbb_schedule", "mensBasketball", SCHEDULE, _NCAA, ("espn", "oracle")),
        ModuleSpec("espn_ncaa_wbb_schedule", "womensBasketball", SCHEDULE, _NCAA, ("espn", "oracle")),
        ModuleSpec("mlb_roster", "baseball", ROSTER, _PRO_BASEBALL, ("oracle",)),
        ModuleSpec("mlb_schedule", "baseball", SCHEDULE, _PRO_BASEBALL, ("oracle",)),
        ModuleSpec("nba_schedule", "nba", SCHEDULE, ("NBA",), ("scraper",)),
    )
}


def get_module(module_id: str) -> ModuleSpec:
    """
    Look up a module by id.

    Raises:
        NotFoundError: Unknown module id
    """
    spec = MODULES.get(module_id)
    if spec is None:
        raise NotFoundError("Module", module_id)
    return spec


def team_source_id(team: Team, system: str, sport: Optional[str] = None) -> Optional[str]:
    """
    Team identifier in an external system, per sport where the system keys by sport.

    Returns:
        The identifier as a string, or None when not configured
    """
    ids = (team.source_ids or {}).get(system)
    if isinstance(ids, dict):
        ids = ids.get(sport) if sport else None
    if ids in (None, ""):
        return None
    return str(ids)


def should_run_module(team: Team, spec: ModuleSpec) -> bool:
    """A team runs a module when it plays in one of its leagues and has every id the module needs."""
    if team.league not in spec.leagues:
        return False
    return all(team_source_id(team, system, spec.sport) for system in spec.required_ids)
