"""
Discrepancy Builder.

Compares the comparable fields of every matched pair through the
evaluator. An unequal field becomes a discrepancy entry; a field settled by
a rule is recorded in ``mapped_fields`` (and in ``ignored_fields`` when an
ignore rule settled it). A match without discrepancies is a perfect match.

Players: jersey, position, height, weight, year, hometown
Games:   opponent, location indicator, neutral-site home/away, venue, tv, time
"""
import logging
from typing import Any, Dict, List, Optional

from sportsrecon.services.mapping.evaluator import EquivalenceResult, FieldEquivalenceEvaluator
from sportsrecon.services.mapping.scope import ScopeContext
from sportsrecon.services.mapping.suggestions import MappingSuggestionService
from sportsrecon.services.reconciliation import records as rec
from sportsrecon.services.reconciliation.entity_matcher import MatchedPair
from sportsrecon.services.reconciliation.modules import ModuleSpec
from sportsrecon.services.reconciliation.utils.name_normalizer import (
    normalize_height, normalize_team_name, normalize_text, normalize_whitespace,
)

logger = logging.getLogger(__name__)


def _present(value: Any) -> bool:
    return bool(normalize_whitespace(value))


class DiscrepancyBuilder:
    """Turn matched pairs into match entries with discrepancies and mapped fields."""

    def __init__(
        self,
        evaluator: FieldEquivalenceEvaluator,
        spec: ModuleSpec,
        suggestions: Optional[MappingSuggestionService] = None,
    ):
        """
        Args:
            evaluator: Evaluator for the unit
            spec: Module being reconciled (decides the field set)
            suggestions: When given, unequal fields are recorded as mapping suggestions
        """
        self.evaluator = evaluator
        self.spec = spec
        self.suggestions = suggestions

    def build(self, pairs: List[MatchedPair]) -> List[Dict[str, Any]]:
        build_one = self.build_player_match if self.spec.is_roster else self.build_game_match
        return [build_one(pair) for pair in pairs]

    # ─────────────────────────────────────────────────────────────
    # Players
    # ─────────────────────────────────────────────────────────────

    def build_player_match(self, pair: MatchedPair) -> Dict[str, Any]:
        match = self._new_match(pair)
        scraped, source = pair.scraped, pair.source

        for field_name in ("jersey", "position"):
            self._compare_present(match, field_name, rec.player_field(scraped, field_name),
                                  rec.player_field(source, field_name), pair.context)

        self._compare_height(match, rec.player_field(scraped, "height"),
                             rec.player_field(source, "height"), pair.context)

        if not self.spec.is_womens:
            self._compare_present(match, "weight", rec.player_field(scraped, "weight"),
                                  rec.player_field(source, "weight"), pair.context)

        self._compare_year(match, scraped, source, pair.context)

        self._compare_present(match, "hometown", rec.player_field(scraped, "hometown"),
                              rec.player_field(source, "hometown"), pair.context)
        return match

    def _compare_height(self, match: Dict[str, Any], scraped: Any, source: Any, context: ScopeContext):
        if not (_present(scraped) and _present(source)):
            return
        evaluation = self.evaluator.evaluate(scraped, source, "height", context)
        if evaluation.result == EquivalenceResult.UNEQUAL:
            inches_scraped = normalize_height(scraped)
            if inches_scraped is not None and inches_scraped == normalize_height(source):
                # "6-2" vs "74" vs "6' 2\"" are the same height
                match["mapped_fields"]["height"] = True
                return
        self._apply(match, "height", scraped, source, evaluation.result, context)

    def _compare_year(self, match: Dict[str, Any], scraped: Dict[str, Any], source: Dict[str, Any],
                      context: ScopeContext):
        scraped_year = rec.player_field(scraped, "year") or rec.player_field(scraped, "eligibility")
        source_year = rec.player_field(source, "year") or rec.player_field(source, "eligibility")
        if not (_present(scraped_year) and _present(source_year)):
            return
        result = self.evaluator.evaluate(scraped_year, source_year, "year", context).result
        if result == EquivalenceResult.UNEQUAL:
            result = self.evaluator.evaluate(scraped_year, source_year, "eligibility", context).result
        self._apply(match, "year", scraped_year, source_year, result, context)

    # ─────────────────────────────────────────────────────────────
    # Games
    # ─────────────────────────────────────────────────────────────

    def build_game_match(self, pair: MatchedPair) -> Dict[str, Any]:
        match = self._new_match(pair)
        scraped, source = pair.scraped, pair.source
        context = pair.context

        self._compare_opponent(match, scraped, source, context)

        scraped_location = rec.location_indicator(scraped)
        source_location = rec.location_indicator(source)
        if scraped_location != source_location:
            self._compare(match, "location_indicator", scraped_location, source_location, context,
                          field_type="locationIndicator")
        elif scraped_location == "N":
            scraped_side = rec.neutral_home_away(scraped)
            source_side = rec.neutral_home_away(source)
            if scraped_side != source_side:
                match["discrepancies"].append({"field": "neutral_home_away", "scraped": scraped_side,
                                               "source": source_side})

        scraped_venue, source_venue = rec.venue(scraped), rec.venue(source)
        if normalize_text(scraped_venue) != normalize_text(source_venue):
            self._compare(match, "venue", scraped_venue, source_venue, context)

        self._compare_tv(match, rec.broadcasters(scraped), rec.broadcasters(source), context)

        scraped_time, source_time = rec.game_time(scraped), rec.game_time(source)
        if normalize_text(scraped_time) != normalize_text(source_time):
            self._compare(match, "time", scraped_time, source_time, context)
        return match

    def _compare_opponent(self, match: Dict[str, Any], scraped: Dict[str, Any], source: Dict[str, Any],
                          context: ScopeContext):
        if match["mapped_fields"].get("opponent"):
            return
        scraped_name, source_name = rec.opponent_name(scraped), rec.opponent_name(source)
        if not (scraped_name and source_name):
            return
        names = {normalize_team_name(scraped_name), normalize_team_name(rec.opponent_nickname(scraped))} - {""}
        others = {normalize_team_name(source_name), normalize_team_name(rec.opponent_nickname(source))} - {""}
        if names & others:
            return
        self._compare(match, "opponent", scraped_name, source_name, context)

    def _compare_tv(self, match: Dict[str, Any], scraped: List[str], source: List[str], context: ScopeContext):
        """Compare broadcasters one by one so each network can be mapped or ignored on its own."""
        scraped_by_key = {b.lower(): b for b in scraped}
        source_by_key = {b.lower(): b for b in source}
        mapped_items = []

        for key in sorted(set(scraped_by_key) | set(source_by_key)):
            in_scraped = scraped_by_key.get(key)
            in_source = source_by_key.get(key)
            if in_scraped and in_source:
                continue
            broadcaster = in_scraped or in_source

            if self.evaluator.check_ignored(broadcaster, "tv", context) is not None:
                mapped_items.append({"scraped": in_scraped or "", "source": in_source or "", "ignored": True})
                match["ignored_fields"].append("tv")
                continue

            counterpart = None
            others = source if in_scraped else scraped
            for other in others:
                pair = (broadcaster, other) if in_scraped else (other, broadcaster)
                if self.evaluator.evaluate(pair[0], pair[1], "tv", context).result == EquivalenceResult.EQUAL_BY_RULE:
                    counterpart = pair
                    break
            if counterpart:
                mapped_items.append({"scraped": counterpart[0], "source": counterpart[1]})
                continue

            match["discrepancies"].append({
                "field": "tv",
                "scraped": in_scraped or "",
                "source": in_source or "",
                "broadcaster": broadcaster,
            })

        if mapped_items:
            match["mapped_fields"]["tv"] = True
            match["tv_mapped_items"] = mapped_items
        match["ignored_fields"] = sorted(set(match["ignored_fields"]))

    # ─────────────────────────────────────────────────────────────
    # Shared
    # ─────────────────────────────────────────────────────────────

    @staticmethod
    def _new_match(pair: MatchedPair) -> Dict[str, Any]:
        return {
            "key": pair.key,
            "label": pair.label,
            "scraped": pair.scraped,
            "source": pair.source,
            "matched_via": pair.matched_via,
            "discrepancies": [],
            "mapped_fields": dict(pair.mapped_fields),
            "ignored_fields": [],
        }

    def _compare_present(self, match: Dict[str, Any], field_name: str, scraped: Any, source: Any,
                         context: ScopeContext):
        """Compare only when both sides publish the field."""
        if _present(scraped) and _present(source):
            self._compare(match, field_name, scraped, source, context)

    def _compare(self, match: Dict[str, Any], field_name: str, scraped: Any, source: Any,
                 context: ScopeContext, field_type: Optional[str] = None):
        result = self.evaluator.evaluate(scraped, source, field_type or field_name, context).result
        self._apply(match, field_name, scraped, source, result, context, field_type)

    def _apply(self, match: Dict[str, Any], field_name: str, scraped: Any, source: Any,
               result: EquivalenceResult, context: ScopeContext, field_type: Optional[str] = None):
        if result == EquivalenceResult.EQUAL_EXACT:
            return
        if result == EquivalenceResult.EQUAL_BY_RULE:
            match["mapped_fields"][field_name] = True
            return
        if result == EquivalenceResult.IGNORED:
            match["mapped_fields"][field_name] = True
            match["ignored_fields"].append(field_name)
            return

        match["discrepancies"].append({"field": field_name, "scraped": scraped, "source": source})
        if self.suggestions is not None:
            self.suggestions.record_potential_mapping(
                field_type or field_name,
                scraped,
                source,
                context.without_player(),
                example={"match": match["label"], "key": match["key"]},
            )
