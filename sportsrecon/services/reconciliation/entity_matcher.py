"""
Entity Matcher.

Aligns two independently sourced collections of the same entity kind.

Players:
    1. Key every player by normalized name (accents, punctuation, case and
       generational suffixes removed)
    2. Pair equal keys, first found in iteration order
    3. Test each remaining scraped x source pair with the evaluator on the
       ``name`` field so a mapping rule can align them
    4. Leftovers become missing entries, flagged when a name ignore rule covers them

Games:
    Grouped by date key. Within one date a scraped game pairs with an unused
    source game by, in order: normalized opponent (game number breaks ties
    for doubleheaders), opponent nickname, opponent id, an opponent mapping
    rule, and finally the only game on both sides of that date.
"""
import logging
from collections import OrderedDict, defaultdict, deque
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

from sportsrecon.models import MappingRule
from sportsrecon.services.mapping.evaluator import EquivalenceResult, FieldEquivalenceEvaluator
from sportsrecon.services.mapping.scope import ScopeContext
from sportsrecon.services.reconciliation import records as rec
from sportsrecon.services.reconciliation.utils.name_normalizer import (
    normalize, normalize_team_name,
)

logger = logging.getLogger(__name__)

MATCHED_BY_KEY = "key"
MATCHED_BY_RULE = "rule"
MATCHED_BY_FALLBACK = "fallback"

IGNORED_DATE_REASON = "Ignored schedule date"


@dataclass
class MatchedPair:
    key: str
    label: str
    scraped: Dict[str, Any]
    source: Dict[str, Any]
    matched_via: str
    context: ScopeContext
    mapped_fields: Dict[str, bool] = field(default_factory=dict)


@dataclass
class MissingEntity:
    key: str
    label: str
    record: Dict[str, Any]
    is_ignored: bool = False
    ignore_reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        entry = {
            "key": self.key,
            "label": self.label,
            "record": self.record,
            "is_ignored": self.is_ignored,
        }
        if self.ignore_reason:
            entry["ignore_reason"] = self.ignore_reason
        return entry


@dataclass
class MatchOutcome:
    pairs: List[MatchedPair] = field(default_factory=list)
    missing_in_scraped: List[MissingEntity] = field(default_factory=list)  # source only
    missing_in_source: List[MissingEntity] = field(default_factory=list)  # scraped only


def _ignore_reason(rule: MappingRule) -> str:
    return (rule.rules or {}).get("ignore_reason") or f"Ignored by mapping rule {rule.id}"


class EntityMatcher:
    """Match players or games for one reconciliation unit."""

    def __init__(self, evaluator: FieldEquivalenceEvaluator, context: ScopeContext):
        """
        Args:
            evaluator: Evaluator for the unit (shares its rule cache)
            context: League/sport/team of the unit; narrowed per player when needed
        """
        self.evaluator = evaluator
        self.context = context

    # ─────────────────────────────────────────────────────────────
    # Players
    # ─────────────────────────────────────────────────────────────

    def match_players(self, scraped: Iterable[Dict[str, Any]], source: Iterable[Dict[str, Any]]) -> MatchOutcome:
        scraped = list(scraped)
        source = list(source)
        outcome = MatchOutcome()

        scraped_keys = [normalize(rec.player_name(r)) for r in scraped]
        source_keys = [normalize(rec.player_name(r)) for r in source]

        by_key: Dict[str, deque] = defaultdict(deque)
        for index, key in enumerate(scraped_keys):
            if key:
                by_key[key].append(index)

        used_scraped: Set[int] = set()
        leftover_source: List[int] = []

        # Direct key equality
        for source_index, key in enumerate(source_keys):
            candidates = by_key.get(key) if key else None
            if candidates:
                scraped_index = candidates.popleft()
                used_scraped.add(scraped_index)
                outcome.pairs.append(self._player_pair(
                    scraped[scraped_index], source[source_index], key, MATCHED_BY_KEY,
                ))
            else:
                leftover_source.append(source_index)

        # Mapping rules on the name field
        leftover_scraped = [i for i in range(len(scraped)) if i not in used_scraped]
        still_unmatched: List[int] = []
        for source_index in leftover_source:
            source_record = source[source_index]
            context = self._player_context(source_record)
            source_name = rec.player_name(source_record)
            paired = None
            for scraped_index in leftover_scraped:
                if scraped_index in used_scraped:
                    continue
                evaluation = self.evaluator.evaluate(
                    rec.player_name(scraped[scraped_index]), source_name, "name", context,
                )
                if evaluation.result == EquivalenceResult.EQUAL_BY_RULE:
                    paired = scraped_index
                    break
            if paired is None:
                still_unmatched.append(source_index)
                continue
            used_scraped.add(paired)
            pair = self._player_pair(
                scraped[paired], source_record, source_keys[source_index] or normalize(source_name), MATCHED_BY_RULE,
            )
            pair.mapped_fields["name"] = True
            outcome.pairs.append(pair)

        for source_index in still_unmatched:
            outcome.missing_in_scraped.append(self._missing_player(source[source_index], source_keys[source_index]))
        for scraped_index in leftover_scraped:
            if scraped_index not in used_scraped:
                outcome.missing_in_source.append(
                    self._missing_player(scraped[scraped_index], scraped_keys[scraped_index])
                )

        logger.debug(
            f"Player matching for {self.context.team_id}: {len(outcome.pairs)} pairs, "
            f"{len(outcome.missing_in_scraped)} source-only, {len(outcome.missing_in_source)} scraped-only"
        )
        return outcome

    def _player_context(self, record: Dict[str, Any]) -> ScopeContext:
        return self.context.for_player(rec.player_id(record), rec.player_name(record))

    def _player_pair(self, scraped: Dict[str, Any], source: Dict[str, Any], key: str, via: str) -> MatchedPair:
        # Player-scoped rules are keyed on the authoritative record's identity
        context = self._player_context(source)
        if context.player_id is None:
            context = context.for_player(rec.player_id(scraped), rec.player_name(source))
        return MatchedPair(
            key=key,
            label=rec.player_name(source) or rec.player_name(scraped),
            scraped=scraped,
            source=source,
            matched_via=via,
            context=context,
        )

    def _missing_player(self, record: Dict[str, Any], key: str) -> MissingEntity:
        name = rec.player_name(record)
        entry = MissingEntity(key=key, label=name, record=record)
        rule = self.evaluator.check_ignored(name, "name", self._player_context(record))
        if rule is not None:
            entry.is_ignored = True
            entry.ignore_reason = _ignore_reason(rule)
        return entry

    # ─────────────────────────────────────────────────────────────
    # Games
    # ─────────────────────────────────────────────────────────────

    def match_games(
        self,
        scraped: Iterable[Dict[str, Any]],
        source: Iterable[Dict[str, Any]],
        ignored_dates: Optional[Set[str]] = None,
    ) -> MatchOutcome:
        """
        Match games by date, then by opponent within the date.

        Args:
            scraped: Scraped game records
            source: Authoritative game records
            ignored_dates: Date keys excluded from missing-in-source reporting

        Returns:
            MatchOutcome with pairs and both missing lists
        """
        ignored_dates = ignored_dates or set()
        scraped_by_date = self._group_by_date(scraped)
        source_by_date = self._group_by_date(source)
        outcome = MatchOutcome()

        for date_key, scraped_games in scraped_by_date.items():
            source_games = source_by_date.get(date_key, [])
            used_source: Set[int] = set()

            for scraped_game in scraped_games:
                found = self._find_game(scraped_game, scraped_games, source_games, used_source)
                if found is None:
                    outcome.missing_in_source.append(self._missing_game(scraped_game, ignored_dates))
                    continue
                source_index, via = found
                used_source.add(source_index)
                pair = MatchedPair(
                    key=date_key,
                    label=rec.game_label(source_games[source_index]),
                    scraped=scraped_game,
                    source=source_games[source_index],
                    matched_via=via,
                    context=self.context,
                )
                if via == MATCHED_BY_RULE:
                    pair.mapped_fields["opponent"] = True
                outcome.pairs.append(pair)

            for index, source_game in enumerate(source_games):
                if index not in used_source:
                    outcome.missing_in_scraped.append(self._missing_game(source_game))

        for date_key, source_games in source_by_date.items():
            if date_key not in scraped_by_date:
                outcome.missing_in_scraped.extend(self._missing_game(game) for game in source_games)

        logger.debug(
            f"Schedule matching for {self.context.team_id}: {len(outcome.pairs)} pairs, "
            f"{len(outcome.missing_in_scraped)} source-only, {len(outcome.missing_in_source)} scraped-only"
        )
        return outcome

    @staticmethod
    def _group_by_date(games: Iterable[Dict[str, Any]]) -> "OrderedDict[str, List[Dict[str, Any]]]":
        grouped: "OrderedDict[str, List[Dict[str, Any]]]" = OrderedDict()
        for game in games:
            grouped.setdefault(rec.game_date_key(game), []).append(game)
        return grouped

    def _find_game(
        self,
        scraped_game: Dict[str, Any],
        scraped_games: List[Dict[str, Any]],
        source_games: List[Dict[str, Any]],
        used: Set[int],
    ) -> Optional[Tuple[int, str]]:
        available = [i for i in range(len(source_games)) if i not in used]
        if not available:
            return None

        opponent = normalize_team_name(rec.opponent_name(scraped_game))
        nickname = normalize_team_name(rec.opponent_nickname(scraped_game))

        # Opponent name; game number separates doubleheaders against the same team
        same_opponent = [
            i for i in available
            if opponent and normalize_team_name(rec.opponent_name(source_games[i])) == opponent
        ]
        if same_opponent:
            number = rec.game_number(scraped_game)
            for i in same_opponent:
                if number and rec.game_number(source_games[i]) == number:
                    return i, MATCHED_BY_KEY
            return same_opponent[0], MATCHED_BY_KEY

        # Nickname on either side ("Minnesota Twins" vs "Twins")
        for i in available:
            source_opponent = normalize_team_name(rec.opponent_name(source_games[i]))
            source_nickname = normalize_team_name(rec.opponent_nickname(source_games[i]))
            if (
                (nickname and source_nickname and nickname == source_nickname)
                or (nickname and nickname == source_opponent)
                or (opponent and source_nickname and opponent == source_nickname)
            ):
                return i, MATCHED_BY_KEY

        opponent_id = rec.opponent_id(scraped_game)
        if opponent_id:
            for i in available:
                if rec.opponent_id(source_games[i]) == opponent_id:
                    return i, MATCHED_BY_KEY

        raw_opponent = rec.opponent_name(scraped_game)
        if raw_opponent:
            for i in available:
                evaluation = self.evaluator.evaluate(
                    raw_opponent, rec.opponent_name(source_games[i]), "opponent", self.context,
                )
                if evaluation.result == EquivalenceResult.EQUAL_BY_RULE:
                    return i, MATCHED_BY_RULE

        if len(scraped_games) == 1 and len(source_games) == 1 and not used:
            return 0, MATCHED_BY_FALLBACK
        return None

    def _missing_game(self, game: Dict[str, Any], ignored_dates: Optional[Set[str]] = None) -> MissingEntity:
        date_key = rec.game_date_key(game)
        entry = MissingEntity(key=date_key, label=rec.game_label(game), record=game)
        if ignored_dates and date_key in ignored_dates:
            entry.is_ignored = True
            entry.ignore_reason = IGNORED_DATE_REASON
            return entry
        rule = self.evaluator.check_ignored(rec.opponent_name(game), "opponent", self.context)
        if rule is not None:
            entry.is_ignored = True
            entry.ignore_reason = _ignore_reason(rule)
        return entry
