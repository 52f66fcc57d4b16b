"""Unit tests for EntityMatcher.

Test Strategy:
1. Test player matching by normalized name and by name mapping rule
2. Test each record ends up in exactly one of pairs / missing lists
3. Test ignore rules flag missing entities without dropping them
4. Test game matching by date then opponent, including doubleheaders
5. Test nickname, opponent id, opponent rule and single-game fallback
6. Test ignored schedule dates

Each test follows the pattern:
- Given: Two record collections (and optionally mapping rules)
- When: match_players() or match_games() is called
- Then: Pairs and missing lists are as expected
"""
import sys
from pathlib import Path

import pytest
from sqlalchemy.orm import Session

sys.path.insert(0, str(Path(__file__).parent.parent))
from conftest import create_rule

from sportsrecon.services.mapping.evaluator import FieldEquivalenceEvaluator
from sportsrecon.services.mapping.scope import ScopeContext
from sportsrecon.services.reconciliation.entity_matcher import (
    IGNORED_DATE_REASON, MATCHED_BY_FALLBACK, MATCHED_BY_KEY, MATCHED_BY_RULE, EntityMatcher,
)

CONTEXT = ScopeContext(league="NCAA", sport="football", team_id="ncaa-101")


@pytest.fixture
def matcher(db_session: Session) -> EntityMatcher:
    return EntityMatcher(FieldEquivalenceEvaluator(db_session), CONTEXT)


class TestPlayerMatching:

    def test_matches_by_normalized_name(self, matcher: EntityMatcher):
        outcome = matcher.match_players(
            [{"name": "José Peña Jr."}, {"name": "Carl Jones"}],
            [{"full_name": "Jose Pena"}, {"full_name": "CARL  JONES"}],
        )

        assert len(outcome.pairs) == 2
        assert all(p.matched_via == MATCHED_BY_KEY for p in outcome.pairs)
        assert outcome.missing_in_scraped == []
        assert outcome.missing_in_source == []

    def test_name_rule_aligns_players(self, db_session: Session):
        """Team-level equivalence pairs 'Bob Smith Jr.' with 'Smith, Bob'."""
        create_rule(
            db_session, mapping_type="equivalence", field_type="name",
            scope={"level": "team", "team_id": "ncaa-101"},
            rules={"primary_value": "Bob Smith Jr.", "equivalents": ["Smith, Bob"]},
        )
        matcher = EntityMatcher(FieldEquivalenceEvaluator(db_session), CONTEXT)

        outcome = matcher.match_players([{"name": "Bob Smith Jr."}], [{"full_name": "Smith, Bob"}])

        assert len(outcome.pairs) == 1
        assert outcome.pairs[0].matched_via == MATCHED_BY_RULE
        assert outcome.pairs[0].mapped_fields == {"name": True}
        assert outcome.missing_in_scraped == []
        assert outcome.missing_in_source == []

    def test_unmatched_players_land_in_missing_lists(self, matcher: EntityMatcher):
        scraped = [{"name": "Carl Jones"}, {"name": "Dan Extra"}]
        source = [{"full_name": "Carl Jones"}, {"full_name": "Eli Missing"}]

        outcome = matcher.match_players(scraped, source)

        assert [p.label for p in outcome.pairs] == ["Carl Jones"]
        assert [m.label for m in outcome.missing_in_scraped] == ["Eli Missing"]
        assert [m.label for m in outcome.missing_in_source] == ["Dan Extra"]
        # Every record accounted for exactly once
        assert len(outcome.pairs) + len(outcome.missing_in_source) == len(scraped)
        assert len(outcome.pairs) + len(outcome.missing_in_scraped) == len(source)

    def test_duplicate_names_pair_in_order(self, matcher: EntityMatcher):
        outcome = matcher.match_players(
            [{"name": "Sam Lee", "jersey": "1"}, {"name": "Sam Lee", "jersey": "2"}],
            [{"full_name": "Sam Lee", "jersey": "1"}],
        )

        assert outcome.pairs[0].scraped["jersey"] == "1"
        assert outcome.missing_in_source[0].record["jersey"] == "2"

    def test_ignored_player_stays_listed(self, db_session: Session):
        create_rule(
            db_session, mapping_type="ignore", field_type="name",
            rules={"primary_value": "Eli Missing", "ignore_reason": "Walk-on"},
        )
        matcher = EntityMatcher(FieldEquivalenceEvaluator(db_session), CONTEXT)

        outcome = matcher.match_players([], [{"full_name": "Eli Missing"}])

        missing = outcome.missing_in_scraped[0]
        assert missing.is_ignored is True
        assert missing.ignore_reason == "Walk-on"

    def test_player_context_carries_source_identity(self, matcher: EntityMatcher):
        outcome = matcher.match_players([{"name": "Carl Jones"}], [{"full_name": "Carl Jones", "player_id": 42}])

        assert outcome.pairs[0].context.player_id == "42"
        assert outcome.pairs[0].context.team_id == "ncaa-101"


class TestGameMatching:

    def test_matches_by_date_and_opponent(self, matcher: EntityMatcher):
        scraped = [
            {"date": "2024-09-07", "opponent": "at #12 Michigan"},
            {"date": "2024-09-14", "opponent": "Iowa"},
        ]
        source = [
            {"game_date": "2024-09-07T19:00:00Z", "opponent_name": "Michigan"},
            {"game_date": "2024-09-14", "opponent_name": "Iowa"},
        ]

        outcome = matcher.match_games(scraped, source)

        assert [p.key for p in outcome.pairs] == ["2024-09-07", "2024-09-14"]
        assert all(p.matched_via == MATCHED_BY_KEY for p in outcome.pairs)

    def test_doubleheader_pairs_by_game_number(self, matcher: EntityMatcher):
        scraped = [
            {"date": "2024-04-06", "opponent": "Purdue", "game_number": 2, "time": "16:00"},
            {"date": "2024-04-06", "opponent": "Purdue", "game_number": 1, "time": "13:00"},
        ]
        source = [
            {"game_date": "2024-04-06", "opponent_name": "Purdue", "game_number": "1", "time": "13:00"},
            {"game_date": "2024-04-06", "opponent_name": "Purdue", "game_number": "2", "time": "16:00"},
        ]

        outcome = matcher.match_games(scraped, source)

        assert len(outcome.pairs) == 2
        for pair in outcome.pairs:
            assert pair.scraped["time"] == pair.source["time"]

    def test_nickname_match(self, matcher: EntityMatcher):
        outcome = matcher.match_games(
            [{"date": "2024-06-01", "opponent": "Twins"}],
            [
                {"game_date": "2024-06-01", "opponent_name": "Minnesota Twins", "opponent_nickname": "Twins"},
                {"game_date": "2024-06-01", "opponent_name": "Chicago Cubs", "opponent_nickname": "Cubs"},
            ],
        )

        assert outcome.pairs[0].source["opponent_name"] == "Minnesota Twins"
        assert [m.label for m in outcome.missing_in_scraped] == ["2024-06-01 vs Chicago Cubs"]

    def test_opponent_id_match(self, matcher: EntityMatcher):
        outcome = matcher.match_games(
            [{"date": "2024-06-01", "opponent": "Blue Hens", "opponent_id": 77}],
            [
                {"game_date": "2024-06-01", "opponent_name": "Delaware", "opponent_id": "77"},
                {"game_date": "2024-06-01", "opponent_name": "Navy", "opponent_id": "78"},
            ],
        )
        assert outcome.pairs[0].source["opponent_name"] == "Delaware"

    def test_opponent_rule_match(self, db_session: Session):
        create_rule(
            db_session, mapping_type="equivalence", field_type="opponent",
            rules={"primary_value": "Miami (FL)", "equivalents": ["Miami Hurricanes"]},
        )
        matcher = EntityMatcher(FieldEquivalenceEvaluator(db_session), CONTEXT)

        outcome = matcher.match_games(
            [{"date": "2024-10-05", "opponent": "Miami Hurricanes"}],
            [
                {"game_date": "2024-10-05", "opponent_name": "Miami (FL)"},
                {"game_date": "2024-10-05", "opponent_name": "Miami (OH)"},
            ],
        )

        assert outcome.pairs[0].matched_via == MATCHED_BY_RULE
        assert outcome.pairs[0].mapped_fields == {"opponent": True}

    def test_single_game_fallback(self, matcher: EntityMatcher):
        outcome = matcher.match_games(
            [{"date": "2024-11-30", "opponent": "TBD"}],
            [{"game_date": "2024-11-30", "opponent_name": "Ohio State"}],
        )
        assert outcome.pairs[0].matched_via == MATCHED_BY_FALLBACK

    def test_games_on_unmatched_dates_are_missing(self, matcher: EntityMatcher):
        outcome = matcher.match_games(
            [{"date": "2024-09-01", "opponent": "Iowa"}],
            [{"game_date": "2024-09-02", "opponent_name": "Iowa"}],
        )

        assert outcome.pairs == []
        assert [m.key for m in outcome.missing_in_source] == ["2024-09-01"]
        assert [m.key for m in outcome.missing_in_scraped] == ["2024-09-02"]

    def test_ignored_dates_flag_scraped_only_games(self, matcher: EntityMatcher):
        outcome = matcher.match_games(
            [{"date": "2025-03-20", "opponent": "TBA"}],
            [{"game_date": "2025-03-21", "opponent_name": "Iowa"}],
            ignored_dates={"2025-03-20", "2025-03-21"},
        )

        assert outcome.missing_in_source[0].is_ignored is True
        assert outcome.missing_in_source[0].ignore_reason == IGNORED_DATE_REASON
        # Ignored dates only apply to games the scraped site lists
        assert outcome.missing_in_scraped[0].is_ignored is False

    def test_opponent_ignore_rule_flags_either_side(self, db_session: Session):
        create_rule(
            db_session, mapping_type="ignore", field_type="opponent",
            rules={"primary_value": "Exhibition", "ignore_reason": "Not in source feeds"},
        )
        matcher = EntityMatcher(FieldEquivalenceEvaluator(db_session), CONTEXT)

        outcome = matcher.match_games(
            [{"date": "2024-11-01", "opponent": "Exhibition"}],
            [{"game_date": "2024-11-02", "opponent_name": "Exhibition"}],
        )

        assert outcome.missing_in_source[0].ignore_reason == "Not in source feeds"
        assert outcome.missing_in_scraped[0].is_ignored is True
