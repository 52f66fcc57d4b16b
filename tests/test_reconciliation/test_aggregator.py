"""Unit tests for the comparison aggregator and module registry.

Test Strategy:
1. Test match_percentage bounds, rounding and empty source
2. Test summary counts are derived from the arrays
3. Test format_differences row types
4. Test module lookup and per-team applicability
"""
import pytest

from sportsrecon.core.exceptions import NotFoundError
from sportsrecon.models import Team
from sportsrecon.services.reconciliation.aggregator import (
    build_result, format_differences, match_percentage,
)
from sportsrecon.services.reconciliation.entity_matcher import MissingEntity
from sportsrecon.services.reconciliation.modules import (
    MODULES, get_module, should_run_module, team_source_id,
)


def match_entry(key, discrepancies=(), mapped=None):
    return {
        "key": key,
        "label": key.title(),
        "scraped": {},
        "source": {},
        "matched_via": "key",
        "discrepancies": list(discrepancies),
        "mapped_fields": mapped or {},
        "ignored_fields": [],
    }


class TestMatchPercentage:

    @pytest.mark.parametrize("perfect,total,expected", [
        (0, 0, 0),
        (1, 3, 33),
        (2, 3, 67),
        (1, 8, 13),  # 12.5 rounds half up
        (3, 3, 100),
        (5, 3, 100),
    ])
    def test_values(self, perfect, total, expected):
        assert match_percentage(perfect, total) == expected


class TestBuildResult:

    def test_summary_is_derived_from_arrays(self):
        matches = [
            match_entry("bob", mapped={"weight": True}),
            match_entry("carl", [{"field": "jersey", "scraped": "5", "source": "7"}]),
        ]
        source_only = [
            MissingEntity("eli", "Eli", {"full_name": "Eli"}),
            MissingEntity("walkon", "Walk On", {}, is_ignored=True, ignore_reason="Walk-on"),
        ]
        scraped_only = [MissingEntity("dan", "Dan", {"name": "Dan"})]

        result = build_result(matches, source_only, scraped_only, total_scraped=3, total_source=4)

        summary = result["summary"]
        assert summary["perfect_matches"] == 1
        assert summary["with_discrepancies"] == 1
        assert summary["unique_to_each"] == {"scraped": 1, "source": 1}
        assert summary["missing_in_scraped_total"] == 2
        assert summary["ignored_in_scraped"] == 1
        assert summary["mapped_matches"] == 1
        assert summary["total_discrepancies"] == 1
        assert [m["key"] for m in result["discrepancies"]] == ["carl"]
        assert result["match_percentage"] == 25
        assert result["missing_in_scraped"][1]["ignore_reason"] == "Walk-on"

    def test_empty_source(self):
        result = build_result([], [], [MissingEntity("dan", "Dan", {})], total_scraped=1, total_source=0)
        assert result["match_percentage"] == 0


class TestFormatDifferences:

    def test_row_types(self):
        result = build_result(
            [match_entry("carl", [{"field": "jersey", "scraped": "5", "source": "7"}], mapped={"weight": True})],
            [MissingEntity("eli", "Eli", {"full_name": "Eli"})],
            [MissingEntity("dan", "Dan", {"name": "Dan"})],
            total_scraped=2,
            total_source=2,
        )

        rows = format_differences(result, "ncaa-101")

        assert [r["type"] for r in rows] == ["missing_in_web", "missing_in_source", "field_mismatch"]
        assert rows[0]["source_value"] == {"full_name": "Eli"}
        assert rows[1]["web_value"] == {"name": "Dan"}
        assert rows[2]["field"] == "jersey"
        assert rows[2]["web_value"] == "5"
        assert rows[2]["mapping_applied"] is False
        assert all(r["team_id"] == "ncaa-101" for r in rows)


class TestModules:

    def test_unknown_module(self):
        with pytest.raises(NotFoundError):
            get_module("cricket_roster")

    def test_registry_kinds(self):
        assert get_module("ncaa_football_roster").is_roster
        assert get_module("mlb_schedule").is_schedule
        assert get_module("ncaa_softball_schedule").is_womens
        assert all(spec.module_id == module_id for module_id, spec in MODULES.items())

    def test_should_run_module(self):
        team = Team(
            team_id="t1", team_name="State", league="NCAA",
            source_ids={"scraper": {"football": "12"}, "espn": "333", "oracle": {"football": "9"}},
        )

        assert should_run_module(team, get_module("ncaa_football_roster"))
        assert should_run_module(team, get_module("espn_ncaa_cfb_schedule"))
        assert not should_run_module(team, get_module("ncaa_mensBasketball_roster"))
        assert not should_run_module(team, get_module("mlb_roster"))

    def test_team_source_id(self):
        team = Team(team_id="t1", team_name="State", league="NCAA",
                    source_ids={"scraper": {"football": 12}, "espn": "333", "oracle": {"football": ""}})

        assert team_source_id(team, "scraper", "football") == "12"
        assert team_source_id(team, "espn", "football") == "333"
        assert team_source_id(team, "oracle", "football") is None
        assert team_source_id(team, "stats_api", "football") is None
