"""
Comparison Aggregator.

Assembles a ComparisonResult from matches and missing lists. Every summary
number is derived from the arrays it summarises, never tracked separately.
"""
import math
from typing import Any, Dict, List, Sequence

from sportsrecon.services.reconciliation.entity_matcher import MissingEntity


def match_percentage(perfect_matches: int, total_source: int) -> int:
    """
    Share of source records matched without discrepancies.

    Rounds half up and always lands in [0, 100]; an empty source gives 0.
    """
    if total_source <= 0:
        return 0
    value = math.floor(100 * perfect_matches / total_source + 0.5)
    return max(0, min(100, int(value)))


def summarize(
    matches: Sequence[Dict[str, Any]],
    missing_in_scraped: Sequence[Dict[str, Any]],
    missing_in_source: Sequence[Dict[str, Any]],
) -> Dict[str, Any]:
    perfect = sum(1 for m in matches if not m["discrepancies"])
    ignored_in_scraped = sum(1 for m in missing_in_scraped if m.get("is_ignored"))
    ignored_in_source = sum(1 for m in missing_in_source if m.get("is_ignored"))
    return {
        "perfect_matches": perfect,
        "with_discrepancies": len(matches) - perfect,
        "unique_to_each": {
            # Actionable counts: ignored entities stay listed but are not counted here
            "scraped": len(missing_in_source) - ignored_in_source,
            "source": len(missing_in_scraped) - ignored_in_scraped,
        },
        "missing_in_scraped_total": len(missing_in_scraped),
        "missing_in_source_total": len(missing_in_source),
        "ignored_in_scraped": ignored_in_scraped,
        "ignored_in_source": ignored_in_source,
        "mapped_matches": sum(1 for m in matches if m["mapped_fields"]),
        "total_discrepancies": sum(len(m["discrepancies"]) for m in matches),
    }


def build_result(
    matches: List[Dict[str, Any]],
    missing_in_scraped: List[MissingEntity],
    missing_in_source: List[MissingEntity],
    total_scraped: int,
    total_source: int,
) -> Dict[str, Any]:
    """
    Assemble the comparison result.

    Args:
        matches: Match entries from the discrepancy builder
        missing_in_scraped: Source-only entities
        missing_in_source: Scraped-only entities
        total_scraped: Number of scraped records
        total_source: Number of source records

    Returns:
        ComparisonResult dict
    """
    scraped_only = [m.to_dict() for m in missing_in_source]
    source_only = [m.to_dict() for m in missing_in_scraped]
    summary = summarize(matches, source_only, scraped_only)
    return {
        "matches": matches,
        "discrepancies": [m for m in matches if m["discrepancies"]],
        "missing_in_scraped": source_only,
        "missing_in_source": scraped_only,
        "total_scraped": total_scraped,
        "total_source": total_source,
        "match_percentage": match_percentage(summary["perfect_matches"], total_source),
        "summary": summary,
    }


def format_differences(result: Dict[str, Any], team_id: str) -> List[Dict[str, Any]]:
    """
    Flatten a comparison result into one row per difference.

    Row types: missing_in_web (source only), missing_in_source (scraped only)
    and field_mismatch (one per discrepancy entry).
    """
    rows: List[Dict[str, Any]] = []
    for item in result.get("missing_in_scraped", []):
        rows.append({
            "match_key": item["key"],
            "label": item["label"],
            "team_id": team_id,
            "type": "missing_in_web",
            "source_value": item["record"],
            "web_value": None,
            "is_ignored": item.get("is_ignored", False),
        })
    for item in result.get("missing_in_source", []):
        rows.append({
            "match_key": item["key"],
            "label": item["label"],
            "team_id": team_id,
            "type": "missing_in_source",
            "source_value": None,
            "web_value": item["record"],
            "is_ignored": item.get("is_ignored", False),
        })
    for match in result.get("discrepancies", []):
        for entry in match["discrepancies"]:
            rows.append({
                "match_key": match["key"],
                "label": match["label"],
                "team_id": team_id,
                "type": "field_mismatch",
                "field": entry["field"],
                "source_value": entry["source"],
                "web_value": entry["scraped"],
                "mapping_applied": bool(match["mapped_fields"].get(entry["field"])),
            })
    return rows
