"""
Models Module

Usage:
    from sportsrecon.models import MappingRule, ComparisonJob
"""
from sportsrecon.models.models import (
    Base,
    MappingRule,
    MappingRuleHistory,
    MappingSuggestion,
    IgnoredScheduleGame,
    ComparisonResultRecord,
    ComparisonJob,
    ComparisonJobResult,
    Team,
    ScrapedRecord,
    BaselineSnapshot,
)

__all__ = [
    "Base",
    "MappingRule",
    "MappingRuleHistory",
    "MappingSuggestion",
    "IgnoredScheduleGame",
    "ComparisonResultRecord",
    "ComparisonJob",
    "ComparisonJobResult",
    "Team",
    "ScrapedRecord",
    "BaselineSnapshot",
]
