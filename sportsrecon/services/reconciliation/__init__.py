"""
Reconciliation Engine

Compares scraped rosters and schedules against an authoritative source.

Key components:
- Modules: registry of roster/schedule modules and which teams run them
- Adapters: authoritative source clients and record stores
- EntityMatcher: pairs players or games across the two sides
- DiscrepancyBuilder: field-by-field comparison of each pair
- Aggregator: match percentage and summary
- ComparisonService: runs and persists one team/module unit
"""
