"""
API routes.

- mappings: mapping rule administration and suggestion review
- comparisons: single team/module reconciliation
- ignored_games: schedule dates excluded from missing-game reporting
- bulk_comparison: batched multi-team jobs
"""
