"""
Bulk comparison jobs: batched execution of many team/module units.
"""
