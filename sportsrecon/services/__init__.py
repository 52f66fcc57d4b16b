"""
Services module for reconciliation business logic.

This module organizes services into:
- mapping: rule resolution, field evaluation, rule administration and suggestions
- reconciliation: entity matching, discrepancy building, aggregation and source adapters
- jobs: bulk comparison jobs
"""
