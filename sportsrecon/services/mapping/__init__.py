"""
Mapping Rule Engine

Key components:
- Resolver: picks the applicable rules for a field in a scope, most specific first
- Evaluator: decides whether two values are equal, directly or through a rule
- MappingService: rule CRUD, equivalence checks and expiry
- Suggestions: unequal values seen during comparisons, queued for review
"""
