"""
Source adapters.

- http_sources: analytics gateway and stats API clients (retry + circuit breaker)
- stores: scraped record store and baseline snapshots
"""
