"""
Cache package for the Notes Service.

Holds three cached views over notes (single note, owner's list, shared-with-me
list) in Redis, each namespace with its own TTL, plus a latency-based
estimator of how often those views are served from cache.
"""
