"""
Notes Service package for the Paper Trail backend.

Serves shared notes from PostgreSQL behind a Redis cache. It provides:

- app.main: API surface for notes, sharing, cache administration and health.
- app.notes: Note/grant models and the cache-aside NoteService.
- app.cache: Redis store, key layout, serialization, hit/miss estimation
  and cache administration.
- app.persistence: PostgreSQL storage for notes, users and grants.

Guidelines:
- Every cached read and every note mutation goes through NoteService.
- Database writes commit before any cache entry is touched.
- A Redis outage costs latency, never availability.
"""
