"""
Response Cache Service package.

The service fronts slow read-only queries with a persistent response cache:

- Cache engine: SQLite table of TTL entries with hit accounting and a
  periodic reclamation task
- Interception: serves repeated GET requests from the cache and captures
  successful results on a miss
- Management routes: stats, entry listing, per-key get/set/delete, clear
  and manual cleanup

Structure:
- app.main: FastAPI app, routes, and middleware wiring.
- app.caching: Cache engine, interceptor and the HTTP middleware adapter.
- app.adapters: Sample data source behind the cached routes.
"""
