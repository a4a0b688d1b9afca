"""
Resource cache service package.

A stale-while-revalidate cache with optimistic mutations for the todo
backend.

Structure:
- app.main: TodoCacheService composition root.
- app.caching: Cache store, keys and the ResourceCache facade.
- app.fetching: Deduplicated fetch coordinator and payload validators.
- app.revalidation: Revalidation triggers and scheduling.
- app.mutations: Optimistic mutation coordinator and list updaters.
- app.pagination: Offset arithmetic and infinite lists.
- app.adapters: HTTP client for the todo backend.
- app.domain: Todo models, helpers and optimistic actions.
"""
