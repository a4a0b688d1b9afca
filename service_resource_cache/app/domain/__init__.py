"""
Todo domain: resource models, cache keys, pure list helpers and the
optimistic actions views call.
"""
