"""
Optimistic mutations with snapshot rollback.
"""
