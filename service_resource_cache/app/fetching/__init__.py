"""
Fetch path: one in-flight request per key, validated and retried.
"""
