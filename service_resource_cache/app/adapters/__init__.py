"""
HTTP adapters for the todo backend.
"""
