"""
Pagination helpers: offset arithmetic and infinite lists.
"""
