"""
Offset pagination arithmetic.
"""

import math
from dataclasses import dataclass, field
from typing import Any, List

from ..domain.todos import Page


def compute_has_more(page: int, limit: int, total: int) -> bool:
    """True while ``page`` is before the last page of ``total`` items."""
    if limit <= 0:
        raise ValueError("limit must be positive")
    return page < math.ceil(total / limit)


def total_pages(limit: int, total: int) -> int:
    if limit <= 0:
        raise ValueError("limit must be positive")
    return math.ceil(total / limit)


@dataclass(frozen=True)
class PaginatedView:
    """One page of a list with the counts a pager needs."""
    items: List[Any] = field(default_factory=list)
    total: int = 0
    page: int = 1
    limit: int = 1

    @property
    def has_more(self) -> bool:
        return compute_has_more(self.page, self.limit, self.total)

    @property
    def total_pages(self) -> int:
        return total_pages(self.limit, self.total)

    @classmethod
    def from_page(cls, page: Page) -> "PaginatedView":
        return cls(items=list(page.items), total=page.total, page=page.page, limit=page.limit)

    @classmethod
    def slice(cls, items: List[Any], page: int, limit: int) -> "PaginatedView":
        """Cut page ``page`` (1-based) out of the full ``items`` list."""
        if limit <= 0:
            raise ValueError("limit must be positive")
        start = (page - 1) * limit
        return cls(items=list(items[start:start + limit]), total=len(items), page=page, limit=limit)
