"""
Pure updaters for list-shaped cache data.

Each function takes the cached ``Page`` (or ``None`` when nothing is cached
yet) and returns the new value. They are meant to be handed to
``CacheStore.set_data`` or used as the ``apply``/``commit`` steps of an
optimistic mutation.
"""

from typing import Any, Dict, Optional

from ..domain.todos import Page


def prepend_item(page: Optional[Page], item: Any) -> Optional[Page]:
    """Insert ``item`` at the head of the page and count it in ``total``."""
    if page is None:
        return None
    return page.model_copy(update={"items": [item, *page.items], "total": page.total + 1})


def replace_item(page: Optional[Page], item_id: int, item: Any) -> Optional[Page]:
    """Swap the item whose id is ``item_id`` for ``item``; unknown ids leave the page as-is."""
    if page is None:
        return None
    if not any(existing.id == item_id for existing in page.items):
        return page
    items = [item if existing.id == item_id else existing for existing in page.items]
    return page.model_copy(update={"items": items})


def remove_item(page: Optional[Page], item_id: int) -> Optional[Page]:
    if page is None:
        return None
    items = [existing for existing in page.items if existing.id != item_id]
    if len(items) == len(page.items):
        return page
    return page.model_copy(update={"items": items, "total": max(page.total - 1, 0)})


def patch_item(page: Optional[Page], item_id: int, changes: Dict[str, Any]) -> Optional[Page]:
    """Apply field ``changes`` to one item, leaving the others untouched."""
    if page is None:
        return None

    def patch(existing):
        return existing.model_copy(update=changes) if existing.id == item_id else existing

    return page.model_copy(update={"items": [patch(existing) for existing in page.items]})
