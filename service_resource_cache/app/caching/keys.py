"""
Cache key construction.

A cache key is the request path plus its query string, exactly as it will
be sent. Keys compare by string equality only, so parameters are encoded in
the order the caller supplies them and never re-sorted.
"""

from typing import Any, Callable, Mapping, Optional
from urllib.parse import urlencode

CacheKey = str
KeyPredicate = Callable[[CacheKey], bool]


def _encode_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if hasattr(value, "value"):  # Enum members
        return str(value.value)
    return str(value)


def with_query(path: str, params: Optional[Mapping[str, Any]] = None) -> CacheKey:
    """Append ``params`` to ``path``; ``None`` values are dropped."""
    if not params:
        return path

    pairs = [(name, _encode_value(value)) for name, value in params.items() if value is not None]
    if not pairs:
        return path

    separator = "&" if "?" in path else "?"
    return f"{path}{separator}{urlencode(pairs)}"


def without_leading_slash(path: str) -> str:
    """Strip leading slashes so the path joins onto a base URL."""
    return path.lstrip("/")


def prefix_predicate(prefix: str) -> KeyPredicate:
    """Match keys under ``prefix`` (``/todos``, ``/todos?...``, ``/todos/...``)."""
    def predicate(key: CacheKey) -> bool:
        return key == prefix or key.startswith(prefix + "?") or key.startswith(prefix + "/")

    return predicate
