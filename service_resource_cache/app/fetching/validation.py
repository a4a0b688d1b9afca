"""
Pluggable payload validation for the fetch coordinator.

The coordinator only knows the ``PayloadValidator`` protocol. The concrete
validators here use pydantic, but any object with a ``validate`` method can
be registered for a key.
"""

from typing import Any, Optional, Protocol, Type, runtime_checkable

from pydantic import BaseModel, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from shared.errors import SchemaValidationError


@runtime_checkable
class PayloadValidator(Protocol):
    """Turns a raw payload into the cached value or raises ``SchemaValidationError``."""

    def validate(self, payload: Any, key: Optional[str] = None) -> Any:
        ...


def _format_path(prefix: str, loc) -> str:
    parts = [prefix] if prefix else []
    parts.extend(str(part) for part in loc)
    return ".".join(parts) or "<root>"


class ModelValidator:
    """Validate a payload against a pydantic model or any type pydantic can adapt."""

    def __init__(self, model: Any, path_prefix: str = ""):
        self.model = model
        self.path_prefix = path_prefix
        self._adapter = TypeAdapter(model)

    def validate(self, payload: Any, key: Optional[str] = None) -> Any:
        try:
            return self._adapter.validate_python(payload)
        except PydanticValidationError as exc:
            first = exc.errors()[0]
            raise SchemaValidationError(
                path=_format_path(self.path_prefix, first["loc"]),
                message=first["msg"],
                key=key,
            ) from exc


class EnvelopeValidator:
    """Unwrap the backend's ``{code, data, message}`` envelope.

    ``inner`` validates ``data``; without one the data is returned as-is.
    A ``null`` data field is passed through unvalidated.
    """

    def __init__(self, inner: Optional[PayloadValidator] = None):
        self.inner = inner

    def validate(self, payload: Any, key: Optional[str] = None) -> Any:
        if not isinstance(payload, dict):
            raise SchemaValidationError(path="<root>", message="Expected a response envelope object", key=key)
        if "data" not in payload:
            raise SchemaValidationError(path="data", message="Field required", key=key)

        data = payload["data"]
        if data is None or self.inner is None:
            return data
        return self.inner.validate(data, key=key)


def enveloped(model: Type[BaseModel]) -> EnvelopeValidator:
    """Envelope validator whose data must match ``model``; paths are reported as ``data.<field>``."""
    return EnvelopeValidator(ModelValidator(model, path_prefix="data"))
