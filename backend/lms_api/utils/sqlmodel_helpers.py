"""Helpers to apply partial updates coming from request payloads.

Payloads are dumped with ``exclude_unset=True`` so only the fields the client
actually sent reach the model. Values are coerced back to the python types
declared on the table (UUIDs, enums, datetimes) and datetimes are stored as
naive UTC, the representation used across the schema.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Iterable, Type, TypeVar

from pydantic import TypeAdapter, ValidationError
from sqlmodel import SQLModel

from ..models import as_naive_utc, utcnow


TModel = TypeVar("TModel", bound=SQLModel)

# Never writable through a payload
_PROTECTED_FIELDS = frozenset({"id", "created_at", "updated_at"})


def _coerce_field_value(model: Type[TModel], field_name: str, value: Any) -> Any:
    """Coerce *value* to the annotation declared for ``field_name`` on ``model``.

    Unknown fields or values that fail validation are returned untouched; the
    database layer will reject them with a proper error if they are wrong.
    """

    if value is None:
        return None

    field = model.model_fields.get(field_name)
    if field is None:
        return value

    try:
        coerced = TypeAdapter(field.annotation).validate_python(value)
    except ValidationError:
        return value
    if isinstance(coerced, datetime):
        return as_naive_utc(coerced)
    return coerced


def normalize_payload_for_model(
    model: Type[TModel], data: Dict[str, Any], exclude: Iterable[str] = ()
) -> Dict[str, Any]:
    """Return a copy of *data* restricted to writable fields and coerced to ``model`` types."""

    skipped = _PROTECTED_FIELDS.union(exclude)
    return {
        key: _coerce_field_value(model, key, value)
        for key, value in data.items()
        if key not in skipped and key in model.model_fields
    }


def apply_partial_update(instance: TModel, data: Dict[str, Any], exclude: Iterable[str] = ()) -> TModel:
    """Assign the coerced *data* on *instance* and bump ``updated_at`` when present."""

    for key, value in normalize_payload_for_model(type(instance), data, exclude).items():
        setattr(instance, key, value)
    if "updated_at" in type(instance).model_fields:
        instance.updated_at = utcnow()
    return instance
