"""Shared service utilities: UUID coercion, payload validation, ordering, pagination."""
from __future__ import annotations

import uuid
from typing import Any, TypeVar

import pydantic
from sqlalchemy.orm import Query, Session

from app.errors import NotFoundError, ValidationError
from app.models.partner import Partner

T = TypeVar("T")
M = TypeVar("M", bound=pydantic.BaseModel)


def coerce_uuid(value: Any) -> uuid.UUID | None:
    """Convert a string or UUID to UUID, or return None."""
    if value is None:
        return None
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except ValueError as exc:
        raise ValidationError(f"Invalid identifier: {value}") from exc


def require_uuid(value: Any) -> uuid.UUID:
    """Convert a string or UUID to UUID, raising ValidationError if None."""
    result = coerce_uuid(value)
    if result is None:
        raise ValidationError("Identifier is required")
    return result


def validate_payload(schema: type[M], data: Any) -> M:
    """Validate raw input against a schema, raising the domain ValidationError."""
    if isinstance(data, schema):
        return data
    if isinstance(data, pydantic.BaseModel):
        data = data.model_dump(exclude_unset=True)
    try:
        return schema.model_validate(data)
    except pydantic.ValidationError as exc:
        raise ValidationError(
            f"Invalid {schema.__name__}",
            details=exc.errors(include_url=False, include_context=False),
        ) from exc


def get_partner(db: Session, partner_id: Any) -> Partner:
    partner = db.get(Partner, require_uuid(partner_id))
    if not partner:
        raise NotFoundError("Partner not found")
    return partner


def validate_enum(value: str, enum_cls: type, label: str) -> Any:
    try:
        return enum_cls(value)
    except ValueError as exc:
        allowed = ", ".join(member.value for member in enum_cls)
        raise ValidationError(f"Invalid {label}. Allowed: {allowed}") from exc


def apply_ordering(
    query: Query,
    order_by: str,
    order_dir: str,
    allowed_columns: dict[str, Any],
) -> Query:
    """Apply ordering to a query with validation."""
    if order_by not in allowed_columns:
        raise ValidationError(
            f"Invalid order_by. Allowed: {', '.join(sorted(allowed_columns))}"
        )
    column = allowed_columns[order_by]
    if order_dir == "desc":
        return query.order_by(column.desc())
    return query.order_by(column.asc())


def apply_pagination(query: Query, limit: int, offset: int) -> Query:
    """Apply limit/offset to a query."""
    return query.limit(limit).offset(offset)
