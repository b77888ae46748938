"""Common helper functions for service layer.

This module provides reusable utilities for:
- UUID handling
- Entity retrieval with 404 handling
- Monetary rounding
"""

from __future__ import annotations

import uuid
from decimal import ROUND_HALF_UP, Decimal
from typing import TYPE_CHECKING, TypeVar

from fastapi import HTTPException

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

T = TypeVar("T")


def coerce_uuid(value):
    """Convert value to UUID, returning None if value is None."""
    if value is None:
        return None
    if isinstance(value, uuid.UUID):
        return value
    return uuid.UUID(str(value))


def get_or_404(db: Session, model: type[T], id: str, detail: str | None = None) -> T:
    """Get entity by ID or raise 404.

    Args:
        db: Database session
        model: SQLAlchemy model class
        id: Entity ID (string or UUID)
        detail: Custom error message (defaults to "{ModelName} not found")

    Raises:
        HTTPException: 404 if entity not found or the ID is malformed
    """
    try:
        entity_id = coerce_uuid(id)
    except ValueError as exc:
        raise HTTPException(
            status_code=404, detail=detail or f"{model.__name__} not found"
        ) from exc
    entity = db.get(model, entity_id)
    if not entity:
        raise HTTPException(
            status_code=404,
            detail=detail or f"{model.__name__} not found"
        )
    return entity


def round_money(value: Decimal | int | float | str) -> Decimal:
    """Round monetary value to 2 decimal places."""
    return Decimal(str(value)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
