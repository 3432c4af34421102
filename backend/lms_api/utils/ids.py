from typing import Optional
from uuid import UUID

from fastapi import HTTPException, status


def parse_uuid(value, label: str = "ID") -> UUID:
    """Parse *value* as a UUID or answer 400 ``Invalid {label} format``."""
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except (TypeError, ValueError):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Invalid {label} format")


def is_uuid(value: Optional[str]) -> bool:
    if value is None:
        return False
    try:
        UUID(str(value))
    except ValueError:
        return False
    return True
