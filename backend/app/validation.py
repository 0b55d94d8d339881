from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional


class CheckinError(Exception):
    """Base for errors the check-in engine surfaces to its callers."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class ValidationError(CheckinError):
    """400-level input problem."""


class NotFoundError(CheckinError):
    """404-level: a referenced place or user does not exist."""
    def __init__(self, entity: str, entity_id: Any = None):
        super().__init__(f"{entity} not found", {"entity": entity, "id": entity_id})
        self.entity = entity
        self.entity_id = entity_id


class ConflictError(CheckinError):
    """409-level business rule conflict (e.g., duplicate check-in)."""
    def __init__(self, reason: str, details: dict | None = None):
        super().__init__(reason, {"reason": reason, **(details or {})})
        self.reason = reason


class StorageError(CheckinError):
    """
    Transaction or connection failure.

    Nothing was committed when this is raised, so the whole operation
    may be re-attempted.
    """
    retryable = True


class InvariantViolation(CheckinError):
    """Internal inconsistency; a bug, never silently corrected."""


class CheckinCancelled(CheckinError):
    """Caller cancelled or the deadline passed; the transaction was rolled back."""


CHECKIN_REQUEST_FIELDS = {"place_id", "latitude", "longitude"}

# Largest id an INTEGER primary key column holds on every supported backend
MAX_ID = 2**31 - 1


def _coerce_int(key: str, value: Any) -> int:
    # Strict: rejects bools, floats and scientific notation
    if isinstance(value, bool):
        raise ValidationError(f"{key} must be an integer")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{key} must be an integer")
        if 'e' in stripped.lower():
            raise ValidationError(f"{key} must be a plain integer (scientific notation not allowed)")
        if '.' in stripped:
            raise ValidationError(f"{key} must be an integer (no decimals)")
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{key} must be an integer")
    if isinstance(value, float):
        raise ValidationError(f"{key} must be an integer, not a decimal")
    raise ValidationError(f"{key} must be an integer")


def _coerce_coordinate(key: str, value: Any, limit: float) -> Optional[float]:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValidationError(f"{key} must be a number")
    value = float(value)
    if not -limit <= value <= limit:
        raise ValidationError(f"{key} must be between {-limit:g} and {limit:g}")
    return value


@dataclass(frozen=True)
class CheckinRequest:
    """
    Validated body of POST /checkins.

    latitude/longitude are the device position reported by the client;
    they are stored for audit and never used for award decisions.
    """
    place_id: int
    latitude: Optional[float] = None
    longitude: Optional[float] = None

    @classmethod
    def from_json(cls, payload: Any) -> "CheckinRequest":
        if not isinstance(payload, dict):
            raise ValidationError("Request body must be a JSON object")

        unknown = sorted(set(payload) - CHECKIN_REQUEST_FIELDS)
        if unknown:
            raise ValidationError(
                f"Unknown fields: {', '.join(unknown)}",
                details={"unknown_fields": unknown},
            )

        if payload.get("place_id") is None:
            raise ValidationError("place_id is required")

        place_id = _coerce_int("place_id", payload["place_id"])
        if place_id <= 0:
            raise ValidationError("place_id must be a positive integer")
        if place_id > MAX_ID:
            raise ValidationError(f"place_id must not exceed {MAX_ID}")

        return cls(
            place_id=place_id,
            latitude=_coerce_coordinate("latitude", payload.get("latitude"), 90.0),
            longitude=_coerce_coordinate("longitude", payload.get("longitude"), 180.0),
        )
