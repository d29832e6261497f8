"""Exception hierarchy for the credit engine."""
from __future__ import annotations

from typing import Any


class CreditEngineError(Exception):
    """Base exception for all credit engine errors."""

    code = "CREDIT_ENGINE_ERROR"

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Caller-facing representation: message, code and details."""
        payload: dict[str, Any] = {"error": self.message, "code": self.code}
        if self.details:
            payload["details"] = dict(self.details)
        return payload


class ValidationError(CreditEngineError):
    """Malformed or out-of-bounds input. ``field`` names the offending input."""

    code = "VALIDATION_ERROR"

    def __init__(self, message: str, field: str | None = None, value: Any = None) -> None:
        super().__init__(message, {"field": field, "value": value})
        self.field = field
        self.value = value


class ConflictError(CreditEngineError):
    """Illegal state transition for the entity's current status."""

    code = "CONFLICT_ERROR"

    def __init__(
        self, message: str, entity_id: str | None = None, status: str | None = None
    ) -> None:
        super().__init__(message, {"entity_id": entity_id, "status": status})
        self.entity_id = entity_id
        self.status = status


class NotFoundError(CreditEngineError):
    """Unknown id for the requested entity."""

    code = "NOT_FOUND"

    def __init__(self, entity: str, entity_id: str) -> None:
        super().__init__(f"{entity} {entity_id} not found", {"entity": entity, "entity_id": entity_id})
        self.entity = entity
        self.entity_id = entity_id


class ProviderError(CreditEngineError):
    """A quote or execution provider failed or timed out."""

    code = "PROVIDER_ERROR"

    def __init__(self, message: str, provider: str | None = None) -> None:
        super().__init__(message, {"provider": provider})
        self.provider = provider
