from __future__ import annotations


class AuthorizationError(Exception):
    """Base error for scope and mutation policy failures."""


class ForbiddenError(AuthorizationError):
    """The record exists but lies outside the acting user's scope."""

    def __init__(self, entity_kind: str, entity_id: int | None = None, message: str | None = None) -> None:
        self.entity_kind = entity_kind
        self.entity_id = entity_id
        super().__init__(message or f"Access to {entity_kind} {entity_id} is forbidden")


class NotFoundError(AuthorizationError):
    def __init__(self, entity_kind: str, entity_id: int) -> None:
        self.entity_kind = entity_kind
        self.entity_id = entity_id
        super().__init__(f"{entity_kind.capitalize()} {entity_id} not found")


class ScopeValidationError(AuthorizationError):
    """A caller-supplied field violates the acting user's scope."""

    def __init__(self, entity_kind: str, field: str, message: str) -> None:
        self.entity_kind = entity_kind
        self.field = field
        super().__init__(message)


class StoreUnavailableError(Exception):
    def __init__(self, entity_kind: str, message: str = "Entity store unavailable") -> None:
        self.entity_kind = entity_kind
        super().__init__(message)
