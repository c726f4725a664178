from salescrm.platform.security.context import ActingUser
from salescrm.platform.security.errors import (
    AuthorizationError,
    ForbiddenError,
    NotFoundError,
    ScopeValidationError,
    StoreUnavailableError,
)
from salescrm.platform.security.regions import RegionScope, effective_regions
from salescrm.platform.security.repository import BaseRepository
from salescrm.platform.security.scope import (
    AccessDecision,
    RelatedEntityRef,
    apply,
    can_access,
    ensure_access,
    list_filter,
)

__all__ = [
    "ActingUser",
    "AuthorizationError",
    "ForbiddenError",
    "NotFoundError",
    "ScopeValidationError",
    "StoreUnavailableError",
    "RegionScope",
    "effective_regions",
    "BaseRepository",
    "AccessDecision",
    "RelatedEntityRef",
    "apply",
    "can_access",
    "ensure_access",
    "list_filter",
]
