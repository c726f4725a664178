from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from salescrm.crm.enums import Role


@dataclass(slots=True)
class ActingUser:
    """The authenticated caller, passed explicitly into every scope and report function."""

    user_id: int
    role: Role
    name: str | None = None
    correlation_id: str | None = None
    _cache: dict[str, Any] = field(default_factory=dict, repr=False)

    @property
    def is_super_admin(self) -> bool:
        return self.role == Role.SUPER_ADMIN

    @property
    def is_regional_lead(self) -> bool:
        return self.role == Role.REGIONAL_LEAD

    @property
    def is_sales_rep(self) -> bool:
        return self.role == Role.SALES_REP
