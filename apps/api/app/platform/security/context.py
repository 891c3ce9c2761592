from __future__ import annotations

from dataclasses import dataclass, field

from app.platform.security.roles import RoleCategory, categorize_role


@dataclass(slots=True)
class Caller:
    """Authenticated identity every core operation is evaluated against."""

    user_id: int
    organization_id: int | None
    role: str
    permissions: frozenset[str] = field(default_factory=frozenset)
    correlation_id: str | None = None
    category: RoleCategory = field(init=False)

    def __post_init__(self) -> None:
        self.category = categorize_role(self.role)

    @property
    def is_super_admin(self) -> bool:
        return self.category == RoleCategory.PLATFORM

    @property
    def is_restricted(self) -> bool:
        return self.category == RoleCategory.RESTRICTED
