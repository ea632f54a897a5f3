from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID


@dataclass(frozen=True, slots=True)
class Principal:
    """Authenticated caller extracted from a validated JWT.

    user_id: the ``sub`` claim, used as the actor on activity entries
    tenant_id: the issuing organization every query is scoped to
    roles: platform roles (``admin`` may manage webhooks and templates)
    """

    user_id: str
    tenant_id: UUID
    roles: frozenset[str]

    def has_role(self, role: str) -> bool:
        return role in self.roles

    def has_any_role(self, roles: set[str]) -> bool:
        return bool(self.roles & roles)
