"""Authenticated principal and role sets."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List

DEVELOPER = "developer"
SUPER_ADMIN = "super_admin"
ADMIN = "admin"
CLIENT = "client"

ROLES = (DEVELOPER, SUPER_ADMIN, ADMIN, CLIENT)
MANAGEMENT_ROLES = (DEVELOPER, SUPER_ADMIN, ADMIN)


@dataclass(frozen=True)
class Principal:
    user_id: str
    role: str
    account_keys: List[str] = field(default_factory=list)

    @property
    def has_unrestricted_access(self) -> bool:
        return self.role in (DEVELOPER, SUPER_ADMIN) or (self.role == ADMIN and not self.account_keys)

    def can_access(self, account_key: str) -> bool:
        return self.has_unrestricted_access or account_key in self.account_keys
