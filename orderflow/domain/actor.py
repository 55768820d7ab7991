"""
The authenticated caller of a domain operation.
"""
from dataclasses import dataclass
from typing import Optional

from orderflow.db.models.user import UserRole, STAFF_ROLES


@dataclass(frozen=True)
class Actor:
    user_id: int
    role: UserRole
    rider_id: Optional[int] = None
    restaurant_id: Optional[int] = None

    @property
    def is_staff(self) -> bool:
        return self.role in STAFF_ROLES

    def has_role(self, *roles: UserRole) -> bool:
        return self.role in roles

    def log_context(self) -> dict:
        return {"actor_user_id": self.user_id, "actor_role": self.role.value}
