"""
Authenticated actor passed down from the HTTP layer
"""
from dataclasses import dataclass

from marketplace.constants import UserRole, STAFF_ROLES, ADMIN_ROLES


@dataclass(frozen=True)
class Actor:
    """Identity and role of the caller (token verification happens upstream)"""
    user_id: int
    role: UserRole = UserRole.CUSTOMER

    @property
    def is_staff(self) -> bool:
        return self.role in STAFF_ROLES

    @property
    def is_admin(self) -> bool:
        return self.role in ADMIN_ROLES
