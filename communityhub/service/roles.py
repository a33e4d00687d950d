from __future__ import annotations

from enum import Enum
from typing import Optional

from communityhub.logging import get_logger
from communityhub.service.errors import (
    BadRequestError,
    ForbiddenError,
    NotFoundError,
    with_timeout,
)

logger = get_logger(__name__)


class Role(str, Enum):
    """User roles, ordered by ``ROLE_RANK``."""

    USER = "USER"
    ADMIN = "ADMIN"
    ROOT = "ROOT"


ROLE_RANK: dict[Role, int] = {Role.USER: 1, Role.ADMIN: 2, Role.ROOT: 3}

# Roles allowed to change other users' roles at all
_ASSIGNER_ROLES = frozenset({Role.ADMIN, Role.ROOT})


def parse_role(value: object) -> Optional[Role]:
    """Return the Role for an exact role name, or None."""
    if isinstance(value, Role):
        return value
    if not isinstance(value, str):
        return None
    try:
        return Role(value)
    except ValueError:
        return None


def role_rank(role: object) -> int:
    """Rank of ``role``; unknown roles rank 0 and pass no guard."""
    parsed = parse_role(role)
    return ROLE_RANK[parsed] if parsed else 0


def role_at_least(role: object, minimum: Role) -> bool:
    return role_rank(role) >= ROLE_RANK[minimum]


def can_assign_role(caller_role: object) -> bool:
    return parse_role(caller_role) in _ASSIGNER_ROLES


class RoleService:
    """Applies the role assignment rules against the credential store."""

    def __init__(self, store, *, store_timeout: float = 5.0) -> None:
        self.store = store
        self.store_timeout = store_timeout

    async def assign_role(self, caller_id: str, target_user_id: str, requested_role: object) -> dict:
        """Assign ``requested_role`` to ``target_user_id`` on behalf of ``caller_id``.

        Checks run in a fixed order so the first failing rule decides the
        error: role name, ROOT ban, caller and target existence, self
        modification, assigner permission, hierarchy, then ROOT targets.
        """
        role = parse_role(requested_role)
        if role is None:
            valid = ", ".join(r.value for r in Role)
            raise BadRequestError(f"Invalid role. Must be one of: {valid}")

        if role is Role.ROOT:
            raise ForbiddenError("ROOT role cannot be assigned. There can only be one ROOT user.")

        caller = await with_timeout(self.store.get_user(caller_id), self.store_timeout, "store")
        if not caller:
            raise NotFoundError("Caller not found")

        target = await with_timeout(
            self.store.get_user(target_user_id), self.store_timeout, "store"
        )
        if not target:
            raise NotFoundError("Target user not found")

        if caller.id == target.id:
            raise ForbiddenError("You cannot modify your own role")

        if not can_assign_role(caller.role):
            raise ForbiddenError(
                f"Insufficient permissions. Only ADMIN or ROOT can assign {role.value} role."
            )

        if ROLE_RANK[role] > role_rank(caller.role):
            raise ForbiddenError("Cannot assign a role higher than your own")

        # Demoting the ROOT user would leave the system without one
        if parse_role(target.role) is Role.ROOT:
            raise ForbiddenError("The ROOT user's role cannot be changed")

        previous_role = target.role
        updated = await with_timeout(
            self.store.update_user_role(target.id, role.value), self.store_timeout, "store"
        )
        if not updated:
            raise NotFoundError("Target user not found")

        logger.info(
            "role_assigned",
            target_user_id=updated.id,
            previous_role=previous_role,
            new_role=updated.role,
            caller_id=caller.id,
            caller_role=caller.role,
        )
        return {"id": updated.id, "email": updated.email, "role": updated.role}
