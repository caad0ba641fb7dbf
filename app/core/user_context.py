"""
Actor Context
Explicit acting-user context passed into every compliance operation.

Identity and role resolution happen upstream (external identity service);
this module only turns the resolved identity into an ActorContext and
answers permission questions. Nothing here reads ambient session state.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from fastapi import Header

from app.core.errors import Forbidden, ValidationFailed


# =============================================================================
# Actor Roles
# =============================================================================

class ActorRole(str, Enum):
    """Who is acting on a case."""
    SUPER_ADMIN = "super_admin"  # Platform operator: full access
    MANAGER = "manager"          # Síndico: registers and adjudicates cases
    RESIDENT = "resident"        # Morador: answers cases raised against them
    SYSTEM = "system"            # Dispatcher / billing callbacks


# =============================================================================
# Permissions (derived from role)
# =============================================================================

ROLE_PERMISSIONS = {
    ActorRole.MANAGER: {
        "case_create",
        "case_read",
        "evidence_attach",
        "notification_send",
        "decision_record",
        "subscription_read",
    },
    ActorRole.RESIDENT: {
        "case_read",
        "defense_submit",
    },
    ActorRole.SYSTEM: {
        "case_read",
        "notification_send",
        "notification_track",
        "subscription_read",
        "subscription_write",
    },
    ActorRole.SUPER_ADMIN: {
        "*",
    },
}


def get_permissions(role: ActorRole) -> set[str]:
    """Get permissions for a role."""
    perms = ROLE_PERMISSIONS.get(role, set())
    if "*" in perms:
        all_perms = set()
        for role_perms in ROLE_PERMISSIONS.values():
            if "*" not in role_perms:
                all_perms.update(role_perms)
        return all_perms
    return perms


# =============================================================================
# Actor Context
# =============================================================================

@dataclass
class ActorContext:
    """
    The acting user of one operation.
    Recorded on every write (registered_by, uploaded_by, decided_by, audit).
    """
    actor_id: str
    role: ActorRole
    permissions: set[str] = field(default_factory=set)

    def __post_init__(self):
        if not self.permissions:
            self.permissions = get_permissions(self.role)

    def has_permission(self, permission: str) -> bool:
        return permission in self.permissions

    def require(self, permission: str) -> None:
        """Raise Forbidden unless the actor holds the permission."""
        if not self.has_permission(permission):
            raise Forbidden(
                f"Role '{self.role.value}' may not perform '{permission}'",
                {"role": self.role.value, "permission": permission},
            )

    @property
    def is_resident(self) -> bool:
        return self.role == ActorRole.RESIDENT


# =============================================================================
# FastAPI dependency
# =============================================================================

async def get_actor(
    x_actor_id: Optional[str] = Header(None),
    x_actor_role: Optional[str] = Header(None),
) -> ActorContext:
    """
    Build the ActorContext from the headers set by the identity gateway.

    Usage:
        @router.post("/cases")
        async def create(actor: ActorContext = Depends(get_actor)): ...
    """
    if not x_actor_id or not x_actor_id.strip():
        raise ValidationFailed("X-Actor-Id", "X-Actor-Id header is required")
    if not x_actor_role or not x_actor_role.strip():
        raise ValidationFailed("X-Actor-Role", "X-Actor-Role header is required")
    try:
        role = ActorRole(x_actor_role.strip().lower())
    except ValueError:
        raise ValidationFailed("X-Actor-Role", f"Unknown role '{x_actor_role}'")
    return ActorContext(actor_id=x_actor_id.strip(), role=role)
