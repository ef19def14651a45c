"""Capability model for booking actors.

Design:
  - Each role has a set of DEFAULT capabilities (defined here, not in DB).
  - Individual actors may carry overrides ({perm: True/False}) issued by
    the identity provider.
  - `resolve_permissions(role, custom_overrides)` computes the effective
    capability set; the workflow engine treats it as opaque.

Permission naming: `booking.<action>`
  read       view bookings and their history
  write      create bookings (and edit / delete your own while booked)
  receive    admit a booked vehicle into the yard
  reject     turn a booked or received vehicle away
  unreceive  send a received vehicle back to booked (reversal)
  approve    decide pending approvals
  manage     edit / delete bookings created by others
"""

from __future__ import annotations

from dataclasses import dataclass


# ── All known permissions ───────────────────────────────────

ALL_PERMISSIONS: set[str] = {
    "booking.read",
    "booking.write",
    "booking.receive",
    "booking.reject",
    "booking.unreceive",
    "booking.approve",
    "booking.manage",
}


# ── Role → default permissions ──────────────────────────────

ROLE_DEFAULTS: dict[str, set[str]] = {
    "administrator": ALL_PERMISSIONS.copy(),

    "supervisor": {
        "booking.read", "booking.write",
        "booking.receive", "booking.reject",
        "booking.unreceive", "booking.approve",
    },

    "operator": {
        "booking.read", "booking.write",
        "booking.receive", "booking.reject",
    },

    "viewer": {
        "booking.read",
    },
}


# ── Resolution ──────────────────────────────────────────────

def resolve_permissions(
    role: str,
    custom_overrides: dict[str, bool] | None = None,
) -> list[str]:
    """Compute effective permissions for an actor.

    1. Start with the role's defaults.
    2. Apply custom_overrides: {perm: True} adds, {perm: False} removes.
    3. Return a sorted list (for stable JWT claims).
    """
    base = ROLE_DEFAULTS.get(role, set()).copy()

    if custom_overrides:
        for perm, granted in custom_overrides.items():
            if perm not in ALL_PERMISSIONS:
                continue  # ignore unknown permissions
            if granted:
                base.add(perm)
            else:
                base.discard(perm)

    return sorted(base)


def has_permission(user_permissions: list[str] | set[str] | frozenset[str], required: str) -> bool:
    """Check whether a permission set satisfies a requirement."""
    return required in user_permissions


# ── Actor ───────────────────────────────────────────────────

@dataclass(frozen=True)
class Actor:
    """The calling identity, as supplied by the identity provider."""
    id: str
    name: str
    role: str
    permissions: frozenset[str]

    @classmethod
    def for_role(
        cls,
        actor_id: str,
        name: str,
        role: str,
        custom_overrides: dict[str, bool] | None = None,
    ) -> Actor:
        return cls(
            id=actor_id,
            name=name,
            role=role,
            permissions=frozenset(resolve_permissions(role, custom_overrides)),
        )

    def can(self, permission: str) -> bool:
        return has_permission(self.permissions, permission)
