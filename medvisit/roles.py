"""
Role reconciliation – deciding whether an identity is an admin or a visitor.

The local profile is canonical once it exists. The identity provider's role
claim is consulted exactly once, to seed a profile that does not exist yet.
After that the role only changes through:

  * update_role               – admin-gated, for any profile
  * promote_self_if_allowlisted – the configured root email, own profile only
  * SyncGateway               – provider lifecycle notifications (see sync.py)
"""

from typing import Any, Dict, List, Optional

from medvisit.activity import ActivityLog
from medvisit.config import (
    PROFILE_LIST_LIMIT,
    ROLE_ADMIN,
    ROLE_VISITOR,
    ROOT_ADMIN_EMAIL,
    VALID_ROLES,
)
from medvisit.errors import NotAuthenticated, NotFound, Unauthorized, ValidationError
from medvisit.models import Identity, UserProfile
from medvisit.profiles import ProfileStore, assignment_patch


def seed_role(claimed_role: Optional[str]) -> str:
    """Initial role for a brand-new profile; anything unrecognised is a visitor."""
    if claimed_role in VALID_ROLES:
        return claimed_role
    return ROLE_VISITOR


def merge_role(stored_role: Optional[str], claimed_role: Optional[str]) -> str:
    """Effective role from the stored role (if any) and the provider claim.

    A stored role always wins, even an unrecognised one: a corrupt profile
    must degrade to "no access", never to whatever the claim says.
    """
    if stored_role is not None:
        return stored_role
    return seed_role(claimed_role)


def emails_match(email: Optional[str], allowlisted: Optional[str]) -> bool:
    if not email or not allowlisted:
        return False
    return email.strip().lower() == allowlisted.strip().lower()


class RoleReconciler:
    def __init__(
        self,
        store: ProfileStore,
        activity: ActivityLog,
        root_admin_email: Optional[str] = ROOT_ADMIN_EMAIL,
    ):
        self.store = store
        self.activity = activity
        self.root_admin_email = root_admin_email

    # ── Effective role ───────────────────────────────────────────────

    def reconcile(self, identity: Optional[Identity]) -> UserProfile:
        """Return the caller's profile, creating it on first sight."""
        if identity is None or not identity.external_id:
            raise NotAuthenticated("No verified identity")

        profile = self.store.get(identity.external_id)
        if profile is not None:
            return profile

        role = merge_role(None, identity.claimed_role)
        profile = self.store.upsert_if_absent(
            identity.external_id, role=role, email=identity.email or None,
        )
        print(f"[auth] Profile ready for {identity.external_id} (role={profile.role})")
        return profile

    def effective_role(self, identity: Optional[Identity]) -> str:
        return self.reconcile(identity).role

    def require_admin(self, identity: Optional[Identity]) -> UserProfile:
        profile = self.reconcile(identity)
        if profile.role != ROLE_ADMIN:
            raise Unauthorized("Only admins can perform this operation")
        return profile

    # ── Role mutations ───────────────────────────────────────────────

    def update_role(self, caller: Identity, target_external_id: str, new_role: str) -> UserProfile:
        self.require_admin(caller)
        if new_role not in VALID_ROLES:
            raise ValidationError(f"Invalid role '{new_role}'")

        before = self.store.get(target_external_id)
        if before is None:
            raise NotFound(f"Profile {target_external_id} not found")

        profile = self.store.patch(target_external_id, {"role": new_role})
        self.activity.record(
            caller.external_id, "update_role", "user", target_external_id,
            f"Role changed from {before.role} to {new_role}",
        )
        return profile

    def promote_self_if_allowlisted(
        self, caller: Identity, target_external_id: Optional[str] = None,
    ) -> UserProfile:
        """Bootstrap path: the allow-listed email may make *itself* an admin."""
        if caller is None or not caller.external_id:
            raise NotAuthenticated("No verified identity")
        if target_external_id is not None and target_external_id != caller.external_id:
            raise Unauthorized("You can only update your own role")
        if not emails_match(caller.email, self.root_admin_email):
            raise Unauthorized("Only the allow-listed email can use this function")

        self.store.upsert_if_absent(
            caller.external_id, role=ROLE_ADMIN, email=caller.email or None,
        )
        profile = self.store.patch(caller.external_id, {"role": ROLE_ADMIN})
        self.activity.record(
            caller.external_id, "promote_self", "user", caller.external_id,
            "Bootstrap self-promotion to admin",
        )
        print(f"[auth] {caller.external_id} promoted itself to admin via allow-list")
        return profile

    # ── Admin user management ────────────────────────────────────────

    def list_profiles(self, caller: Identity, limit: int = PROFILE_LIST_LIMIT) -> List[UserProfile]:
        self.require_admin(caller)
        return self.store.list_all(limit)

    def provision_profile(
        self,
        caller: Identity,
        external_id: str,
        role: str,
        name: Optional[str] = None,
        email: Optional[str] = None,
        assignments: Optional[Dict[str, Any]] = None,
    ) -> UserProfile:
        """Create or update a profile with an explicit role and assignment sets."""
        self.require_admin(caller)
        if not external_id:
            raise ValidationError("external_id is required")
        if role not in VALID_ROLES:
            raise ValidationError(f"Invalid role '{role}'")
        changes: Dict[str, Any] = assignment_patch(assignments)

        is_new = self.store.get(external_id) is None
        self.store.upsert_if_absent(external_id, role=role, name=name, email=email)

        changes["role"] = role
        if name is not None:
            changes["name"] = name
        if email is not None:
            changes["email"] = email
        profile = self.store.patch(external_id, changes)

        action = "create_user_profile" if is_new else "update_user_profile"
        self.activity.record(
            caller.external_id, action, "user", external_id,
            f"{'Created' if is_new else 'Updated'} user profile with role: {role}",
        )
        return profile

    def delete_profile(self, caller: Identity, target_external_id: str) -> None:
        """Remove the profile document only; catalogs and visits are untouched."""
        self.require_admin(caller)
        self.store.delete(target_external_id)
        self.activity.record(
            caller.external_id, "delete_user", "user", target_external_id,
            "Deleted user profile",
        )
        print(f"[auth] Profile {target_external_id} deleted by {caller.external_id}")
