"""
SyncGateway – applies identity-provider lifecycle notifications to profiles.

Delivery is at-least-once, so the handler is an upsert whose outcome depends
only on (stored profile, event):

  * no stored profile → create it, seeding role from the event (default visitor)
  * event without role → stored role is preserved
  * event with a valid role → it overwrites the stored role
  * replaying the same event produces no further writes
"""

import sys
import traceback
from dataclasses import replace
from typing import Any, Dict, Optional, Tuple

from medvisit.activity import PROVIDER_ACTOR, ActivityLog
from medvisit.config import ROLE_VISITOR, VALID_ROLES
from medvisit.errors import ValidationError
from medvisit.models import ProfileEvent, UserProfile
from medvisit.profiles import ProfileStore

USER_CREATED = "user.created"
USER_UPDATED = "user.updated"
HANDLED_EVENTS = {USER_CREATED, USER_UPDATED}


def sync_changes(current: Optional[UserProfile], event: ProfileEvent) -> Dict[str, Any]:
    """Fields that must be written for the stored profile to reflect *event*."""
    role = event.role if event.role in VALID_ROLES else None
    email = event.email or None

    if current is None:
        return {"role": role or ROLE_VISITOR, "name": event.name, "email": email}

    changes: Dict[str, Any] = {}
    if role is not None and role != current.role:
        changes["role"] = role
    if event.name is not None and event.name != current.name:
        changes["name"] = event.name
    if email is not None and email != current.email:
        changes["email"] = email
    return changes


def apply_event(current: Optional[UserProfile], event: ProfileEvent) -> UserProfile:
    """Pure form of the upsert: the profile that results from applying *event*."""
    changes = sync_changes(current, event)
    if current is None:
        return UserProfile(external_id=event.external_id, **changes)
    return replace(current, **changes)


def _full_name(first: Optional[str], last: Optional[str]) -> Optional[str]:
    parts = [p.strip() for p in (first, last) if p and p.strip()]
    return " ".join(parts) or None


def parse_provider_event(body: Dict[str, Any]) -> Tuple[str, ProfileEvent]:
    """Accept the provider envelope ({type, data: {...}}) or the flat shape."""
    if not isinstance(body, dict):
        raise ValidationError("Webhook body must be a JSON object")

    event_type = str(body.get("type") or "").strip()
    data = body.get("data") if isinstance(body.get("data"), dict) else body

    external_id = data.get("externalId") or data.get("external_id") or data.get("id")
    if not external_id:
        raise ValidationError("Webhook payload carries no user id")

    email = data.get("email") or ""
    if not email:
        addresses = data.get("email_addresses") or []
        if addresses and isinstance(addresses[0], dict):
            email = addresses[0].get("email_address") or ""

    name = data.get("name") or _full_name(data.get("first_name"), data.get("last_name"))

    role = data.get("role")
    if role is None and isinstance(data.get("public_metadata"), dict):
        role = data["public_metadata"].get("role")
    if role is not None:
        role = str(role).strip().lower() or None

    return event_type, ProfileEvent(
        external_id=str(external_id), email=str(email).strip(), name=name, role=role,
    )


class SyncGateway:
    def __init__(self, store: ProfileStore, activity: ActivityLog):
        self.store = store
        self.activity = activity

    def handle(self, event_type: str, event: ProfileEvent) -> Optional[UserProfile]:
        """Apply one notification. Unknown event types are ignored (None)."""
        if event_type not in HANDLED_EVENTS:
            print(f"[sync] Ignoring event type '{event_type}'")
            return None
        if not event.external_id:
            raise ValidationError("external_id is required")
        if event.role is not None and event.role not in VALID_ROLES:
            print(f"[WARN] [sync] Ignoring unknown role '{event.role}' for {event.external_id}",
                  file=sys.stderr)

        try:
            return self._apply(event_type, event)
        except Exception as e:
            # The provider retries failed deliveries; no local retry queue.
            print(f"[ERROR] [sync] {event_type} for {event.external_id} failed: {e}", file=sys.stderr)
            traceback.print_exc()
            raise

    def _apply(self, event_type: str, event: ProfileEvent) -> UserProfile:
        current = self.store.get(event.external_id)
        if current is None:
            seed = sync_changes(None, event)
            current = self.store.upsert_if_absent(event.external_id, **seed)
            self.activity.record(
                PROVIDER_ACTOR, "sync_create_user", "user", event.external_id,
                f"Profile created from {event_type} with role: {current.role}",
            )

        changes = sync_changes(current, event)
        if not changes:
            print(f"[sync] {event_type} for {event.external_id}: already up to date")
            return current

        profile = self.store.patch(event.external_id, changes)
        if "role" in changes:
            self.activity.record(
                PROVIDER_ACTOR, "sync_update_role", "user", event.external_id,
                f"Role changed from {current.role} to {profile.role} by {event_type}",
            )
        print(f"[sync] {event_type} for {event.external_id}: updated {', '.join(sorted(changes))}")
        return profile
