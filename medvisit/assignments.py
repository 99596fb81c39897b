"""
AssignmentEngine – the write side of the access core.

Replaces a visitor's assignment sets and performs every catalog mutation,
enforcing:

  * only admins create/update catalog entries or change assignment sets
  * delete is allowed for admins *and* for the entry's original creator
  * a doctor references at most MAX_DOCTOR_CENTERS medical centers

Each successful mutation appends exactly one activity entry.
"""

from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from medvisit.activity import ActivityLog
from medvisit.catalog import CatalogStore
from medvisit.config import MAX_DOCTOR_CENTERS, MEDICATION_UNITS, ROLE_ADMIN
from medvisit.errors import NotFound, Unauthorized, ValidationError
from medvisit.models import DOCTORS, MEDICAL_CENTERS, MEDICATIONS, Identity, UserProfile
from medvisit.profiles import ProfileStore, assignment_patch, normalize_ids
from medvisit.roles import RoleReconciler
from medvisit.scoping import normalize_kind

# Per kind: (required text fields, optional text fields)
CATALOG_FIELDS = {
    DOCTORS: (("name",), ("specialty", "email", "phone")),
    MEDICATIONS: (("name", "unit"), ("description",)),
    MEDICAL_CENTERS: (("name", "address", "city"), ("phone",)),
}

# Singular names used in activity actions, e.g. "create_doctor".
ENTITY_LABELS = {
    DOCTORS: "doctor",
    MEDICATIONS: "medication",
    MEDICAL_CENTERS: "medical_center",
}

FIELD_ALIASES = {"medicalCenterIds": "medical_centers", "medicalCenters": "medical_centers"}


def _clean_text(value: Any, field_name: str, required: bool) -> Optional[str]:
    if value is None:
        if required:
            raise ValidationError(f"{field_name} is required")
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{field_name} must be a string")
    value = value.strip()
    if required and not value:
        raise ValidationError(f"{field_name} is required")
    return value or None


def check_center_limit(center_ids: List[int]) -> None:
    if len(center_ids) > MAX_DOCTOR_CENTERS:
        raise ValidationError(
            f"A doctor can only be associated with up to {MAX_DOCTOR_CENTERS} medical centers"
        )


class AssignmentEngine:
    def __init__(
        self,
        reconciler: RoleReconciler,
        store: ProfileStore,
        catalog: CatalogStore,
        activity: ActivityLog,
    ):
        self.reconciler = reconciler
        self.store = store
        self.catalog = catalog
        self.activity = activity

    # ── Assignment sets ──────────────────────────────────────────────

    def set_assignments(
        self, caller: Identity, target_external_id: str, assignments: Dict[str, Any],
    ) -> UserProfile:
        """Replace the given assignment sets wholesale; omitted sets stay untouched."""
        self.reconciler.require_admin(caller)
        changes = assignment_patch(assignments)
        profile = self.store.patch(target_external_id, changes)

        summary = ", ".join(f"{k}={len(v)}" for k, v in sorted(changes.items())) or "no changes"
        self.activity.record(
            caller.external_id, "update_assignments", "user", target_external_id,
            f"Updated assignments ({summary})",
        )
        return profile

    # ── Catalog validation ───────────────────────────────────────────

    def _validate_centers(self, raw: Iterable[Any]) -> List[int]:
        center_ids = normalize_ids(raw, "medical_centers")
        check_center_limit(center_ids)
        found = self.catalog.get_many(MEDICAL_CENTERS, center_ids)
        missing = [c for c in center_ids if c not in found]
        if missing:
            raise ValidationError(f"Unknown medical centers: {missing}")
        return center_ids

    def _clean(self, kind: str, data: Dict[str, Any], partial: bool) -> Dict[str, Any]:
        data = {FIELD_ALIASES.get(k, k): v for k, v in (data or {}).items()}
        required, optional = CATALOG_FIELDS[kind]
        allowed = set(required) | set(optional)
        if kind == DOCTORS:
            allowed.add("medical_centers")
        unknown = set(data) - allowed
        if unknown:
            raise ValidationError(f"Unknown fields: {', '.join(sorted(unknown))}")

        values: Dict[str, Any] = {}
        for name in required:
            if name in data or not partial:
                values[name] = _clean_text(data.get(name), name, required=True)
        for name in optional:
            if name in data:
                values[name] = _clean_text(data.get(name), name, required=False)

        if "unit" in values and values["unit"] not in MEDICATION_UNITS:
            raise ValidationError(
                f"unit must be one of: {', '.join(sorted(MEDICATION_UNITS))}"
            )
        if kind == DOCTORS:
            # A null center list on update leaves the stored centers untouched.
            centers = data.get("medical_centers")
            if centers is not None or not partial:
                values["medical_centers"] = self._validate_centers(centers or [])
        return values

    # ── Generic catalog mutations ────────────────────────────────────

    def create(self, caller: Identity, kind: str, data: Dict[str, Any]):
        kind = normalize_kind(kind)
        self.reconciler.require_admin(caller)
        values = self._clean(kind, data, partial=False)
        values["created_by"] = caller.external_id
        values["created_at"] = datetime.utcnow()

        entity = self.catalog.insert(kind, values)
        label = ENTITY_LABELS[kind]
        self.activity.record(
            caller.external_id, f"create_{label}", label, entity.id, f"Created {label}: {entity.name}",
        )
        return entity

    def update(self, caller: Identity, kind: str, entity_id: int, data: Dict[str, Any]):
        kind = normalize_kind(kind)
        self.reconciler.require_admin(caller)
        if self.catalog.get(kind, entity_id) is None:
            raise NotFound(f"{kind} {entity_id} not found")
        values = self._clean(kind, data, partial=True)

        entity = self.catalog.update(kind, entity_id, values)
        label = ENTITY_LABELS[kind]
        self.activity.record(
            caller.external_id, f"update_{label}", label, entity_id,
            f"Updated {label} fields: {', '.join(sorted(values)) or 'none'}",
        )
        return entity

    def delete(self, caller: Identity, kind: str, entity_id: int) -> None:
        """Admins or the entry's creator may delete; assignment sets are not cleaned."""
        kind = normalize_kind(kind)
        profile = self.reconciler.reconcile(caller)
        entity = self.catalog.get(kind, entity_id)
        if entity is None:
            raise NotFound(f"{kind} {entity_id} not found")
        if profile.role != ROLE_ADMIN and entity.created_by != caller.external_id:
            raise Unauthorized(f"Only admins or the creator can delete this {ENTITY_LABELS[kind]}")

        self.catalog.delete(kind, entity_id)
        label = ENTITY_LABELS[kind]
        self.activity.record(
            caller.external_id, f"delete_{label}", label, entity_id, f"Deleted {label}: {entity.name}",
        )

    # ── Named operations ─────────────────────────────────────────────

    def create_doctor(self, caller: Identity, name: str, specialty: Optional[str] = None,
                      email: Optional[str] = None, phone: Optional[str] = None,
                      medical_centers: Iterable[Any] = ()):
        return self.create(caller, DOCTORS, {
            "name": name, "specialty": specialty, "email": email, "phone": phone,
            "medical_centers": list(medical_centers),
        })

    def update_doctor(self, caller: Identity, doctor_id: int, **changes):
        return self.update(caller, DOCTORS, doctor_id, changes)

    def delete_doctor(self, caller: Identity, doctor_id: int) -> None:
        self.delete(caller, DOCTORS, doctor_id)

    def create_medication(self, caller: Identity, name: str, unit: str,
                          description: Optional[str] = None):
        return self.create(caller, MEDICATIONS, {
            "name": name, "unit": unit, "description": description,
        })

    def update_medication(self, caller: Identity, medication_id: int, **changes):
        return self.update(caller, MEDICATIONS, medication_id, changes)

    def delete_medication(self, caller: Identity, medication_id: int) -> None:
        self.delete(caller, MEDICATIONS, medication_id)

    def create_medical_center(self, caller: Identity, name: str, address: str, city: str,
                              phone: Optional[str] = None):
        return self.create(caller, MEDICAL_CENTERS, {
            "name": name, "address": address, "city": city, "phone": phone,
        })

    def update_medical_center(self, caller: Identity, center_id: int, **changes):
        return self.update(caller, MEDICAL_CENTERS, center_id, changes)

    def delete_medical_center(self, caller: Identity, center_id: int) -> None:
        self.delete(caller, MEDICAL_CENTERS, center_id)
