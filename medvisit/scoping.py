"""
Assignment-scoped reads over the shared catalogs.

Every list/get goes through a Scope built from the caller's profile:

    AdminScope   → whole collection, storage order, capped at LIST_HARD_CAP
    VisitorScope → only ids in the matching assignment set, in assignment
                   order; ids whose entity was deleted are silently dropped
    DenyScope    → nothing (unknown/corrupt role)
"""

from typing import Any, Dict, List

from medvisit.catalog import CatalogStore
from medvisit.config import LIST_HARD_CAP, ROLE_ADMIN, ROLE_VISITOR
from medvisit.errors import NotFound, ValidationError
from medvisit.models import (
    ENTITY_KINDS,
    AdminScope,
    DenyScope,
    Identity,
    MEDICAL_CENTERS,
    Scope,
    UserProfile,
    VisitorScope,
)
from medvisit.roles import RoleReconciler

# URL-ish spellings accepted for entity kinds.
KIND_ALIASES = {
    "medical-centers": MEDICAL_CENTERS,
    "medicalCenters": MEDICAL_CENTERS,
    "centers": MEDICAL_CENTERS,
}


def normalize_kind(kind: str) -> str:
    kind = KIND_ALIASES.get(kind, kind)
    if kind not in ENTITY_KINDS:
        raise ValidationError(f"Unknown entity kind '{kind}'")
    return kind


def build_scope(profile: UserProfile) -> Scope:
    """Derive the access scope from a profile."""
    if profile.role == ROLE_ADMIN:
        return AdminScope(external_id=profile.external_id)
    if profile.role == ROLE_VISITOR:
        return VisitorScope(
            external_id=profile.external_id,
            doctors=tuple(profile.assigned_doctors),
            medications=tuple(profile.assigned_medications),
            medical_centers=tuple(profile.assigned_medical_centers),
        )
    return DenyScope(external_id=profile.external_id, role=profile.role)


def scope_allows(scope: Scope, kind: str, entity_id: int) -> bool:
    if isinstance(scope, AdminScope):
        return True
    if isinstance(scope, VisitorScope):
        return entity_id in scope.ids_for(kind)
    return False


class ScopedQueryFilter:
    def __init__(self, reconciler: RoleReconciler, catalog: CatalogStore,
                 hard_cap: int = LIST_HARD_CAP):
        self.reconciler = reconciler
        self.catalog = catalog
        self.hard_cap = hard_cap

    def scope_for(self, caller: Identity) -> Scope:
        # Re-read on every call so a narrowed assignment set applies immediately.
        return build_scope(self.reconciler.reconcile(caller))

    def list_in_scope(self, kind: str, scope: Scope) -> List[Any]:
        kind = normalize_kind(kind)
        if isinstance(scope, AdminScope):
            return self.catalog.list_all(kind, limit=self.hard_cap)
        if isinstance(scope, VisitorScope):
            ids = list(scope.ids_for(kind))[: self.hard_cap]
            found = self.catalog.get_many(kind, ids)
            return [found[i] for i in ids if i in found]
        return []

    def list(self, kind: str, caller: Identity) -> List[Any]:
        return self.list_in_scope(kind, self.scope_for(caller))

    def get(self, kind: str, entity_id: int, caller: Identity):
        """Single entity, or NotFound when missing *or* outside the caller's scope."""
        kind = normalize_kind(kind)
        scope = self.scope_for(caller)
        entity = self.catalog.get(kind, entity_id) if scope_allows(scope, kind, entity_id) else None
        if entity is None:
            raise NotFound(f"{kind} {entity_id} not found")
        return entity

    def resolve_assignments(self, profiles: List[UserProfile]) -> List[Dict[str, List[Any]]]:
        """Each profile's assignment sets resolved to entities, in assignment order.

        One batched lookup per kind; ids whose entity was deleted are dropped.
        """
        found = {
            kind: self.catalog.get_many(kind, {i for p in profiles for i in p.assigned(kind)})
            for kind in ENTITY_KINDS
        }
        return [
            {kind: [found[kind][i] for i in p.assigned(kind) if i in found[kind]]
             for kind in ENTITY_KINDS}
            for p in profiles
        ]

    def get_doctor_with_centers(self, doctor_id: int, caller: Identity) -> dict:
        """Doctor plus its medical centers (missing centers are dropped)."""
        doctor = self.get("doctors", doctor_id, caller)
        centers = self.catalog.get_many(MEDICAL_CENTERS, doctor.medical_centers)
        return {
            "doctor": doctor,
            "medical_centers": [centers[c] for c in doctor.medical_centers if c in centers],
        }

