"""
Domain dataclasses used across the application.
"""

from dataclasses import dataclass, field, asdict
from datetime import datetime
from typing import Any, Dict, List, Optional, Union


# Catalog kinds and the profile field holding each kind's assignment set.
DOCTORS = "doctors"
MEDICATIONS = "medications"
MEDICAL_CENTERS = "medical_centers"

ASSIGNMENT_FIELDS = {
    DOCTORS: "assigned_doctors",
    MEDICATIONS: "assigned_medications",
    MEDICAL_CENTERS: "assigned_medical_centers",
}
ENTITY_KINDS = tuple(ASSIGNMENT_FIELDS)


def to_dict(obj) -> Dict[str, Any]:
    """Dataclass → JSON-friendly dict (datetimes as ISO strings)."""
    out = asdict(obj)
    for key, value in out.items():
        if isinstance(value, datetime):
            out[key] = value.isoformat()
    return out


@dataclass
class Identity:
    """Verified caller identity as handed over by the identity provider."""
    external_id: str
    email: str = ""
    claimed_role: Optional[str] = None   # untrusted, seed-only


@dataclass
class UserProfile:
    external_id: str
    role: str                             # "admin" or "visitor"
    name: Optional[str] = None
    email: Optional[str] = None
    assigned_doctors: List[int] = field(default_factory=list)
    assigned_medications: List[int] = field(default_factory=list)
    assigned_medical_centers: List[int] = field(default_factory=list)
    created_at: Optional[datetime] = None

    def assigned(self, kind: str) -> List[int]:
        return list(getattr(self, ASSIGNMENT_FIELDS[kind]))


@dataclass
class Doctor:
    id: int
    name: str
    specialty: Optional[str]
    email: Optional[str]
    phone: Optional[str]
    medical_centers: List[int]            # ordered, at most MAX_DOCTOR_CENTERS
    created_by: str
    created_at: datetime


@dataclass
class Medication:
    id: int
    name: str
    description: Optional[str]
    unit: str                             # "units", "boxes" or "samples"
    created_by: str
    created_at: datetime


@dataclass
class MedicalCenter:
    id: int
    name: str
    address: str
    city: str
    phone: Optional[str]
    created_by: str
    created_at: datetime


@dataclass
class VisitMedication:
    medication_id: int
    quantity: int
    notes: Optional[str] = None


@dataclass
class Visit:
    id: int
    doctor_id: int
    visitor_id: str
    date: datetime
    medical_center_id: Optional[int]
    medications: List[VisitMedication]
    notes: Optional[str]
    status: str
    created_at: datetime


@dataclass
class ActivityLogEntry:
    id: int
    actor_external_id: str
    action: str
    entity_type: str
    entity_id: Optional[str]
    details: Optional[str]
    created_at: datetime


@dataclass
class ProfileEvent:
    """Identity-provider lifecycle payload, keyed by external_id."""
    external_id: str
    email: str = ""
    name: Optional[str] = None
    role: Optional[str] = None


# ── Access scopes ────────────────────────────────────────────────────
# Effective role as a closed union; ScopedQueryFilter matches on it.

@dataclass(frozen=True)
class AdminScope:
    external_id: str


@dataclass(frozen=True)
class VisitorScope:
    external_id: str
    doctors: tuple = ()
    medications: tuple = ()
    medical_centers: tuple = ()

    def ids_for(self, kind: str) -> tuple:
        return getattr(self, kind)


@dataclass(frozen=True)
class DenyScope:
    """Profile with an unknown role: sees nothing, may do nothing."""
    external_id: str
    role: Optional[str] = None


Scope = Union[AdminScope, VisitorScope, DenyScope]
