"""
Visit logging, authorized through the same role/assignment checks as the catalogs.

A visitor may only record or edit visits that reference a doctor, medications
and (optionally) a medical center from their own assignment sets, and only
reads their own visits. Admins see every visit.
"""

from dataclasses import asdict
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import func, insert, select, update

from medvisit.activity import ActivityLog
from medvisit.catalog import CatalogStore
from medvisit.config import LIST_HARD_CAP, RECENT_VISITS_LIMIT, VISIT_STATUSES
from medvisit.database import visits
from medvisit.errors import NotFound, Unauthorized, ValidationError
from medvisit.models import (
    DOCTORS,
    ENTITY_KINDS,
    MEDICAL_CENTERS,
    MEDICATIONS,
    AdminScope,
    DenyScope,
    Identity,
    Scope,
    Visit,
    VisitMedication,
    VisitorScope,
    to_dict,
)
from medvisit.profiles import parse_id
from medvisit.roles import RoleReconciler
from medvisit.scoping import build_scope, scope_allows


def parse_visit_date(value: Any) -> datetime:
    """datetime, ISO-8601 string, or epoch milliseconds."""
    if isinstance(value, datetime):
        return value
    if isinstance(value, bool) or value is None:
        raise ValidationError("date is required")
    if isinstance(value, (int, float)):
        try:
            return datetime.utcfromtimestamp(value / 1000.0)
        except (OverflowError, OSError, ValueError):
            raise ValidationError(f"Invalid date: {value!r}")
    if isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError:
            raise ValidationError(f"Invalid date: {value!r}")
        if parsed.tzinfo is not None:
            parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
        return parsed
    raise ValidationError(f"Invalid date: {value!r}")


def parse_visit_medications(items: Any) -> List[VisitMedication]:
    if items is None:
        return []
    if not isinstance(items, list):
        raise ValidationError("medications must be a list")
    out = []
    for item in items:
        if isinstance(item, VisitMedication):
            item = {"medication_id": item.medication_id, "quantity": item.quantity, "notes": item.notes}
        if not isinstance(item, dict):
            raise ValidationError("each medication must be an object")
        medication_id = parse_id(item.get("medication_id", item.get("medicationId")), "medication_id")
        if medication_id is None:
            raise ValidationError("medication_id is required")
        quantity = item.get("quantity")
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
            raise ValidationError("quantity must be an integer >= 1")
        notes = item.get("notes")
        if notes is not None and not isinstance(notes, str):
            raise ValidationError("medication notes must be a string")
        out.append(VisitMedication(medication_id=medication_id, quantity=quantity, notes=notes))
    return out


def _row_to_visit(row) -> Visit:
    return Visit(
        id=row["id"],
        doctor_id=row["doctor_id"],
        visitor_id=row["visitor_id"],
        date=row["date"],
        medical_center_id=row["medical_center_id"],
        medications=[VisitMedication(**m) for m in (row["medications"] or [])],
        notes=row["notes"],
        status=row["status"],
        created_at=row["created_at"],
    )


class VisitService:
    def __init__(self, engine, reconciler: RoleReconciler, catalog: CatalogStore,
                 activity: ActivityLog):
        self.engine = engine
        self.reconciler = reconciler
        self.catalog = catalog
        self.activity = activity

    def _scope(self, caller: Identity) -> Scope:
        scope = build_scope(self.reconciler.reconcile(caller))
        if isinstance(scope, DenyScope):
            raise Unauthorized("Profile role does not allow visit access")
        return scope

    def _check_references(self, scope: Scope, doctor_id: Optional[int],
                          medications: Optional[List[VisitMedication]],
                          medical_center_id: Optional[int]) -> None:
        refs = []
        if doctor_id is not None:
            refs.append((DOCTORS, doctor_id))
        for med in medications or []:
            refs.append((MEDICATIONS, med.medication_id))
        if medical_center_id is not None:
            refs.append((MEDICAL_CENTERS, medical_center_id))

        for kind, entity_id in refs:
            if not self.catalog.exists(kind, entity_id):
                raise ValidationError(f"{kind} {entity_id} does not exist")
            if not scope_allows(scope, kind, entity_id):
                raise Unauthorized(f"{kind} {entity_id} is not assigned to you")

    def _get_row(self, visit_id: int) -> Visit:
        with self.engine.connect() as conn:
            row = conn.execute(select(visits).where(visits.c.id == visit_id)).mappings().first()
        if row is None:
            raise NotFound(f"Visit {visit_id} not found")
        return _row_to_visit(row)

    # ── Writes ───────────────────────────────────────────────────────

    def create_visit(self, caller: Identity, doctor_id: Any, date: Any,
                     medications: Any = None, status: str = "completed",
                     medical_center_id: Any = None, notes: Optional[str] = None) -> Visit:
        scope = self._scope(caller)

        doctor_id = parse_id(doctor_id, "doctor_id")
        if doctor_id is None:
            raise ValidationError("doctor_id is required")
        medical_center_id = parse_id(medical_center_id, "medical_center_id")
        meds = parse_visit_medications(medications)
        if status not in VISIT_STATUSES:
            raise ValidationError(f"status must be one of: {', '.join(sorted(VISIT_STATUSES))}")
        if notes is not None and not isinstance(notes, str):
            raise ValidationError("notes must be a string")
        visit_date = parse_visit_date(date)

        self._check_references(scope, doctor_id, meds, medical_center_id)

        values = {
            "doctor_id": doctor_id,
            "visitor_id": caller.external_id,
            "date": visit_date,
            "medical_center_id": medical_center_id,
            "medications": [asdict(m) for m in meds],
            "notes": notes,
            "status": status,
            "created_at": datetime.utcnow(),
        }
        with self.engine.begin() as conn:
            new_id = conn.execute(insert(visits).values(**values)).inserted_primary_key[0]

        self.activity.record(caller.external_id, "create_visit", "visit", new_id,
                             f"Visit to doctor {doctor_id} ({status})")
        return self._get_row(new_id)

    def update_visit(self, caller: Identity, visit_id: int, changes: Dict[str, Any]) -> Visit:
        """Only the visitor who logged the visit may edit it."""
        scope = self._scope(caller)
        visit = self._get_row(visit_id)
        if visit.visitor_id != caller.external_id:
            raise Unauthorized("Only the visitor who logged this visit can update it")

        aliases = {"doctorId": "doctor_id", "medicalCenterId": "medical_center_id"}
        changes = {aliases.get(k, k): v for k, v in (changes or {}).items()}
        allowed = {"doctor_id", "date", "medications", "notes", "status", "medical_center_id"}
        unknown = set(changes) - allowed
        if unknown:
            raise ValidationError(f"Unknown fields: {', '.join(sorted(unknown))}")

        values: Dict[str, Any] = {}
        meds = None
        if "doctor_id" in changes:
            values["doctor_id"] = parse_id(changes["doctor_id"], "doctor_id")
            if values["doctor_id"] is None:
                raise ValidationError("doctor_id cannot be cleared")
        if "medical_center_id" in changes:
            values["medical_center_id"] = parse_id(changes["medical_center_id"], "medical_center_id")
        if "medications" in changes:
            meds = parse_visit_medications(changes["medications"])
            values["medications"] = [asdict(m) for m in meds]
        if "date" in changes:
            values["date"] = parse_visit_date(changes["date"])
        if "status" in changes:
            if changes["status"] not in VISIT_STATUSES:
                raise ValidationError(f"status must be one of: {', '.join(sorted(VISIT_STATUSES))}")
            values["status"] = changes["status"]
        if "notes" in changes:
            if changes["notes"] is not None and not isinstance(changes["notes"], str):
                raise ValidationError("notes must be a string")
            values["notes"] = changes["notes"]

        self._check_references(scope, values.get("doctor_id"), meds, values.get("medical_center_id"))

        if values:
            with self.engine.begin() as conn:
                conn.execute(update(visits).where(visits.c.id == visit_id).values(**values))
            self.activity.record(caller.external_id, "update_visit", "visit", visit_id,
                                 f"Updated visit fields: {', '.join(sorted(values))}")
        return self._get_row(visit_id)

    # ── Reads ────────────────────────────────────────────────────────

    def get_visit(self, caller: Identity, visit_id: int) -> Visit:
        scope = self._scope(caller)
        visit = self._get_row(visit_id)
        if isinstance(scope, VisitorScope) and visit.visitor_id != caller.external_id:
            raise NotFound(f"Visit {visit_id} not found")
        return visit

    def list_visits(self, caller: Identity, limit: int = LIST_HARD_CAP) -> List[Visit]:
        """Newest first. Visitors only see the visits they logged."""
        scope = build_scope(self.reconciler.reconcile(caller))
        if isinstance(scope, DenyScope):
            return []
        limit = max(0, min(int(limit), LIST_HARD_CAP))
        sql = select(visits).order_by(visits.c.date.desc(), visits.c.id.desc()).limit(limit)
        if not isinstance(scope, AdminScope):
            sql = sql.where(visits.c.visitor_id == caller.external_id)
        with self.engine.connect() as conn:
            rows = conn.execute(sql).mappings().all()
        return [_row_to_visit(r) for r in rows]

    def recent_visits(self, caller: Identity, limit: int = RECENT_VISITS_LIMIT) -> List[Visit]:
        return self.list_visits(caller, limit=limit)

    def describe(self, caller: Identity, items: List[Visit]) -> List[Dict[str, Any]]:
        """Visits as dicts with their doctor, each line's medication and, for admins, the visitor.

        References that were deleted or fall outside the caller's assignment
        scope resolve to None.
        """
        if not items:
            return []
        scope = self._scope(caller)
        doctors = self.catalog.get_many(DOCTORS, {v.doctor_id for v in items})
        meds = self.catalog.get_many(
            MEDICATIONS, {m.medication_id for v in items for m in v.medications}
        )
        is_admin = isinstance(scope, AdminScope)
        visitors = self.reconciler.store.get_many(v.visitor_id for v in items) if is_admin else {}

        def resolve(kind, found, entity_id):
            entity = found.get(entity_id)
            if entity is None or not scope_allows(scope, kind, entity_id):
                return None
            return to_dict(entity)

        out = []
        for visit in items:
            data = to_dict(visit)
            data["doctor"] = resolve(DOCTORS, doctors, visit.doctor_id)
            for line in data["medications"]:
                line["medication"] = resolve(MEDICATIONS, meds, line["medication_id"])
            if is_admin:
                visitor = visitors.get(visit.visitor_id)
                data["visitor"] = to_dict(visitor) if visitor else None
            out.append(data)
        return out

    def stats(self, caller: Identity) -> Dict[str, Any]:
        """Admin dashboard totals."""
        self.reconciler.require_admin(caller)
        with self.engine.connect() as conn:
            total_visits = conn.execute(select(func.count()).select_from(visits)).scalar_one()
            by_status = dict(conn.execute(
                select(visits.c.status, func.count()).group_by(visits.c.status)
            ).all())
        out = {f"total_{kind}": self.catalog.count(kind) for kind in ENTITY_KINDS}
        out["total_visits"] = int(total_visits)
        out["total_users"] = self.reconciler.store.count()
        out["visits_by_status"] = {s: int(by_status.get(s, 0)) for s in sorted(VISIT_STATUSES)}
        return out
