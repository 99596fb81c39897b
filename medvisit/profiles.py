"""
ProfileStore – durable keyed storage for one profile per external user id.

Every mutation is a single SQL statement inside its own transaction, so a
concurrent writer on the same external id can never interleave between a
read and a write:

    upsert_if_absent → INSERT guarded by the unique external_id constraint
    patch            → one UPDATE; rowcount 0 means NotFound
    delete           → one DELETE; rowcount 0 means NotFound
"""

from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import delete, func, insert, select, update
from sqlalchemy.exc import IntegrityError

from medvisit.config import LIST_HARD_CAP, ROLE_VISITOR, VALID_ROLES
from medvisit.database import user_profiles
from medvisit.errors import NotFound, ValidationError
from medvisit.models import ASSIGNMENT_FIELDS, UserProfile

PATCHABLE_FIELDS = {"role", "name", "email", *ASSIGNMENT_FIELDS.values()}


def _to_id(raw: Any, field_name: str) -> int:
    if isinstance(raw, bool) or (isinstance(raw, float) and not raw.is_integer()):
        raise ValidationError(f"Invalid id in {field_name}: {raw!r}")
    try:
        return int(raw)
    except (TypeError, ValueError, OverflowError):
        raise ValidationError(f"Invalid id in {field_name}: {raw!r}")


def normalize_ids(values: Iterable[Any], field_name: str = "ids") -> List[int]:
    """Coerce to a de-duplicated list of ints, keeping first-seen order."""
    if values is None or isinstance(values, (str, bytes, dict)):
        raise ValidationError(f"{field_name} must be a list of ids")
    out: List[int] = []
    seen = set()
    for raw in values:
        value = _to_id(raw, field_name)
        if value not in seen:
            seen.add(value)
            out.append(value)
    return out


def parse_id(value: Any, field_name: str = "id") -> Optional[int]:
    """Parse a single id from a path/JSON value; None passes through."""
    if value is None:
        return None
    return _to_id(value, field_name)


def assignment_patch(assignments: Optional[Dict[str, Any]]) -> Dict[str, List[int]]:
    """Map {doctors?, medications?, medical_centers?} onto profile fields.

    Keys that are missing or None are left out so the stored set is untouched;
    any present key replaces that set wholesale.
    """
    aliases = {"medicalCenters": "medical_centers", "medical-centers": "medical_centers"}
    changes: Dict[str, List[int]] = {}
    for key, value in (assignments or {}).items():
        kind = aliases.get(key, key)
        if kind not in ASSIGNMENT_FIELDS:
            raise ValidationError(f"Unknown assignment set '{key}'")
        if value is None:
            continue
        changes[ASSIGNMENT_FIELDS[kind]] = normalize_ids(value, kind)
    return changes


def _row_to_profile(row) -> UserProfile:
    return UserProfile(
        external_id=row["external_id"],
        role=row["role"],
        name=row["name"],
        email=row["email"],
        assigned_doctors=list(row["assigned_doctors"] or []),
        assigned_medications=list(row["assigned_medications"] or []),
        assigned_medical_centers=list(row["assigned_medical_centers"] or []),
        created_at=row["created_at"],
    )


class ProfileStore:
    """Profile documents keyed by external id, backed by SQLAlchemy."""

    def __init__(self, engine):
        self.engine = engine

    def get(self, external_id: str) -> Optional[UserProfile]:
        sql = select(user_profiles).where(user_profiles.c.external_id == external_id)
        with self.engine.connect() as conn:
            row = conn.execute(sql).mappings().first()
        return _row_to_profile(row) if row else None

    def get_many(self, external_ids: Iterable[str]) -> Dict[str, UserProfile]:
        """Profiles by external id; ids without a profile are absent from the result."""
        external_ids = list(dict.fromkeys(external_ids))
        if not external_ids:
            return {}
        sql = select(user_profiles).where(user_profiles.c.external_id.in_(external_ids))
        with self.engine.connect() as conn:
            rows = conn.execute(sql).mappings().all()
        return {r["external_id"]: _row_to_profile(r) for r in rows}

    def upsert_if_absent(
        self,
        external_id: str,
        role: str = ROLE_VISITOR,
        name: Optional[str] = None,
        email: Optional[str] = None,
    ) -> UserProfile:
        """Create the profile with the seed values, or return the existing one unchanged."""
        if not external_id:
            raise ValidationError("external_id is required")
        if role not in VALID_ROLES:
            raise ValidationError(f"Invalid role '{role}'")

        existing = self.get(external_id)
        if existing:
            return existing

        try:
            with self.engine.begin() as conn:
                conn.execute(insert(user_profiles).values(
                    external_id=external_id,
                    role=role,
                    name=name,
                    email=email,
                    assigned_doctors=[],
                    assigned_medications=[],
                    assigned_medical_centers=[],
                    created_at=datetime.utcnow(),
                ))
        except IntegrityError:
            # Lost the race against a concurrent first access; keep the winner.
            pass

        profile = self.get(external_id)
        if profile is None:
            raise NotFound(f"Profile {external_id} vanished during creation")
        return profile

    def patch(self, external_id: str, changes: Dict[str, Any]) -> UserProfile:
        """Atomically merge role/name/email/assignment fields into a profile."""
        unknown = set(changes) - PATCHABLE_FIELDS
        if unknown:
            raise ValidationError(f"Cannot patch fields: {', '.join(sorted(unknown))}")
        if "role" in changes and changes["role"] not in VALID_ROLES:
            raise ValidationError(f"Invalid role '{changes['role']}'")

        values = dict(changes)
        for field_name in ASSIGNMENT_FIELDS.values():
            if field_name in values:
                values[field_name] = normalize_ids(values[field_name], field_name)

        if not values:
            profile = self.get(external_id)
            if profile is None:
                raise NotFound(f"Profile {external_id} not found")
            return profile

        sql = (
            update(user_profiles)
            .where(user_profiles.c.external_id == external_id)
            .values(**values)
        )
        with self.engine.begin() as conn:
            result = conn.execute(sql)
            if result.rowcount == 0:
                raise NotFound(f"Profile {external_id} not found")
            row = conn.execute(
                select(user_profiles).where(user_profiles.c.external_id == external_id)
            ).mappings().first()
        return _row_to_profile(row)

    def delete(self, external_id: str) -> None:
        sql = delete(user_profiles).where(user_profiles.c.external_id == external_id)
        with self.engine.begin() as conn:
            result = conn.execute(sql)
        if result.rowcount == 0:
            raise NotFound(f"Profile {external_id} not found")

    def list_all(self, limit: int) -> List[UserProfile]:
        """Oldest profiles first, bounded by *limit* (and LIST_HARD_CAP)."""
        limit = max(0, min(int(limit), LIST_HARD_CAP))
        sql = select(user_profiles).order_by(user_profiles.c.id).limit(limit)
        with self.engine.connect() as conn:
            rows = conn.execute(sql).mappings().all()
        return [_row_to_profile(r) for r in rows]

    def count(self) -> int:
        sql = select(func.count()).select_from(user_profiles)
        with self.engine.connect() as conn:
            return int(conn.execute(sql).scalar_one())
