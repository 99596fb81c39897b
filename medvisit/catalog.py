"""
Storage for the shared catalogs: doctors, medications and medical centers.

Pure persistence; authorization and invariants live in AssignmentEngine
(writes) and ScopedQueryFilter (reads).
"""

from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import delete, func, insert, select, update

from medvisit.config import LIST_HARD_CAP
from medvisit.database import CATALOG_TABLES
from medvisit.errors import NotFound, ValidationError
from medvisit.models import Doctor, MedicalCenter, Medication

_ENTITY_CLASSES = {
    "doctors": Doctor,
    "medications": Medication,
    "medical_centers": MedicalCenter,
}


def _table(kind: str):
    try:
        return CATALOG_TABLES[kind]
    except KeyError:
        raise ValidationError(f"Unknown entity kind '{kind}'")


def _row_to_entity(kind: str, row):
    data = dict(row)
    if kind == "doctors":
        data["medical_centers"] = list(data.get("medical_centers") or [])
    return _ENTITY_CLASSES[kind](**data)


class CatalogStore:
    def __init__(self, engine):
        self.engine = engine

    def get(self, kind: str, entity_id: int):
        table = _table(kind)
        with self.engine.connect() as conn:
            row = conn.execute(select(table).where(table.c.id == entity_id)).mappings().first()
        return _row_to_entity(kind, row) if row else None

    def get_many(self, kind: str, ids: Iterable[int]) -> Dict[int, Any]:
        """Fetch entities by id; ids without a row are simply absent from the result."""
        ids = list(ids)
        if not ids:
            return {}
        table = _table(kind)
        with self.engine.connect() as conn:
            rows = conn.execute(select(table).where(table.c.id.in_(ids))).mappings().all()
        return {r["id"]: _row_to_entity(kind, r) for r in rows}

    def list_all(self, kind: str, limit: int = LIST_HARD_CAP) -> List[Any]:
        """Storage (id) order, bounded by LIST_HARD_CAP."""
        table = _table(kind)
        limit = max(0, min(int(limit), LIST_HARD_CAP))
        sql = select(table).order_by(table.c.id).limit(limit)
        with self.engine.connect() as conn:
            rows = conn.execute(sql).mappings().all()
        return [_row_to_entity(kind, r) for r in rows]

    def insert(self, kind: str, values: Dict[str, Any]):
        table = _table(kind)
        with self.engine.begin() as conn:
            result = conn.execute(insert(table).values(**values))
            new_id = result.inserted_primary_key[0]
            row = conn.execute(select(table).where(table.c.id == new_id)).mappings().first()
        return _row_to_entity(kind, row)

    def update(self, kind: str, entity_id: int, values: Dict[str, Any]):
        table = _table(kind)
        with self.engine.begin() as conn:
            if values:
                result = conn.execute(
                    update(table).where(table.c.id == entity_id).values(**values)
                )
                if result.rowcount == 0:
                    raise NotFound(f"{kind} {entity_id} not found")
            row = conn.execute(select(table).where(table.c.id == entity_id)).mappings().first()
        if row is None:
            raise NotFound(f"{kind} {entity_id} not found")
        return _row_to_entity(kind, row)

    def delete(self, kind: str, entity_id: int) -> None:
        table = _table(kind)
        with self.engine.begin() as conn:
            result = conn.execute(delete(table).where(table.c.id == entity_id))
        if result.rowcount == 0:
            raise NotFound(f"{kind} {entity_id} not found")

    def count(self, kind: str) -> int:
        table = _table(kind)
        with self.engine.connect() as conn:
            return int(conn.execute(select(func.count()).select_from(table)).scalar_one())

    def exists(self, kind: str, entity_id: Optional[int]) -> bool:
        return entity_id is not None and self.get(kind, entity_id) is not None
