"""
Database engine initialisation and table definitions.
"""

import sys
from typing import Optional

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    text,
)

from medvisit.config import DB_URI

metadata = MetaData()

# One row per external identity; assignment sets are ordered id lists.
user_profiles = Table(
    "user_profiles", metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("external_id", String(255), nullable=False, unique=True),
    Column("role", String(32), nullable=False),
    Column("name", String(255)),
    Column("email", String(320)),
    Column("assigned_doctors", JSON, nullable=False, default=list),
    Column("assigned_medications", JSON, nullable=False, default=list),
    Column("assigned_medical_centers", JSON, nullable=False, default=list),
    Column("created_at", DateTime, nullable=False),
)

doctors = Table(
    "doctors", metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(255), nullable=False, index=True),
    Column("specialty", String(255)),
    Column("email", String(320)),
    Column("phone", String(64)),
    Column("medical_centers", JSON, nullable=False, default=list),
    Column("created_by", String(255), nullable=False, index=True),
    Column("created_at", DateTime, nullable=False),
)

medications = Table(
    "medications", metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(255), nullable=False, index=True),
    Column("description", Text),
    Column("unit", String(16), nullable=False),
    Column("created_by", String(255), nullable=False, index=True),
    Column("created_at", DateTime, nullable=False),
)

medical_centers = Table(
    "medical_centers", metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(255), nullable=False, index=True),
    Column("address", String(512), nullable=False),
    Column("city", String(255), nullable=False),
    Column("phone", String(64)),
    Column("created_by", String(255), nullable=False, index=True),
    Column("created_at", DateTime, nullable=False),
)

visits = Table(
    "visits", metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("doctor_id", Integer, nullable=False, index=True),
    Column("visitor_id", String(255), nullable=False, index=True),
    Column("date", DateTime, nullable=False, index=True),
    Column("medical_center_id", Integer),
    Column("medications", JSON, nullable=False, default=list),
    Column("notes", Text),
    Column("status", String(16), nullable=False),
    Column("created_at", DateTime, nullable=False),
)

activity_logs = Table(
    "activity_logs", metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("actor_external_id", String(255), nullable=False, index=True),
    Column("action", String(64), nullable=False),
    Column("entity_type", String(64), nullable=False),
    Column("entity_id", String(255)),
    Column("details", Text),
    Column("created_at", DateTime, nullable=False, index=True),
)

CATALOG_TABLES = {
    "doctors": doctors,
    "medications": medications,
    "medical_centers": medical_centers,
}


def create_schema(engine) -> None:
    """Create every table that does not exist yet. Idempotent."""
    metadata.create_all(engine)


def init_engine(db_uri: Optional[str] = None):
    """Create a SQLAlchemy engine, ensure the schema and verify the connection."""
    engine = create_engine(db_uri or DB_URI, echo=False, future=True)
    try:
        create_schema(engine)
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except Exception as e:
        print("ERROR: could not connect to DB:", e, file=sys.stderr)
        sys.exit(1)
    print("[init] Connected to DB.")
    return engine
