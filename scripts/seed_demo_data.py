#!/usr/bin/env python3
"""
Seed a development database with fake catalogs, profiles and visits.
Respects the same invariants as the API (at most two centers per doctor,
visits only against the visitor's own assignments).
"""

import random
from datetime import datetime, timedelta

from faker import Faker
from sqlalchemy import select

from medvisit.config import DB_URI, MAX_DOCTOR_CENTERS, MEDICATION_UNITS, VISIT_STATUSES
from medvisit.database import (
    doctors,
    init_engine,
    medical_centers,
    medications,
    user_profiles,
    visits,
)

# --------------------------------------------------------------------
# CONFIG
# --------------------------------------------------------------------
NUM_CENTERS = 8
NUM_DOCTORS = 25
NUM_MEDICATIONS = 15
NUM_VISITORS = 5
VISITS_PER_VISITOR = (3, 10)   # min, max

SEED_ADMIN_ID = "seed-admin"

# --------------------------------------------------------------------
# SETUP
# --------------------------------------------------------------------
fake = Faker()
random.seed(42)
Faker.seed(42)


# --------------------------------------------------------------------
# HELPERS
# --------------------------------------------------------------------
def random_datetime_within(days_back=180):
    now = datetime.utcnow()
    delta = timedelta(days=random.randint(0, days_back), seconds=random.randint(0, 86400))
    return now - delta


# --------------------------------------------------------------------
# SEED FUNCTIONS
# --------------------------------------------------------------------
def seed_medical_centers(conn, n=NUM_CENTERS):
    rows = []
    for _ in range(n):
        rows.append(
            {
                "name": f"{fake.last_name()} Medical Center",
                "address": fake.street_address(),
                "city": fake.city(),
                "phone": fake.phone_number(),
                "created_by": SEED_ADMIN_ID,
                "created_at": random_datetime_within(365),
            }
        )
    conn.execute(medical_centers.insert(), rows)
    return conn.execute(select(medical_centers.c.id)).scalars().all()


def seed_doctors(conn, center_ids, n=NUM_DOCTORS):
    rows = []
    for _ in range(n):
        k = random.randint(0, min(MAX_DOCTOR_CENTERS, len(center_ids)))
        rows.append(
            {
                "name": f"Dr. {fake.first_name()} {fake.last_name()}",
                "specialty": random.choice(
                    ["Cardiology", "Dermatology", "Pediatrics", "General Practice", "Neurology"]
                ),
                "email": fake.email(),
                "phone": fake.phone_number(),
                "medical_centers": random.sample(list(center_ids), k),
                "created_by": SEED_ADMIN_ID,
                "created_at": random_datetime_within(365),
            }
        )
    conn.execute(doctors.insert(), rows)
    return conn.execute(select(doctors.c.id)).scalars().all()


def seed_medications(conn, n=NUM_MEDICATIONS):
    rows = []
    for _ in range(n):
        rows.append(
            {
                "name": fake.unique.word().capitalize() + random.choice(["ol", "ex", "ine", "an"]),
                "description": fake.text(max_nb_chars=80),
                "unit": random.choice(sorted(MEDICATION_UNITS)),
                "created_by": SEED_ADMIN_ID,
                "created_at": random_datetime_within(365),
            }
        )
    conn.execute(medications.insert(), rows)
    return conn.execute(select(medications.c.id)).scalars().all()


def seed_profiles(conn, doctor_ids, medication_ids, center_ids, n=NUM_VISITORS):
    rows = [
        {
            "external_id": SEED_ADMIN_ID,
            "role": "admin",
            "name": "Seed Admin",
            "email": "admin@example.com",
            "assigned_doctors": [],
            "assigned_medications": [],
            "assigned_medical_centers": [],
            "created_at": datetime.utcnow(),
        }
    ]
    for i in range(n):
        rows.append(
            {
                "external_id": f"seed-visitor-{i + 1}",
                "role": "visitor",
                "name": fake.name(),
                "email": fake.email(),
                "assigned_doctors": random.sample(list(doctor_ids), min(5, len(doctor_ids))),
                "assigned_medications": random.sample(list(medication_ids), min(4, len(medication_ids))),
                "assigned_medical_centers": random.sample(list(center_ids), min(2, len(center_ids))),
                "created_at": random_datetime_within(90),
            }
        )
    conn.execute(user_profiles.insert(), rows)
    return rows[1:]


def seed_visits(conn, visitor_rows):
    rows = []
    for visitor in visitor_rows:
        lo, hi = VISITS_PER_VISITOR
        for _ in range(random.randint(lo, hi)):
            meds = random.sample(
                visitor["assigned_medications"],
                random.randint(0, len(visitor["assigned_medications"])),
            )
            center_ids = visitor["assigned_medical_centers"]
            rows.append(
                {
                    "doctor_id": random.choice(visitor["assigned_doctors"]),
                    "visitor_id": visitor["external_id"],
                    "date": random_datetime_within(120),
                    "medical_center_id": random.choice(center_ids) if center_ids else None,
                    "medications": [
                        {"medication_id": m, "quantity": random.randint(1, 12), "notes": None}
                        for m in meds
                    ],
                    "notes": fake.sentence(),
                    "status": random.choice(sorted(VISIT_STATUSES)),
                    "created_at": datetime.utcnow(),
                }
            )
    if rows:
        conn.execute(visits.insert(), rows)


# --------------------------------------------------------------------
# MAIN
# --------------------------------------------------------------------
def main():
    engine = init_engine(DB_URI)
    with engine.begin() as conn:
        print("Seeding medical centers...")
        center_ids = seed_medical_centers(conn)

        print("Seeding doctors...")
        doctor_ids = seed_doctors(conn, center_ids)

        print("Seeding medications...")
        medication_ids = seed_medications(conn)

        print("Seeding profiles...")
        visitor_rows = seed_profiles(conn, doctor_ids, medication_ids, center_ids)

        print("Seeding visits...")
        seed_visits(conn, visitor_rows)

        print("Done!")


if __name__ == "__main__":
    main()
