"""
Shared fixtures: an in-memory SQLite engine and the wired service graph.
"""

import pytest
from sqlalchemy import create_engine, update
from sqlalchemy.pool import StaticPool

from medvisit.api.app import build_services, create_app
from medvisit.database import create_schema, user_profiles
from medvisit.identity import generate_token
from medvisit.models import Identity

ROOT_EMAIL = "Root.Admin@Example.com"
WEBHOOK_SECRET = "whsec_MfKQ9r8GKYqrTwjUPD8ILPZIo2LaLaSw"
SECRET = "test-secret"


@pytest.fixture
def engine():
    eng = create_engine(
        "sqlite://",
        future=True,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    create_schema(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def services(engine):
    return build_services(
        engine,
        secret_key=SECRET,
        root_admin_email=ROOT_EMAIL,
        webhook_secret=WEBHOOK_SECRET,
    )


@pytest.fixture
def admin(services):
    """Identity whose stored profile is admin."""
    ident = Identity(external_id="admin-1", email="admin@example.com")
    services.profiles.upsert_if_absent("admin-1", role="admin", name="Ada Admin")
    return ident


@pytest.fixture
def visitor(services):
    ident = Identity(external_id="v1", email="v1@example.com")
    services.profiles.upsert_if_absent("v1", role="visitor", name="Vera Visitor")
    return ident


@pytest.fixture
def legacy(services):
    """Identity whose stored role is no longer recognised."""
    services.profiles.upsert_if_absent("odd")
    with services.engine.begin() as conn:
        conn.execute(
            update(user_profiles)
            .where(user_profiles.c.external_id == "odd")
            .values(role="legacy")
        )
    return Identity(external_id="odd")


@pytest.fixture
def app(services):
    flask_app = create_app(services)
    flask_app.config["TESTING"] = True
    return flask_app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def bearer():
    """Build an Authorization header for a freshly minted token."""
    def make(external_id, email="", role=None):
        token = generate_token(external_id, email=email, role=role, secret_key=SECRET)
        return {"Authorization": f"Bearer {token}"}
    return make
