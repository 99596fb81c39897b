"""
Flask application factory and server entry-point.
"""

import os
import sys
import traceback
from dataclasses import dataclass
from typing import Optional

from flask import Flask
from flask_cors import CORS

from medvisit.activity import ActivityLog
from medvisit.assignments import AssignmentEngine
from medvisit.catalog import CatalogStore
from medvisit.config import ROOT_ADMIN_EMAIL, SECRET_KEY, SERVICE_NAME, WEBHOOK_SECRET
from medvisit.database import init_engine
from medvisit.identity import IdentityBridge
from medvisit.profiles import ProfileStore
from medvisit.roles import RoleReconciler
from medvisit.scoping import ScopedQueryFilter
from medvisit.sync import SyncGateway
from medvisit.visits import VisitService
from medvisit.api.routes import register_routes


@dataclass
class Services:
    """Shared, request-independent components wired around one engine."""
    engine: object
    identity: IdentityBridge
    profiles: ProfileStore
    catalog: CatalogStore
    activity: ActivityLog
    reconciler: RoleReconciler
    assignments: AssignmentEngine
    scoped: ScopedQueryFilter
    sync: SyncGateway
    visits: VisitService
    webhook_secret: Optional[str] = None


def build_services(
    engine,
    secret_key: str = SECRET_KEY,
    root_admin_email: Optional[str] = ROOT_ADMIN_EMAIL,
    webhook_secret: Optional[str] = WEBHOOK_SECRET,
) -> Services:
    profiles = ProfileStore(engine)
    catalog = CatalogStore(engine)
    activity = ActivityLog(engine)
    reconciler = RoleReconciler(profiles, activity, root_admin_email=root_admin_email)
    return Services(
        engine=engine,
        identity=IdentityBridge(secret_key),
        profiles=profiles,
        catalog=catalog,
        activity=activity,
        reconciler=reconciler,
        assignments=AssignmentEngine(reconciler, profiles, catalog, activity),
        scoped=ScopedQueryFilter(reconciler, catalog),
        sync=SyncGateway(profiles, activity),
        visits=VisitService(engine, reconciler, catalog, activity),
        webhook_secret=webhook_secret,
    )


def create_app(services: Optional[Services] = None):
    """Build and return a fully configured Flask application."""
    app = Flask(__name__)
    CORS(app)

    # ── Initialise shared resources ──────────────────────────────────
    if services is None:
        try:
            print("[init] Initializing database connection...")
            engine = init_engine()
            services = build_services(engine)
            if not services.reconciler.root_admin_email:
                print("[init] ROOT_ADMIN_EMAIL not set; bootstrap promotion disabled")
            if not services.webhook_secret:
                print("[init] WEBHOOK_SECRET not set; identity webhook disabled")
            print("[init] ✓ API server ready")
        except Exception as e:
            print(f"[FATAL] Failed to initialize: {e}", file=sys.stderr)
            traceback.print_exc()
            sys.exit(1)

    app.extensions["medvisit"] = services

    # ── Register routes ──────────────────────────────────────────────
    register_routes(app, services)

    return app


def main():
    """Run the development server."""
    print("=" * 60)
    print(SERVICE_NAME)
    print("=" * 60)

    app = create_app()

    host = os.getenv("API_HOST", "0.0.0.0")
    port = int(os.getenv("API_PORT", "8000"))
    debug = os.getenv("FLASK_ENV") == "development"

    print(f"\n[server] Starting Flask API on {host}:{port}")
    print(f"[server] Debug mode: {debug}")
    print("\nAPI Endpoints:")
    print(f"  - GET  http://{host}:{port}/api/me")
    print(f"  - GET  http://{host}:{port}/api/doctors | medications | medical-centers")
    print(f"  - GET  http://{host}:{port}/api/visits")
    print(f"  - GET  http://{host}:{port}/api/users")
    print(f"  - POST http://{host}:{port}/api/webhooks/identity")
    print(f"  - GET  http://{host}:{port}/health")
    print("\n" + "=" * 60)

    app.run(host=host, port=port, debug=debug, threaded=True)


if __name__ == "__main__":
    main()
