"""
Flask route handlers for the REST API.
"""

import sys
import traceback

from flask import jsonify, request
from sqlalchemy import text as sa_text
from svix.webhooks import Webhook, WebhookVerificationError

from medvisit.config import (
    ACTIVITY_LIST_LIMIT,
    LIST_HARD_CAP,
    PROFILE_LIST_LIMIT,
    ROLE_ADMIN,
    SERVICE_NAME,
    SERVICE_VERSION,
)
from medvisit.errors import AccessError, ValidationError
from medvisit.models import to_dict
from medvisit.profiles import parse_id
from medvisit.scoping import normalize_kind
from medvisit.sync import parse_provider_event
from medvisit.api.auth import error_payload, token_required


# Signature headers the identity provider attaches to every webhook delivery.
SVIX_HEADERS = ("svix-id", "svix-timestamp", "svix-signature")


def _json_body() -> dict:
    if not request.is_json:
        raise ValidationError("Content-Type must be application/json")
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def _int_arg(name: str, default: int) -> int:
    value = request.args.get(name)
    if value is None:
        return default
    try:
        return max(0, min(int(value), LIST_HARD_CAP))
    except ValueError:
        raise ValidationError(f"{name} must be an integer")


def _profile_dict(profile):
    return to_dict(profile)


def register_routes(app, services):
    """Register all API routes on the Flask *app*."""

    # ── Health / info ────────────────────────────────────────────────

    @app.route("/", methods=["GET"])
    def index():
        return jsonify({
            "service": SERVICE_NAME,
            "version": SERVICE_VERSION,
            "status": "running",
            "endpoints": {
                "me": "/api/me",
                "users": "/api/users",
                "catalogs": ["/api/doctors", "/api/medications", "/api/medical-centers"],
                "visits": "/api/visits",
                "stats": "/api/stats",
                "activity": "/api/activity",
                "webhook": "/api/webhooks/identity",
                "health": "/health",
            },
        })

    @app.route("/health", methods=["GET"])
    def health():
        checks = {"database": False}
        try:
            with services.engine.connect() as conn:
                conn.execute(sa_text("SELECT 1"))
            checks["database"] = True
        except Exception as e:
            print(f"[WARN] Health check failed: {e}", file=sys.stderr)

        all_healthy = all(checks.values())
        return jsonify({
            "status": "healthy" if all_healthy else "unhealthy",
            "checks": checks,
        }), 200 if all_healthy else 503

    # ── Current user ─────────────────────────────────────────────────

    @app.route("/api/me", methods=["GET"])
    @token_required
    def get_me():
        profile = request.profile
        return jsonify({
            "success": True,
            "profile": _profile_dict(profile),
            "role": profile.role,
            "is_admin": profile.role == ROLE_ADMIN,
            "email": request.identity.email,
        }), 200

    @app.route("/api/me/promote", methods=["POST"])
    @token_required
    def promote_me():
        target = None
        if request.is_json:
            target = (request.get_json(silent=True) or {}).get("external_id")
        profile = services.reconciler.promote_self_if_allowlisted(request.identity, target)
        return jsonify({
            "success": True,
            "message": "You are now an admin!",
            "profile": _profile_dict(profile),
        }), 200

    # ── User administration ──────────────────────────────────────────

    @app.route("/api/users", methods=["GET"])
    @token_required
    def list_users():
        limit = _int_arg("limit", PROFILE_LIST_LIMIT)
        profiles = services.reconciler.list_profiles(request.identity, limit)
        users = []
        for profile, resolved in zip(profiles, services.scoped.resolve_assignments(profiles)):
            data = _profile_dict(profile)
            for kind, entities in resolved.items():
                data[f"assigned_{kind}_data"] = [to_dict(e) for e in entities]
            users.append(data)
        return jsonify({"success": True, "users": users}), 200

    @app.route("/api/users", methods=["POST"])
    @token_required
    def provision_user():
        data = _json_body()
        profile = services.reconciler.provision_profile(
            request.identity,
            external_id=str(data.get("external_id") or "").strip(),
            role=data.get("role"),
            name=data.get("name"),
            email=data.get("email"),
            assignments=data.get("assignments"),
        )
        return jsonify({"success": True, "user": _profile_dict(profile)}), 201

    @app.route("/api/users/<external_id>/role", methods=["PUT"])
    @token_required
    def update_user_role(external_id):
        data = _json_body()
        profile = services.reconciler.update_role(request.identity, external_id, data.get("role"))
        return jsonify({"success": True, "user": _profile_dict(profile)}), 200

    @app.route("/api/users/<external_id>/assignments", methods=["PUT"])
    @token_required
    def update_user_assignments(external_id):
        data = _json_body()
        profile = services.assignments.set_assignments(request.identity, external_id, data)
        return jsonify({"success": True, "user": _profile_dict(profile)}), 200

    @app.route("/api/users/<external_id>", methods=["DELETE"])
    @token_required
    def delete_user(external_id):
        services.reconciler.delete_profile(request.identity, external_id)
        return jsonify({"success": True}), 200

    # ── Catalogs ─────────────────────────────────────────────────────

    @app.route("/api/<kind>", methods=["GET"])
    @token_required
    def list_catalog(kind):
        kind = normalize_kind(kind)
        entities = services.scoped.list(kind, request.identity)
        return jsonify({"success": True, "kind": kind, "items": [to_dict(e) for e in entities]}), 200

    @app.route("/api/<kind>", methods=["POST"])
    @token_required
    def create_catalog_entry(kind):
        entity = services.assignments.create(request.identity, kind, _json_body())
        return jsonify({"success": True, "item": to_dict(entity)}), 201

    @app.route("/api/<kind>/<entity_id>", methods=["GET"])
    @token_required
    def get_catalog_entry(kind, entity_id):
        kind = normalize_kind(kind)
        entity_id = parse_id(entity_id)
        if kind == "doctors":
            result = services.scoped.get_doctor_with_centers(entity_id, request.identity)
            item = to_dict(result["doctor"])
            item["medical_centers_data"] = [to_dict(c) for c in result["medical_centers"]]
        else:
            item = to_dict(services.scoped.get(kind, entity_id, request.identity))
        return jsonify({"success": True, "item": item}), 200

    @app.route("/api/<kind>/<entity_id>", methods=["PUT"])
    @token_required
    def update_catalog_entry(kind, entity_id):
        entity = services.assignments.update(request.identity, kind, parse_id(entity_id), _json_body())
        return jsonify({"success": True, "item": to_dict(entity)}), 200

    @app.route("/api/<kind>/<entity_id>", methods=["DELETE"])
    @token_required
    def delete_catalog_entry(kind, entity_id):
        services.assignments.delete(request.identity, kind, parse_id(entity_id))
        return jsonify({"success": True}), 200

    # ── Visits ───────────────────────────────────────────────────────

    @app.route("/api/visits", methods=["GET"])
    @token_required
    def list_visits():
        limit = _int_arg("limit", LIST_HARD_CAP)
        items = services.visits.list_visits(request.identity, limit=limit)
        return jsonify({"success": True, "visits": services.visits.describe(request.identity, items)}), 200

    @app.route("/api/visits", methods=["POST"])
    @token_required
    def create_visit():
        data = _json_body()
        visit = services.visits.create_visit(
            request.identity,
            doctor_id=data.get("doctor_id", data.get("doctorId")),
            date=data.get("date"),
            medications=data.get("medications"),
            status=data.get("status", "completed"),
            medical_center_id=data.get("medical_center_id", data.get("medicalCenterId")),
            notes=data.get("notes"),
        )
        return jsonify({"success": True, "visit": to_dict(visit)}), 201

    @app.route("/api/visits/<visit_id>", methods=["GET"])
    @token_required
    def get_visit(visit_id):
        visit = services.visits.get_visit(request.identity, parse_id(visit_id))
        [item] = services.visits.describe(request.identity, [visit])
        return jsonify({"success": True, "visit": item}), 200

    @app.route("/api/visits/<visit_id>", methods=["PUT"])
    @token_required
    def update_visit(visit_id):
        visit = services.visits.update_visit(request.identity, parse_id(visit_id), _json_body())
        return jsonify({"success": True, "visit": to_dict(visit)}), 200

    # ── Admin dashboards ─────────────────────────────────────────────

    @app.route("/api/stats", methods=["GET"])
    @token_required
    def get_stats():
        return jsonify({"success": True, "stats": services.visits.stats(request.identity)}), 200

    @app.route("/api/activity", methods=["GET"])
    @token_required
    def get_activity():
        services.reconciler.require_admin(request.identity)
        limit = _int_arg("limit", ACTIVITY_LIST_LIMIT)
        return jsonify({"success": True, "entries": services.activity.list_recent(limit)}), 200

    # ── Identity-provider webhook ────────────────────────────────────

    @app.route("/api/webhooks/identity", methods=["POST"])
    def identity_webhook():
        if not services.webhook_secret:
            return jsonify({"error": "Webhook secret is not configured"}), 503

        svix_headers = {name: request.headers.get(name) for name in SVIX_HEADERS}
        if not all(svix_headers.values()):
            return jsonify({"error": "Missing svix signature headers"}), 400

        try:
            payload = Webhook(services.webhook_secret).verify(request.get_data(), svix_headers)
        except WebhookVerificationError as e:
            print(f"[WARN] [sync] Webhook signature rejected: {e}", file=sys.stderr)
            return jsonify({"error": "Invalid webhook signature"}), 400

        event_type, event = parse_provider_event(payload)
        profile = services.sync.handle(event_type, event)
        return jsonify({
            "success": True,
            "handled": profile is not None,
            "event": event_type,
        }), 200

    # ── Error handlers ───────────────────────────────────────────────

    @app.errorhandler(AccessError)
    def access_error(e):
        return jsonify(error_payload(e)), e.http_status

    @app.errorhandler(404)
    def not_found(e):
        return jsonify({"error": "Endpoint not found", "message": str(e)}), 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return jsonify({"error": "Method not allowed", "message": str(e)}), 405

    @app.errorhandler(500)
    def internal_error(e):
        print(f"[ERROR] Unhandled error: {e}", file=sys.stderr)
        traceback.print_exc()
        return jsonify({"error": "Internal server error", "message": str(e)}), 500
