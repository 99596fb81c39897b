"""
Flask API tests using the test client – authentication, routing, error shapes.
"""

import json
from datetime import datetime, timedelta, timezone

import pytest
from svix.webhooks import Webhook

WEBHOOK_SECRET = "whsec_MfKQ9r8GKYqrTwjUPD8ILPZIo2LaLaSw"


def _seed_doctors(services, admin, count=3):
    return [services.assignments.create_doctor(admin, f"Dr {i}") for i in range(1, count + 1)]


# ── Tests: health / info ─────────────────────────────────────────────

def test_index(client):
    res = client.get("/")
    assert res.status_code == 200
    assert res.get_json()["status"] == "running"


def test_health(client):
    res = client.get("/health")
    assert res.status_code == 200
    assert res.get_json()["checks"] == {"database": True}


def test_unknown_endpoint_is_json_404(client):
    res = client.get("/nope/nothing/here")
    assert res.status_code == 404
    assert res.get_json()["error"] == "Endpoint not found"


# ── Tests: authentication ────────────────────────────────────────────

def test_missing_token_is_401(client):
    res = client.get("/api/me")
    assert res.status_code == 401
    assert res.get_json()["error"] == "not_authenticated"


def test_bad_token_is_401(client):
    res = client.get("/api/me", headers={"Authorization": "Bearer garbage"})
    assert res.status_code == 401


def test_token_query_param_fallback(client, bearer):
    token = bearer("qp-user")["Authorization"].split(" ")[1]
    res = client.get(f"/api/me?token={token}")
    assert res.status_code == 200
    assert res.get_json()["profile"]["external_id"] == "qp-user"


def test_me_creates_profile_from_claim(client, bearer, services):
    res = client.get("/api/me", headers=bearer("new-admin", email="n@example.com", role="admin"))
    body = res.get_json()
    assert res.status_code == 200
    assert body["role"] == "admin"
    assert body["is_admin"] is True
    assert body["email"] == "n@example.com"
    assert services.profiles.get("new-admin").role == "admin"


def test_me_ignores_claim_for_existing_profile(client, bearer, visitor):
    res = client.get("/api/me", headers=bearer("v1", role="admin"))
    assert res.get_json()["role"] == "visitor"


# ── Tests: bootstrap ─────────────────────────────────────────────────

def test_promote_allowlisted(client, bearer):
    res = client.post("/api/me/promote", headers=bearer("root", email="root.admin@example.com"))
    assert res.status_code == 200
    assert res.get_json()["profile"]["role"] == "admin"


def test_promote_other_email_is_403(client, bearer):
    res = client.post("/api/me/promote", headers=bearer("eve", email="eve@example.com"))
    assert res.status_code == 403
    assert res.get_json()["error"] == "unauthorized"


# ── Tests: user administration ───────────────────────────────────────

def test_users_require_admin(client, bearer, visitor):
    assert client.get("/api/users", headers=bearer("v1")).status_code == 403
    res = client.put("/api/users/v1/role", json={"role": "admin"}, headers=bearer("v1"))
    assert res.status_code == 403


def test_admin_manages_users(client, bearer, admin, visitor, services):
    headers = bearer("admin-1")
    res = client.get("/api/users", headers=headers)
    assert [u["external_id"] for u in res.get_json()["users"]] == ["admin-1", "v1"]

    res = client.put("/api/users/v1/assignments", json={"doctors": [2, 1]}, headers=headers)
    assert res.get_json()["user"]["assigned_doctors"] == [2, 1]

    res = client.put("/api/users/v1/role", json={"role": "admin"}, headers=headers)
    assert res.get_json()["user"]["role"] == "admin"

    res = client.post("/api/users", json={"external_id": "p1", "role": "visitor", "name": "Pia"},
                      headers=headers)
    assert res.status_code == 201
    assert res.get_json()["user"]["name"] == "Pia"

    assert client.delete("/api/users/p1", headers=headers).status_code == 200
    assert services.profiles.get("p1") is None


def test_update_role_validation_and_missing(client, bearer, admin):
    headers = bearer("admin-1")
    res = client.put("/api/users/admin-1/role", json={"role": "owner"}, headers=headers)
    assert res.status_code == 400
    assert res.get_json()["error"] == "validation_error"
    res = client.put("/api/users/ghost/role", json={"role": "admin"}, headers=headers)
    assert res.status_code == 404


def test_non_json_body_is_400(client, bearer, admin):
    res = client.put("/api/users/admin-1/role", data="role=admin", headers=bearer("admin-1"))
    assert res.status_code == 400


# ── Tests: catalogs ──────────────────────────────────────────────────

def test_visitor_lists_only_assigned(client, bearer, services, admin, visitor):
    docs = _seed_doctors(services, admin)
    services.assignments.set_assignments(admin, "v1", {"doctors": [docs[2].id, docs[0].id]})
    res = client.get("/api/doctors", headers=bearer("v1"))
    assert [d["id"] for d in res.get_json()["items"]] == [docs[2].id, docs[0].id]


def test_visitor_get_outside_scope_is_404(client, bearer, services, admin, visitor):
    docs = _seed_doctors(services, admin)
    res = client.get(f"/api/doctors/{docs[0].id}", headers=bearer("v1"))
    assert res.status_code == 404


def test_doctor_detail_includes_centers(client, bearer, services, admin):
    center = services.assignments.create_medical_center(admin, "North", "1 Main St", "Oslo")
    doc = services.assignments.create_doctor(admin, "Dr C", medical_centers=[center.id])
    res = client.get(f"/api/doctors/{doc.id}", headers=bearer("admin-1"))
    item = res.get_json()["item"]
    assert item["medical_centers"] == [center.id]
    assert item["medical_centers_data"][0]["name"] == "North"


def test_medical_centers_alias_route(client, bearer, services, admin):
    services.assignments.create_medical_center(admin, "North", "1 Main St", "Oslo")
    res = client.get("/api/medical-centers", headers=bearer("admin-1"))
    assert res.get_json()["kind"] == "medical_centers"
    assert len(res.get_json()["items"]) == 1


def test_unknown_kind_is_400(client, bearer, admin):
    assert client.get("/api/patients", headers=bearer("admin-1")).status_code == 400


def test_catalog_crud(client, bearer, admin):
    headers = bearer("admin-1")
    res = client.post("/api/medications", json={"name": "Ibuprofen", "unit": "boxes"}, headers=headers)
    assert res.status_code == 201
    med_id = res.get_json()["item"]["id"]

    res = client.put(f"/api/medications/{med_id}", json={"description": "200mg"}, headers=headers)
    assert res.get_json()["item"]["description"] == "200mg"

    assert client.delete(f"/api/medications/{med_id}", headers=headers).status_code == 200
    assert client.get(f"/api/medications/{med_id}", headers=headers).status_code == 404


def test_doctor_with_three_centers_is_400(client, bearer, services, admin):
    ids = [services.assignments.create_medical_center(admin, f"C{i}", "Addr", "City").id
           for i in range(3)]
    res = client.post("/api/doctors", json={"name": "Dr X", "medicalCenterIds": ids},
                      headers=bearer("admin-1"))
    assert res.status_code == 400
    assert services.catalog.count("doctors") == 0


def test_visitor_cannot_create(client, bearer, visitor):
    res = client.post("/api/doctors", json={"name": "Dr V"}, headers=bearer("v1"))
    assert res.status_code == 403


# ── Tests: visits / dashboards ───────────────────────────────────────

def test_visit_flow(client, bearer, services, admin, visitor):
    doc = _seed_doctors(services, admin, 1)[0]
    services.assignments.set_assignments(admin, "v1", {"doctors": [doc.id]})
    headers = bearer("v1")

    res = client.post("/api/visits", json={"doctorId": doc.id, "date": "2024-05-01T09:00:00Z"},
                      headers=headers)
    assert res.status_code == 201
    visit = res.get_json()["visit"]
    assert visit["date"] == "2024-05-01T09:00:00"

    res = client.put(f"/api/visits/{visit['id']}", json={"status": "pending"}, headers=headers)
    assert res.get_json()["visit"]["status"] == "pending"

    res = client.get("/api/visits", headers=headers)
    assert [v["id"] for v in res.get_json()["visits"]] == [visit["id"]]
    assert client.get(f"/api/visits/{visit['id']}", headers=headers).status_code == 200


def test_visit_listing_is_enriched(client, bearer, services, admin, visitor):
    doc = services.assignments.create_doctor(admin, "Dr Rich")
    med = services.assignments.create_medication(admin, "Ibuprofen", "boxes")
    services.assignments.set_assignments(admin, "v1", {"doctors": [doc.id], "medications": [med.id]})
    visit = services.visits.create_visit(
        visitor, doc.id, "2024-05-01", medications=[{"medication_id": med.id, "quantity": 2}],
    )

    res = client.get("/api/visits", headers=bearer("v1"))
    [item] = res.get_json()["visits"]
    assert item["doctor"]["name"] == "Dr Rich"
    assert item["medications"][0]["medication"]["name"] == "Ibuprofen"
    assert "visitor" not in item

    res = client.get(f"/api/visits/{visit.id}", headers=bearer("admin-1"))
    item = res.get_json()["visit"]
    assert item["visitor"]["name"] == "Vera Visitor"
    assert item["doctor"]["id"] == doc.id


def test_user_listing_resolves_assignments(client, bearer, services, admin, visitor):
    docs = _seed_doctors(services, admin, 2)
    services.assignments.set_assignments(admin, "v1", {"doctors": [docs[1].id, docs[0].id]})
    services.assignments.delete_doctor(admin, docs[0].id)

    res = client.get("/api/users", headers=bearer("admin-1"))
    users = {u["external_id"]: u for u in res.get_json()["users"]}
    assert users["v1"]["assigned_doctors"] == [docs[1].id, docs[0].id]
    assert [d["name"] for d in users["v1"]["assigned_doctors_data"]] == ["Dr 2"]
    assert users["admin-1"]["assigned_medical_centers_data"] == []


def test_stats_and_activity_admin_only(client, bearer, admin, visitor):
    assert client.get("/api/stats", headers=bearer("v1")).status_code == 403
    assert client.get("/api/activity", headers=bearer("v1")).status_code == 403

    res = client.get("/api/stats", headers=bearer("admin-1"))
    assert res.get_json()["stats"]["total_users"] == 2
    res = client.get("/api/activity?limit=5", headers=bearer("admin-1"))
    assert res.get_json()["entries"] == []


# ── Tests: identity webhook ──────────────────────────────────────────

CREATED = {
    "type": "user.created",
    "data": {
        "id": "user_hook",
        "first_name": "Hana",
        "last_name": "Hook",
        "email_addresses": [{"email_address": "hana@example.com"}],
    },
}


def _signed(body, msg_id="msg_1"):
    """Serialize *body* and sign it the way the identity provider does."""
    payload = json.dumps(body)
    now = datetime.now(timezone.utc)
    headers = {
        "svix-id": msg_id,
        "svix-timestamp": str(int(now.timestamp())),
        "svix-signature": Webhook(WEBHOOK_SECRET).sign(msg_id, now, payload),
    }
    return payload, headers


def _deliver(client, payload, headers):
    return client.post("/api/webhooks/identity", data=payload, headers=headers,
                       content_type="application/json")


def test_webhook_rejects_tampered_body(client, services):
    payload, headers = _signed(CREATED)
    tampered = payload.replace("user_hook", "user_evil")
    res = _deliver(client, tampered, headers)
    assert res.status_code == 400
    assert services.profiles.get("user_evil") is None


def test_webhook_rejects_missing_signature_headers(client, services):
    payload, headers = _signed(CREATED)
    del headers["svix-signature"]
    res = _deliver(client, payload, headers)
    assert res.status_code == 400
    assert services.profiles.get("user_hook") is None


def test_webhook_rejects_stale_timestamp(client, services):
    payload = json.dumps(CREATED)
    then = datetime.now(timezone.utc) - timedelta(hours=1)
    headers = {
        "svix-id": "msg_old",
        "svix-timestamp": str(int(then.timestamp())),
        "svix-signature": Webhook(WEBHOOK_SECRET).sign("msg_old", then, payload),
    }
    assert _deliver(client, payload, headers).status_code == 400


def test_webhook_disabled_without_secret(client, services):
    services.webhook_secret = None
    payload, headers = _signed(CREATED)
    assert _deliver(client, payload, headers).status_code == 503


def test_webhook_creates_profile_idempotently(client, services):
    payload, headers = _signed(CREATED)
    for _ in range(2):
        res = _deliver(client, payload, headers)
        assert res.status_code == 200
        assert res.get_json() == {"success": True, "handled": True, "event": "user.created"}
    profile = services.profiles.get("user_hook")
    assert profile.role == "visitor"
    assert profile.name == "Hana Hook"
    assert services.profiles.count() == 1


@pytest.mark.parametrize("body,status", [
    ({"type": "session.created", "data": {"id": "user_x"}}, 200),
    ({"type": "user.created", "data": {}}, 400),
])
def test_webhook_other_payloads(client, body, status):
    payload, headers = _signed(body)
    res = _deliver(client, payload, headers)
    assert res.status_code == status
    if status == 200:
        assert res.get_json()["handled"] is False
