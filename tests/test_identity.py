"""
Unit tests for token handling and the IdentityBridge.
"""

import jwt
import pytest

from medvisit.errors import NotAuthenticated
from medvisit.identity import IdentityBridge, extract_role_claim, generate_token, verify_token

SECRET = "bridge-secret"


# ── Tests: tokens ────────────────────────────────────────────────────

def test_generate_and_verify_roundtrip():
    token = generate_token("user_1", email="a@example.com", role="admin", secret_key=SECRET)
    payload = verify_token(token, SECRET)
    assert payload["sub"] == "user_1"
    assert payload["public_metadata"] == {"role": "admin"}


def test_verify_rejects_wrong_secret_and_expired():
    token = generate_token("user_1", secret_key=SECRET)
    assert verify_token(token, "other-secret") is None
    expired = generate_token("user_1", secret_key=SECRET, expiry_hours=-1)
    assert verify_token(expired, SECRET) is None


def test_extract_role_claim_variants():
    assert extract_role_claim({"role": "Admin"}) == "admin"
    assert extract_role_claim({"public_metadata": {"role": "visitor"}}) == "visitor"
    assert extract_role_claim({"metadata": {"role": " ADMIN "}}) == "admin"
    assert extract_role_claim({"public_metadata": "oops"}) is None
    assert extract_role_claim({}) is None


# ── Tests: IdentityBridge ────────────────────────────────────────────

def test_resolve_bearer_header():
    bridge = IdentityBridge(SECRET)
    token = generate_token("user_1", email=" a@example.com ", role="admin", secret_key=SECRET)
    ident = bridge.resolve(f"Bearer {token}")
    assert ident.external_id == "user_1"
    assert ident.email == "a@example.com"
    assert ident.claimed_role == "admin"


def test_resolve_without_role_claim():
    bridge = IdentityBridge(SECRET)
    ident = bridge.resolve_token(generate_token("user_2", secret_key=SECRET))
    assert ident.claimed_role is None


@pytest.mark.parametrize("header", [None, "", "Token abc", "Bearer", "Bearer a b"])
def test_resolve_bad_headers(header):
    with pytest.raises(NotAuthenticated):
        IdentityBridge(SECRET).resolve(header)


def test_resolve_invalid_token():
    with pytest.raises(NotAuthenticated, match="Invalid or expired"):
        IdentityBridge(SECRET).resolve_token("not-a-jwt")


def test_resolve_token_without_subject():
    token = jwt.encode({"email": "x@example.com"}, SECRET, algorithm="HS256")
    with pytest.raises(NotAuthenticated, match="no subject"):
        IdentityBridge(SECRET).resolve_token(token)
