"""
IdentityBridge – turns the caller's bearer credential into a verified Identity.

The bridge only extracts the external id, email and the (untrusted) role
claim. It never decides the effective role; that is RoleReconciler's job.
"""

from datetime import datetime, timedelta
from typing import Any, Dict, Optional

import jwt

from medvisit.config import JWT_ALGORITHM, SECRET_KEY, TOKEN_EXPIRY_HOURS
from medvisit.errors import NotAuthenticated
from medvisit.models import Identity


def generate_token(
    external_id: str,
    email: str = "",
    role: Optional[str] = None,
    secret_key: str = SECRET_KEY,
    expiry_hours: int = TOKEN_EXPIRY_HOURS,
) -> str:
    """Mint a bearer token shaped like the identity provider's (dev/test use)."""
    payload: Dict[str, Any] = {
        "sub": external_id,
        "email": email,
        "iat": datetime.utcnow(),
        "exp": datetime.utcnow() + timedelta(hours=expiry_hours),
    }
    if role is not None:
        payload["public_metadata"] = {"role": role}
    return jwt.encode(payload, secret_key, algorithm=JWT_ALGORITHM)


def verify_token(token: str, secret_key: str = SECRET_KEY) -> Optional[Dict[str, Any]]:
    """Verify a JWT token and return the decoded payload (or None)."""
    try:
        return jwt.decode(token, secret_key, algorithms=[JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        return None
    except jwt.InvalidTokenError:
        return None


def extract_role_claim(payload: Dict[str, Any]) -> Optional[str]:
    """Role claim from either a top-level `role` or `public_metadata.role`."""
    role = payload.get("role")
    if role is None:
        metadata = payload.get("public_metadata") or payload.get("metadata") or {}
        if isinstance(metadata, dict):
            role = metadata.get("role")
    if role is None:
        return None
    return str(role).strip().lower() or None


class IdentityBridge:
    def __init__(self, secret_key: str = SECRET_KEY):
        self.secret_key = secret_key

    def resolve_token(self, token: Optional[str]) -> Identity:
        if not token:
            raise NotAuthenticated("Authentication token is missing")

        payload = verify_token(token, self.secret_key)
        if not payload:
            raise NotAuthenticated("Invalid or expired token")

        external_id = str(payload.get("sub") or "").strip()
        if not external_id:
            raise NotAuthenticated("Token carries no subject")

        return Identity(
            external_id=external_id,
            email=str(payload.get("email") or "").strip(),
            claimed_role=extract_role_claim(payload),
        )

    def resolve(self, authorization_header: Optional[str]) -> Identity:
        """Resolve an `Authorization: Bearer <token>` header value."""
        if not authorization_header:
            raise NotAuthenticated("Authentication token is missing")
        parts = authorization_header.split(" ")
        if len(parts) != 2 or parts[0].lower() != "bearer":
            raise NotAuthenticated("Invalid authorization header format")
        return self.resolve_token(parts[1])
