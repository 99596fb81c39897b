"""
Bearer-token authentication for the Flask API.
"""

from functools import wraps

from flask import current_app, request

from medvisit.errors import AccessError


def get_services():
    return current_app.extensions["medvisit"]


def token_required(f):
    """Decorator that resolves the caller's identity and effective profile.

    Attaches `request.identity` (IdentityBridge output) and `request.profile`
    (reconciled profile, created on first sight). Failures propagate as
    AccessError and are rendered by the app's error handler.
    """
    @wraps(f)
    def decorated(*args, **kwargs):
        services = get_services()

        # Check Authorization header (Bearer token)
        if "Authorization" in request.headers:
            identity = services.identity.resolve(request.headers["Authorization"])
        else:
            # Fallback: token query param
            token = request.args.get("token")
            identity = services.identity.resolve_token(token)

        request.identity = identity
        request.profile = services.reconciler.reconcile(identity)
        return f(*args, **kwargs)

    return decorated


def error_payload(error: AccessError):
    return {"error": error.kind, "message": error.message}
