"""
Error taxonomy shared by the access core and the HTTP layer.
"""


class AccessError(Exception):
    """Base class for every error surfaced to callers of the core."""
    http_status = 500
    kind = "error"

    def __init__(self, message: str = ""):
        super().__init__(message or self.__class__.__doc__ or self.kind)
        self.message = str(self)


class NotAuthenticated(AccessError):
    """No verifiable identity was presented."""
    http_status = 401
    kind = "not_authenticated"


class Unauthorized(AccessError):
    """The caller's effective role does not allow this operation."""
    http_status = 403
    kind = "unauthorized"


class ValidationError(AccessError, ValueError):
    """The request carried an invalid value."""
    http_status = 400
    kind = "validation_error"


class NotFound(AccessError):
    """The referenced profile or entity does not exist."""
    http_status = 404
    kind = "not_found"
