"""Domain exceptions and their HTTP status codes

Services raise these; the handler registered in ``roomgate.main`` renders them
as ``{"error": message}`` with the matching status code.
"""


class RoomGateError(Exception):
    """Base class for errors that map to an HTTP response"""
    status_code = 500
    default_message = "Internal server error"

    def __init__(self, message: str = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(RoomGateError):
    """Malformed or missing input"""
    status_code = 400
    default_message = "Invalid request"


class AuthenticationRequired(RoomGateError):
    status_code = 401
    default_message = "Authentication required"


class InvalidCredentials(RoomGateError):
    """Room password or access token did not match an active purchase"""
    status_code = 401
    default_message = "Invalid credentials"


class Forbidden(RoomGateError):
    status_code = 403
    default_message = "Forbidden"


class NotFound(RoomGateError):
    status_code = 404
    default_message = "Not found"


class InvalidStatusTransition(RoomGateError):
    """Purchase status cannot move away from a terminal state"""
    status_code = 409
    default_message = "Invalid purchase status transition"


class UpstreamFailure(RoomGateError):
    """An external service (commerce, media, identity) call failed"""
    status_code = 502
    default_message = "Upstream service failure"


class InternalError(RoomGateError):
    status_code = 500
    default_message = "Internal server error"


class AccountResolutionError(InternalError):
    """User lookup or creation failed (distinct from first-sight not-found)"""
    default_message = "Failed to resolve user account"
