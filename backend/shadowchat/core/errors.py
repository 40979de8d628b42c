# shadowchat/core/errors.py


class ChatError(Exception):
    """Base for every rejection reported back to the caller."""

    kind = "error"
    status_code = 400

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class AuthorizationError(ChatError):
    """Actor is not a member / owner for the requested operation."""

    kind = "authorization"
    status_code = 403


class ValidationError(ChatError):
    """Malformed request, bad reply target, or missing chat/message/user."""

    kind = "validation"
    status_code = 400


class StateConflict(ChatError):
    """Operation is valid but would break a chat invariant."""

    kind = "conflict"
    status_code = 409


class InfrastructureError(ChatError):
    """Persistence or transport failure."""

    kind = "infrastructure"
    status_code = 500
