"""Error taxonomy shared by the session bridge, the store and the handlers.

Each error carries a short, non-technical ``message`` that is safe to send to
the initiating client. Anything more detailed belongs in the server log.
"""

from __future__ import annotations


class RealtimeError(Exception):
    default_message = "Request failed"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class AuthenticationRejected(RealtimeError):
    """Handshake has no usable credential. Ends the connection attempt."""

    default_message = "unauthorized"


class AuthorizationDenied(RealtimeError):
    default_message = "Access denied"


class ValidationFailed(RealtimeError):
    default_message = "Invalid payload"


class NotFound(RealtimeError):
    default_message = "Not found"


class CollaboratorFailure(RealtimeError):
    """The persistence layer errored; the database exception is chained."""

    default_message = "Something went wrong, please try again"
