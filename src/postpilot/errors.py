"""Error taxonomy for the session core.

Learn: Every failure the codec, the credential store and the session manager
can produce is one of these classes. Each carries the HTTP status it maps to
and a *public* message; the precise reason (expired vs forged vs reused...)
stays on the exception for logging and is never sent to the client, except
for the coarse "token expired" hint clients need to decide between
refreshing and logging in again.
"""

from enum import Enum
from typing import Optional


class AuthFailure(str, Enum):
    """Why an authentication attempt was rejected."""

    MISSING_TOKEN = "missing_token"
    MALFORMED = "malformed"
    EXPIRED = "expired"
    SIGNATURE_INVALID = "signature_invalid"
    REUSED = "reused"
    PRINCIPAL_GONE = "principal_gone"
    INVALID = "invalid"
    BAD_CREDENTIALS = "bad_credentials"


class MissingResource(str, Enum):
    SESSION = "session"
    PRINCIPAL = "principal"


class ConflictKind(str, Enum):
    ALREADY_ROTATED = "already_rotated"
    EMAIL_TAKEN = "email_taken"


class SessionCoreError(Exception):
    """Base class. Subclasses set status_code and public_message."""

    status_code: int = 500
    code: str = "INTERNAL_ERROR"
    public_message: str = "Something went wrong"
    retryable: bool = False

    def __init__(self, detail: Optional[str] = None):
        self.detail = detail or self.public_message
        super().__init__(self.detail)


class UnauthorizedError(SessionCoreError):
    """Any authentication failure. Always a uniform 401 to the caller."""

    status_code = 401
    code = "UNAUTHORIZED"
    public_message = "Not authorized"

    def __init__(self, reason: AuthFailure, detail: Optional[str] = None):
        self.reason = reason
        super().__init__(detail or f"authentication failed: {reason.value}")
        if reason is AuthFailure.EXPIRED:
            self.code = "TOKEN_EXPIRED"


class NotFoundError(SessionCoreError):
    status_code = 404
    code = "NOT_FOUND"

    def __init__(self, resource: MissingResource, detail: Optional[str] = None):
        self.resource = resource
        self.public_message = (
            "Session not found" if resource is MissingResource.SESSION else "User not found"
        )
        super().__init__(detail or self.public_message)


class ConflictError(SessionCoreError):
    """A state conflict.

    ALREADY_ROTATED is an authentication failure from the caller's point of
    view (the refresh token it holds lost a race) and renders as 401.
    EMAIL_TAKEN renders as 409.
    """

    def __init__(self, kind: ConflictKind, detail: Optional[str] = None):
        self.kind = kind
        if kind is ConflictKind.ALREADY_ROTATED:
            self.status_code = 401
            self.code = "UNAUTHORIZED"
            self.public_message = "Not authorized"
        else:
            self.status_code = 409
            self.code = "CONFLICT"
            self.public_message = "Email already registered"
        super().__init__(detail or f"conflict: {kind.value}")


class StoreUnavailableError(SessionCoreError):
    """The credential store timed out or could not be reached.

    Retryable by the client. Never conflated with a bad credential.
    """

    status_code = 500
    code = "STORE_UNAVAILABLE"
    public_message = "Service temporarily unavailable, please retry"
    retryable = True


class BadInputError(SessionCoreError):
    status_code = 400
    code = "BAD_INPUT"
    public_message = "Invalid input"

    def __init__(self, detail: Optional[str] = None):
        if detail:
            self.public_message = detail
        super().__init__(detail)
