"""
Exception Classes - Strongly typed exception hierarchy.

Business denials are AccessDecision values, never exceptions. Exceptions are
reserved for infrastructure failures and caller errors.
"""

from uuid import UUID


class EntitlementError(Exception):
    """Base exception for all entitlement errors."""

    pass


class CollaboratorUnavailableError(EntitlementError):
    """Raised when a backing store cannot answer (unreachable, timed out, broken query)."""

    def __init__(self, collaborator: str, message: str) -> None:
        self.collaborator = collaborator
        self.message = message
        super().__init__(f"{collaborator} unavailable: {message}")


class ResourceNotFoundError(EntitlementError):
    """Raised when a non-decision lookup targets a missing resource."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class QuotaExceededError(EntitlementError):
    """Raised when a caller insists on an exception for a quota denial."""

    def __init__(self, user_id: UUID, limit: int, used: int) -> None:
        self.user_id = user_id
        self.limit = limit
        self.used = used
        super().__init__(f"Monthly download limit of {limit} reached for user {user_id} ({used} used)")


class DataIntegrityError(EntitlementError):
    """Raised when a catalog invariant is violated."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Data integrity error: {message}")


class AuthenticationError(EntitlementError):
    """Raised when authentication fails (invalid API key, invalid credentials)."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Authentication failed: {message}")


class AuthorizationError(EntitlementError):
    """Raised when a caller lacks required permissions."""

    def __init__(self, required_permission: str) -> None:
        self.required_permission = required_permission
        super().__init__(f"Authorization failed: missing permission {required_permission}")
