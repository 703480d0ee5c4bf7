"""
Editorial Errors

Exception hierarchy shared by the authorization layer, the workflow engine
and the API. Each error carries a machine readable ``code`` and the HTTP
status the API renders it with.
"""

from typing import Any, Dict, List, Optional


class EditorialError(Exception):
    """Base class for all editorial core errors."""
    code = "error"
    status_code = 500

    def __init__(self, message: str = "", code: Optional[str] = None):
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__
        if code:
            self.code = code

    def to_dict(self) -> Dict[str, Any]:
        """Convert to API error body."""
        return {'error': self.code, 'message': self.message}


# Authorization

class AuthorizationError(EditorialError):
    """Raised when an authorization check denies the request."""
    code = "forbidden"
    status_code = 403


class Unauthenticated(AuthorizationError):
    """No actor, or the actor has no account (reason ``no_account``)."""
    code = "unauthenticated"
    status_code = 401


class AccountDeactivated(AuthorizationError):
    code = "deactivated"
    status_code = 403


class InsufficientRole(AuthorizationError):
    """Raised when the actor's role is not in the allowed set."""
    code = "insufficient_role"
    status_code = 403

    def __init__(self, message: str = "", required_roles: Optional[List[str]] = None):
        super().__init__(message)
        self.required_roles = list(required_roles or [])

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data['required_roles'] = self.required_roles
        return data


class AuthorizationUnavailable(AuthorizationError):
    """Identity store unreachable during a state-changing check."""
    code = "store_unavailable"
    status_code = 503


# Validation

class ValidationError(EditorialError):
    code = "validation_error"
    status_code = 400


class InvalidTransition(ValidationError):
    code = "invalid_transition"
    status_code = 409


class MalformedDOI(ValidationError):
    code = "malformed_doi"


class NotFound(ValidationError):
    code = "not_found"
    status_code = 404


# Concurrency

class ConcurrencyError(EditorialError):
    code = "conflict"
    status_code = 409


class ConcurrentModification(ConcurrencyError):
    """Paper status changed between read and write."""
    code = "concurrent_modification"


# Fatal operation errors; rendered to clients as a generic retry message

class FatalOperationError(EditorialError):
    code = "unavailable"
    status_code = 503

    def to_dict(self) -> Dict[str, Any]:
        return {'error': self.code, 'message': "Operation failed, please try again"}


class AllocationFailure(FatalOperationError):
    code = "doi_allocation_failed"


class AuditWriteFailure(FatalOperationError):
    code = "audit_write_failed"


class TransitionTimeout(FatalOperationError):
    code = "transition_timeout"


class StoreUnavailable(FatalOperationError):
    code = "store_unavailable"
