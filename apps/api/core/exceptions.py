"""
Custom exception classes and error handling.

Two layers:
- Domain errors raised by the membership services (no HTTP knowledge).
- API exceptions with a consistent response structure, plus the mapping
  from the former to the latter.
"""
from fastapi import HTTPException, status
from typing import Optional, Dict, Any, List


# --- Domain errors ---------------------------------------------------------


class PortalError(Exception):
    """Base class for membership domain errors. ``message`` is user-facing."""

    default_message = "Something went wrong"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class TransientStoreError(PortalError):
    """Profile store unreachable, timed out, or failed to evaluate a policy."""

    default_message = "Profile store temporarily unavailable"


class RecursivePolicyError(TransientStoreError):
    """Row-level security policy recursed while evaluating a profile query."""

    default_message = "Profile store policy evaluation failed"


class UniqueViolation(PortalError):
    """Insert or upsert collided with an existing unique key."""

    default_message = "A profile with this key already exists"


class ProfileNotFound(PortalError):
    default_message = "Profile not found"


class IdentityError(PortalError):
    """Bad credentials, duplicate registration, failed password update."""

    default_message = "Authentication failed"


class PasswordPolicyError(IdentityError):
    def __init__(self, errors: List[str]):
        self.errors = list(errors)
        super().__init__("; ".join(self.errors) or "Password does not meet requirements")


class DuplicateRequest(PortalError):
    default_message = "A membership request for this email already exists"


class DisabledAccountError(PortalError):
    default_message = "Your account has been disabled"


class BootstrapError(PortalError):
    default_message = "Administrator bootstrap failed"


class AuthorizationError(PortalError):
    default_message = "Administrator rights required"


class SelfModificationError(PortalError):
    default_message = "You cannot change your own account"


class InvalidTransition(PortalError):
    default_message = "Status change not allowed"


# --- API exceptions --------------------------------------------------------


class APIException(HTTPException):
    """Base API exception with consistent structure."""

    def __init__(
        self,
        status_code: int,
        detail: str,
        error_code: Optional[str] = None,
        headers: Optional[Dict[str, Any]] = None
    ):
        super().__init__(status_code=status_code, detail=detail, headers=headers)
        self.error_code = error_code


class NotFoundError(APIException):
    """Resource not found."""

    def __init__(self, resource: str, identifier: str):
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"{resource} not found: {identifier}",
            error_code="NOT_FOUND"
        )


class ValidationError(APIException):
    """Validation error."""

    def __init__(self, detail: str, field: Optional[str] = None):
        error_code = f"VALIDATION_ERROR_{field.upper()}" if field else "VALIDATION_ERROR"
        super().__init__(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=detail,
            error_code=error_code
        )


class UnauthorizedError(APIException):
    """Authentication required."""

    def __init__(self, detail: str = "Authentication required"):
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=detail,
            error_code="UNAUTHORIZED",
            headers={"WWW-Authenticate": "Bearer"}
        )


class ForbiddenError(APIException):
    """Access denied."""

    def __init__(self, detail: str = "Access denied", error_code: str = "FORBIDDEN"):
        super().__init__(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=detail,
            error_code=error_code
        )


class ConflictError(APIException):
    """Resource conflict (e.g., duplicate entry)."""

    def __init__(self, detail: str, error_code: str = "CONFLICT"):
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            detail=detail,
            error_code=error_code
        )


class ServiceUnavailableError(APIException):
    def __init__(self, detail: str = "Service temporarily unavailable"):
        super().__init__(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=detail,
            error_code="UNAVAILABLE"
        )


def to_api_exception(err: PortalError) -> APIException:
    """Translate a domain error into the API error it surfaces as."""
    if isinstance(err, PasswordPolicyError):
        return ValidationError(err.message, field="password")
    if isinstance(err, IdentityError):
        return UnauthorizedError(err.message)
    if isinstance(err, DuplicateRequest):
        return ConflictError(err.message, error_code="DUPLICATE_REQUEST")
    if isinstance(err, UniqueViolation):
        return ConflictError(err.message)
    if isinstance(err, DisabledAccountError):
        return ForbiddenError(err.message, error_code="ACCOUNT_DISABLED")
    if isinstance(err, AuthorizationError):
        return ForbiddenError(err.message)
    if isinstance(err, ProfileNotFound):
        return NotFoundError("Profile", err.message)
    if isinstance(err, (SelfModificationError, InvalidTransition)):
        return APIException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=err.message,
            error_code=type(err).__name__.upper(),
        )
    if isinstance(err, TransientStoreError):
        return ServiceUnavailableError(err.message)
    return APIException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=err.message,
        error_code="INTERNAL_ERROR",
    )
