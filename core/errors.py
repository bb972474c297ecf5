"""
core/errors.py -- Closed error taxonomy shared by every layer.

Every failure the service reports on purpose is an AppError subclass with a
fixed machine-readable code, a human message and an HTTP status. The kind
attribute comes from the closed ErrorKind enum; the HTTP boundary in
api/main.py maps kinds to log levels and never inspects ad hoc attributes.

Workflow code raises the concrete subclasses at the point of detection and
lets them propagate unchanged. Anything that is not an AppError is an
unexpected fault and is handled once by the catch-all handler.

Layer rule: core/ is the kernel. No imports from api/, auth/, or notes/.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class ErrorKind(str, Enum):
    validation = "validation"
    conflict = "conflict"
    authentication = "authentication"
    authorization = "authorization"
    not_found = "not_found"
    dependency = "dependency"
    internal = "internal"


@dataclass(frozen=True)
class FieldError:
    """One field-level validation failure. Never carries the rejected value."""

    field: str
    message: str


class AppError(Exception):
    """Base class for every classified error.

    Subclasses set kind, code, status_code and default_message as class
    attributes. Instances may override the message and status for a single
    raise site (e.g. the 400 variants of AuthenticationError).
    """

    kind: ErrorKind = ErrorKind.internal
    code: str = "INTERNAL_ERROR"
    status_code: int = 500
    default_message: str = "An unexpected error occurred."

    def __init__(
        self,
        message: str | None = None,
        *,
        status_code: int | None = None,
        errors: list[FieldError] | None = None,
    ) -> None:
        self.message = message or self.default_message
        if status_code is not None:
            self.status_code = status_code
        self.errors = errors or []
        super().__init__(self.message)


# ---------------------------------------------------------------------------
# Kinds
# ---------------------------------------------------------------------------


class ValidationError(AppError):
    kind = ErrorKind.validation
    code = "VALIDATION_ERROR"
    status_code = 400
    default_message = "Validation failed."


class ConflictError(AppError):
    kind = ErrorKind.conflict
    code = "CONFLICT"
    status_code = 400
    default_message = "The request conflicts with existing data."


class AuthenticationError(AppError):
    kind = ErrorKind.authentication
    code = "AUTHENTICATION_FAILED"
    status_code = 401
    default_message = "Authentication failed."


class AuthorizationError(AppError):
    kind = ErrorKind.authorization
    code = "FORBIDDEN"
    status_code = 403
    default_message = "Access denied."


class NotFoundError(AppError):
    kind = ErrorKind.not_found
    code = "NOT_FOUND"
    status_code = 404
    default_message = "Resource not found."


class DependencyError(AppError):
    kind = ErrorKind.dependency
    code = "DEPENDENCY_FAILED"
    status_code = 500
    default_message = "An upstream service is unavailable."


class InternalError(AppError):
    kind = ErrorKind.internal


# ---------------------------------------------------------------------------
# Accounts and registration
# ---------------------------------------------------------------------------


class UserExists(ConflictError):
    code = "USER_EXISTS"
    default_message = "User already exists with this email."


class DuplicateEmail(ConflictError):
    code = "DUPLICATE_EMAIL"
    default_message = "An account with this email already exists."


class EmailAlreadyExists(ConflictError):
    code = "EMAIL_ALREADY_EXISTS"
    default_message = "Email is already in use."


class AlreadyVerified(ConflictError):
    code = "ALREADY_VERIFIED"
    default_message = "User is already verified."


class InvalidAccountState(InternalError):
    code = "INVALID_ACCOUNT_STATE"
    default_message = "An account needs a password or a linked identity provider."


class UserNotFound(NotFoundError):
    code = "USER_NOT_FOUND"
    default_message = "User not found."


class NoFieldsToUpdate(ValidationError):
    code = "NO_FIELDS_TO_UPDATE"
    default_message = "No fields to update."


# ---------------------------------------------------------------------------
# Credentials
# ---------------------------------------------------------------------------


class InvalidOTP(AuthenticationError):
    code = "INVALID_OTP"
    status_code = 400
    default_message = "Invalid or expired OTP."


class InvalidCredentials(AuthenticationError):
    code = "INVALID_CREDENTIALS"
    status_code = 401
    default_message = "Invalid email or password."


class GoogleLoginRequired(AuthenticationError):
    code = "GOOGLE_LOGIN_REQUIRED"
    status_code = 400
    default_message = "Please login with Google."


class EmailNotVerified(AuthenticationError):
    code = "EMAIL_NOT_VERIFIED"
    status_code = 400
    default_message = "Please verify your email first."


class InvalidFederatedToken(AuthenticationError):
    code = "INVALID_FEDERATED_TOKEN"
    status_code = 400
    default_message = "Invalid Google token."


class IncompleteFederatedProfile(AuthenticationError):
    code = "INCOMPLETE_FEDERATED_PROFILE"
    status_code = 400
    default_message = "Incomplete Google profile."


class FederatedIdentityMismatch(AuthenticationError):
    code = "FEDERATED_IDENTITY_MISMATCH"
    status_code = 400
    default_message = "This account is linked to a different Google identity."


class GoogleAccountNoPassword(AuthenticationError):
    code = "GOOGLE_ACCOUNT_NO_PASSWORD"
    status_code = 400
    default_message = "Cannot change password for Google-authenticated account."


class InvalidCurrentPassword(AuthenticationError):
    code = "INVALID_CURRENT_PASSWORD"
    status_code = 400
    default_message = "Current password is incorrect."


class SamePassword(ValidationError):
    code = "SAME_PASSWORD"
    default_message = "New password must be different from current password."


class PasswordRequired(ValidationError):
    code = "PASSWORD_REQUIRED"
    default_message = "Password is required to delete account."


class InvalidPassword(AuthenticationError):
    code = "INVALID_PASSWORD"
    status_code = 400
    default_message = "Invalid password."


# ---------------------------------------------------------------------------
# Bearer tokens
# ---------------------------------------------------------------------------


class MissingToken(AuthorizationError):
    code = "MISSING_TOKEN"
    status_code = 401
    default_message = "Access token required."


class TokenExpired(AuthorizationError):
    code = "TOKEN_EXPIRED"
    default_message = "Token has expired."


class InvalidToken(AuthorizationError):
    code = "INVALID_TOKEN"
    default_message = "Invalid or expired token."


# ---------------------------------------------------------------------------
# Upstream dependencies
# ---------------------------------------------------------------------------


class EmailSendFailed(DependencyError):
    code = "EMAIL_SEND_FAILED"
    default_message = "Failed to send email."


class FederatedProviderUnavailable(DependencyError):
    code = "FEDERATED_PROVIDER_UNAVAILABLE"
    default_message = "Google authentication is temporarily unavailable."


class FederatedLoginDisabled(DependencyError):
    code = "FEDERATED_LOGIN_DISABLED"
    default_message = "Google login is not configured on this server."


# ---------------------------------------------------------------------------
# Notes
# ---------------------------------------------------------------------------


class NoteNotFound(NotFoundError):
    code = "NOTE_NOT_FOUND"
    default_message = "Note not found."


class SearchQueryRequired(ValidationError):
    code = "SEARCH_QUERY_REQUIRED"
    default_message = "Search query is required."
