"""
Application error taxonomy.

Every failure a caller can observe is an ``AppError`` subclass carrying the HTTP
status and the machine-readable error code rendered by the API layer.
"""

from typing import Any, Optional


class AppError(Exception):
    """Base class for errors surfaced to API callers."""

    status_code = 500
    code = "internal_error"
    default_message = "Internal Server Error"

    def __init__(self, message: Optional[str] = None, details: Any = None):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message
        self.details = details

    def to_dict(self) -> dict:
        body = {"ok": False, "error": self.code, "message": self.message}
        if self.details is not None:
            body["details"] = self.details
        return body


# --- Input validation ---


class InvalidRequest(AppError):
    status_code = 400
    code = "invalid_request"
    default_message = "Invalid request"


class WeakPassword(InvalidRequest):
    code = "weak_password"
    default_message = "Password must be at least 8 characters long"


class CurrentPasswordRequired(InvalidRequest):
    code = "current_password_required"
    default_message = "Current password is required"


class CurrentPasswordInvalid(InvalidRequest):
    code = "current_password_invalid"
    default_message = "Current password is incorrect"


class InvalidContent(InvalidRequest):
    code = "invalid_content"
    default_message = "Message content must not be empty"


class InvalidSender(InvalidRequest):
    code = "invalid_sender"
    default_message = "Sender must be one of: user, bot, system"


class InvalidSenderUser(InvalidRequest):
    code = "invalid_sender_user"
    default_message = "Sender user is not a participant of this conversation"


class InvalidLatency(InvalidRequest):
    code = "invalid_latency"
    default_message = "Latency must be a non-negative number"


class InvalidRating(InvalidRequest):
    code = "invalid_rating"
    default_message = "Rating must be an integer between 1 and 5"


# --- Authentication / authorization ---


class AuthenticationRequired(AppError):
    status_code = 401
    code = "authentication_required"
    default_message = "Authentication required"


class UserNotFound(AppError):
    status_code = 401
    code = "user_not_found"
    default_message = "User does not exist"


class InvalidCredentials(AppError):
    status_code = 401
    code = "invalid_credentials"
    default_message = "Incorrect email or password"


class NoLocalPassword(AppError):
    status_code = 401
    code = "no_local_password"
    default_message = "This account has no local password. Sign in with Google or set one."


class CodeInvalidOrExpired(AppError):
    status_code = 401
    code = "code_invalid_or_expired"
    default_message = "Verification code is invalid or has expired"


class AccountInactive(AppError):
    status_code = 403
    code = "account_inactive"
    default_message = "Account is inactive"


class Forbidden(AppError):
    status_code = 403
    code = "forbidden"
    default_message = "Forbidden"

    def __init__(self, role_name: str):
        super().__init__(f"Forbidden: role '{role_name}' required")
        self.role_name = role_name


# --- State conflicts / lookups ---


class EmailTaken(AppError):
    status_code = 409
    code = "email_taken"
    default_message = "A user with this email already exists"


class ConversationNotFound(AppError):
    status_code = 404
    code = "conversation_not_found"
    default_message = "Conversation not found"


class MessageNotFound(AppError):
    status_code = 404
    code = "message_not_found"
    default_message = "Message not found"


class TargetUserNotFound(AppError):
    status_code = 404
    code = "user_not_found"
    default_message = "User not found"


# --- Downstream ---


class RagUnavailable(AppError):
    status_code = 502
    code = "rag_unavailable"
    default_message = "The answering service is unavailable"


class OAuthNotConfigured(AppError):
    status_code = 503
    code = "oauth_not_configured"
    default_message = "Google sign-in is not configured"
