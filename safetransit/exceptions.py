"""Base exception classes for Safe Transit error handling"""


class SafeTransitException(Exception):
    """Base exception for all Safe Transit errors"""

    status_code = 500

    def __init__(self, message: str, details: dict = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class ValidationError(SafeTransitException):
    """Raised when caller input is malformed or out of range"""

    status_code = 400

    def __init__(self, message: str, field: str = None, details: dict = None):
        details = dict(details or {})
        if field is not None:
            details.setdefault("field", field)
        self.field = field
        super().__init__(message, details)


class InvalidTransitionError(ValidationError):
    """Raised when a report status change is not allowed from its current status"""
    pass


class AuthenticationError(SafeTransitException):
    """Raised when credentials are missing or invalid"""

    status_code = 401


class AuthorizationError(SafeTransitException):
    """Raised when the caller lacks the required role"""

    status_code = 403


class CsrfError(AuthorizationError):
    """Raised when a supplied CSRF token does not validate"""
    pass


class NotFoundError(SafeTransitException):
    """Raised when a report or alert does not exist"""

    status_code = 404


class RateLimitExceededError(SafeTransitException):
    """Raised when a client exceeds the report submission limit"""

    status_code = 429


class DecryptionError(SafeTransitException):
    """Raised when an encrypted field cannot be decrypted"""
    pass


class TamperError(DecryptionError):
    """Raised when the authentication tag of an encrypted blob does not verify"""
    pass


class FormatError(TamperError):
    """Raised when an encrypted blob is structurally malformed"""
    pass


class PersistenceError(SafeTransitException):
    """Raised when a database operation fails and has been rolled back"""
    pass


class ConfigurationError(SafeTransitException):
    """Raised when configuration is invalid or missing"""
    pass
