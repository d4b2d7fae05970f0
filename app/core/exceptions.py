"""Error taxonomy shared by the rule engines.

Services raise subclasses of these; the API layer maps each family to a
status code. Business-rule failures are not retryable with the same input.
"""

from typing import Any, Optional


class DomainError(Exception):
    """Base exception for all CareFlow domain errors."""

    status_code = 500

    def __init__(
        self,
        message: str,
        error_code: str = "DOMAIN_ERROR",
        details: Optional[dict[str, Any]] = None,
    ):
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        super().__init__(self.message)


class NotFoundError(DomainError):
    """Referenced session, booking, medication or patient does not exist."""

    status_code = 404

    def __init__(self, message: str, error_code: str = "NOT_FOUND", **kwargs):
        super().__init__(message, error_code=error_code, **kwargs)


class BadRequestError(DomainError):
    """Request cannot be served in the current state of the target."""

    status_code = 400

    def __init__(self, message: str, error_code: str = "BAD_REQUEST", **kwargs):
        super().__init__(message, error_code=error_code, **kwargs)


class ValidationError(BadRequestError):
    """Malformed input (non-positive quantity, unparseable date)."""

    status_code = 422

    def __init__(self, message: str, error_code: str = "VALIDATION_ERROR", **kwargs):
        super().__init__(message, error_code=error_code, **kwargs)


class ConflictError(DomainError):
    """Business-rule violation against current ledger state."""

    status_code = 409

    def __init__(self, message: str, error_code: str = "CONFLICT", **kwargs):
        super().__init__(message, error_code=error_code, **kwargs)


class ConfigurationError(DomainError):
    """Deployment configuration does not allow serving the request."""

    def __init__(self, message: str, error_code: str = "CONFIGURATION_ERROR", **kwargs):
        super().__init__(message, error_code=error_code, **kwargs)
