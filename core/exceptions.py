"""
Centralized exception hierarchy for domain-specific errors.

Dependency failures are retried and then degraded by the coverage
pipeline, so only configuration and storage errors are expected to reach
callers of ``process_activity``.
"""


class StreetKeeperError(Exception):
    """Base exception for all application-specific errors."""

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class ValidationError(StreetKeeperError):
    """Exception raised when input data validation fails."""


class ConfigurationError(StreetKeeperError):
    """Exception raised when settings are missing or inconsistent."""


class ExternalServiceError(StreetKeeperError):
    """Exception raised when service calls fail."""


class RateLimitError(ExternalServiceError):
    """Exception raised when rate limits are exceeded."""


class StorageError(StreetKeeperError):
    """Exception raised when durable storage cannot be used."""


StreetKeeperException = StreetKeeperError
ValidationException = ValidationError
ExternalServiceException = ExternalServiceError
RateLimitException = RateLimitError
