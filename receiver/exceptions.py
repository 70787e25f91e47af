"""
Custom exceptions for the telematics tracker.

This module provides a hierarchy of exceptions for better error handling
and more informative error messages throughout the application.
"""


class TelematicsTrackerError(Exception):
    """Base exception for all telematics tracker errors."""

    def __init__(self, message: str, details: dict = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self):
        if self.details:
            return f"{self.message} - {self.details}"
        return self.message


class DatabaseError(TelematicsTrackerError):
    """Database operation failed."""

    pass


class RemoteAPIError(TelematicsTrackerError):
    """Remote telematics API request failed."""

    def __init__(self, message: str, service: str = "telematics", status_code: int = None):
        details = {'service': service}
        if status_code:
            details['status_code'] = status_code
        super().__init__(message, details)
        self.service = service
        self.status_code = status_code


class RateLimitedError(RemoteAPIError):
    """Remote API refused the request because of rate limiting."""

    def __init__(self, message: str = "Too many requests", retry_after: float = None):
        super().__init__(message, status_code=429)
        self.retry_after = retry_after
        if retry_after is not None:
            self.details['retry_after'] = retry_after


class AuthenticationError(RemoteAPIError):
    """Authentication with the remote API failed or could not be refreshed."""

    def __init__(self, message: str, account_id: int = None):
        super().__init__(message, status_code=401)
        self.account_id = account_id
        if account_id:
            self.details['account_id'] = account_id


class ConfigurationError(TelematicsTrackerError):
    """Invalid or missing configuration."""

    def __init__(self, message: str, config_key: str = None):
        details = {}
        if config_key:
            details['config_key'] = config_key
        super().__init__(message, details)
        self.config_key = config_key
