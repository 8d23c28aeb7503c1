"""Shared error taxonomy for the marketplace.

Every domain module derives its own exceptions from these classes so the API
layer can map any of them to an HTTP status without knowing the module.
"""

class MarketplaceError(Exception):
    """Base exception for marketplace operations."""
    status_code = 500

    def __init__(self, message: str = "Internal Server Error"):
        super().__init__(message)
        self.message = message

class ValidationError(MarketplaceError):
    """Raised when input fails validation."""
    status_code = 400

class AuthError(MarketplaceError):
    """Raised when a caller cannot be authenticated."""
    status_code = 401

class ForbiddenError(MarketplaceError):
    """Raised when an authenticated caller lacks permission."""
    status_code = 403

class NotFoundError(MarketplaceError):
    """Raised when a referenced record does not exist."""
    status_code = 404

class ConflictError(MarketplaceError):
    """Raised when a request conflicts with the current state of a record."""
    status_code = 400

class InternalError(MarketplaceError):
    """Raised for unexpected failures."""
    status_code = 500

__all__ = [
    'MarketplaceError',
    'ValidationError',
    'AuthError',
    'ForbiddenError',
    'NotFoundError',
    'ConflictError',
    'InternalError'
]
