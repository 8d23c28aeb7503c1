"""Database exceptions."""

from errors import InternalError

class DatabaseError(InternalError):
    """Raised when a database operation fails unexpectedly."""
    pass

class DatabaseSchemaError(DatabaseError):
    """Raised when the schema cannot be loaded or migrated."""
    pass
