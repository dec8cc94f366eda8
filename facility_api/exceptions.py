class ApplicationError(Exception):
    """Base class for application-specific errors."""
    pass

class InvalidInputError(ApplicationError):
    """Raised when caller-supplied data violates a precondition."""
    pass

class LocationNotFoundError(ApplicationError):
    """Raised when a location identifier does not resolve."""
    pass

class ConstraintViolationError(ApplicationError):
    """Raised when a location cannot be deleted because patients are assigned to it."""
    def __init__(self, message, location_name=None):
        super().__init__(message)
        self.location_name = location_name

class InvariantViolationError(ApplicationError):
    """Raised when stored data breaks a structural invariant (e.g. the root is missing)."""
    pass

class ProfileError(ApplicationError):
    """Raised when a profile operation fails; carries the command output if any."""
    def __init__(self, message, output=""):
        super().__init__(message)
        self.output = output

class ProfileNotFoundError(ApplicationError):
    """Raised when a profile file does not exist."""
    pass

class DatabaseError(ApplicationError):
    """Raised for general database-related errors not specifically handled."""
    def __init__(self, message="A database error occurred.", original_exception=None):
        super().__init__(message)
        self.original_exception = original_exception
