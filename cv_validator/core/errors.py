"""Exception hierarchy shared by the storage, AI and API layers."""


class CVValidatorError(Exception):
    """Base exception for the application."""
    pass


class InputError(CVValidatorError):
    """Raised for invalid client input (bad content type, oversize file, missing field)."""
    pass


class NotFoundError(CVValidatorError):
    """Raised when a stored file or a CV record does not exist."""
    pass


class ConfigurationError(CVValidatorError):
    """Raised when there are configuration issues."""
    pass


class DependencyError(CVValidatorError):
    """Raised when an external service (storage, model, database) fails."""
    pass


class StorageError(DependencyError):
    """Any object storage failure other than a missing key."""
    pass


class ContractViolation(DependencyError):
    """Raised when the model's output does not follow the expected JSON contract."""
    pass
