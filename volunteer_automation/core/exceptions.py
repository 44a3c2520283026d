"""Custom exception types for domain and API layers."""


class AppError(Exception):
    """Base app exception."""


class ValidationError(AppError):
    """Validation failure for user input or generated artifacts."""


class TriggerConfigError(ValidationError):
    """A trigger definition that could never fire as written."""


class IntegrationError(AppError):
    """External integration call failure."""


class WorkflowNotFoundError(AppError):
    """No workflow exists with the requested id."""


class WorkflowPermissionError(AppError):
    """The caller may not manage this workflow."""
