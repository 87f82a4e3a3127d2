"""
Typed failures raised by the workflow core.
Each carries the HTTP status code the API handlers answer with.
"""


class WorkflowError(Exception):
    """Base exception for workflow rule violations."""
    status_code = 500
    default_message = 'Workflow error'

    def __init__(self, message: str = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class NotFoundError(WorkflowError):
    """Raised when a project or task does not exist."""
    status_code = 404
    default_message = 'Not found'


class UnauthorizedError(WorkflowError):
    """Raised when the actor may not act on the project or task."""
    status_code = 403
    default_message = 'Unauthorized'


class IncompleteLevelError(WorkflowError):
    """Raised when the current level still has open tasks."""
    status_code = 400
    default_message = 'Complete all tasks first'


class ValidationError(WorkflowError):
    """Raised when input data is invalid or violates workflow rules."""
    status_code = 400
    default_message = 'Invalid request'


class ConflictError(WorkflowError):
    """Raised when a conditional write loses against a concurrent writer."""
    status_code = 409
    default_message = 'The record was changed by another request'


class LockUnavailableError(ConflictError):
    default_message = 'Project is being processed by another request'
