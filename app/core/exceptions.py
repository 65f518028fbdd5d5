"""
Error taxonomy for the maintenance request lifecycle.

Every exception here is raised before any mutation is persisted, so a
caller that catches one can rely on the stored request being untouched.
"""

from typing import Optional


class MaintenanceError(Exception):
    """Base class for all lifecycle errors"""

    status_code: int = 400

    def __init__(self, message: str, request_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.request_id = request_id


class NotFoundError(MaintenanceError):
    """Unknown request id"""

    status_code = 404


class ForbiddenTransitionError(MaintenanceError):
    """The acting role may not perform the action from the current status"""

    status_code = 403


class PreconditionFailedError(MaintenanceError):
    """An action-specific precondition does not hold (e.g. no completion photos)"""

    status_code = 409


class ValidationError(MaintenanceError):
    """Malformed input: empty required field, negative amount, ..."""

    status_code = 400


class InvalidAmountError(ValidationError):
    """Negative or non-numeric cost handed to the cost ledger"""


class IndexOutOfRangeError(MaintenanceError):
    """Staged material index does not exist"""

    status_code = 400


class ConcurrentModificationError(MaintenanceError):
    """The stored request changed between read and write"""

    status_code = 409
