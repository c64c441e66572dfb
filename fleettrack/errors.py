"""
Error taxonomy for FleetTrack.

Every error a caller can observe carries a stable ``kind`` tag and the
HTTP status class the API layer maps it to.
"""

from datetime import datetime, timezone


class TrackerError(Exception):
    """Base class for all reportable tracking errors."""

    kind = 'error'
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {
            'error': self.kind,
            'message': self.message,
            'timestamp': datetime.now(timezone.utc).isoformat(),
        }


class ValidationError(TrackerError):
    """Malformed or out-of-range input. No side effects were made."""
    kind = 'validation_error'
    status_code = 400


class NotFoundError(TrackerError):
    """Unknown vehicle (or no data for it)."""
    kind = 'not_found'
    status_code = 404


class StateError(TrackerError):
    """Vehicle is known but not in a state that permits the operation."""
    kind = 'state_error'
    status_code = 409


class CapacityError(TrackerError):
    """Connection pool exhausted or acquire timed out. Safe to retry later."""
    kind = 'capacity_error'
    status_code = 503


class StorageError(TrackerError):
    """Persistence failure after retries were exhausted."""
    kind = 'storage_error'
    status_code = 500
