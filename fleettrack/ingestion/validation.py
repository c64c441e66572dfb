"""
Input validation for location updates and tracking requests.

Every check raises ValidationError before anything is written.
"""

import math
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional

from fleettrack.errors import ValidationError

VEHICLE_ID_PATTERN = re.compile(r'^[A-Za-z0-9-]{1,20}$')
DRIVER_LABEL_PATTERN = re.compile(r'^[A-Za-z ]{2,50}$')

# 9999-12-31T23:59:59Z
MAX_EPOCH_SECONDS = 253402300799.0


@dataclass(frozen=True)
class LocationInput:
    """A validated location update, not yet written."""
    vehicle_id: str
    latitude: float
    longitude: float
    accuracy: float
    observed_at: Optional[float]


def _to_float(value: Any, name: str) -> float:
    # bool is an int subclass; "true" is not a coordinate
    if value is None or isinstance(value, bool):
        raise ValidationError(f'{name} is required and must be numeric')
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f'{name} must be numeric')
    if not math.isfinite(number):
        raise ValidationError(f'{name} must be a finite number')
    return number


def require_vehicle_id(value: Any) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError('Vehicle id is required')
    return value.strip()


def validate_vehicle_id(value: Any) -> str:
    """Vehicle ids for new vehicles: 1-20 letters, digits or hyphens."""
    vehicle_id = require_vehicle_id(value)
    if not VEHICLE_ID_PATTERN.match(vehicle_id):
        raise ValidationError(
            'Vehicle id must be 1-20 characters of letters, numbers and hyphens'
        )
    return vehicle_id


def validate_driver_label(value: Any) -> Optional[str]:
    if value is None or value == '':
        return None
    if not isinstance(value, str) or not DRIVER_LABEL_PATTERN.match(value.strip()):
        raise ValidationError('Driver label must be 2-50 letters and spaces')
    return value.strip()


def parse_latitude(value: Any) -> float:
    latitude = _to_float(value, 'Latitude')
    if abs(latitude) > 90:
        raise ValidationError('Latitude must be between -90 and 90')
    return latitude


def parse_longitude(value: Any) -> float:
    longitude = _to_float(value, 'Longitude')
    if abs(longitude) > 180:
        raise ValidationError('Longitude must be between -180 and 180')
    return longitude


def parse_accuracy(value: Any) -> float:
    if value is None:
        return 0.0
    accuracy = _to_float(value, 'Accuracy')
    if accuracy < 0:
        raise ValidationError('Accuracy must be a positive number')
    return accuracy


def _check_epoch_range(epoch: float) -> float:
    # datetime can't render past 9999-12-31; millisecond epochs fall beyond it
    if epoch < 0 or epoch > MAX_EPOCH_SECONDS:
        raise ValidationError('Timestamp must be epoch seconds between 1970 and 9999')
    return epoch


def parse_observed_at(value: Any) -> Optional[float]:
    """
    Normalize a client timestamp to epoch seconds.

    Accepts epoch numbers, datetimes and ISO 8601 strings. Naive values
    are taken as UTC. None means "stamp it on the server".
    """
    if value is None or value == '':
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, (int, float)) and not isinstance(value, bool):
        return _check_epoch_range(_to_float(value, 'Timestamp'))
    elif isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.strip().replace('Z', '+00:00'))
        except ValueError:
            raise ValidationError('Timestamp must be a valid ISO 8601 date')
    else:
        raise ValidationError('Timestamp must be a valid ISO 8601 date')

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return _check_epoch_range(parsed.timestamp())


def validate_location(
    vehicle_id: Any,
    latitude: Any,
    longitude: Any,
    accuracy: Any = None,
    observed_at: Any = None,
) -> LocationInput:
    return LocationInput(
        vehicle_id=require_vehicle_id(vehicle_id),
        latitude=parse_latitude(latitude),
        longitude=parse_longitude(longitude),
        accuracy=parse_accuracy(accuracy),
        observed_at=parse_observed_at(observed_at),
    )


def validate_location_entry(entry: Any) -> LocationInput:
    """Validate one element of a batch request."""
    if not isinstance(entry, dict):
        raise ValidationError('Location entry must be an object')
    return validate_location(
        entry.get('vehicle_id'),
        entry.get('latitude'),
        entry.get('longitude'),
        entry.get('accuracy'),
        entry.get('observed_at', entry.get('timestamp')),
    )
