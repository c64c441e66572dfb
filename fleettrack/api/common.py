"""Request helpers shared by the blueprints."""

import time
from datetime import datetime, timezone
from typing import Optional

from flask import current_app, request

from fleettrack.errors import ValidationError

EXTENSION_KEY = 'fleettrack'


def get_runtime():
    """The TrackerRuntime bound to the current app."""
    return current_app.extensions[EXTENSION_KEY]


def json_body() -> dict:
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError('JSON object body required')
    return data


def int_arg(
    source: dict,
    name: str,
    default: Optional[int],
    minimum: int,
    maximum: Optional[int] = None,
) -> Optional[int]:
    """Read an integer parameter and check it against its allowed range."""
    raw = source.get(name)
    if raw is None or raw == '':
        return default
    if isinstance(raw, bool):
        raise ValidationError(f'{name} must be an integer')
    try:
        value = int(raw)
    except (TypeError, ValueError):
        raise ValidationError(f'{name} must be an integer')

    if value < minimum or (maximum is not None and value > maximum):
        bounds = f'between {minimum} and {maximum}' if maximum is not None else f'at least {minimum}'
        raise ValidationError(f'{name} must be {bounds}')
    return value


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


def elapsed_ms(start_time: float) -> float:
    return round((time.perf_counter() - start_time) * 1000, 2)
