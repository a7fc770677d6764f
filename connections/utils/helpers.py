"""
Helper Functions

Contains utility functions used throughout the application.
"""

from datetime import datetime, timezone
from typing import Dict, Optional
from flask import request

INSTANCE_ID_HEADER = 'X-Instance-ID'


def utc_now() -> datetime:
    """Default clock: timezone-aware current time."""
    return datetime.now(timezone.utc)


def date_to_string(date: Optional[datetime]) -> Optional[str]:
    """ISO-8601 with zone offset; naive datetimes are taken as UTC."""
    if date is None:
        return None
    if date.tzinfo is None:
        date = date.replace(tzinfo=timezone.utc)
    return date.isoformat()


def string_to_date(date_string: Optional[str]) -> Optional[datetime]:
    if date_string is None:
        return None
    if not isinstance(date_string, str):
        raise ValueError(f"Timestamp must be a string: {date_string!r}")
    parsed = datetime.fromisoformat(date_string)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def get_user_identity(request_obj=None) -> Dict[str, str]:
    """Extract user identity information from request."""
    if request_obj is None:
        request_obj = request

    user_ip = request_obj.remote_addr or 'unknown'
    user = getattr(request_obj, 'user', None) or {}

    return {
        'user_ip': user_ip,
        'user_id': user.get('id'),
        'instance_id': get_instance_id(request_obj)
    }


def get_instance_id(request_obj=None) -> Optional[str]:
    """Per-device instance token supplied by the client host."""
    if request_obj is None:
        request_obj = request

    headers = getattr(request_obj, 'headers', None)
    if headers is None:
        return None
    instance_id = headers.get(INSTANCE_ID_HEADER)
    return instance_id.strip() if instance_id and instance_id.strip() else None
