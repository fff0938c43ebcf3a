import datetime
import re

from django.utils import timezone
from rest_framework.exceptions import ValidationError

_YMD = re.compile(r'^\d{4}-\d{2}-\d{2}$')


def today() -> datetime.date:
    """Clinic-local calendar date (settings.TIME_ZONE)."""
    return timezone.localdate()


def parse_ymd(value):
    """Return a date for a strict ``YYYY-MM-DD`` string, else ``None``."""
    value = (value or '').strip() if isinstance(value, str) else value
    if isinstance(value, datetime.date):
        return value
    if not value or not _YMD.match(value):
        return None
    try:
        return datetime.date.fromisoformat(value)
    except ValueError:
        return None


def validate_visit_date(value, *, allow_future: bool = False) -> datetime.date:
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ValidationError('Visit date is required.')
    parsed = parse_ymd(value)
    if parsed is None:
        raise ValidationError('Visit date must be in YYYY-MM-DD format.')
    if not allow_future and parsed > today():
        raise ValidationError('Visit date cannot be in the future.')
    return parsed
