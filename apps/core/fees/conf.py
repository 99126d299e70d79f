import re
from datetime import date

from django.conf import settings
from django.utils import timezone

ACADEMIC_YEAR_START_MONTH = 4

_ACADEMIC_YEAR_RE = re.compile(r'^(\d{4})-(\d{4})$')


def current_academic_year(today: date | None = None) -> str:
    """Academic year label such as ``2025-2026``; April to March unless pinned in settings."""
    pinned = getattr(settings, 'FEES_CURRENT_ACADEMIC_YEAR', '')
    if pinned:
        return pinned

    today = today or timezone.localdate()
    start = today.year if today.month >= ACADEMIC_YEAR_START_MONTH else today.year - 1
    return f"{start}-{start + 1}"


def parse_academic_year(academic_year: str) -> tuple[int, int] | None:
    match = _ACADEMIC_YEAR_RE.match((academic_year or '').strip())
    if not match:
        return None
    return int(match.group(1)), int(match.group(2))


def academic_year_short(academic_year: str) -> str:
    parsed = parse_academic_year(academic_year)
    if parsed:
        return f"{parsed[0] % 100:02d}{parsed[1] % 100:02d}"
    return re.sub(r'[^0-9A-Za-z]', '', academic_year or '').upper() or 'NA'


def due_date_for(academic_year: str) -> date | None:
    parsed = parse_academic_year(academic_year)
    if not parsed:
        return None

    month = getattr(settings, 'FEES_DUE_MONTH', 12)
    day = getattr(settings, 'FEES_DUE_DAY', 10)
    year = parsed[0] if month >= ACADEMIC_YEAR_START_MONTH else parsed[1]
    return date(year, month, day)


def is_due_date_passed(academic_year: str, as_of: date | None = None) -> bool:
    due_date = due_date_for(academic_year)
    if due_date is None:
        return False
    return (as_of or timezone.localdate()) > due_date


def receipt_sequence_digits() -> int:
    return getattr(settings, 'FEES_RECEIPT_SEQUENCE_DIGITS', 6)


def school_name() -> str:
    return getattr(settings, 'FEES_SCHOOL_NAME', '') or 'School'
