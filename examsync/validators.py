"""
Field validators.

Small pure predicates used by the parser. They never raise: anything that is
not a string (or not in the expected format) simply returns False.
"""

from __future__ import annotations

import re
from datetime import datetime
from typing import Any, List


_EMAIL_RE = re.compile(r"^[^\s@,;]+@[^\s@,;]+\.[^\s@,;]+$")
_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_TIME_RE = re.compile(r"^\d{2}:\d{2}$")


def is_valid_email(value: Any) -> bool:
    if not isinstance(value, str):
        return False
    return bool(_EMAIL_RE.match(value))


def is_valid_calendar_date(value: Any) -> bool:
    """
    'YYYY-MM-DD' that names a real day (2025-02-30 is rejected).
    """
    if not isinstance(value, str) or not _DATE_RE.match(value):
        return False
    try:
        datetime.strptime(value, "%Y-%m-%d")
    except ValueError:
        return False
    return True


def is_valid_clock_time(value: Any) -> bool:
    """
    'HH:MM' on a 24h clock: hour 0-23, minute 0-59.
    """
    if not isinstance(value, str) or not _TIME_RE.match(value):
        return False
    hours, minutes = value.split(":")
    return 0 <= int(hours) <= 23 and 0 <= int(minutes) <= 59


def within_length(value: Any, max_length: int) -> bool:
    return isinstance(value, str) and len(value) <= max_length


def split_list(raw: str) -> List[str]:
    """
    Split a comma-separated list, dropping blanks and repeats.
    Order of first appearance is kept.
    """
    out: List[str] = []
    for part in raw.split(","):
        item = part.strip()
        if item and item not in out:
            out.append(item)
    return out


def split_emails(raw: str) -> List[str]:
    return split_list(raw)


def invalid_emails(emails: List[str]) -> List[str]:
    return [e for e in emails if not is_valid_email(e)]
