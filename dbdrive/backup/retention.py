"""
Retention policy for remote backup copies.

Decides which remote artifacts have outlived the retention window. The
decision is a pure function of the listing, the window and the current date;
deleting the selected objects is left to the caller.
"""

import re
from datetime import date, datetime, timedelta
from typing import Iterable, Optional, Set


DATE_PATTERN = re.compile(r'\d{4}-\d{2}-\d{2}')


def extract_date(name: str) -> Optional[date]:
    """
    Extract the first YYYY-MM-DD token from a name.

    Args:
        name: Remote object name

    Returns:
        The embedded date, or None if there is no token or it is not a
        valid calendar date
    """
    match = DATE_PATTERN.search(name)
    if not match:
        return None

    try:
        return datetime.strptime(match.group(0), '%Y-%m-%d').date()
    except ValueError:
        return None


def retention_cutoff(retention_days: int, today: date) -> date:
    """Oldest date that is still kept."""
    return today - timedelta(days=retention_days)


def select_expired(names: Iterable[str], retention_days: int, today: date) -> Set[str]:
    """
    Select names whose embedded date is strictly older than the cutoff.

    Names without a parseable date are never selected. The input is not
    modified and its order is irrelevant.

    Args:
        names: Remote object names
        retention_days: Number of days to keep copies
        today: Current date

    Returns:
        Set of expired names
    """
    cutoff = retention_cutoff(retention_days, today)
    expired = set()

    for name in names:
        created_on = extract_date(name)
        if created_on is not None and created_on < cutoff:
            expired.add(name)

    return expired
