"""DateTime utilities for timezone-aware timestamp handling.

Timestamps are stored as offset-naive UTC (``TIMESTAMP WITHOUT TIME ZONE``).
"""

from datetime import datetime, timezone

# Average Gregorian month length used for re-verification interval math
DAYS_PER_MONTH = 30.44


def utc_now() -> datetime:
    """
    Get current UTC datetime without timezone info (offset-naive).

    Example:
        >>> now = utc_now()
        >>> print(now.tzinfo)
        None
    """
    return datetime.now(timezone.utc).replace(tzinfo=None)


# Lambda version for SQLAlchemy default/onupdate parameters
utc_now_lambda = lambda: datetime.now(timezone.utc).replace(tzinfo=None)


def months_between(start: datetime, end: datetime) -> float:
    """
    Fractional months from *start* to *end* using a 30.44-day month.

    Example:
        >>> months_between(datetime(2024, 1, 1), datetime(2024, 2, 1))
        1.0183...
    """
    return (end - start).total_seconds() / 86400 / DAYS_PER_MONTH
