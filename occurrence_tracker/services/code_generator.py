"""
Occurrence Number Generator

Generates the human-facing occurrence number:

    OCC{yy}-{seq:04d}        (e.g. OCC25-0001, OCC25-0042, OCC26-0001)

  - yy is the last two digits of the current year
  - seq resets to 1 on the first occurrence of a new year
  - otherwise seq = highest existing seq for that year + 1, so numbers freed by
    deleted rows are never reissued below the current maximum

max+1 is not race-safe on its own; the UNIQUE constraint on
occurrences.occurrence_no plus the retry loop in
occurrence_service.create_occurrence covers concurrent writers.
"""

from datetime import datetime, timezone

from sqlalchemy import Integer, cast, func, select

from occurrence_tracker.models import db
from occurrence_tracker.models.occurrence import Occurrence

OCCURRENCE_PREFIX = "OCC"
SEQUENCE_WIDTH = 4


def year_prefix(now: datetime | None = None) -> str:
    """Return the number prefix for the year of ``now``: OCC25-."""
    now = now or datetime.now(timezone.utc)
    return f"{OCCURRENCE_PREFIX}{now.year % 100:02d}-"


def format_occurrence_no(prefix: str, seq: int) -> str:
    return f"{prefix}{seq:0{SEQUENCE_WIDTH}d}"


def max_sequence_for_prefix(prefix: str) -> int:
    """Highest numeric sequence already issued under ``prefix`` (0 if none).

    The suffix is compared numerically so the ordering stays correct past
    9999, where the zero-padded strings stop sorting lexically.
    """
    suffix = func.substr(Occurrence.occurrence_no, len(prefix) + 1)
    stmt = (
        select(func.max(cast(suffix, Integer)))
        .where(Occurrence.occurrence_no.like(f"{prefix}%"))
    )
    return db.session.execute(stmt).scalar() or 0


def generate_occurrence_no(now: datetime | None = None) -> str:
    """Generate next occurrence number: OCC25-0001, OCC25-0002, ..."""
    prefix = year_prefix(now)
    return format_occurrence_no(prefix, max_sequence_for_prefix(prefix) + 1)
