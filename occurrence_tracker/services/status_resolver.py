"""
Occurrence Status Resolver.

Pure functions deriving an occurrence's lifecycle status from its assignment
set. No database access: callers load the assignments and the set of
departments that have posted in the thread, then write the result.

Rule table:
    0 assignments                       → OPEN
    1 assignment,  answered             → ANSWERED
    1 assignment,  not answered         → ASSIGNED
    N≥2, all answered                   → ANSWERED
    N≥2, some (not all) answered        → ANSWERED_PARTIALLY
    N≥2, none answered                  → ASSIGNED

An assignment is *answered* when its completed_at is set OR a member of its
department has posted at least one message in the occurrence thread since the
assignment was last referred.

CLOSED is never produced here; the administrative resolve action writes it
directly and closed occurrences are not recomputed.
"""

from __future__ import annotations

from collections.abc import Iterable

from occurrence_tracker.models.occurrence import OccurrenceAssignment, OccurrenceStatus


def is_answered(assignment: OccurrenceAssignment, replied_department_ids: Iterable[str] = ()) -> bool:
    """Return True if the assignment's department has answered."""
    return assignment.is_completed or assignment.department_id in set(replied_department_ids)


def count_answered(
    assignments: Iterable[OccurrenceAssignment],
    replied_department_ids: Iterable[str] = (),
) -> int:
    replied = set(replied_department_ids)
    return sum(1 for a in assignments if is_answered(a, replied))


def derive_status(total: int, answered: int) -> OccurrenceStatus:
    """Map (total assignments, answered assignments) to a status."""
    if total < 0 or answered < 0 or answered > total:
        raise ValueError(f"Invalid assignment counts: answered={answered} total={total}")

    if total == 0:
        return OccurrenceStatus.OPEN
    if answered == 0:
        return OccurrenceStatus.ASSIGNED
    if answered == total:
        return OccurrenceStatus.ANSWERED
    return OccurrenceStatus.ANSWERED_PARTIALLY


def resolve_status(
    assignments: Iterable[OccurrenceAssignment],
    replied_department_ids: Iterable[str] = (),
) -> OccurrenceStatus:
    """Derive the status for a concrete assignment set."""
    assignments = list(assignments)
    return derive_status(len(assignments), count_answered(assignments, replied_department_ids))
