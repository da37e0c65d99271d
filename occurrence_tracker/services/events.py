"""
Occurrence lifecycle events.

The lifecycle service publishes one typed event after each state change has
been committed. Receivers (the notification targeting engine) are connected
through a blinker signal, so the state-mutation code has no dependency on
notification transports.

Publishing is best-effort: a failing receiver is logged and the remaining
receivers still run. The publisher never sees the exception.

Usage:
    from occurrence_tracker.services.events import OccurrenceResolved, publish

    publish(OccurrenceResolved(occurrence_id=occ.id, actor_id=user_id))
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from typing import ClassVar

from blinker import Namespace

logger = logging.getLogger(__name__)

_signals = Namespace()

occurrence_event = _signals.signal("occurrence-event")


def _event_id() -> str:
    return str(uuid.uuid4())


@dataclass(frozen=True)
class OccurrenceCreated:
    event_type: ClassVar[str] = "occurrence.created"

    occurrence_id: str
    actor_id: str | None = None
    event_id: str = field(default_factory=_event_id)


@dataclass(frozen=True)
class OccurrenceReferred:
    """One referral round: every occurrence in ``occurrence_ids`` was referred
    to every department in ``department_ids``."""

    event_type: ClassVar[str] = "occurrence.referred"

    occurrence_ids: tuple[str, ...]
    department_ids: tuple[str, ...]
    message: str | None = None
    actor_id: str | None = None
    event_id: str = field(default_factory=_event_id)


@dataclass(frozen=True)
class DepartmentResponded:
    event_type: ClassVar[str] = "occurrence.department_responded"

    occurrence_id: str
    assignment_id: str
    department_id: str
    root_cause: str
    actor_id: str | None = None
    event_id: str = field(default_factory=_event_id)


@dataclass(frozen=True)
class ThreadMessagePosted:
    event_type: ClassVar[str] = "occurrence.message_posted"

    occurrence_id: str
    message_id: str
    sender_id: str
    text: str
    event_id: str = field(default_factory=_event_id)


@dataclass(frozen=True)
class OccurrenceResolved:
    event_type: ClassVar[str] = "occurrence.resolved"

    occurrence_id: str
    actor_id: str | None = None
    event_id: str = field(default_factory=_event_id)


def publish(event) -> None:
    """Deliver ``event`` to every connected receiver, isolating failures."""
    for receiver in list(occurrence_event.receivers_for(event)):
        try:
            receiver(event)
        except Exception:
            logger.error(
                "Event receiver failed after commit",
                exc_info=True,
                extra={"event_type": event.event_type, "event_id": event.event_id},
            )
