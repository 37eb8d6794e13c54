"""Typed failures raised by the scheduling engine.

Callers (the HTTP layer, an agent, a batch job) translate these into their
own user-facing messages.
"""

from datetime import datetime


class SchedulingError(Exception):
    """Base class for every failure the engine surfaces."""


class ValidationError(SchedulingError):
    """Malformed input or an illegal lifecycle transition."""


class NotFoundError(SchedulingError):
    """A patient, doctor or appointment id does not exist."""

    def __init__(self, entity: str, entity_id: str) -> None:
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} {entity_id!r} not found")


class ConflictError(SchedulingError):
    """The requested interval overlaps an active appointment of the same doctor."""

    def __init__(self, appointment_id: str, start_utc: datetime, end_utc: datetime) -> None:
        self.appointment_id = appointment_id
        self.start_utc = start_utc
        self.end_utc = end_utc
        super().__init__(
            f"Doctor already has appointment {appointment_id} "
            f"from {start_utc.isoformat()} to {end_utc.isoformat()}"
        )


class ConcurrencyError(SchedulingError):
    """The store could not complete the transactional write; safe to retry."""
