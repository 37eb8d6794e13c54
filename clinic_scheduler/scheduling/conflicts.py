from collections.abc import Iterable
from datetime import datetime

from clinic_scheduler.models.appointment import ACTIVE_STATUSES, Appointment
from clinic_scheduler.scheduling.interval import MAX_DURATION, Interval
from clinic_scheduler.stores.base import AppointmentReader


def conflict_window(candidate: Interval) -> tuple[datetime, datetime]:
    """Range of start times an overlapping appointment could have.

    Nothing lasts longer than MAX_DURATION, so anything starting earlier than
    `candidate.start - MAX_DURATION` has already ended.
    """
    return candidate.start - MAX_DURATION, candidate.end + MAX_DURATION


def find_conflict(
    candidate: Interval,
    appointments: Iterable[Appointment],
    exclude_appointment_id: str | None = None,
) -> Appointment | None:
    """Return the earliest active appointment overlapping `candidate`, if any."""
    for appointment in sorted(appointments, key=lambda a: a.start_utc):
        if appointment.id == exclude_appointment_id:
            continue
        if appointment.status not in ACTIVE_STATUSES:
            continue
        if appointment.interval.overlaps(candidate):
            return appointment
    return None


async def check_conflict(
    reader: AppointmentReader,
    doctor_id: str,
    start: datetime,
    duration_minutes: int,
    exclude_appointment_id: str | None = None,
) -> Appointment | None:
    candidate = Interval.from_duration(start, duration_minutes)
    range_start, range_end = conflict_window(candidate)
    nearby = await reader.find_by_doctor_and_range(doctor_id, range_start, range_end)
    return find_conflict(candidate, nearby, exclude_appointment_id)
