"""Free/busy computation for a doctor's working day.

`gap_merge_free_slots` is what the engine serves. `sweep_free_slots` walks a
fixed grid from the start of the day and is kept as a cross-check; both give
the same slots whenever bookings sit on the granularity grid.
"""

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta

from clinic_scheduler.core.errors import NotFoundError, ValidationError
from clinic_scheduler.models.appointment import Appointment
from clinic_scheduler.scheduling.interval import MAX_DURATION, Interval
from clinic_scheduler.stores.base import AppointmentStore, DoctorHours

logger = logging.getLogger(__name__)


@dataclass
class Availability:
    doctor_id: str
    day: date
    granularity_minutes: int
    working_hours: Interval
    doctor_name: str = ""
    booked: list[Appointment] = field(default_factory=list)
    free_slots: list[Interval] = field(default_factory=list)
    patient_names: dict[str, str] = field(default_factory=dict)

    @property
    def booked_ranges(self) -> list[Interval]:
        return [a.interval for a in self.booked]


def validate_granularity(minutes: object) -> int:
    if isinstance(minutes, bool) or not isinstance(minutes, int) or minutes <= 0:
        raise ValidationError("Slot granularity must be a positive number of minutes")
    return minutes


def working_window(hours: DoctorHours, day: date) -> Interval:
    try:
        return Interval(datetime.combine(day, hours.day_start), datetime.combine(day, hours.day_end))
    except ValueError as e:
        raise ValidationError(f"Doctor {hours.doctor_id} has invalid working hours") from e


def merge_ranges(intervals: Iterable[Interval]) -> list[Interval]:
    """Collapse overlapping or touching intervals into a sorted minimal set."""
    merged: list[Interval] = []
    for interval in sorted(intervals):
        if merged and interval.start <= merged[-1].end:
            if interval.end > merged[-1].end:
                merged[-1] = Interval(merged[-1].start, interval.end)
        else:
            merged.append(interval)
    return merged


def free_intervals(window: Interval, busy: Iterable[Interval]) -> list[Interval]:
    """Subtract `busy` from `window`."""
    free: list[Interval] = []
    cursor = window.start
    for block in merge_ranges(busy):
        if block.end <= cursor:
            continue
        if block.start >= window.end:
            break
        if block.start > cursor:
            free.append(Interval(cursor, block.start))
        cursor = block.end
    if cursor < window.end:
        free.append(Interval(cursor, window.end))
    return free


def quantize(interval: Interval, granularity_minutes: int) -> list[Interval]:
    """Cut `interval` into back-to-back slots; a short remainder is dropped."""
    step = timedelta(minutes=granularity_minutes)
    slots: list[Interval] = []
    cursor = interval.start
    while cursor + step <= interval.end:
        slots.append(Interval(cursor, cursor + step))
        cursor += step
    return slots


def gap_merge_free_slots(
    window: Interval, booked: Iterable[Interval], granularity_minutes: int
) -> list[Interval]:
    slots: list[Interval] = []
    for gap in free_intervals(window, booked):
        slots.extend(quantize(gap, granularity_minutes))
    return slots


def sweep_free_slots(
    window: Interval, booked: Iterable[Interval], granularity_minutes: int
) -> list[Interval]:
    booked = list(booked)
    step = timedelta(minutes=granularity_minutes)
    slots: list[Interval] = []
    cursor = window.start
    while cursor + step <= window.end:
        slot = Interval(cursor, cursor + step)
        if not any(slot.overlaps(b) for b in booked):
            slots.append(slot)
        cursor += step
    return slots


async def compute_availability(
    store: AppointmentStore,
    doctor_id: str,
    day: date,
    granularity_minutes: int = 30,
) -> Availability:
    granularity_minutes = validate_granularity(granularity_minutes)
    hours = await store.get_doctor(doctor_id)
    if hours is None:
        raise NotFoundError("Doctor", doctor_id)
    window = working_window(hours, day)

    day_start = datetime.combine(day, time.min)
    day_end = day_start + timedelta(days=1)
    # Best-effort read; booking re-validates under the doctor's transaction.
    # Reaching back MAX_DURATION picks up yesterday's bookings that run past midnight.
    appointments = await store.find_by_doctor_and_range(doctor_id, day_start - MAX_DURATION, day_end)
    busy = [a for a in appointments if a.start_utc < day_end and a.end_utc > day_start]
    booked = [a for a in busy if a.start_utc >= day_start]

    free_slots = gap_merge_free_slots(window, (a.interval for a in busy), granularity_minutes)
    patient_names = await store.patient_names({a.patient_id for a in booked})
    logger.debug(
        "Availability for doctor %s on %s: %d booked, %d free slots",
        doctor_id, day.isoformat(), len(booked), len(free_slots),
    )
    return Availability(
        doctor_id=doctor_id,
        day=day,
        granularity_minutes=granularity_minutes,
        working_hours=window,
        doctor_name=hours.full_name,
        booked=booked,
        free_slots=free_slots,
        patient_names=patient_names,
    )
