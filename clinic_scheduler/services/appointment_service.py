import logging
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date, datetime

from clinic_scheduler.core.config import settings
from clinic_scheduler.core.errors import ConflictError, NotFoundError, ValidationError
from clinic_scheduler.models.appointment import (
    ACTIVE_STATUSES,
    TERMINAL_STATUSES,
    Appointment,
    AppointmentFilter,
    AppointmentStatus,
    AppointmentUpdate,
)
from clinic_scheduler.scheduling.availability import Availability, compute_availability
from clinic_scheduler.scheduling.conflicts import check_conflict
from clinic_scheduler.scheduling.interval import (
    to_naive_utc,
    validate_duration,
    validate_notes,
    validate_start,
)
from clinic_scheduler.stores.base import AppointmentStore

logger = logging.getLogger(__name__)

# Completed is only ever requested by an outside process once the visit is over
ALLOWED_TRANSITIONS: dict[AppointmentStatus, frozenset[AppointmentStatus]] = {
    AppointmentStatus.PENDING: frozenset(
        {AppointmentStatus.CONFIRMED, AppointmentStatus.CANCELLED, AppointmentStatus.COMPLETED}
    ),
    AppointmentStatus.CONFIRMED: frozenset({AppointmentStatus.CANCELLED, AppointmentStatus.COMPLETED}),
    AppointmentStatus.CANCELLED: frozenset(),
    AppointmentStatus.COMPLETED: frozenset(),
}


def _require_id(value: object, name: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{name} is required")
    return value


def _warn_if_unsafe(store: AppointmentStore) -> None:
    if not store.serializes_writes:
        logger.warning(
            "%s does not serialize writes; concurrent bookings may double-book",
            type(store).__name__,
        )


def ensure_transition(current: AppointmentStatus, target: AppointmentStatus) -> None:
    if target not in ALLOWED_TRANSITIONS[current]:
        raise ValidationError(f"Cannot change appointment from {current.value} to {target.value}")


async def create_appointment(
    store: AppointmentStore,
    patient_id: str,
    doctor_id: str,
    start: datetime,
    duration_minutes: int | None = None,
    notes: str | None = None,
) -> Appointment:
    patient_id = _require_id(patient_id, "patient_id")
    doctor_id = _require_id(doctor_id, "doctor_id")
    start = validate_start(start)
    duration = validate_duration(
        settings.default_duration_minutes if duration_minutes is None else duration_minutes
    )
    notes = validate_notes(notes)

    if not await store.patient_exists(patient_id):
        raise NotFoundError("Patient", patient_id)
    if await store.get_doctor(doctor_id) is None:
        raise NotFoundError("Doctor", doctor_id)

    _warn_if_unsafe(store)
    async with store.transaction(doctor_id) as tx:
        conflict = await check_conflict(tx, doctor_id, start, duration)
        if conflict is not None:
            logger.warning(
                "Booking for doctor %s at %s conflicts with appointment %s",
                doctor_id, start.isoformat(), conflict.id,
            )
            raise ConflictError(conflict.id, conflict.start_utc, conflict.end_utc)
        appointment = await tx.create(
            Appointment(
                patient_id=patient_id,
                doctor_id=doctor_id,
                start_utc=start,
                duration_minutes=duration,
                status=AppointmentStatus.PENDING,
                notes=notes,
            )
        )
    logger.info(
        "Created appointment %s for patient %s with doctor %s at %s (%d min)",
        appointment.id, patient_id, doctor_id, start.isoformat(), duration,
    )
    return appointment


async def update_appointment(
    store: AppointmentStore, appointment_id: str, patch: AppointmentUpdate
) -> Appointment:
    """Reschedule, change status and/or edit notes in one transaction.

    A reschedule of an active appointment is checked against the doctor's
    other active appointments; its own current interval is ignored.
    """
    changes = patch.model_dump(exclude_unset=True)
    new_start = validate_start(changes["start_utc"]) if changes.get("start_utc") is not None else None
    new_duration = (
        validate_duration(changes["duration_minutes"])
        if changes.get("duration_minutes") is not None
        else None
    )
    new_status: AppointmentStatus | None = changes.get("status")
    notes_changed = "notes" in changes
    new_notes = validate_notes(changes.get("notes"))

    existing = await store.find_by_id(appointment_id)
    if existing is None:
        raise NotFoundError("Appointment", appointment_id)

    _warn_if_unsafe(store)
    async with store.transaction(existing.doctor_id) as tx:
        # Re-read under the doctor's lock; the first read only located the doctor
        appointment = await tx.find_by_id(appointment_id)
        if appointment is None:
            raise NotFoundError("Appointment", appointment_id)

        start = new_start if new_start is not None else appointment.start_utc
        duration = new_duration if new_duration is not None else appointment.duration_minutes
        status = new_status if new_status is not None else appointment.status
        interval_changed = start != appointment.start_utc or duration != appointment.duration_minutes
        status_changed = status != appointment.status
        notes_differ = notes_changed and new_notes != appointment.notes

        if not (interval_changed or status_changed or notes_differ):
            return appointment
        if appointment.status in TERMINAL_STATUSES:
            raise ValidationError(
                f"Appointment {appointment.id} is {appointment.status.value} and can no longer be changed"
            )
        if status_changed:
            ensure_transition(appointment.status, status)

        if interval_changed and status in ACTIVE_STATUSES:
            conflict = await check_conflict(
                tx, appointment.doctor_id, start, duration, exclude_appointment_id=appointment.id
            )
            if conflict is not None:
                logger.warning(
                    "Reschedule of appointment %s to %s conflicts with appointment %s",
                    appointment.id, start.isoformat(), conflict.id,
                )
                raise ConflictError(conflict.id, conflict.start_utc, conflict.end_utc)

        appointment.start_utc = start
        appointment.duration_minutes = duration
        appointment.status = status
        if notes_changed:
            appointment.notes = new_notes
        appointment.touch()
        appointment = await tx.update(appointment)

    logger.info(
        "Updated appointment %s: start=%s duration=%d status=%s",
        appointment.id, appointment.start_utc.isoformat(), appointment.duration_minutes,
        appointment.status.value,
    )
    return appointment


async def confirm_appointment(store: AppointmentStore, appointment_id: str) -> Appointment:
    return await update_appointment(
        store, appointment_id, AppointmentUpdate(status=AppointmentStatus.CONFIRMED)
    )


async def cancel_appointment(store: AppointmentStore, appointment_id: str) -> Appointment:
    """Soft cancel. Cancelling twice is a no-op; completed visits cannot be cancelled."""
    return await update_appointment(
        store, appointment_id, AppointmentUpdate(status=AppointmentStatus.CANCELLED)
    )


async def get_appointment(store: AppointmentStore, appointment_id: str) -> Appointment:
    appointment = await store.find_by_id(appointment_id)
    if appointment is None:
        raise NotFoundError("Appointment", appointment_id)
    return appointment


async def list_appointments(
    store: AppointmentStore, filters: AppointmentFilter | None = None
) -> list[Appointment]:
    filters = filters or AppointmentFilter()
    date_from = to_naive_utc(filters.date_from) if filters.date_from else None
    date_to = to_naive_utc(filters.date_to) if filters.date_to else None
    if date_from and date_to and date_from > date_to:
        raise ValidationError("date_from must not be after date_to")
    return await store.list_appointments(
        filters.model_copy(update={"date_from": date_from, "date_to": date_to})
    )


async def check_availability(
    store: AppointmentStore,
    doctor_id: str,
    day: date,
    granularity_minutes: int | None = None,
) -> Availability:
    doctor_id = _require_id(doctor_id, "doctor_id")
    if isinstance(day, datetime):
        day = to_naive_utc(day).date()
    if granularity_minutes is None:
        granularity_minutes = settings.default_granularity_minutes
    return await compute_availability(store, doctor_id, day, granularity_minutes)


@dataclass
class AppointmentDetails:
    appointment: Appointment
    patient_name: str | None = None
    doctor_name: str | None = None


async def describe_appointments(
    store: AppointmentStore, appointments: Sequence[Appointment]
) -> list[AppointmentDetails]:
    """Attach patient and doctor display names, two lookups for the whole batch."""
    patients = await store.patient_names({a.patient_id for a in appointments})
    doctors = await store.doctor_names({a.doctor_id for a in appointments})
    return [
        AppointmentDetails(a, patients.get(a.patient_id), doctors.get(a.doctor_id))
        for a in appointments
    ]
