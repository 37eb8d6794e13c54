"""Tests for services/appointment_service.py: booking, rescheduling and the status lifecycle."""

import random
from datetime import datetime, timedelta, timezone
from itertools import combinations

import pytest

from clinic_scheduler.core.errors import ConflictError, NotFoundError, ValidationError
from clinic_scheduler.models import appointment as appointment_model
from clinic_scheduler.models.appointment import (
    ACTIVE_STATUSES,
    AppointmentFilter,
    AppointmentStatus,
    AppointmentUpdate,
)
from clinic_scheduler.services.appointment_service import (
    cancel_appointment,
    confirm_appointment,
    create_appointment,
    describe_appointments,
    get_appointment,
    list_appointments,
    update_appointment,
)
from tests.conftest import at


class TestCreate:
    async def test_scenario_b_overlap_is_rejected(self, store):
        first = await create_appointment(store, "p1", "d1", at(14), 30)
        assert first.status == AppointmentStatus.PENDING

        with pytest.raises(ConflictError) as exc_info:
            await create_appointment(store, "p2", "d1", at(14, 15), 30)

        assert exc_info.value.appointment_id == first.id
        assert exc_info.value.start_utc == at(14)
        assert exc_info.value.end_utc == at(14, 30)

    async def test_scenario_c_back_to_back_is_allowed(self, store):
        await create_appointment(store, "p1", "d1", at(14), 30)
        second = await create_appointment(store, "p2", "d1", at(14, 30), 30)
        assert second.status == AppointmentStatus.PENDING
        assert second.end_utc == at(15)

    async def test_booking_that_ends_at_existing_start(self, store):
        await create_appointment(store, "p1", "d1", at(14), 30)
        earlier = await create_appointment(store, "p2", "d1", at(13, 30), 30)
        assert earlier.end_utc == at(14)

    async def test_other_doctor_is_independent(self, store):
        await create_appointment(store, "p1", "d1", at(14), 30)
        other = await create_appointment(store, "p1", "d2", at(14), 30)
        assert other.doctor_id == "d2"

    async def test_persists_fields(self, store):
        created = await create_appointment(store, "p1", "d1", at(9), 45, notes="follow-up")
        loaded = await get_appointment(store, created.id)
        assert loaded.patient_id == "p1"
        assert loaded.doctor_id == "d1"
        assert loaded.start_utc == at(9)
        assert loaded.duration_minutes == 45
        assert loaded.notes == "follow-up"
        assert loaded.status == AppointmentStatus.PENDING
        assert loaded.created_at is not None
        assert loaded.updated_at is not None

    async def test_default_duration(self, store):
        created = await create_appointment(store, "p1", "d1", at(9))
        assert created.duration_minutes == 30

    async def test_aware_start_is_stored_as_utc(self, store):
        start = datetime(2024, 10, 20, 16, 0, tzinfo=timezone(timedelta(hours=2)))
        created = await create_appointment(store, "p1", "d1", start, 30)
        assert created.start_utc == at(14)

    async def test_unknown_patient_or_doctor(self, store):
        with pytest.raises(NotFoundError):
            await create_appointment(store, "ghost", "d1", at(9), 30)
        with pytest.raises(NotFoundError):
            await create_appointment(store, "p1", "ghost", at(9), 30)

    @pytest.mark.parametrize("patient_id, doctor_id", [("", "d1"), ("p1", ""), (None, "d1"), ("p1", None)])
    async def test_ids_are_required(self, store, patient_id, doctor_id):
        with pytest.raises(ValidationError):
            await create_appointment(store, patient_id, doctor_id, at(9), 30)

    @pytest.mark.parametrize("duration", [10, 241])
    async def test_invalid_duration_writes_nothing(self, store, duration):
        with pytest.raises(ValidationError):
            await create_appointment(store, "p1", "d1", at(9), duration)
        assert await list_appointments(store) == []

    async def test_notes_too_long(self, store):
        with pytest.raises(ValidationError):
            await create_appointment(store, "p1", "d1", at(9), 30, notes="n" * 501)


class TestReschedule:
    async def test_scenario_d_move_to_free_time(self, store):
        appointment = await create_appointment(store, "p1", "d1", at(14), 30)

        moved = await update_appointment(store, appointment.id, AppointmentUpdate(start_utc=at(15)))

        assert moved.start_utc == at(15)
        assert moved.status == AppointmentStatus.PENDING
        assert (await get_appointment(store, appointment.id)).start_utc == at(15)

    async def test_shift_overlapping_own_interval(self, store):
        appointment = await create_appointment(store, "p1", "d1", at(14), 30)
        moved = await update_appointment(store, appointment.id, AppointmentUpdate(start_utc=at(14, 15)))
        assert moved.start_utc == at(14, 15)

    async def test_move_onto_another_booking_fails_and_keeps_original(self, store):
        appointment = await create_appointment(store, "p1", "d1", at(14), 30)
        blocker = await create_appointment(store, "p2", "d1", at(15), 30)

        with pytest.raises(ConflictError) as exc_info:
            await update_appointment(store, appointment.id, AppointmentUpdate(start_utc=at(15, 15)))

        assert exc_info.value.appointment_id == blocker.id
        assert (await get_appointment(store, appointment.id)).start_utc == at(14)

    async def test_extending_duration_is_checked(self, store):
        appointment = await create_appointment(store, "p1", "d1", at(14), 30)
        await create_appointment(store, "p2", "d1", at(15), 30)

        with pytest.raises(ConflictError):
            await update_appointment(store, appointment.id, AppointmentUpdate(duration_minutes=90))
        stretched = await update_appointment(store, appointment.id, AppointmentUpdate(duration_minutes=60))
        assert stretched.end_utc == at(15)

    async def test_confirmed_stays_confirmed(self, store):
        appointment = await create_appointment(store, "p1", "d1", at(14), 30)
        await confirm_appointment(store, appointment.id)
        moved = await update_appointment(store, appointment.id, AppointmentUpdate(start_utc=at(16)))
        assert moved.status == AppointmentStatus.CONFIRMED

    async def test_notes_only_update_bumps_updated_at(self, store, monkeypatch):
        appointment = await create_appointment(store, "p1", "d1", at(14), 30, notes="first")
        created_at = appointment.created_at
        later = appointment.updated_at + timedelta(minutes=5)
        monkeypatch.setattr(appointment_model, "_utc_naive_now", lambda: later)

        updated = await update_appointment(store, appointment.id, AppointmentUpdate(notes="second"))

        assert updated.notes == "second"
        assert updated.updated_at == later
        assert updated.created_at == created_at
        assert (await get_appointment(store, appointment.id)).updated_at == later
        cleared = await update_appointment(store, appointment.id, AppointmentUpdate(notes=None))
        assert cleared.notes is None

    async def test_invalid_patch_values(self, store):
        appointment = await create_appointment(store, "p1", "d1", at(14), 30)
        with pytest.raises(ValidationError):
            await update_appointment(store, appointment.id, AppointmentUpdate(duration_minutes=5))
        with pytest.raises(ValidationError):
            await update_appointment(store, appointment.id, AppointmentUpdate(notes="x" * 501))

    async def test_unknown_appointment(self, store):
        with pytest.raises(NotFoundError):
            await update_appointment(store, "missing", AppointmentUpdate(start_utc=at(15)))

    async def test_cancelled_cannot_be_rescheduled(self, store):
        appointment = await create_appointment(store, "p1", "d1", at(14), 30)
        await cancel_appointment(store, appointment.id)
        with pytest.raises(ValidationError):
            await update_appointment(store, appointment.id, AppointmentUpdate(start_utc=at(15)))


class TestLifecycle:
    async def test_confirm(self, store):
        appointment = await create_appointment(store, "p1", "d1", at(10), 30)
        confirmed = await confirm_appointment(store, appointment.id)
        assert confirmed.status == AppointmentStatus.CONFIRMED
        again = await confirm_appointment(store, appointment.id)
        assert again.status == AppointmentStatus.CONFIRMED

    async def test_cancel_is_soft_and_idempotent(self, store):
        appointment = await create_appointment(store, "p1", "d1", at(10), 30)

        cancelled = await cancel_appointment(store, appointment.id)
        assert cancelled.status == AppointmentStatus.CANCELLED
        again = await cancel_appointment(store, appointment.id)
        assert again.status == AppointmentStatus.CANCELLED

        kept = await get_appointment(store, appointment.id)
        assert kept.status == AppointmentStatus.CANCELLED

    async def test_cancel_confirmed(self, store):
        appointment = await create_appointment(store, "p1", "d1", at(10), 30)
        await confirm_appointment(store, appointment.id)
        assert (await cancel_appointment(store, appointment.id)).status == AppointmentStatus.CANCELLED

    async def test_cancel_releases_the_slot(self, store):
        appointment = await create_appointment(store, "p1", "d1", at(10), 30)
        await cancel_appointment(store, appointment.id)
        rebooked = await create_appointment(store, "p2", "d1", at(10), 30)
        assert rebooked.status == AppointmentStatus.PENDING

    async def test_completed_is_immutable(self, store):
        appointment = await create_appointment(store, "p1", "d1", at(10), 30)
        await confirm_appointment(store, appointment.id)
        completed = await update_appointment(
            store, appointment.id, AppointmentUpdate(status=AppointmentStatus.COMPLETED)
        )
        assert completed.status == AppointmentStatus.COMPLETED

        with pytest.raises(ValidationError):
            await cancel_appointment(store, appointment.id)
        with pytest.raises(ValidationError):
            await update_appointment(store, appointment.id, AppointmentUpdate(notes="late note"))
        assert (await get_appointment(store, appointment.id)).status == AppointmentStatus.COMPLETED

    async def test_cancelled_cannot_be_confirmed(self, store):
        appointment = await create_appointment(store, "p1", "d1", at(10), 30)
        await cancel_appointment(store, appointment.id)
        with pytest.raises(ValidationError):
            await confirm_appointment(store, appointment.id)

    async def test_confirmed_cannot_go_back_to_pending(self, store):
        appointment = await create_appointment(store, "p1", "d1", at(10), 30)
        await confirm_appointment(store, appointment.id)
        with pytest.raises(ValidationError):
            await update_appointment(store, appointment.id, AppointmentUpdate(status=AppointmentStatus.PENDING))

    async def test_get_unknown(self, store):
        with pytest.raises(NotFoundError):
            await get_appointment(store, "missing")
        with pytest.raises(NotFoundError):
            await cancel_appointment(store, "missing")


class TestList:
    async def test_filters(self, store):
        a = await create_appointment(store, "p1", "d1", at(9), 30)
        b = await create_appointment(store, "p2", "d1", at(11), 30)
        c = await create_appointment(store, "p1", "d2", at(10), 30)
        d = await create_appointment(store, "p2", "d2", at(10, day=22), 30)
        await confirm_appointment(store, b.id)

        everything = await list_appointments(store)
        assert [x.id for x in everything] == [a.id, c.id, b.id, d.id]

        by_doctor = await list_appointments(store, AppointmentFilter(doctor_id="d1"))
        assert [x.id for x in by_doctor] == [a.id, b.id]

        by_patient = await list_appointments(store, AppointmentFilter(patient_id="p2"))
        assert [x.id for x in by_patient] == [b.id, d.id]

        confirmed = await list_appointments(store, AppointmentFilter(status=AppointmentStatus.CONFIRMED))
        assert [x.id for x in confirmed] == [b.id]

        in_range = await list_appointments(store, AppointmentFilter(date_from=at(10), date_to=at(11)))
        assert [x.id for x in in_range] == [c.id, b.id]

    async def test_inverted_range(self, store):
        with pytest.raises(ValidationError):
            await list_appointments(store, AppointmentFilter(date_from=at(12), date_to=at(9)))

    async def test_describe_attaches_patient_and_doctor_names(self, store):
        await create_appointment(store, "p1", "d1", at(9), 30)
        await create_appointment(store, "p2", "d2", at(10), 30)

        details = await describe_appointments(store, await list_appointments(store))

        assert [(d.patient_name, d.doctor_name) for d in details] == [
            ("Patient p1", "Doctor d1"),
            ("Patient p2", "Doctor d2"),
        ]

    async def test_describe_empty(self, store):
        assert await describe_appointments(store, []) == []


async def test_no_double_booking_after_random_operations(store):
    """Random bookings and reschedules never leave two active appointments overlapping."""
    rng = random.Random(20241020)
    durations = [15, 30, 45, 60, 90, 240]
    booked = []
    for _ in range(40):
        start = at(8) + timedelta(minutes=15 * rng.randrange(0, 40))
        try:
            booked.append(
                await create_appointment(store, rng.choice(["p1", "p2"]), "d1", start, rng.choice(durations))
            )
        except ConflictError:
            pass
    for appointment in booked[:10]:
        start = at(8) + timedelta(minutes=15 * rng.randrange(0, 40))
        try:
            await update_appointment(
                store,
                appointment.id,
                AppointmentUpdate(start_utc=start, duration_minutes=rng.choice(durations)),
            )
        except ConflictError:
            pass

    active = [a for a in await list_appointments(store, AppointmentFilter(doctor_id="d1")) if a.status in ACTIVE_STATUSES]
    assert active
    for first, second in combinations(active, 2):
        assert not first.interval.overlaps(second.interval)
