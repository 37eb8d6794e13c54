"""Dict-backed store for tests, demos and single-process tools."""

import asyncio
import logging
from collections import defaultdict
from collections.abc import AsyncIterator, Collection, Iterable
from contextlib import asynccontextmanager
from datetime import datetime, time

from clinic_scheduler.core.config import settings
from clinic_scheduler.core.errors import ConcurrencyError, NotFoundError
from clinic_scheduler.models.appointment import (
    ACTIVE_STATUSES,
    Appointment,
    AppointmentFilter,
    AppointmentStatus,
)
from clinic_scheduler.stores.base import (
    AppointmentStore,
    AppointmentTransaction,
    DoctorHours,
)

logger = logging.getLogger(__name__)


def _clone(appointment: Appointment) -> Appointment:
    # Callers mutate what they read; never hand out the stored row itself
    return Appointment(**appointment.model_dump())


def _in_range(
    rows: Iterable[Appointment],
    doctor_id: str,
    range_start: datetime,
    range_end: datetime,
    statuses: Collection[AppointmentStatus],
) -> list[Appointment]:
    found = [
        _clone(a)
        for a in rows
        if a.doctor_id == doctor_id and a.status in statuses and range_start <= a.start_utc <= range_end
    ]
    return sorted(found, key=lambda a: a.start_utc)


def matches(appointment: Appointment, filters: AppointmentFilter) -> bool:
    if filters.patient_id is not None and appointment.patient_id != filters.patient_id:
        return False
    if filters.doctor_id is not None and appointment.doctor_id != filters.doctor_id:
        return False
    if filters.status is not None and appointment.status != filters.status:
        return False
    if filters.date_from is not None and appointment.start_utc < filters.date_from:
        return False
    if filters.date_to is not None and appointment.start_utc > filters.date_to:
        return False
    return True


class InMemoryTransaction(AppointmentTransaction):
    """Stages writes; the store applies them only when the block exits cleanly."""

    def __init__(self, rows: dict[str, Appointment]) -> None:
        self._rows = rows
        self.staged: dict[str, Appointment] = {}

    def _view(self) -> dict[str, Appointment]:
        return {**self._rows, **self.staged}

    async def find_by_id(self, appointment_id: str) -> Appointment | None:
        appointment = self._view().get(appointment_id)
        return _clone(appointment) if appointment else None

    async def find_by_doctor_and_range(
        self,
        doctor_id: str,
        range_start: datetime,
        range_end: datetime,
        statuses: Collection[AppointmentStatus] = ACTIVE_STATUSES,
    ) -> list[Appointment]:
        return _in_range(self._view().values(), doctor_id, range_start, range_end, statuses)

    async def create(self, appointment: Appointment) -> Appointment:
        if appointment.id in self._view():
            raise ConcurrencyError(f"Appointment {appointment.id} already exists")
        self.staged[appointment.id] = _clone(appointment)
        return appointment

    async def update(self, appointment: Appointment) -> Appointment:
        if appointment.id not in self._view():
            raise NotFoundError("Appointment", appointment.id)
        self.staged[appointment.id] = _clone(appointment)
        return appointment


class InMemoryAppointmentStore(AppointmentStore):
    def __init__(
        self,
        timeout_seconds: float | None = None,
        serialize_writes: bool = True,
    ) -> None:
        self.timeout_seconds = (
            settings.transaction_timeout_seconds if timeout_seconds is None else timeout_seconds
        )
        self.serializes_writes = serialize_writes
        self._rows: dict[str, Appointment] = {}
        self._patients: dict[str, str] = {}
        self._doctors: dict[str, DoctorHours] = {}
        self._locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    def add_patient(self, patient_id: str, full_name: str | None = None) -> None:
        self._patients[patient_id] = full_name or patient_id

    def add_doctor(
        self,
        doctor_id: str,
        day_start: time | None = None,
        day_end: time | None = None,
        full_name: str | None = None,
    ) -> None:
        self._doctors[doctor_id] = DoctorHours(
            doctor_id=doctor_id,
            day_start=day_start or settings.default_day_start,
            day_end=day_end or settings.default_day_end,
            full_name=full_name or doctor_id,
        )

    async def patient_exists(self, patient_id: str) -> bool:
        return patient_id in self._patients

    async def get_doctor(self, doctor_id: str) -> DoctorHours | None:
        return self._doctors.get(doctor_id)

    async def patient_names(self, patient_ids: Collection[str]) -> dict[str, str]:
        return {p: self._patients[p] for p in patient_ids if p in self._patients}

    async def doctor_names(self, doctor_ids: Collection[str]) -> dict[str, str]:
        return {d: self._doctors[d].full_name for d in doctor_ids if d in self._doctors}

    async def find_by_id(self, appointment_id: str) -> Appointment | None:
        appointment = self._rows.get(appointment_id)
        return _clone(appointment) if appointment else None

    async def find_by_doctor_and_range(
        self,
        doctor_id: str,
        range_start: datetime,
        range_end: datetime,
        statuses: Collection[AppointmentStatus] = ACTIVE_STATUSES,
    ) -> list[Appointment]:
        return _in_range(self._rows.values(), doctor_id, range_start, range_end, statuses)

    async def list_appointments(self, filters: AppointmentFilter) -> list[Appointment]:
        found = [_clone(a) for a in self._rows.values() if matches(a, filters)]
        return sorted(found, key=lambda a: a.start_utc)

    @asynccontextmanager
    async def transaction(self, doctor_id: str) -> AsyncIterator[AppointmentTransaction]:
        if not self.serializes_writes:
            tx = InMemoryTransaction(self._rows)
            yield tx
            self._rows.update(tx.staged)
            return

        lock = self._locks[doctor_id]
        try:
            async with asyncio.timeout(self.timeout_seconds):
                await lock.acquire()
        except TimeoutError as e:
            logger.warning("Timed out waiting for booking lock on doctor %s", doctor_id)
            raise ConcurrencyError(f"Doctor {doctor_id} is busy with another booking; retry") from e
        try:
            tx = InMemoryTransaction(self._rows)
            yield tx
            self._rows.update(tx.staged)
        finally:
            lock.release()
