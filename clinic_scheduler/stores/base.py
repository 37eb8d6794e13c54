"""Persistence contract the scheduling engine runs against.

Every check-then-write for a doctor happens inside `transaction(doctor_id)`.
An implementation must make that block atomic and serialized per doctor
(serializable transaction, row/advisory lock, or equivalent); one that cannot
sets `serializes_writes = False` and is unsafe under concurrent bookings.
"""

import abc
from collections.abc import Collection
from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass
from datetime import datetime, time

from clinic_scheduler.models.appointment import (
    ACTIVE_STATUSES,
    Appointment,
    AppointmentFilter,
    AppointmentStatus,
)


@dataclass(frozen=True)
class DoctorHours:
    doctor_id: str
    day_start: time
    day_end: time
    full_name: str = ""


class AppointmentReader(abc.ABC):
    @abc.abstractmethod
    async def find_by_id(self, appointment_id: str) -> Appointment | None:
        ...

    @abc.abstractmethod
    async def find_by_doctor_and_range(
        self,
        doctor_id: str,
        range_start: datetime,
        range_end: datetime,
        statuses: Collection[AppointmentStatus] = ACTIVE_STATUSES,
    ) -> list[Appointment]:
        """Appointments whose start lies in `[range_start, range_end]`, ascending by start."""


class AppointmentTransaction(AppointmentReader):
    @abc.abstractmethod
    async def create(self, appointment: Appointment) -> Appointment:
        ...

    @abc.abstractmethod
    async def update(self, appointment: Appointment) -> Appointment:
        ...


class AppointmentStore(AppointmentReader):
    serializes_writes: bool = True

    @abc.abstractmethod
    async def patient_exists(self, patient_id: str) -> bool:
        ...

    @abc.abstractmethod
    async def get_doctor(self, doctor_id: str) -> DoctorHours | None:
        ...

    @abc.abstractmethod
    async def patient_names(self, patient_ids: Collection[str]) -> dict[str, str]:
        """Display names keyed by id; unknown ids are left out."""

    @abc.abstractmethod
    async def doctor_names(self, doctor_ids: Collection[str]) -> dict[str, str]:
        ...

    @abc.abstractmethod
    async def list_appointments(self, filters: AppointmentFilter) -> list[Appointment]:
        ...

    @abc.abstractmethod
    def transaction(self, doctor_id: str) -> AbstractAsyncContextManager[AppointmentTransaction]:
        """Atomic, per-doctor serialized unit of work.

        Commits on clean exit and discards every write if the block raises.
        Raises ConcurrencyError when the unit cannot be started or committed
        within the store's timeout.
        """
