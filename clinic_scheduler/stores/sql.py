import asyncio
import logging
from collections import defaultdict
from collections.abc import AsyncIterator, Collection
from contextlib import asynccontextmanager
from datetime import datetime

from sqlalchemy import Select, select, text
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from clinic_scheduler.core.config import settings
from clinic_scheduler.core.errors import ConcurrencyError
from clinic_scheduler.models.appointment import (
    ACTIVE_STATUSES,
    Appointment,
    AppointmentFilter,
    AppointmentStatus,
)
from clinic_scheduler.models.directory import Doctor, Patient
from clinic_scheduler.stores.base import AppointmentStore, AppointmentTransaction, DoctorHours

logger = logging.getLogger(__name__)


def _range_query(
    doctor_id: str,
    range_start: datetime,
    range_end: datetime,
    statuses: Collection[AppointmentStatus],
) -> Select:
    return (
        select(Appointment)
        .where(
            Appointment.doctor_id == doctor_id,
            Appointment.status.in_(list(statuses)),
            Appointment.start_utc >= range_start,
            Appointment.start_utc <= range_end,
        )
        .order_by(Appointment.start_utc)
    )


def _filter_query(filters: AppointmentFilter) -> Select:
    q = select(Appointment).order_by(Appointment.start_utc)
    if filters.patient_id is not None:
        q = q.where(Appointment.patient_id == filters.patient_id)
    if filters.doctor_id is not None:
        q = q.where(Appointment.doctor_id == filters.doctor_id)
    if filters.status is not None:
        q = q.where(Appointment.status == filters.status)
    if filters.date_from is not None:
        q = q.where(Appointment.start_utc >= filters.date_from)
    if filters.date_to is not None:
        q = q.where(Appointment.start_utc <= filters.date_to)
    return q


class SQLAppointmentTransaction(AppointmentTransaction):
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def find_by_id(self, appointment_id: str) -> Appointment | None:
        return await self.session.get(Appointment, appointment_id)

    async def find_by_doctor_and_range(
        self,
        doctor_id: str,
        range_start: datetime,
        range_end: datetime,
        statuses: Collection[AppointmentStatus] = ACTIVE_STATUSES,
    ) -> list[Appointment]:
        result = await self.session.execute(_range_query(doctor_id, range_start, range_end, statuses))
        return list(result.scalars().all())

    async def create(self, appointment: Appointment) -> Appointment:
        self.session.add(appointment)
        await self.session.flush()
        await self.session.refresh(appointment)
        return appointment

    async def update(self, appointment: Appointment) -> Appointment:
        appointment = await self.session.merge(appointment)
        await self.session.flush()
        await self.session.refresh(appointment)
        return appointment


class SQLAppointmentStore(AppointmentStore):
    """Store over SQLModel tables.

    A booking transaction holds an in-process lock for the doctor and a
    `SELECT ... FOR UPDATE` on the doctor's row. The row lock serializes
    writers across processes on PostgreSQL; SQLite ignores it, so SQLite
    deployments are only safe with a single worker process.
    """

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        timeout_seconds: float | None = None,
    ) -> None:
        self._session_maker = session_maker
        self.timeout_seconds = (
            settings.transaction_timeout_seconds if timeout_seconds is None else timeout_seconds
        )
        self._locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    async def patient_exists(self, patient_id: str) -> bool:
        async with self._session_maker() as session:
            result = await session.execute(select(Patient.id).where(Patient.id == patient_id))
            return result.scalar_one_or_none() is not None

    async def get_doctor(self, doctor_id: str) -> DoctorHours | None:
        async with self._session_maker() as session:
            doctor = await session.get(Doctor, doctor_id)
            if doctor is None:
                return None
            return DoctorHours(
                doctor_id=doctor.id,
                day_start=doctor.day_start,
                day_end=doctor.day_end,
                full_name=doctor.full_name,
            )

    async def patient_names(self, patient_ids: Collection[str]) -> dict[str, str]:
        if not patient_ids:
            return {}
        async with self._session_maker() as session:
            result = await session.execute(
                select(Patient.id, Patient.full_name).where(Patient.id.in_(list(patient_ids)))
            )
            return {row.id: row.full_name for row in result}

    async def doctor_names(self, doctor_ids: Collection[str]) -> dict[str, str]:
        if not doctor_ids:
            return {}
        async with self._session_maker() as session:
            result = await session.execute(
                select(Doctor.id, Doctor.full_name).where(Doctor.id.in_(list(doctor_ids)))
            )
            return {row.id: row.full_name for row in result}

    async def find_by_id(self, appointment_id: str) -> Appointment | None:
        async with self._session_maker() as session:
            return await session.get(Appointment, appointment_id)

    async def find_by_doctor_and_range(
        self,
        doctor_id: str,
        range_start: datetime,
        range_end: datetime,
        statuses: Collection[AppointmentStatus] = ACTIVE_STATUSES,
    ) -> list[Appointment]:
        async with self._session_maker() as session:
            result = await session.execute(_range_query(doctor_id, range_start, range_end, statuses))
            return list(result.scalars().all())

    async def list_appointments(self, filters: AppointmentFilter) -> list[Appointment]:
        async with self._session_maker() as session:
            result = await session.execute(_filter_query(filters))
            return list(result.scalars().all())

    async def _lock_doctor_row(self, session: AsyncSession, doctor_id: str) -> None:
        if session.bind is not None and session.bind.dialect.name == "postgresql":
            timeout_ms = int(self.timeout_seconds * 1000)
            await session.execute(text(f"SET LOCAL lock_timeout = '{timeout_ms}ms'"))
        await session.execute(select(Doctor.id).where(Doctor.id == doctor_id).with_for_update())

    @asynccontextmanager
    async def transaction(self, doctor_id: str) -> AsyncIterator[AppointmentTransaction]:
        lock = self._locks[doctor_id]
        try:
            async with asyncio.timeout(self.timeout_seconds):
                await lock.acquire()
        except TimeoutError as e:
            logger.warning("Timed out waiting for booking lock on doctor %s", doctor_id)
            raise ConcurrencyError(f"Doctor {doctor_id} is busy with another booking; retry") from e
        try:
            async with self._session_maker() as session:
                try:
                    await self._lock_doctor_row(session, doctor_id)
                    yield SQLAppointmentTransaction(session)
                    await session.commit()
                except DBAPIError as e:
                    await session.rollback()
                    logger.warning("Booking transaction for doctor %s failed: %s", doctor_id, e)
                    raise ConcurrencyError(f"Could not commit booking for doctor {doctor_id}; retry") from e
                except Exception:
                    await session.rollback()
                    raise
        finally:
            lock.release()
