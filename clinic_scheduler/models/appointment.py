from datetime import UTC, datetime, timedelta
from enum import Enum
from uuid import uuid4

from sqlalchemy import DateTime, Index
from sqlmodel import Field, SQLModel

from clinic_scheduler.scheduling.interval import Interval


def _utc_naive_now() -> datetime:
    """Naive UTC for TIMESTAMP WITHOUT TIME ZONE columns."""
    return datetime.now(UTC).replace(tzinfo=None)


def _new_id() -> str:
    return str(uuid4())


class AppointmentStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


# Statuses that hold a doctor's time
ACTIVE_STATUSES = frozenset({AppointmentStatus.PENDING, AppointmentStatus.CONFIRMED})
TERMINAL_STATUSES = frozenset({AppointmentStatus.CANCELLED, AppointmentStatus.COMPLETED})


class Appointment(SQLModel, table=True):
    __tablename__ = "appointments"
    __table_args__ = (Index("ix_appointments_doctor_id_start_utc", "doctor_id", "start_utc"),)

    id: str = Field(default_factory=_new_id, primary_key=True)
    patient_id: str = Field(foreign_key="patients.id", index=True)
    doctor_id: str = Field(foreign_key="doctors.id", index=True)
    # Naive UTC, matching TIMESTAMP WITHOUT TIME ZONE in migration 001
    start_utc: datetime = Field(sa_type=DateTime())
    duration_minutes: int
    status: AppointmentStatus = Field(default=AppointmentStatus.PENDING, index=True)
    notes: str | None = None
    created_at: datetime = Field(default_factory=_utc_naive_now, sa_type=DateTime())
    updated_at: datetime = Field(default_factory=_utc_naive_now, sa_type=DateTime())

    @property
    def end_utc(self) -> datetime:
        return self.start_utc + timedelta(minutes=self.duration_minutes)

    @property
    def interval(self) -> Interval:
        return Interval(self.start_utc, self.end_utc)

    def touch(self) -> None:
        self.updated_at = _utc_naive_now()


class AppointmentUpdate(SQLModel):
    """Partial update; only fields explicitly set are applied.

    Sending `notes=None` clears the notes; the other fields ignore None.
    """

    start_utc: datetime | None = None
    duration_minutes: int | None = None
    status: AppointmentStatus | None = None
    notes: str | None = None


class AppointmentFilter(SQLModel):
    patient_id: str | None = None
    doctor_id: str | None = None
    status: AppointmentStatus | None = None
    date_from: datetime | None = None  # inclusive, on start_utc
    date_to: datetime | None = None  # inclusive, on start_utc


class AppointmentPublic(SQLModel):
    id: str
    patient_id: str
    doctor_id: str
    patient_name: str | None = None
    doctor_name: str | None = None
    start_utc: datetime
    end_utc: datetime
    duration_minutes: int
    status: AppointmentStatus
    notes: str | None = None
    created_at: datetime
    updated_at: datetime
