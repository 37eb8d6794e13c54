from datetime import date, datetime

from pydantic import BaseModel

from clinic_scheduler.models.appointment import AppointmentStatus


class SlotInfo(BaseModel):
    start_utc: datetime
    end_utc: datetime


class BookedSlotInfo(SlotInfo):
    appointment_id: str
    status: AppointmentStatus
    patient_id: str
    patient_name: str | None = None


class AvailabilityResponse(BaseModel):
    doctor_id: str
    doctor_name: str
    day: date
    granularity_minutes: int
    working_hours: SlotInfo
    booked_ranges: list[BookedSlotInfo]
    free_slots: list[SlotInfo]


class BookAppointmentRequest(BaseModel):
    patient_id: str
    doctor_id: str
    start_utc: datetime
    duration_minutes: int | None = None
    notes: str | None = None


class ConflictDetail(BaseModel):
    detail: str
    conflicting_appointment_id: str
    conflicting_start_utc: datetime
    conflicting_end_utc: datetime
