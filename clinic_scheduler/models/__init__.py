from clinic_scheduler.models.directory import Doctor, Patient
from clinic_scheduler.models.appointment import (
    ACTIVE_STATUSES,
    Appointment,
    AppointmentFilter,
    AppointmentPublic,
    AppointmentStatus,
    AppointmentUpdate,
)

__all__ = [
    "Doctor",
    "Patient",
    "ACTIVE_STATUSES",
    "Appointment",
    "AppointmentFilter",
    "AppointmentPublic",
    "AppointmentStatus",
    "AppointmentUpdate",
]
