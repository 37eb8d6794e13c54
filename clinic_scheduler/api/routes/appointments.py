import logging
from datetime import datetime

from fastapi import APIRouter, Depends, Query, status

from clinic_scheduler.api.deps import get_store
from clinic_scheduler.api.schemas.appointment import BookAppointmentRequest
from clinic_scheduler.models.appointment import (
    Appointment,
    AppointmentFilter,
    AppointmentPublic,
    AppointmentStatus,
    AppointmentUpdate,
)
from clinic_scheduler.services.appointment_service import (
    AppointmentDetails,
    cancel_appointment,
    confirm_appointment,
    create_appointment,
    describe_appointments,
    get_appointment,
    list_appointments,
    update_appointment,
)
from clinic_scheduler.stores.base import AppointmentStore

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/appointments", tags=["appointments"])


def _to_public(details: AppointmentDetails) -> AppointmentPublic:
    a = details.appointment
    return AppointmentPublic(
        id=a.id,
        patient_id=a.patient_id,
        doctor_id=a.doctor_id,
        patient_name=details.patient_name,
        doctor_name=details.doctor_name,
        start_utc=a.start_utc,
        end_utc=a.end_utc,
        duration_minutes=a.duration_minutes,
        status=a.status,
        notes=a.notes,
        created_at=a.created_at,
        updated_at=a.updated_at,
    )


async def _public(store: AppointmentStore, appointment: Appointment) -> AppointmentPublic:
    [details] = await describe_appointments(store, [appointment])
    return _to_public(details)


@router.post("", response_model=AppointmentPublic, status_code=status.HTTP_201_CREATED)
async def book_appointment(
    body: BookAppointmentRequest,
    store: AppointmentStore = Depends(get_store),
) -> AppointmentPublic:
    appointment = await create_appointment(
        store,
        patient_id=body.patient_id,
        doctor_id=body.doctor_id,
        start=body.start_utc,
        duration_minutes=body.duration_minutes,
        notes=body.notes,
    )
    return await _public(store, appointment)


@router.get("", response_model=list[AppointmentPublic])
async def list_all(
    patient_id: str | None = Query(None),
    doctor_id: str | None = Query(None),
    status_param: AppointmentStatus | None = Query(None, alias="status"),
    date_from: datetime | None = Query(None),
    date_to: datetime | None = Query(None),
    store: AppointmentStore = Depends(get_store),
) -> list[AppointmentPublic]:
    filters = AppointmentFilter(
        patient_id=patient_id,
        doctor_id=doctor_id,
        status=status_param,
        date_from=date_from,
        date_to=date_to,
    )
    appointments = await list_appointments(store, filters)
    return [_to_public(d) for d in await describe_appointments(store, appointments)]


@router.get("/{appointment_id}", response_model=AppointmentPublic)
async def read_appointment(
    appointment_id: str,
    store: AppointmentStore = Depends(get_store),
) -> AppointmentPublic:
    return await _public(store, await get_appointment(store, appointment_id))


@router.patch("/{appointment_id}", response_model=AppointmentPublic)
async def patch_appointment(
    appointment_id: str,
    body: AppointmentUpdate,
    store: AppointmentStore = Depends(get_store),
) -> AppointmentPublic:
    return await _public(store, await update_appointment(store, appointment_id, body))


@router.post("/{appointment_id}/confirm", response_model=AppointmentPublic)
async def confirm(
    appointment_id: str,
    store: AppointmentStore = Depends(get_store),
) -> AppointmentPublic:
    return await _public(store, await confirm_appointment(store, appointment_id))


@router.post("/{appointment_id}/cancel", response_model=AppointmentPublic)
async def cancel(
    appointment_id: str,
    store: AppointmentStore = Depends(get_store),
) -> AppointmentPublic:
    return await _public(store, await cancel_appointment(store, appointment_id))
