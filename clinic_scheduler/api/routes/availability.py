from datetime import date

from fastapi import APIRouter, Depends, Query

from clinic_scheduler.api.deps import get_store
from clinic_scheduler.api.schemas.appointment import AvailabilityResponse, BookedSlotInfo, SlotInfo
from clinic_scheduler.services.appointment_service import check_availability
from clinic_scheduler.stores.base import AppointmentStore

router = APIRouter(prefix="/doctors", tags=["availability"])


@router.get("/{doctor_id}/availability", response_model=AvailabilityResponse)
async def doctor_availability(
    doctor_id: str,
    date_param: date = Query(..., alias="date"),
    granularity: int | None = Query(None, gt=0),
    store: AppointmentStore = Depends(get_store),
) -> AvailabilityResponse:
    """Booked ranges and free slots (UTC) for the doctor's working hours on `date`."""
    availability = await check_availability(store, doctor_id, date_param, granularity)
    return AvailabilityResponse(
        doctor_id=availability.doctor_id,
        doctor_name=availability.doctor_name,
        day=availability.day,
        granularity_minutes=availability.granularity_minutes,
        working_hours=SlotInfo(
            start_utc=availability.working_hours.start,
            end_utc=availability.working_hours.end,
        ),
        booked_ranges=[
            BookedSlotInfo(
                appointment_id=a.id,
                status=a.status,
                patient_id=a.patient_id,
                patient_name=availability.patient_names.get(a.patient_id),
                start_utc=a.start_utc,
                end_utc=a.end_utc,
            )
            for a in availability.booked
        ],
        free_slots=[SlotInfo(start_utc=s.start, end_utc=s.end) for s in availability.free_slots],
    )
