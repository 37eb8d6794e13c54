from clinic_scheduler.core.db import async_session_maker
from clinic_scheduler.stores.base import AppointmentStore
from clinic_scheduler.stores.sql import SQLAppointmentStore

# One store per process so every request shares the per-doctor booking locks
_store: AppointmentStore | None = None


def get_store() -> AppointmentStore:
    global _store
    if _store is None:
        _store = SQLAppointmentStore(async_session_maker)
    return _store
