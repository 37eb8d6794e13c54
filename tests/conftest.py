"""Shared fixtures: one store per backend, seeded with two patients and two doctors."""

from datetime import datetime, time

import pytest

from clinic_scheduler.core.db import build_engine, build_session_maker, init_db
from clinic_scheduler.models.directory import Doctor, Patient
from clinic_scheduler.stores.memory import InMemoryAppointmentStore
from clinic_scheduler.stores.sql import SQLAppointmentStore

PATIENTS = ["p1", "p2"]
DOCTORS = ["d1", "d2"]


def at(hour: int, minute: int = 0, day: int = 20) -> datetime:
    """Naive UTC instant on October `day`, 2024."""
    return datetime(2024, 10, day, hour, minute)


def make_memory_store(**kwargs) -> InMemoryAppointmentStore:
    store = InMemoryAppointmentStore(**kwargs)
    for patient_id in PATIENTS:
        store.add_patient(patient_id, f"Patient {patient_id}")
    for doctor_id in DOCTORS:
        store.add_doctor(doctor_id, time(9, 0), time(17, 0), full_name=f"Doctor {doctor_id}")
    return store


async def make_sql_store(db_path, **kwargs):
    """SQLite-backed store with the same seed rows; returns (store, engine)."""
    engine = build_engine(f"sqlite+aiosqlite:///{db_path}")
    await init_db(engine)
    session_maker = build_session_maker(engine)
    async with session_maker() as session:
        session.add_all([Patient(id=p, full_name=f"Patient {p}") for p in PATIENTS])
        session.add_all(
            [Doctor(id=d, full_name=f"Doctor {d}", day_start=time(9, 0), day_end=time(17, 0)) for d in DOCTORS]
        )
        await session.commit()
    return SQLAppointmentStore(session_maker, **kwargs), engine


@pytest.fixture
def memory_store() -> InMemoryAppointmentStore:
    return make_memory_store()


@pytest.fixture
async def sql_store(tmp_path):
    store, engine = await make_sql_store(tmp_path / "scheduler.db")
    yield store
    await engine.dispose()


@pytest.fixture(params=["memory", "sql"])
async def store(request, tmp_path):
    """Runs the test once against each store implementation."""
    if request.param == "memory":
        yield make_memory_store()
        return

    sql, engine = await make_sql_store(tmp_path / "scheduler.db")
    yield sql
    await engine.dispose()
