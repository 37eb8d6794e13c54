"""Patient and doctor rows the engine reads but does not manage.

Both are owned by the clinic's directory service; only the columns the
scheduling engine needs are mapped here.
"""

from datetime import time
from uuid import uuid4

from sqlmodel import Field, SQLModel


def _new_id() -> str:
    return str(uuid4())


class Patient(SQLModel, table=True):
    __tablename__ = "patients"
    id: str = Field(default_factory=_new_id, primary_key=True)
    full_name: str


class Doctor(SQLModel, table=True):
    __tablename__ = "doctors"
    id: str = Field(default_factory=_new_id, primary_key=True)
    full_name: str
    day_start: time = Field(default=time(9, 0))
    day_end: time = Field(default=time(17, 0))  # exclusive
