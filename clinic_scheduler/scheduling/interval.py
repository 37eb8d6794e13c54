"""Half-open time intervals and the input checks shared by every operation."""

from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from clinic_scheduler.core.config import settings
from clinic_scheduler.core.errors import ValidationError

MAX_DURATION = timedelta(minutes=settings.max_duration_minutes)


def to_naive_utc(dt: datetime) -> datetime:
    """Convert to naive UTC for TIMESTAMP WITHOUT TIME ZONE columns."""
    if dt.tzinfo is not None:
        return dt.astimezone(UTC).replace(tzinfo=None)
    return dt


@dataclass(frozen=True, order=True)
class Interval:
    """A time window `[start, end)`: start included, end excluded."""

    start: datetime
    end: datetime

    def __post_init__(self) -> None:
        if self.end <= self.start:
            raise ValueError("Interval end must be after its start")

    @classmethod
    def from_duration(cls, start: datetime, minutes: int) -> "Interval":
        return cls(start, start + timedelta(minutes=minutes))

    @property
    def duration(self) -> timedelta:
        return self.end - self.start

    def overlaps(self, other: "Interval") -> bool:
        return overlaps(self, other)

    def contains(self, other: "Interval") -> bool:
        return self.start <= other.start and other.end <= self.end


def overlaps(a: Interval, b: Interval) -> bool:
    # Covers "starts inside", "ends inside" and "contains"; touching ends do not overlap
    return a.start < b.end and a.end > b.start


def validate_duration(minutes: object) -> int:
    if isinstance(minutes, bool) or not isinstance(minutes, int):
        raise ValidationError("Duration must be a whole number of minutes")
    if not settings.min_duration_minutes <= minutes <= settings.max_duration_minutes:
        raise ValidationError(
            f"Duration must be between {settings.min_duration_minutes} "
            f"and {settings.max_duration_minutes} minutes"
        )
    return minutes


def validate_notes(notes: str | None) -> str | None:
    if notes is not None and len(notes) > settings.notes_max_length:
        raise ValidationError(f"Notes must be at most {settings.notes_max_length} characters")
    return notes


def validate_start(start: object) -> datetime:
    if not isinstance(start, datetime):
        raise ValidationError("Start must be a datetime")
    return to_naive_utc(start)
