from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Iterable, Mapping

START_DATE_FIELD = "startDate"
END_DATE_FIELD = "endDate"

MISSING_START_MESSAGE = "Please select a start date"
MISSING_END_MESSAGE = "Please select an end date"
INVALID_ORDERING_MESSAGE = "endDate cannot be on or before startDate"
START_CONFLICT_MESSAGE = "Start date conflicts with an existing booking"
END_CONFLICT_MESSAGE = "End date conflicts with an existing booking"


class RejectionKind(str, Enum):
    MISSING_FIELD = "MissingField"
    INVALID_ORDERING = "InvalidOrdering"
    DATE_OVERLAP = "DateOverlap"


@dataclass(frozen=True)
class BookingInterval:
    start_date: date
    end_date: date

    def __post_init__(self) -> None:
        if self.start_date >= self.end_date:
            raise ValueError("Booking start date must be earlier than end date.")


@dataclass(frozen=True)
class ProposedBooking:
    """Raw dates as received from a request; either side may be missing or unparseable."""

    start_date: Any = None
    end_date: Any = None


@dataclass(frozen=True)
class ConflictResult:
    kind: RejectionKind | None = None
    errors: Mapping[str, str] = field(default_factory=dict)

    @property
    def accepted(self) -> bool:
        return self.kind is None

    @staticmethod
    def accept() -> "ConflictResult":
        return ConflictResult()

    @staticmethod
    def reject(kind: RejectionKind, errors: Mapping[str, str]) -> "ConflictResult":
        return ConflictResult(kind=kind, errors=dict(errors))


def parse_calendar_date(value: Any) -> date | None:
    """Return the calendar date for ``value`` or None when it cannot be read as one.

    Accepts ``date`` and ``datetime`` objects (the time of day is dropped) and
    ISO-8601 strings, either a bare ``YYYY-MM-DD`` or a full timestamp.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str):
        return None

    text = value.strip()
    if not text:
        return None
    try:
        return date.fromisoformat(text)
    except ValueError:
        pass
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
    except ValueError:
        return None


def dates_overlap(proposed_day: date, exist_start: date, exist_end: date) -> bool:
    """Return True when ``proposed_day`` lies inside [exist_start, exist_end].

    Both bounds are inclusive, so a checkout on the same day as an existing
    check-in or checkout counts as a conflict.
    """
    return exist_start <= proposed_day <= exist_end


def check(proposed: ProposedBooking | BookingInterval, existing: Iterable[Any]) -> ConflictResult:
    start = parse_calendar_date(proposed.start_date)
    end = parse_calendar_date(proposed.end_date)

    missing: dict[str, str] = {}
    if start is None:
        missing[START_DATE_FIELD] = MISSING_START_MESSAGE
    if end is None:
        missing[END_DATE_FIELD] = MISSING_END_MESSAGE
    if missing:
        return ConflictResult.reject(RejectionKind.MISSING_FIELD, missing)

    if start >= end:
        return ConflictResult.reject(RejectionKind.INVALID_ORDERING, {END_DATE_FIELD: INVALID_ORDERING_MESSAGE})

    for booking in existing:
        exist_start = parse_calendar_date(booking.start_date)
        exist_end = parse_calendar_date(booking.end_date)
        if dates_overlap(start, exist_start, exist_end):
            return ConflictResult.reject(RejectionKind.DATE_OVERLAP, {START_DATE_FIELD: START_CONFLICT_MESSAGE})
        if dates_overlap(end, exist_start, exist_end):
            return ConflictResult.reject(RejectionKind.DATE_OVERLAP, {END_DATE_FIELD: END_CONFLICT_MESSAGE})

    return ConflictResult.accept()


def can_book(proposed: ProposedBooking | BookingInterval, existing: Iterable[Any]) -> bool:
    """Return True if the proposed stay passes every check against ``existing``."""
    return check(proposed, existing).accepted
