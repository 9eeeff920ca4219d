from .booking import (
	BookingInterval,
	ConflictResult,
	ProposedBooking,
	RejectionKind,
	can_book,
	check,
	dates_overlap,
	parse_calendar_date,
)
from .yaml_store import (
	BookingRecord,
	DuplicateReviewError,
	ReviewRecord,
	SpotImageRecord,
	SpotNotFoundError,
	SpotRecord,
	SpotStorageError,
	SpotYamlRepository,
	UserRecord,
	generate_test_bookings,
)

__all__ = [
	"BookingInterval",
	"ConflictResult",
	"ProposedBooking",
	"RejectionKind",
	"can_book",
	"check",
	"dates_overlap",
	"parse_calendar_date",
	"BookingRecord",
	"DuplicateReviewError",
	"ReviewRecord",
	"SpotImageRecord",
	"SpotNotFoundError",
	"SpotRecord",
	"SpotStorageError",
	"SpotYamlRepository",
	"UserRecord",
	"generate_test_bookings",
]
