from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from pathlib import Path
from typing import Any, Iterator, Mapping
import random
import shutil
import threading

import yaml

from .booking import BookingInterval, ConflictResult, ProposedBooking, check, parse_calendar_date

SPOT_FIELDS = ("address", "city", "state", "country", "lat", "lng", "name", "description", "price")


@dataclass(frozen=True)
class UserRecord:
    user_id: int
    first_name: str
    last_name: str
    username: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "username": self.username,
        }

    @staticmethod
    def from_dict(data: dict[str, Any]) -> "UserRecord":
        return UserRecord(
            user_id=int(data["user_id"]),
            first_name=str(data.get("first_name", "")),
            last_name=str(data.get("last_name", "")),
            username=str(data.get("username", "")),
        )


@dataclass(frozen=True)
class SpotRecord:
    spot_id: int
    owner_id: int
    address: str
    city: str
    state: str
    country: str
    lat: float
    lng: float
    name: str
    description: str
    price: float
    created_at: datetime
    updated_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "spot_id": self.spot_id,
            "owner_id": self.owner_id,
            "address": self.address,
            "city": self.city,
            "state": self.state,
            "country": self.country,
            "lat": self.lat,
            "lng": self.lng,
            "name": self.name,
            "description": self.description,
            "price": self.price,
            "created_at": self.created_at.isoformat(timespec="seconds"),
            "updated_at": self.updated_at.isoformat(timespec="seconds"),
        }

    @staticmethod
    def from_dict(data: dict[str, Any]) -> "SpotRecord":
        return SpotRecord(
            spot_id=int(data["spot_id"]),
            owner_id=int(data["owner_id"]),
            address=str(data["address"]),
            city=str(data["city"]),
            state=str(data["state"]),
            country=str(data["country"]),
            lat=float(data["lat"]),
            lng=float(data["lng"]),
            name=str(data["name"]),
            description=str(data["description"]),
            price=float(data["price"]),
            created_at=datetime.fromisoformat(str(data["created_at"])),
            updated_at=datetime.fromisoformat(str(data["updated_at"])),
        )


@dataclass(frozen=True)
class SpotImageRecord:
    image_id: int
    spot_id: int
    url: str
    preview: bool

    def to_dict(self) -> dict[str, Any]:
        return {"image_id": self.image_id, "spot_id": self.spot_id, "url": self.url, "preview": self.preview}

    @staticmethod
    def from_dict(data: dict[str, Any]) -> "SpotImageRecord":
        return SpotImageRecord(
            image_id=int(data["image_id"]),
            spot_id=int(data["spot_id"]),
            url=str(data["url"]),
            preview=bool(data.get("preview", False)),
        )


@dataclass(frozen=True)
class ReviewRecord:
    review_id: int
    user_id: int
    spot_id: int
    review: str
    stars: int
    created_at: datetime
    updated_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "review_id": self.review_id,
            "user_id": self.user_id,
            "spot_id": self.spot_id,
            "review": self.review,
            "stars": self.stars,
            "created_at": self.created_at.isoformat(timespec="seconds"),
            "updated_at": self.updated_at.isoformat(timespec="seconds"),
        }

    @staticmethod
    def from_dict(data: dict[str, Any]) -> "ReviewRecord":
        return ReviewRecord(
            review_id=int(data["review_id"]),
            user_id=int(data["user_id"]),
            spot_id=int(data["spot_id"]),
            review=str(data["review"]),
            stars=int(data["stars"]),
            created_at=datetime.fromisoformat(str(data["created_at"])),
            updated_at=datetime.fromisoformat(str(data["updated_at"])),
        )


@dataclass(frozen=True)
class BookingRecord:
    booking_id: int
    spot_id: int
    user_id: int
    start_date: date
    end_date: date
    created_at: datetime
    updated_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "booking_id": self.booking_id,
            "spot_id": self.spot_id,
            "user_id": self.user_id,
            "start_date": self.start_date.isoformat(),
            "end_date": self.end_date.isoformat(),
            "created_at": self.created_at.isoformat(timespec="seconds"),
            "updated_at": self.updated_at.isoformat(timespec="seconds"),
        }

    @staticmethod
    def from_dict(data: dict[str, Any]) -> "BookingRecord":
        return BookingRecord(
            booking_id=int(data["booking_id"]),
            spot_id=int(data["spot_id"]),
            user_id=int(data["user_id"]),
            start_date=_read_date(data["start_date"]),
            end_date=_read_date(data["end_date"]),
            created_at=datetime.fromisoformat(str(data["created_at"])),
            updated_at=datetime.fromisoformat(str(data["updated_at"])),
        )


class SpotStorageError(RuntimeError):
    pass


class SpotNotFoundError(LookupError):
    pass


class DuplicateReviewError(ValueError):
    pass


class SpotYamlRepository:
    def __init__(self, base_dir: str | Path = "data") -> None:
        self.base_dir = Path(base_dir)
        self.users_file = self.base_dir / "users.yaml"
        self.spots_file = self.base_dir / "spots.yaml"
        self.images_file = self.base_dir / "spot_images.yaml"
        self.reviews_file = self.base_dir / "reviews.yaml"
        self.bookings_file = self.base_dir / "bookings.yaml"
        self.log_file = self.base_dir / "spot_events.yaml"
        self._lock = threading.RLock()
        self._spot_locks: dict[int, threading.Lock] = {}
        self._spot_locks_guard = threading.Lock()
        self._ensure_files()

    def _data_files(self) -> tuple[Path, ...]:
        return (self.users_file, self.spots_file, self.images_file, self.reviews_file, self.bookings_file, self.log_file)

    def _ensure_files(self) -> None:
        self.base_dir.mkdir(parents=True, exist_ok=True)
        for path in self._data_files():
            if not path.exists():
                path.write_text("[]\n", encoding="utf-8")

    def _read_yaml_list(self, path: Path) -> list[dict[str, Any]]:
        try:
            payload = yaml.safe_load(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            path.write_text("[]\n", encoding="utf-8")
            return []
        except (OSError, UnicodeDecodeError, yaml.YAMLError) as error:
            self._recover_corrupted_yaml(path, error)
            return []

        if payload is None:
            return []
        if not isinstance(payload, list):
            self._recover_corrupted_yaml(path, ValueError("top-level YAML is not a list"))
            return []

        sanitized: list[dict[str, Any]] = []
        for index, row in enumerate(payload):
            if isinstance(row, dict):
                sanitized.append(row)
            else:
                self._log_event(
                    "YAML_ROW_SKIPPED",
                    {
                        "file": str(path.name),
                        "index": index,
                        "reason": "row is not a mapping",
                    },
                )
        return sanitized

    def _write_yaml_list(self, path: Path, rows: list[dict[str, Any]]) -> None:
        temp_path = path.with_suffix(path.suffix + ".tmp")
        try:
            temp_path.write_text(yaml.safe_dump(rows, allow_unicode=True, sort_keys=False), encoding="utf-8")
            temp_path.replace(path)
        except OSError as error:
            raise SpotStorageError(f"Failed to write YAML file: {path}") from error
        finally:
            if temp_path.exists():
                temp_path.unlink(missing_ok=True)

    def _recover_corrupted_yaml(self, path: Path, error: Exception) -> None:
        timestamp = datetime.now().strftime("%Y%m%d%H%M%S")
        backup_path = path.with_name(f"{path.stem}.corrupt.{timestamp}{path.suffix}")
        try:
            if path.exists():
                shutil.copy2(path, backup_path)
        except OSError:
            pass

        path.write_text("[]\n", encoding="utf-8")
        if path != self.log_file:
            self._log_event(
                "YAML_RECOVERED",
                {
                    "file": str(path.name),
                    "backup": str(backup_path.name),
                    "reason": str(error),
                },
            )

    def _log_event(self, event_type: str, payload: dict[str, Any], event_time: datetime | None = None) -> None:
        timestamp = (event_time or datetime.now()).isoformat(timespec="seconds")
        with self._lock:
            events = self._read_yaml_list(self.log_file)
            events.append({"event_time": timestamp, "event_type": event_type, "payload": payload})
            self._write_yaml_list(self.log_file, events)

    def _append_row(self, path: Path, id_key: str, row: dict[str, Any]) -> dict[str, Any]:
        with self._lock:
            rows = self._read_yaml_list(path)
            row = {id_key: _next_id(rows, id_key), **row}
            rows.append(row)
            self._write_yaml_list(path, rows)
        return row

    @contextmanager
    def spot_lock(self, spot_id: int) -> Iterator[None]:
        """Serialize check-then-insert for one spot within this repository."""
        with self._spot_locks_guard:
            lock = self._spot_locks.setdefault(spot_id, threading.Lock())
        with lock:
            yield

    def add_user(self, first_name: str, last_name: str, username: str) -> UserRecord:
        row = self._append_row(
            self.users_file,
            "user_id",
            {"first_name": first_name, "last_name": last_name, "username": username},
        )
        return UserRecord.from_dict(row)

    def get_user(self, user_id: int) -> UserRecord | None:
        for row in self._read_yaml_list(self.users_file):
            if int(row.get("user_id", -1)) == user_id:
                return UserRecord.from_dict(row)
        return None

    def get_users(self) -> list[UserRecord]:
        return [UserRecord.from_dict(row) for row in self._read_yaml_list(self.users_file)]

    def list_spots(self, owner_id: int | None = None) -> list[SpotRecord]:
        spots = [SpotRecord.from_dict(row) for row in self._read_yaml_list(self.spots_file)]
        if owner_id is None:
            return spots
        return [spot for spot in spots if spot.owner_id == owner_id]

    def get_spot(self, spot_id: int) -> SpotRecord:
        for row in self._read_yaml_list(self.spots_file):
            if int(row.get("spot_id", -1)) == spot_id:
                return SpotRecord.from_dict(row)
        raise SpotNotFoundError(f"Spot {spot_id} couldn't be found")

    def find_spot(self, spot_id: int) -> SpotRecord | None:
        try:
            return self.get_spot(spot_id)
        except SpotNotFoundError:
            return None

    def add_spot(self, owner_id: int, details: Mapping[str, Any], now: datetime | None = None) -> SpotRecord:
        effective_now = now or datetime.now()
        fields = _spot_fields(details)
        row = self._append_row(
            self.spots_file,
            "spot_id",
            {
                "owner_id": owner_id,
                **fields,
                "created_at": effective_now.isoformat(timespec="seconds"),
                "updated_at": effective_now.isoformat(timespec="seconds"),
            },
        )
        record = SpotRecord.from_dict(row)
        self._log_event(
            "SPOT_CREATED",
            {"spot_id": record.spot_id, "owner_id": owner_id, "name": record.name},
            effective_now,
        )
        return record

    def update_spot(self, spot_id: int, details: Mapping[str, Any], now: datetime | None = None) -> SpotRecord:
        effective_now = now or datetime.now()
        fields = _spot_fields(details)
        with self._lock:
            rows = self._read_yaml_list(self.spots_file)
            found_index = _find_index(rows, "spot_id", spot_id)
            if found_index < 0:
                raise SpotNotFoundError(f"Spot {spot_id} couldn't be found")

            current = SpotRecord.from_dict(rows[found_index])
            updated_row = {
                **current.to_dict(),
                **fields,
                "updated_at": effective_now.isoformat(timespec="seconds"),
            }
            updated = SpotRecord.from_dict(updated_row)
            rows[found_index] = updated.to_dict()
            self._write_yaml_list(self.spots_file, rows)

        self._log_event("SPOT_UPDATED", {"spot_id": spot_id, "fields": sorted(fields)}, effective_now)
        return updated

    def delete_spot(self, spot_id: int, now: datetime | None = None) -> SpotRecord:
        effective_now = now or datetime.now()
        with self.spot_lock(spot_id), self._lock:
            rows = self._read_yaml_list(self.spots_file)
            found_index = _find_index(rows, "spot_id", spot_id)
            if found_index < 0:
                raise SpotNotFoundError(f"Spot {spot_id} couldn't be found")

            deleted = SpotRecord.from_dict(rows.pop(found_index))
            self._write_yaml_list(self.spots_file, rows)

            removed: dict[str, int] = {}
            for label, path in (
                ("images", self.images_file),
                ("reviews", self.reviews_file),
                ("bookings", self.bookings_file),
            ):
                child_rows = self._read_yaml_list(path)
                kept = [row for row in child_rows if int(row.get("spot_id", -1)) != spot_id]
                removed[label] = len(child_rows) - len(kept)
                if removed[label]:
                    self._write_yaml_list(path, kept)

        self._log_event("SPOT_DELETED", {"spot_id": spot_id, "removed": removed}, effective_now)
        return deleted

    def add_spot_image(self, spot_id: int, url: str, preview: bool = False, now: datetime | None = None) -> SpotImageRecord:
        self.get_spot(spot_id)
        normalized_url = str(url or "").strip()
        if not normalized_url:
            raise ValueError("url must not be empty")

        row = self._append_row(self.images_file, "image_id", {"spot_id": spot_id, "url": normalized_url, "preview": bool(preview)})
        record = SpotImageRecord.from_dict(row)
        self._log_event(
            "SPOT_IMAGE_ADDED",
            {"spot_id": spot_id, "image_id": record.image_id, "preview": record.preview},
            now,
        )
        return record

    def get_spot_images(self, spot_id: int | None = None) -> list[SpotImageRecord]:
        images = [SpotImageRecord.from_dict(row) for row in self._read_yaml_list(self.images_file)]
        if spot_id is None:
            return images
        return [image for image in images if image.spot_id == spot_id]

    def get_reviews_for_spot(self, spot_id: int) -> list[ReviewRecord]:
        return [review for review in self.get_reviews() if review.spot_id == spot_id]

    def get_reviews(self) -> list[ReviewRecord]:
        return [ReviewRecord.from_dict(row) for row in self._read_yaml_list(self.reviews_file)]

    def add_review(
        self,
        spot_id: int,
        user_id: int,
        review: str,
        stars: int,
        now: datetime | None = None,
    ) -> ReviewRecord:
        effective_now = now or datetime.now()
        if not 1 <= int(stars) <= 5:
            raise ValueError("stars must be between 1 and 5")

        with self._lock:
            self.get_spot(spot_id)
            existing = [row for row in self.get_reviews_for_spot(spot_id) if row.user_id == user_id]
            if existing:
                raise DuplicateReviewError("User already has a review for this spot")

            row = self._append_row(
                self.reviews_file,
                "review_id",
                {
                    "user_id": user_id,
                    "spot_id": spot_id,
                    "review": review,
                    "stars": int(stars),
                    "created_at": effective_now.isoformat(timespec="seconds"),
                    "updated_at": effective_now.isoformat(timespec="seconds"),
                },
            )
        record = ReviewRecord.from_dict(row)
        self._log_event(
            "REVIEW_CREATED",
            {"review_id": record.review_id, "spot_id": spot_id, "user_id": user_id, "stars": record.stars},
            effective_now,
        )
        return record

    def fetch_bookings_for_spot(self, spot_id: int) -> list[BookingRecord]:
        rows = self._read_yaml_list(self.bookings_file)
        return [BookingRecord.from_dict(row) for row in rows if int(row.get("spot_id", -1)) == spot_id]

    def get_bookings_for_user(self, user_id: int) -> list[BookingRecord]:
        rows = self._read_yaml_list(self.bookings_file)
        return [BookingRecord.from_dict(row) for row in rows if int(row.get("user_id", -1)) == user_id]

    def insert_booking(
        self,
        spot_id: int,
        user_id: int,
        interval: BookingInterval,
        now: datetime | None = None,
    ) -> BookingRecord:
        effective_now = now or datetime.now()
        row = self._append_row(
            self.bookings_file,
            "booking_id",
            {
                "spot_id": spot_id,
                "user_id": user_id,
                "start_date": interval.start_date.isoformat(),
                "end_date": interval.end_date.isoformat(),
                "created_at": effective_now.isoformat(timespec="seconds"),
                "updated_at": effective_now.isoformat(timespec="seconds"),
            },
        )
        record = BookingRecord.from_dict(row)
        self._log_event(
            "BOOKING_CREATED",
            {
                "booking_id": record.booking_id,
                "spot_id": spot_id,
                "user_id": user_id,
                "start_date": record.start_date.isoformat(),
                "end_date": record.end_date.isoformat(),
            },
            effective_now,
        )
        return record

    def create_booking(
        self,
        spot_id: int,
        user_id: int,
        start_date: Any,
        end_date: Any,
        now: datetime | None = None,
    ) -> tuple[ConflictResult, BookingRecord | None]:
        """Check the requested stay against the spot's bookings and insert it when accepted.

        The spot lock is held from fetching the existing bookings until the
        new row is written, so two requests for the same spot are decided one
        after the other.
        """
        effective_now = now or datetime.now()
        with self.spot_lock(spot_id):
            self.get_spot(spot_id)
            existing = self.fetch_bookings_for_spot(spot_id)
            result = check(ProposedBooking(start_date, end_date), existing)
            if not result.accepted:
                self._log_event(
                    "BOOKING_REJECTED",
                    {
                        "spot_id": spot_id,
                        "user_id": user_id,
                        "kind": result.kind.value,
                        "errors": dict(result.errors),
                    },
                    effective_now,
                )
                return result, None

            interval = BookingInterval(parse_calendar_date(start_date), parse_calendar_date(end_date))
            record = self.insert_booking(spot_id, user_id, interval, now=effective_now)
        return result, record

    def seed_test_data(self, now: datetime | None = None, overwrite: bool = True) -> list[BookingRecord]:
        effective_now = now or datetime.now()
        if overwrite:
            for path in self._data_files():
                if path != self.log_file:
                    self._write_yaml_list(path, [])

        users = [self.add_user(first, last, username) for first, last, username in _TEST_USERS]
        spots: list[SpotRecord] = []
        for index, details in enumerate(_TEST_SPOTS):
            owner = users[index % len(users)]
            spot = self.add_spot(owner.user_id, details, now=effective_now)
            spots.append(spot)
            self.add_spot_image(spot.spot_id, f"https://images.example.com/spots/{spot.spot_id}/preview.jpg", True)
            self.add_spot_image(spot.spot_id, f"https://images.example.com/spots/{spot.spot_id}/1.jpg", False)

        rng = random.Random(f"test:{effective_now.date().isoformat()}")
        bookings: list[BookingRecord] = []
        for spot in spots:
            guests = [user for user in users if user.user_id != spot.owner_id]
            for guest in guests:
                self.add_review(spot.spot_id, guest.user_id, rng.choice(_TEST_REVIEWS), rng.randint(3, 5), now=effective_now)
            bookings.extend(generate_test_bookings(self, spot, guests, effective_now.date(), rng))

        self._log_event(
            "TEST_DATA_GENERATED",
            {
                "users": len(users),
                "spots": len(spots),
                "bookings": len(bookings),
                "overwrite": overwrite,
            },
            effective_now,
        )
        return bookings


def generate_test_bookings(
    repository: SpotYamlRepository,
    spot: SpotRecord,
    guests: list[UserRecord],
    start_date: date,
    rng: random.Random,
    days: int = 60,
    attempts: int = 12,
) -> list[BookingRecord]:
    if days <= 0:
        raise ValueError("days must be greater than zero")
    if not guests:
        return []

    created: list[BookingRecord] = []
    for _ in range(attempts):
        offset = rng.randint(1, days)
        nights = rng.randint(1, 6)
        stay_start = start_date + timedelta(days=offset)
        result, record = repository.create_booking(
            spot.spot_id,
            rng.choice(guests).user_id,
            stay_start,
            stay_start + timedelta(days=nights),
        )
        if result.accepted and record is not None:
            created.append(record)
    return created


_TEST_USERS = [
    ("Demo", "Lition", "Demo-lition"),
    ("Fake", "User", "FakeUser1"),
    ("Jane", "Host", "janehost"),
]

_TEST_SPOTS = [
    {
        "address": "123 Disney Lane",
        "city": "San Francisco",
        "state": "California",
        "country": "United States of America",
        "lat": 37.7645358,
        "lng": -122.4730327,
        "name": "App Academy",
        "description": "Place where web developers are created",
        "price": 123,
    },
    {
        "address": "45 Harbor Road",
        "city": "Portland",
        "state": "Maine",
        "country": "United States of America",
        "lat": 43.6591,
        "lng": -70.2568,
        "name": "Harbor Loft",
        "description": "Sunny loft two blocks from the ferry",
        "price": 189,
    },
    {
        "address": "9 Aspen Trail",
        "city": "Boulder",
        "state": "Colorado",
        "country": "United States of America",
        "lat": 40.01499,
        "lng": -105.27055,
        "name": "Aspen Cabin",
        "description": "Quiet cabin at the trailhead",
        "price": 145,
    },
]

_TEST_REVIEWS = [
    "Great stay, would book again.",
    "Clean and exactly as pictured.",
    "Host was responsive and check-in was easy.",
    "Lovely location, a bit noisy at night.",
]


def _spot_fields(details: Mapping[str, Any]) -> dict[str, Any]:
    missing = [name for name in SPOT_FIELDS if details.get(name) in (None, "")]
    if missing:
        raise ValueError(f"missing spot fields: {', '.join(missing)}")

    fields = {name: details[name] for name in SPOT_FIELDS}
    for name in ("address", "city", "state", "country", "name", "description"):
        fields[name] = str(fields[name]).strip()
    for name in ("lat", "lng", "price"):
        fields[name] = float(fields[name])
    return fields


def _next_id(rows: list[dict[str, Any]], id_key: str) -> int:
    ids = [int(row[id_key]) for row in rows if row.get(id_key) is not None]
    return max(ids, default=0) + 1


def _find_index(rows: list[dict[str, Any]], id_key: str, value: int) -> int:
    for index, row in enumerate(rows):
        if int(row.get(id_key, -1)) == value:
            return index
    return -1


def _read_date(value: Any) -> date:
    parsed = parse_calendar_date(value)
    if parsed is None:
        raise ValueError(f"invalid stored date: {value!r}")
    return parsed
