import tempfile
import threading
import unittest
from unittest import mock
from datetime import date, datetime
from pathlib import Path

from spotbook import (
    BookingInterval,
    DuplicateReviewError,
    RejectionKind,
    SpotNotFoundError,
    SpotStorageError,
    SpotYamlRepository,
)

SPOT_DETAILS = {
    "address": "123 Disney Lane",
    "city": "San Francisco",
    "state": "California",
    "country": "United States of America",
    "lat": 37.7645358,
    "lng": -122.4730327,
    "name": "App Academy",
    "description": "Place where web developers are created",
    "price": 123,
}

NOW = datetime(2024, 1, 1, 9, 0)


class RepositoryTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self._temp_dir = tempfile.TemporaryDirectory()
        self.data_dir = Path(self._temp_dir.name) / "data"
        self.repo = SpotYamlRepository(self.data_dir)
        self.host = self.repo.add_user("Jane", "Host", "janehost")
        self.guest = self.repo.add_user("Fake", "User", "FakeUser1")
        self.spot = self.repo.add_spot(self.host.user_id, SPOT_DETAILS, now=NOW)

    def tearDown(self) -> None:
        self._temp_dir.cleanup()

    def events(self) -> str:
        return (self.data_dir / "spot_events.yaml").read_text(encoding="utf-8")


class TestSpots(RepositoryTestCase):
    def test_ids_auto_increment(self) -> None:
        second = self.repo.add_spot(self.host.user_id, SPOT_DETAILS, now=NOW)

        self.assertEqual(self.spot.spot_id, 1)
        self.assertEqual(second.spot_id, 2)
        self.assertEqual(self.guest.user_id, 2)

    def test_add_spot_normalizes_numeric_fields(self) -> None:
        spot = self.repo.add_spot(self.host.user_id, {**SPOT_DETAILS, "price": "99.5", "lat": "10"}, now=NOW)

        self.assertEqual(spot.price, 99.5)
        self.assertEqual(spot.lat, 10.0)
        self.assertIn("SPOT_CREATED", self.events())

    def test_add_spot_rejects_missing_fields(self) -> None:
        with self.assertRaises(ValueError):
            self.repo.add_spot(self.host.user_id, {**SPOT_DETAILS, "city": ""}, now=NOW)

    def test_list_spots_filters_by_owner(self) -> None:
        self.repo.add_spot(self.guest.user_id, SPOT_DETAILS, now=NOW)

        self.assertEqual(len(self.repo.list_spots()), 2)
        self.assertEqual([spot.spot_id for spot in self.repo.list_spots(owner_id=self.host.user_id)], [1])

    def test_update_spot_persists_changes(self) -> None:
        later = datetime(2024, 1, 2, 9, 0)
        updated = self.repo.update_spot(self.spot.spot_id, {**SPOT_DETAILS, "name": "Renamed"}, now=later)

        self.assertEqual(updated.name, "Renamed")
        self.assertEqual(updated.created_at, NOW)
        self.assertEqual(updated.updated_at, later)
        self.assertEqual(self.repo.get_spot(self.spot.spot_id).name, "Renamed")
        self.assertIn("SPOT_UPDATED", self.events())

    def test_missing_spot_raises_lookup_error(self) -> None:
        with self.assertRaises(SpotNotFoundError):
            self.repo.get_spot(999)
        with self.assertRaises(SpotNotFoundError):
            self.repo.update_spot(999, SPOT_DETAILS)
        self.assertIsNone(self.repo.find_spot(999))

    def test_delete_spot_cascades_children(self) -> None:
        self.repo.add_spot_image(self.spot.spot_id, "https://example.com/a.jpg", True)
        self.repo.add_review(self.spot.spot_id, self.guest.user_id, "Nice", 5, now=NOW)
        self.repo.create_booking(self.spot.spot_id, self.guest.user_id, "2024-02-01", "2024-02-03", now=NOW)

        self.repo.delete_spot(self.spot.spot_id, now=NOW)

        self.assertEqual(self.repo.list_spots(), [])
        self.assertEqual(self.repo.get_spot_images(), [])
        self.assertEqual(self.repo.get_reviews(), [])
        self.assertEqual(self.repo.get_bookings_for_user(self.guest.user_id), [])
        self.assertIn("SPOT_DELETED", self.events())


class TestImagesAndReviews(RepositoryTestCase):
    def test_add_spot_image_requires_existing_spot_and_url(self) -> None:
        image = self.repo.add_spot_image(self.spot.spot_id, " https://example.com/a.jpg ", True)

        self.assertEqual(image.url, "https://example.com/a.jpg")
        self.assertTrue(image.preview)
        with self.assertRaises(SpotNotFoundError):
            self.repo.add_spot_image(999, "https://example.com/b.jpg")
        with self.assertRaises(ValueError):
            self.repo.add_spot_image(self.spot.spot_id, "  ")

    def test_one_review_per_user_per_spot(self) -> None:
        self.repo.add_review(self.spot.spot_id, self.guest.user_id, "Great", 4, now=NOW)

        with self.assertRaises(DuplicateReviewError):
            self.repo.add_review(self.spot.spot_id, self.guest.user_id, "Again", 5, now=NOW)

        self.assertEqual(len(self.repo.get_reviews_for_spot(self.spot.spot_id)), 1)

    def test_first_review_is_not_blocked_by_other_users_reviews(self) -> None:
        self.repo.add_review(self.spot.spot_id, self.host.user_id, "Mine", 5, now=NOW)
        created = self.repo.add_review(self.spot.spot_id, self.guest.user_id, "Great", 4, now=NOW)

        self.assertEqual(created.review_id, 2)
        self.assertIn("REVIEW_CREATED", self.events())

    def test_review_stars_must_be_in_range(self) -> None:
        with self.assertRaises(ValueError):
            self.repo.add_review(self.spot.spot_id, self.guest.user_id, "Bad", 6, now=NOW)


class TestBookings(RepositoryTestCase):
    def test_create_booking_inserts_when_accepted(self) -> None:
        result, record = self.repo.create_booking(self.spot.spot_id, self.guest.user_id, "2024-01-10", "2024-01-15", now=NOW)

        self.assertTrue(result.accepted)
        self.assertIsNotNone(record)
        self.assertEqual(record.start_date, date(2024, 1, 10))
        self.assertEqual(record.end_date, date(2024, 1, 15))
        self.assertEqual(self.repo.fetch_bookings_for_spot(self.spot.spot_id), [record])
        self.assertIn("BOOKING_CREATED", self.events())

    def test_create_booking_rejects_overlap_without_inserting(self) -> None:
        self.repo.create_booking(self.spot.spot_id, self.guest.user_id, "2024-01-10", "2024-01-15", now=NOW)

        result, record = self.repo.create_booking(self.spot.spot_id, self.guest.user_id, "2024-01-12", "2024-01-20", now=NOW)

        self.assertIsNone(record)
        self.assertEqual(result.kind, RejectionKind.DATE_OVERLAP)
        self.assertEqual(len(self.repo.fetch_bookings_for_spot(self.spot.spot_id)), 1)
        self.assertIn("BOOKING_REJECTED", self.events())

    def test_bookings_are_checked_per_spot(self) -> None:
        other = self.repo.add_spot(self.host.user_id, SPOT_DETAILS, now=NOW)
        self.repo.create_booking(self.spot.spot_id, self.guest.user_id, "2024-01-10", "2024-01-15", now=NOW)

        result, _ = self.repo.create_booking(other.spot_id, self.guest.user_id, "2024-01-10", "2024-01-15", now=NOW)

        self.assertTrue(result.accepted)

    def test_create_booking_for_missing_spot_raises(self) -> None:
        with self.assertRaises(SpotNotFoundError):
            self.repo.create_booking(999, self.guest.user_id, "2024-01-10", "2024-01-15", now=NOW)

    def test_insert_booking_skips_checks(self) -> None:
        interval = BookingInterval(date(2024, 1, 10), date(2024, 1, 15))
        self.repo.insert_booking(self.spot.spot_id, self.guest.user_id, interval, now=NOW)
        self.repo.insert_booking(self.spot.spot_id, self.guest.user_id, interval, now=NOW)

        self.assertEqual(len(self.repo.get_bookings_for_user(self.guest.user_id)), 2)

    def test_concurrent_requests_for_same_dates_accept_only_one(self) -> None:
        results = []
        barrier = threading.Barrier(6)

        def attempt() -> None:
            barrier.wait()
            result, _ = self.repo.create_booking(self.spot.spot_id, self.guest.user_id, "2024-03-01", "2024-03-04", now=NOW)
            results.append(result.accepted)

        threads = [threading.Thread(target=attempt) for _ in range(6)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        self.assertEqual(results.count(True), 1)
        self.assertEqual(len(self.repo.fetch_bookings_for_spot(self.spot.spot_id)), 1)

    def test_spot_lock_is_released_after_errors(self) -> None:
        with self.assertRaises(RuntimeError):
            with self.repo.spot_lock(self.spot.spot_id):
                raise RuntimeError("boom")

        result, _ = self.repo.create_booking(self.spot.spot_id, self.guest.user_id, "2024-01-10", "2024-01-15", now=NOW)
        self.assertTrue(result.accepted)


class TestStorageRecovery(RepositoryTestCase):
    def test_corrupted_yaml_is_backed_up_and_reset(self) -> None:
        (self.data_dir / "bookings.yaml").write_text("- [unclosed", encoding="utf-8")

        self.assertEqual(self.repo.fetch_bookings_for_spot(self.spot.spot_id), [])
        self.assertTrue(list(self.data_dir.glob("bookings.corrupt.*.yaml")))
        self.assertIn("YAML_RECOVERED", self.events())

    def test_non_mapping_rows_are_skipped(self) -> None:
        (self.data_dir / "users.yaml").write_text("- just a string\n", encoding="utf-8")

        self.assertEqual(self.repo.get_users(), [])
        self.assertIn("YAML_ROW_SKIPPED", self.events())

    def test_write_failure_raises_storage_error(self) -> None:
        with mock.patch.object(Path, "replace", side_effect=OSError("disk full")):
            with self.assertRaises(SpotStorageError):
                self.repo.insert_booking(
                    self.spot.spot_id,
                    self.guest.user_id,
                    BookingInterval(date(2024, 1, 10), date(2024, 1, 15)),
                    now=NOW,
                )

        self.assertFalse((self.data_dir / "bookings.yaml.tmp").exists())
        self.assertEqual(self.repo.fetch_bookings_for_spot(self.spot.spot_id), [])


class TestSeedTestData(unittest.TestCase):
    def test_seed_generates_consistent_non_overlapping_data(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            repo = SpotYamlRepository(Path(temp_dir) / "data")
            bookings = repo.seed_test_data(now=NOW, overwrite=True)

            spots = repo.list_spots()
            self.assertEqual(len(spots), 3)
            self.assertEqual(len(repo.get_users()), 3)
            self.assertGreater(len(bookings), 0)

            for spot in spots:
                stays = sorted(repo.fetch_bookings_for_spot(spot.spot_id), key=lambda row: row.booking_id)
                for index, later in enumerate(stays):
                    for earlier in stays[:index]:
                        self.assertFalse(earlier.start_date <= later.start_date <= earlier.end_date)
                        self.assertFalse(earlier.start_date <= later.end_date <= earlier.end_date)
                for booking in stays:
                    self.assertNotEqual(booking.user_id, spot.owner_id)
                    self.assertGreater(booking.start_date, NOW.date())

            self.assertIn("TEST_DATA_GENERATED", (Path(temp_dir) / "data" / "spot_events.yaml").read_text(encoding="utf-8"))


if __name__ == "__main__":
    unittest.main()
