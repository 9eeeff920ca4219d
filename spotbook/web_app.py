from __future__ import annotations

from collections import defaultdict
from datetime import datetime
from pathlib import Path
from typing import Any, Callable
import os

from flask import Flask, jsonify, request

from .booking import RejectionKind, ConflictResult, parse_calendar_date
from .views import (
    booking_owner_view,
    booking_public_view,
    booking_view,
    preview_image_url,
    review_view,
    spot_detail,
    spot_image_view,
    spot_summary,
    spot_view,
)
from .yaml_store import DuplicateReviewError, SpotNotFoundError, SpotYamlRepository

USER_ID_HEADER = "X-User-Id"
SPOT_NOT_FOUND_MESSAGE = "Spot couldn't be found"
PAST_START_MESSAGE = "startDate cannot be in the past"
MAX_SPOT_NAME_LENGTH = 50

_REJECTION_RESPONSES = {
    RejectionKind.MISSING_FIELD: (400, "Bad Request"),
    RejectionKind.INVALID_ORDERING: (400, "Bad Request"),
    RejectionKind.DATE_OVERLAP: (403, "Sorry, this spot is already booked for the specified dates"),
}


def create_app(
    data_dir: str | Path = "data",
    now_provider: Callable[[], datetime] | None = None,
    user_provider: Callable[[], int | None] | None = None,
) -> Flask:
    app = Flask(__name__)
    repository = SpotYamlRepository(data_dir)
    clock: Callable[[], datetime] = now_provider or datetime.now
    current_user: Callable[[], int | None] = user_provider or _user_id_from_header

    def _users_by_id() -> dict[int, Any]:
        return {user.user_id: user for user in repository.get_users()}

    def _summaries(spots: list[Any]) -> list[dict[str, Any]]:
        reviews_by_spot: dict[int, list[Any]] = defaultdict(list)
        for review in repository.get_reviews():
            reviews_by_spot[review.spot_id].append(review)
        images_by_spot: dict[int, list[Any]] = defaultdict(list)
        for image in repository.get_spot_images():
            images_by_spot[image.spot_id].append(image)
        return [spot_summary(spot, reviews_by_spot[spot.spot_id], images_by_spot[spot.spot_id]) for spot in spots]

    @app.after_request
    def add_cors_headers(response: Any) -> Any:
        response.headers["Access-Control-Allow-Origin"] = "*"
        response.headers["Access-Control-Allow-Methods"] = "GET,POST,PUT,DELETE,OPTIONS"
        response.headers["Access-Control-Allow-Headers"] = f"Content-Type,{USER_ID_HEADER}"
        return response

    @app.get("/api/spots")
    def get_spots() -> Any:
        return jsonify({"Spots": _summaries(repository.list_spots())})

    @app.get("/api/spots/current")
    def get_current_spots() -> Any:
        user_id = current_user()
        if user_id is None:
            return _unauthorized()
        return jsonify({"Spots": _summaries(repository.list_spots(owner_id=user_id))})

    @app.get("/api/spots/<int:spot_id>")
    def get_spot(spot_id: int) -> Any:
        spot = repository.find_spot(spot_id)
        if spot is None:
            return _spot_not_found()

        return jsonify(
            spot_detail(
                spot,
                repository.get_reviews_for_spot(spot_id),
                repository.get_spot_images(spot_id),
                repository.get_user(spot.owner_id),
            )
        )

    @app.post("/api/spots")
    def create_spot() -> Any:
        user_id = current_user()
        if user_id is None:
            return _unauthorized()

        payload = _json_object()
        errors = _validate_spot_payload(payload)
        if errors:
            return _bad_request(errors)

        created = repository.add_spot(user_id, payload, now=clock())
        return jsonify(spot_view(created)), 201

    @app.put("/api/spots/<int:spot_id>")
    def edit_spot(spot_id: int) -> Any:
        user_id = current_user()
        if user_id is None:
            return _unauthorized()

        payload = _json_object()
        errors = _validate_spot_payload(payload)
        if errors:
            return _bad_request(errors)

        spot = repository.find_spot(spot_id)
        if spot is None:
            return _spot_not_found()
        if spot.owner_id != user_id:
            return _forbidden()

        updated = repository.update_spot(spot_id, payload, now=clock())
        return jsonify(spot_view(updated))

    @app.delete("/api/spots/<int:spot_id>")
    def delete_spot(spot_id: int) -> Any:
        user_id = current_user()
        if user_id is None:
            return _unauthorized()

        spot = repository.find_spot(spot_id)
        if spot is None:
            return _spot_not_found()
        if spot.owner_id != user_id:
            return _forbidden()

        try:
            repository.delete_spot(spot_id, now=clock())
        except SpotNotFoundError:
            return _spot_not_found()
        return jsonify({"message": "Successfully deleted"})

    @app.post("/api/spots/<int:spot_id>/images")
    def add_spot_image(spot_id: int) -> Any:
        user_id = current_user()
        if user_id is None:
            return _unauthorized()

        spot = repository.find_spot(spot_id)
        if spot is None:
            return _spot_not_found()
        if spot.owner_id != user_id:
            return _forbidden()

        payload = _json_object()
        url = str(payload.get("url") or "").strip()
        if not url:
            return _bad_request({"url": "Image url is required"})

        created = repository.add_spot_image(spot_id, url, preview=bool(payload.get("preview", False)), now=clock())
        return jsonify(spot_image_view(created))

    @app.get("/api/spots/<int:spot_id>/reviews")
    def get_spot_reviews(spot_id: int) -> Any:
        if repository.find_spot(spot_id) is None:
            return _spot_not_found()

        users = _users_by_id()
        reviews = repository.get_reviews_for_spot(spot_id)
        return jsonify({"Reviews": [review_view(review, users.get(review.user_id)) for review in reviews]})

    @app.post("/api/spots/<int:spot_id>/reviews")
    def create_spot_review(spot_id: int) -> Any:
        user_id = current_user()
        if user_id is None:
            return _unauthorized()

        payload = _json_object()
        errors = _validate_review_payload(payload)
        if errors:
            return _bad_request(errors)

        if repository.find_spot(spot_id) is None:
            return _spot_not_found()

        try:
            created = repository.add_review(
                spot_id,
                user_id,
                str(payload["review"]).strip(),
                int(payload["stars"]),
                now=clock(),
            )
        except SpotNotFoundError:
            return _spot_not_found()
        except DuplicateReviewError as error:
            return jsonify({"message": str(error)}), 500

        return jsonify(review_view(created, repository.get_user(user_id))), 201

    @app.get("/api/spots/<int:spot_id>/bookings")
    def get_spot_bookings(spot_id: int) -> Any:
        user_id = current_user()
        if user_id is None:
            return _unauthorized()

        spot = repository.find_spot(spot_id)
        if spot is None:
            return _spot_not_found()

        bookings = sorted(repository.fetch_bookings_for_spot(spot_id), key=lambda booking: booking.start_date)
        if spot.owner_id == user_id:
            users = _users_by_id()
            return jsonify({"Bookings": [booking_owner_view(booking, users.get(booking.user_id)) for booking in bookings]})
        return jsonify({"Bookings": [booking_public_view(booking) for booking in bookings]})

    @app.post("/api/spots/<int:spot_id>/bookings")
    def create_spot_booking(spot_id: int) -> Any:
        user_id = current_user()
        if user_id is None:
            return _unauthorized()

        spot = repository.find_spot(spot_id)
        if spot is None:
            return _spot_not_found()
        if spot.owner_id == user_id:
            return _forbidden()

        payload = _json_object()
        start_value = payload.get("startDate")
        end_value = payload.get("endDate")
        now = clock()

        start = parse_calendar_date(start_value)
        end = parse_calendar_date(end_value)
        if start is not None and end is not None and start < end and start < now.date():
            return _bad_request({"startDate": PAST_START_MESSAGE})

        try:
            result, created = repository.create_booking(spot_id, user_id, start_value, end_value, now=now)
        except SpotNotFoundError:
            return _spot_not_found()
        except Exception:
            return jsonify({"message": "An unexpected error occurred while saving the booking."}), 500

        if not result.accepted:
            return _rejection_response(result)
        return jsonify(booking_view(created)), 201

    @app.get("/api/bookings/current")
    def get_current_bookings() -> Any:
        user_id = current_user()
        if user_id is None:
            return _unauthorized()

        payload: list[dict[str, Any]] = []
        for booking in sorted(repository.get_bookings_for_user(user_id), key=lambda row: row.start_date):
            spot = repository.find_spot(booking.spot_id)
            if spot is None:
                continue
            payload.append(
                {
                    **booking_view(booking),
                    "Spot": {
                        **spot_view(spot),
                        "previewImage": preview_image_url(repository.get_spot_images(spot.spot_id)),
                    },
                }
            )
        return jsonify({"Bookings": payload})

    return app


def _json_object() -> dict[str, Any]:
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        return {}
    return payload


def _user_id_from_header() -> int | None:
    raw = request.headers.get(USER_ID_HEADER, "").strip()
    try:
        return int(raw)
    except ValueError:
        return None


def _rejection_response(result: ConflictResult) -> Any:
    status, message = _REJECTION_RESPONSES[result.kind]
    return jsonify({"message": message, "errors": dict(result.errors)}), status


def _bad_request(errors: dict[str, str]) -> Any:
    return jsonify({"message": "Bad Request", "errors": errors}), 400


def _unauthorized() -> Any:
    return jsonify({"message": "Authentication required"}), 401


def _forbidden() -> Any:
    return jsonify({"message": "Forbidden"}), 403


def _spot_not_found() -> Any:
    return jsonify({"message": SPOT_NOT_FOUND_MESSAGE}), 404


def _validate_spot_payload(payload: dict[str, Any]) -> dict[str, str]:
    errors: dict[str, str] = {}
    required_messages = {
        "address": "Street address is required",
        "city": "City is required",
        "state": "State is required",
        "country": "Country is required",
        "description": "Description is required",
    }
    for name, message in required_messages.items():
        if not str(payload.get(name) or "").strip():
            errors[name] = message

    if not _is_decimal(payload.get("lat")):
        errors["lat"] = "Latitude is not valid"
    if not _is_decimal(payload.get("lng")):
        errors["lng"] = "Longitude is not valid"

    name = str(payload.get("name") or "").strip()
    if not name or len(name) > MAX_SPOT_NAME_LENGTH:
        errors["name"] = f"Name must be less than {MAX_SPOT_NAME_LENGTH} characters"

    if not _is_decimal(payload.get("price")) or float(payload["price"]) <= 0:
        errors["price"] = "Price per day is required"

    return errors


def _validate_review_payload(payload: dict[str, Any]) -> dict[str, str]:
    errors: dict[str, str] = {}
    if not str(payload.get("review") or "").strip():
        errors["review"] = "Review text is required"

    stars = payload.get("stars")
    if isinstance(stars, bool) or not _is_integer(stars) or not 1 <= int(stars) <= 5:
        errors["stars"] = "Stars must be an integer from 1 to 5"
    return errors


def _is_decimal(value: Any) -> bool:
    if value is None or isinstance(value, bool) or value == "":
        return False
    try:
        float(value)
    except (TypeError, ValueError):
        return False
    return True


def _is_integer(value: Any) -> bool:
    if isinstance(value, int):
        return True
    if not isinstance(value, str):
        return False
    try:
        int(value)
    except ValueError:
        return False
    return True


if __name__ == "__main__":
    app = create_app(os.environ.get("SPOTBOOK_DATA_DIR", "data"))
    app.run(
        host=os.environ.get("SPOTBOOK_HOST", "127.0.0.1"),
        port=int(os.environ.get("SPOTBOOK_PORT", "5000")),
        debug=False,
    )
