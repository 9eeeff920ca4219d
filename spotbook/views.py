"""Public JSON shapes for spots, reviews and bookings.

Each function builds the exact response body from stored records; nothing
private (usernames, parent ids on nested images) is ever copied in.
"""

from __future__ import annotations

from typing import Any, Iterable

from .yaml_store import BookingRecord, ReviewRecord, SpotImageRecord, SpotRecord, UserRecord

NO_PREVIEW_IMAGE = "No image found"


def average_rating(reviews: Iterable[ReviewRecord]) -> float | None:
    stars = [review.stars for review in reviews]
    if not stars:
        return None
    return sum(stars) / len(stars)


def preview_image_url(images: Iterable[SpotImageRecord]) -> str:
    url = NO_PREVIEW_IMAGE
    for image in images:
        if image.preview:
            url = image.url
    return url


def _spot_fields(spot: SpotRecord) -> dict[str, Any]:
    return {
        "id": spot.spot_id,
        "ownerId": spot.owner_id,
        "address": spot.address,
        "city": spot.city,
        "state": spot.state,
        "country": spot.country,
        "lat": spot.lat,
        "lng": spot.lng,
        "name": spot.name,
        "description": spot.description,
        "price": spot.price,
        "createdAt": spot.created_at.isoformat(timespec="seconds"),
        "updatedAt": spot.updated_at.isoformat(timespec="seconds"),
    }


def user_view(user: UserRecord | None, user_id: int) -> dict[str, Any]:
    if user is None:
        return {"id": user_id, "firstName": None, "lastName": None}
    return {"id": user.user_id, "firstName": user.first_name, "lastName": user.last_name}


def spot_image_view(image: SpotImageRecord) -> dict[str, Any]:
    return {"id": image.image_id, "url": image.url, "preview": image.preview}


def spot_view(spot: SpotRecord) -> dict[str, Any]:
    return _spot_fields(spot)


def spot_summary(
    spot: SpotRecord,
    reviews: Iterable[ReviewRecord],
    images: Iterable[SpotImageRecord],
) -> dict[str, Any]:
    return {
        **_spot_fields(spot),
        "avgRating": average_rating(reviews),
        "previewImage": preview_image_url(images),
    }


def spot_detail(
    spot: SpotRecord,
    reviews: Iterable[ReviewRecord],
    images: Iterable[SpotImageRecord],
    owner: UserRecord | None,
) -> dict[str, Any]:
    reviews = list(reviews)
    return {
        **_spot_fields(spot),
        "numReviews": len(reviews),
        "avgStarRating": average_rating(reviews),
        "SpotImages": [spot_image_view(image) for image in images],
        "Owner": user_view(owner, spot.owner_id),
    }


def review_view(review: ReviewRecord, user: UserRecord | None = None) -> dict[str, Any]:
    return {
        "id": review.review_id,
        "userId": review.user_id,
        "spotId": review.spot_id,
        "review": review.review,
        "stars": review.stars,
        "createdAt": review.created_at.isoformat(timespec="seconds"),
        "updatedAt": review.updated_at.isoformat(timespec="seconds"),
        "User": user_view(user, review.user_id),
    }


def booking_view(booking: BookingRecord) -> dict[str, Any]:
    return {
        "id": booking.booking_id,
        "spotId": booking.spot_id,
        "userId": booking.user_id,
        "startDate": booking.start_date.isoformat(),
        "endDate": booking.end_date.isoformat(),
        "createdAt": booking.created_at.isoformat(timespec="seconds"),
        "updatedAt": booking.updated_at.isoformat(timespec="seconds"),
    }


def booking_public_view(booking: BookingRecord) -> dict[str, Any]:
    return {
        "spotId": booking.spot_id,
        "startDate": booking.start_date.isoformat(),
        "endDate": booking.end_date.isoformat(),
    }


def booking_owner_view(booking: BookingRecord, user: UserRecord | None) -> dict[str, Any]:
    return {"User": user_view(user, booking.user_id), **booking_view(booking)}
