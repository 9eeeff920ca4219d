from __future__ import annotations

from pathlib import Path

from mcp.server.fastmcp import FastMCP

from spotbook import ProposedBooking, SpotNotFoundError, SpotYamlRepository, check
from spotbook.views import booking_public_view, spot_summary

mcp = FastMCP(
    "Spotbook MCP Server",
    instructions="Expose spot listings and booking availability checks from the spotbook project.",
    json_response=True,
)

DATA_DIR = Path(__file__).parent / "data"
REPOSITORY = SpotYamlRepository(DATA_DIR)


@mcp.resource("spotbook://spots")
async def list_spot_names() -> list[str]:
    """List the names of all spots."""
    return [spot.name for spot in REPOSITORY.list_spots()]


@mcp.tool()
def list_spots(city: str | None = None) -> list[dict]:
    """Return spot summaries, optionally filtered by city."""
    spots = [spot for spot in REPOSITORY.list_spots() if city is None or spot.city.lower() == city.lower()]
    return [
        spot_summary(spot, REPOSITORY.get_reviews_for_spot(spot.spot_id), REPOSITORY.get_spot_images(spot.spot_id))
        for spot in spots
    ]


@mcp.tool()
def list_spot_bookings(spot_id: int) -> list[dict[str, str]]:
    """Return the booked date ranges of a spot."""
    return [booking_public_view(booking) for booking in REPOSITORY.fetch_bookings_for_spot(spot_id)]


@mcp.tool()
def check_spot_availability(spot_id: int, start_date: str, end_date: str) -> dict:
    """Check whether a stay could be booked without creating it."""
    try:
        REPOSITORY.get_spot(spot_id)
    except SpotNotFoundError as error:
        return {"accepted": False, "message": str(error), "errors": {}}

    result = check(ProposedBooking(start_date, end_date), REPOSITORY.fetch_bookings_for_spot(spot_id))
    return {
        "accepted": result.accepted,
        "kind": result.kind.value if result.kind else None,
        "errors": dict(result.errors),
    }


def main() -> None:
    mcp.run()


if __name__ == "__main__":
    main()
