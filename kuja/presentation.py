"""
Display lookups shared by every client view.

One table maps each (kind, status) pair to its badge label, colour classes
and icon name, replacing the per-page switch statements. ``classify_booking_action``
decides what the package "Book" button shows.
"""

from dataclasses import dataclass, asdict
from datetime import date
from typing import Dict, Optional, Tuple

GREEN = "bg-green-500/20 text-green-400 border-green-500/30"
YELLOW = "bg-yellow-500/20 text-yellow-400 border-yellow-500/30"
RED = "bg-red-500/20 text-red-400 border-red-500/30"
BLUE = "bg-blue-500/20 text-blue-400 border-blue-500/30"
PURPLE = "bg-purple-500/20 text-purple-400 border-purple-500/30"
GRAY = "bg-gray-500/20 text-gray-400 border-gray-500/30"

PRE_BOOKING_WINDOW_DAYS = 30

@dataclass(frozen=True)
class StatusDisplay:
    label: str
    color: str
    icon: str

STATUS_DISPLAY: Dict[Tuple[str, str], StatusDisplay] = {
    ("booking", "pending"): StatusDisplay("Pending", YELLOW, "clock"),
    ("booking", "confirmed"): StatusDisplay("Confirmed", GREEN, "check-circle"),
    ("booking", "cancelled"): StatusDisplay("Cancelled", RED, "x-circle"),
    ("booking", "completed"): StatusDisplay("Completed", BLUE, "flag"),
    ("payment", "pending"): StatusDisplay("Pending", YELLOW, "clock"),
    ("payment", "paid"): StatusDisplay("Paid", GREEN, "check-circle"),
    ("payment", "completed"): StatusDisplay("Completed", GREEN, "check-circle"),
    ("payment", "failed"): StatusDisplay("Failed", RED, "x-circle"),
    ("payment", "refunded"): StatusDisplay("Refunded", PURPLE, "refresh-cw"),
    ("package", "active"): StatusDisplay("Active", GREEN, "play"),
    ("package", "upcoming"): StatusDisplay("Upcoming", BLUE, "calendar"),
    ("package", "soldout"): StatusDisplay("Sold Out", RED, "alert-circle"),
    ("package", "inactive"): StatusDisplay("Inactive", GRAY, "pause"),
}

UNKNOWN_STATUS = StatusDisplay("Unknown", GRAY, "help-circle")

def status_display(kind: str, status: Optional[str]) -> StatusDisplay:
    return STATUS_DISPLAY.get((kind, status or ""), UNKNOWN_STATUS)

def status_table() -> Dict[str, Dict[str, dict]]:
    """The display table nested as {kind: {status: display}} for JSON clients"""
    table: Dict[str, Dict[str, dict]] = {}
    for (kind, status), display in STATUS_DISPLAY.items():
        table.setdefault(kind, {})[status] = asdict(display)
    return table

@dataclass(frozen=True)
class BookingAction:
    label: str
    enabled: bool
    reason: str

def classify_booking_action(package, today: Optional[date] = None) -> BookingAction:
    """Map a package's status and seats to the booking button state"""
    today = today or date.today()
    seats = package.available_seats or 0

    if package.status == "soldout" or seats <= 0:
        return BookingAction("Sold Out", False, "This package is fully booked")

    if package.status == "inactive":
        return BookingAction("Trip Ended", False, "This trip has already concluded")

    if package.status == "upcoming":
        if package.start_date:
            days_until_start = (package.start_date - today).days
            label = "Pre-Book Now" if days_until_start > PRE_BOOKING_WINDOW_DAYS else "Book Now"
            reason = f"Trip starts in {days_until_start} days - {seats} seats available"
        else:
            label = "Book Now"
            reason = f"{seats} seats available"
        return BookingAction(label, True, reason)

    if package.status == "active":
        return BookingAction("Book Now", True, f"Trip in progress - {seats} seats still available")

    return BookingAction("Unavailable", False, "This package is not available for booking")
