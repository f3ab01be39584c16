from sqlalchemy.orm import Session
from sqlalchemy import case
import logging

from kuja.models import TravelPackage
from kuja.errors import InsufficientSeats, NotFound, ValidationFailed

logger = logging.getLogger(__name__)

class AvailabilityLedger:
    """Keeps package seat counters consistent with the non-cancelled bookings.

    Every mutation is a single conditional UPDATE so concurrent requests from
    separate server processes cannot oversell a package. Callers own the
    transaction: nothing here commits.
    """

    def __init__(self, db: Session):
        self.db = db

    def reserve(self, package_id: int, count: int) -> None:
        """Take ``count`` seats or raise ``InsufficientSeats``"""
        if count < 1:
            raise ValidationFailed("Seat count must be at least 1")

        updated = self.db.query(TravelPackage).filter(
            TravelPackage.id == package_id,
            TravelPackage.available_seats >= count
        ).update(
            {
                TravelPackage.available_seats: TravelPackage.available_seats - count,
                TravelPackage.booked_seats: TravelPackage.booked_seats + count,
            },
            synchronize_session=False
        )

        if updated == 0:
            package = self._get(package_id)
            raise InsufficientSeats(
                f"Only {package.available_seats} seat(s) available, {count} requested"
            )

        self._mark_sold_out(package_id)
        logger.info("Reserved %s seat(s) on package %s", count, package_id)

    def release(self, package_id: int, count: int) -> None:
        """Return ``count`` seats, never exceeding capacity.

        Callers must release at most once per booking; the clamp only keeps
        the counters sane if that contract is broken.
        """
        if count < 1:
            raise ValidationFailed("Seat count must be at least 1")

        restored = case(
            (TravelPackage.available_seats + count > TravelPackage.total_seats, TravelPackage.total_seats),
            else_=TravelPackage.available_seats + count
        )

        updated = self.db.query(TravelPackage).filter(
            TravelPackage.id == package_id
        ).update(
            {
                TravelPackage.available_seats: restored,
                TravelPackage.booked_seats: TravelPackage.total_seats - restored,
            },
            synchronize_session=False
        )

        if updated == 0:
            raise NotFound("Package not found")

        logger.info("Released %s seat(s) on package %s", count, package_id)

    def resize(self, package_id: int, total_seats: int) -> None:
        """Change capacity while keeping every booked seat"""
        updated = self.db.query(TravelPackage).filter(
            TravelPackage.id == package_id,
            TravelPackage.booked_seats <= total_seats
        ).update(
            {
                TravelPackage.total_seats: total_seats,
                TravelPackage.available_seats: total_seats - TravelPackage.booked_seats,
            },
            synchronize_session=False
        )

        if updated == 0:
            package = self._get(package_id)
            raise ValidationFailed(
                f"Cannot reduce capacity below the {package.booked_seats} seat(s) already booked"
            )

        self._mark_sold_out(package_id)
        logger.info("Resized package %s to %s seat(s)", package_id, total_seats)

    def _mark_sold_out(self, package_id: int) -> None:
        # Sold out is sticky; re-activation is an admin decision
        self.db.query(TravelPackage).filter(
            TravelPackage.id == package_id,
            TravelPackage.available_seats == 0
        ).update({TravelPackage.status: "soldout"}, synchronize_session=False)

    def _get(self, package_id: int) -> TravelPackage:
        package = self.db.query(TravelPackage).populate_existing().filter(
            TravelPackage.id == package_id
        ).first()
        if not package:
            raise NotFound("Package not found")
        return package
