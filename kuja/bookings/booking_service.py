from typing import List, Dict, Optional, Tuple
from datetime import date, timedelta
from decimal import Decimal
from sqlalchemy.orm import Session, joinedload
from sqlalchemy import or_, func
import logging

from kuja.models import Booking, TravelPackage
from kuja.bookings.schemas import BookingStatus, PaymentStatus, CustomerInfo, BookingSearchFilters
from kuja.bookings.ledger import AvailabilityLedger
from kuja.auth.dependencies import SessionContext
from kuja.utils import utcnow
from kuja.errors import (
    NotFound, Forbidden, ValidationFailed, InvalidTravelDate, CapacityExceeded,
    InsufficientSeats, PackageUnavailable, InvalidTransition, AlreadyFinal
)

logger = logging.getLogger(__name__)

# Every other (from, to) pair is rejected
ALLOWED_TRANSITIONS = {
    BookingStatus.PENDING.value: {BookingStatus.CONFIRMED.value, BookingStatus.CANCELLED.value},
    BookingStatus.CONFIRMED.value: {BookingStatus.CANCELLED.value, BookingStatus.COMPLETED.value},
}

OPEN_STATUSES = [BookingStatus.PENDING.value, BookingStatus.CONFIRMED.value]
BOOKABLE_PACKAGE_STATUSES = {"active", "upcoming"}

def compute_total_amount(package: TravelPackage, number_of_travelers: int) -> Decimal:
    """Price times travelers, or zero for free packages"""
    if package.is_free:
        return Decimal("0")
    return Decimal(package.price) * number_of_travelers

class BookingService:
    """Owns the canonical state of bookings and their status transitions"""

    def __init__(self, db: Session, gateway=None):
        self.db = db
        self.ledger = AvailabilityLedger(db)
        self.gateway = gateway

    def create_booking(
        self,
        package_id: int,
        user_id: int,
        customer_info: CustomerInfo,
        travel_date: date,
        number_of_travelers: int,
        special_requests: Optional[str] = None,
        today: Optional[date] = None
    ) -> Booking:
        """Create a pending booking and reserve its seats in one transaction"""

        today = today or date.today()
        if travel_date < today:
            raise InvalidTravelDate("Travel date cannot be in the past")

        if number_of_travelers < 1:
            raise ValidationFailed("At least one traveler is required")

        package = self.db.query(TravelPackage).populate_existing().filter(TravelPackage.id == package_id).first()
        if not package:
            raise NotFound("Package not found")

        if package.status == "inactive":
            raise PackageUnavailable("This package is not available for booking")

        if number_of_travelers > package.available_seats:
            raise CapacityExceeded(
                f"Only {package.available_seats} seat(s) available, {number_of_travelers} requested"
            )

        if package.status not in BOOKABLE_PACKAGE_STATUSES:
            raise PackageUnavailable("This package is not available for booking")

        total_amount = compute_total_amount(package, number_of_travelers)

        try:
            self.ledger.reserve(package_id, number_of_travelers)
        except InsufficientSeats as e:
            # Lost a race with a concurrent booking
            self.db.rollback()
            raise CapacityExceeded(e.message) from e

        booking = Booking(
            user_id=user_id,
            package_id=package_id,
            customer_name=customer_info.name,
            customer_email=customer_info.email,
            customer_phone=customer_info.phone,
            emergency_contact=customer_info.emergency_contact,
            travel_date=travel_date,
            number_of_travelers=number_of_travelers,
            total_amount=total_amount,
            special_requests=special_requests or "",
            status=BookingStatus.PENDING.value,
            payment_status=PaymentStatus.PENDING.value
        )

        try:
            self.db.add(booking)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        self.db.refresh(booking)
        self.db.refresh(package)

        logger.info(
            "Booking %s created for package %s: %s traveler(s), amount %s",
            booking.id, package_id, number_of_travelers, total_amount
        )
        return booking

    def update_status(
        self,
        booking_id: int,
        new_status: BookingStatus,
        actor: SessionContext,
        reason: Optional[str] = None
    ) -> Booking:
        """Apply a status transition on behalf of ``actor``.

        Owners may only cancel their own booking; admins may drive any
        allowed transition.
        """
        booking = self._get(booking_id)
        new_status = BookingStatus(new_status).value

        if not actor.is_admin:
            if not actor.owns(booking.user_id) or new_status != BookingStatus.CANCELLED.value:
                raise Forbidden("Access denied")

        current = booking.status
        if new_status not in ALLOWED_TRANSITIONS.get(current, set()):
            raise InvalidTransition(f"Cannot change booking status from {current} to {new_status}")

        if new_status == BookingStatus.CANCELLED.value:
            booking, _ = self._cancel(booking, reason)
            return booking

        updated = self.db.query(Booking).filter(
            Booking.id == booking_id,
            Booking.status == current
        ).update(
            {Booking.status: new_status, Booking.updated_at: utcnow()},
            synchronize_session=False
        )
        if updated == 0:
            self.db.rollback()
            raise InvalidTransition("Booking was modified by another request")

        self.db.commit()
        self.db.refresh(booking)
        logger.info("Booking %s: %s -> %s by user %s", booking_id, current, new_status, actor.user_id)
        return booking

    def cancel(self, booking_id: int, user_id: int, reason: Optional[str] = None) -> Tuple[Booking, bool]:
        """Owner cancellation. Returns the booking and whether a refund was issued."""
        booking = self._get(booking_id)

        if booking.user_id != user_id:
            raise Forbidden("Access denied")

        if booking.status == BookingStatus.CANCELLED.value:
            raise AlreadyFinal("Booking is already cancelled")
        if booking.status == BookingStatus.COMPLETED.value:
            raise AlreadyFinal("Cannot cancel a completed booking")

        return self._cancel(booking, reason)

    def get_booking(self, booking_id: int, actor: SessionContext) -> Booking:
        booking = self._get(booking_id)
        if not actor.is_admin and not actor.owns(booking.user_id):
            raise Forbidden("Access denied")
        return booking

    def list_user_bookings(self, user_id: int, filters: Optional[BookingSearchFilters] = None) -> List[Booking]:
        """Bookings of one user, newest first"""
        filters = filters or BookingSearchFilters()
        filters.user_id = user_id
        return self.list_bookings(filters)

    def list_bookings(self, filters: BookingSearchFilters) -> List[Booking]:
        query = self.db.query(Booking).options(
            joinedload(Booking.package).joinedload(TravelPackage.destination)
        )

        if filters.user_id:
            query = query.filter(Booking.user_id == filters.user_id)
        if filters.package_id:
            query = query.filter(Booking.package_id == filters.package_id)
        if filters.status:
            query = query.filter(Booking.status == filters.status.value)
        if filters.payment_status:
            query = query.filter(Booking.payment_status == filters.payment_status.value)
        if filters.date_from:
            query = query.filter(Booking.travel_date >= filters.date_from)
        if filters.date_to:
            query = query.filter(Booking.travel_date <= filters.date_to)
        if filters.search:
            pattern = f"%{filters.search}%"
            query = query.filter(
                or_(
                    Booking.customer_name.ilike(pattern),
                    Booking.customer_email.ilike(pattern),
                    Booking.transaction_id.ilike(pattern)
                )
            )

        return query.order_by(Booking.created_at.desc(), Booking.id.desc()).all()

    def user_stats(self, user_id: int, today: Optional[date] = None) -> Dict[str, object]:
        """Dashboard counters for one traveller"""
        today = today or date.today()
        counts = dict(
            self.db.query(Booking.status, func.count(Booking.id))
            .filter(Booking.user_id == user_id)
            .group_by(Booking.status)
            .all()
        )

        upcoming = self.db.query(func.count(Booking.id)).filter(
            Booking.user_id == user_id,
            Booking.status.in_(OPEN_STATUSES),
            Booking.travel_date >= today
        ).scalar()

        spent = self.db.query(func.coalesce(func.sum(Booking.total_amount), 0)).filter(
            Booking.user_id == user_id,
            Booking.payment_status == PaymentStatus.PAID.value
        ).scalar()

        return {
            "total_bookings": sum(counts.values()),
            "pending_bookings": counts.get(BookingStatus.PENDING.value, 0),
            "confirmed_bookings": counts.get(BookingStatus.CONFIRMED.value, 0),
            "completed_bookings": counts.get(BookingStatus.COMPLETED.value, 0),
            "cancelled_bookings": counts.get(BookingStatus.CANCELLED.value, 0),
            "upcoming_trips": upcoming or 0,
            "total_spent": Decimal(str(spent or 0)),
        }

    def cancel_stale_pending(self, max_age_hours: int) -> Dict[str, int]:
        """Release seats held by pending bookings that never received payment"""
        cutoff = utcnow() - timedelta(hours=max_age_hours)
        stale = self.db.query(Booking).filter(
            Booking.status == BookingStatus.PENDING.value,
            Booking.payment_status.in_([PaymentStatus.PENDING.value, PaymentStatus.FAILED.value]),
            Booking.created_at < cutoff
        ).all()

        cancelled = 0
        for booking in stale:
            try:
                self._cancel(booking, "Payment not received in time")
                cancelled += 1
            except AlreadyFinal:
                continue

        return {"examined": len(stale), "cancelled": cancelled}

    def _cancel(self, booking: Booking, reason: Optional[str]) -> Tuple[Booking, bool]:
        """Cancel, release seats exactly once, then refund if paid"""

        # The conditional update is what makes the seat release at-most-once
        now = utcnow()
        updated = self.db.query(Booking).filter(
            Booking.id == booking.id,
            Booking.status.in_(OPEN_STATUSES)
        ).update(
            {
                Booking.status: BookingStatus.CANCELLED.value,
                Booking.cancellation_reason: reason or "User cancelled booking",
                Booking.cancelled_at: now,
                Booking.updated_at: now,
            },
            synchronize_session=False
        )
        if updated == 0:
            self.db.rollback()
            raise AlreadyFinal("Booking is already cancelled")

        self.ledger.release(booking.package_id, booking.number_of_travelers)
        self.db.commit()
        self.db.refresh(booking)

        logger.info(
            "Booking %s cancelled, %s seat(s) returned to package %s",
            booking.id, booking.number_of_travelers, booking.package_id
        )

        refunded = False
        if booking.payment_status == PaymentStatus.PAID.value:
            from kuja.payments.service import PaymentService
            payment_service = PaymentService(self.db, self.gateway)
            refunded = payment_service.refund_booking(booking, reason or "Booking cancellation")
            self.db.refresh(booking)

        return booking, refunded

    def _get(self, booking_id: int) -> Booking:
        booking = self.db.query(Booking).options(
            joinedload(Booking.package)
        ).populate_existing().filter(Booking.id == booking_id).first()
        if not booking:
            raise NotFound("Booking not found")
        return booking
