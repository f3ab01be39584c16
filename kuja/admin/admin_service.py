from sqlalchemy.orm import Session
from sqlalchemy import func
from decimal import Decimal
from typing import Dict, Any
import logging

from kuja.models import User, TravelPackage, Booking, Payment
from kuja.auth.schemas import UserRole
from kuja.auth.service import UserService
from kuja.auth.dependencies import SessionContext
from kuja.bookings.schemas import BookingStatus
from kuja.payments.schemas import PaymentState, TransactionType
from kuja.errors import Conflict

logger = logging.getLogger(__name__)

class AdminService:
    def __init__(self, db: Session):
        self.db = db

    def change_role(self, actor: SessionContext, user_id: int, role: UserRole) -> User:
        """Promote or demote a user. Admins cannot demote themselves."""
        if actor.owns(user_id) and role != UserRole.ADMIN:
            raise Conflict("You cannot remove your own admin role")
        user = UserService.set_role(self.db, user_id, role)
        logger.info("Admin %s changed role of user %s to %s", actor.user_id, user_id, role.value)
        return user

    def get_stats(self) -> Dict[str, Any]:
        db = self.db

        bookings_by_status = {s.value: 0 for s in BookingStatus}
        for booking_status, count in db.query(Booking.status, func.count(Booking.id)).group_by(Booking.status).all():
            bookings_by_status[booking_status] = count

        package_counts = dict(
            db.query(TravelPackage.status, func.count(TravelPackage.id)).group_by(TravelPackage.status).all()
        )
        seats_booked, seats_available = db.query(
            func.coalesce(func.sum(TravelPackage.booked_seats), 0),
            func.coalesce(func.sum(TravelPackage.available_seats), 0)
        ).one()

        def payment_total(state: str, transaction_type: str) -> Decimal:
            total = db.query(func.coalesce(func.sum(Payment.amount), 0)).filter(
                Payment.status == state,
                Payment.transaction_type == transaction_type
            ).scalar()
            return Decimal(str(total or 0))

        return {
            "total_users": db.query(func.count(User.id)).scalar() or 0,
            "total_packages": sum(package_counts.values()),
            "active_packages": package_counts.get("active", 0) + package_counts.get("upcoming", 0),
            "soldout_packages": package_counts.get("soldout", 0),
            "total_bookings": sum(bookings_by_status.values()),
            "bookings_by_status": bookings_by_status,
            "pending_payments": db.query(func.count(Payment.id)).filter(
                Payment.status == PaymentState.PENDING.value,
                Payment.transaction_type == TransactionType.PAYMENT.value
            ).scalar() or 0,
            "total_revenue": payment_total(PaymentState.COMPLETED.value, TransactionType.PAYMENT.value),
            "total_refunded": payment_total(PaymentState.REFUNDED.value, TransactionType.REFUND.value),
            "seats_booked": int(seats_booked),
            "seats_available": int(seats_available),
        }
