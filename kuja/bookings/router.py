from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session
from typing import Optional
from datetime import date

from kuja.database import get_db
from kuja.config import settings
from kuja.auth.dependencies import get_session, require_admin, SessionContext
from kuja.bookings.schemas import (
    BookingCreateRequest, BookingStatusUpdate, BookingCancellationRequest, BookingSearchFilters,
    BookingStatus, PaymentStatus, Booking, BookingEnvelope, BookingList, CancellationResult, UserStats
)
from kuja.bookings.booking_service import BookingService
from kuja.payments.gateways import PaymentGateway, get_gateway
from kuja.errors import KujaError, Forbidden, to_http_exception

router = APIRouter()
user_router = APIRouter()

def _envelope(booking) -> BookingEnvelope:
    return BookingEnvelope(booking=Booking.model_validate(booking))

def _listing(bookings) -> BookingList:
    return BookingList(bookings=[Booking.model_validate(b) for b in bookings])

@router.post("", response_model=BookingEnvelope, status_code=status.HTTP_201_CREATED)
def create_booking(
    request: BookingCreateRequest,
    session: SessionContext = Depends(get_session),
    db: Session = Depends(get_db)
):
    """Create a pending booking and hold its seats"""
    try:
        booking = BookingService(db).create_booking(
            package_id=request.package_id,
            user_id=session.user_id,
            customer_info=request.customer_info,
            travel_date=request.travel_date,
            number_of_travelers=request.number_of_travelers,
            special_requests=request.special_requests
        )
    except KujaError as e:
        raise to_http_exception(e)

    return _envelope(booking)

@router.get("", response_model=BookingList)
def list_bookings(
    booking_status: Optional[BookingStatus] = Query(None, alias="status"),
    payment_status: Optional[PaymentStatus] = Query(None, alias="paymentStatus"),
    package_id: Optional[int] = Query(None, alias="packageId"),
    date_from: Optional[date] = Query(None, alias="dateFrom"),
    date_to: Optional[date] = Query(None, alias="dateTo"),
    search: Optional[str] = Query(None, description="Customer name, email or transaction id"),
    session: SessionContext = Depends(get_session),
    db: Session = Depends(get_db)
):
    """All bookings for admins, the caller's own otherwise"""
    filters = BookingSearchFilters(
        user_id=None if session.is_admin else session.user_id,
        package_id=package_id,
        status=booking_status,
        payment_status=payment_status,
        date_from=date_from,
        date_to=date_to,
        search=search
    )
    return _listing(BookingService(db).list_bookings(filters))

@router.post("/expire-pending")
def expire_pending_bookings(
    max_age_hours: int = Query(settings.BOOKING_HOLD_HOURS, alias="maxAgeHours", ge=1),
    admin: SessionContext = Depends(require_admin),
    gateway: PaymentGateway = Depends(get_gateway),
    db: Session = Depends(get_db)
):
    """Cancel unpaid bookings older than the hold window and free their seats"""
    result = BookingService(db, gateway).cancel_stale_pending(max_age_hours)
    return {"success": True, **result}

@router.get("/{booking_id}", response_model=BookingEnvelope)
def get_booking(
    booking_id: int,
    session: SessionContext = Depends(get_session),
    db: Session = Depends(get_db)
):
    try:
        booking = BookingService(db).get_booking(booking_id, session)
    except KujaError as e:
        raise to_http_exception(e)
    return _envelope(booking)

@router.patch("/{booking_id}/status", response_model=BookingEnvelope)
def update_booking_status(
    booking_id: int,
    update: BookingStatusUpdate,
    session: SessionContext = Depends(get_session),
    gateway: PaymentGateway = Depends(get_gateway),
    db: Session = Depends(get_db)
):
    """Drive a booking through its lifecycle. Owners may only cancel."""
    try:
        booking = BookingService(db, gateway).update_status(
            booking_id, update.status, session, reason=update.reason
        )
    except KujaError as e:
        raise to_http_exception(e)
    return _envelope(booking)

# Traveller dashboard
@user_router.get("/bookings", response_model=BookingList)
def get_user_bookings(
    user_id: Optional[int] = Query(None, alias="userId"),
    booking_status: Optional[BookingStatus] = Query(None, alias="status"),
    session: SessionContext = Depends(get_session),
    db: Session = Depends(get_db)
):
    """Bookings of one user, newest first"""
    user_id = user_id or session.user_id
    if not session.is_admin and not session.owns(user_id):
        raise to_http_exception(Forbidden("Access denied"))

    bookings = BookingService(db).list_user_bookings(
        user_id, BookingSearchFilters(status=booking_status)
    )
    return _listing(bookings)

@user_router.post("/bookings/cancel", response_model=CancellationResult)
def cancel_user_booking(
    request: BookingCancellationRequest,
    session: SessionContext = Depends(get_session),
    gateway: PaymentGateway = Depends(get_gateway),
    db: Session = Depends(get_db)
):
    """Cancel one's own booking, refunding it when it was paid"""
    if not session.is_admin and not session.owns(request.user_id):
        raise to_http_exception(Forbidden("Access denied"))

    try:
        booking, refunded = BookingService(db, gateway).cancel(
            request.booking_id, request.user_id, request.reason
        )
    except KujaError as e:
        raise to_http_exception(e)

    message = "Booking cancelled successfully"
    if refunded:
        message += ". Your payment has been refunded."
    elif booking.payment_status == PaymentStatus.PAID.value:
        message += ". The refund could not be processed yet; our team will follow up."

    return CancellationResult(
        message=message,
        refunded=refunded,
        booking=Booking.model_validate(booking)
    )

@user_router.get("/stats", response_model=UserStats)
def get_user_stats(
    session: SessionContext = Depends(get_session),
    db: Session = Depends(get_db)
):
    return UserStats(**BookingService(db).user_stats(session.user_id))
