from pydantic import EmailStr, Field, validator
from typing import List, Optional
from datetime import datetime, date
from decimal import Decimal
from enum import Enum
from kuja.schemas import CamelModel

class BookingStatus(str, Enum):
    """Booking status enumeration"""
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    COMPLETED = "completed"

class PaymentStatus(str, Enum):
    """Booking payment status enumeration"""
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"

class CustomerInfo(CamelModel):
    name: str = Field(..., min_length=1, max_length=255)
    email: EmailStr
    phone: str = Field(..., min_length=7, max_length=30)
    emergency_contact: Optional[str] = None

# Requests
class BookingCreateRequest(CamelModel):
    """Body of POST /bookings"""
    package_id: int
    customer_info: CustomerInfo
    travel_date: date
    number_of_travelers: int = Field(..., ge=1)
    special_requests: Optional[str] = Field(None, max_length=2000)

class BookingStatusUpdate(CamelModel):
    status: BookingStatus
    reason: Optional[str] = None

class BookingCancellationRequest(CamelModel):
    """Body of POST /user/bookings/cancel"""
    booking_id: int
    user_id: int
    reason: Optional[str] = Field(None, max_length=500)

    @validator('reason')
    def strip_reason(cls, v):
        if v is not None:
            v = v.strip()
        return v or None

class BookingSearchFilters(CamelModel):
    user_id: Optional[int] = None
    package_id: Optional[int] = None
    status: Optional[BookingStatus] = None
    payment_status: Optional[PaymentStatus] = None
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    search: Optional[str] = None

# Responses
class PackageSummary(CamelModel):
    id: int
    name: str
    image_url: Optional[str] = None
    duration_days: int
    destination_name: Optional[str] = None

class Booking(CamelModel):
    id: int
    user_id: int
    package_id: int
    package: Optional[PackageSummary] = None
    customer_info: CustomerInfo
    travel_date: date
    number_of_travelers: int
    total_amount: Decimal
    status: BookingStatus
    payment_status: PaymentStatus
    payment_method: Optional[str] = None
    payment_id: Optional[int] = None
    transaction_id: Optional[str] = None
    paid_at: Optional[datetime] = None
    special_requests: Optional[str] = None
    cancellation_reason: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

class BookingEnvelope(CamelModel):
    success: bool = True
    booking: Booking

class BookingList(CamelModel):
    success: bool = True
    bookings: List[Booking]

class CancellationResult(CamelModel):
    success: bool = True
    message: str = "Booking cancelled successfully"
    refunded: bool
    booking: Booking

class UserStats(CamelModel):
    total_bookings: int
    pending_bookings: int
    confirmed_bookings: int
    completed_bookings: int
    cancelled_bookings: int
    upcoming_trips: int
    total_spent: Decimal
