from sqlalchemy import Column, Integer, String, Boolean, DateTime, Date, Text, ForeignKey, Numeric, JSON, UniqueConstraint, CheckConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from kuja.database import Base

# ================================
# Users
# ================================
class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    email = Column(String(255), unique=True, nullable=False, index=True)
    password = Column(String(255), nullable=False)
    role = Column(String(20), nullable=False, default="user", index=True)  # user | admin
    phone = Column(String(30))
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    # Relationships
    bookings = relationship("Booking", back_populates="user")
    payments = relationship("Payment", back_populates="user")
    reviews = relationship("Review", back_populates="user")

# ================================
# Catalog
# ================================
class Destination(Base):
    __tablename__ = "destinations"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    slug = Column(String(255), unique=True, nullable=False, index=True)
    description = Column(Text, nullable=False)
    region = Column(String(100), index=True)
    best_time_to_visit = Column(String(100))
    highlights = Column(JSON, default=list)
    activities = Column(JSON, default=list)
    image_url = Column(String(500))
    featured = Column(Boolean, default=False, index=True)
    active = Column(Boolean, default=True, index=True)
    average_rating = Column(Numeric(3, 2), default=0)
    total_reviews = Column(Integer, default=0)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    # Relationships
    packages = relationship("TravelPackage", back_populates="destination")
    reviews = relationship("DestinationReview", back_populates="destination", cascade="all, delete-orphan")

class TravelPackage(Base):
    __tablename__ = "packages"
    __table_args__ = (
        CheckConstraint("available_seats >= 0", name="ck_packages_available_seats"),
        CheckConstraint("booked_seats >= 0", name="ck_packages_booked_seats"),
        CheckConstraint("available_seats + booked_seats = total_seats", name="ck_packages_seat_balance"),
    )

    id = Column(Integer, primary_key=True, index=True)
    destination_id = Column(Integer, ForeignKey("destinations.id"), index=True)
    name = Column(String(255), nullable=False, index=True)
    description = Column(Text, nullable=False)
    duration_days = Column(Integer, nullable=False, default=1)
    price = Column(Numeric(12, 2), nullable=False, default=0)
    is_free = Column(Boolean, default=False)
    image_url = Column(String(500))
    start_date = Column(Date)
    end_date = Column(Date)
    featured = Column(Boolean, default=False, index=True)
    difficulty = Column(String(20))
    category = Column(String(50))
    inclusions = Column(JSON, default=list)
    highlights = Column(JSON, default=list)

    # Seat ledger: available_seats + booked_seats == total_seats
    total_seats = Column(Integer, nullable=False)
    available_seats = Column(Integer, nullable=False)
    booked_seats = Column(Integer, nullable=False, default=0)
    status = Column(String(20), nullable=False, default="active", index=True)  # active | inactive | soldout | upcoming

    average_rating = Column(Numeric(3, 2), default=0)
    total_reviews = Column(Integer, default=0)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    # Relationships
    destination = relationship("Destination", back_populates="packages")
    bookings = relationship("Booking", back_populates="package")
    reviews = relationship("Review", back_populates="package")

    @property
    def destination_name(self):
        return self.destination.name if self.destination else None

# ================================
# Bookings & Payments
# ================================
class Booking(Base):
    __tablename__ = "bookings"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    package_id = Column(Integer, ForeignKey("packages.id"), nullable=False, index=True)

    # Customer information
    customer_name = Column(String(255), nullable=False)
    customer_email = Column(String(255), nullable=False)
    customer_phone = Column(String(30), nullable=False)
    emergency_contact = Column(String(255))

    travel_date = Column(Date, nullable=False)
    number_of_travelers = Column(Integer, nullable=False)
    total_amount = Column(Numeric(12, 2), nullable=False)
    special_requests = Column(Text)

    status = Column(String(20), nullable=False, default="pending", index=True)
    payment_status = Column(String(20), nullable=False, default="pending", index=True)
    payment_method = Column(String(20))
    payment_id = Column(Integer)
    transaction_id = Column(String(100), index=True)
    paid_at = Column(DateTime(timezone=True))

    cancellation_reason = Column(Text)
    cancelled_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    # Relationships
    user = relationship("User", back_populates="bookings")
    package = relationship("TravelPackage", back_populates="bookings")
    payments = relationship("Payment", back_populates="booking", order_by="Payment.id")

    @property
    def customer_info(self):
        return {
            "name": self.customer_name,
            "email": self.customer_email,
            "phone": self.customer_phone,
            "emergency_contact": self.emergency_contact
        }

class Payment(Base):
    __tablename__ = "payments"

    id = Column(Integer, primary_key=True, index=True)
    booking_id = Column(Integer, ForeignKey("bookings.id"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    amount = Column(Numeric(12, 2), nullable=False)
    payment_method = Column(String(20), nullable=False)  # mpesa | card | bank
    transaction_type = Column(String(20), nullable=False, default="payment")  # payment | refund
    status = Column(String(20), nullable=False, default="pending", index=True)
    reference = Column(String(64), unique=True, nullable=False, index=True)
    transaction_id = Column(String(100), index=True)  # assigned by the gateway

    # Gateway specifics
    checkout_request_id = Column(String(100), index=True)
    mpesa_code = Column(String(50))
    mpesa_phone = Column(String(30))
    card_last_four = Column(String(4))
    card_type = Column(String(10))

    failure_reason = Column(Text)
    refund_reason = Column(Text)
    refunded_at = Column(DateTime(timezone=True))
    completed_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    # Relationships
    booking = relationship("Booking", back_populates="payments")
    user = relationship("User", back_populates="payments")

# ================================
# Reviews
# ================================
class Review(Base):
    __tablename__ = "reviews"
    __table_args__ = (UniqueConstraint("booking_id", name="uq_reviews_booking"),)

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    package_id = Column(Integer, ForeignKey("packages.id"), nullable=False, index=True)
    booking_id = Column(Integer, ForeignKey("bookings.id"), nullable=False)
    rating = Column(Integer, nullable=False)
    title = Column(String(200), nullable=False)
    comment = Column(Text, nullable=False)
    helpful = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    # Relationships
    user = relationship("User", back_populates="reviews")
    package = relationship("TravelPackage", back_populates="reviews")

    @property
    def reviewer_name(self):
        return self.user.name if self.user else None

class DestinationReview(Base):
    __tablename__ = "destination_reviews"
    __table_args__ = (UniqueConstraint("user_id", "destination_id", name="uq_destination_reviews_user"),)

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    destination_id = Column(Integer, ForeignKey("destinations.id"), nullable=False, index=True)
    rating = Column(Integer, nullable=False)
    title = Column(String(200), nullable=False)
    comment = Column(Text, nullable=False)
    helpful = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    # Relationships
    user = relationship("User")
    destination = relationship("Destination", back_populates="reviews")

    @property
    def reviewer_name(self):
        return self.user.name if self.user else None
