from sqlalchemy.orm import Session, joinedload
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from decimal import Decimal
from typing import List, Optional
import logging

from kuja.models import Review, DestinationReview, Destination, Booking, TravelPackage
from kuja.reviews.schemas import ReviewCreate, ReviewSort, DestinationReviewCreate
from kuja.bookings.schemas import BookingStatus
from kuja.auth.dependencies import SessionContext
from kuja.errors import NotFound, Forbidden, Conflict, ValidationFailed

logger = logging.getLogger(__name__)

class ReviewService:
    def __init__(self, db: Session):
        self.db = db

    def list_reviews(self, package_id: int, sort: ReviewSort = ReviewSort.RECENT, limit: Optional[int] = None) -> List[Review]:
        query = self.db.query(Review).options(joinedload(Review.user)).filter(Review.package_id == package_id)

        if sort == ReviewSort.RATING:
            query = query.order_by(Review.rating.desc(), Review.created_at.desc())
        elif sort == ReviewSort.HELPFUL:
            query = query.order_by(Review.helpful.desc(), Review.created_at.desc())
        else:
            query = query.order_by(Review.created_at.desc(), Review.id.desc())

        if limit:
            query = query.limit(limit)
        return query.all()

    def create_review(self, actor: SessionContext, data: ReviewCreate) -> Review:
        """Review a trip the caller has completed. One review per booking."""
        booking = self.db.query(Booking).filter(Booking.id == data.booking_id).first()
        if not booking:
            raise NotFound("Booking not found")
        if not actor.owns(booking.user_id):
            raise Forbidden("You can only review your own trips")
        if booking.status != BookingStatus.COMPLETED.value:
            raise ValidationFailed("You can only review completed trips")
        if self.db.query(Review).filter(Review.booking_id == booking.id).first():
            raise Conflict("You have already reviewed this trip")

        review = Review(
            user_id=actor.user_id,
            package_id=booking.package_id,
            booking_id=booking.id,
            rating=data.rating,
            title=data.title,
            comment=data.comment
        )

        try:
            self.db.add(review)
            self.db.flush()
            self._refresh_aggregates(booking.package_id)
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            raise Conflict("You have already reviewed this trip")

        self.db.refresh(review)
        logger.info("Review %s (%s stars) added for package %s", review.id, review.rating, review.package_id)
        return review

    def list_destination_reviews(self, destination_id: int) -> List[DestinationReview]:
        return self.db.query(DestinationReview).options(joinedload(DestinationReview.user)).filter(
            DestinationReview.destination_id == destination_id
        ).order_by(DestinationReview.created_at.desc(), DestinationReview.id.desc()).all()

    def create_destination_review(self, actor: SessionContext, data: DestinationReviewCreate) -> DestinationReview:
        """Review a destination. One review per user and destination."""
        destination = self.db.query(Destination).filter(
            Destination.id == data.destination_id,
            Destination.active == True
        ).first()
        if not destination:
            raise NotFound("Destination not found")

        existing = self.db.query(DestinationReview).filter(
            DestinationReview.user_id == actor.user_id,
            DestinationReview.destination_id == destination.id
        ).first()
        if existing:
            raise Conflict("You have already reviewed this destination")

        review = DestinationReview(
            user_id=actor.user_id,
            destination_id=destination.id,
            rating=data.rating,
            title=data.title.strip(),
            comment=data.comment.strip()
        )

        try:
            self.db.add(review)
            self.db.flush()
            self._refresh_destination(destination.id)
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            raise Conflict("You have already reviewed this destination")

        self.db.refresh(review)
        logger.info("Review %s (%s stars) added for destination %s", review.id, review.rating, destination.id)
        return review

    def mark_helpful(self, review_id: int) -> Review:
        updated = self.db.query(Review).filter(Review.id == review_id).update(
            {Review.helpful: Review.helpful + 1}, synchronize_session=False
        )
        if updated == 0:
            raise NotFound("Review not found")
        self.db.commit()
        return self.db.query(Review).populate_existing().filter(Review.id == review_id).first()

    def _refresh_aggregates(self, package_id: int):
        """Recompute rating aggregates for the package and its destination"""
        average, count = self.db.query(func.avg(Review.rating), func.count(Review.id)).filter(
            Review.package_id == package_id
        ).one()

        package = self.db.query(TravelPackage).filter(TravelPackage.id == package_id).first()
        package.average_rating = _rounded(average)
        package.total_reviews = count

        if package.destination_id is not None:
            self._refresh_destination(package.destination_id)

    def _refresh_destination(self, destination_id: int):
        """Destination ratings cover its own reviews and those of its packages"""
        package_total, package_count = self.db.query(
            func.coalesce(func.sum(Review.rating), 0), func.count(Review.id)
        ).join(TravelPackage, TravelPackage.id == Review.package_id).filter(
            TravelPackage.destination_id == destination_id
        ).one()
        own_total, own_count = self.db.query(
            func.coalesce(func.sum(DestinationReview.rating), 0), func.count(DestinationReview.id)
        ).filter(DestinationReview.destination_id == destination_id).one()

        count = package_count + own_count
        destination = self.db.query(Destination).filter(Destination.id == destination_id).first()
        destination.average_rating = _rounded((package_total + own_total) / count if count else 0)
        destination.total_reviews = count

def _rounded(value) -> Decimal:
    return Decimal(str(value or 0)).quantize(Decimal("0.01"))
