from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session
from typing import Optional

from kuja.database import get_db
from kuja.auth.dependencies import get_session, SessionContext
from kuja.catalog.service import PackageService, DestinationService
from kuja.reviews.schemas import (
    ReviewCreate, ReviewSort, Review, ReviewList,
    DestinationReviewCreate, DestinationReview, DestinationReviewList
)
from kuja.reviews.service import ReviewService
from kuja.errors import KujaError, to_http_exception

router = APIRouter()
destination_router = APIRouter()

@router.get("", response_model=ReviewList)
def list_reviews(
    package_id: int = Query(..., alias="packageId"),
    sort: ReviewSort = Query(ReviewSort.RECENT),
    limit: Optional[int] = Query(None, ge=1, le=100),
    db: Session = Depends(get_db)
):
    """Reviews for a package"""
    try:
        package = PackageService.get_package(db, package_id)
    except KujaError as e:
        raise to_http_exception(e)

    reviews = ReviewService(db).list_reviews(package_id, sort=sort, limit=limit)
    return ReviewList(
        reviews=[Review.model_validate(r) for r in reviews],
        average_rating=float(package.average_rating or 0),
        total_reviews=package.total_reviews or 0
    )

@router.post("", response_model=Review, status_code=status.HTTP_201_CREATED)
def create_review(
    data: ReviewCreate,
    session: SessionContext = Depends(get_session),
    db: Session = Depends(get_db)
):
    try:
        return ReviewService(db).create_review(session, data)
    except KujaError as e:
        raise to_http_exception(e)

@router.post("/{review_id}/helpful", response_model=Review)
def mark_review_helpful(
    review_id: int,
    session: SessionContext = Depends(get_session),
    db: Session = Depends(get_db)
):
    try:
        return ReviewService(db).mark_helpful(review_id)
    except KujaError as e:
        raise to_http_exception(e)

@destination_router.get("", response_model=DestinationReviewList)
def list_destination_reviews(
    destination_id: int = Query(..., alias="destinationId"),
    db: Session = Depends(get_db)
):
    """Reviews for a destination, newest first"""
    try:
        destination = DestinationService.get_destination(db, destination_id)
    except KujaError as e:
        raise to_http_exception(e)

    reviews = ReviewService(db).list_destination_reviews(destination_id)
    return DestinationReviewList(
        reviews=[DestinationReview.model_validate(r) for r in reviews],
        count=len(reviews),
        average_rating=float(destination.average_rating or 0),
        total_reviews=destination.total_reviews or 0
    )

@destination_router.post("", response_model=DestinationReview, status_code=status.HTTP_201_CREATED)
def create_destination_review(
    data: DestinationReviewCreate,
    session: SessionContext = Depends(get_session),
    db: Session = Depends(get_db)
):
    try:
        return ReviewService(db).create_destination_review(session, data)
    except KujaError as e:
        raise to_http_exception(e)
