from pydantic import Field
from typing import List, Optional
from datetime import datetime
from enum import Enum
from kuja.schemas import CamelModel

class ReviewSort(str, Enum):
    RECENT = "recent"
    RATING = "rating"
    HELPFUL = "helpful"

class ReviewCreate(CamelModel):
    booking_id: int
    rating: int = Field(..., ge=1, le=5)
    title: str = Field(..., min_length=1, max_length=200)
    comment: str = Field(..., min_length=1, max_length=2000)

class Review(CamelModel):
    id: int
    user_id: int
    package_id: int
    booking_id: int
    reviewer_name: Optional[str] = None
    rating: int
    title: str
    comment: str
    helpful: int
    created_at: Optional[datetime] = None

class ReviewList(CamelModel):
    success: bool = True
    reviews: List[Review]
    average_rating: float
    total_reviews: int

class DestinationReviewCreate(CamelModel):
    destination_id: int
    rating: int = Field(..., ge=1, le=5)
    title: str = Field(..., min_length=1, max_length=200)
    comment: str = Field(..., min_length=1, max_length=2000)

class DestinationReview(CamelModel):
    id: int
    user_id: int
    destination_id: int
    reviewer_name: Optional[str] = None
    rating: int
    title: str
    comment: str
    helpful: int
    created_at: Optional[datetime] = None

class DestinationReviewList(CamelModel):
    success: bool = True
    reviews: List[DestinationReview]
    count: int
    average_rating: float
    total_reviews: int
