from pydantic import Field, validator
from typing import List, Optional
from datetime import datetime, date
from decimal import Decimal
from enum import Enum
from kuja.schemas import CamelModel

class PackageStatus(str, Enum):
    """Package status enumeration"""
    ACTIVE = "active"
    INACTIVE = "inactive"
    SOLDOUT = "soldout"
    UPCOMING = "upcoming"

class Difficulty(str, Enum):
    EASY = "Easy"
    MODERATE = "Moderate"
    CHALLENGING = "Challenging"

# Destinations
class DestinationBase(CamelModel):
    name: str = Field(..., min_length=1, max_length=255)
    description: str
    region: Optional[str] = None
    best_time_to_visit: Optional[str] = None
    highlights: List[str] = []
    activities: List[str] = []
    image_url: Optional[str] = None
    featured: bool = False

class DestinationCreate(DestinationBase):
    pass

class DestinationUpdate(CamelModel):
    name: Optional[str] = None
    description: Optional[str] = None
    region: Optional[str] = None
    best_time_to_visit: Optional[str] = None
    highlights: Optional[List[str]] = None
    activities: Optional[List[str]] = None
    image_url: Optional[str] = None
    featured: Optional[bool] = None
    active: Optional[bool] = None

class Destination(DestinationBase):
    id: int
    slug: str
    active: bool
    average_rating: Decimal = Decimal("0")
    total_reviews: int = 0
    packages_count: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

class Pagination(CamelModel):
    total: int
    limit: int
    offset: int
    has_more: bool

class DestinationList(CamelModel):
    success: bool = True
    destinations: List[Destination]
    pagination: Pagination

# Packages
class BookingActionOut(CamelModel):
    label: str
    enabled: bool
    reason: str

class PackageBase(CamelModel):
    name: str = Field(..., min_length=1, max_length=255)
    description: str
    destination_id: Optional[int] = None
    duration_days: int = Field(1, ge=1)
    price: Decimal = Field(Decimal("0"), ge=0)
    is_free: bool = False
    image_url: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    featured: bool = False
    difficulty: Optional[Difficulty] = None
    category: Optional[str] = None
    inclusions: List[str] = []
    highlights: List[str] = []

class PackageCreate(PackageBase):
    total_seats: int = Field(..., ge=1)
    status: PackageStatus = PackageStatus.ACTIVE

    @validator('end_date')
    def end_after_start(cls, v, values):
        start = values.get('start_date')
        if v and start and v < start:
            raise ValueError('End date must be on or after start date')
        return v

class PackageUpdate(CamelModel):
    name: Optional[str] = None
    description: Optional[str] = None
    destination_id: Optional[int] = None
    duration_days: Optional[int] = Field(None, ge=1)
    price: Optional[Decimal] = Field(None, ge=0)
    is_free: Optional[bool] = None
    image_url: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    featured: Optional[bool] = None
    difficulty: Optional[Difficulty] = None
    category: Optional[str] = None
    inclusions: Optional[List[str]] = None
    highlights: Optional[List[str]] = None
    total_seats: Optional[int] = Field(None, ge=1)
    status: Optional[PackageStatus] = None

class Package(PackageBase):
    id: int
    destination_name: Optional[str] = None
    total_seats: int
    available_seats: int
    booked_seats: int
    status: PackageStatus
    average_rating: Decimal = Decimal("0")
    total_reviews: int = 0
    booking_action: Optional[BookingActionOut] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

class PackageList(CamelModel):
    success: bool = True
    packages: List[Package]

class PackageEnvelope(CamelModel):
    package: Package
