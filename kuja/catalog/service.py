from sqlalchemy.orm import Session, joinedload
from sqlalchemy import or_, func
from typing import List, Optional, Tuple
import logging
import re

from kuja.models import Destination, TravelPackage, Booking
from kuja.catalog.schemas import (
    DestinationCreate, DestinationUpdate, PackageCreate, PackageUpdate, PackageStatus,
    Package as PackageSchema, Destination as DestinationSchema, BookingActionOut
)
from kuja.bookings.ledger import AvailabilityLedger
from kuja.errors import NotFound, Conflict, ValidationFailed
from kuja.presentation import classify_booking_action

logger = logging.getLogger(__name__)

def slugify(name: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", name.lower()).strip("-")

class DestinationService:
    @staticmethod
    def get_destination(db: Session, destination_id: int) -> Destination:
        destination = db.query(Destination).filter(Destination.id == destination_id).first()
        if not destination:
            raise NotFound("Destination not found")
        return destination

    @staticmethod
    def get_destinations(
        db: Session,
        search: Optional[str] = None,
        featured: Optional[bool] = None,
        region: Optional[str] = None,
        limit: int = 12,
        offset: int = 0,
        include_inactive: bool = False
    ) -> Tuple[List[Destination], int]:
        """Public destination listing, featured and best rated first"""
        query = db.query(Destination)

        if not include_inactive:
            query = query.filter(Destination.active == True)

        if featured:
            query = query.filter(Destination.featured == True)

        if search:
            pattern = f"%{search}%"
            query = query.filter(
                or_(
                    Destination.name.ilike(pattern),
                    Destination.description.ilike(pattern),
                    Destination.region.ilike(pattern)
                )
            )

        if region:
            query = query.filter(Destination.region.ilike(f"%{region}%"))

        total = query.count()
        destinations = query.order_by(
            Destination.featured.desc(),
            Destination.average_rating.desc(),
            Destination.created_at.desc()
        ).offset(offset).limit(limit).all()

        return destinations, total

    @staticmethod
    def create_destination(db: Session, data: DestinationCreate) -> Destination:
        slug = slugify(data.name)
        if db.query(Destination).filter(Destination.slug == slug).first():
            raise Conflict(f"Destination '{data.name}' already exists")

        destination = Destination(slug=slug, active=True, **data.dict())
        db.add(destination)
        db.commit()
        db.refresh(destination)
        logger.info("Created destination %s (%s)", destination.id, destination.slug)
        return destination

    @staticmethod
    def update_destination(db: Session, destination_id: int, data: DestinationUpdate) -> Destination:
        destination = DestinationService.get_destination(db, destination_id)

        update_data = data.dict(exclude_unset=True)
        if update_data.get("name"):
            update_data["slug"] = slugify(update_data["name"])

        for field, value in update_data.items():
            setattr(destination, field, value)

        db.commit()
        db.refresh(destination)
        return destination

    @staticmethod
    def delete_destination(db: Session, destination_id: int) -> None:
        destination = DestinationService.get_destination(db, destination_id)
        if db.query(TravelPackage).filter(TravelPackage.destination_id == destination_id).count():
            raise Conflict("Destination still has packages")
        db.delete(destination)
        db.commit()

    @staticmethod
    def to_schema(db: Session, destination: Destination) -> DestinationSchema:
        result = DestinationSchema.model_validate(destination)
        result.packages_count = db.query(TravelPackage).filter(
            TravelPackage.destination_id == destination.id
        ).count()
        return result

class PackageService:
    @staticmethod
    def get_package(db: Session, package_id: int) -> TravelPackage:
        package = db.query(TravelPackage).options(
            joinedload(TravelPackage.destination)
        ).filter(TravelPackage.id == package_id).first()
        if not package:
            raise NotFound("Package not found")
        return package

    @staticmethod
    def get_packages(
        db: Session,
        search: Optional[str] = None,
        destination_id: Optional[int] = None,
        featured: Optional[bool] = None,
        status: Optional[PackageStatus] = None,
        limit: Optional[int] = None,
        public: bool = True
    ) -> List[TravelPackage]:
        """List packages; the public catalog hides inactive ones"""
        query = db.query(TravelPackage).options(joinedload(TravelPackage.destination))

        if status:
            query = query.filter(TravelPackage.status == status.value)
        elif public:
            query = query.filter(TravelPackage.status != PackageStatus.INACTIVE.value)

        if destination_id:
            query = query.filter(TravelPackage.destination_id == destination_id)

        if featured:
            query = query.filter(TravelPackage.featured == True)

        if search:
            pattern = f"%{search}%"
            query = query.outerjoin(Destination).filter(
                or_(
                    TravelPackage.name.ilike(pattern),
                    TravelPackage.description.ilike(pattern),
                    TravelPackage.category.ilike(pattern),
                    Destination.name.ilike(pattern)
                )
            )

        query = query.order_by(
            TravelPackage.featured.desc(),
            TravelPackage.average_rating.desc(),
            TravelPackage.created_at.desc(),
            TravelPackage.id.desc()
        )

        if limit:
            query = query.limit(limit)

        return query.all()

    @staticmethod
    def create_package(db: Session, data: PackageCreate) -> TravelPackage:
        if data.destination_id:
            DestinationService.get_destination(db, data.destination_id)

        payload = data.dict()
        payload["status"] = data.status.value
        payload["difficulty"] = data.difficulty.value if data.difficulty else None

        package = TravelPackage(
            available_seats=data.total_seats,
            booked_seats=0,
            **payload
        )
        db.add(package)
        db.commit()
        db.refresh(package)
        logger.info("Created package %s with %s seats", package.id, package.total_seats)
        return package

    @staticmethod
    def update_package(db: Session, package_id: int, data: PackageUpdate) -> TravelPackage:
        package = PackageService.get_package(db, package_id)
        update_data = data.dict(exclude_unset=True)

        if update_data.get("destination_id"):
            DestinationService.get_destination(db, update_data["destination_id"])

        total_seats = update_data.pop("total_seats", None)
        if total_seats is not None and total_seats != package.total_seats:
            AvailabilityLedger(db).resize(package_id, total_seats)
            db.refresh(package)

        if "status" in update_data:
            new_status = update_data.pop("status")
            if new_status:
                update_data["status"] = new_status.value
        if update_data.get("difficulty"):
            update_data["difficulty"] = update_data["difficulty"].value

        for field, value in update_data.items():
            setattr(package, field, value)

        # No seats left means sold out, whatever status was sent
        if package.available_seats == 0 and package.status in ("active", "upcoming"):
            package.status = "soldout"

        if package.end_date and package.start_date and package.end_date < package.start_date:
            db.rollback()
            raise ValidationFailed("End date must be on or after start date")

        db.commit()
        db.refresh(package)
        return package

    @staticmethod
    def delete_package(db: Session, package_id: int) -> None:
        package = PackageService.get_package(db, package_id)

        bookings = db.query(func.count(Booking.id)).filter(Booking.package_id == package_id).scalar()
        if bookings:
            raise Conflict(f"Package has {bookings} booking(s); set it inactive instead")

        db.delete(package)
        db.commit()
        logger.info("Deleted package %s", package_id)

    @staticmethod
    def to_schema(package: TravelPackage) -> PackageSchema:
        result = PackageSchema.model_validate(package)
        action = classify_booking_action(package)
        result.booking_action = BookingActionOut(
            label=action.label, enabled=action.enabled, reason=action.reason
        )
        return result
