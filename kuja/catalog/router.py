from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session
from typing import Optional

from kuja.database import get_db
from kuja.auth.dependencies import require_admin, SessionContext
from kuja.catalog.schemas import (
    DestinationList, Destination, DestinationCreate, DestinationUpdate, Pagination,
    PackageList, PackageEnvelope, PackageCreate, PackageUpdate, PackageStatus
)
from kuja.catalog.service import DestinationService, PackageService
from kuja.errors import KujaError, to_http_exception

destinations_router = APIRouter()
packages_router = APIRouter()
admin_destinations_router = APIRouter()

# Destinations
@destinations_router.get("", response_model=DestinationList)
def list_destinations(
    search: Optional[str] = Query(None, description="Search name, description or region"),
    featured: Optional[bool] = Query(None, description="Only featured destinations"),
    region: Optional[str] = Query(None, description="Filter by region"),
    limit: int = Query(12, ge=1, le=100),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db)
):
    """Public destination listing"""
    destinations, total = DestinationService.get_destinations(
        db, search=search, featured=featured, region=region, limit=limit, offset=offset
    )

    return DestinationList(
        destinations=[DestinationService.to_schema(db, d) for d in destinations],
        pagination=Pagination(total=total, limit=limit, offset=offset, has_more=offset + limit < total)
    )

@admin_destinations_router.post("", response_model=Destination, status_code=status.HTTP_201_CREATED)
def create_destination(
    data: DestinationCreate,
    admin: SessionContext = Depends(require_admin),
    db: Session = Depends(get_db)
):
    try:
        destination = DestinationService.create_destination(db, data)
    except KujaError as e:
        raise to_http_exception(e)
    return DestinationService.to_schema(db, destination)

@admin_destinations_router.put("/{destination_id}", response_model=Destination)
def update_destination(
    destination_id: int,
    data: DestinationUpdate,
    admin: SessionContext = Depends(require_admin),
    db: Session = Depends(get_db)
):
    try:
        destination = DestinationService.update_destination(db, destination_id, data)
    except KujaError as e:
        raise to_http_exception(e)
    return DestinationService.to_schema(db, destination)

@admin_destinations_router.delete("/{destination_id}")
def delete_destination(
    destination_id: int,
    admin: SessionContext = Depends(require_admin),
    db: Session = Depends(get_db)
):
    try:
        DestinationService.delete_destination(db, destination_id)
    except KujaError as e:
        raise to_http_exception(e)
    return {"success": True}

# Packages
@packages_router.get("", response_model=PackageList)
def list_packages(
    search: Optional[str] = Query(None, description="Search name, description, category or destination"),
    destination_id: Optional[int] = Query(None, alias="destinationId"),
    featured: Optional[bool] = Query(None),
    package_status: Optional[PackageStatus] = Query(None, alias="status"),
    limit: Optional[int] = Query(None, ge=1, le=100),
    db: Session = Depends(get_db)
):
    """Public package listing, each with its booking button state"""
    packages = PackageService.get_packages(
        db, search=search, destination_id=destination_id, featured=featured,
        status=package_status, limit=limit
    )
    return PackageList(packages=[PackageService.to_schema(p) for p in packages])

@packages_router.get("/{package_id}", response_model=PackageEnvelope)
def get_package(package_id: int, db: Session = Depends(get_db)):
    try:
        package = PackageService.get_package(db, package_id)
    except KujaError as e:
        raise to_http_exception(e)
    return PackageEnvelope(package=PackageService.to_schema(package))

@packages_router.post("", response_model=PackageEnvelope, status_code=status.HTTP_201_CREATED)
def create_package(
    data: PackageCreate,
    admin: SessionContext = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """Create a package (admin only)"""
    try:
        package = PackageService.create_package(db, data)
    except KujaError as e:
        raise to_http_exception(e)
    return PackageEnvelope(package=PackageService.to_schema(package))

@packages_router.put("/{package_id}", response_model=PackageEnvelope)
def update_package(
    package_id: int,
    data: PackageUpdate,
    admin: SessionContext = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """Update a package (admin only)"""
    try:
        package = PackageService.update_package(db, package_id, data)
    except KujaError as e:
        raise to_http_exception(e)
    return PackageEnvelope(package=PackageService.to_schema(package))

@packages_router.delete("/{package_id}")
def delete_package(
    package_id: int,
    admin: SessionContext = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """Delete a package with no bookings (admin only)"""
    try:
        PackageService.delete_package(db, package_id)
    except KujaError as e:
        raise to_http_exception(e)
    return {"success": True}
