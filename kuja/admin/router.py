from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from typing import Optional

from kuja.database import get_db
from kuja.auth.dependencies import require_admin, SessionContext
from kuja.auth.schemas import User, UserRole
from kuja.auth.service import UserService
from kuja.admin.schemas import UserRoleUpdate, UserList, DashboardStats
from kuja.admin.admin_service import AdminService
from kuja.errors import KujaError, to_http_exception

router = APIRouter()

@router.get("/users", response_model=UserList)
def list_users(
    search: Optional[str] = Query(None, description="Name or email"),
    role: Optional[UserRole] = Query(None),
    admin: SessionContext = Depends(require_admin),
    db: Session = Depends(get_db)
):
    users = UserService.list_users(db, search=search, role=role)
    return UserList(users=[User.model_validate(u) for u in users])

@router.patch("/users/{user_id}", response_model=User)
def update_user_role(
    user_id: int,
    update: UserRoleUpdate,
    admin: SessionContext = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """Change a user's role"""
    try:
        return AdminService(db).change_role(admin, user_id, update.role)
    except KujaError as e:
        raise to_http_exception(e)

@router.get("/stats", response_model=DashboardStats)
def get_dashboard_stats(
    admin: SessionContext = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """Headline figures for the admin dashboard"""
    return DashboardStats(**AdminService(db).get_stats())
