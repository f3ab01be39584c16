from typing import List, Dict
from decimal import Decimal
from kuja.schemas import CamelModel
from kuja.auth.schemas import User, UserRole

class UserRoleUpdate(CamelModel):
    role: UserRole

class UserList(CamelModel):
    success: bool = True
    users: List[User]

class DashboardStats(CamelModel):
    total_users: int
    total_packages: int
    active_packages: int
    soldout_packages: int
    total_bookings: int
    bookings_by_status: Dict[str, int]
    pending_payments: int
    total_revenue: Decimal
    total_refunded: Decimal
    seats_booked: int
    seats_available: int
