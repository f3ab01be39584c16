from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError
from typing import List, Optional
import logging

from kuja.models import User
from kuja.auth.schemas import UserCreate, UserUpdate, PasswordChange, UserRole
from kuja.auth.utils import get_password_hash, verify_password
from kuja.errors import Conflict, NotFound, ValidationFailed

logger = logging.getLogger(__name__)

class UserService:
    @staticmethod
    def get_user_by_email(db: Session, email: str) -> Optional[User]:
        """Get user by email"""
        return db.query(User).filter(User.email == email.lower()).first()

    @staticmethod
    def get_user_by_id(db: Session, user_id: int) -> Optional[User]:
        """Get user by ID"""
        return db.query(User).filter(User.id == user_id).first()

    @staticmethod
    def create_user(db: Session, user: UserCreate, role: UserRole = UserRole.USER) -> User:
        """Create a new user. Self-registration always yields the ``user`` role."""
        if UserService.get_user_by_email(db, user.email):
            raise Conflict("User already exists with this email")

        db_user = User(
            name=user.name,
            email=user.email.lower(),
            phone=user.phone,
            password=get_password_hash(user.password),
            role=role.value
        )

        try:
            db.add(db_user)
            db.commit()
            db.refresh(db_user)
        except IntegrityError:
            db.rollback()
            raise Conflict("User already exists with this email")

        logger.info("Registered user %s (%s)", db_user.id, db_user.role)
        return db_user

    @staticmethod
    def authenticate_user(db: Session, email: str, password: str) -> Optional[User]:
        """Authenticate user with email and password"""
        user = UserService.get_user_by_email(db, email)
        if not user:
            return None
        if not verify_password(password, user.password):
            return None
        return user

    @staticmethod
    def update_user(db: Session, user_id: int, user_update: UserUpdate) -> User:
        """Update profile fields. Passwords go through change_password."""
        db_user = UserService.get_user_by_id(db, user_id)
        if not db_user:
            raise NotFound("User not found")

        update_data = user_update.dict(exclude_unset=True)

        for field, value in update_data.items():
            if value is not None:
                setattr(db_user, field, value)

        db.commit()
        db.refresh(db_user)
        return db_user

    @staticmethod
    def change_password(db: Session, user_id: int, data: PasswordChange) -> None:
        """Replace the password once the current one has been verified"""
        db_user = UserService.get_user_by_id(db, user_id)
        if not db_user:
            raise NotFound("User not found")

        if not verify_password(data.current_password, db_user.password):
            raise ValidationFailed("Current password is incorrect")

        db_user.password = get_password_hash(data.new_password)
        db.commit()
        logger.info("User %s changed their password", user_id)

    @staticmethod
    def set_role(db: Session, user_id: int, role: UserRole) -> User:
        db_user = UserService.get_user_by_id(db, user_id)
        if not db_user:
            raise NotFound("User not found")
        db_user.role = role.value
        db.commit()
        db.refresh(db_user)
        logger.info("User %s role set to %s", user_id, role.value)
        return db_user

    @staticmethod
    def list_users(db: Session, search: Optional[str] = None, role: Optional[UserRole] = None) -> List[User]:
        query = db.query(User)
        if search:
            query = query.filter(
                User.name.ilike(f"%{search}%") | User.email.ilike(f"%{search}%")
            )
        if role:
            query = query.filter(User.role == role.value)
        return query.order_by(User.created_at.desc(), User.id.desc()).all()
