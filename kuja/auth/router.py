from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session
from datetime import timedelta
from kuja.database import get_db
from kuja.auth.schemas import UserCreate, User, UserUpdate, PasswordChange, LoginRequest, AuthResponse
from kuja.auth.service import UserService
from kuja.auth.utils import create_access_token
from kuja.auth.dependencies import get_session, SessionContext
from kuja.config import settings
from kuja.errors import KujaError, to_http_exception

router = APIRouter()

def _issue_token(user) -> str:
    return create_access_token(
        data={"sub": str(user.id), "email": user.email, "role": user.role},
        expires_delta=timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    )

@router.post("/register", response_model=AuthResponse, status_code=status.HTTP_201_CREATED)
def register_user(user: UserCreate, db: Session = Depends(get_db)):
    """Register a new user and sign them in"""
    try:
        db_user = UserService.create_user(db=db, user=user)
    except KujaError as e:
        raise to_http_exception(e)

    return AuthResponse(token=_issue_token(db_user), user=User.model_validate(db_user))

@router.post("/login", response_model=AuthResponse)
def login(login_data: LoginRequest, db: Session = Depends(get_db)):
    """Exchange email and password for a bearer token"""
    user = UserService.authenticate_user(db, login_data.email, login_data.password)
    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Incorrect email or password",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return AuthResponse(token=_issue_token(user), user=User.model_validate(user))

@router.get("/me", response_model=User)
def read_users_me(session: SessionContext = Depends(get_session), db: Session = Depends(get_db)):
    """Get current user profile"""
    user = UserService.get_user_by_id(db, session.user_id)
    if not user:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="User not found"
        )
    return user

@router.put("/me", response_model=User)
def update_user_profile(
    user_update: UserUpdate,
    session: SessionContext = Depends(get_session),
    db: Session = Depends(get_db)
):
    """Update current user profile"""
    try:
        return UserService.update_user(db=db, user_id=session.user_id, user_update=user_update)
    except KujaError as e:
        raise to_http_exception(e)

@router.put("/password")
def change_password(
    data: PasswordChange,
    session: SessionContext = Depends(get_session),
    db: Session = Depends(get_db)
):
    """Change the current user's password. The current password is required."""
    try:
        UserService.change_password(db=db, user_id=session.user_id, data=data)
    except KujaError as e:
        raise to_http_exception(e)
    return {"success": True, "message": "Password updated successfully"}
