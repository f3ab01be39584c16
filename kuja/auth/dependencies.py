from dataclasses import dataclass
from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.orm import Session
from kuja.database import get_db
from kuja.auth.utils import verify_token
from kuja.auth.service import UserService

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login")

@dataclass(frozen=True)
class SessionContext:
    """Identity of the caller, resolved once per request from the bearer token"""
    user_id: int
    email: str
    name: str
    role: str

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

    def owns(self, user_id: int) -> bool:
        return self.user_id == user_id

def get_session(token: str = Depends(oauth2_scheme), db: Session = Depends(get_db)) -> SessionContext:
    """Resolve the authenticated caller"""
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Authentication required",
        headers={"WWW-Authenticate": "Bearer"},
    )

    token_data = verify_token(token, credentials_exception)

    # Role comes from the database so a demotion takes effect before token expiry
    user = UserService.get_user_by_id(db, user_id=token_data["user_id"])
    if user is None:
        raise credentials_exception

    return SessionContext(user_id=user.id, email=user.email, name=user.name, role=user.role)

def require_admin(session: SessionContext = Depends(get_session)) -> SessionContext:
    """Require admin role for access"""
    if not session.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Access denied"
        )
    return session
