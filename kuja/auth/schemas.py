from pydantic import EmailStr, Field, validator
from typing import Optional
from datetime import datetime
from enum import Enum
from kuja.schemas import CamelModel

class UserRole(str, Enum):
    USER = "user"
    ADMIN = "admin"

class UserBase(CamelModel):
    name: str = Field(..., min_length=1, max_length=255)
    email: EmailStr
    phone: Optional[str] = None

class UserCreate(UserBase):
    password: str = Field(..., min_length=6)
    confirm_password: Optional[str] = None

    @validator('confirm_password')
    def passwords_match(cls, v, values):
        if v is not None and 'password' in values and v != values['password']:
            raise ValueError('Passwords do not match')
        return v

class UserUpdate(CamelModel):
    name: Optional[str] = None
    phone: Optional[str] = None

class PasswordChange(CamelModel):
    current_password: str = Field(..., min_length=1)
    new_password: str = Field(..., min_length=6)

class User(UserBase):
    id: int
    role: UserRole
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

class LoginRequest(CamelModel):
    email: EmailStr
    password: str

class AuthResponse(CamelModel):
    token: str
    token_type: str = "bearer"
    user: User
