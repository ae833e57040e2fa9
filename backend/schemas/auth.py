# backend/schemas/auth.py
from __future__ import annotations
from datetime import datetime
from typing import Optional
from pydantic import BaseModel, EmailStr, Field

from ..models.enums import Role


class UserCreate(BaseModel):
    full_name: str = Field(..., min_length=2, max_length=120)
    email: EmailStr
    password: str = Field(..., min_length=6)
    phone: Optional[str] = Field(default=None, max_length=30)


class AdminUserCreate(UserCreate):
    role: Role = Role.CITIZEN


class UserLogin(BaseModel):
    email: EmailStr
    password: str


class UserOut(BaseModel):
    id: str
    email: EmailStr
    full_name: Optional[str] = None
    phone: Optional[str] = None
    role: str
    points: int
    level: int
    is_active: bool
    created_at: datetime
    model_config = {
        "from_attributes": True,
    }


class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"


class AuthResponse(Token):
    user: UserOut


class TokenPayload(BaseModel):
    sub: str
    role: str
    exp: int
