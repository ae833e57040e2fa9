# backend/routers/auth.py
from __future__ import annotations
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from ..db import get_db
from ..deps import get_current_user
from ..errors import ValidationError
from ..models.enums import Role
from ..models.user import User
from ..schemas.auth import AuthResponse, UserCreate, UserLogin, UserOut
from ..security import get_password_hash, token_for_user, verify_password

router = APIRouter(prefix="/auth", tags=["auth"])
logger = logging.getLogger(__name__)


@router.post("/register", response_model=AuthResponse, status_code=status.HTTP_201_CREATED)
def register(payload: UserCreate, db: Session = Depends(get_db)):
    # Public registration always creates citizens
    email = payload.email.strip().lower()
    if db.query(User).filter(User.email == email).first():
        raise ValidationError("Email already registered", code="EMAIL_ALREADY_REGISTERED")

    user = User(
        full_name=payload.full_name.strip(),
        email=email,
        phone=payload.phone,
        hashed_password=get_password_hash(payload.password),
        role=Role.CITIZEN,
        is_active=True,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    logger.info("Registered user %s", user.id)
    return AuthResponse(access_token=token_for_user(user), user=UserOut.model_validate(user))


@router.post("/login", response_model=AuthResponse)
def login(payload: UserLogin, db: Session = Depends(get_db)):
    email = payload.email.strip().lower()
    user: Optional[User] = db.query(User).filter(User.email == email).first()
    if not user or not verify_password(payload.password, user.hashed_password):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Incorrect email or password")
    if not user.is_active:
        raise HTTPException(status_code=403, detail="Account is inactive")
    return AuthResponse(access_token=token_for_user(user), user=UserOut.model_validate(user))


@router.get("/profile", response_model=UserOut)
def profile(current_user: User = Depends(get_current_user)):
    return current_user
