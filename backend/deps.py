from __future__ import annotations

from typing import Callable

from fastapi import Depends, HTTPException, Query, status
from jose import jwt, JWTError
from sqlalchemy.orm import Session

from .config import settings
from .db import get_db
from .errors import InactiveUserError
from .models.enums import Role
from .models.user import User
from .schemas.auth import TokenPayload
from .security import oauth2_scheme


def get_current_user(token: str = Depends(oauth2_scheme), db: Session = Depends(get_db)) -> User:
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    try:
        payload = jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALG])
        token_data = TokenPayload(**payload)  # type: ignore[arg-type]
    except (JWTError, ValueError):
        raise credentials_exception

    user = db.query(User).filter(User.id == token_data.sub).first()
    if user is None:
        raise credentials_exception
    if not user.is_active:
        raise InactiveUserError("This account has been disabled")
    return user


def require_roles(*roles: Role) -> Callable[[User], User]:
    allowed = {Role(r).value for r in roles}

    def _wrapper(current_user: User = Depends(get_current_user)) -> User:
        if current_user.role not in allowed:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient permissions")
        return current_user

    return _wrapper


require_staff = require_roles(Role.AUTHORITY, Role.ADMIN)
require_admin = require_roles(Role.ADMIN)


def pagination_params(
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
) -> dict:
    return {"limit": limit, "offset": offset}
