from __future__ import annotations

from uuid import UUID

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.orm import Session

from backend.app.core.database import get_db
from backend.app.core.security import decode_access_token
from backend.app.models.accounting import User
from backend.app.services.bill_store import BillStore

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/v1/auth/login/access-token")

_UNAUTHORIZED = HTTPException(
    status_code=status.HTTP_401_UNAUTHORIZED,
    detail="Could not validate credentials",
    headers={"WWW-Authenticate": "Bearer"},
)


def get_current_user(
    db: Session = Depends(get_db),
    token: str = Depends(oauth2_scheme),
) -> User:
    """Resolve the bearer token to the pharmacy owner every workflow acts for."""
    subject = decode_access_token(token)
    if subject is None:
        raise _UNAUTHORIZED
    try:
        owner_id = UUID(subject)
    except ValueError:
        raise _UNAUTHORIZED

    user = db.get(User, owner_id)
    if user is None:
        raise _UNAUTHORIZED
    if not user.is_active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Inactive user")
    return user


def get_bill_store() -> BillStore:
    """One store per request; every call on it runs in its own transaction."""
    return BillStore()
