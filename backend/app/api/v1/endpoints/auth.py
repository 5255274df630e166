from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordRequestForm
from sqlalchemy import func
from sqlalchemy.orm import Session

from backend.app.core.database import get_db
from backend.app.core.security import create_access_token, verify_password
from backend.app.models.accounting import User
from backend.app.services.audit import log_action

router = APIRouter()


def _audit_login(
    db: Session, user: User | None, username: str, ip: str, action: str, **changes: str
) -> None:
    log_action(
        db,
        user_id=user.id if user else None,
        action=action,
        resource_type="auth",
        resource_id=username,
        ip_address=ip,
        changes=changes or None,
    )
    db.commit()


@router.post("/login/access-token")
def login_access_token(
    request: Request,
    db: Session = Depends(get_db),
    form_data: OAuth2PasswordRequestForm = Depends(),
) -> dict[str, str]:
    """Exchange a pharmacist's username and password for a bearer token."""
    ip = request.client.host if request.client else "unknown"
    user = (
        db.query(User)
        .filter(func.lower(User.username) == form_data.username.lower())
        .first()
    )

    if not user or not verify_password(form_data.password, user.hashed_password):
        _audit_login(db, user, form_data.username, ip, "LOGIN_FAILED", reason="invalid_credentials")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Incorrect username or password",
            headers={"WWW-Authenticate": "Bearer"},
        )
    if not user.is_active:
        _audit_login(db, user, form_data.username, ip, "LOGIN_FAILED", reason="inactive_user")
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Inactive user")

    _audit_login(db, user, form_data.username, ip, "LOGIN_SUCCESS")
    return {
        "access_token": create_access_token(subject=str(user.id)),
        "token_type": "bearer",
    }
