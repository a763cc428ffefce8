"""
Authentication router: registration, login and credential changes.
"""
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session
from typing import Any, Dict

from bigpos.database import get_db, atomic
from bigpos import models
from bigpos.crud.users import crud_user, user_to_dict
from bigpos.schemas.auth import RegisterRequest, LoginRequest, PasswordChange, PinChange
from bigpos.security import (
    verify_password,
    get_password_hash,
    create_access_token,
    get_current_user,
    audit_log_action,
)

router = APIRouter(prefix="/auth", tags=["authentication"])


def _token_response(user: models.User) -> Dict[str, Any]:
    access_token = create_access_token(data={"sub": str(user.id), "role": user.role})
    return {
        "success": True,
        "access_token": access_token,
        "token_type": "bearer",
        "user": user_to_dict(user),
    }


@router.post("/register", status_code=status.HTTP_201_CREATED)
def register(data: RegisterRequest, db: Session = Depends(get_db)) -> Dict[str, Any]:
    """Create a consumer, retailer or wholesaler account with its profile."""
    with atomic(db):
        user = crud_user.register(db, data)
        audit_log_action(
            db=db,
            user_id=user.id,
            action="REGISTER",
            table_name="users",
            record_id=user.id,
            new_values={"role": user.role}
        )
    db.refresh(user)
    return _token_response(user)


@router.post("/login")
def login(data: LoginRequest, db: Session = Depends(get_db)) -> Dict[str, Any]:
    """
    Login by email or phone.
    Consumers may authenticate with their 4-digit PIN instead of a password.
    """
    user = crud_user.authenticate(
        db,
        email=data.email,
        phone=data.phone,
        password=data.password,
        pin=data.pin,
        role=data.role.value if data.role else None,
    )
    if user is None:
        with atomic(db):
            audit_log_action(
                db=db,
                user_id=None,
                action="LOGIN_FAILED",
                notes=f"Failed login attempt for {data.email or data.phone}"
            )
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if not user.is_active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Account is deactivated")

    with atomic(db):
        audit_log_action(db=db, user_id=user.id, action="LOGIN_SUCCESS")
    return _token_response(user)


@router.get("/me")
def me(current_user: models.User = Depends(get_current_user)) -> Dict[str, Any]:
    return {"success": True, "user": user_to_dict(current_user)}


@router.put("/password")
def change_password(
    data: PasswordChange,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    if not verify_password(data.current_password, current_user.password_hash):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Current password is incorrect")

    with atomic(db):
        current_user.password_hash = get_password_hash(data.new_password)
        audit_log_action(
            db=db,
            user_id=current_user.id,
            action="PASSWORD_CHANGE",
            table_name="users",
            record_id=current_user.id
        )
    return {"success": True, "message": "Password updated successfully"}


@router.put("/pin")
def change_pin(
    data: PinChange,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    if current_user.pin_hash and not (data.current_pin and verify_password(data.current_pin, current_user.pin_hash)):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Current PIN is incorrect")

    with atomic(db):
        current_user.pin_hash = get_password_hash(data.new_pin)
        audit_log_action(
            db=db,
            user_id=current_user.id,
            action="PIN_CHANGE",
            table_name="users",
            record_id=current_user.id
        )
    return {"success": True, "message": "PIN updated successfully"}
