"""
Authentication and security module:
- JWT auth via python-jose[cryptography]
- Password and PIN hashing via passlib[bcrypt]
- Role-based access control (consumer/retailer/wholesaler/admin)
- Audit trail written inside the caller's transaction
"""
from datetime import datetime, timedelta
from typing import Optional, Dict, Any
from jose import JWTError, jwt
from passlib.context import CryptContext
from fastapi import HTTPException, status, Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy import select
from sqlalchemy.orm import Session
import logging

from bigpos.config import settings
from bigpos.database import get_db
from bigpos import models

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=settings.BCRYPT_ROUNDS)

security = HTTPBearer()


def verify_password(plain_password: str, hashed_password: Optional[str]) -> bool:
    """Verify a password (or PIN) against its hash"""
    if not hashed_password:
        return False
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


def create_access_token(data: Dict[str, Any], expires_delta: Optional[timedelta] = None) -> str:
    """Create JWT access token"""
    to_encode = data.copy()
    expire = datetime.utcnow() + (expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({"exp": expire, "iat": datetime.utcnow()})
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def decode_access_token(token: str) -> Optional[Dict[str, Any]]:
    """Decode and verify JWT token"""
    try:
        return jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except JWTError as e:
        logger.warning(f"JWT decode error: {e}")
        return None


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: Session = Depends(get_db)
) -> models.User:
    """Resolve the bearer token to an active user."""
    payload = decode_access_token(credentials.credentials)
    if payload is None or payload.get("sub") is None:
        raise _unauthorized("Invalid authentication credentials")

    try:
        user_id = int(payload["sub"])
    except (TypeError, ValueError):
        raise _unauthorized("Invalid authentication credentials")

    user = db.get(models.User, user_id)
    if user is None:
        logger.warning(f"User not found for token sub {user_id}")
        raise _unauthorized("User not found")

    if not user.is_active:
        logger.warning(f"Inactive user attempted access: {user.id}")
        raise _unauthorized("Inactive user")

    return user


def require_role(*roles: str):
    """Build a dependency that only lets the given roles through."""
    def checker(current_user: models.User = Depends(get_current_user)) -> models.User:
        if current_user.role not in roles:
            logger.warning(f"User {current_user.id} ({current_user.role}) denied, needs {roles}")
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"{' or '.join(r.capitalize() for r in roles)} privileges required"
            )
        return current_user
    return checker


require_admin = require_role("admin")


def get_consumer_profile(
    current_user: models.User = Depends(require_role("consumer")),
    db: Session = Depends(get_db)
) -> models.ConsumerProfile:
    profile = db.execute(
        select(models.ConsumerProfile).where(models.ConsumerProfile.user_id == current_user.id)
    ).scalar_one_or_none()
    if profile is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Consumer profile not found")
    return profile


def get_retailer_profile(
    current_user: models.User = Depends(require_role("retailer")),
    db: Session = Depends(get_db)
) -> models.RetailerProfile:
    profile = db.execute(
        select(models.RetailerProfile).where(models.RetailerProfile.user_id == current_user.id)
    ).scalar_one_or_none()
    if profile is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Retailer profile not found")
    return profile


def get_wholesaler_profile(
    current_user: models.User = Depends(require_role("wholesaler")),
    db: Session = Depends(get_db)
) -> models.WholesalerProfile:
    profile = db.execute(
        select(models.WholesalerProfile).where(models.WholesalerProfile.user_id == current_user.id)
    ).scalar_one_or_none()
    if profile is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Wholesaler profile not found")
    return profile


def audit_log_action(
    db: Session,
    user_id: Optional[int],
    action: str,
    table_name: Optional[str] = None,
    record_id: Optional[int] = None,
    old_values: Optional[Dict] = None,
    new_values: Optional[Dict] = None,
    notes: Optional[str] = None
) -> models.AuditLog:
    """
    Add an audit log entry to the current session.

    The entry is committed (or rolled back) together with the money
    movement it describes.
    """
    audit_entry = models.AuditLog(
        user_id=user_id,
        action=action,
        table_name=table_name,
        record_id=record_id,
        old_values=old_values,
        new_values=new_values,
        notes=notes
    )
    db.add(audit_entry)
    logger.info(f"Audit log queued: {action} by user {user_id}")
    return audit_entry
