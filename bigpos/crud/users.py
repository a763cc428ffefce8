"""
User registration, login and credential changes.
"""
from sqlalchemy import select, or_
from sqlalchemy.orm import Session
import logging
import secrets
import string
from typing import Optional

from bigpos.crud.base import CRUDBase
from bigpos.crud.wallet import crud_wallet, DASHBOARD_WALLET
from bigpos.exceptions import ConflictError, ValidationFailedError
from bigpos.models import User, ConsumerProfile, RetailerProfile, WholesalerProfile
from bigpos.schemas.auth import RegisterRequest, Role
from bigpos.security import get_password_hash, verify_password

logger = logging.getLogger(__name__)


def generate_reward_wallet_id() -> str:
    alphabet = string.ascii_uppercase + string.digits
    return "GRW-" + "".join(secrets.choice(alphabet) for _ in range(8))


class CRUDUser(CRUDBase[User]):
    def __init__(self):
        super().__init__(User, "User")

    def get_by_login(self, db: Session, *, email: Optional[str] = None, phone: Optional[str] = None,
                     role: Optional[str] = None) -> Optional[User]:
        stmt = select(User)
        if email:
            stmt = stmt.where(User.email == email.strip().lower())
        else:
            stmt = stmt.where(User.phone == (phone or "").strip())
        if role:
            stmt = stmt.where(User.role == role)
        return db.execute(stmt).scalars().first()

    def register(self, db: Session, data: RegisterRequest) -> User:
        """Create a user and the profile that goes with its role."""
        email = data.email.strip().lower() if data.email else None
        phone = data.phone.strip() if data.phone else None
        clauses = []
        if email:
            clauses.append(User.email == email)
        if phone:
            clauses.append(User.phone == phone)
        if db.execute(select(User.id).where(or_(*clauses))).first() is not None:
            raise ConflictError("User already exists")

        user = self.create(db, obj_in={
            "email": email,
            "phone": phone,
            "name": data.name,
            "password_hash": get_password_hash(data.password),
            "pin_hash": get_password_hash(data.pin) if data.pin else None,
            "role": data.role.value,
            "is_active": True,
        })

        if data.role == Role.CONSUMER:
            profile = ConsumerProfile(
                user_id=user.id,
                full_name=data.name,
                address=data.address,
                gas_reward_wallet_id=generate_reward_wallet_id(),
            )
            db.add(profile)
            db.flush()
            crud_wallet.get_or_create(db, profile.id, DASHBOARD_WALLET)
        elif data.role == Role.RETAILER:
            if not data.business_name:
                raise ValidationFailedError("business_name is required for retailers")
            db.add(RetailerProfile(
                user_id=user.id,
                shop_name=data.business_name,
                address=data.address,
                province=data.province,
                district=data.district,
                sector=data.sector,
            ))
        elif data.role == Role.WHOLESALER:
            if not data.business_name:
                raise ValidationFailedError("business_name is required for wholesalers")
            db.add(WholesalerProfile(user_id=user.id, company_name=data.business_name, address=data.address))
        db.flush()
        logger.info(f"Registered {user.role} user {user.id}")
        return user

    def authenticate(self, db: Session, *, email: Optional[str], phone: Optional[str], password: Optional[str],
                     pin: Optional[str], role: Optional[str]) -> Optional[User]:
        """Password login for everyone; consumers may also use their PIN."""
        user = self.get_by_login(db, email=email, phone=phone, role=role)
        if user is None:
            return None
        if password and verify_password(password, user.password_hash):
            return user
        if pin and user.role == "consumer" and verify_password(pin, user.pin_hash):
            return user
        return None

    def ensure_admin(self, db: Session, email: str, password: str) -> User:
        email = email.strip().lower()
        user = self.get_by_login(db, email=email)
        if user is None:
            user = self.create(db, obj_in={
                "email": email,
                "name": "Administrator",
                "password_hash": get_password_hash(password),
                "role": Role.ADMIN.value,
                "is_active": True,
            })
            logger.info(f"Created bootstrap admin {user.id}")
        elif user.role != Role.ADMIN.value:
            raise ConflictError("Bootstrap admin email belongs to another account")
        return user


crud_user = CRUDUser()


def user_to_dict(user: User) -> dict:
    data = {
        "id": user.id,
        "name": user.name,
        "email": user.email,
        "phone": user.phone,
        "role": user.role,
        "is_active": user.is_active,
    }
    if user.consumer_profile is not None:
        data["consumer_profile"] = {
            "id": user.consumer_profile.id,
            "is_verified": user.consumer_profile.is_verified,
            "gas_reward_wallet_id": user.consumer_profile.gas_reward_wallet_id,
        }
    if user.retailer_profile is not None:
        data["retailer_profile"] = {
            "id": user.retailer_profile.id,
            "shop_name": user.retailer_profile.shop_name,
            "is_verified": user.retailer_profile.is_verified,
        }
    if user.wholesaler_profile is not None:
        data["wholesaler_profile"] = {
            "id": user.wholesaler_profile.id,
            "company_name": user.wholesaler_profile.company_name,
        }
    return data
