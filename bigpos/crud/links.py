"""
Customer <-> retailer link requests.

A consumer can only buy from a retailer after that retailer approves a
link request.
"""
from sqlalchemy import select, or_
from sqlalchemy.orm import Session
import logging
from datetime import datetime
from typing import Dict, List, Optional

from bigpos.crud.base import CRUDBase
from bigpos.exceptions import ConflictError, NotFoundError, InvalidTransitionError, PermissionDeniedError
from bigpos.models import CustomerLinkRequest, RetailerProfile, ConsumerProfile, User
from bigpos.utils.money import iso

logger = logging.getLogger(__name__)

PENDING = "pending"
APPROVED = "approved"
REJECTED = "rejected"


class CRUDLinkRequest(CRUDBase[CustomerLinkRequest]):
    def __init__(self):
        super().__init__(CustomerLinkRequest, "Link request")

    def find(self, db: Session, customer_id: int, retailer_id: int) -> Optional[CustomerLinkRequest]:
        stmt = select(CustomerLinkRequest).where(
            CustomerLinkRequest.customer_id == customer_id,
            CustomerLinkRequest.retailer_id == retailer_id,
        )
        return db.execute(stmt).scalar_one_or_none()

    def is_approved(self, db: Session, customer_id: int, retailer_id: int) -> bool:
        link = self.find(db, customer_id, retailer_id)
        return link is not None and link.status == APPROVED

    def require_approved(self, db: Session, customer_id: int, retailer_id: int) -> None:
        if not self.is_approved(db, customer_id, retailer_id):
            raise PermissionDeniedError(
                "You must be linked to this retailer before placing orders",
                requiresLinking=True,
                retailerId=retailer_id,
            )

    def statuses_for_customer(self, db: Session, customer_id: int) -> Dict[int, CustomerLinkRequest]:
        stmt = select(CustomerLinkRequest).where(CustomerLinkRequest.customer_id == customer_id)
        return {link.retailer_id: link for link in db.execute(stmt).scalars().all()}

    def send(self, db: Session, customer: ConsumerProfile, retailer_id: int, message: Optional[str]) -> CustomerLinkRequest:
        retailer = db.get(RetailerProfile, retailer_id)
        if retailer is None:
            raise NotFoundError("Retailer not found")

        link = self.find(db, customer.id, retailer_id)
        if link is not None:
            if link.status == PENDING:
                raise ConflictError("A link request to this retailer is already pending")
            if link.status == APPROVED:
                raise ConflictError("You are already linked to this retailer")
            # Rejected requests may be sent again
            link.status = PENDING
            link.message = message
            link.rejection_reason = None
            link.responded_at = None
            link.created_at = datetime.utcnow()
            db.flush()
            return link

        return self.create(db, obj_in={
            "customer_id": customer.id,
            "retailer_id": retailer_id,
            "status": PENDING,
            "message": message,
        })

    def for_customer(self, db: Session, customer_id: int) -> List[CustomerLinkRequest]:
        stmt = (
            select(CustomerLinkRequest)
            .where(CustomerLinkRequest.customer_id == customer_id)
            .order_by(CustomerLinkRequest.created_at.desc(), CustomerLinkRequest.id.desc())
        )
        return list(db.execute(stmt).scalars().all())

    def cancel(self, db: Session, customer: ConsumerProfile, request_id: int) -> None:
        link = self.get_or_404(db, request_id)
        if link.customer_id != customer.id:
            raise NotFoundError("Link request not found")
        if link.status != PENDING:
            raise InvalidTransitionError("Only pending requests can be cancelled")
        db.delete(link)
        db.flush()

    def for_retailer(self, db: Session, retailer_id: int, status: Optional[str] = None) -> List[CustomerLinkRequest]:
        stmt = select(CustomerLinkRequest).where(CustomerLinkRequest.retailer_id == retailer_id)
        if status:
            stmt = stmt.where(CustomerLinkRequest.status == status)
        stmt = stmt.order_by(CustomerLinkRequest.created_at.desc(), CustomerLinkRequest.id.desc())
        return list(db.execute(stmt).scalars().all())

    def respond(
        self, db: Session, retailer: RetailerProfile, request_id: int, approve: bool, reason: Optional[str] = None
    ) -> CustomerLinkRequest:
        link = self.get_or_404(db, request_id, lock=True)
        if link.retailer_id != retailer.id:
            raise NotFoundError("Link request not found")
        if link.status != PENDING:
            raise InvalidTransitionError(f"Request is already {link.status}")
        link.status = APPROVED if approve else REJECTED
        link.rejection_reason = None if approve else reason
        link.responded_at = datetime.utcnow()
        db.flush()
        return link

    def unlink(self, db: Session, retailer: RetailerProfile, customer_id: int) -> None:
        link = self.find(db, customer_id, retailer.id)
        if link is None or link.status != APPROVED:
            raise NotFoundError("Linked customer not found")
        db.delete(link)
        db.flush()


crud_link_request = CRUDLinkRequest()


def discover_retailers(
    db: Session, *, province: Optional[str] = None, district: Optional[str] = None,
    sector: Optional[str] = None, search: Optional[str] = None
) -> List[RetailerProfile]:
    """Verified retailers filtered by location and a free-text search."""
    stmt = select(RetailerProfile).where(RetailerProfile.is_verified.is_(True))
    if province:
        stmt = stmt.where(RetailerProfile.province == province)
    if district:
        stmt = stmt.where(RetailerProfile.district == district)
    if sector:
        stmt = stmt.where(RetailerProfile.sector == sector)
    if search:
        like = f"%{search}%"
        stmt = stmt.where(or_(RetailerProfile.shop_name.ilike(like), RetailerProfile.address.ilike(like)))
    return list(db.execute(stmt.order_by(RetailerProfile.shop_name)).scalars().all())


def link_to_dict(link: CustomerLinkRequest, db: Session) -> dict:
    customer = db.get(ConsumerProfile, link.customer_id)
    customer_user = db.get(User, customer.user_id) if customer else None
    retailer = db.get(RetailerProfile, link.retailer_id)
    return {
        "id": link.id,
        "status": link.status,
        "message": link.message,
        "rejection_reason": link.rejection_reason,
        "created_at": iso(link.created_at),
        "responded_at": iso(link.responded_at),
        "customer": {
            "id": link.customer_id,
            "name": customer_user.name if customer_user else None,
            "phone": customer_user.phone if customer_user else None,
        },
        "retailer": {
            "id": link.retailer_id,
            "shop_name": retailer.shop_name if retailer else None,
        },
    }
