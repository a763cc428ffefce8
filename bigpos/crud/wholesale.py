"""
Retailer <-> wholesaler trade: link requests, wholesale orders, the
retailer wallet and retailer credit lines.

Order lifecycle: pending -> confirmed -> shipped -> delivered, with
rejection allowed from pending or confirmed. Fulfilment status and
payment status are tracked separately.
"""
from sqlalchemy import select, func
from sqlalchemy.orm import Session
import logging
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from bigpos.crud import payments
from bigpos.crud.base import CRUDBase
from bigpos.crud.inventory import crud_product, SourceType
from bigpos.exceptions import (
    ValidationFailedError, NotFoundError, InvalidTransitionError, PermissionDeniedError, InsufficientFundsError,
    ConflictError,
)
from bigpos.models import (
    WholesaleOrder, WholesaleOrderItem, RetailerProfile, RetailerCredit, CreditRequest, WholesalerProfile, Product,
    WholesalerLinkRequest, User,
)
from bigpos.schemas.business import WholesaleOrderCreate
from bigpos.services.mobile_money import gateway
from bigpos.utils.money import money, as_float, iso

logger = logging.getLogger(__name__)

PENDING = "pending"
PENDING_PAYMENT = "pending_payment"
CONFIRMED = "confirmed"
SHIPPED = "shipped"
DELIVERED = "delivered"
REJECTED = "rejected"

PAID = "paid"
PARTIAL = "partial"
UNPAID = "unpaid"

LINK_PENDING = "pending"
LINK_APPROVED = "approved"
LINK_REJECTED = "rejected"
LINK_CANCELLED = "cancelled"
LINK_UNLINKED = "unlinked"


crud_credit_request = CRUDBase(CreditRequest, "Credit request")


class CRUDRetailerCredit(CRUDBase[RetailerCredit]):
    def __init__(self):
        super().__init__(RetailerCredit, "Credit line")

    def get_or_create(self, db: Session, retailer: RetailerProfile) -> RetailerCredit:
        credit = db.execute(
            select(RetailerCredit).where(RetailerCredit.retailer_id == retailer.id).with_for_update()
        ).scalar_one_or_none()
        if credit is None:
            limit = money(retailer.credit_limit)
            credit = self.create(db, obj_in={
                "retailer_id": retailer.id,
                "credit_limit": limit,
                "used_credit": Decimal('0'),
                "available_credit": limit,
            })
        return credit

    def use(self, db: Session, retailer: RetailerProfile, amount) -> RetailerCredit:
        amount = money(amount)
        credit = self.get_or_create(db, retailer)
        if money(credit.available_credit) < amount:
            raise InsufficientFundsError(
                "Insufficient credit available",
                available=as_float(credit.available_credit),
                required=as_float(amount),
            )
        credit.used_credit = money(credit.used_credit) + amount
        credit.available_credit = money(credit.available_credit) - amount
        db.flush()
        return credit

    def release(self, db: Session, retailer: RetailerProfile, amount) -> RetailerCredit:
        credit = self.get_or_create(db, retailer)
        amount = min(money(amount), money(credit.used_credit))
        credit.used_credit = money(credit.used_credit) - amount
        credit.available_credit = money(credit.available_credit) + amount
        db.flush()
        return credit

    def request_increase(self, db: Session, retailer: RetailerProfile, amount, reason: Optional[str]) -> CreditRequest:
        return crud_credit_request.create(db, obj_in={
            "retailer_id": retailer.id,
            "wholesaler_id": retailer.linked_wholesaler_id,
            "amount": money(amount),
            "reason": reason,
            "status": PENDING,
        })

    def requests_for_wholesaler(self, db: Session, wholesaler: WholesalerProfile, status: Optional[str] = None) -> List[CreditRequest]:
        stmt = select(CreditRequest).where(CreditRequest.wholesaler_id == wholesaler.id)
        if status:
            stmt = stmt.where(CreditRequest.status == status)
        return list(db.execute(stmt.order_by(CreditRequest.created_at.desc(), CreditRequest.id.desc())).scalars().all())

    def review_request(
        self, db: Session, wholesaler: WholesalerProfile, request_id: int, approve: bool, notes: Optional[str] = None
    ) -> CreditRequest:
        """Approving raises the retailer's limit and available credit by the requested amount."""
        request = db.execute(
            select(CreditRequest).where(CreditRequest.id == request_id).with_for_update()
        ).scalar_one_or_none()
        if request is None or request.wholesaler_id != wholesaler.id:
            raise NotFoundError("Credit request not found")
        if request.status != PENDING:
            raise InvalidTransitionError(f"Credit request is already {request.status}")

        if approve:
            retailer = db.get(RetailerProfile, request.retailer_id)
            credit = self.get_or_create(db, retailer)
            credit.credit_limit = money(credit.credit_limit) + money(request.amount)
            credit.available_credit = money(credit.available_credit) + money(request.amount)
            retailer.credit_limit = credit.credit_limit
        request.status = "approved" if approve else "rejected"
        request.review_notes = notes
        request.reviewed_at = datetime.utcnow()
        db.flush()
        return request

    def set_limit(self, db: Session, retailer: RetailerProfile, limit) -> RetailerCredit:
        """Replace the credit limit; credit already drawn stays drawn."""
        limit = money(limit)
        credit = self.get_or_create(db, retailer)
        if limit < money(credit.used_credit):
            raise ValidationFailedError(
                "Credit limit cannot be below the credit already in use", used_credit=as_float(credit.used_credit)
            )
        credit.credit_limit = limit
        credit.available_credit = limit - money(credit.used_credit)
        retailer.credit_limit = limit
        db.flush()
        return credit


crud_retailer_credit = CRUDRetailerCredit()


class CRUDWholesalerLink(CRUDBase[WholesalerLinkRequest]):
    """
    Retailer requests to buy from a wholesaler.

    A retailer is linked to at most one wholesaler and may only have one
    pending request at a time. Approval sets the retailer's linked
    wholesaler and opens its credit line.
    """

    def __init__(self):
        super().__init__(WholesalerLinkRequest, "Link request")

    def available_wholesalers(self, db: Session, retailer: RetailerProfile) -> List[dict]:
        wholesalers = db.execute(
            select(WholesalerProfile)
            .join(User, User.id == WholesalerProfile.user_id)
            .where(User.is_active.is_(True))
            .order_by(WholesalerProfile.company_name)
        ).scalars().all()
        requests = dict(db.execute(
            select(WholesalerLinkRequest.wholesaler_id, WholesalerLinkRequest.status)
            .where(WholesalerLinkRequest.retailer_id == retailer.id)
        ).all())
        retailer_counts = dict(db.execute(
            select(RetailerProfile.linked_wholesaler_id, func.count(RetailerProfile.id))
            .where(RetailerProfile.linked_wholesaler_id.is_not(None))
            .group_by(RetailerProfile.linked_wholesaler_id)
        ).all())
        product_counts = dict(db.execute(
            select(Product.wholesaler_id, func.count(Product.id))
            .where(Product.wholesaler_id.is_not(None), Product.stock > 0, Product.status == "active")
            .group_by(Product.wholesaler_id)
        ).all())
        return [
            {
                "id": w.id,
                "company_name": w.company_name,
                "address": w.address,
                "phone": w.user.phone if w.user else None,
                "retailer_count": retailer_counts.get(w.id, 0),
                "product_count": product_counts.get(w.id, 0),
                "is_linked": retailer.linked_wholesaler_id == w.id,
                "request_status": requests.get(w.id),
            }
            for w in wholesalers
        ]

    def send(self, db: Session, retailer: RetailerProfile, wholesaler_id: int,
             message: Optional[str] = None) -> WholesalerLinkRequest:
        """Rejected, cancelled or unlinked requests to the same wholesaler are reopened."""
        if retailer.linked_wholesaler_id is not None:
            raise ConflictError("You are already linked to a wholesaler")
        pending = db.execute(
            select(WholesalerLinkRequest).where(
                WholesalerLinkRequest.retailer_id == retailer.id, WholesalerLinkRequest.status == LINK_PENDING
            )
        ).scalar_one_or_none()
        if pending is not None:
            raise ConflictError(
                "You already have a pending link request; cancel it before sending another",
                existing_request_id=pending.id,
                existing_wholesaler_id=pending.wholesaler_id,
            )
        if db.get(WholesalerProfile, wholesaler_id) is None:
            raise NotFoundError("Wholesaler not found")

        request = db.execute(
            select(WholesalerLinkRequest).where(
                WholesalerLinkRequest.retailer_id == retailer.id, WholesalerLinkRequest.wholesaler_id == wholesaler_id
            ).with_for_update()
        ).scalar_one_or_none()
        if request is None:
            request = self.create(db, obj_in={
                "retailer_id": retailer.id,
                "wholesaler_id": wholesaler_id,
                "message": message,
                "status": LINK_PENDING,
            })
        elif request.status == LINK_APPROVED:
            raise ConflictError("This wholesaler already approved your request")
        else:
            request.status = LINK_PENDING
            request.message = message
            request.rejection_reason = None
            request.responded_at = None
            db.flush()
        logger.info(f"Retailer {retailer.id} requested a link to wholesaler {wholesaler_id}")
        return request

    def list_for_retailer(self, db: Session, retailer: RetailerProfile) -> List[WholesalerLinkRequest]:
        stmt = (
            select(WholesalerLinkRequest)
            .where(WholesalerLinkRequest.retailer_id == retailer.id)
            .order_by(WholesalerLinkRequest.created_at.desc(), WholesalerLinkRequest.id.desc())
        )
        return list(db.execute(stmt).scalars().all())

    def cancel(self, db: Session, retailer: RetailerProfile, request_id: int) -> WholesalerLinkRequest:
        request = self.get_or_404(db, request_id, lock=True)
        if request.retailer_id != retailer.id or request.status != LINK_PENDING:
            raise NotFoundError("Pending request not found")
        request.status = LINK_CANCELLED
        db.flush()
        return request

    def list_for_wholesaler(self, db: Session, wholesaler: WholesalerProfile,
                            status: Optional[str] = None) -> List[WholesalerLinkRequest]:
        stmt = select(WholesalerLinkRequest).where(WholesalerLinkRequest.wholesaler_id == wholesaler.id)
        if status:
            stmt = stmt.where(WholesalerLinkRequest.status == status)
        stmt = stmt.order_by(WholesalerLinkRequest.created_at.desc(), WholesalerLinkRequest.id.desc())
        return list(db.execute(stmt).scalars().all())

    def _pending_for(self, db: Session, wholesaler: WholesalerProfile, request_id: int) -> WholesalerLinkRequest:
        request = self.get_or_404(db, request_id, lock=True)
        if request.wholesaler_id != wholesaler.id:
            raise NotFoundError("Link request not found")
        if request.status != LINK_PENDING:
            raise InvalidTransitionError(f"Request already {request.status}")
        return request

    def approve(self, db: Session, wholesaler: WholesalerProfile, request_id: int,
                credit_limit=None) -> Tuple[WholesalerLinkRequest, RetailerCredit]:
        request = self._pending_for(db, wholesaler, request_id)
        retailer = db.execute(
            select(RetailerProfile).where(RetailerProfile.id == request.retailer_id).with_for_update()
        ).scalar_one()
        if retailer.linked_wholesaler_id not in (None, wholesaler.id):
            raise ConflictError("Retailer is already linked to another wholesaler")
        retailer.linked_wholesaler_id = wholesaler.id
        request.status = LINK_APPROVED
        request.responded_at = datetime.utcnow()
        credit = crud_retailer_credit.get_or_create(db, retailer)
        if credit_limit is not None:
            credit = crud_retailer_credit.set_limit(db, retailer, credit_limit)
        db.flush()
        logger.info(f"Wholesaler {wholesaler.id} linked retailer {retailer.id}")
        return request, credit

    def reject(self, db: Session, wholesaler: WholesalerProfile, request_id: int,
               reason: Optional[str] = None) -> WholesalerLinkRequest:
        request = self._pending_for(db, wholesaler, request_id)
        request.status = LINK_REJECTED
        request.rejection_reason = reason
        request.responded_at = datetime.utcnow()
        db.flush()
        return request

    def linked_retailer(self, db: Session, wholesaler: WholesalerProfile, retailer_id: int) -> RetailerProfile:
        retailer = db.execute(
            select(RetailerProfile).where(RetailerProfile.id == retailer_id).with_for_update()
        ).scalar_one_or_none()
        if retailer is None or retailer.linked_wholesaler_id != wholesaler.id:
            raise NotFoundError("Retailer is not linked to you")
        return retailer

    def linked_retailers(self, db: Session, wholesaler: WholesalerProfile) -> List[dict]:
        """Linked retailers with their purchase totals from this wholesaler."""
        retailers = db.execute(
            select(RetailerProfile)
            .where(RetailerProfile.linked_wholesaler_id == wholesaler.id)
            .order_by(RetailerProfile.shop_name)
        ).scalars().all()
        totals = {
            retailer_id: (count, total)
            for retailer_id, count, total in db.execute(
                select(WholesaleOrder.retailer_id, func.count(WholesaleOrder.id),
                       func.coalesce(func.sum(WholesaleOrder.total_amount), 0))
                .where(WholesaleOrder.wholesaler_id == wholesaler.id, WholesaleOrder.status != REJECTED)
                .group_by(WholesaleOrder.retailer_id)
            ).all()
        }
        approvals = dict(db.execute(
            select(WholesalerLinkRequest.retailer_id, WholesalerLinkRequest.responded_at).where(
                WholesalerLinkRequest.wholesaler_id == wholesaler.id, WholesalerLinkRequest.status == LINK_APPROVED
            )
        ).all())
        entries = []
        for r in retailers:
            credit = db.execute(
                select(RetailerCredit).where(RetailerCredit.retailer_id == r.id)
            ).scalar_one_or_none()
            count, total = totals.get(r.id, (0, 0))
            entries.append({
                "id": r.id,
                "shop_name": r.shop_name,
                "address": r.address,
                "phone": r.user.phone if r.user else None,
                "is_verified": r.is_verified,
                "linked_at": iso(approvals.get(r.id)),
                "link_method": "request" if r.id in approvals else "direct",
                "order_count": count,
                "total_purchased": as_float(total),
                "credit": credit_to_dict(credit) if credit else None,
            })
        return entries

    def unlink(self, db: Session, wholesaler: WholesalerProfile, retailer_id: int) -> RetailerProfile:
        """Drop a retailer; refused while it still owes credit to this wholesaler."""
        retailer = self.linked_retailer(db, wholesaler, retailer_id)
        credit = crud_retailer_credit.get_or_create(db, retailer)
        if money(credit.used_credit) > 0:
            raise ValidationFailedError(
                "Retailer still has outstanding credit", used_credit=as_float(credit.used_credit)
            )
        retailer.linked_wholesaler_id = None
        request = db.execute(
            select(WholesalerLinkRequest).where(
                WholesalerLinkRequest.retailer_id == retailer.id, WholesalerLinkRequest.wholesaler_id == wholesaler.id
            ).with_for_update()
        ).scalar_one_or_none()
        if request is not None:
            request.status = LINK_UNLINKED
            request.responded_at = datetime.utcnow()
        db.flush()
        return retailer


crud_wholesaler_link = CRUDWholesalerLink()


class CRUDWholesaleOrder(CRUDBase[WholesaleOrder]):
    def __init__(self):
        super().__init__(WholesaleOrder, "Order")

    def create_order(self, db: Session, retailer: RetailerProfile, order_in: WholesaleOrderCreate) -> WholesaleOrder:
        """Place an order with the retailer's linked wholesaler and pay for it."""
        if retailer.linked_wholesaler_id is None:
            raise PermissionDeniedError("You are not linked to a wholesaler")
        wholesaler_id = retailer.linked_wholesaler_id

        quantities: Dict[int, int] = {}
        for item in order_in.items:
            quantities[item.product_id] = quantities.get(item.product_id, 0) + item.quantity

        lines: List[Tuple[Product, int]] = []
        for product_id, quantity in quantities.items():
            product = crud_product.get_or_404(db, product_id)
            if product.wholesaler_id != wholesaler_id:
                raise ValidationFailedError(f"Product {product_id} is not sold by your linked wholesaler")
            if product.status != "active":
                raise ValidationFailedError(f"{product.name} is not available")
            lines.append((product, quantity))
        total = money(sum((money(p.price) * q for p, q in lines), Decimal('0')))

        method = order_in.payment_method.value
        status, payment_status, paid, external_ref = PENDING, PAID, total, None
        if method == "wallet":
            payments.debit_retailer(db, retailer, total)
        elif method == "credit":
            crud_retailer_credit.use(db, retailer, total)
            payment_status, paid = UNPAID, Decimal('0')
        else:
            result = gateway.charge(total, order_in.phone_number or retailer.user.phone,
                                    f"WHO-{retailer.id}-{int(datetime.utcnow().timestamp())}", "Wholesale order")
            status, payment_status, paid, external_ref = PENDING_PAYMENT, UNPAID, Decimal('0'), result.transaction_id

        order = self.create(db, obj_in={
            "retailer_id": retailer.id,
            "wholesaler_id": wholesaler_id,
            "total_amount": total,
            "amount_paid": paid,
            "payment_method": method,
            "payment_status": payment_status,
            "external_ref": external_ref,
            "status": status,
            "notes": order_in.notes,
        })
        for product, quantity in lines:
            order.items.append(WholesaleOrderItem(product_id=product.id, quantity=quantity, price=money(product.price)))
        db.flush()
        logger.info(f"Wholesale order {order.id} placed by retailer {retailer.id}: {total} via {method}")
        return order

    def list_for_retailer(self, db: Session, retailer: RetailerProfile, *, credit_only: bool = False) -> List[WholesaleOrder]:
        stmt = select(WholesaleOrder).where(WholesaleOrder.retailer_id == retailer.id)
        if credit_only:
            stmt = stmt.where(WholesaleOrder.payment_method == "credit")
        return list(db.execute(stmt.order_by(WholesaleOrder.created_at.desc(), WholesaleOrder.id.desc())).scalars().all())

    def list_for_wholesaler(self, db: Session, wholesaler: WholesalerProfile, status: Optional[str] = None) -> List[WholesaleOrder]:
        stmt = select(WholesaleOrder).where(WholesaleOrder.wholesaler_id == wholesaler.id)
        if status:
            stmt = stmt.where(WholesaleOrder.status == status)
        return list(db.execute(stmt.order_by(WholesaleOrder.created_at.desc(), WholesaleOrder.id.desc())).scalars().all())

    def _for_wholesaler(self, db: Session, wholesaler: WholesalerProfile, order_id: int) -> WholesaleOrder:
        order = self.get_or_404(db, order_id, lock=True)
        if order.wholesaler_id != wholesaler.id:
            raise NotFoundError("Order not found")
        return order

    def confirm(self, db: Session, wholesaler: WholesalerProfile, order_id: int, user_id: int) -> WholesaleOrder:
        order = self._for_wholesaler(db, wholesaler, order_id)
        if order.status == PENDING_PAYMENT:
            result = gateway.check_status(order.external_ref)
            if not result.settled:
                raise InvalidTransitionError("Mobile money payment has not been received yet")
            order.amount_paid = order.total_amount
            order.payment_status = PAID
        elif order.status != PENDING:
            raise InvalidTransitionError(f"Cannot confirm an order that is {order.status}")
        for item in order.items:
            product = crud_product.get_or_404(db, item.product_id, lock=True)
            crud_product.adjust_stock(db, product, -item.quantity, SourceType.WHOLESALE_OUT,
                                      source_id=order.id, user_id=user_id, notes=f"Wholesale order #{order.id}")
        order.status = CONFIRMED
        db.flush()
        return order

    def reject(self, db: Session, wholesaler: WholesalerProfile, order_id: int, user_id: int,
               reason: Optional[str] = None) -> WholesaleOrder:
        """Reject an order, refunding the retailer and restocking confirmed goods."""
        order = self._for_wholesaler(db, wholesaler, order_id)
        if order.status not in (PENDING, CONFIRMED, PENDING_PAYMENT):
            raise InvalidTransitionError(f"Cannot reject an order that is {order.status}")

        retailer = db.get(RetailerProfile, order.retailer_id)
        if order.payment_method == "credit":
            crud_retailer_credit.release(db, retailer, money(order.total_amount) - money(order.amount_paid))
        refunded = money(order.amount_paid) > 0
        if refunded:
            payments.credit_retailer(db, retailer, order.amount_paid)
            order.amount_paid = Decimal('0')
        if order.status == CONFIRMED:
            for item in order.items:
                product = crud_product.get_or_404(db, item.product_id, lock=True)
                crud_product.adjust_stock(db, product, item.quantity, SourceType.REVERSAL,
                                          source_id=order.id, user_id=user_id, notes=f"Wholesale order #{order.id} rejected")
        order.status = REJECTED
        if refunded:
            order.payment_status = "refunded"
        order.notes = reason or order.notes
        db.flush()
        return order

    def settle_payment(self, db: Session, external_ref: str, paid: bool) -> Optional[WholesaleOrder]:
        """A paid order joins the confirmation queue; a failed one is rejected."""
        order = db.execute(
            select(WholesaleOrder).where(WholesaleOrder.external_ref == external_ref).with_for_update()
        ).scalar_one_or_none()
        if order is None or order.status != PENDING_PAYMENT:
            return None
        if paid:
            order.amount_paid = order.total_amount
            order.payment_status = PAID
            order.status = PENDING
        else:
            order.payment_status = "failed"
            order.status = REJECTED
            order.notes = "Mobile money payment failed"
        db.flush()
        logger.info(f"Wholesale order {order.id} ({external_ref}) settled as {order.payment_status}")
        return order

    def ship(self, db: Session, wholesaler: WholesalerProfile, order_id: int) -> WholesaleOrder:
        order = self._for_wholesaler(db, wholesaler, order_id)
        if order.status != CONFIRMED:
            raise InvalidTransitionError(f"Cannot ship an order that is {order.status}")
        order.status = SHIPPED
        db.flush()
        return order

    def deliver(self, db: Session, wholesaler: WholesalerProfile, order_id: int, user_id: int) -> WholesaleOrder:
        order = self._for_wholesaler(db, wholesaler, order_id)
        if order.status != SHIPPED:
            raise InvalidTransitionError(f"Cannot deliver an order that is {order.status}")
        for item in order.items:
            source = crud_product.get_or_404(db, item.product_id)
            crud_product.receive_wholesale(db, order.retailer_id, source, item.quantity,
                                           order_id=order.id, user_id=user_id)
        order.status = DELIVERED
        db.flush()
        return order

    def repay_credit(self, db: Session, retailer: RetailerProfile, order_id: int, amount) -> WholesaleOrder:
        """Pay down a credit order from the retailer wallet."""
        order = self.get_or_404(db, order_id, lock=True)
        if order.retailer_id != retailer.id or order.payment_method != "credit":
            raise NotFoundError("Credit order not found")
        if order.status == REJECTED:
            raise InvalidTransitionError("Cannot repay a rejected order")
        amount = money(amount)
        outstanding = money(order.total_amount) - money(order.amount_paid)
        if outstanding <= 0:
            raise ValidationFailedError("Order is already paid")
        if amount > outstanding:
            raise ValidationFailedError("Repayment exceeds the outstanding balance", outstanding=as_float(outstanding))

        payments.debit_retailer(db, retailer, amount)
        crud_retailer_credit.release(db, retailer, amount)
        order.amount_paid = money(order.amount_paid) + amount
        order.payment_status = PAID if order.amount_paid >= money(order.total_amount) else PARTIAL
        db.flush()
        return order


crud_wholesale_order = CRUDWholesaleOrder()


def wholesale_order_to_dict(db: Session, order: WholesaleOrder) -> dict:
    retailer = db.get(RetailerProfile, order.retailer_id)
    wholesaler = db.get(WholesalerProfile, order.wholesaler_id)
    items = []
    for item in order.items:
        product = db.get(Product, item.product_id)
        items.append({
            "product_id": item.product_id,
            "name": product.name if product else None,
            "quantity": item.quantity,
            "price": as_float(item.price),
            "total": as_float(money(item.price) * item.quantity),
        })
    return {
        "id": order.id,
        "status": order.status,
        "payment_method": order.payment_method,
        "payment_status": order.payment_status,
        "total_amount": as_float(order.total_amount),
        "amount_paid": as_float(order.amount_paid),
        "outstanding": as_float(money(order.total_amount) - money(order.amount_paid)),
        "retailer": {"id": order.retailer_id, "shop_name": retailer.shop_name if retailer else None},
        "wholesaler": {"id": order.wholesaler_id, "company_name": wholesaler.company_name if wholesaler else None},
        "items": items,
        "notes": order.notes,
        "external_ref": order.external_ref,
        "created_at": iso(order.created_at),
    }


def credit_to_dict(credit: RetailerCredit) -> dict:
    return {
        "credit_limit": as_float(credit.credit_limit),
        "used_credit": as_float(credit.used_credit),
        "available_credit": as_float(credit.available_credit),
        "updated_at": iso(credit.updated_at),
    }


def link_request_to_dict(request: WholesalerLinkRequest) -> dict:
    retailer, wholesaler = request.retailer, request.wholesaler
    return {
        "id": request.id,
        "retailer_id": request.retailer_id,
        "retailer_name": retailer.shop_name if retailer else None,
        "retailer_phone": retailer.user.phone if retailer and retailer.user else None,
        "wholesaler_id": request.wholesaler_id,
        "wholesaler_name": wholesaler.company_name if wholesaler else None,
        "status": request.status,
        "message": request.message,
        "rejection_reason": request.rejection_reason,
        "responded_at": iso(request.responded_at),
        "created_at": iso(request.created_at),
    }


def credit_request_to_dict(request: CreditRequest) -> dict:
    return {
        "id": request.id,
        "retailer_id": request.retailer_id,
        "amount": as_float(request.amount),
        "reason": request.reason,
        "status": request.status,
        "review_notes": request.review_notes,
        "reviewed_at": iso(request.reviewed_at),
        "created_at": iso(request.created_at),
    }
