"""
Retail orders: consumer store orders, POS sales and their status machine.

A store order moves money from one consumer source (dashboard wallet,
credit wallet, NFC card or mobile money) and optionally the consumer's
reward gas into the retailer's wallet, decrements stock and issues the
purchase reward, all in the caller's transaction.
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
from bigpos.crud.links import crud_link_request
from bigpos.crud.nfc import crud_nfc_card
from bigpos.crud.rewards import (
    crud_gas_reward, order_reward_units, profit_reward_units,
    SOURCE_PURCHASE_REWARD, REWARD_ELIGIBLE_METHODS,
)
from bigpos.exceptions import ValidationFailedError, NotFoundError, InvalidTransitionError
from bigpos.models import (
    Sale, SaleItem, Product, RetailerProfile, ConsumerProfile, User, CustomerOrder, GasReward,
)
from bigpos.schemas.store import OrderCreate
from bigpos.schemas.business import POSSaleCreate
from bigpos.security import audit_log_action
from bigpos.utils.money import money, as_float, iso, display_number

logger = logging.getLogger(__name__)

PENDING = "pending"
CONFIRMED = "confirmed"
PROCESSING = "processing"
READY = "ready"
COMPLETED = "completed"
DELIVERED = "delivered"
CANCELLED = "cancelled"
AWAITING_PAYMENT = "pending_payment"

# processing is an alias of confirmed
STATUS_TRANSITIONS: Dict[str, set] = {
    PENDING: {CONFIRMED, CANCELLED},
    CONFIRMED: {READY, CANCELLED},
    READY: {COMPLETED, DELIVERED},
    COMPLETED: set(),
    DELIVERED: set(),
    CANCELLED: set(),
    AWAITING_PAYMENT: set(),
}
CANCELLABLE_BY_CONSUMER = {PENDING, CONFIRMED}
CANCELLABLE_BY_RETAILER = {PENDING, CONFIRMED}
FULFILLABLE = {CONFIRMED, READY}
DELIVERY_CONFIRMABLE = {CONFIRMED, READY}

STORE_METHODS = {payments.DASHBOARD, payments.CREDIT, payments.NFC, payments.MOBILE_MONEY}
POS_METHODS = {payments.CASH, payments.NFC, payments.DASHBOARD, payments.MOBILE_MONEY}


def normalize_status(status: str) -> str:
    return CONFIRMED if status == PROCESSING else status


def can_transition(current: str, target: str) -> bool:
    return normalize_status(target) in STATUS_TRANSITIONS.get(normalize_status(current), set())


class CRUDSale(CRUDBase[Sale]):
    def __init__(self):
        super().__init__(Sale, "Order")

    # ====================
    # LINE ITEMS AND STOCK
    # ====================

    def _load_lines(self, db: Session, retailer_id: int, items) -> List[Tuple[Product, int]]:
        """Lock each product, check ownership and stock; duplicate lines are merged."""
        if not items:
            raise ValidationFailedError("Order must contain at least one item")
        quantities: Dict[int, int] = {}
        for item in items:
            quantities[item.product_id] = quantities.get(item.product_id, 0) + item.quantity

        lines = []
        for product_id, quantity in quantities.items():
            product = crud_product.get_or_404(db, product_id, lock=True)
            if product.retailer_id != retailer_id:
                raise ValidationFailedError(f"Product {product_id} is not sold by this retailer")
            if product.status != "active":
                raise ValidationFailedError(f"{product.name} is not available")
            if product.stock < quantity:
                raise ValidationFailedError(
                    f"Insufficient stock for {product.name}", available=product.stock, requested=quantity
                )
            lines.append((product, quantity))
        return lines

    def _write_items(self, db: Session, sale: Sale, lines: List[Tuple[Product, int]], user_id: Optional[int]) -> None:
        for product, quantity in lines:
            sale.items.append(SaleItem(product_id=product.id, quantity=quantity, price=money(product.price)))
            crud_product.adjust_stock(
                db, product, -quantity, SourceType.SALE, source_id=sale.id, user_id=user_id,
                notes=f"Order {display_number('ORD', sale.created_at, sale.id)}"
            )
        db.flush()

    def _restock(self, db: Session, sale: Sale, user_id: Optional[int]) -> None:
        for item in sale.items:
            product = crud_product.get_or_404(db, item.product_id, lock=True)
            crud_product.adjust_stock(
                db, product, item.quantity, SourceType.REVERSAL, source_id=sale.id, user_id=user_id,
                notes=f"Order {display_number('ORD', sale.created_at, sale.id)} cancelled"
            )

    # ====================
    # CONSUMER STORE ORDERS
    # ====================

    def create_store_order(self, db: Session, consumer: ConsumerProfile, user: User, order_in: OrderCreate) -> Sale:
        if not order_in.retailer_id:
            raise ValidationFailedError("retailer_id is required")
        retailer = db.get(RetailerProfile, order_in.retailer_id)
        if retailer is None:
            raise NotFoundError("Retailer not found")
        crud_link_request.require_approved(db, consumer.id, retailer.id)

        lines = self._load_lines(db, retailer.id, order_in.items)
        total = money(sum((money(p.price) * q for p, q in lines), Decimal('0')))

        method = payments.normalize_method(order_in.payment_method.value)
        if method not in STORE_METHODS:
            raise ValidationFailedError(f"Unsupported payment method: {order_in.payment_method.value}")

        reward_wallet_id = order_in.reward_wallet_id
        if reward_wallet_id and consumer.gas_reward_wallet_id and reward_wallet_id != consumer.gas_reward_wallet_id:
            raise ValidationFailedError("Gas reward wallet ID does not match your account")
        earns_reward = (
            method != payments.CREDIT
            and order_in.payment_method.value in REWARD_ELIGIBLE_METHODS
            and bool(reward_wallet_id)
        )

        card = crud_nfc_card.get_payable(db, consumer, order_in.card_id) if method == payments.NFC else None

        sale = self.create(db, obj_in={
            "consumer_id": consumer.id,
            "retailer_id": retailer.id,
            "subtotal": total,
            "total_amount": total,
            "payment_method": method,
            "card_id": card.id if card else None,
            "reward_wallet_id": reward_wallet_id,
            "customer_phone": user.phone,
            "origin": "store",
            "status": PENDING,
        })
        reference = display_number("ORD", sale.created_at, sale.id)

        applied = Decimal('0')
        if order_in.apply_reward_gas and order_in.reward_gas_amount > 0:
            applied, _ = crud_gas_reward.spend_rwf(
                db, consumer, order_in.reward_gas_amount, total, sale_id=sale.id, reference=reference
            )

        receipt = payments.collect(
            db, consumer, method, total - applied,
            reference=reference,
            description=f"Order {reference} at {retailer.shop_name}",
            card=card,
            phone=order_in.phone_number or user.phone,
        )
        if receipt.settled_to_retailer:
            payments.credit_retailer(db, retailer, receipt.amount)
        if receipt.pending:
            sale.status = AWAITING_PAYMENT

        sale.amount_paid = Decimal('0') if receipt.pending else receipt.amount
        sale.reward_gas_applied = applied
        sale.external_ref = receipt.external_ref
        self._write_items(db, sale, lines, user.id)

        reward_units = Decimal('0')
        if earns_reward:
            reward_units = order_reward_units(total)
            if reward_units > 0:
                crud_gas_reward.add(
                    db, consumer.id, reward_units, SOURCE_PURCHASE_REWARD,
                    reward_wallet_id=reward_wallet_id, sale_id=sale.id, reference=reference
                )

        audit_log_action(
            db=db,
            user_id=user.id,
            action="ORDER_CREATE",
            table_name="sales",
            record_id=sale.id,
            new_values={
                "total": as_float(total),
                "paid": as_float(receipt.amount),
                "reward_gas_applied": as_float(applied),
                "reward_units": as_float(reward_units),
                "payment_method": method,
            },
            notes=f"Consumer {consumer.id} ordered from retailer {retailer.id}"
        )
        logger.info(f"Order {reference} created: total={total} paid={receipt.amount} via {method}")
        return sale

    def get_for_consumer(self, db: Session, consumer: ConsumerProfile, sale_id: int, *, lock: bool = False) -> Sale:
        sale = self.get_or_404(db, sale_id, lock=lock)
        if sale.consumer_id != consumer.id:
            raise NotFoundError("Order not found")
        return sale

    def cancel(self, db: Session, sale: Sale, actor: Optional[User], allowed: set, reason: Optional[str] = None) -> Sale:
        """
        Cancel an order and reverse every ledger movement it made.

        The consumer is refunded to the source that paid, the retailer wallet
        gives the money back, reward gas is restored or revoked and stock is
        returned.
        """
        if sale.status not in allowed:
            raise InvalidTransitionError(f"Cannot cancel an order that is {sale.status}")

        consumer = db.get(ConsumerProfile, sale.consumer_id) if sale.consumer_id else None
        retailer = db.get(RetailerProfile, sale.retailer_id)
        reference = display_number("ORD", sale.created_at, sale.id)
        paid = money(sale.amount_paid)

        if sale.payment_method != payments.CASH and paid > 0:
            payments.debit_retailer(db, retailer, paid, "Retailer wallet cannot cover this refund")
        card = crud_nfc_card.get_or_404(db, sale.card_id, lock=True) if sale.card_id else None
        payments.reverse(
            db, consumer, sale.payment_method, paid,
            reference=reference, description=f"Refund for order {reference}", card=card,
        )
        if consumer is not None:
            crud_gas_reward.reverse_sale(db, consumer.id, sale.id)
        self._restock(db, sale, actor.id if actor else None)

        old_status = sale.status
        sale.status = CANCELLED
        db.flush()
        audit_log_action(
            db=db,
            user_id=actor.id if actor else None,
            action="ORDER_CANCEL",
            table_name="sales",
            record_id=sale.id,
            old_values={"status": old_status},
            new_values={"status": CANCELLED, "refunded": as_float(paid)},
            notes=reason
        )
        return sale

    def confirm_delivery(self, db: Session, consumer: ConsumerProfile, sale_id: int) -> Sale:
        sale = self.get_for_consumer(db, consumer, sale_id, lock=True)
        if sale.status not in DELIVERY_CONFIRMABLE:
            raise InvalidTransitionError(f"Cannot confirm delivery of an order that is {sale.status}")
        sale.status = DELIVERED
        db.flush()
        return sale

    def consumer_history(self, db: Session, consumer: ConsumerProfile) -> List[dict]:
        """Retail orders and gas orders merged into one list, newest first."""
        sales = db.execute(
            select(Sale).where(Sale.consumer_id == consumer.id)
        ).scalars().all()
        gas_orders = db.execute(
            select(CustomerOrder).where(CustomerOrder.consumer_id == consumer.id)
        ).scalars().all()

        entries = [sale_to_dict(db, sale) for sale in sales]
        entries += [customer_order_to_dict(order) for order in gas_orders]
        entries.sort(key=lambda entry: (entry["created_at"] or "", entry["id"]), reverse=True)
        return entries

    # ====================
    # RETAILER ORDER MANAGEMENT
    # ====================

    def get_for_retailer(self, db: Session, retailer: RetailerProfile, sale_id: int, *, lock: bool = False) -> Sale:
        sale = self.get_or_404(db, sale_id, lock=lock)
        if sale.retailer_id != retailer.id:
            raise NotFoundError("Order not found")
        return sale

    def list_for_retailer(
        self, db: Session, retailer: RetailerProfile, *, status: Optional[str] = None,
        limit: int = 50, offset: int = 0
    ) -> Tuple[List[Sale], int]:
        conditions = [Sale.retailer_id == retailer.id]
        if status:
            conditions.append(Sale.status == normalize_status(status))
        total = db.execute(select(func.count(Sale.id)).where(*conditions)).scalar_one()
        rows = db.execute(
            select(Sale).where(*conditions)
            .order_by(Sale.created_at.desc(), Sale.id.desc())
            .offset(offset).limit(limit)
        ).scalars().all()
        return list(rows), total

    def update_status(
        self, db: Session, retailer: RetailerProfile, actor: User, sale_id: int, new_status: str,
        reason: Optional[str] = None
    ) -> Sale:
        sale = self.get_for_retailer(db, retailer, sale_id, lock=True)
        target = normalize_status(new_status)
        if target == CANCELLED:
            return self.cancel(db, sale, actor, CANCELLABLE_BY_RETAILER, reason)
        if not can_transition(sale.status, target):
            raise InvalidTransitionError(
                f"Cannot change order status from {sale.status} to {target}",
                allowed=sorted(STATUS_TRANSITIONS.get(sale.status, set())),
            )
        old_status = sale.status
        sale.status = target
        db.flush()
        audit_log_action(
            db=db, user_id=actor.id, action="ORDER_STATUS", table_name="sales", record_id=sale.id,
            old_values={"status": old_status}, new_values={"status": target}
        )
        return sale

    def fulfill(self, db: Session, retailer: RetailerProfile, actor: User, sale_id: int) -> Sale:
        sale = self.get_for_retailer(db, retailer, sale_id, lock=True)
        if sale.status not in FULFILLABLE:
            raise InvalidTransitionError(f"Cannot fulfill an order that is {sale.status}")
        old_status = sale.status
        sale.status = COMPLETED
        db.flush()
        audit_log_action(
            db=db, user_id=actor.id, action="ORDER_FULFILL", table_name="sales", record_id=sale.id,
            old_values={"status": old_status}, new_values={"status": COMPLETED}
        )
        return sale

    def settle_payment(self, db: Session, external_ref: str, paid: bool) -> Optional[Sale]:
        """
        Finish a sale whose mobile money payment was still pending.

        A paid sale credits the retailer and resumes its normal lifecycle. A
        failed one is cancelled, which restocks and undoes reward movements.
        """
        sale = db.execute(
            select(Sale).where(Sale.external_ref == external_ref).with_for_update()
        ).scalar_one_or_none()
        if sale is None or sale.status != AWAITING_PAYMENT:
            return None
        if not paid:
            return self.cancel(db, sale, None, {AWAITING_PAYMENT}, "Mobile money payment failed")

        amount = money(sale.total_amount) - money(sale.reward_gas_applied)
        payments.credit_retailer(db, db.get(RetailerProfile, sale.retailer_id), amount)
        sale.amount_paid = amount
        sale.status = COMPLETED if sale.origin == "pos" else PENDING
        db.flush()
        audit_log_action(
            db=db, user_id=None, action="ORDER_PAID", table_name="sales", record_id=sale.id,
            old_values={"status": AWAITING_PAYMENT}, new_values={"status": sale.status, "paid": as_float(amount)}
        )
        return sale

    # ====================
    # POS
    # ====================

    def _consumer_by_phone(self, db: Session, phone: str) -> Optional[ConsumerProfile]:
        stmt = (
            select(ConsumerProfile)
            .join(User, User.id == ConsumerProfile.user_id)
            .where(User.phone == phone, User.role == "consumer")
        )
        return db.execute(stmt).scalar_one_or_none()

    def _consumer_by_reward_wallet(self, db: Session, reward_wallet_id: str) -> Optional[ConsumerProfile]:
        stmt = select(ConsumerProfile).where(ConsumerProfile.gas_reward_wallet_id == reward_wallet_id)
        return db.execute(stmt).scalar_one_or_none()

    def create_pos_sale(self, db: Session, retailer: RetailerProfile, actor: User, sale_in: POSSaleCreate) -> Sale:
        """
        Ring up an in-store sale.

        The sale completes immediately. Rewards are 12% of the retailer's
        profit on the basket and go to the consumer behind the reward wallet.
        """
        raw_method = sale_in.payment_method.value
        method = payments.normalize_method(raw_method)
        if method not in POS_METHODS:
            raise ValidationFailedError(f"Unsupported payment method: {raw_method}")

        reward_wallet_id = (sale_in.gas_reward_wallet_id or "").strip() or None
        if raw_method == "dashboard_wallet" and not reward_wallet_id:
            raise ValidationFailedError("Gas reward wallet ID is required for dashboard wallet payments")

        lines = self._load_lines(db, retailer.id, sale_in.items)
        subtotal = money(sum((money(p.price) * q for p, q in lines), Decimal('0')))
        total = money(subtotal + money(sale_in.tax_amount) - money(sale_in.discount))
        if total < 0:
            raise ValidationFailedError("Discount cannot exceed the sale total")

        consumer = None
        if sale_in.customer_phone:
            consumer = self._consumer_by_phone(db, sale_in.customer_phone)

        card = None
        if method == payments.NFC:
            details = sale_in.payment_details
            if details is None or not details.uid:
                raise ValidationFailedError("Card UID and PIN are required for NFC payments")
            card = crud_nfc_card.authenticate(db, details.uid, details.pin)
            card_owner = db.get(ConsumerProfile, card.consumer_id) if card.consumer_id else None
            consumer = consumer or card_owner
        elif method == payments.DASHBOARD:
            if not sale_in.customer_phone:
                raise ValidationFailedError("Customer phone is required for wallet payments")
            if consumer is None:
                raise NotFoundError("Customer not found")
        elif method == payments.MOBILE_MONEY and not sale_in.customer_phone:
            raise ValidationFailedError("Customer phone is required for mobile money payments")

        if reward_wallet_id:
            reward_owner = self._consumer_by_reward_wallet(db, reward_wallet_id)
            if consumer is None:
                consumer = reward_owner
            elif reward_owner is not None and reward_owner.id != consumer.id:
                raise ValidationFailedError("Gas reward wallet ID does not belong to this customer")

        sale = self.create(db, obj_in={
            "consumer_id": consumer.id if consumer else None,
            "retailer_id": retailer.id,
            "subtotal": subtotal,
            "tax_amount": money(sale_in.tax_amount),
            "discount": money(sale_in.discount),
            "total_amount": total,
            "payment_method": method,
            "card_id": card.id if card else None,
            "reward_wallet_id": reward_wallet_id,
            "customer_phone": sale_in.customer_phone,
            "origin": "pos",
            "status": COMPLETED,
        })
        reference = display_number("POS", sale.created_at, sale.id)

        receipt = payments.collect(
            db, consumer, method, total,
            reference=reference,
            description=f"Purchase at {retailer.shop_name}",
            card=card,
            phone=sale_in.customer_phone,
        )
        if receipt.settled_to_retailer:
            payments.credit_retailer(db, retailer, receipt.amount)
        if receipt.pending:
            sale.status = AWAITING_PAYMENT
        sale.amount_paid = Decimal('0') if receipt.pending else receipt.amount
        sale.external_ref = receipt.external_ref
        self._write_items(db, sale, lines, actor.id)

        reward_units = Decimal('0')
        if method in (payments.DASHBOARD, payments.MOBILE_MONEY) and reward_wallet_id and consumer is not None:
            profit, reward_units = profit_reward_units(
                (product.price, product.cost_price, quantity) for product, quantity in lines
            )
            if reward_units > 0:
                crud_gas_reward.add(
                    db, consumer.id, reward_units, SOURCE_PURCHASE_REWARD,
                    reward_wallet_id=reward_wallet_id, sale_id=sale.id, profit_amount=profit, reference=reference
                )

        audit_log_action(
            db=db,
            user_id=actor.id,
            action="POS_SALE",
            table_name="sales",
            record_id=sale.id,
            new_values={"total": as_float(total), "payment_method": method, "reward_units": as_float(reward_units)},
        )
        logger.info(f"POS sale {reference} completed: total={total} via {method}")
        return sale

    def daily_sales(self, db: Session, retailer: RetailerProfile, day: Optional[datetime] = None) -> dict:
        start = (day or datetime.utcnow()).replace(hour=0, minute=0, second=0, microsecond=0)
        sales = db.execute(
            select(Sale).where(
                Sale.retailer_id == retailer.id,
                Sale.created_at >= start,
                Sale.status != CANCELLED,
            )
        ).scalars().all()

        by_method: Dict[str, float] = {}
        revenue = Decimal('0')
        for sale in sales:
            revenue += money(sale.total_amount)
            by_method[sale.payment_method] = by_method.get(sale.payment_method, 0.0) + as_float(sale.total_amount)

        sale_ids = [sale.id for sale in sales]
        rewards = Decimal('0')
        if sale_ids:
            rewards = db.execute(
                select(func.coalesce(func.sum(GasReward.units), 0)).where(
                    GasReward.sale_id.in_(sale_ids), GasReward.source == SOURCE_PURCHASE_REWARD
                )
            ).scalar_one()
        return {
            "date": start.date().isoformat(),
            "transactions": len(sales),
            "total_revenue": as_float(revenue),
            "average_sale": as_float(money(revenue / len(sales))) if sales else 0.0,
            "by_payment_method": by_method,
            "gas_rewards_issued": as_float(rewards),
        }


crud_sale = CRUDSale()


def sale_to_dict(db: Session, sale: Sale) -> dict:
    items = []
    for item in sale.items:
        product = db.get(Product, item.product_id)
        items.append({
            "product_id": item.product_id,
            "name": product.name if product else None,
            "quantity": item.quantity,
            "price": as_float(item.price),
            "total": as_float(money(item.price) * item.quantity),
        })
    retailer = db.get(RetailerProfile, sale.retailer_id)
    return {
        "id": sale.id,
        "order_number": display_number("ORD", sale.created_at, sale.id),
        "type": "retail",
        "origin": sale.origin,
        "status": sale.status,
        "retailer": {"id": sale.retailer_id, "shop_name": retailer.shop_name if retailer else None},
        "consumer_id": sale.consumer_id,
        "customer_phone": sale.customer_phone,
        "items": items,
        "subtotal": as_float(sale.subtotal),
        "tax_amount": as_float(sale.tax_amount),
        "discount": as_float(sale.discount),
        "total_amount": as_float(sale.total_amount),
        "amount_paid": as_float(sale.amount_paid),
        "reward_gas_applied": as_float(sale.reward_gas_applied),
        "payment_method": sale.payment_method,
        "card_id": sale.card_id,
        "external_ref": sale.external_ref,
        "created_at": iso(sale.created_at),
        "updated_at": iso(sale.updated_at),
    }


def customer_order_to_dict(order: CustomerOrder) -> dict:
    return {
        "id": order.id,
        "order_number": display_number("ORD", order.created_at, order.id),
        "type": order.order_type,
        "status": order.status,
        "items": order.items or [],
        "total_amount": as_float(order.amount),
        "details": order.details or {},
        "created_at": iso(order.created_at),
    }
