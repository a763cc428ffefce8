"""
NFC card operations: linking, PINs, balances and admin registration.
"""
from sqlalchemy import select, update
from sqlalchemy.orm import Session
import logging
from decimal import Decimal
from typing import List, Optional, Tuple

from bigpos.crud.base import CRUDBase
from bigpos.crud.wallet import crud_wallet, DASHBOARD_WALLET, CREDIT_WALLET
from bigpos.exceptions import (
    ValidationFailedError, NotFoundError, InsufficientFundsError, PermissionDeniedError, ConflictError,
)
from bigpos.models import NfcCard, ConsumerProfile, Sale, User
from bigpos.security import get_password_hash, verify_password
from bigpos.utils.money import money, as_float, iso

logger = logging.getLogger(__name__)

CARD_AVAILABLE = "available"
CARD_ACTIVE = "active"
CARD_INACTIVE = "inactive"
CARD_BLOCKED = "blocked"


class CRUDNfcCard(CRUDBase[NfcCard]):
    def __init__(self):
        super().__init__(NfcCard, "Card")

    def get_by_uid(self, db: Session, uid: str, *, lock: bool = False) -> Optional[NfcCard]:
        stmt = select(NfcCard).where(NfcCard.uid == uid.strip().upper())
        if lock:
            stmt = stmt.with_for_update()
        return db.execute(stmt).scalar_one_or_none()

    def list_for_consumer(self, db: Session, consumer_id: int) -> List[NfcCard]:
        stmt = (
            select(NfcCard)
            .where(NfcCard.consumer_id == consumer_id)
            .order_by(NfcCard.is_primary.desc(), NfcCard.id)
        )
        return list(db.execute(stmt).scalars().all())

    def get_owned(self, db: Session, consumer: ConsumerProfile, card_id: int, *, lock: bool = False) -> NfcCard:
        card = self.get_or_404(db, card_id, lock=lock)
        if card.consumer_id != consumer.id:
            raise NotFoundError("Card not found")
        return card

    def get_payable(self, db: Session, consumer: ConsumerProfile, card_id: Optional[int]) -> NfcCard:
        """Card the consumer is paying with: owned and active."""
        if not card_id:
            raise ValidationFailedError("card_id is required for NFC card payments")
        card = self.get_owned(db, consumer, card_id, lock=True)
        if card.status != CARD_ACTIVE:
            raise ValidationFailedError(f"Card is {card.status}")
        return card

    def authenticate(self, db: Session, uid: str, pin: Optional[str]) -> NfcCard:
        """Card tapped at a POS terminal: must be active and the PIN must match."""
        card = self.get_by_uid(db, uid, lock=True)
        if card is None:
            raise NotFoundError("Card not found")
        if card.status != CARD_ACTIVE:
            raise ValidationFailedError(f"Card is {card.status}")
        if not pin or not verify_password(pin, card.pin_hash):
            raise PermissionDeniedError("Invalid card PIN")
        return card

    def charge(self, card: NfcCard, amount) -> None:
        amount = money(amount)
        if money(card.balance) < amount:
            raise InsufficientFundsError(
                "Insufficient card balance", balance=as_float(card.balance), required=as_float(amount)
            )
        card.balance = money(card.balance) - amount

    def refund(self, card: NfcCard, amount) -> None:
        card.balance = money(card.balance) + money(amount)

    # ====================
    # CONSUMER CARD MANAGEMENT
    # ====================

    def link(self, db: Session, consumer: ConsumerProfile, uid: str, pin: str, nickname: Optional[str] = None) -> NfcCard:
        uid = uid.strip().upper()
        card = self.get_by_uid(db, uid, lock=True)
        if card is not None and card.consumer_id is not None:
            raise ConflictError("Card is already linked to an account")
        if card is not None and card.status == CARD_BLOCKED:
            raise ValidationFailedError("Card is blocked")

        has_cards = bool(self.list_for_consumer(db, consumer.id))
        if card is None:
            card = NfcCard(uid=uid, balance=Decimal('0'))
            db.add(card)
        card.consumer_id = consumer.id
        card.pin_hash = get_password_hash(pin)
        card.status = CARD_ACTIVE
        card.nickname = nickname
        card.is_primary = not has_cards
        db.flush()
        logger.info(f"Card {uid} linked to consumer {consumer.id}")
        return card

    def unlink(self, db: Session, consumer: ConsumerProfile, card_id: int) -> Tuple[NfcCard, Decimal]:
        """
        Detach a card from the consumer.

        Whatever is left on the card goes back to the dashboard wallet so the
        next owner starts from zero.
        """
        card = self.get_owned(db, consumer, card_id, lock=True)
        refunded = money(card.balance)
        if refunded > 0:
            dashboard = crud_wallet.get_or_create(db, consumer.id, DASHBOARD_WALLET)
            crud_wallet.credit(
                db, dashboard, refunded, "nfc_refund",
                f"Balance returned from card {card.uid}", f"NFC-{card.uid}"
            )
            card.balance = Decimal('0')
        was_primary = card.is_primary
        card.consumer_id = None
        card.status = CARD_INACTIVE
        card.is_primary = False
        db.flush()
        if was_primary:
            remaining = self.list_for_consumer(db, consumer.id)
            if remaining:
                remaining[0].is_primary = True
                db.flush()
        logger.info(f"Card {card.uid} unlinked from consumer {consumer.id}, {refunded} returned to wallet")
        return card, refunded

    def set_pin(self, db: Session, consumer: ConsumerProfile, card_id: int, old_pin: Optional[str], new_pin: str) -> NfcCard:
        card = self.get_owned(db, consumer, card_id, lock=True)
        if card.pin_hash and not (old_pin and verify_password(old_pin, card.pin_hash)):
            raise ValidationFailedError("Current PIN is incorrect")
        card.pin_hash = get_password_hash(new_pin)
        db.flush()
        return card

    def set_primary(self, db: Session, consumer: ConsumerProfile, card_id: int) -> NfcCard:
        card = self.get_owned(db, consumer, card_id, lock=True)
        db.execute(
            update(NfcCard).where(NfcCard.consumer_id == consumer.id, NfcCard.id != card.id).values(is_primary=False)
        )
        card.is_primary = True
        db.flush()
        return card

    def set_nickname(self, db: Session, consumer: ConsumerProfile, card_id: int, nickname: str) -> NfcCard:
        card = self.get_owned(db, consumer, card_id, lock=True)
        card.nickname = nickname
        db.flush()
        return card

    def card_orders(self, db: Session, consumer: ConsumerProfile, card_id: int) -> List[Sale]:
        card = self.get_owned(db, consumer, card_id)
        stmt = select(Sale).where(Sale.card_id == card.id).order_by(Sale.created_at.desc(), Sale.id.desc())
        return list(db.execute(stmt).scalars().all())

    def topup(self, db: Session, consumer: ConsumerProfile, card_id: int, amount) -> dict:
        """
        Move money onto a card.

        The dashboard wallet is drained first and the credit wallet covers
        the rest; the combined balance must cover the full amount.
        """
        amount = money(amount)
        if amount <= 0:
            raise ValidationFailedError("Amount must be greater than zero")
        card = self.get_owned(db, consumer, card_id, lock=True)
        if card.status != CARD_ACTIVE:
            raise ValidationFailedError(f"Card is {card.status}")

        dashboard = crud_wallet.get_wallet(db, consumer.id, DASHBOARD_WALLET, lock=True)
        credit = crud_wallet.get_wallet(db, consumer.id, CREDIT_WALLET, lock=True)
        dashboard_balance = money(dashboard.balance) if dashboard else Decimal('0')
        credit_balance = money(credit.balance) if credit else Decimal('0')
        if dashboard_balance + credit_balance < amount:
            raise InsufficientFundsError(
                "Insufficient wallet balance",
                available=as_float(dashboard_balance + credit_balance),
                required=as_float(amount),
            )

        from_dashboard = min(amount, dashboard_balance)
        from_credit = amount - from_dashboard
        reference = f"NFC-{card.uid}"
        if from_dashboard > 0:
            crud_wallet.debit(db, dashboard, from_dashboard, "nfc_topup", f"Top-up card {card.uid}", reference)
        if from_credit > 0:
            crud_wallet.debit(db, credit, from_credit, "nfc_topup", f"Top-up card {card.uid}", reference)
        card.balance = money(card.balance) + amount
        db.flush()
        return {
            "card": card_to_dict(card),
            "from_dashboard_wallet": as_float(from_dashboard),
            "from_credit_wallet": as_float(from_credit),
        }

    # ====================
    # ADMIN
    # ====================

    def register(
        self, db: Session, uid: str, *, consumer_user_id: Optional[int] = None,
        phone: Optional[str] = None, pin: Optional[str] = None, nickname: Optional[str] = None
    ) -> NfcCard:
        """Register a card; it starts active when it can be matched to a consumer."""
        uid = uid.strip().upper()
        if self.get_by_uid(db, uid) is not None:
            raise ConflictError("Card UID already registered")

        consumer = None
        if consumer_user_id or phone:
            stmt = select(ConsumerProfile).join(User, User.id == ConsumerProfile.user_id)
            if consumer_user_id:
                stmt = stmt.where(User.id == consumer_user_id)
            else:
                stmt = stmt.where(User.phone == phone)
            consumer = db.execute(stmt).scalar_one_or_none()
            if consumer is None:
                raise NotFoundError("Consumer not found")

        card = NfcCard(
            uid=uid,
            balance=Decimal('0'),
            status=CARD_ACTIVE if consumer else CARD_AVAILABLE,
            consumer_id=consumer.id if consumer else None,
            pin_hash=get_password_hash(pin) if pin else None,
            nickname=nickname,
            is_primary=bool(consumer) and not self.list_for_consumer(db, consumer.id),
        )
        db.add(card)
        db.flush()
        return card

    def set_status(self, db: Session, card_id: int, new_status: str) -> NfcCard:
        card = self.get_or_404(db, card_id, lock=True)
        if new_status == CARD_ACTIVE and card.consumer_id is None:
            raise ValidationFailedError("Only linked cards can be activated")
        card.status = new_status
        db.flush()
        return card


crud_nfc_card = CRUDNfcCard()


def card_to_dict(card: NfcCard) -> dict:
    return {
        "id": card.id,
        "uid": card.uid,
        "status": card.status,
        "balance": as_float(card.balance),
        "nickname": card.nickname,
        "is_primary": card.is_primary,
        "has_pin": bool(card.pin_hash),
        "consumer_id": card.consumer_id,
        "created_at": iso(card.created_at),
    }
