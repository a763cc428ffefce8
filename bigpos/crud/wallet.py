"""
Consumer wallet ledger.

Every balance change goes through ``credit`` or ``debit`` so a matching
WalletTransaction is always written in the same transaction. Rows are
locked with SELECT ... FOR UPDATE before they are mutated.
"""
from sqlalchemy import select, func
from sqlalchemy.orm import Session
import logging
from decimal import Decimal
from typing import List, Optional, Tuple

from bigpos.config import settings
from bigpos.crud.base import CRUDBase
from bigpos.exceptions import InsufficientFundsError, ValidationFailedError, NotFoundError, InvalidTransitionError
from bigpos.models import Wallet, WalletTransaction, ConsumerProfile
from bigpos.utils.money import money, as_float, iso

logger = logging.getLogger(__name__)

DASHBOARD_WALLET = "dashboard_wallet"
CREDIT_WALLET = "credit_wallet"


class CRUDWallet(CRUDBase[Wallet]):
    def __init__(self):
        super().__init__(Wallet, "Wallet")

    def get_wallet(self, db: Session, consumer_id: int, wallet_type: str, *, lock: bool = False) -> Optional[Wallet]:
        stmt = select(Wallet).where(Wallet.consumer_id == consumer_id, Wallet.type == wallet_type)
        if lock:
            stmt = stmt.with_for_update()
        return db.execute(stmt).scalar_one_or_none()

    def get_or_create(self, db: Session, consumer_id: int, wallet_type: str = DASHBOARD_WALLET) -> Wallet:
        """Return the consumer's wallet of this type, creating an empty one if needed."""
        wallet = self.get_wallet(db, consumer_id, wallet_type, lock=True)
        if wallet is None:
            wallet = self.create(db, obj_in={
                "consumer_id": consumer_id,
                "type": wallet_type,
                "balance": Decimal('0'),
                "currency": settings.CURRENCY,
            })
            logger.info(f"Created {wallet_type} for consumer {consumer_id}")
        return wallet

    def list_for_consumer(self, db: Session, consumer_id: int) -> List[Wallet]:
        stmt = select(Wallet).where(Wallet.consumer_id == consumer_id).order_by(Wallet.id)
        return list(db.execute(stmt).scalars().all())

    def credit(
        self, db: Session, wallet: Wallet, amount, txn_type: str, description: str,
        reference: Optional[str] = None
    ) -> WalletTransaction:
        amount = money(amount)
        if amount <= 0:
            raise ValidationFailedError("Amount must be greater than zero")
        wallet.balance = money(wallet.balance) + amount
        return self._record(db, wallet, amount, txn_type, description, reference)

    def debit(
        self, db: Session, wallet: Wallet, amount, txn_type: str, description: str,
        reference: Optional[str] = None
    ) -> WalletTransaction:
        amount = money(amount)
        if amount <= 0:
            raise ValidationFailedError("Amount must be greater than zero")
        if money(wallet.balance) < amount:
            raise InsufficientFundsError(
                f"Insufficient {wallet.type.replace('_', ' ')} balance",
                balance=as_float(wallet.balance),
                required=as_float(amount),
            )
        wallet.balance = money(wallet.balance) - amount
        return self._record(db, wallet, -amount, txn_type, description, reference)

    def _record(
        self, db: Session, wallet: Wallet, signed_amount: Decimal, txn_type: str,
        description: str, reference: Optional[str], status: str = "completed"
    ) -> WalletTransaction:
        txn = WalletTransaction(
            wallet_id=wallet.id,
            type=txn_type,
            amount=signed_amount,
            description=description,
            reference=reference,
            status=status,
        )
        db.add(txn)
        db.flush()
        return txn

    # ====================
    # TOP-UP AND REFUNDS
    # ====================

    def topup(self, db: Session, consumer: ConsumerProfile, amount, reference: Optional[str] = None,
              description: str = "Wallet top-up") -> Tuple[Wallet, WalletTransaction]:
        wallet = self.get_or_create(db, consumer.id, DASHBOARD_WALLET)
        txn = self.credit(db, wallet, amount, "topup", description, reference)
        return wallet, txn

    def start_topup(self, db: Session, consumer: ConsumerProfile, amount, reference: str,
                    description: str = "Wallet top-up") -> Tuple[Wallet, WalletTransaction]:
        """Record a mobile money top-up awaiting payment; the balance moves on settlement."""
        amount = money(amount)
        if amount <= 0:
            raise ValidationFailedError("Amount must be greater than zero")
        wallet = self.get_or_create(db, consumer.id, DASHBOARD_WALLET)
        txn = self._record(db, wallet, amount, "topup", description, reference, status="pending")
        return wallet, txn

    def settle_topup(self, db: Session, reference: str, paid: bool) -> Optional[WalletTransaction]:
        txn = db.execute(
            select(WalletTransaction).where(
                WalletTransaction.reference == reference,
                WalletTransaction.type == "topup",
                WalletTransaction.status == "pending",
            ).with_for_update()
        ).scalar_one_or_none()
        if txn is None:
            return None
        if paid:
            wallet = self.get_or_404(db, txn.wallet_id, lock=True)
            wallet.balance = money(wallet.balance) + money(txn.amount)
            txn.status = "completed"
        else:
            txn.status = "failed"
        db.flush()
        logger.info(f"Top-up {txn.id} ({reference}) settled as {txn.status}")
        return txn

    def request_refund(self, db: Session, consumer: ConsumerProfile, amount, reason: Optional[str]) -> WalletTransaction:
        """Queue a refund; the balance only moves when an admin approves it."""
        amount = money(amount)
        if amount <= 0:
            raise ValidationFailedError("Amount must be greater than zero")
        wallet = self.get_or_create(db, consumer.id, DASHBOARD_WALLET)
        if money(wallet.balance) < amount:
            raise InsufficientFundsError("Insufficient balance for refund", balance=as_float(wallet.balance))
        return self._record(db, wallet, -amount, "refund", reason or "Refund request", None, status="pending")

    def _pending_refund(self, db: Session, transaction_id: int) -> WalletTransaction:
        txn = db.execute(
            select(WalletTransaction).where(WalletTransaction.id == transaction_id).with_for_update()
        ).scalar_one_or_none()
        if txn is None or txn.type != "refund":
            raise NotFoundError("Refund request not found")
        if txn.status != "pending":
            raise InvalidTransitionError(f"Refund request is already {txn.status}")
        return txn

    def approve_refund(self, db: Session, transaction_id: int) -> WalletTransaction:
        txn = self._pending_refund(db, transaction_id)
        wallet = self.get_or_404(db, txn.wallet_id, lock=True)
        amount = -money(txn.amount)
        if money(wallet.balance) < amount:
            raise InsufficientFundsError("Insufficient balance for refund", balance=as_float(wallet.balance))
        wallet.balance = money(wallet.balance) - amount
        txn.status = "completed"
        db.flush()
        return txn

    def reject_refund(self, db: Session, transaction_id: int) -> WalletTransaction:
        txn = self._pending_refund(db, transaction_id)
        txn.status = "rejected"
        db.flush()
        return txn

    def list_transactions(
        self, db: Session, consumer_id: int, *, limit: int = 50, offset: int = 0,
        wallet_type: Optional[str] = None
    ) -> Tuple[List[WalletTransaction], int]:
        conditions = [Wallet.consumer_id == consumer_id]
        if wallet_type:
            conditions.append(Wallet.type == wallet_type)
        base = select(WalletTransaction).join(Wallet).where(*conditions)
        total = db.execute(select(func.count()).select_from(base.subquery())).scalar_one()
        rows = db.execute(
            base.order_by(WalletTransaction.created_at.desc(), WalletTransaction.id.desc())
            .offset(offset).limit(limit)
        ).scalars().all()
        return list(rows), total


crud_wallet = CRUDWallet()


def wallet_to_dict(wallet: Wallet) -> dict:
    return {
        "id": wallet.id,
        "type": wallet.type,
        "balance": as_float(wallet.balance),
        "currency": wallet.currency,
        "updated_at": iso(wallet.updated_at),
    }


def transaction_to_dict(txn: WalletTransaction) -> dict:
    return {
        "id": txn.id,
        "wallet_id": txn.wallet_id,
        "type": txn.type,
        "amount": as_float(txn.amount),
        "description": txn.description,
        "reference": txn.reference,
        "status": txn.status,
        "created_at": iso(txn.created_at),
    }
