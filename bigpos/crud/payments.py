"""
Multi-source payment collection for consumer purchases.

A purchase can be settled from the dashboard wallet, the credit wallet, an
NFC card, mobile money or cash. ``collect`` takes the money and returns a
receipt; ``reverse`` puts it back where it came from. The retailer side of
the movement is handled by ``credit_retailer`` / ``debit_retailer``.
"""
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional
from sqlalchemy import select
from sqlalchemy.orm import Session
import logging

from bigpos.crud.nfc import crud_nfc_card
from bigpos.crud.wallet import crud_wallet, DASHBOARD_WALLET, CREDIT_WALLET
from bigpos.exceptions import ValidationFailedError, InsufficientFundsError
from bigpos.models import ConsumerProfile, NfcCard, RetailerProfile
from bigpos.services.mobile_money import gateway
from bigpos.utils.money import money, as_float

logger = logging.getLogger(__name__)

DASHBOARD = "dashboard_wallet"
CREDIT = "credit_wallet"
NFC = "nfc_card"
MOBILE_MONEY = "mobile_money"
CASH = "cash"

METHOD_ALIASES = {
    "wallet": DASHBOARD,
    "dashboard_wallet": DASHBOARD,
    "credit_wallet": CREDIT,
    "nfc": NFC,
    "nfc_card": NFC,
    "mobile_money": MOBILE_MONEY,
    "momo": MOBILE_MONEY,
    "cash": CASH,
}


def normalize_method(method: str) -> str:
    try:
        return METHOD_ALIASES[method]
    except KeyError:
        raise ValidationFailedError(f"Unsupported payment method: {method}")


@dataclass
class PaymentReceipt:
    method: str
    amount: Decimal
    card: Optional[NfcCard] = None
    external_ref: Optional[str] = None
    pending: bool = False

    @property
    def settled_to_retailer(self) -> bool:
        """Electronic payments land in the retailer wallet; cash stays in the till."""
        return self.method != CASH and self.amount > 0 and not self.pending


def collect(
    db: Session,
    consumer: Optional[ConsumerProfile],
    method: str,
    amount,
    *,
    reference: str,
    description: str,
    card: Optional[NfcCard] = None,
    phone: Optional[str] = None,
    txn_type: str = "purchase",
) -> PaymentReceipt:
    """Take ``amount`` from the chosen source, raising before anything moves if it can't cover it."""
    method = normalize_method(method)
    amount = money(amount)
    receipt = PaymentReceipt(method=method, amount=amount, card=card)
    if amount <= 0:
        return receipt

    if method in (DASHBOARD, CREDIT):
        if consumer is None:
            raise ValidationFailedError("A registered customer is required for wallet payments")
        wallet_type = DASHBOARD_WALLET if method == DASHBOARD else CREDIT_WALLET
        if wallet_type == DASHBOARD_WALLET:
            wallet = crud_wallet.get_or_create(db, consumer.id, DASHBOARD_WALLET)
        else:
            wallet = crud_wallet.get_wallet(db, consumer.id, CREDIT_WALLET, lock=True)
            if wallet is None:
                raise InsufficientFundsError("No credit wallet available", balance=0.0, required=as_float(amount))
        crud_wallet.debit(db, wallet, amount, txn_type, description, reference)

    elif method == NFC:
        if card is None:
            raise ValidationFailedError("An NFC card is required for card payments")
        crud_nfc_card.charge(card, amount)

    elif method == MOBILE_MONEY:
        result = gateway.charge(amount, phone, reference, description)
        receipt.external_ref = result.transaction_id
        receipt.pending = not result.settled

    logger.info(f"Collected {amount} via {method} ({reference})")
    return receipt


def reverse(
    db: Session,
    consumer: Optional[ConsumerProfile],
    method: str,
    amount,
    *,
    reference: str,
    description: str,
    card: Optional[NfcCard] = None,
) -> None:
    """
    Return a collected payment to its source.

    Mobile money cannot be pushed back to the phone, so it is refunded to
    the dashboard wallet. Cash refunds happen at the till.
    """
    method = normalize_method(method)
    amount = money(amount)
    if amount <= 0 or method == CASH:
        return

    if method == NFC and card is not None:
        crud_nfc_card.refund(card, amount)
        return

    if consumer is None:
        return
    wallet_type = CREDIT_WALLET if method == CREDIT else DASHBOARD_WALLET
    wallet = crud_wallet.get_or_create(db, consumer.id, wallet_type)
    crud_wallet.credit(db, wallet, amount, "refund", description, reference)


def _lock_retailer(db: Session, retailer: RetailerProfile) -> RetailerProfile:
    stmt = select(RetailerProfile).where(RetailerProfile.id == retailer.id).with_for_update()
    return db.execute(stmt).scalar_one()


def credit_retailer(db: Session, retailer: RetailerProfile, amount) -> None:
    amount = money(amount)
    if amount <= 0:
        return
    retailer = _lock_retailer(db, retailer)
    retailer.wallet_balance = money(retailer.wallet_balance) + amount


def debit_retailer(db: Session, retailer: RetailerProfile, amount, message: str = "Insufficient wallet balance") -> None:
    amount = money(amount)
    if amount <= 0:
        return
    retailer = _lock_retailer(db, retailer)
    if money(retailer.wallet_balance) < amount:
        raise InsufficientFundsError(
            message, balance=as_float(retailer.wallet_balance), required=as_float(amount)
        )
    retailer.wallet_balance = money(retailer.wallet_balance) - amount
