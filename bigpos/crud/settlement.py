"""
Mobile money settlement.

PalmKash reports the outcome of a payment request on the callback URL.
The callback is only a trigger: the final state is read back from the
gateway before any pending record is completed or failed.
"""
from sqlalchemy.orm import Session
import logging
from typing import Optional

from bigpos.crud.gas import crud_gas_meter
from bigpos.crud.orders import crud_sale
from bigpos.crud.wallet import crud_wallet
from bigpos.crud.wholesale import crud_wholesale_order
from bigpos.exceptions import ValidationFailedError
from bigpos.services.mobile_money import gateway

logger = logging.getLogger(__name__)

# reference prefix -> kind of record waiting on the payment
KINDS = (
    ("TOPUP-", "wallet_topup"),
    ("GAS-", "gas_topup"),
    ("ORD-", "sale"),
    ("POS-", "sale"),
    ("WHO-", "wholesale_order"),
)


def kind_of(reference: str) -> Optional[str]:
    for prefix, kind in KINDS:
        if reference.startswith(prefix):
            return kind
    return None


def settle(db: Session, reference: Optional[str], transaction_id: Optional[str]) -> dict:
    """
    Complete or fail whatever was waiting on this payment.

    Returns a summary of what matched. Unknown references, payments still
    in flight and records already settled are acknowledged without change.
    """
    if not reference:
        raise ValidationFailedError("Missing reference")
    kind = kind_of(reference)
    key = transaction_id or reference
    outcome = {"reference": reference, "type": kind, "matched": False, "status": None}
    if kind is None:
        logger.warning(f"[Webhook] Unknown reference {reference}")
        return outcome

    result = gateway.check_status(key)
    outcome["status"] = result.status
    if not (result.settled or result.failed):
        logger.info(f"[Webhook] {reference} is still {result.status}")
        return outcome
    paid = result.settled

    if kind == "wallet_topup":
        record = crud_wallet.settle_topup(db, key, paid)
    elif kind == "gas_topup":
        record = crud_gas_meter.settle_topup(db, key, paid)
    elif kind == "sale":
        record = crud_sale.settle_payment(db, key, paid)
    else:
        record = crud_wholesale_order.settle_payment(db, key, paid)

    if record is None:
        logger.info(f"[Webhook] Nothing pending for {reference} ({key})")
        return outcome
    outcome["matched"] = True
    outcome["id"] = record.id
    outcome["table"] = record.__tablename__
    logger.info(f"[Webhook] {kind} {record.id} settled: {'paid' if paid else 'failed'}")
    return outcome
