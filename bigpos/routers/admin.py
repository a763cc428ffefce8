"""
Admin router: loan approvals, refund approvals, NFC card registry and
retailer verification.
"""
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session
from typing import Any, Dict, Optional

from bigpos.database import get_db, atomic
from bigpos import models
from bigpos.crud.loans import crud_loan, loan_to_dict
from bigpos.crud.nfc import crud_nfc_card, card_to_dict, CARD_ACTIVE, CARD_BLOCKED
from bigpos.crud.wallet import crud_wallet, transaction_to_dict
from bigpos.crud.wholesale import crud_retailer_credit, credit_to_dict
from bigpos.exceptions import NotFoundError
from bigpos.schemas.business import WholesalerLink
from bigpos.schemas.store import CardRegister
from bigpos.security import require_admin, audit_log_action
from bigpos.utils.money import money, as_float

router = APIRouter(prefix="/admin", tags=["admin"])

# ====================
# LOANS
# ====================


@router.get("/loans")
def list_loans(
    status_filter: Optional[str] = Query(None, alias="status"),
    current_user: models.User = Depends(require_admin),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    loans = crud_loan.list_by_status(db, status_filter)
    return {"success": True, "loans": [loan_to_dict(loan) for loan in loans]}


@router.post("/loans/{loan_id}/approve")
def approve_loan(
    loan_id: int,
    current_user: models.User = Depends(require_admin),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    with atomic(db):
        loan = crud_loan.approve(db, loan_id)
        audit_log_action(
            db=db, user_id=current_user.id, action="LOAN_APPROVE", table_name="loans", record_id=loan.id,
            new_values={"amount": as_float(loan.amount)}
        )
    return {"success": True, "message": "Loan approved and disbursed", "loan": loan_to_dict(loan)}


@router.post("/loans/{loan_id}/reject")
def reject_loan(
    loan_id: int,
    current_user: models.User = Depends(require_admin),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    with atomic(db):
        loan = crud_loan.reject(db, loan_id)
        audit_log_action(
            db=db, user_id=current_user.id, action="LOAN_REJECT", table_name="loans", record_id=loan.id
        )
    return {"success": True, "loan": loan_to_dict(loan)}


# ====================
# REFUNDS
# ====================


@router.post("/refunds/{transaction_id}/approve")
def approve_refund(
    transaction_id: int,
    current_user: models.User = Depends(require_admin),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    with atomic(db):
        txn = crud_wallet.approve_refund(db, transaction_id)
        audit_log_action(
            db=db, user_id=current_user.id, action="REFUND_APPROVE", table_name="wallet_transactions",
            record_id=txn.id, new_values={"amount": as_float(txn.amount)}
        )
    return {"success": True, "transaction": transaction_to_dict(txn)}


@router.post("/refunds/{transaction_id}/reject")
def reject_refund(
    transaction_id: int,
    current_user: models.User = Depends(require_admin),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    with atomic(db):
        txn = crud_wallet.reject_refund(db, transaction_id)
    return {"success": True, "transaction": transaction_to_dict(txn)}


# ====================
# NFC CARDS
# ====================


@router.post("/nfc-cards", status_code=status.HTTP_201_CREATED)
def register_card(
    data: CardRegister,
    current_user: models.User = Depends(require_admin),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    with atomic(db):
        card = crud_nfc_card.register(
            db, data.uid, consumer_user_id=data.user_id, phone=data.phone, pin=data.pin, nickname=data.nickname
        )
        audit_log_action(
            db=db, user_id=current_user.id, action="NFC_REGISTER", table_name="nfc_cards", record_id=card.id,
            new_values={"uid": card.uid, "status": card.status}
        )
    return {"success": True, "card": card_to_dict(card)}


@router.post("/nfc-cards/{card_id}/block")
def block_card(
    card_id: int,
    current_user: models.User = Depends(require_admin),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    with atomic(db):
        card = crud_nfc_card.set_status(db, card_id, CARD_BLOCKED)
        audit_log_action(
            db=db, user_id=current_user.id, action="NFC_BLOCK", table_name="nfc_cards", record_id=card.id
        )
    return {"success": True, "card": card_to_dict(card)}


@router.post("/nfc-cards/{card_id}/activate")
def activate_card(
    card_id: int,
    current_user: models.User = Depends(require_admin),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    with atomic(db):
        card = crud_nfc_card.set_status(db, card_id, CARD_ACTIVE)
        audit_log_action(
            db=db, user_id=current_user.id, action="NFC_ACTIVATE", table_name="nfc_cards", record_id=card.id
        )
    return {"success": True, "card": card_to_dict(card)}


# ====================
# RETAILERS AND CONSUMERS
# ====================


def _retailer_or_404(db: Session, retailer_id: int) -> models.RetailerProfile:
    retailer = db.get(models.RetailerProfile, retailer_id, with_for_update=True)
    if retailer is None:
        raise NotFoundError("Retailer not found")
    return retailer


@router.post("/retailers/{retailer_id}/verify")
def verify_retailer(
    retailer_id: int,
    current_user: models.User = Depends(require_admin),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    with atomic(db):
        retailer = _retailer_or_404(db, retailer_id)
        retailer.is_verified = True
        audit_log_action(
            db=db, user_id=current_user.id, action="RETAILER_VERIFY", table_name="retailer_profiles",
            record_id=retailer.id
        )
    return {"success": True, "retailer_id": retailer.id, "is_verified": True}


@router.post("/retailers/{retailer_id}/link-wholesaler")
def link_wholesaler(
    retailer_id: int,
    data: WholesalerLink,
    current_user: models.User = Depends(require_admin),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    """Attach a retailer to its supplier, optionally setting the credit limit."""
    with atomic(db):
        retailer = _retailer_or_404(db, retailer_id)
        if db.get(models.WholesalerProfile, data.wholesaler_id) is None:
            raise NotFoundError("Wholesaler not found")
        retailer.linked_wholesaler_id = data.wholesaler_id
        credit = crud_retailer_credit.get_or_create(db, retailer)
        if data.credit_limit is not None:
            limit = money(data.credit_limit)
            credit.credit_limit = limit
            credit.available_credit = max(limit - money(credit.used_credit), money(0))
            retailer.credit_limit = limit
        db.flush()
        audit_log_action(
            db=db, user_id=current_user.id, action="RETAILER_LINK_WHOLESALER", table_name="retailer_profiles",
            record_id=retailer.id,
            new_values={"wholesaler_id": data.wholesaler_id, "credit_limit": as_float(credit.credit_limit)}
        )
    return {
        "success": True,
        "retailer_id": retailer.id,
        "wholesaler_id": retailer.linked_wholesaler_id,
        "credit": credit_to_dict(credit),
    }


@router.post("/consumers/{consumer_id}/verify")
def verify_consumer(
    consumer_id: int,
    current_user: models.User = Depends(require_admin),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    """Verified consumers qualify for the larger loan limit."""
    with atomic(db):
        consumer = db.get(models.ConsumerProfile, consumer_id, with_for_update=True)
        if consumer is None:
            raise NotFoundError("Consumer not found")
        consumer.is_verified = True
        audit_log_action(
            db=db, user_id=current_user.id, action="CONSUMER_VERIFY", table_name="consumer_profiles",
            record_id=consumer.id
        )
    return {"success": True, "consumer_id": consumer.id, "is_verified": True}
