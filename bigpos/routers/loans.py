"""
Consumer loans router.
"""
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session
from typing import Any, Dict
from decimal import Decimal

from bigpos.database import get_db, atomic
from bigpos import models
from bigpos.crud.loans import crud_loan, loan_to_dict, LOAN_PRODUCTS, APPROVED
from bigpos.schemas.store import LoanApply, LoanRepay
from bigpos.security import get_consumer_profile, require_role, audit_log_action
from bigpos.utils.money import money, as_float

router = APIRouter(prefix="/store/loans", tags=["loans"])

require_consumer = require_role("consumer")


@router.get("")
def list_loans(
    consumer: models.ConsumerProfile = Depends(get_consumer_profile),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    loans = crud_loan.list_for_consumer(db, consumer.id)
    outstanding = sum(
        (money(loan.amount) - money(loan.amount_repaid) for loan in loans if loan.status == APPROVED),
        Decimal('0')
    )
    return {
        "success": True,
        "loans": [loan_to_dict(loan) for loan in loans],
        "summary": {
            "total_outstanding": as_float(outstanding),
            "active_loans": sum(1 for loan in loans if loan.status == APPROVED),
        },
    }


@router.get("/products")
def loan_products() -> Dict[str, Any]:
    return {"success": True, "products": LOAN_PRODUCTS}


@router.get("/eligibility")
def loan_eligibility(consumer: models.ConsumerProfile = Depends(get_consumer_profile)) -> Dict[str, Any]:
    return {"success": True, **crud_loan.eligibility(consumer)}


@router.post("/apply", status_code=status.HTTP_201_CREATED)
def apply_for_loan(
    loan_in: LoanApply,
    current_user: models.User = Depends(require_consumer),
    consumer: models.ConsumerProfile = Depends(get_consumer_profile),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    with atomic(db):
        loan = crud_loan.apply(db, consumer, loan_in)
        audit_log_action(
            db=db, user_id=current_user.id, action="LOAN_APPLY", table_name="loans", record_id=loan.id,
            new_values={"amount": as_float(loan.amount)}
        )
    return {"success": True, "message": "Loan application submitted", "loan": loan_to_dict(loan)}


@router.get("/active")
def active_loan(
    consumer: models.ConsumerProfile = Depends(get_consumer_profile),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    return {"success": True, "loan": crud_loan.active_ledger(db, consumer)}


@router.get("/transactions")
def credit_transactions(
    limit: int = Query(50, ge=1, le=200),
    consumer: models.ConsumerProfile = Depends(get_consumer_profile),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    return {"success": True, "transactions": crud_loan.credit_transactions(db, consumer, limit)}


@router.post("/{loan_id}/repay")
def repay_loan(
    loan_id: int,
    repay_in: LoanRepay,
    current_user: models.User = Depends(require_consumer),
    consumer: models.ConsumerProfile = Depends(get_consumer_profile),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    with atomic(db):
        loan = crud_loan.repay(db, consumer, loan_id, repay_in, current_user.phone)
        audit_log_action(
            db=db, user_id=current_user.id, action="LOAN_REPAY", table_name="loans", record_id=loan.id,
            new_values={
                "amount": as_float(repay_in.amount),
                "method": repay_in.payment_method.value,
                "status": loan.status,
            }
        )
    return {"success": True, "message": "Repayment recorded", "loan": loan_to_dict(loan)}
