"""
Consumer loans.

Approval disburses into the consumer's credit wallet. Repayments accumulate
in ``amount_repaid``; the loan is repaid once the full amount is covered.
"""
from sqlalchemy import select
from sqlalchemy.orm import Session
import logging
from datetime import datetime, timedelta
from decimal import Decimal
from typing import List, Optional

from bigpos.config import settings
from bigpos.crud.base import CRUDBase
from bigpos.crud.wallet import crud_wallet, DASHBOARD_WALLET, CREDIT_WALLET
from bigpos.exceptions import ValidationFailedError, NotFoundError, InvalidTransitionError
from bigpos.models import Loan, ConsumerProfile, WalletTransaction, Wallet
from bigpos.schemas.store import LoanApply, LoanRepay
from bigpos.services.mobile_money import gateway
from bigpos.utils.money import money, as_float, iso, display_number

logger = logging.getLogger(__name__)

PENDING = "pending"
APPROVED = "approved"
REPAID = "repaid"
REJECTED = "rejected"

LOAN_PRODUCTS = [
    {
        "id": "lp_1",
        "name": "Emergency Food Loan",
        "min_amount": 1000,
        "max_amount": 5000,
        "interest_rate": 0,
        "term_days": 7,
        "loan_type": "food",
        "description": "Quick loan for food purchases",
    },
    {
        "id": "lp_2",
        "name": "Personal Cash Loan",
        "min_amount": 5000,
        "max_amount": 20000,
        "interest_rate": 0.1,
        "term_days": 30,
        "loan_type": "cash",
        "description": "Cash loan for personal needs",
    },
]

# Credit wallet transaction types shown in the loan ledger
CREDIT_TXN_LABELS = {
    "loan_disbursement": "loan_given",
    "loan_repayment_replenish": "payment_made",
    "loan_repayment": "payment_made",
    "purchase": "card_order",
    "nfc_topup": "card_order",
}


def loan_product(product_id: Optional[str]) -> Optional[dict]:
    for product in LOAN_PRODUCTS:
        if product["id"] == product_id:
            return product
    return None


class CRUDLoan(CRUDBase[Loan]):
    def __init__(self):
        super().__init__(Loan, "Loan")

    def list_for_consumer(self, db: Session, consumer_id: int) -> List[Loan]:
        stmt = select(Loan).where(Loan.consumer_id == consumer_id).order_by(Loan.created_at.desc(), Loan.id.desc())
        return list(db.execute(stmt).scalars().all())

    def list_by_status(self, db: Session, status: Optional[str] = None) -> List[Loan]:
        stmt = select(Loan)
        if status:
            stmt = stmt.where(Loan.status == status)
        return list(db.execute(stmt.order_by(Loan.created_at.desc(), Loan.id.desc())).scalars().all())

    def eligibility(self, consumer: ConsumerProfile) -> dict:
        if consumer.is_verified:
            score, max_amount = 80, 100000
        else:
            score, max_amount = 50, 5000
        return {"eligible": True, "credit_score": score, "max_amount": max_amount}

    def apply(self, db: Session, consumer: ConsumerProfile, loan_in: LoanApply) -> Loan:
        amount = money(loan_in.amount)
        if amount > settings.LOAN_MAX_AMOUNT:
            raise ValidationFailedError(f"Maximum loan amount is {settings.LOAN_MAX_AMOUNT}")
        product = loan_product(loan_in.loan_product_id)
        if loan_in.loan_product_id and product is None:
            raise NotFoundError("Loan product not found")
        return self.create(db, obj_in={
            "consumer_id": consumer.id,
            "amount": amount,
            "amount_repaid": Decimal('0'),
            "purpose": loan_in.purpose,
            "loan_type": product["loan_type"] if product else "cash",
            "status": PENDING,
            "due_date": datetime.utcnow() + timedelta(days=settings.LOAN_TERM_DAYS),
        })

    def approve(self, db: Session, loan_id: int) -> Loan:
        """Approve a pending loan and disburse it into the credit wallet."""
        loan = self.get_or_404(db, loan_id, lock=True)
        if loan.status != PENDING:
            raise InvalidTransitionError(f"Loan is already {loan.status}")
        loan.status = APPROVED
        loan.approved_at = datetime.utcnow()
        loan.due_date = loan.approved_at + timedelta(days=settings.LOAN_TERM_DAYS)

        wallet = crud_wallet.get_or_create(db, loan.consumer_id, CREDIT_WALLET)
        crud_wallet.credit(db, wallet, loan.amount, "loan_disbursement", "Loan disbursement", str(loan.id))
        db.flush()
        logger.info(f"Loan {loan.id} approved, {loan.amount} disbursed to credit wallet {wallet.id}")
        return loan

    def reject(self, db: Session, loan_id: int) -> Loan:
        loan = self.get_or_404(db, loan_id, lock=True)
        if loan.status != PENDING:
            raise InvalidTransitionError(f"Loan is already {loan.status}")
        loan.status = REJECTED
        db.flush()
        return loan

    def repay(self, db: Session, consumer: ConsumerProfile, loan_id: int, repay_in: LoanRepay, phone: Optional[str]) -> Loan:
        """
        Repay all or part of an approved loan.

        Wallet and mobile-money repayments restore the credit wallet's
        spending power; paying from the credit wallet just returns unused credit.
        """
        loan = self.get_or_404(db, loan_id, lock=True)
        if loan.consumer_id != consumer.id:
            raise NotFoundError("Loan not found")
        if loan.status != APPROVED:
            raise InvalidTransitionError(f"Cannot repay a loan that is {loan.status}")

        amount = money(repay_in.amount)
        outstanding = money(loan.amount) - money(loan.amount_repaid)
        if amount > outstanding:
            raise ValidationFailedError(
                "Repayment exceeds the outstanding balance", outstanding=as_float(outstanding)
            )

        reference = str(loan.id)
        method = repay_in.payment_method.value
        if method == "credit_wallet":
            credit = crud_wallet.get_wallet(db, consumer.id, CREDIT_WALLET, lock=True)
            if credit is None:
                raise NotFoundError("Credit wallet not found")
            crud_wallet.debit(db, credit, amount, "loan_repayment", "Loan Repayment", reference)
        else:
            if method == "wallet":
                dashboard = crud_wallet.get_or_create(db, consumer.id, DASHBOARD_WALLET)
                crud_wallet.debit(db, dashboard, amount, "debit", "Loan Repayment", reference)
            else:
                gateway.charge(amount, repay_in.phone_number or phone, f"LOAN-{loan.id}", "Loan Repayment")
            credit = crud_wallet.get_or_create(db, consumer.id, CREDIT_WALLET)
            crud_wallet.credit(db, credit, amount, "loan_repayment_replenish", "Credit replenished", reference)

        loan.amount_repaid = money(loan.amount_repaid) + amount
        if loan.amount_repaid >= money(loan.amount):
            loan.status = REPAID
        db.flush()
        return loan

    def active_ledger(self, db: Session, consumer: ConsumerProfile) -> Optional[dict]:
        """Most recent approved loan with its weekly repayment schedule."""
        loan = db.execute(
            select(Loan)
            .where(Loan.consumer_id == consumer.id, Loan.status == APPROVED)
            .order_by(Loan.created_at.desc(), Loan.id.desc())
        ).scalars().first()
        if loan is None:
            return None

        installments = settings.LOAN_INSTALLMENTS
        installment = money(money(loan.amount) / installments)
        start = loan.approved_at or loan.created_at
        now = datetime.utcnow()
        repaid_left = money(loan.amount_repaid)
        schedule = []
        for week in range(1, installments + 1):
            due = start + timedelta(weeks=week)
            if repaid_left >= installment:
                status = "paid"
                repaid_left -= installment
            elif due < now:
                status = "overdue"
            else:
                status = "upcoming"
            schedule.append({
                "installment": week,
                "due_date": iso(due),
                "amount": as_float(installment),
                "status": status,
            })
        return {
            **loan_to_dict(loan),
            "schedule": schedule,
            "next_payment": next((entry for entry in schedule if entry["status"] != "paid"), None),
        }

    def credit_transactions(self, db: Session, consumer: ConsumerProfile, limit: int = 50) -> List[dict]:
        rows = db.execute(
            select(WalletTransaction)
            .join(Wallet)
            .where(Wallet.consumer_id == consumer.id, Wallet.type == CREDIT_WALLET)
            .order_by(WalletTransaction.created_at.desc(), WalletTransaction.id.desc())
            .limit(limit)
        ).scalars().all()
        return [
            {
                "id": txn.id,
                "type": CREDIT_TXN_LABELS.get(txn.type, txn.type),
                "amount": as_float(abs(txn.amount)),
                "description": txn.description,
                "reference": txn.reference,
                "created_at": iso(txn.created_at),
            }
            for txn in rows
        ]


crud_loan = CRUDLoan()


def loan_to_dict(loan: Loan) -> dict:
    outstanding = money(loan.amount) - money(loan.amount_repaid)
    return {
        "id": loan.id,
        "loan_number": display_number("LOAN", loan.created_at, loan.id),
        "amount": as_float(loan.amount),
        "amount_repaid": as_float(loan.amount_repaid),
        "outstanding_balance": as_float(outstanding) if loan.status == APPROVED else 0.0,
        "purpose": loan.purpose,
        "loan_type": loan.loan_type,
        "status": loan.status,
        "due_date": iso(loan.due_date),
        "approved_at": iso(loan.approved_at),
        "created_at": iso(loan.created_at),
    }
