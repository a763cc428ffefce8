"""
Payment gateway callbacks. No user session: PalmKash calls these directly.
"""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from typing import Any, Dict

from bigpos.database import get_db, atomic
from bigpos.crud.settlement import settle
from bigpos.schemas.business import PalmKashCallback
from bigpos.security import audit_log_action

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@router.post("/palmkash")
def palmkash_callback(
    data: PalmKashCallback,
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    """Settle the pending top-up, gas order, sale or wholesale order behind this payment."""
    with atomic(db):
        outcome = settle(db, data.reference, data.transaction_id)
        if outcome["matched"]:
            audit_log_action(
                db=db, user_id=None, action="PAYMENT_CALLBACK", table_name=outcome["table"],
                record_id=outcome["id"],
                new_values={"status": outcome["status"], "transaction_id": data.transaction_id},
                notes=data.reference
            )
    return {"success": True, **outcome}
