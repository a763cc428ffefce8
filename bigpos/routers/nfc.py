"""
NFC card router for consumers.
"""
from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session
from typing import Any, Dict

from bigpos.database import get_db, atomic
from bigpos import models
from bigpos.crud.nfc import crud_nfc_card, card_to_dict
from bigpos.crud.orders import sale_to_dict
from bigpos.schemas.store import CardLink, CardPinUpdate, CardNickname, CardTopup
from bigpos.security import get_consumer_profile, require_role, audit_log_action
from bigpos.utils.money import as_float

router = APIRouter(prefix="/nfc", tags=["nfc"])

require_consumer = require_role("consumer")


@router.get("/cards")
def list_cards(
    consumer: models.ConsumerProfile = Depends(get_consumer_profile),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    cards = crud_nfc_card.list_for_consumer(db, consumer.id)
    return {"success": True, "cards": [card_to_dict(card) for card in cards]}


@router.post("/cards/link", status_code=status.HTTP_201_CREATED)
def link_card(
    data: CardLink,
    current_user: models.User = Depends(require_consumer),
    consumer: models.ConsumerProfile = Depends(get_consumer_profile),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    with atomic(db):
        card = crud_nfc_card.link(db, consumer, data.uid, data.pin, data.nickname)
        audit_log_action(
            db=db, user_id=current_user.id, action="NFC_LINK", table_name="nfc_cards", record_id=card.id
        )
    return {"success": True, "message": "Card linked successfully", "card": card_to_dict(card)}


@router.delete("/cards/{card_id}")
def unlink_card(
    card_id: int,
    current_user: models.User = Depends(require_consumer),
    consumer: models.ConsumerProfile = Depends(get_consumer_profile),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    with atomic(db):
        card, refunded = crud_nfc_card.unlink(db, consumer, card_id)
        audit_log_action(
            db=db, user_id=current_user.id, action="NFC_UNLINK", table_name="nfc_cards", record_id=card.id
        )
    return {"success": True, "message": "Card unlinked", "refunded": as_float(refunded)}


@router.put("/cards/{card_id}/pin")
def set_card_pin(
    card_id: int,
    data: CardPinUpdate,
    consumer: models.ConsumerProfile = Depends(get_consumer_profile),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    with atomic(db):
        crud_nfc_card.set_pin(db, consumer, card_id, data.old_pin, data.new_pin)
    return {"success": True, "message": "PIN updated"}


@router.put("/cards/{card_id}/primary")
def set_primary_card(
    card_id: int,
    consumer: models.ConsumerProfile = Depends(get_consumer_profile),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    with atomic(db):
        card = crud_nfc_card.set_primary(db, consumer, card_id)
    return {"success": True, "card": card_to_dict(card)}


@router.put("/cards/{card_id}/nickname")
def set_card_nickname(
    card_id: int,
    data: CardNickname,
    consumer: models.ConsumerProfile = Depends(get_consumer_profile),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    with atomic(db):
        card = crud_nfc_card.set_nickname(db, consumer, card_id, data.nickname)
    return {"success": True, "card": card_to_dict(card)}


@router.get("/cards/{card_id}/orders")
def card_orders(
    card_id: int,
    consumer: models.ConsumerProfile = Depends(get_consumer_profile),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    sales = crud_nfc_card.card_orders(db, consumer, card_id)
    return {"success": True, "orders": [sale_to_dict(db, sale) for sale in sales]}


@router.post("/cards/{card_id}/topup")
def topup_card(
    card_id: int,
    data: CardTopup,
    current_user: models.User = Depends(require_consumer),
    consumer: models.ConsumerProfile = Depends(get_consumer_profile),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    """Load a card from the dashboard wallet first, then the credit wallet."""
    with atomic(db):
        result = crud_nfc_card.topup(db, consumer, card_id, data.amount)
        audit_log_action(
            db=db, user_id=current_user.id, action="NFC_TOPUP", table_name="nfc_cards", record_id=card_id,
            new_values={"amount": as_float(data.amount), "balance": result["card"]["balance"]}
        )
    return {"success": True, **result}
