"""
Gas meters, top-ups and consumption.

A meter's current units is the SUM of its top-up rows; consumption is
recorded as a negative top-up with status ``consumed``.
"""
from sqlalchemy import select, func
from sqlalchemy.orm import Session
import logging
import secrets
from decimal import Decimal
from typing import List, Optional

from bigpos.config import settings
from bigpos.crud import payments
from bigpos.crud.base import CRUDBase
from bigpos.crud.nfc import crud_nfc_card
from bigpos.crud.rewards import crud_gas_reward, SOURCE_GAS_PURCHASE
from bigpos.exceptions import ValidationFailedError, NotFoundError, ConflictError
from bigpos.models import GasMeter, GasTopup, CustomerOrder, ConsumerProfile, User
from bigpos.schemas.store import GasMeterCreate, GasTopupCreate, GasUsageCreate
from bigpos.utils.money import money, gas_units, as_float, iso

logger = logging.getLogger(__name__)

METER_ACTIVE = "active"
METER_REMOVED = "removed"

# pending and failed top-ups hold no units
COUNTED_STATUSES = ("completed", "consumed")


def generate_token() -> str:
    """16-digit prepaid token formatted XXXX-XXXX-XXXX-XXXX."""
    digits = "".join(secrets.choice("0123456789") for _ in range(16))
    return "-".join(digits[i:i + 4] for i in range(0, 16, 4))


class CRUDGasMeter(CRUDBase[GasMeter]):
    def __init__(self):
        super().__init__(GasMeter, "Meter")

    def current_units(self, db: Session, meter_id: int) -> Decimal:
        stmt = select(func.coalesce(func.sum(GasTopup.units), 0)).where(
            GasTopup.meter_id == meter_id, GasTopup.status.in_(COUNTED_STATUSES)
        )
        return gas_units(db.execute(stmt).scalar_one())

    def list_for_consumer(self, db: Session, consumer_id: int) -> List[GasMeter]:
        stmt = (
            select(GasMeter)
            .where(GasMeter.consumer_id == consumer_id, GasMeter.status == METER_ACTIVE)
            .order_by(GasMeter.created_at.desc(), GasMeter.id.desc())
        )
        return list(db.execute(stmt).scalars().all())

    def add_meter(self, db: Session, consumer: ConsumerProfile, meter_in: GasMeterCreate) -> GasMeter:
        existing = db.execute(
            select(GasMeter).where(GasMeter.meter_number == meter_in.meter_number)
        ).scalar_one_or_none()
        if existing is not None:
            raise ConflictError("Meter number is already registered")
        return self.create(db, obj_in={**meter_in.model_dump(), "consumer_id": consumer.id, "status": METER_ACTIVE})

    def remove_meter(self, db: Session, consumer: ConsumerProfile, meter_id: int) -> GasMeter:
        meter = self.get_or_404(db, meter_id, lock=True)
        if meter.consumer_id != consumer.id:
            raise NotFoundError("Meter not found")
        meter.status = METER_REMOVED
        db.flush()
        return meter

    def _active_owned(self, db: Session, consumer: ConsumerProfile, *, meter_id: Optional[int] = None,
                      meter_number: Optional[str] = None) -> GasMeter:
        stmt = select(GasMeter).with_for_update()
        if meter_id is not None:
            stmt = stmt.where(GasMeter.id == meter_id)
        else:
            stmt = stmt.where(GasMeter.meter_number == (meter_number or "").strip())
        meter = db.execute(stmt).scalar_one_or_none()
        if meter is None or meter.consumer_id != consumer.id or meter.status != METER_ACTIVE:
            raise NotFoundError("Meter not found")
        return meter

    def topup(self, db: Session, consumer: ConsumerProfile, user: User, topup_in: GasTopupCreate) -> dict:
        """
        Buy gas units for a meter.

        Pays from the chosen source, records the top-up and a completed gas
        order, and awards 10% of the purchased units as reward gas. An
        unconfirmed mobile money payment leaves both rows pending and holds
        back the reward until the payment settles.
        """
        meter = self._active_owned(db, consumer, meter_number=topup_in.meter_number)
        amount = money(topup_in.amount)
        units = gas_units(amount / settings.GAS_RWF_PER_UNIT)
        if units <= 0:
            raise ValidationFailedError("Amount is too small to buy any gas")

        method = topup_in.payment_method.value
        card = crud_nfc_card.get_payable(db, consumer, topup_in.card_id) if method == "nfc_card" else None
        token = generate_token()
        reference = f"GAS-{meter.meter_number}-{token[-4:]}"
        receipt = payments.collect(
            db, consumer, method, amount,
            reference=reference,
            description=f"Gas top-up for meter {meter.meter_number}",
            card=card,
            phone=topup_in.phone_number or user.phone,
            txn_type="gas_purchase",
        )
        status = "pending" if receipt.pending else "completed"

        topup = GasTopup(
            consumer_id=consumer.id,
            meter_id=meter.id,
            amount=amount,
            units=units,
            token=token,
            payment_method=receipt.method,
            status=status,
        )
        db.add(topup)
        db.flush()

        order = CustomerOrder(
            consumer_id=consumer.id,
            order_type="gas",
            status=status,
            amount=amount,
            items=[{
                "name": f"Gas top-up ({meter.alias_name or meter.meter_number})",
                "quantity": 1,
                "units": as_float(units),
                "price": as_float(amount),
            }],
            details={
                "meter_number": meter.meter_number,
                "topup_id": topup.id,
                "token": token,
                "payment_method": receipt.method,
                "external_ref": receipt.external_ref,
                "reference": reference,
            },
        )
        db.add(order)

        reward_units = Decimal('0') if receipt.pending else self._award(db, consumer, units, reference)
        db.flush()
        logger.info(f"Gas top-up {topup.id}: {units} units on meter {meter.meter_number} for {amount}")
        return {
            "pending": receipt.pending,
            "topup": topup_to_dict(topup),
            "order_id": order.id,
            "token": token,
            "units": as_float(units),
            "reward_units": as_float(reward_units),
            "meter": meter_to_dict(meter, self.current_units(db, meter.id)),
        }

    def _award(self, db: Session, consumer: ConsumerProfile, units: Decimal, reference: str) -> Decimal:
        reward_units = gas_units(units * settings.GAS_TOPUP_REWARD_RATE)
        if reward_units > 0:
            crud_gas_reward.add(
                db, consumer.id, reward_units, SOURCE_GAS_PURCHASE,
                reward_wallet_id=consumer.gas_reward_wallet_id, reference=reference
            )
        return reward_units

    def settle_topup(self, db: Session, external_ref: str, paid: bool) -> Optional[CustomerOrder]:
        pending = db.execute(
            select(CustomerOrder).where(CustomerOrder.order_type == "gas", CustomerOrder.status == "pending")
            .with_for_update()
        ).scalars().all()
        for order in pending:
            details = order.details or {}
            if external_ref in (details.get("external_ref"), details.get("reference")):
                break
        else:
            return None
        topup = db.get(GasTopup, order.details["topup_id"])
        status = "completed" if paid else "failed"
        order.status = status
        topup.status = status
        if paid:
            consumer = db.get(ConsumerProfile, order.consumer_id)
            self._award(db, consumer, gas_units(topup.units), order.details["reference"])
        db.flush()
        logger.info(f"Gas top-up {topup.id} ({external_ref}) settled as {status}")
        return order

    def record_usage(self, db: Session, consumer: ConsumerProfile, usage_in: GasUsageCreate) -> GasTopup:
        meter = self._active_owned(db, consumer, meter_id=usage_in.meter_id)
        units = gas_units(usage_in.units)
        available = self.current_units(db, meter.id)
        if units > available:
            raise ValidationFailedError("Usage exceeds the units on this meter", available=as_float(available))
        usage = GasTopup(
            consumer_id=consumer.id,
            meter_id=meter.id,
            amount=Decimal('0'),
            units=-units,
            status="consumed",
            note=usage_in.note,
        )
        db.add(usage)
        db.flush()
        return usage

    def usage_history(self, db: Session, consumer: ConsumerProfile, meter_id: Optional[int] = None,
                      limit: int = 50) -> List[GasTopup]:
        stmt = select(GasTopup).where(GasTopup.consumer_id == consumer.id)
        if meter_id is not None:
            stmt = stmt.where(GasTopup.meter_id == meter_id)
        stmt = stmt.order_by(GasTopup.created_at.desc(), GasTopup.id.desc()).limit(limit)
        return list(db.execute(stmt).scalars().all())


crud_gas_meter = CRUDGasMeter()


def meter_to_dict(meter: GasMeter, current_units: Decimal) -> dict:
    return {
        "id": meter.id,
        "meter_number": meter.meter_number,
        "alias_name": meter.alias_name,
        "owner_name": meter.owner_name,
        "owner_phone": meter.owner_phone,
        "status": meter.status,
        "current_units": as_float(current_units),
        "created_at": iso(meter.created_at),
    }


def topup_to_dict(topup: GasTopup) -> dict:
    return {
        "id": topup.id,
        "meter_id": topup.meter_id,
        "amount": as_float(topup.amount),
        "units": as_float(topup.units),
        "token": topup.token,
        "payment_method": topup.payment_method,
        "status": topup.status,
        "note": topup.note,
        "created_at": iso(topup.created_at),
    }
