"""
Gas reward ledger.

Reward gas is an append-only list of signed unit movements per consumer.
The balance is the sum of the rows; spending or revoking writes a negative
row instead of editing history.
"""
from sqlalchemy import select, func
from sqlalchemy.orm import Session
import logging
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Iterable, List, Optional, Tuple

from bigpos.config import settings
from bigpos.crud.base import CRUDBase
from bigpos.crud.wallet import crud_wallet, DASHBOARD_WALLET
from bigpos.exceptions import ValidationFailedError, InsufficientFundsError
from bigpos.models import GasReward, ConsumerProfile, User
from bigpos.utils.money import money, gas_units, as_float, iso

logger = logging.getLogger(__name__)

# Ledger sources
SOURCE_PURCHASE_REWARD = "purchase_reward"
SOURCE_GAS_PURCHASE = "purchase"
SOURCE_ORDER_PAYMENT = "order_payment"
SOURCE_REDEMPTION = "redemption"
SOURCE_REVERSAL = "reversal"

# Methods that can earn rewards when a reward wallet id is supplied
REWARD_ELIGIBLE_METHODS = {"mobile_money", "wallet", "dashboard_wallet", "nfc_card"}


def order_reward_units(total) -> Decimal:
    """12% of the order total, converted to gas units."""
    return gas_units(money(total) * settings.ORDER_REWARD_RATE / settings.REWARD_GAS_RWF_PER_UNIT)


def profit_reward_units(lines: Iterable[Tuple[Decimal, Optional[Decimal], int]]) -> Tuple[Decimal, Decimal]:
    """
    Reward for a POS sale, based on the retailer's profit.

    ``lines`` holds (price, cost_price, quantity); only positive margins count.
    Returns (profit, units).
    """
    profit = Decimal('0')
    for price, cost_price, quantity in lines:
        if cost_price is None:
            continue
        margin = money(price) - money(cost_price)
        if margin > 0:
            profit += margin * quantity
    units = gas_units(profit * settings.ORDER_REWARD_RATE / settings.REWARD_GAS_RWF_PER_UNIT)
    return money(profit), units


def reward_tier(units: Decimal) -> str:
    if units > 100:
        return "Gold"
    if units > 50:
        return "Silver"
    return "Bronze"


class CRUDGasReward(CRUDBase[GasReward]):
    def __init__(self):
        super().__init__(GasReward, "Gas reward")

    def balance(self, db: Session, consumer_id: int) -> Decimal:
        """Current reward gas units (SUM of the ledger)"""
        stmt = select(func.coalesce(func.sum(GasReward.units), 0)).where(GasReward.consumer_id == consumer_id)
        return gas_units(db.execute(stmt).scalar_one())

    def add(
        self, db: Session, consumer_id: int, units, source: str, *,
        reward_wallet_id: Optional[str] = None, sale_id: Optional[int] = None,
        profit_amount=None, reference: Optional[str] = None
    ) -> GasReward:
        row = GasReward(
            consumer_id=consumer_id,
            units=gas_units(units),
            source=source,
            reward_wallet_id=reward_wallet_id,
            sale_id=sale_id,
            profit_amount=money(profit_amount) if profit_amount is not None else None,
            reference=reference,
        )
        db.add(row)
        db.flush()
        return row

    def spend_rwf(
        self, db: Session, consumer: ConsumerProfile, requested_rwf, order_total, *,
        sale_id: Optional[int] = None, reference: Optional[str] = None
    ) -> Tuple[Decimal, Decimal]:
        """
        Use reward gas as a discount on an order.

        Returns (applied_rwf, units_deducted). The applied amount never exceeds
        the order total; asking for more than the balance is an error.
        """
        requested = money(requested_rwf)
        if requested <= 0:
            return Decimal('0'), Decimal('0')
        units_available = self.balance(db, consumer.id)
        balance_rwf = money(units_available * settings.REWARD_GAS_RWF_PER_UNIT)
        if requested > balance_rwf:
            raise InsufficientFundsError(
                "Insufficient reward gas balance",
                available=as_float(balance_rwf),
                requested=as_float(requested),
            )
        applied = min(requested, money(order_total))
        units = gas_units(applied / settings.REWARD_GAS_RWF_PER_UNIT)
        units = min(units, units_available)
        self.add(db, consumer.id, -units, SOURCE_ORDER_PAYMENT,
                 reward_wallet_id=consumer.gas_reward_wallet_id, sale_id=sale_id, reference=reference)
        return applied, units

    def sale_rows(self, db: Session, sale_id: int) -> List[GasReward]:
        stmt = select(GasReward).where(GasReward.sale_id == sale_id)
        return list(db.execute(stmt).scalars().all())

    def reverse_sale(self, db: Session, consumer_id: int, sale_id: int) -> Decimal:
        """
        Undo every reward movement tied to a sale.

        Spent reward gas comes back and the earned reward is revoked. If the
        consumer already spent the earned units the revocation stops at zero.
        """
        net = sum((gas_units(row.units) for row in self.sale_rows(db, sale_id)), Decimal('0'))
        if net == 0:
            return Decimal('0')
        correction = -net
        if correction < 0:
            correction = max(correction, -self.balance(db, consumer_id))
        if correction != 0:
            self.add(db, consumer_id, correction, SOURCE_REVERSAL, sale_id=sale_id, reference=f"SALE-{sale_id}")
        return correction

    def history(self, db: Session, consumer_id: int, limit: int = 20) -> List[GasReward]:
        stmt = (
            select(GasReward)
            .where(GasReward.consumer_id == consumer_id)
            .order_by(GasReward.created_at.desc(), GasReward.id.desc())
            .limit(limit)
        )
        return list(db.execute(stmt).scalars().all())

    def leaderboard(self, db: Session, period: str = "month", limit: int = 10) -> List[dict]:
        """Top earners by positive reward units in the period."""
        conditions = [GasReward.units > 0]
        if period == "week":
            conditions.append(GasReward.created_at >= datetime.utcnow() - timedelta(days=7))
        elif period == "month":
            conditions.append(GasReward.created_at >= datetime.utcnow() - timedelta(days=30))
        elif period != "all":
            raise ValidationFailedError("period must be one of week, month, all")

        total_units = func.sum(GasReward.units).label("total_units")
        stmt = (
            select(GasReward.consumer_id, total_units, User.name)
            .join(ConsumerProfile, ConsumerProfile.id == GasReward.consumer_id)
            .join(User, User.id == ConsumerProfile.user_id)
            .where(*conditions)
            .group_by(GasReward.consumer_id, User.name)
            .order_by(total_units.desc())
            .limit(limit)
        )
        return [
            {"rank": rank, "consumer_id": consumer_id, "name": name, "units": as_float(gas_units(units))}
            for rank, (consumer_id, units, name) in enumerate(db.execute(stmt).all(), start=1)
        ]

    def redeem_points(self, db: Session, consumer: ConsumerProfile, points: int) -> dict:
        """
        Convert reward points into dashboard wallet money.

        ``points / 100`` gas units are burned and ``units * 1000`` RWF is
        credited to the dashboard wallet.
        """
        if points < settings.MIN_REDEEM_POINTS:
            raise ValidationFailedError(f"Minimum redemption is {settings.MIN_REDEEM_POINTS} points")
        units = gas_units(Decimal(points) / settings.REDEEM_POINTS_PER_UNIT)
        available = self.balance(db, consumer.id)
        if units > available:
            raise InsufficientFundsError("Insufficient reward balance", available_units=as_float(available))

        value = money(units * settings.REDEEM_RWF_PER_UNIT)
        wallet = crud_wallet.get_or_create(db, consumer.id, DASHBOARD_WALLET)
        txn = crud_wallet.credit(db, wallet, value, "credit", f"Redeemed {points} reward points")
        self.add(db, consumer.id, -units, SOURCE_REDEMPTION,
                 reward_wallet_id=consumer.gas_reward_wallet_id, reference=f"WTX-{txn.id}")
        logger.info(f"Consumer {consumer.id} redeemed {points} points for {value}")
        return {
            "points_redeemed": points,
            "units_redeemed": as_float(units),
            "amount_credited": as_float(value),
            "wallet_balance": as_float(wallet.balance),
            "remaining_units": as_float(available - units),
        }


crud_gas_reward = CRUDGasReward()


def reward_to_dict(row: GasReward) -> dict:
    units = gas_units(row.units)
    return {
        "id": row.id,
        "units": as_float(units),
        "value_rwf": as_float(money(units * settings.REWARD_GAS_RWF_PER_UNIT)),
        "source": row.source,
        "sale_id": row.sale_id,
        "reward_wallet_id": row.reward_wallet_id,
        "profit_amount": as_float(row.profit_amount) if row.profit_amount is not None else None,
        "reference": row.reference,
        "created_at": iso(row.created_at),
    }
