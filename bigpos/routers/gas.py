"""
Gas utility and rewards router.
"""
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session
from typing import Any, Dict, Optional

from bigpos.config import settings
from bigpos.database import get_db, atomic
from bigpos import models
from bigpos.crud.gas import crud_gas_meter, meter_to_dict, topup_to_dict
from bigpos.crud.rewards import crud_gas_reward, reward_to_dict, reward_tier
from bigpos.schemas.store import GasMeterCreate, GasTopupCreate, GasUsageCreate, RedeemPoints
from bigpos.security import get_consumer_profile, require_role, audit_log_action
from bigpos.utils.money import money, as_float

router = APIRouter(prefix="/store", tags=["gas"])

require_consumer = require_role("consumer")

# ====================
# METERS
# ====================


@router.get("/gas/meters")
def list_meters(
    consumer: models.ConsumerProfile = Depends(get_consumer_profile),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    meters = crud_gas_meter.list_for_consumer(db, consumer.id)
    return {
        "success": True,
        "meters": [meter_to_dict(meter, crud_gas_meter.current_units(db, meter.id)) for meter in meters],
    }


@router.post("/gas/meters", status_code=status.HTTP_201_CREATED)
def add_meter(
    meter_in: GasMeterCreate,
    consumer: models.ConsumerProfile = Depends(get_consumer_profile),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    with atomic(db):
        meter = crud_gas_meter.add_meter(db, consumer, meter_in)
    return {"success": True, "meter": meter_to_dict(meter, crud_gas_meter.current_units(db, meter.id))}


@router.delete("/gas/meters/{meter_id}")
def remove_meter(
    meter_id: int,
    consumer: models.ConsumerProfile = Depends(get_consumer_profile),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    with atomic(db):
        crud_gas_meter.remove_meter(db, consumer, meter_id)
    return {"success": True, "message": "Meter removed"}


# ====================
# TOP-UP AND USAGE
# ====================


@router.post("/gas/topup")
def topup_gas(
    topup_in: GasTopupCreate,
    current_user: models.User = Depends(require_consumer),
    consumer: models.ConsumerProfile = Depends(get_consumer_profile),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    with atomic(db):
        result = crud_gas_meter.topup(db, consumer, current_user, topup_in)
        audit_log_action(
            db=db, user_id=current_user.id, action="GAS_TOPUP", table_name="gas_topups",
            record_id=result["topup"]["id"],
            new_values={"amount": as_float(topup_in.amount), "units": result["units"]}
        )
    return {"success": True, "message": "Gas purchased successfully", **result}


@router.post("/gas/usage", status_code=status.HTTP_201_CREATED)
def record_usage(
    usage_in: GasUsageCreate,
    consumer: models.ConsumerProfile = Depends(get_consumer_profile),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    with atomic(db):
        usage = crud_gas_meter.record_usage(db, consumer, usage_in)
    return {
        "success": True,
        "usage": topup_to_dict(usage),
        "remaining_units": as_float(crud_gas_meter.current_units(db, usage.meter_id)),
    }


@router.get("/gas/usage")
def usage_history(
    meter_id: Optional[int] = None,
    limit: int = Query(50, ge=1, le=200),
    consumer: models.ConsumerProfile = Depends(get_consumer_profile),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    rows = crud_gas_meter.usage_history(db, consumer, meter_id, limit)
    return {"success": True, "history": [topup_to_dict(row) for row in rows]}


# ====================
# REWARDS
# ====================


@router.get("/gas/rewards/balance")
def rewards_balance(
    consumer: models.ConsumerProfile = Depends(get_consumer_profile),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    units = crud_gas_reward.balance(db, consumer.id)
    return {
        "success": True,
        "balance": as_float(units),
        "points": int(units * settings.REDEEM_POINTS_PER_UNIT),
        "tier": reward_tier(units),
        "gas_reward_wallet_id": consumer.gas_reward_wallet_id,
    }


@router.get("/gas/rewards/history")
def rewards_history(
    limit: int = Query(20, ge=1, le=200),
    consumer: models.ConsumerProfile = Depends(get_consumer_profile),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    rows = crud_gas_reward.history(db, consumer.id, limit)
    return {"success": True, "history": [reward_to_dict(row) for row in rows]}


@router.get("/gas/rewards/leaderboard")
def rewards_leaderboard(
    period: str = Query("month", pattern="^(week|month|all)$"),
    consumer: models.ConsumerProfile = Depends(get_consumer_profile),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    leaders = crud_gas_reward.leaderboard(db, period)
    my_rank = next((entry["rank"] for entry in leaders if entry["consumer_id"] == consumer.id), None)
    return {"success": True, "period": period, "leaderboard": leaders, "my_rank": my_rank}


@router.get("/reward-gas/balance")
def reward_gas_balance(
    consumer: models.ConsumerProfile = Depends(get_consumer_profile),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    """Reward gas available to spend on orders, in units and RWF."""
    units = crud_gas_reward.balance(db, consumer.id)
    return {
        "success": True,
        "units": as_float(units),
        "balance_rwf": as_float(money(units * settings.REWARD_GAS_RWF_PER_UNIT)),
        "rwf_per_unit": as_float(settings.REWARD_GAS_RWF_PER_UNIT),
        "recent": [reward_to_dict(row) for row in crud_gas_reward.history(db, consumer.id, 10)],
    }


@router.post("/rewards/redeem")
def redeem_rewards(
    data: RedeemPoints,
    current_user: models.User = Depends(require_consumer),
    consumer: models.ConsumerProfile = Depends(get_consumer_profile),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    with atomic(db):
        result = crud_gas_reward.redeem_points(db, consumer, data.points)
        audit_log_action(
            db=db, user_id=current_user.id, action="REWARD_REDEEM", table_name="gas_rewards",
            new_values=result
        )
    return {"success": True, **result}


@router.get("/rewards/referral-code")
def referral_code(current_user: models.User = Depends(require_consumer)) -> Dict[str, Any]:
    return {"success": True, "referral_code": f"BIG{str(current_user.id)[-6:]}"}
