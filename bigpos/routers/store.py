"""
Consumer store router: retailer discovery and linking, product browsing,
orders and wallets.
"""
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session
from typing import Any, Dict, Optional

from bigpos.database import get_db, atomic
from bigpos import models
from bigpos.crud.inventory import crud_product, product_to_dict
from bigpos.crud.links import crud_link_request, discover_retailers, link_to_dict, APPROVED, REJECTED
from bigpos.crud.orders import crud_sale, sale_to_dict, CANCELLABLE_BY_CONSUMER
from bigpos.crud.wallet import crud_wallet, wallet_to_dict, transaction_to_dict, DASHBOARD_WALLET
from bigpos.exceptions import NotFoundError
from bigpos.schemas.store import OrderCreate, OrderCancel, LinkRequestCreate, WalletTopup, RefundRequest
from bigpos.security import get_consumer_profile, require_role, audit_log_action
from bigpos.services.mobile_money import gateway
from bigpos.utils.money import as_float

router = APIRouter(prefix="/store", tags=["store"])

require_consumer = require_role("consumer")

# ====================
# RETAILER DISCOVERY AND LINKING
# ====================


@router.get("/retailers")
def list_retailers(
    province: Optional[str] = None,
    district: Optional[str] = None,
    sector: Optional[str] = None,
    search: Optional[str] = None,
    consumer: models.ConsumerProfile = Depends(get_consumer_profile),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    """Verified retailers with this consumer's link status for each."""
    links = crud_link_request.statuses_for_customer(db, consumer.id)
    retailers = []
    for retailer in discover_retailers(db, province=province, district=district, sector=sector, search=search):
        link = links.get(retailer.id)
        request_status = link.status if link else None
        retailers.append({
            "id": retailer.id,
            "shop_name": retailer.shop_name,
            "address": retailer.address,
            "province": retailer.province,
            "district": retailer.district,
            "sector": retailer.sector,
            "requestStatus": request_status,
            "isLinked": request_status == APPROVED,
            "canSendRequest": request_status in (None, REJECTED),
        })
    return {"success": True, "retailers": retailers}


@router.post("/retailers/link-request", status_code=status.HTTP_201_CREATED)
def send_link_request(
    data: LinkRequestCreate,
    consumer: models.ConsumerProfile = Depends(get_consumer_profile),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    with atomic(db):
        link = crud_link_request.send(db, consumer, data.retailer_id, data.message)
    return {"success": True, "request": link_to_dict(link, db)}


@router.get("/retailers/link-requests")
def my_link_requests(
    consumer: models.ConsumerProfile = Depends(get_consumer_profile),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    links = crud_link_request.for_customer(db, consumer.id)
    return {"success": True, "requests": [link_to_dict(link, db) for link in links]}


@router.delete("/retailers/link-request/{request_id}")
def cancel_link_request(
    request_id: int,
    consumer: models.ConsumerProfile = Depends(get_consumer_profile),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    with atomic(db):
        crud_link_request.cancel(db, consumer, request_id)
    return {"success": True, "message": "Link request cancelled"}


@router.get("/products")
def list_products(
    retailer_id: int,
    category: Optional[str] = None,
    search: Optional[str] = None,
    consumer: models.ConsumerProfile = Depends(get_consumer_profile),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    if db.get(models.RetailerProfile, retailer_id) is None:
        raise NotFoundError("Retailer not found")
    products = crud_product.list_for_owner(
        db, retailer_id=retailer_id, category=category, search=search, active_only=True
    )
    return {
        "success": True,
        "canBuy": crud_link_request.is_approved(db, consumer.id, retailer_id),
        "products": [product_to_dict(product) for product in products],
    }


# ====================
# ORDERS
# ====================


@router.post("/orders", status_code=status.HTTP_201_CREATED)
def create_order(
    order_in: OrderCreate,
    current_user: models.User = Depends(require_consumer),
    consumer: models.ConsumerProfile = Depends(get_consumer_profile),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    """
    Place an order with a linked retailer.
    Payment, reward gas discount, stock and rewards are committed together.
    """
    with atomic(db):
        sale = crud_sale.create_store_order(db, consumer, current_user, order_in)
    return {"success": True, "order": sale_to_dict(db, sale)}


@router.get("/orders")
def list_orders(
    consumer: models.ConsumerProfile = Depends(get_consumer_profile),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    orders = crud_sale.consumer_history(db, consumer)
    return {"success": True, "orders": orders, "total": len(orders)}


@router.get("/orders/{order_id}")
def get_order(
    order_id: int,
    consumer: models.ConsumerProfile = Depends(get_consumer_profile),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    sale = crud_sale.get_for_consumer(db, consumer, order_id)
    return {"success": True, "order": sale_to_dict(db, sale)}


@router.post("/orders/{order_id}/cancel")
def cancel_order(
    order_id: int,
    data: Optional[OrderCancel] = None,
    current_user: models.User = Depends(require_consumer),
    consumer: models.ConsumerProfile = Depends(get_consumer_profile),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    with atomic(db):
        sale = crud_sale.get_for_consumer(db, consumer, order_id, lock=True)
        crud_sale.cancel(db, sale, current_user, CANCELLABLE_BY_CONSUMER, data.reason if data else None)
    return {"success": True, "order": sale_to_dict(db, sale)}


@router.post("/orders/{order_id}/confirm-delivery")
def confirm_delivery(
    order_id: int,
    consumer: models.ConsumerProfile = Depends(get_consumer_profile),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    with atomic(db):
        sale = crud_sale.confirm_delivery(db, consumer, order_id)
    return {"success": True, "order": sale_to_dict(db, sale)}


# ====================
# WALLETS
# ====================


@router.get("/wallets")
def get_wallets(
    consumer: models.ConsumerProfile = Depends(get_consumer_profile),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    with atomic(db):
        crud_wallet.get_or_create(db, consumer.id, DASHBOARD_WALLET)
    wallets = crud_wallet.list_for_consumer(db, consumer.id)
    return {"success": True, "wallets": [wallet_to_dict(wallet) for wallet in wallets]}


@router.post("/wallets/topup")
def topup_wallet(
    data: WalletTopup,
    current_user: models.User = Depends(require_consumer),
    consumer: models.ConsumerProfile = Depends(get_consumer_profile),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    with atomic(db):
        reference, pending = None, False
        if data.payment_method in ("mobile_money", "momo"):
            result = gateway.charge(
                data.amount, data.phone_number or current_user.phone,
                f"TOPUP-{consumer.id}", "Wallet top-up"
            )
            reference, pending = result.transaction_id, not result.settled
        if pending:
            wallet, txn = crud_wallet.start_topup(db, consumer, data.amount, reference)
        else:
            wallet, txn = crud_wallet.topup(db, consumer, data.amount, reference)
        audit_log_action(
            db=db,
            user_id=current_user.id,
            action="WALLET_TOPUP",
            table_name="wallets",
            record_id=wallet.id,
            new_values={"amount": as_float(data.amount), "balance": as_float(wallet.balance), "pending": pending}
        )
    return {
        "success": True,
        "pending": pending,
        "message": "Approve the payment on your phone to complete the top-up" if pending else "Wallet topped up",
        "wallet": wallet_to_dict(wallet),
        "transaction": transaction_to_dict(txn),
    }


@router.post("/wallets/refund-request", status_code=status.HTTP_201_CREATED)
def request_refund(
    data: RefundRequest,
    consumer: models.ConsumerProfile = Depends(get_consumer_profile),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    with atomic(db):
        txn = crud_wallet.request_refund(db, consumer, data.amount, data.reason)
    return {"success": True, "message": "Refund request submitted", "transaction": transaction_to_dict(txn)}


@router.get("/wallets/transactions")
def wallet_transactions(
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    wallet_type: Optional[str] = None,
    consumer: models.ConsumerProfile = Depends(get_consumer_profile),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    rows, total = crud_wallet.list_transactions(db, consumer.id, limit=limit, offset=offset, wallet_type=wallet_type)
    return {
        "success": True,
        "transactions": [transaction_to_dict(txn) for txn in rows],
        "total": total,
        "limit": limit,
        "offset": offset,
    }
