"""
Retailer router: inventory, POS, customer orders, customer links, the
retailer wallet, credit, wholesaler links and wholesale purchasing.
"""
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy import select
from sqlalchemy.orm import Session
from typing import Any, Dict, Optional

from bigpos.database import get_db, atomic
from bigpos import models
from bigpos.crud.inventory import crud_product, product_to_dict, movement_to_dict
from bigpos.crud.links import crud_link_request, link_to_dict, APPROVED
from bigpos.crud.orders import crud_sale, sale_to_dict, CANCELLABLE_BY_RETAILER
from bigpos.crud.wholesale import (
    crud_wholesale_order, crud_retailer_credit, crud_wholesaler_link,
    wholesale_order_to_dict, credit_to_dict, credit_request_to_dict, link_request_to_dict,
)
from bigpos.exceptions import NotFoundError
from bigpos.schemas.business import (
    ProductCreate, ProductUpdate, OrderStatusUpdate, POSSaleCreate, BarcodeScan,
    RetailerWalletTopup, WholesaleOrderCreate, CreditRequestCreate, CreditRepay, ReviewDecision,
    WholesalerLinkRequestCreate,
)
from bigpos.schemas.store import OrderCancel
from bigpos.security import get_retailer_profile, require_role, audit_log_action
from bigpos.services.mobile_money import gateway
from bigpos.crud import payments
from bigpos.utils.alerts import check_stock_alerts
from bigpos.utils.money import as_float, iso

router = APIRouter(prefix="/retailer", tags=["retailer"])

require_retailer = require_role("retailer")

# ====================
# INVENTORY
# ====================


@router.get("/inventory")
def list_inventory(
    category: Optional[str] = None,
    search: Optional[str] = None,
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
    retailer: models.RetailerProfile = Depends(get_retailer_profile),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    products = crud_product.list_for_owner(
        db, retailer_id=retailer.id, category=category, search=search, skip=skip, limit=limit
    )
    return {"success": True, "products": [product_to_dict(p) for p in products]}


@router.post("/inventory", status_code=status.HTTP_201_CREATED)
def create_product(
    product_in: ProductCreate,
    current_user: models.User = Depends(require_retailer),
    retailer: models.RetailerProfile = Depends(get_retailer_profile),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    with atomic(db):
        product = crud_product.create_product(
            db, obj_in={**product_in.model_dump(), "retailer_id": retailer.id}, user_id=current_user.id
        )
        audit_log_action(
            db=db, user_id=current_user.id, action="PRODUCT_CREATE", table_name="products", record_id=product.id,
            new_values={"name": product.name, "price": as_float(product.price), "stock": product.stock}
        )
    return {"success": True, "product": product_to_dict(product)}


@router.get("/inventory/alerts")
def inventory_alerts(
    retailer: models.RetailerProfile = Depends(get_retailer_profile),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    alerts = check_stock_alerts(db, retailer_id=retailer.id)
    return {"success": True, "alerts": alerts, "count": len(alerts)}


@router.put("/inventory/{product_id}")
def update_product(
    product_id: int,
    product_in: ProductUpdate,
    current_user: models.User = Depends(require_retailer),
    retailer: models.RetailerProfile = Depends(get_retailer_profile),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    with atomic(db):
        product = crud_product.get_owned(db, product_id, retailer_id=retailer.id, lock=True)
        old_values = {"price": as_float(product.price), "stock": product.stock}
        changes = product_in.model_dump(exclude_unset=True)
        crud_product.update_product(db, product, changes, current_user.id)
        audit_log_action(
            db=db, user_id=current_user.id, action="PRODUCT_UPDATE", table_name="products", record_id=product.id,
            old_values=old_values, new_values={"price": as_float(product.price), "stock": product.stock}
        )
    return {"success": True, "product": product_to_dict(product)}


@router.get("/inventory/{product_id}/movements")
def product_movements(
    product_id: int,
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
    retailer: models.RetailerProfile = Depends(get_retailer_profile),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    product = crud_product.get_owned(db, product_id, retailer_id=retailer.id)
    rows = crud_product.movements(db, product.id, skip=skip, limit=limit)
    return {"success": True, "product_id": product.id, "movements": [movement_to_dict(m) for m in rows]}


# ====================
# POS
# ====================


@router.get("/pos/products")
def pos_products(
    search: Optional[str] = None,
    retailer: models.RetailerProfile = Depends(get_retailer_profile),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    products = crud_product.list_for_owner(db, retailer_id=retailer.id, search=search, active_only=True)
    return {"success": True, "products": [product_to_dict(p) for p in products if p.stock > 0]}


@router.post("/pos/scan")
def pos_scan(
    data: BarcodeScan,
    retailer: models.RetailerProfile = Depends(get_retailer_profile),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    product = crud_product.find_by_barcode(db, retailer.id, data.barcode)
    if product is None:
        raise NotFoundError("Product not found")
    return {"success": True, "product": product_to_dict(product)}


@router.post("/pos/sale", status_code=status.HTTP_201_CREATED)
def pos_sale(
    sale_in: POSSaleCreate,
    current_user: models.User = Depends(require_retailer),
    retailer: models.RetailerProfile = Depends(get_retailer_profile),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    with atomic(db):
        sale = crud_sale.create_pos_sale(db, retailer, current_user, sale_in)
    return {"success": True, "sale": sale_to_dict(db, sale)}


@router.get("/pos/daily-sales")
def pos_daily_sales(
    retailer: models.RetailerProfile = Depends(get_retailer_profile),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    return {"success": True, "stats": crud_sale.daily_sales(db, retailer)}


# ====================
# CUSTOMER ORDERS
# ====================


@router.get("/orders")
def list_orders(
    status_filter: Optional[str] = Query(None, alias="status"),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    retailer: models.RetailerProfile = Depends(get_retailer_profile),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    rows, total = crud_sale.list_for_retailer(db, retailer, status=status_filter, limit=limit, offset=offset)
    return {"success": True, "orders": [sale_to_dict(db, sale) for sale in rows], "total": total}


@router.get("/orders/{order_id}")
def get_order(
    order_id: int,
    retailer: models.RetailerProfile = Depends(get_retailer_profile),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    sale = crud_sale.get_for_retailer(db, retailer, order_id)
    return {"success": True, "order": sale_to_dict(db, sale)}


@router.put("/orders/{order_id}/status")
def update_order_status(
    order_id: int,
    data: OrderStatusUpdate,
    current_user: models.User = Depends(require_retailer),
    retailer: models.RetailerProfile = Depends(get_retailer_profile),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    with atomic(db):
        sale = crud_sale.update_status(db, retailer, current_user, order_id, data.status.value, data.reason)
    return {"success": True, "order": sale_to_dict(db, sale)}


@router.post("/orders/{order_id}/cancel")
def cancel_order(
    order_id: int,
    data: Optional[OrderCancel] = None,
    current_user: models.User = Depends(require_retailer),
    retailer: models.RetailerProfile = Depends(get_retailer_profile),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    with atomic(db):
        sale = crud_sale.get_for_retailer(db, retailer, order_id, lock=True)
        crud_sale.cancel(db, sale, current_user, CANCELLABLE_BY_RETAILER, data.reason if data else None)
    return {"success": True, "order": sale_to_dict(db, sale)}


@router.post("/orders/{order_id}/fulfill")
def fulfill_order(
    order_id: int,
    current_user: models.User = Depends(require_retailer),
    retailer: models.RetailerProfile = Depends(get_retailer_profile),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    with atomic(db):
        sale = crud_sale.fulfill(db, retailer, current_user, order_id)
    return {"success": True, "order": sale_to_dict(db, sale)}


# ====================
# CUSTOMER LINKS
# ====================


@router.get("/customer-link-requests")
def customer_link_requests(
    status_filter: Optional[str] = Query(None, alias="status"),
    retailer: models.RetailerProfile = Depends(get_retailer_profile),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    links = crud_link_request.for_retailer(db, retailer.id, status_filter)
    return {"success": True, "requests": [link_to_dict(link, db) for link in links]}


@router.post("/customer-link-requests/{request_id}/approve")
def approve_link_request(
    request_id: int,
    retailer: models.RetailerProfile = Depends(get_retailer_profile),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    with atomic(db):
        link = crud_link_request.respond(db, retailer, request_id, approve=True)
    return {"success": True, "request": link_to_dict(link, db)}


@router.post("/customer-link-requests/{request_id}/reject")
def reject_link_request(
    request_id: int,
    data: Optional[ReviewDecision] = None,
    retailer: models.RetailerProfile = Depends(get_retailer_profile),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    with atomic(db):
        link = crud_link_request.respond(db, retailer, request_id, approve=False, reason=data.reason if data else None)
    return {"success": True, "request": link_to_dict(link, db)}


@router.get("/linked-customers")
def linked_customers(
    retailer: models.RetailerProfile = Depends(get_retailer_profile),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    links = crud_link_request.for_retailer(db, retailer.id, APPROVED)
    return {"success": True, "customers": [link_to_dict(link, db)["customer"] for link in links]}


@router.delete("/linked-customers/{customer_id}")
def unlink_customer(
    customer_id: int,
    retailer: models.RetailerProfile = Depends(get_retailer_profile),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    with atomic(db):
        crud_link_request.unlink(db, retailer, customer_id)
    return {"success": True, "message": "Customer unlinked"}


# ====================
# WALLET AND CREDIT
# ====================


@router.get("/wallet")
def get_wallet(
    retailer: models.RetailerProfile = Depends(get_retailer_profile),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    with atomic(db):
        credit = crud_retailer_credit.get_or_create(db, retailer)
    return {
        "success": True,
        "wallet_balance": as_float(retailer.wallet_balance),
        "credit": credit_to_dict(credit),
    }


@router.post("/wallet/topup")
def topup_wallet(
    data: RetailerWalletTopup,
    current_user: models.User = Depends(require_retailer),
    retailer: models.RetailerProfile = Depends(get_retailer_profile),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    with atomic(db):
        result = gateway.charge(
            data.amount, data.phone_number or current_user.phone, f"RTOPUP-{retailer.id}", "Retailer wallet top-up"
        )
        payments.credit_retailer(db, retailer, data.amount)
        audit_log_action(
            db=db, user_id=current_user.id, action="RETAILER_WALLET_TOPUP", table_name="retailer_profiles",
            record_id=retailer.id, new_values={"amount": as_float(data.amount), "reference": result.transaction_id}
        )
    return {"success": True, "wallet_balance": as_float(retailer.wallet_balance), "reference": result.transaction_id}


@router.get("/wallet/transactions")
def wallet_transactions(
    retailer: models.RetailerProfile = Depends(get_retailer_profile),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    """Wholesale purchases paid from the wallet, shown as debits."""
    orders = crud_wholesale_order.list_for_retailer(db, retailer)
    transactions = [
        {
            "id": order.id,
            "type": "debit",
            "amount": as_float(order.amount_paid),
            "description": f"Wholesale order #{order.id}",
            "status": order.status,
            "created_at": iso(order.created_at),
        }
        for order in orders if order.amount_paid and order.amount_paid > 0
    ]
    return {"success": True, "transactions": transactions}


@router.get("/credit")
def get_credit(
    retailer: models.RetailerProfile = Depends(get_retailer_profile),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    with atomic(db):
        credit = crud_retailer_credit.get_or_create(db, retailer)
    requests = db.execute(
        select(models.CreditRequest)
        .where(models.CreditRequest.retailer_id == retailer.id)
        .order_by(models.CreditRequest.created_at.desc(), models.CreditRequest.id.desc())
    ).scalars().all()
    return {
        "success": True,
        "credit": credit_to_dict(credit),
        "requests": [credit_request_to_dict(r) for r in requests],
    }


@router.post("/credit/request", status_code=status.HTTP_201_CREATED)
def request_credit(
    data: CreditRequestCreate,
    retailer: models.RetailerProfile = Depends(get_retailer_profile),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    with atomic(db):
        request = crud_retailer_credit.request_increase(db, retailer, data.amount, data.reason)
    return {"success": True, "request": credit_request_to_dict(request)}


@router.get("/credit/orders")
def credit_orders(
    retailer: models.RetailerProfile = Depends(get_retailer_profile),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    orders = crud_wholesale_order.list_for_retailer(db, retailer, credit_only=True)
    return {"success": True, "orders": [wholesale_order_to_dict(db, o) for o in orders]}


@router.post("/credit/orders/{order_id}/repay")
def repay_credit_order(
    order_id: int,
    data: CreditRepay,
    current_user: models.User = Depends(require_retailer),
    retailer: models.RetailerProfile = Depends(get_retailer_profile),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    with atomic(db):
        order = crud_wholesale_order.repay_credit(db, retailer, order_id, data.amount)
        audit_log_action(
            db=db, user_id=current_user.id, action="CREDIT_REPAY", table_name="wholesale_orders",
            record_id=order.id, new_values={"amount": as_float(data.amount), "payment_status": order.payment_status}
        )
    return {"success": True, "order": wholesale_order_to_dict(db, order)}


# ====================
# WHOLESALER LINKS
# ====================


@router.get("/wholesalers/available")
def available_wholesalers(
    retailer: models.RetailerProfile = Depends(get_retailer_profile),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    wholesalers = crud_wholesaler_link.available_wholesalers(db, retailer)
    return {
        "success": True,
        "wholesalers": wholesalers,
        "total": len(wholesalers),
        "linked_wholesaler_id": retailer.linked_wholesaler_id,
    }


@router.post("/wholesalers/link-request", status_code=status.HTTP_201_CREATED)
def send_wholesaler_link_request(
    data: WholesalerLinkRequestCreate,
    current_user: models.User = Depends(require_retailer),
    retailer: models.RetailerProfile = Depends(get_retailer_profile),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    """One pending request at a time, and none once linked."""
    with atomic(db):
        request = crud_wholesaler_link.send(db, retailer, data.wholesaler_id, data.message)
        audit_log_action(
            db=db, user_id=current_user.id, action="WHOLESALER_LINK_REQUEST", table_name="wholesaler_link_requests",
            record_id=request.id, new_values={"wholesaler_id": data.wholesaler_id}
        )
    return {"success": True, "message": "Link request sent", "request": link_request_to_dict(request)}


@router.get("/wholesalers/link-requests")
def my_wholesaler_link_requests(
    retailer: models.RetailerProfile = Depends(get_retailer_profile),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    requests = crud_wholesaler_link.list_for_retailer(db, retailer)
    return {"success": True, "requests": [link_request_to_dict(r) for r in requests]}


@router.delete("/wholesalers/link-request/{request_id}")
def cancel_wholesaler_link_request(
    request_id: int,
    retailer: models.RetailerProfile = Depends(get_retailer_profile),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    with atomic(db):
        request = crud_wholesaler_link.cancel(db, retailer, request_id)
    return {"success": True, "message": "Link request cancelled", "request": link_request_to_dict(request)}


# ====================
# WHOLESALE PURCHASING
# ====================


@router.get("/wholesaler/products")
def wholesaler_products(
    search: Optional[str] = None,
    retailer: models.RetailerProfile = Depends(get_retailer_profile),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    if retailer.linked_wholesaler_id is None:
        return {"success": True, "products": [], "linked": False}
    products = crud_product.list_for_owner(
        db, wholesaler_id=retailer.linked_wholesaler_id, search=search, active_only=True
    )
    return {"success": True, "linked": True, "products": [product_to_dict(p) for p in products]}


@router.post("/wholesaler/orders", status_code=status.HTTP_201_CREATED)
def create_wholesale_order(
    order_in: WholesaleOrderCreate,
    current_user: models.User = Depends(require_retailer),
    retailer: models.RetailerProfile = Depends(get_retailer_profile),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    with atomic(db):
        order = crud_wholesale_order.create_order(db, retailer, order_in)
        audit_log_action(
            db=db, user_id=current_user.id, action="WHOLESALE_ORDER_CREATE", table_name="wholesale_orders",
            record_id=order.id,
            new_values={"total": as_float(order.total_amount), "payment_method": order.payment_method}
        )
    return {"success": True, "order": wholesale_order_to_dict(db, order)}


@router.get("/wholesaler/orders")
def list_wholesale_orders(
    retailer: models.RetailerProfile = Depends(get_retailer_profile),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    orders = crud_wholesale_order.list_for_retailer(db, retailer)
    return {"success": True, "orders": [wholesale_order_to_dict(db, o) for o in orders]}
