"""
Wholesaler router: catalogue, retailer orders, credit requests, retailer
links and credit limits.
"""
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy import select
from sqlalchemy.orm import Session
from typing import Any, Dict, Optional

from bigpos.database import get_db, atomic
from bigpos import models
from bigpos.crud.inventory import crud_product, product_to_dict, SourceType
from bigpos.crud.wholesale import (
    crud_wholesale_order, crud_retailer_credit, crud_wholesaler_link,
    wholesale_order_to_dict, credit_to_dict, credit_request_to_dict, link_request_to_dict,
)
from bigpos.schemas.business import ProductCreate, StockUpdate, ReviewDecision, LinkApproval, CreditLimitUpdate
from bigpos.security import get_wholesaler_profile, require_role, audit_log_action
from bigpos.utils.alerts import check_stock_alerts
from bigpos.utils.money import as_float

router = APIRouter(prefix="/wholesaler", tags=["wholesaler"])

require_wholesaler = require_role("wholesaler")

# ====================
# INVENTORY
# ====================


@router.get("/inventory")
def list_inventory(
    search: Optional[str] = None,
    wholesaler: models.WholesalerProfile = Depends(get_wholesaler_profile),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    products = crud_product.list_for_owner(db, wholesaler_id=wholesaler.id, search=search)
    return {
        "success": True,
        "products": [product_to_dict(p) for p in products],
        "alerts": check_stock_alerts(db, wholesaler_id=wholesaler.id),
    }


@router.post("/inventory", status_code=status.HTTP_201_CREATED)
def create_product(
    product_in: ProductCreate,
    current_user: models.User = Depends(require_wholesaler),
    wholesaler: models.WholesalerProfile = Depends(get_wholesaler_profile),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    with atomic(db):
        product = crud_product.create_product(
            db, obj_in={**product_in.model_dump(), "wholesaler_id": wholesaler.id}, user_id=current_user.id
        )
    return {"success": True, "product": product_to_dict(product)}


@router.put("/inventory/{product_id}/stock")
def update_stock(
    product_id: int,
    data: StockUpdate,
    current_user: models.User = Depends(require_wholesaler),
    wholesaler: models.WholesalerProfile = Depends(get_wholesaler_profile),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    with atomic(db):
        product = crud_product.get_owned(db, product_id, wholesaler_id=wholesaler.id, lock=True)
        old_stock = product.stock
        if data.stock != old_stock:
            crud_product.adjust_stock(
                db, product, data.stock - old_stock, SourceType.ADJUSTMENT,
                user_id=current_user.id, notes=data.notes or "Manual stock update"
            )
        audit_log_action(
            db=db, user_id=current_user.id, action="STOCK_UPDATE", table_name="products", record_id=product.id,
            old_values={"stock": old_stock}, new_values={"stock": product.stock}
        )
    return {"success": True, "product": product_to_dict(product)}


# ====================
# RETAILER ORDERS
# ====================


@router.get("/retailers")
def linked_retailers(
    wholesaler: models.WholesalerProfile = Depends(get_wholesaler_profile),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    retailers = db.execute(
        select(models.RetailerProfile)
        .where(models.RetailerProfile.linked_wholesaler_id == wholesaler.id)
        .order_by(models.RetailerProfile.shop_name)
    ).scalars().all()
    return {
        "success": True,
        "retailers": [
            {
                "id": r.id,
                "shop_name": r.shop_name,
                "district": r.district,
                "credit_limit": as_float(r.credit_limit),
                "is_verified": r.is_verified,
            }
            for r in retailers
        ],
    }


@router.get("/retailer-orders")
def list_retailer_orders(
    status_filter: Optional[str] = Query(None, alias="status"),
    wholesaler: models.WholesalerProfile = Depends(get_wholesaler_profile),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    orders = crud_wholesale_order.list_for_wholesaler(db, wholesaler, status_filter)
    return {"success": True, "orders": [wholesale_order_to_dict(db, o) for o in orders]}


@router.post("/retailer-orders/{order_id}/confirm")
def confirm_order(
    order_id: int,
    current_user: models.User = Depends(require_wholesaler),
    wholesaler: models.WholesalerProfile = Depends(get_wholesaler_profile),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    with atomic(db):
        order = crud_wholesale_order.confirm(db, wholesaler, order_id, current_user.id)
        audit_log_action(
            db=db, user_id=current_user.id, action="WHOLESALE_ORDER_CONFIRM", table_name="wholesale_orders",
            record_id=order.id
        )
    return {"success": True, "order": wholesale_order_to_dict(db, order)}


@router.post("/retailer-orders/{order_id}/reject")
def reject_order(
    order_id: int,
    data: Optional[ReviewDecision] = None,
    current_user: models.User = Depends(require_wholesaler),
    wholesaler: models.WholesalerProfile = Depends(get_wholesaler_profile),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    with atomic(db):
        order = crud_wholesale_order.reject(
            db, wholesaler, order_id, current_user.id, data.reason if data else None
        )
        audit_log_action(
            db=db, user_id=current_user.id, action="WHOLESALE_ORDER_REJECT", table_name="wholesale_orders",
            record_id=order.id, new_values={"payment_status": order.payment_status}
        )
    return {"success": True, "order": wholesale_order_to_dict(db, order)}


@router.post("/retailer-orders/{order_id}/ship")
def ship_order(
    order_id: int,
    wholesaler: models.WholesalerProfile = Depends(get_wholesaler_profile),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    with atomic(db):
        order = crud_wholesale_order.ship(db, wholesaler, order_id)
    return {"success": True, "order": wholesale_order_to_dict(db, order)}


@router.post("/retailer-orders/{order_id}/deliver")
def deliver_order(
    order_id: int,
    current_user: models.User = Depends(require_wholesaler),
    wholesaler: models.WholesalerProfile = Depends(get_wholesaler_profile),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    """Mark delivered and merge the goods into the retailer's inventory."""
    with atomic(db):
        order = crud_wholesale_order.deliver(db, wholesaler, order_id, current_user.id)
    return {"success": True, "order": wholesale_order_to_dict(db, order)}


# ====================
# CREDIT REQUESTS
# ====================


@router.get("/credit-requests")
def list_credit_requests(
    status_filter: Optional[str] = Query(None, alias="status"),
    wholesaler: models.WholesalerProfile = Depends(get_wholesaler_profile),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    requests = crud_retailer_credit.requests_for_wholesaler(db, wholesaler, status_filter)
    return {"success": True, "requests": [credit_request_to_dict(r) for r in requests]}


@router.post("/credit-requests/{request_id}/approve")
def approve_credit_request(
    request_id: int,
    data: Optional[ReviewDecision] = None,
    current_user: models.User = Depends(require_wholesaler),
    wholesaler: models.WholesalerProfile = Depends(get_wholesaler_profile),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    with atomic(db):
        request = crud_retailer_credit.review_request(
            db, wholesaler, request_id, approve=True, notes=data.reason if data else None
        )
        audit_log_action(
            db=db, user_id=current_user.id, action="CREDIT_APPROVE", table_name="credit_requests",
            record_id=request.id, new_values={"amount": as_float(request.amount)}
        )
    return {"success": True, "request": credit_request_to_dict(request)}


@router.post("/credit-requests/{request_id}/reject")
def reject_credit_request(
    request_id: int,
    data: Optional[ReviewDecision] = None,
    wholesaler: models.WholesalerProfile = Depends(get_wholesaler_profile),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    with atomic(db):
        request = crud_retailer_credit.review_request(
            db, wholesaler, request_id, approve=False, notes=data.reason if data else None
        )
    return {"success": True, "request": credit_request_to_dict(request)}


# ====================
# RETAILER LINKS AND CREDIT LIMITS
# ====================


@router.get("/link-requests")
def list_link_requests(
    status_filter: Optional[str] = Query(None, alias="status"),
    wholesaler: models.WholesalerProfile = Depends(get_wholesaler_profile),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    requests = crud_wholesaler_link.list_for_wholesaler(db, wholesaler, status_filter)
    stats = {s: sum(1 for r in requests if r.status == s) for s in ("pending", "approved", "rejected")}
    stats["total"] = len(requests)
    return {"success": True, "requests": [link_request_to_dict(r) for r in requests], "stats": stats}


@router.post("/link-requests/{request_id}/approve")
def approve_link_request(
    request_id: int,
    data: Optional[LinkApproval] = None,
    current_user: models.User = Depends(require_wholesaler),
    wholesaler: models.WholesalerProfile = Depends(get_wholesaler_profile),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    """Link the retailer, optionally opening its credit line at the given limit."""
    with atomic(db):
        request, credit = crud_wholesaler_link.approve(
            db, wholesaler, request_id, data.credit_limit if data else None
        )
        audit_log_action(
            db=db, user_id=current_user.id, action="WHOLESALER_LINK_APPROVE", table_name="wholesaler_link_requests",
            record_id=request.id,
            new_values={"retailer_id": request.retailer_id, "credit_limit": as_float(credit.credit_limit)}
        )
    return {"success": True, "request": link_request_to_dict(request), "credit": credit_to_dict(credit)}


@router.post("/link-requests/{request_id}/reject")
def reject_link_request(
    request_id: int,
    data: Optional[ReviewDecision] = None,
    current_user: models.User = Depends(require_wholesaler),
    wholesaler: models.WholesalerProfile = Depends(get_wholesaler_profile),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    with atomic(db):
        request = crud_wholesaler_link.reject(db, wholesaler, request_id, data.reason if data else None)
        audit_log_action(
            db=db, user_id=current_user.id, action="WHOLESALER_LINK_REJECT", table_name="wholesaler_link_requests",
            record_id=request.id, notes=request.rejection_reason
        )
    return {"success": True, "request": link_request_to_dict(request)}


@router.get("/linked-retailers")
def list_linked_retailers(
    wholesaler: models.WholesalerProfile = Depends(get_wholesaler_profile),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    retailers = crud_wholesaler_link.linked_retailers(db, wholesaler)
    return {"success": True, "retailers": retailers, "total": len(retailers)}


@router.delete("/linked-retailers/{retailer_id}")
def unlink_retailer(
    retailer_id: int,
    current_user: models.User = Depends(require_wholesaler),
    wholesaler: models.WholesalerProfile = Depends(get_wholesaler_profile),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    with atomic(db):
        retailer = crud_wholesaler_link.unlink(db, wholesaler, retailer_id)
        audit_log_action(
            db=db, user_id=current_user.id, action="WHOLESALER_UNLINK", table_name="retailer_profiles",
            record_id=retailer.id, old_values={"wholesaler_id": wholesaler.id}
        )
    return {"success": True, "message": f"{retailer.shop_name} has been unlinked"}


@router.put("/retailers/{retailer_id}/credit-limit")
def update_credit_limit(
    retailer_id: int,
    data: CreditLimitUpdate,
    current_user: models.User = Depends(require_wholesaler),
    wholesaler: models.WholesalerProfile = Depends(get_wholesaler_profile),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    """Set the limit outright; available credit follows as limit minus used."""
    with atomic(db):
        retailer = crud_wholesaler_link.linked_retailer(db, wholesaler, retailer_id)
        old_limit = as_float(retailer.credit_limit)
        credit = crud_retailer_credit.set_limit(db, retailer, data.credit_limit)
        audit_log_action(
            db=db, user_id=current_user.id, action="CREDIT_LIMIT_UPDATE", table_name="retailer_credits",
            record_id=credit.id, old_values={"credit_limit": old_limit},
            new_values={"credit_limit": as_float(credit.credit_limit)}
        )
    return {"success": True, "retailer_id": retailer.id, "credit": credit_to_dict(credit)}
