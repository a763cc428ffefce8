"""
Stock alert generation for a retailer's or wholesaler's catalogue.
"""
from sqlalchemy.orm import Session
from sqlalchemy import select
from typing import List, Optional
import logging

from bigpos.models import Product

logger = logging.getLogger(__name__)

LEVEL_WARNING = "WARNING"
LEVEL_CRITICAL = "CRITICAL"


def check_stock_alerts(db: Session, *, retailer_id: Optional[int] = None,
                       wholesaler_id: Optional[int] = None) -> List[dict]:
    """Active products that are out of stock or at/below their low-stock threshold."""
    stmt = select(Product).where(Product.status == "active")
    if retailer_id is not None:
        stmt = stmt.where(Product.retailer_id == retailer_id)
    if wholesaler_id is not None:
        stmt = stmt.where(Product.wholesaler_id == wholesaler_id)

    alerts = []
    for product in db.execute(stmt.order_by(Product.stock, Product.name)).scalars().all():
        if product.stock <= 0:
            alerts.append({
                "alert_type": "STOCK_OUT",
                "level": LEVEL_CRITICAL,
                "message": f"{product.name} is OUT of stock",
                "product_id": product.id,
                "stock": product.stock,
            })
        elif product.stock <= product.low_stock_threshold:
            alerts.append({
                "alert_type": "STOCK_LOW",
                "level": LEVEL_WARNING,
                "message": f"{product.name} stock is LOW: {product.stock} {product.unit} (threshold: {product.low_stock_threshold})",
                "product_id": product.id,
                "stock": product.stock,
            })
    if alerts:
        logger.info(f"{len(alerts)} stock alerts for retailer={retailer_id} wholesaler={wholesaler_id}")
    return alerts
