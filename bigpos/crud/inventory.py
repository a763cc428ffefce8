"""
Inventory operations:
- Products belong to exactly one retailer or wholesaler
- Every stock change writes an append-only StockMovement
- Stock never goes negative
"""
from sqlalchemy import select, or_, func
from sqlalchemy.orm import Session
import logging
from typing import List, Optional, Dict, Any

from bigpos.config import settings
from bigpos.crud.base import CRUDBase
from bigpos.exceptions import ValidationFailedError, NotFoundError
from bigpos.models import Product, StockMovement
from bigpos.utils.money import money, as_float, iso

logger = logging.getLogger(__name__)


class SourceType:
    INITIAL = "INITIAL"
    SALE = "SALE"
    REVERSAL = "REVERSAL"
    ADJUSTMENT = "ADJUSTMENT"
    WHOLESALE_OUT = "WHOLESALE_OUT"
    WHOLESALE_IN = "WHOLESALE_IN"


class CRUDProduct(CRUDBase[Product]):
    def __init__(self):
        super().__init__(Product, "Product")

    def list_for_owner(
        self, db: Session, *, retailer_id: Optional[int] = None, wholesaler_id: Optional[int] = None,
        category: Optional[str] = None, search: Optional[str] = None, active_only: bool = False,
        skip: int = 0, limit: int = 100
    ) -> List[Product]:
        stmt = select(Product)
        if retailer_id is not None:
            stmt = stmt.where(Product.retailer_id == retailer_id)
        if wholesaler_id is not None:
            stmt = stmt.where(Product.wholesaler_id == wholesaler_id)
        if category:
            stmt = stmt.where(Product.category == category)
        if search:
            like = f"%{search}%"
            stmt = stmt.where(or_(Product.name.ilike(like), Product.sku.ilike(like), Product.barcode.ilike(like)))
        if active_only:
            stmt = stmt.where(Product.status == "active")
        stmt = stmt.order_by(Product.name).offset(skip).limit(limit)
        return list(db.execute(stmt).scalars().all())

    def get_owned(
        self, db: Session, product_id: int, *, retailer_id: Optional[int] = None,
        wholesaler_id: Optional[int] = None, lock: bool = False
    ) -> Product:
        product = self.get_or_404(db, product_id, lock=lock)
        if retailer_id is not None and product.retailer_id != retailer_id:
            raise NotFoundError("Product not found")
        if wholesaler_id is not None and product.wholesaler_id != wholesaler_id:
            raise NotFoundError("Product not found")
        return product

    def find_by_barcode(self, db: Session, retailer_id: int, barcode: str) -> Optional[Product]:
        stmt = select(Product).where(Product.retailer_id == retailer_id, Product.barcode == barcode)
        return db.execute(stmt).scalars().first()

    def create_product(self, db: Session, *, obj_in: Dict[str, Any], user_id: Optional[int]) -> Product:
        """Create a product; opening stock is recorded as an INITIAL movement."""
        data = dict(obj_in)
        opening_stock = int(data.pop("stock", 0) or 0)
        if opening_stock < 0:
            raise ValidationFailedError("Stock cannot be negative")
        product = self.create(db, obj_in={**data, "stock": 0})
        if opening_stock:
            self.adjust_stock(db, product, opening_stock, SourceType.INITIAL, user_id=user_id, notes="Opening stock")
        return product

    def update_product(self, db: Session, product: Product, obj_in: Dict[str, Any], user_id: Optional[int]) -> Product:
        data = dict(obj_in)
        new_stock = data.pop("stock", None)
        for field, value in data.items():
            setattr(product, field, value)
        if new_stock is not None and int(new_stock) != product.stock:
            self.adjust_stock(
                db, product, int(new_stock) - product.stock, SourceType.ADJUSTMENT,
                user_id=user_id, notes="Manual stock update"
            )
        db.flush()
        return product

    def adjust_stock(
        self, db: Session, product: Product, change: int, source_type: str, *,
        source_id: Optional[int] = None, user_id: Optional[int] = None, notes: Optional[str] = None
    ) -> StockMovement:
        """Apply a signed stock change and append the movement."""
        if change == 0:
            raise ValidationFailedError("Stock change cannot be zero")
        if product.stock + change < 0:
            raise ValidationFailedError(
                f"Insufficient stock for {product.name}", available=product.stock, requested=-change
            )
        product.stock = product.stock + change
        movement = StockMovement(
            product_id=product.id,
            change=change,
            source_type=source_type,
            source_id=source_id,
            notes=notes,
            created_by=user_id,
        )
        db.add(movement)
        db.flush()
        return movement

    def movements(self, db: Session, product_id: int, *, skip: int = 0, limit: int = 100) -> List[StockMovement]:
        stmt = (
            select(StockMovement)
            .where(StockMovement.product_id == product_id)
            .order_by(StockMovement.created_at.desc(), StockMovement.id.desc())
            .offset(skip)
            .limit(limit)
        )
        return list(db.execute(stmt).scalars().all())

    def movement_total(self, db: Session, product_id: int) -> int:
        """SUM of movements; equals ``Product.stock`` while the ledger is intact."""
        stmt = select(func.coalesce(func.sum(StockMovement.change), 0)).where(StockMovement.product_id == product_id)
        return int(db.execute(stmt).scalar_one())

    def receive_wholesale(
        self, db: Session, retailer_id: int, source: Product, quantity: int, *,
        order_id: int, user_id: Optional[int]
    ) -> Product:
        """
        Merge delivered wholesale goods into a retailer's inventory.

        Matches an existing product by barcode, then SKU, then name; otherwise
        creates one priced at the default retail markup over the wholesale price.
        """
        target = None
        for column, value in ((Product.barcode, source.barcode), (Product.sku, source.sku), (Product.name, source.name)):
            if not value:
                continue
            target = db.execute(
                select(Product).where(Product.retailer_id == retailer_id, column == value).with_for_update()
            ).scalars().first()
            if target is not None:
                break

        if target is None:
            target = self.create(db, obj_in={
                "retailer_id": retailer_id,
                "name": source.name,
                "description": source.description,
                "sku": source.sku,
                "barcode": source.barcode,
                "category": source.category,
                "unit": source.unit,
                "price": money(money(source.price) * settings.DEFAULT_RETAIL_MARKUP),
                "cost_price": money(source.price),
                "stock": 0,
            })
            logger.info(f"Created retailer product {target.id} from wholesale product {source.id}")
        else:
            target.cost_price = money(source.price)

        self.adjust_stock(db, target, quantity, SourceType.WHOLESALE_IN, source_id=order_id, user_id=user_id,
                          notes=f"Wholesale order #{order_id} delivered")
        return target


crud_product = CRUDProduct()


def stock_status(product: Product) -> str:
    if product.stock <= 0:
        return "OUT"
    if product.stock <= product.low_stock_threshold:
        return "LOW"
    return "NORMAL"


def product_to_dict(product: Product) -> dict:
    return {
        "id": product.id,
        "name": product.name,
        "description": product.description,
        "sku": product.sku,
        "barcode": product.barcode,
        "category": product.category,
        "price": as_float(product.price),
        "cost_price": as_float(product.cost_price) if product.cost_price is not None else None,
        "stock": product.stock,
        "unit": product.unit,
        "low_stock_threshold": product.low_stock_threshold,
        "stock_status": stock_status(product),
        "status": product.status,
        "retailer_id": product.retailer_id,
        "wholesaler_id": product.wholesaler_id,
        "updated_at": iso(product.updated_at),
    }


def movement_to_dict(movement: StockMovement) -> dict:
    return {
        "id": movement.id,
        "product_id": movement.product_id,
        "change": movement.change,
        "source_type": movement.source_type,
        "source_id": movement.source_id,
        "notes": movement.notes,
        "created_by": movement.created_by,
        "created_at": iso(movement.created_at),
    }
