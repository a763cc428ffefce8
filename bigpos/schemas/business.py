"""
Retailer and wholesaler request schemas: inventory, POS, wholesale orders,
credit, link requests and gateway callbacks.
"""
from pydantic import BaseModel, Field, field_validator
from typing import Optional, List
from decimal import Decimal
from enum import Enum


class OrderStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PROCESSING = "processing"
    READY = "ready"
    COMPLETED = "completed"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class POSPaymentMethod(str, Enum):
    CASH = "cash"
    NFC = "nfc"
    WALLET = "wallet"
    DASHBOARD_WALLET = "dashboard_wallet"
    MOBILE_MONEY = "mobile_money"


class WholesalePaymentMethod(str, Enum):
    WALLET = "wallet"
    CREDIT = "credit"
    MOMO = "momo"


# Inventory
class ProductCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=150)
    description: Optional[str] = None
    sku: Optional[str] = Field(None, max_length=60)
    barcode: Optional[str] = Field(None, max_length=60)
    category: Optional[str] = Field(None, max_length=60)
    price: Decimal = Field(..., gt=0)
    cost_price: Optional[Decimal] = Field(None, ge=0)
    stock: int = Field(0, ge=0)
    unit: str = Field("unit", max_length=20)
    low_stock_threshold: int = Field(10, ge=0)


class ProductUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=150)
    description: Optional[str] = None
    sku: Optional[str] = Field(None, max_length=60)
    barcode: Optional[str] = Field(None, max_length=60)
    category: Optional[str] = Field(None, max_length=60)
    price: Optional[Decimal] = Field(None, gt=0)
    cost_price: Optional[Decimal] = Field(None, ge=0)
    stock: Optional[int] = Field(None, ge=0)
    unit: Optional[str] = Field(None, max_length=20)
    low_stock_threshold: Optional[int] = Field(None, ge=0)
    status: Optional[str] = Field(None, pattern=r"^(active|inactive)$")


class StockUpdate(BaseModel):
    stock: int = Field(..., ge=0)
    notes: Optional[str] = None


# Orders and POS
class OrderStatusUpdate(BaseModel):
    status: OrderStatus
    reason: Optional[str] = Field(None, max_length=500)


class PaymentDetails(BaseModel):
    uid: Optional[str] = None
    pin: Optional[str] = None


class POSItem(BaseModel):
    product_id: int = Field(..., gt=0)
    quantity: int = Field(..., gt=0)


class POSSaleCreate(BaseModel):
    items: List[POSItem] = Field(default_factory=list)
    payment_method: POSPaymentMethod = POSPaymentMethod.CASH
    tax_amount: Decimal = Field(Decimal('0'), ge=0)
    discount: Decimal = Field(Decimal('0'), ge=0)
    customer_phone: Optional[str] = Field(None, max_length=20)
    payment_details: Optional[PaymentDetails] = None
    gas_reward_wallet_id: Optional[str] = Field(None, max_length=32)


class BarcodeScan(BaseModel):
    barcode: str = Field(..., min_length=1, max_length=60)


# Retailer wallet and wholesale
class RetailerWalletTopup(BaseModel):
    amount: Decimal = Field(..., gt=0)
    phone_number: Optional[str] = Field(None, max_length=20)


class WholesaleItem(BaseModel):
    product_id: int = Field(..., gt=0)
    quantity: int = Field(..., gt=0)


class WholesaleOrderCreate(BaseModel):
    items: List[WholesaleItem] = Field(..., min_length=1)
    payment_method: WholesalePaymentMethod = WholesalePaymentMethod.WALLET
    phone_number: Optional[str] = Field(None, max_length=20)
    notes: Optional[str] = None


class CreditRequestCreate(BaseModel):
    amount: Decimal = Field(..., gt=0)
    reason: Optional[str] = Field(None, max_length=500)


class CreditRepay(BaseModel):
    amount: Decimal = Field(..., gt=0)


class ReviewDecision(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)


class WholesalerLink(BaseModel):
    wholesaler_id: int = Field(..., gt=0)
    credit_limit: Optional[Decimal] = Field(None, ge=0)


class WholesalerLinkRequestCreate(BaseModel):
    wholesaler_id: int = Field(..., gt=0)
    message: Optional[str] = Field(None, max_length=500)


class LinkApproval(BaseModel):
    credit_limit: Optional[Decimal] = Field(None, ge=0)


class CreditLimitUpdate(BaseModel):
    credit_limit: Decimal = Field(..., ge=0)

    @field_validator('credit_limit', mode='before')
    @classmethod
    def strip_thousands(cls, v):
        # "350,000" as typed into the dashboard
        return v.replace(",", "") if isinstance(v, str) else v


# Payment gateway callbacks
class PalmKashCallback(BaseModel):
    reference: Optional[str] = None
    status: Optional[str] = None
    transaction_id: Optional[str] = None
    amount: Optional[Decimal] = None
