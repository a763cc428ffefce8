"""
Consumer-facing request schemas: wallets, orders, loans, gas and rewards.
"""
from pydantic import BaseModel, Field, field_validator, model_validator
from typing import Optional, List
from decimal import Decimal
from enum import Enum


class OrderPaymentMethod(str, Enum):
    WALLET = "wallet"
    DASHBOARD_WALLET = "dashboard_wallet"
    CREDIT_WALLET = "credit_wallet"
    NFC_CARD = "nfc_card"
    MOBILE_MONEY = "mobile_money"


class TopupPaymentMethod(str, Enum):
    WALLET = "wallet"
    NFC_CARD = "nfc_card"
    MOBILE_MONEY = "mobile_money"


class RepaymentMethod(str, Enum):
    WALLET = "wallet"
    CREDIT_WALLET = "credit_wallet"
    MOBILE_MONEY = "mobile_money"


# Wallets
class WalletTopup(BaseModel):
    amount: Decimal = Field(..., gt=0)
    payment_method: str = "mobile_money"
    phone_number: Optional[str] = Field(None, max_length=20)


class RefundRequest(BaseModel):
    amount: Decimal = Field(..., gt=0)
    reason: Optional[str] = Field(None, max_length=500)


# Retailer linking
class LinkRequestCreate(BaseModel):
    retailer_id: int = Field(..., gt=0)
    message: Optional[str] = Field(None, max_length=500)


# Orders
class OrderItemIn(BaseModel):
    product_id: int = Field(..., gt=0)
    quantity: int = Field(..., gt=0)


class OrderCreate(BaseModel):
    retailer_id: Optional[int] = None
    items: List[OrderItemIn] = Field(default_factory=list)
    payment_method: OrderPaymentMethod = OrderPaymentMethod.WALLET
    card_id: Optional[int] = None
    phone_number: Optional[str] = Field(None, max_length=20)
    apply_reward_gas: bool = False
    reward_gas_amount: Decimal = Field(Decimal('0'), ge=0)
    gas_reward_wallet_id: Optional[str] = Field(None, max_length=32)
    meter_id: Optional[str] = Field(None, max_length=32)

    @property
    def reward_wallet_id(self) -> Optional[str]:
        value = self.gas_reward_wallet_id or self.meter_id
        return value.strip() if value and value.strip() else None


class OrderCancel(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)


# Loans
class LoanApply(BaseModel):
    amount: Decimal = Field(..., gt=0)
    purpose: Optional[str] = Field(None, max_length=500)
    loan_product_id: Optional[str] = None


class LoanRepay(BaseModel):
    amount: Decimal = Field(..., gt=0)
    payment_method: RepaymentMethod = RepaymentMethod.WALLET
    phone_number: Optional[str] = Field(None, max_length=20)


# Gas
class GasMeterCreate(BaseModel):
    meter_number: str = Field(..., min_length=3, max_length=40)
    alias_name: Optional[str] = Field(None, max_length=60)
    owner_name: Optional[str] = Field(None, max_length=100)
    owner_phone: Optional[str] = Field(None, max_length=20)
    id_number: Optional[str] = Field(None, max_length=40)

    @field_validator('meter_number')
    @classmethod
    def strip_meter_number(cls, v: str) -> str:
        return v.strip()


class GasTopupCreate(BaseModel):
    meter_number: str = Field(..., min_length=1, max_length=40)
    amount: Decimal = Field(..., gt=0)
    payment_method: TopupPaymentMethod = TopupPaymentMethod.WALLET
    card_id: Optional[int] = None
    phone_number: Optional[str] = Field(None, max_length=20)


class GasUsageCreate(BaseModel):
    meter_id: int = Field(..., gt=0)
    units: Decimal = Field(..., gt=0)
    note: Optional[str] = Field(None, max_length=200)


class RedeemPoints(BaseModel):
    points: int = Field(..., gt=0)


# NFC
class CardLink(BaseModel):
    uid: str = Field(..., min_length=4, max_length=64)
    pin: str = Field(..., pattern=r"^\d{4}$")
    nickname: Optional[str] = Field(None, max_length=60)


class CardPinUpdate(BaseModel):
    old_pin: Optional[str] = None
    new_pin: str = Field(..., pattern=r"^\d{4}$")


class CardNickname(BaseModel):
    nickname: str = Field(..., min_length=1, max_length=60)


class CardTopup(BaseModel):
    amount: Decimal = Field(..., gt=0)


class CardRegister(BaseModel):
    uid: str = Field(..., min_length=4, max_length=64)
    user_id: Optional[int] = None
    phone: Optional[str] = None
    pin: Optional[str] = Field(None, pattern=r"^\d{4}$")
    nickname: Optional[str] = Field(None, max_length=60)

    @model_validator(mode="after")
    def one_owner_key(self):
        if self.user_id and self.phone:
            raise ValueError("Provide either user_id or phone, not both")
        return self
