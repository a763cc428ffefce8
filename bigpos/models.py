"""
SQLAlchemy 2.x models.

Money is stored as Numeric and handled as Decimal; gas units keep four
decimal places. Ledger tables (wallet_transactions, stock_movements,
gas_rewards, audit_logs) are append-only.
"""
from sqlalchemy import (
    Column, Integer, String, Numeric, Boolean, DateTime, ForeignKey, Text, JSON,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship
from datetime import datetime
from decimal import Decimal

from bigpos.database import Base


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True)
    email = Column(String(120), unique=True)
    phone = Column(String(20), unique=True)
    name = Column(String(100))
    password_hash = Column(String(255), nullable=False)
    pin_hash = Column(String(255))
    role = Column(String(20), nullable=False, default='consumer')
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    consumer_profile = relationship("ConsumerProfile", uselist=False, back_populates="user")
    retailer_profile = relationship("RetailerProfile", uselist=False, back_populates="user")
    wholesaler_profile = relationship("WholesalerProfile", uselist=False, back_populates="user")


class ConsumerProfile(Base):
    __tablename__ = "consumer_profiles"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id"), unique=True, nullable=False)
    full_name = Column(String(100))
    address = Column(Text)
    is_verified = Column(Boolean, nullable=False, default=False)
    gas_reward_wallet_id = Column(String(32), unique=True)
    rewards_points = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, default=datetime.utcnow)

    user = relationship("User", back_populates="consumer_profile")
    wallets = relationship("Wallet", back_populates="consumer")


class RetailerProfile(Base):
    __tablename__ = "retailer_profiles"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id"), unique=True, nullable=False)
    shop_name = Column(String(120), nullable=False)
    address = Column(Text)
    province = Column(String(60))
    district = Column(String(60))
    sector = Column(String(60))
    is_verified = Column(Boolean, nullable=False, default=False)
    wallet_balance = Column(Numeric(14, 2), nullable=False, default=Decimal('0'))
    credit_limit = Column(Numeric(14, 2), nullable=False, default=Decimal('0'))
    linked_wholesaler_id = Column(Integer, ForeignKey("wholesaler_profiles.id"))
    created_at = Column(DateTime, default=datetime.utcnow)

    user = relationship("User", back_populates="retailer_profile")
    linked_wholesaler = relationship("WholesalerProfile")


class WholesalerProfile(Base):
    __tablename__ = "wholesaler_profiles"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id"), unique=True, nullable=False)
    company_name = Column(String(120), nullable=False)
    address = Column(Text)
    created_at = Column(DateTime, default=datetime.utcnow)

    user = relationship("User", back_populates="wholesaler_profile")


class Wallet(Base):
    __tablename__ = "wallets"
    __table_args__ = (UniqueConstraint("consumer_id", "type", name="uq_wallet_consumer_type"),)

    id = Column(Integer, primary_key=True)
    consumer_id = Column(Integer, ForeignKey("consumer_profiles.id"), nullable=False)
    type = Column(String(30), nullable=False)
    balance = Column(Numeric(14, 2), nullable=False, default=Decimal('0'))
    currency = Column(String(3), nullable=False, default='RWF')
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    consumer = relationship("ConsumerProfile", back_populates="wallets")
    transactions = relationship("WalletTransaction", back_populates="wallet")


class WalletTransaction(Base):
    __tablename__ = "wallet_transactions"

    id = Column(Integer, primary_key=True)
    wallet_id = Column(Integer, ForeignKey("wallets.id"), nullable=False)
    type = Column(String(40), nullable=False)
    amount = Column(Numeric(14, 2), nullable=False)
    description = Column(Text)
    reference = Column(String(100))
    status = Column(String(20), nullable=False, default='completed')
    created_at = Column(DateTime, default=datetime.utcnow)

    wallet = relationship("Wallet", back_populates="transactions")


class CustomerLinkRequest(Base):
    __tablename__ = "customer_link_requests"
    __table_args__ = (UniqueConstraint("customer_id", "retailer_id", name="uq_link_customer_retailer"),)

    id = Column(Integer, primary_key=True)
    customer_id = Column(Integer, ForeignKey("consumer_profiles.id"), nullable=False)
    retailer_id = Column(Integer, ForeignKey("retailer_profiles.id"), nullable=False)
    status = Column(String(20), nullable=False, default='pending')
    message = Column(Text)
    rejection_reason = Column(Text)
    responded_at = Column(DateTime)
    created_at = Column(DateTime, default=datetime.utcnow)

    customer = relationship("ConsumerProfile")
    retailer = relationship("RetailerProfile")


class Product(Base):
    __tablename__ = "products"

    id = Column(Integer, primary_key=True)
    retailer_id = Column(Integer, ForeignKey("retailer_profiles.id"))
    wholesaler_id = Column(Integer, ForeignKey("wholesaler_profiles.id"))
    name = Column(String(150), nullable=False)
    description = Column(Text)
    sku = Column(String(60))
    barcode = Column(String(60))
    category = Column(String(60))
    price = Column(Numeric(14, 2), nullable=False)
    cost_price = Column(Numeric(14, 2))
    stock = Column(Integer, nullable=False, default=0)
    unit = Column(String(20), default='unit')
    low_stock_threshold = Column(Integer, nullable=False, default=10)
    status = Column(String(20), nullable=False, default='active')
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    movements = relationship("StockMovement", back_populates="product")


class StockMovement(Base):
    __tablename__ = "stock_movements"

    id = Column(Integer, primary_key=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False)
    change = Column(Integer, nullable=False)
    source_type = Column(String(20), nullable=False)
    source_id = Column(Integer)
    notes = Column(Text)
    created_by = Column(Integer, ForeignKey("users.id"))
    created_at = Column(DateTime, default=datetime.utcnow)

    product = relationship("Product", back_populates="movements")


class NfcCard(Base):
    __tablename__ = "nfc_cards"

    id = Column(Integer, primary_key=True)
    uid = Column(String(64), unique=True, nullable=False)
    pin_hash = Column(String(255))
    status = Column(String(20), nullable=False, default='available')
    balance = Column(Numeric(14, 2), nullable=False, default=Decimal('0'))
    consumer_id = Column(Integer, ForeignKey("consumer_profiles.id"))
    nickname = Column(String(60))
    is_primary = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    consumer = relationship("ConsumerProfile")


class Sale(Base):
    __tablename__ = "sales"

    id = Column(Integer, primary_key=True)
    consumer_id = Column(Integer, ForeignKey("consumer_profiles.id"))
    retailer_id = Column(Integer, ForeignKey("retailer_profiles.id"), nullable=False)
    subtotal = Column(Numeric(14, 2), nullable=False, default=Decimal('0'))
    tax_amount = Column(Numeric(14, 2), nullable=False, default=Decimal('0'))
    discount = Column(Numeric(14, 2), nullable=False, default=Decimal('0'))
    total_amount = Column(Numeric(14, 2), nullable=False)
    amount_paid = Column(Numeric(14, 2), nullable=False, default=Decimal('0'))
    reward_gas_applied = Column(Numeric(14, 2), nullable=False, default=Decimal('0'))
    payment_method = Column(String(30), nullable=False)
    card_id = Column(Integer, ForeignKey("nfc_cards.id"))
    external_ref = Column(String(100))
    reward_wallet_id = Column(String(32))
    customer_phone = Column(String(20))
    origin = Column(String(10), nullable=False, default='store')
    status = Column(String(20), nullable=False, default='pending')
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    consumer = relationship("ConsumerProfile")
    retailer = relationship("RetailerProfile")
    card = relationship("NfcCard")
    items = relationship("SaleItem", back_populates="sale")


class SaleItem(Base):
    __tablename__ = "sale_items"

    id = Column(Integer, primary_key=True)
    sale_id = Column(Integer, ForeignKey("sales.id"), nullable=False)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False)
    quantity = Column(Integer, nullable=False)
    price = Column(Numeric(14, 2), nullable=False)

    sale = relationship("Sale", back_populates="items")
    product = relationship("Product")


class Loan(Base):
    __tablename__ = "loans"

    id = Column(Integer, primary_key=True)
    consumer_id = Column(Integer, ForeignKey("consumer_profiles.id"), nullable=False)
    amount = Column(Numeric(14, 2), nullable=False)
    amount_repaid = Column(Numeric(14, 2), nullable=False, default=Decimal('0'))
    purpose = Column(Text)
    loan_type = Column(String(20), default='cash')
    status = Column(String(20), nullable=False, default='pending')
    due_date = Column(DateTime)
    approved_at = Column(DateTime)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    consumer = relationship("ConsumerProfile")


class GasMeter(Base):
    __tablename__ = "gas_meters"

    id = Column(Integer, primary_key=True)
    consumer_id = Column(Integer, ForeignKey("consumer_profiles.id"), nullable=False)
    meter_number = Column(String(40), unique=True, nullable=False)
    alias_name = Column(String(60))
    owner_name = Column(String(100))
    owner_phone = Column(String(20))
    id_number = Column(String(40))
    status = Column(String(20), nullable=False, default='active')
    created_at = Column(DateTime, default=datetime.utcnow)

    topups = relationship("GasTopup", back_populates="meter")


class GasTopup(Base):
    __tablename__ = "gas_topups"

    id = Column(Integer, primary_key=True)
    consumer_id = Column(Integer, ForeignKey("consumer_profiles.id"), nullable=False)
    meter_id = Column(Integer, ForeignKey("gas_meters.id"), nullable=False)
    amount = Column(Numeric(14, 2), nullable=False, default=Decimal('0'))
    units = Column(Numeric(14, 4), nullable=False)
    token = Column(String(24))
    payment_method = Column(String(30))
    status = Column(String(20), nullable=False, default='completed')
    note = Column(Text)
    created_at = Column(DateTime, default=datetime.utcnow)

    meter = relationship("GasMeter", back_populates="topups")


class GasReward(Base):
    __tablename__ = "gas_rewards"

    id = Column(Integer, primary_key=True)
    consumer_id = Column(Integer, ForeignKey("consumer_profiles.id"), nullable=False)
    sale_id = Column(Integer, ForeignKey("sales.id"))
    reward_wallet_id = Column(String(32))
    units = Column(Numeric(14, 4), nullable=False)
    profit_amount = Column(Numeric(14, 2))
    source = Column(String(30), nullable=False)
    reference = Column(String(100))
    created_at = Column(DateTime, default=datetime.utcnow)


class CustomerOrder(Base):
    __tablename__ = "customer_orders"

    id = Column(Integer, primary_key=True)
    consumer_id = Column(Integer, ForeignKey("consumer_profiles.id"), nullable=False)
    order_type = Column(String(20), nullable=False)
    status = Column(String(20), nullable=False, default='pending')
    amount = Column(Numeric(14, 2), nullable=False)
    items = Column(JSON)
    details = Column(JSON)
    created_at = Column(DateTime, default=datetime.utcnow)


class RetailerCredit(Base):
    __tablename__ = "retailer_credits"

    id = Column(Integer, primary_key=True)
    retailer_id = Column(Integer, ForeignKey("retailer_profiles.id"), unique=True, nullable=False)
    credit_limit = Column(Numeric(14, 2), nullable=False, default=Decimal('0'))
    used_credit = Column(Numeric(14, 2), nullable=False, default=Decimal('0'))
    available_credit = Column(Numeric(14, 2), nullable=False, default=Decimal('0'))
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class CreditRequest(Base):
    __tablename__ = "credit_requests"

    id = Column(Integer, primary_key=True)
    retailer_id = Column(Integer, ForeignKey("retailer_profiles.id"), nullable=False)
    wholesaler_id = Column(Integer, ForeignKey("wholesaler_profiles.id"))
    amount = Column(Numeric(14, 2), nullable=False)
    reason = Column(Text)
    status = Column(String(20), nullable=False, default='pending')
    review_notes = Column(Text)
    reviewed_at = Column(DateTime)
    created_at = Column(DateTime, default=datetime.utcnow)

    retailer = relationship("RetailerProfile")


class WholesalerLinkRequest(Base):
    __tablename__ = "wholesaler_link_requests"
    __table_args__ = (UniqueConstraint("retailer_id", "wholesaler_id", name="uq_link_retailer_wholesaler"),)

    id = Column(Integer, primary_key=True)
    retailer_id = Column(Integer, ForeignKey("retailer_profiles.id"), nullable=False)
    wholesaler_id = Column(Integer, ForeignKey("wholesaler_profiles.id"), nullable=False)
    status = Column(String(20), nullable=False, default='pending')
    message = Column(Text)
    rejection_reason = Column(Text)
    responded_at = Column(DateTime)
    created_at = Column(DateTime, default=datetime.utcnow)

    retailer = relationship("RetailerProfile")
    wholesaler = relationship("WholesalerProfile")


class WholesaleOrder(Base):
    __tablename__ = "wholesale_orders"

    id = Column(Integer, primary_key=True)
    retailer_id = Column(Integer, ForeignKey("retailer_profiles.id"), nullable=False)
    wholesaler_id = Column(Integer, ForeignKey("wholesaler_profiles.id"), nullable=False)
    total_amount = Column(Numeric(14, 2), nullable=False)
    amount_paid = Column(Numeric(14, 2), nullable=False, default=Decimal('0'))
    payment_method = Column(String(20), nullable=False)
    payment_status = Column(String(20), nullable=False, default='unpaid')
    external_ref = Column(String(100))
    status = Column(String(20), nullable=False, default='pending')
    notes = Column(Text)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    retailer = relationship("RetailerProfile")
    wholesaler = relationship("WholesalerProfile")
    items = relationship("WholesaleOrderItem", back_populates="order")


class WholesaleOrderItem(Base):
    __tablename__ = "wholesale_order_items"

    id = Column(Integer, primary_key=True)
    order_id = Column(Integer, ForeignKey("wholesale_orders.id"), nullable=False)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False)
    quantity = Column(Integer, nullable=False)
    price = Column(Numeric(14, 2), nullable=False)

    order = relationship("WholesaleOrder", back_populates="items")
    product = relationship("Product")


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id"))
    action = Column(String(50), nullable=False)
    table_name = Column(String(50))
    record_id = Column(Integer)
    old_values = Column(JSON)
    new_values = Column(JSON)
    notes = Column(Text)
    created_at = Column(DateTime, default=datetime.utcnow)
