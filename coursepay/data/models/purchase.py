# coursepay/data/models/purchase.py
from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, JSON, Numeric, String
from sqlalchemy.orm import relationship

from coursepay.data.database import Base

PENDING = "pending"
COMPLETED = "completed"
FAILED = "failed"


class PurchaseModel(Base):
    __tablename__ = "purchases"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    order_number = Column(String, nullable=False, unique=True)

    subtotal = Column(Numeric(10, 2), nullable=False)
    tax = Column(Numeric(10, 2), nullable=False, default=0)
    total = Column(Numeric(10, 2), nullable=False)
    currency = Column(String(3), nullable=False, default="EGP")

    payment_method = Column(String, nullable=False, default="card")
    billing_address = Column(JSON, nullable=False, default=dict)

    status = Column(String, nullable=False, default=PENDING, index=True)  # pending, completed, failed
    payment_status = Column(String, nullable=False, default=PENDING)

    # merchant order id, sent to the gateway as merchant_order_id
    payment_intent_id = Column(String, nullable=False, unique=True, index=True)
    paymob_order_id = Column(String, nullable=True)
    paymob_transaction_id = Column(String, nullable=True)
    payment_gateway_response = Column(JSON, nullable=True)
    failure_reason = Column(String, nullable=True)

    applied_promo_code_id = Column(Integer, ForeignKey("promo_codes.id"), nullable=True)
    discount_amount = Column(Numeric(10, 2), nullable=False, default=0)
    original_amount = Column(Numeric(10, 2), nullable=False, default=0)

    notification_sent = Column(Boolean, nullable=False, default=False)
    reconciled_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        index=True,
    )

    items = relationship(
        "PurchaseItemModel",
        back_populates="purchase",
        cascade="all, delete-orphan",
        order_by="PurchaseItemModel.id",
    )


class PurchaseItemModel(Base):
    __tablename__ = "purchase_items"

    id = Column(Integer, primary_key=True)
    purchase_id = Column(Integer, ForeignKey("purchases.id", ondelete="CASCADE"), nullable=False)

    item_type = Column(String, nullable=False)  # course, bundle
    item_id = Column(Integer, nullable=False)
    title = Column(String, nullable=False)
    price = Column(Numeric(10, 2), nullable=False)
    quantity = Column(Integer, nullable=False, default=1)

    purchase = relationship("PurchaseModel", back_populates="items")
