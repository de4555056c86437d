# coursepay/data/models/promo_code.py
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    JSON,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from coursepay.data.database import Base


def _now():
    return datetime.now(timezone.utc)


def _aware(value: datetime) -> datetime:
    # sqlite hands back naive datetimes
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class PromoCodeModel(Base):
    __tablename__ = "promo_codes"

    id = Column(Integer, primary_key=True)
    code = Column(String(20), nullable=False, unique=True, index=True)
    name = Column(String(100), nullable=False, default="")

    discount_type = Column(String, nullable=False, default="percentage")  # percentage, fixed
    discount_value = Column(Numeric(10, 2), nullable=False)
    max_discount_amount = Column(Numeric(10, 2), nullable=True)
    min_order_amount = Column(Numeric(10, 2), nullable=False, default=0)

    max_uses = Column(Integer, nullable=True)  # None = unlimited
    current_uses = Column(Integer, nullable=False, default=0)
    allow_multiple_uses = Column(Boolean, nullable=False, default=False)

    is_single_use_only = Column(Boolean, nullable=False, default=False)
    used_by_user_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    allowed_emails = Column(JSON, nullable=False, default=list)

    valid_from = Column(DateTime(timezone=True), nullable=False, default=_now)
    valid_until = Column(DateTime(timezone=True), nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)

    applicable_to = Column(String, nullable=False, default="all")  # all, bundles, courses
    specific_items = Column(JSON, nullable=False, default=list)

    usage_history = relationship(
        "PromoCodeUsageModel",
        back_populates="promo_code",
        cascade="all, delete-orphan",
    )

    def is_valid(self, now: datetime | None = None) -> bool:
        now = now or _now()
        return (
            bool(self.is_active)
            and _aware(self.valid_from) <= now <= _aware(self.valid_until)
            and (self.max_uses is None or self.current_uses < self.max_uses)
        )

    def has_been_used_by(self, user_id: int) -> bool:
        return any(str(u.user_id) == str(user_id) for u in self.usage_history)


class PromoCodeUsageModel(Base):
    __tablename__ = "promo_code_usages"

    id = Column(Integer, primary_key=True)
    promo_code_id = Column(Integer, ForeignKey("promo_codes.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    purchase_id = Column(Integer, ForeignKey("purchases.id"), nullable=False)

    discount_amount = Column(Numeric(10, 2), nullable=False)
    original_amount = Column(Numeric(10, 2), nullable=False)
    final_amount = Column(Numeric(10, 2), nullable=False)
    used_at = Column(DateTime(timezone=True), nullable=False, default=_now)

    promo_code = relationship("PromoCodeModel", back_populates="usage_history")

    __table_args__ = (UniqueConstraint("promo_code_id", "purchase_id", name="u_promo_usage_purchase"),)
