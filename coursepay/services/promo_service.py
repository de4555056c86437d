# coursepay/services/promo_service.py
import secrets
import string
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List

from sqlalchemy.orm import Session

from coursepay.data.models.promo_code import PromoCodeModel, PromoCodeUsageModel
from coursepay.domain.errors import PromoCodeError
from coursepay.domain.money import ZERO, to_money
from coursepay.repos.promo_repo import PromoRepo
from coursepay.utils.logging import get_logger
from coursepay.utils.settings import PAYMENT_CURRENCY

logger = get_logger(__name__)

CODE_ALPHABET = string.ascii_uppercase + string.digits


def normalize_code(code: str) -> str:
    return (code or "").strip().upper()


def generate_code(length: int = 8) -> str:
    return "".join(secrets.choice(CODE_ALPHABET) for _ in range(length))


def calculate_discount(promo: PromoCodeModel, subtotal: Decimal) -> Decimal:
    """
    percentage: subtotal * value / 100, capped by max_discount_amount
    fixed: min(value, subtotal)
    """
    subtotal = to_money(subtotal)
    value = Decimal(str(promo.discount_value))

    if promo.discount_type == "percentage":
        discount = subtotal * value / Decimal(100)
        if promo.max_discount_amount is not None and discount > Decimal(str(promo.max_discount_amount)):
            discount = Decimal(str(promo.max_discount_amount))
    else:
        discount = min(value, subtotal)

    return to_money(discount)


class PromoCodeService:
    def __init__(self, db: Session):
        self.repo = PromoRepo(db)

    def validate(
        self,
        code: str,
        user_id: int,
        cart_items: List[Dict[str, Any]],
        subtotal: Decimal,
        user_email: str | None = None,
    ) -> Dict[str, Any]:
        """
        Use Case: validate a promo code against a priced cart.

        Returns {success, promo_code, discount_amount, final_amount} or
        {success: False, error}. Nothing is written; usage is recorded only
        when a purchase completes.
        """
        try:
            promo = self._check_eligibility(normalize_code(code), user_id, cart_items, subtotal, user_email)
        except PromoCodeError as e:
            return {"success": False, "error": str(e)}

        subtotal = to_money(subtotal)
        discount_amount = calculate_discount(promo, subtotal)
        final_amount = to_money(subtotal - discount_amount)

        if discount_amount > subtotal or final_amount < ZERO:
            logger.error(
                f"Promo {promo.code} produced out-of-range discount {discount_amount} for subtotal {subtotal}"
            )
            return {"success": False, "error": "Invalid discount calculation"}

        return {
            "success": True,
            "promo_code": promo,
            "discount_amount": discount_amount,
            "final_amount": final_amount,
        }

    def _check_eligibility(self, code, user_id, cart_items, subtotal, user_email) -> PromoCodeModel:
        promo = self.repo.get_by_code(code) if code else None
        if not promo or not promo.is_active:
            raise PromoCodeError("Promo code not found")

        if not promo.is_valid(datetime.now(timezone.utc)):
            raise PromoCodeError("This promo code has expired or reached its usage limit")

        restricted = bool(promo.allowed_emails)
        if restricted:
            allowed = {e.strip().lower() for e in promo.allowed_emails}
            if not user_email or user_email.strip().lower() not in allowed:
                raise PromoCodeError("This promo code is not available for your account")

        if promo.is_single_use_only and promo.used_by_user_id is not None:
            raise PromoCodeError("This promo code has already been used")

        if not promo.allow_multiple_uses and promo.has_been_used_by(user_id):
            if restricted or promo.is_single_use_only:
                raise PromoCodeError("This promo code was issued for a single use and you have already redeemed it")
            raise PromoCodeError("You have already used this promo code")

        if to_money(subtotal) < to_money(promo.min_order_amount):
            raise PromoCodeError(
                f"Minimum order amount of {to_money(promo.min_order_amount)} {PAYMENT_CURRENCY} required"
            )

        if promo.applicable_to != "all":
            wanted = "bundle" if promo.applicable_to == "bundles" else "course"
            if not any(i["item_type"] == wanted for i in cart_items):
                raise PromoCodeError(f"This promo code is only applicable to {promo.applicable_to}")

        if promo.specific_items:
            specific = {str(i) for i in promo.specific_items}
            if not any(str(i["item_id"]) in specific for i in cart_items):
                raise PromoCodeError("This promo code is not applicable to the selected items")

        return promo

    def record_usage(
        self,
        promo_id: int,
        user_id: int,
        purchase_id: int,
        discount_amount: Decimal,
        original_amount: Decimal,
        final_amount: Decimal,
    ) -> bool:
        """Idempotent per (promo, purchase); returns False if already recorded."""
        promo = self.repo.get(promo_id)
        if not promo:
            logger.warning(f"Promo code {promo_id} vanished before usage could be recorded")
            return False

        if self.repo.has_usage_for_purchase(promo_id, purchase_id):
            return False

        self.repo.record_usage(
            PromoCodeUsageModel(
                promo_code_id=promo_id,
                user_id=user_id,
                purchase_id=purchase_id,
                discount_amount=to_money(discount_amount),
                original_amount=to_money(original_amount),
                final_amount=to_money(final_amount),
            ),
            single_use=bool(promo.is_single_use_only),
        )
        logger.info(f"Recorded usage of promo {promo.code} for purchase {purchase_id}")
        return True

    def create_promo_code(self, data: Dict[str, Any]) -> PromoCodeModel:
        code = normalize_code(data.get("code") or generate_code())

        if data.get("discount_type", "percentage") == "percentage" and Decimal(str(data["discount_value"])) > 100:
            raise PromoCodeError("Percentage discount cannot exceed 100%")

        if self.repo.get_by_code(code):
            raise PromoCodeError(f"Promo code {code} already exists")

        fields = {k: v for k, v in data.items() if k != "code" and v is not None}
        fields.setdefault("valid_from", datetime.now(timezone.utc))
        promo = PromoCodeModel(code=code, current_uses=0, **fields)
        created = self.repo.create(promo)

        logger.info(f"Created promo code {created.code}")
        return created


def applied_promo_snapshot(result: Dict[str, Any], subtotal: Decimal) -> Dict[str, Any]:
    """Advisory copy kept on the cart; amounts as strings so the JSON column can hold them."""
    promo = result["promo_code"]
    return {
        "code": promo.code,
        "id": promo.id,
        "discount_amount": str(result["discount_amount"]),
        "final_amount": str(result["final_amount"]),
        "original_amount": str(to_money(subtotal)),
    }
