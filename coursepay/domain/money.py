# coursepay/domain/money.py
from decimal import Decimal, ROUND_HALF_UP

ZERO = Decimal("0.00")
CENT = Decimal("0.01")


def to_money(value) -> Decimal:
    if value is None:
        return ZERO
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def to_cents(value) -> int:
    return int((to_money(value) * 100).to_integral_value(rounding=ROUND_HALF_UP))


def discounted_price(price, discount_percent) -> Decimal:
    """final = price - price * percent / 100, clamped to [0, price]."""
    price = to_money(price)
    percent = Decimal(str(discount_percent or 0))
    if percent <= 0:
        return price
    if percent >= 100:
        return ZERO
    return max(ZERO, to_money(price - price * percent / Decimal(100)))
