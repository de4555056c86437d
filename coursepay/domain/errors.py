# coursepay/domain/errors.py


class CartError(ValueError):
    """Cart validation failure (unknown item, duplicate, already owned)."""


class ItemNotFoundError(CartError):
    pass


class PromoCodeError(ValueError):
    pass


class CheckoutError(ValueError):
    """Checkout input rejected before any state was written."""


class PurchaseNotFoundError(LookupError):
    pass


class PaymentGatewayError(RuntimeError):
    """
    Raised by the Paymob client once retries are exhausted.

    stage: auth, order, payment_key or inquiry
    transient: False only for configuration faults (invalid api key)
    """

    def __init__(self, message: str, stage: str, transient: bool = True):
        super().__init__(message)
        self.stage = stage
        self.transient = transient


class UserNotFoundError(LookupError):
    pass
