# coursepay/services/paymob_client.py
from typing import Any, Dict, List

import requests
from requests import RequestException

from coursepay.domain.errors import PaymentGatewayError
from coursepay.domain.money import to_cents
from coursepay.services.payment_status import normalize_payment_result, verify_signature
from coursepay.utils import settings
from coursepay.utils.logging import get_logger
from coursepay.utils.retry import http_retry

logger = get_logger(__name__)

HEADERS = {
    "Content-Type": "application/json",
    "User-Agent": "CoursePay/1.0",
}

PAYMENT_KEY_EXPIRATION_SECONDS = 3600

# failure messages per stage: (timeout, generic)
_STAGE_MESSAGES = {
    "auth": (
        "Connection timeout to Paymob after {attempts} attempts. Please check your internet connection and try again.",
        "Failed to authenticate with Paymob. Please try again.",
    ),
    "order": (
        "Connection timeout while creating order. Please try again.",
        "Failed to create payment order",
    ),
    "payment_key": (
        "Connection timeout while generating payment key. Please try again.",
        "Failed to generate payment key",
    ),
    "inquiry": (
        "Connection timeout while checking payment status. Please contact support if your payment was successful.",
        "Failed to verify payment status. Please contact support if you believe the payment was successful.",
    ),
}


def _translate(error: Exception, stage: str, attempts: int) -> PaymentGatewayError:
    timeout_msg, generic_msg = _STAGE_MESSAGES[stage]

    if isinstance(error, (requests.Timeout, requests.ConnectionError)):
        return PaymentGatewayError(timeout_msg.format(attempts=attempts), stage)

    status = getattr(getattr(error, "response", None), "status_code", None)
    if status == 401:
        if stage == "auth":
            return PaymentGatewayError(
                "Invalid Paymob API key. Please check your configuration.", stage, transient=False
            )
        return PaymentGatewayError("Authentication with Paymob failed.", stage, transient=False)
    if status is not None and status >= 500:
        return PaymentGatewayError("Paymob server error. Please try again later.", stage)

    return PaymentGatewayError(generic_msg, stage)


class PaymobClient:
    """
    Paymob Accept API.

    auth token -> ecommerce order (keyed by merchant_order_id) -> payment key
    -> iframe url. Every call is retried with exponential backoff and
    bounded by a timeout; after the last attempt the error is turned into a
    PaymentGatewayError carrying the stage it failed in.
    """

    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        iframe_id: str | None = None,
        integration_id_card: str | None = None,
        integration_id_wallet: str | None = None,
        webhook_secret: str | None = None,
        timeout: int | None = None,
        inquiry_timeout: int | None = None,
        max_retries: int | None = None,
        backoff_seconds: float | None = None,
        session: requests.Session | None = None,
    ):
        self.base_url = (base_url or settings.PAYMOB_BASE_URL).rstrip("/")
        self.api_key = api_key if api_key is not None else settings.PAYMOB_API_KEY
        self.iframe_id = iframe_id if iframe_id is not None else settings.PAYMOB_IFRAME_ID
        self.integration_id_card = integration_id_card or settings.PAYMOB_INTEGRATION_ID_CARD
        self.integration_id_wallet = integration_id_wallet or settings.PAYMOB_INTEGRATION_ID_WALLET
        self.webhook_secret = webhook_secret if webhook_secret is not None else settings.PAYMOB_WEBHOOK_SECRET
        self.timeout = timeout or settings.PAYMOB_TIMEOUT_SECONDS
        self.inquiry_timeout = inquiry_timeout or settings.PAYMOB_INQUIRY_TIMEOUT_SECONDS
        self.max_retries = max_retries or settings.PAYMOB_MAX_RETRIES
        self.backoff_seconds = settings.PAYMOB_BACKOFF_SECONDS if backoff_seconds is None else backoff_seconds
        self.session = session or requests.Session()

        if not self.api_key:
            logger.warning("PAYMOB_API_KEY is not set")
        if not self.iframe_id:
            logger.warning("PAYMOB_IFRAME_ID is not set")

    def _post(self, path: str, body: dict, timeout: int) -> dict:
        url = f"{self.base_url}/api/{path}"
        logger.info(f"PaymobClient POST {url}")

        resp = self.session.post(url, json=body, timeout=timeout, headers=HEADERS)
        resp.raise_for_status()
        return resp.json()

    def _call(self, stage: str, path: str, body: dict, timeout: int | None = None) -> dict:
        call = http_retry(self.max_retries, self.backoff_seconds)(self._post)
        try:
            return call(path, body, timeout or self.timeout)
        except RequestException as e:
            logger.error(f"Paymob {stage} call failed after {self.max_retries} attempts: {e}")
            raise _translate(e, stage, self.max_retries) from e

    def get_auth_token(self) -> str:
        data = self._call("auth", "auth/tokens", {"api_key": self.api_key})
        token = data.get("token")
        if not token:
            raise PaymentGatewayError("Paymob returned no auth token", "auth")
        return token

    def create_order(
        self,
        auth_token: str,
        amount_cents: int,
        merchant_order_id: str | None = None,
        items: List[Dict[str, Any]] | None = None,
    ) -> str:
        body = {
            "auth_token": auth_token,
            "delivery_needed": "false",
            "amount_cents": amount_cents,
            "currency": settings.PAYMENT_CURRENCY,
            "items": [
                {
                    "name": item.get("title") or item.get("name"),
                    "amount_cents": to_cents(item.get("price", 0)),
                    "description": item.get("description", ""),
                    "quantity": item.get("quantity", 1),
                }
                for item in (items or [])
            ],
        }
        if merchant_order_id:
            body["merchant_order_id"] = merchant_order_id

        data = self._call("order", "ecommerce/orders", body)
        if not data.get("id"):
            raise PaymentGatewayError("Paymob returned no order id", "order")

        logger.info(f"Paymob order {data['id']} created for {merchant_order_id}")
        return str(data["id"])

    def generate_payment_key(
        self,
        auth_token: str,
        order_id: str,
        amount_cents: int,
        billing: Dict[str, Any],
        integration_id: str,
    ) -> str:
        body = {
            "auth_token": auth_token,
            "amount_cents": amount_cents,
            "expiration": PAYMENT_KEY_EXPIRATION_SECONDS,
            "order_id": order_id,
            "billing_data": {
                "apartment": billing.get("apartment") or "NA",
                "email": billing.get("email") or "customer@example.com",
                "floor": billing.get("floor") or "NA",
                "first_name": billing.get("first_name") or "Customer",
                "street": billing.get("address") or "NA",
                "building": billing.get("building") or "NA",
                "phone_number": billing.get("phone") or "NA",
                "shipping_method": "NA",
                "postal_code": billing.get("zip_code") or "NA",
                "city": billing.get("city") or "NA",
                "country": billing.get("country") or "EG",
                "last_name": billing.get("last_name") or "NA",
                "state": billing.get("state") or "NA",
            },
            "currency": settings.PAYMENT_CURRENCY,
            "integration_id": int(integration_id) if str(integration_id).isdigit() else integration_id,
            "redirection_url": billing.get("redirect_url")
            or f"{settings.BASE_DOMAIN}/purchase/payment/success",
        }

        data = self._call("payment_key", "acceptance/payment_keys", body)
        if not data.get("token"):
            raise PaymentGatewayError("Paymob returned no payment key", "payment_key")
        return data["token"]

    def iframe_url(self, payment_token: str) -> str:
        return f"{self.base_url}/api/acceptance/iframes/{self.iframe_id}?payment_token={payment_token}"

    def create_payment_session(
        self,
        order_data: Dict[str, Any],
        billing: Dict[str, Any],
        payment_method: str = "card",
    ) -> Dict[str, Any]:
        """
        order_data: {total, merchant_order_id, items}
        Returns {success, iframe_url, order_id, payment_token, ...} or
        {success: False, error, stage}.
        """
        amount_cents = to_cents(order_data["total"])
        order_id = None
        try:
            token = self.get_auth_token()
            order_id = self.create_order(
                token,
                amount_cents,
                order_data.get("merchant_order_id"),
                order_data.get("items"),
            )
            integration_id = (
                self.integration_id_wallet if payment_method == "wallet" else self.integration_id_card
            )
            payment_token = self.generate_payment_key(token, order_id, amount_cents, billing, integration_id)
        except PaymentGatewayError as e:
            logger.error(f"Error creating payment session ({e.stage}): {e}")
            return {"success": False, "error": str(e), "stage": e.stage, "order_id": order_id}

        return {
            "success": True,
            "order_id": order_id,
            "payment_token": payment_token,
            "iframe_url": self.iframe_url(payment_token),
            "merchant_order_id": order_data.get("merchant_order_id"),
            "amount_cents": amount_cents,
        }

    def query_transaction_status(
        self,
        merchant_order_id: str | None,
        paymob_order_id: str | None = None,
        transaction_id: str | None = None,
    ) -> dict:
        """Transaction inquiry by whatever correlation ids we have."""
        token = self.get_auth_token()
        body: Dict[str, Any] = {"auth_token": token}
        if merchant_order_id:
            body["merchant_order_id"] = merchant_order_id
        elif paymob_order_id:
            body["order_id"] = paymob_order_id
        elif transaction_id:
            body["transaction_id"] = transaction_id
        else:
            raise ValueError("No correlation id to query")

        return self._call("inquiry", "ecommerce/orders/transaction_inquiry", body, self.inquiry_timeout)

    def verify_webhook_signature(self, raw_body: bytes, signature: str | None) -> bool:
        return verify_signature(raw_body, signature, self.webhook_secret)

    @staticmethod
    def process_webhook_payload(payload: dict | None, query_params: dict | None = None) -> dict:
        return normalize_payment_result(payload, query_params)
