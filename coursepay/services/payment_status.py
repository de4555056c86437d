# coursepay/services/payment_status.py
"""
Normalization of Paymob success/failure signals.

Paymob reports the outcome of a transaction in different fields depending on
where the data comes from: the webhook POST body (usually wrapped in ``obj``),
the browser redirect query string (flat strings such as ``success=true``), or
a transaction inquiry response. ``normalize_payment_result`` collapses all of
them into one of three states.

Success needs an explicit positive signal and no failure signal at all.
Anything matching neither side stays pending.
"""
import hashlib
import hmac
import re
from typing import Any, Dict, Mapping

FAILED_INDICATORS = frozenset(
    {
        "DECLINED",
        "FAILED",
        "CHARGEBACK",
        "CANCELLED",
        "VOID",
        "AUTHENTICATION_FAILED",
        "DO_NOT_PROCEED",
        "REJECTED",
        "TIMEOUT",
        "EXPIRED",
        "INSUFFICIENT_FUNDS",
        "INVALID_CARD",
        "BLOCKED",
        "FRAUD_SUSPECTED",
        "CARD_EXPIRED",
        "INVALID_CVV",
        "LIMIT_EXCEEDED",
        "PICKUP_CARD",
        "RESTRICTED_CARD",
        "SECURITY_VIOLATION",
    }
)

# issuer response codes that mean decline
FAILURE_RESPONSE_CODES = frozenset(
    {"1", "2", "3", "4", "5", "6", "7", "12", "13", "14", "15", "17", "20", "30"}
)

ERROR_MESSAGES = {
    "0": "Transaction approved",
    "1": "Refer to issuer - card problem, try alternate method or contact bank.",
    "2": "Refer to issuer (special) - card issue, contact bank.",
    "3": "Invalid merchant or service provider - check your Paymob account setup.",
    "4": "Pickup card - card declined by bank.",
    "5": "Do not honour - bank declined transaction.",
    "6": "Error - card declined.",
    "7": "Pickup card (special) - card flagged.",
    "8": "Honour with identification - approval but extra ID required.",
    "9": "Request in progress - awaiting response.",
    "10": "Approved for partial amount - only part of amount processed.",
    "12": "Invalid transaction - check card details and try again.",
    "13": "Invalid amount - check the amount format or currency.",
    "14": "Invalid card number - card number is incorrect.",
    "15": "No issuer - card's bank not found.",
    "17": "Customer cancellation - customer cancelled the transaction.",
    "18": "Customer dispute - card issuer blocked transaction.",
    "19": "Re-enter last transaction - try again.",
    "20": "Invalid response/acquirer error - processing error.",
    "21": "No action taken - bank did not act.",
    "22": "Suspected malfunction - issue contacting bank.",
    "23": "Unacceptable transaction - bank doesn't allow this type.",
    "24": "File update impossible - bank system issue.",
    "25": "Unable to locate record - bank didn't find transaction.",
    "26": "Duplicate reference number - same transaction attempted again.",
    "27": "Error in reference number - bad transaction reference.",
    "28": "File temporarily unavailable - try later.",
    "29": "File action failed / contact acquirer - bank internal error.",
    "30": "Format error - data format error in request.",
    "INVALID_CARD": "Invalid card details. Please check and try again.",
    "INSUFFICIENT_FUNDS": "Payment declined: insufficient funds.",
    "FRAUD_SUSPECTED": "Payment blocked for security reasons. Contact support.",
    "AUTHENTICATION_FAILED": "Card authentication failed. Please try again or use a different card.",
    "DO_NOT_PROCEED": "Transaction declined by bank. Please try a different payment method.",
    "DECLINED": "Payment declined by your bank. Please contact your bank or try a different card.",
    "FAILED": "Payment failed. Please try again.",
    "CANCELLED": "Payment was cancelled.",
    "VOID": "Transaction was voided.",
    "CHARGEBACK": "Payment disputed.",
    "REJECTED": "Payment rejected by bank.",
    "TIMEOUT": "Payment timed out. Please try again.",
    "EXPIRED": "Payment session expired. Please try again.",
    "BLOCKED": "Card is blocked. Please contact your bank.",
    "CARD_EXPIRED": "Card has expired. Please use a different card.",
    "INVALID_CVV": "Invalid CVV code. Please check and try again.",
    "LIMIT_EXCEEDED": "Transaction limit exceeded. Please contact your bank.",
    "PICKUP_CARD": "Card declined. Please contact your bank.",
    "RESTRICTED_CARD": "Card is restricted. Please use a different card.",
    "SECURITY_VIOLATION": "Security check failed. Please contact support.",
}

GENERIC_ERROR = "Payment error - please try again later."


def _get(data: Any, *path: str) -> Any:
    for key in path:
        if not isinstance(data, Mapping):
            return None
        data = data.get(key)
    return data


def _upper(value: Any) -> str:
    return str(value).upper()


def _is_failure_text(value: Any) -> bool:
    return value not in (None, "") and _upper(value) in FAILED_INDICATORS


def normalize_payment_result(payload: Mapping | None, query: Mapping | None = None) -> Dict[str, Any]:
    payload = payload or {}
    query = query or {}
    obj = payload.get("obj") if isinstance(payload.get("obj"), Mapping) else {}

    status_candidates = [
        obj.get("transaction_status"),
        payload.get("transaction_status"),
        obj.get("status"),
        payload.get("status"),
        obj.get("is_success"),
        payload.get("is_success"),
        obj.get("success"),
        payload.get("success"),
        obj.get("response_code"),
        payload.get("response_code"),
        query.get("success"),
        query.get("is_success"),
        query.get("pending"),
        query.get("error_occured"),
        query.get("data.message"),
        query.get("acq_response_code"),
        query.get("txn_response_code"),
    ]

    query_success = (
        query.get("success") == "true"
        and query.get("pending") == "false"
        and query.get("error_occured") != "true"
        and (
            query.get("data.message") == "Approved"
            or query.get("acq_response_code") == "00"
            or query.get("txn_response_code") == "APPROVED"
            or query.get("is_capture") == "true"
            or query.get("is_auth") == "true"
        )
    )

    explicit_success = (
        obj.get("success") is True
        or payload.get("success") is True
        or obj.get("is_success") is True
        or payload.get("is_success") is True
        or _upper(obj.get("transaction_status")) == "CAPTURED"
        or _upper(payload.get("transaction_status")) == "CAPTURED"
        or query_success
    )

    explicit_failure = (
        obj.get("success") is False
        or payload.get("success") is False
        or obj.get("is_success") is False
        or payload.get("is_success") is False
        or obj.get("error_occured") is True
        or payload.get("error_occured") is True
        or query.get("success") == "false"
        or query.get("error_occured") == "true"
    )

    status_failure = any(_is_failure_text(s) for s in status_candidates if s)

    message_failure = _is_failure_text(_get(obj, "data", "message")) or _is_failure_text(query.get("data.message"))

    acq_code_failure = _is_failure_text(_get(obj, "data", "acq_response_code")) or _is_failure_text(
        query.get("acq_response_code")
    )

    paid_cents = _get(obj, "order", "paid_amount_cents")
    if paid_cents is None:
        paid_cents = _get(payload, "order", "paid_amount_cents")
    expected_cents = obj.get("amount_cents") or payload.get("amount_cents") or 0
    zero_paid_amount = paid_cents == 0 and _as_number(expected_cents) > 0

    response_code_failure = (
        str(obj.get("response_code")) in FAILURE_RESPONSE_CODES
        or str(payload.get("response_code")) in FAILURE_RESPONSE_CODES
        or str(query.get("response_code")) in FAILURE_RESPONSE_CODES
    )

    payment_status_failure = any(
        _upper(s) in ("UNPAID", "FAILED")
        for s in (_get(obj, "order", "payment_status"), _get(payload, "order", "payment_status"))
        if s is not None
    )

    is_failed = bool(
        explicit_failure
        or status_failure
        or message_failure
        or acq_code_failure
        or zero_paid_amount
        or response_code_failure
        or payment_status_failure
    )
    is_success = bool(explicit_success) and not is_failed

    merchant_order_id = (
        _get(obj, "order", "merchant_order_id")
        or obj.get("merchant_order_id")
        or payload.get("merchant_order_id")
        or query.get("merchant_order_id")
        or query.get("merchantOrderId")
    )
    transaction_id = obj.get("id") or payload.get("id") or query.get("id")
    paymob_order_id = _get(obj, "order", "id") or _get(payload, "order", "id") or query.get("order")
    if isinstance(paymob_order_id, Mapping):
        paymob_order_id = paymob_order_id.get("id")

    return {
        "merchant_order_id": str(merchant_order_id) if merchant_order_id else None,
        "transaction_id": str(transaction_id) if transaction_id else None,
        "paymob_order_id": str(paymob_order_id) if paymob_order_id else None,
        "is_success": is_success,
        "is_failed": is_failed,
        "is_pending": not is_success and not is_failed,
        "amount_cents": obj.get("amount_cents") or payload.get("amount_cents"),
        "currency": obj.get("currency") or payload.get("currency"),
        "raw_payload": dict(payload),
        "query_params": dict(query),
        "signals": {
            "explicit_success": bool(explicit_success),
            "explicit_failure": bool(explicit_failure),
            "status_failure": status_failure,
            "message_failure": message_failure,
            "acq_code_failure": acq_code_failure,
            "zero_paid_amount": zero_paid_amount,
            "response_code_failure": response_code_failure,
            "payment_status_failure": payment_status_failure,
        },
    }


def _as_number(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def verify_signature(raw_body: bytes, signature: str | None, secret: str | None) -> bool:
    """HMAC-SHA256 over the raw request body, hex digest, optional 'sha256=' prefix."""
    if not signature or not secret:
        return False

    incoming = str(signature).strip()
    if incoming.startswith("sha256="):
        incoming = incoming.split("=", 1)[1]

    if isinstance(raw_body, str):
        raw_body = raw_body.encode("utf-8")

    computed = hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).hexdigest()
    try:
        return hmac.compare_digest(computed, incoming.lower())
    except TypeError:
        # non-ascii signature header
        return False


def friendly_error(source: Any) -> str:
    """
    Human readable reason for a failed payment.
    Accepts a response code, a gateway payload, or an exception.
    """
    if source is None:
        return GENERIC_ERROR

    if isinstance(source, (str, int)):
        return ERROR_MESSAGES.get(_upper(source), str(source) if isinstance(source, str) else GENERIC_ERROR)

    if isinstance(source, BaseException):
        remote = getattr(getattr(source, "response", None), "json", None)
        try:
            remote = remote() if callable(remote) else {}
        except ValueError:
            remote = {}
        if not isinstance(remote, Mapping) or not remote:
            return str(source) or GENERIC_ERROR
        source = remote

    if not isinstance(source, Mapping):
        return GENERIC_ERROR

    candidates = [
        source.get("error_code"),
        source.get("code"),
        source.get("response_code"),
        source.get("transaction_status"),
        source.get("status"),
        source.get("result"),
        source.get("status_code"),
        source.get("txn_response_code"),
        source.get("data.message"),
        source.get("acq_response_code"),
        _get(source, "transaction_response", "code"),
        _get(source, "obj", "transaction_status"),
        _get(source, "obj", "response_code"),
        _get(source, "obj", "data", "message"),
        _get(source, "obj", "data", "acq_response_code"),
        _get(source, "data", "response_code"),
        _get(source, "data", "code"),
        _get(source, "data", "message"),
        _get(source, "data", "acq_response_code"),
    ]

    code = next((str(c) for c in candidates if c is not None), None)

    message = source.get("message")
    if not code and isinstance(message, str):
        m = re.search(r"code[:=\s]*(\d+)", message, re.I) or re.search(r"\b(\d{1,3})\b", message)
        if m:
            code = m.group(1)

    if code and _upper(code) in ERROR_MESSAGES:
        return ERROR_MESSAGES[_upper(code)]

    if isinstance(message, str) and message:
        return message

    errors = source.get("errors")
    if isinstance(errors, list) and errors:
        return str(errors[0])
    if isinstance(errors, str) and errors:
        return errors

    return GENERIC_ERROR
